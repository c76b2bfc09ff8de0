"""
Integration tests for the HTTP API.

WHAT: Endpoint status codes, payload shapes and error mapping
WHY: The extension UI depends on stable codes (201/404/409/400/503)
HOW: FastAPI TestClient over an app with a preset orchestrator
"""

import time

import pytest
from fastapi.testclient import TestClient

from dealagent.core.orchestrator import SessionOrchestrator
from dealagent.main import create_app
from dealagent.models.negotiation import NegotiationSession
from dealagent.services.decision_engine import DecisionEngine
from dealagent.services.event_bus import EventBus
from dealagent.services.seller_discovery import NoSellersFound
from dealagent.utils.exceptions import SessionPersistenceError
from tests.fixtures.fake_seller import FakeDiscovery, FakeProtocolClient
from tests.fixtures.mock_llm import MockLLMProvider, accept_reply, opportunity_reply

PRODUCT = {
    "id": "B0API0001",
    "name": "Espresso Machine",
    "price": 200.0,
    "currency": "USD",
    "seller": "Coffee Corner",
    "url": "https://shop.example.com/p/B0API0001",
    "category": "Home & Kitchen",
}


@pytest.fixture
def orchestrator(store):
    seller = FakeProtocolClient(initial_price=180.0)
    return SessionOrchestrator(
        store=store,
        discovery=FakeDiscovery(),
        decision_engine=DecisionEngine(
            provider=MockLLMProvider([accept_reply()], opportunity=opportunity_reply()),
        ),
        event_bus=EventBus(),
        client_factory=lambda: seller,
        inter_round_delay=0,
        sweep_interval_seconds=3600,
    )


@pytest.fixture
def client(orchestrator):
    app = create_app()
    app.state.orchestrator = orchestrator
    with TestClient(app) as test_client:
        yield test_client


def wait_for_status(client, session_id, statuses=("completed", "failed"), timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/negotiations/{session_id}").json()
        if body["status"] in statuses:
            return body
        time.sleep(0.02)
    raise AssertionError(f"Session {session_id} never reached {statuses}")


def create_completed(client) -> str:
    response = client.post("/api/v1/negotiations", json={"product": PRODUCT, "manual": True})
    session_id = response.json()["session_id"]
    wait_for_status(client, session_id)
    return session_id


def seed_pending(store) -> str:
    session = NegotiationSession.model_validate({
        "product_id": PRODUCT["id"],
        "product": PRODUCT,
        "expires_at": "2999-01-01T00:00:00",
    })
    store.save(session)
    return session.session_id


@pytest.mark.integration
class TestNegotiationEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_create_returns_201_and_completes(self, client):
        response = client.post(
            "/api/v1/negotiations",
            json={"product": PRODUCT, "preferences": {"desired_discount": 10, "max_price": 190}, "manual": True},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"

        session = wait_for_status(client, body["session_id"])
        assert session["status"] == "completed"
        assert session["deal_source"] == "negotiated"
        assert session["current_offer"]["price"] == 180.0

    def test_create_rejects_invalid_product(self, client):
        bad = dict(PRODUCT, price=-5)
        response = client.post("/api/v1/negotiations", json={"product": bad})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unknown_session_is_404(self, client):
        response = client.get("/api/v1/negotiations/does-not-exist")
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "SESSION_NOT_FOUND"
        assert body["details"]["session_id"] == "does-not-exist"

    def test_log_endpoint(self, client):
        session_id = create_completed(client)
        response = client.get(f"/api/v1/negotiations/{session_id}/log")
        assert response.status_code == 200
        body = response.json()
        assert body["rounds"] == 1
        assert [s["action"] for s in body["steps"]] == ["analyze", "offer", "accept"]

    def test_accept_completed_returns_checkout(self, client):
        session_id = create_completed(client)
        response = client.post(f"/api/v1/negotiations/{session_id}/accept")
        assert response.status_code == 200
        body = response.json()
        assert body["discount_code"] == f"AI-DEAL-{session_id[:8].upper()}"
        assert body["final_price"] == 180.0
        assert body["savings"] == 20.0

    def test_accept_pending_is_409(self, client, store):
        session_id = seed_pending(store)
        response = client.post(f"/api/v1/negotiations/{session_id}/accept")
        assert response.status_code == 409
        assert response.json()["error"] == "DEAL_NOT_READY"

    def test_reject_then_reject_again_is_409(self, client, store):
        session_id = seed_pending(store)
        first = client.post(f"/api/v1/negotiations/{session_id}/reject", json={"reason": "Changed my mind"})
        assert first.status_code == 200
        assert first.json()["status"] == "failed"
        assert first.json()["failure_reason"] == "Changed my mind"

        second = client.post(f"/api/v1/negotiations/{session_id}/reject")
        assert second.status_code == 409
        assert second.json()["error"] == "INVALID_SESSION_TRANSITION"

    def test_retry_failed_session(self, client, store):
        session_id = seed_pending(store)
        client.post(f"/api/v1/negotiations/{session_id}/reject")

        response = client.post(f"/api/v1/negotiations/{session_id}/retry")
        assert response.status_code == 200
        session = wait_for_status(client, session_id)
        assert session["attempt"] == 2
        assert session["status"] == "completed"

    def test_deal_action_accept(self, client):
        session_id = create_completed(client)
        response = client.post(f"/api/v1/negotiations/{session_id}/actions", json={"action": "accept"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["checkout"]["final_price"] == 180.0

    def test_deal_action_rejects_unknown_action(self, client, store):
        session_id = seed_pending(store)
        response = client.post(f"/api/v1/negotiations/{session_id}/actions", json={"action": "haggle"})
        assert response.status_code == 400


@pytest.mark.integration
class TestDealsStatsAndBackup:

    def test_active_deals_and_stats(self, client):
        session_id = create_completed(client)

        deals = client.get("/api/v1/deals/active").json()
        assert [d["session_id"] for d in deals] == [session_id]
        assert deals[0]["status"] == "deal_ready"
        assert deals[0]["current_offer_price"] == 180.0

        stats = client.get("/api/v1/stats").json()
        assert stats["completed_sessions"] == 1
        assert stats["success_rate"] == 1.0
        assert stats["total_savings"] == 20.0

    def test_export_then_import(self, client, store):
        session_id = create_completed(client)
        exported = client.get("/api/v1/sessions/export").json()
        assert exported["count"] == 1

        store.clear_all()
        assert store.count() == 0

        response = client.post("/api/v1/sessions/import", json={"sessions": exported["sessions"]})
        assert response.status_code == 200
        assert response.json() == {"imported": 1, "restored_active": 0}
        assert client.get(f"/api/v1/negotiations/{session_id}").json()["status"] == "completed"

    def test_import_requires_sessions(self, client):
        response = client.post("/api/v1/sessions/import", json={"sessions": []})
        assert response.status_code == 400

    def test_import_rejects_duplicate_ids(self, client, store):
        session_id = seed_pending(store)
        exported = client.get("/api/v1/sessions/export").json()["sessions"]

        response = client.post("/api/v1/sessions/import", json={"sessions": exported * 2})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]["field_errors"][0]["session_id"] == session_id


@pytest.mark.integration
class TestStatusEndpoints:

    def test_health_reports_components(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"]["available"] is True
        assert body["llm"]["available"] is True
        assert body["discovery"]["available"] is True

    def test_health_degraded_when_registry_down(self, client, orchestrator):
        orchestrator.discovery.healthy = False
        body = client.get("/api/v1/health").json()
        assert body["status"] == "degraded"
        assert body["discovery"]["available"] is False

    def test_llm_status(self, client):
        body = client.get("/api/v1/llm/status").json()
        assert body["available"] is True
        assert body["models"] == ["mock-model"]


@pytest.mark.integration
def test_fallback_deal_is_marked_simulated(store):
    orchestrator = SessionOrchestrator(
        store=store,
        discovery=FakeDiscovery(result=NoSellersFound()),
        decision_engine=DecisionEngine(provider=MockLLMProvider()),
        inter_round_delay=0,
        sweep_interval_seconds=3600,
    )
    app = create_app()
    app.state.orchestrator = orchestrator
    with TestClient(app) as client:
        session_id = create_completed(client)
        checkout = client.post(f"/api/v1/negotiations/{session_id}/accept").json()
        assert checkout["deal_source"] == "simulated"
        assert checkout["final_price"] == 170.0


@pytest.mark.integration
def test_store_outage_is_503(store, orchestrator, monkeypatch):
    def broken_get(session_id):
        raise SessionPersistenceError(f"get({session_id})", RuntimeError("database is locked"))

    app = create_app()
    app.state.orchestrator = orchestrator
    with TestClient(app) as client:
        monkeypatch.setattr(store, "get", broken_get)
        response = client.get("/api/v1/negotiations/anything")
        assert response.status_code == 503
        assert response.json()["error"] == "SESSION_STORE_UNAVAILABLE"
