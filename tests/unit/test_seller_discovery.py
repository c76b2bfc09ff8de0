"""
Unit tests for seller discovery.

WHAT: Record validation, filtering, ranking, caching, retries and fallback
WHY: Registry data is untrusted and the registry may be down
HOW: respx mocks the registry over a real httpx.AsyncClient
"""

import json

import httpx
import pytest
import pytest_asyncio

from dealagent.models.seller import SellerMetadata, SellerRegistration, SellerSearchCriteria
from dealagent.services.seller_discovery import (
    HEALTH_PATH,
    REGISTER_PATH,
    SEARCH_PATH,
    DiscoveryUnavailable,
    NoSellersFound,
    SellerDiscoveryClient,
    SellersFound,
    filter_sellers,
    parse_seller_record,
    rank_sellers,
    simplify_category,
)
from dealagent.utils.backoff import BackoffPolicy
from dealagent.utils.parsing import Invalid, Parsed
from tests.fixtures.fake_seller import make_seller

REGISTRY = "http://registry.test"
NO_WAIT = BackoffPolicy(max_attempts=3, base_delay=0, max_delay=0)


def record(seller_id: str = "s-1", rating: float = 4.5, minutes: float = 0.5, **overrides) -> dict:
    data = {
        "seller_id": seller_id,
        "seller_name": f"Seller {seller_id}",
        "mcp_connection": {"endpoint_url": f"https://{seller_id}.example.com/mcp", "api_key": "k"},
        "capabilities": ["initiateNegotiation", "makeOffer"],
        "rating": rating,
        "response_time_minutes": minutes,
        "success_rate": 0.8,
        "specialties": ["electronics"],
    }
    data.update(overrides)
    return data


@pytest_asyncio.fixture
async def discovery():
    client = SellerDiscoveryClient(
        base_url=REGISTRY,
        backoff=NO_WAIT,
        cache_ttl_seconds=300,
        use_fallback_sellers=False,
    )
    yield client
    await client.close()


@pytest.mark.unit
class TestRecordParsing:

    def test_valid_record_is_normalized(self):
        result = parse_seller_record(record(minutes=2))
        assert isinstance(result, Parsed)
        seller = result.value
        assert seller.endpoint == "https://s-1.example.com/mcp"
        assert seller.credential == "k"
        assert seller.metadata.average_response_time_ms == 120000
        assert seller.metadata.supported_payments == ["credit_card"]

    @pytest.mark.parametrize("overrides,reason", [
        ({"seller_id": ""}, "missing seller_id"),
        ({"seller_name": None}, "missing seller_name"),
        ({"mcp_connection": {}}, "missing mcp_connection.endpoint_url"),
        ({"capabilities": "makeOffer"}, "capabilities is not a list"),
    ])
    def test_invalid_records(self, overrides, reason):
        assert parse_seller_record(record(**overrides)) == Invalid(reason)

    def test_out_of_range_rating_is_invalid(self):
        assert isinstance(parse_seller_record(record(rating=9)), Invalid)

    def test_non_dict(self):
        assert isinstance(parse_seller_record("seller"), Invalid)


@pytest.mark.unit
class TestFilterAndRank:

    def test_filters(self):
        good = make_seller("good", rating=4.5)
        low = make_seller("low", rating=2.0)
        slow = make_seller("slow").model_copy(update={"metadata": SellerMetadata(rating=4.8, average_response_time_ms=90000)})
        criteria = SellerSearchCriteria(min_rating=3.5, max_response_time_ms=30000)

        assert [s.seller_id for s in filter_sellers([good, low, slow], criteria)] == ["good"]

    def test_specialty_filter(self):
        seller = make_seller().model_copy(update={"metadata": SellerMetadata(rating=4, specialties=["books"])})
        assert filter_sellers([seller], SellerSearchCriteria(specialty="electronics")) == []

    def test_rank_prefers_higher_score(self):
        sellers = [make_seller("mid", rating=3.9), make_seller("top", rating=4.9), make_seller("low", rating=3.0)]
        ranked = rank_sellers(sellers, SellerSearchCriteria())
        assert [s.seller_id for s in ranked] == ["top", "mid", "low"]

    @pytest.mark.parametrize("category,expected", [
        ("Cell Phones & Accessories > Cases", "electronics"),
        ("Books > Fiction", "books"),
        ("Garden", "general"),
        (None, None),
    ])
    def test_simplify_category(self, category, expected):
        assert simplify_category(category) == expected


@pytest.mark.unit
class TestFindSellers:

    @pytest.mark.asyncio
    async def test_registry_results_are_filtered_ranked_and_cached(self, discovery, respx_mock):
        route = respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(
            return_value=httpx.Response(200, json={"sellers": [
                record("low", rating=3.0),
                record("mid", rating=4.0),
                record("top", rating=4.9),
                {"seller_name": "broken"},
            ]})
        )
        criteria = SellerSearchCriteria(product_id="P1", category="electronics", min_rating=3.5)

        first = await discovery.find_sellers(criteria)
        second = await discovery.find_sellers(criteria)

        assert isinstance(first, SellersFound)
        assert first.source == "registry"
        assert [s.seller_id for s in first.sellers] == ["top", "mid"]
        assert second.source == "cache"
        assert route.call_count == 1
        params = route.calls.last.request.url.params
        assert params["category"] == "electronics"
        assert params["min_rating"] == "3.5"
        assert discovery.cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_no_match(self, discovery, respx_mock):
        respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(
            return_value=httpx.Response(200, json={"sellers": [record(rating=2.0)]})
        )
        result = await discovery.find_sellers(SellerSearchCriteria(min_rating=3.5))
        assert isinstance(result, NoSellersFound)

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, discovery, respx_mock):
        route = respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(side_effect=[
            httpx.Response(503),
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json={"sellers": [record()]}),
        ])
        result = await discovery.find_sellers(SellerSearchCriteria())
        assert isinstance(result, SellersFound)
        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_unavailable_after_retries(self, discovery, respx_mock):
        route = respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(return_value=httpx.Response(500))
        result = await discovery.find_sellers(SellerSearchCriteria())
        assert isinstance(result, DiscoveryUnavailable)
        assert result.cause == "HTTP 500 from registry"
        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_malformed_body_is_a_failure(self, discovery, respx_mock):
        respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(
            return_value=httpx.Response(200, json={"results": []})
        )
        result = await discovery.find_sellers(SellerSearchCriteria())
        assert isinstance(result, DiscoveryUnavailable)
        assert "missing sellers array" in result.cause

    @pytest.mark.asyncio
    async def test_fallback_sellers_when_enabled(self, respx_mock):
        respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(side_effect=httpx.ConnectError)
        client = SellerDiscoveryClient(base_url=REGISTRY, backoff=NO_WAIT, use_fallback_sellers=True)
        try:
            result = await client.find_sellers(SellerSearchCriteria(min_rating=4.0))
        finally:
            await client.close()

        assert isinstance(result, SellersFound)
        assert result.source == "fallback"
        assert [s.seller_id for s in result.sellers] == ["demo-seller-001"]

    @pytest.mark.asyncio
    async def test_fallback_with_no_match_is_unavailable(self, respx_mock):
        respx_mock.get(host="registry.test", path=SEARCH_PATH).mock(return_value=httpx.Response(502))
        client = SellerDiscoveryClient(base_url=REGISTRY, backoff=NO_WAIT, use_fallback_sellers=True)
        try:
            result = await client.find_sellers(SellerSearchCriteria(min_rating=5.0))
        finally:
            await client.close()
        assert isinstance(result, DiscoveryUnavailable)
        assert result.cause.endswith("no fallback seller matched")


@pytest.mark.unit
class TestRegistryExtras:

    @pytest.mark.asyncio
    async def test_health_check(self, discovery, respx_mock):
        respx_mock.get(host="registry.test", path=HEALTH_PATH).mock(
            side_effect=[httpx.Response(200), httpx.Response(503), httpx.ConnectError]
        )
        assert await discovery.health_check() is True
        assert await discovery.health_check() is False
        assert await discovery.health_check() is False

    @pytest.mark.asyncio
    async def test_register_seller(self, discovery, respx_mock):
        route = respx_mock.post(host="registry.test", path=REGISTER_PATH).mock(
            return_value=httpx.Response(201, json={"sellerId": "new-1"})
        )
        registration = SellerRegistration(
            seller_name="New Shop",
            endpoint="https://new.example.com/mcp",
            capabilities=["makeOffer"],
            contact_email="ops@new.example.com",
        )
        result = await discovery.register_seller(registration)

        assert result.success is True
        assert result.seller_id == "new-1"
        body = json.loads(route.calls.last.request.content)
        assert body["sellerName"] == "New Shop"
        assert body["contact"]["email"] == "ops@new.example.com"

    @pytest.mark.asyncio
    async def test_register_seller_rejected(self, discovery, respx_mock):
        respx_mock.post(host="registry.test", path=REGISTER_PATH).mock(
            return_value=httpx.Response(409, json={"error": "duplicate endpoint"})
        )
        registration = SellerRegistration(seller_name="Dup", endpoint="https://dup/mcp", contact_email="a@b.c")
        result = await discovery.register_seller(registration)
        assert result.success is False
        assert result.error == "duplicate endpoint"
