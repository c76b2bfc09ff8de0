"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and shared fixtures
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers, a throwaway SQLite store, and sample products
"""

import pytest

from dealagent.core.database import create_db_engine
from dealagent.core.session_store import SessionStore
from dealagent.llm.provider_factory import reset_provider
from dealagent.models.negotiation import (
    NegotiationPreferences,
    ProductRef,
    SessionTrigger,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )
    config.addinivalue_line(
        "markers", "requires_lm_studio: Tests that require running LM Studio instance"
    )
    config.addinivalue_line(
        "markers", "requires_openrouter: Tests that require OpenRouter API key and enabled provider"
    )


@pytest.fixture(autouse=True)
def reset_provider_singleton():
    """
    Reset provider singleton before each test.

    WHAT: Clear provider cache between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite engine in a temp dir (WAL needs a real file)."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'sessions.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    """Initialized session store on a fresh database."""
    store = SessionStore(db_engine)
    store.initialize()
    return store


@pytest.fixture
def product():
    return ProductRef(
        id="B0TEST123",
        name="Wireless Headphones",
        price=100.0,
        currency="USD",
        seller="Example Store",
        url="https://shop.example.com/p/B0TEST123",
        category="Electronics > Audio",
    )


@pytest.fixture
def make_trigger(product):
    """Build a SessionTrigger; keyword args become NegotiationPreferences."""
    def _make(manual: bool = True, **preferences) -> SessionTrigger:
        prefs = NegotiationPreferences(**preferences) if preferences else None
        return SessionTrigger(product=product, preferences=prefs, manual=manual)
    return _make
