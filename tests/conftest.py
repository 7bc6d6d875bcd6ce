"""Pytest configuration and shared fixtures."""

import pytest

from ticketdesk.cache import LocalCache
from ticketdesk.config import Settings
from ticketdesk.inventory import InventoryCore
from ticketdesk.models import EVENTS, money_doc

from tests.fakes import MemoryDocumentStore


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def cache(store) -> LocalCache:
    c = LocalCache()
    c.attach(store)
    yield c
    c.detach()


@pytest.fixture
def core(store) -> InventoryCore:
    return InventoryCore(store)


@pytest.fixture
def make_event(store):
    def _make(seats=100, available=None, price="50.00", name="Jazz Night",
              date="2026-11-20", venue="Blue Hall"):
        return store.insert(
            EVENTS,
            {
                "name": name,
                "date": date,
                "venue": venue,
                "seats": seats,
                "available_seats": seats if available is None else available,
                "price": money_doc(price),
            },
            timestamp_field="created_at",
        )

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key="test-secret", payment_delay_seconds=0.0, log_level="WARNING")


@pytest.fixture
def app(settings, store):
    from ticketdesk.app import create_app

    application = create_app(settings, store=store, sleep=lambda _s: None)
    application.config.update(TESTING=True)
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def operator(client):
    """A test client with a signed-in operator session."""
    resp = client.post(
        "/api/register",
        json={"name": "Olive Operator", "email": "olive@example.com", "password": "s3cret!"},
    )
    assert resp.status_code == 201
    return client
