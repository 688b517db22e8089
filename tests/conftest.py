import dataclasses
from contextlib import contextmanager

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from acp_checkout.app import create_app
from acp_checkout.authentication import AuthenticationGate, AuthenticationPolicy
from acp_checkout.catalog import Catalog, Product
from acp_checkout.config import Settings
from acp_checkout.database import Database
from acp_checkout.idempotency import IdempotencyLedger
from acp_checkout.payment import MockPaymentProvider
from acp_checkout.sessions import SessionStore


API_VERSION = "2026-01-16"

PRODUCTS = [
    Product(id="item_123", title="Coffee Mug", unit_amount=300),
    Product(id="item_456", title="Throw Pillow", unit_amount=1000, unit_discount=100),
    Product(id="item_789", title="Side Table", unit_amount=5000),
    Product(id="item_000", title="Retired Lamp", unit_amount=4500, in_stock=False),
    Product(id="item_eur", title="Euro Poster", unit_amount=1500, currency="eur"),
]

US_ADDRESS = {
    "name": "Ada Lovelace",
    "line_one": "1 Main St",
    "line_two": "",
    "city": "San Francisco",
    "state": "CA",
    "country": "US",
    "postal_code": "94107",
}

CA_ADDRESS = {**US_ADDRESS, "city": "Toronto", "state": "ON", "country": "CA", "postal_code": "M5V 2T6"}

BUYER = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}

AUTHENTICATED = {
    "outcome": "authenticated",
    "outcome_details": {
        "three_ds_cryptogram": "AAIBBYNoEwAAACcKhAJkdQAAAAA=",
        "electronic_commerce_indicator": "05",
        "transaction_id": "f38e6948-5388-41a6-bca4-b49723c19437",
        "version": "2.2.0",
    },
}


def acp_headers(idempotency_key=None, **extra):
    headers = {
        "Authorization": "Bearer test-token",
        "API-Version": API_VERSION,
        "Content-Type": "application/json",
    }
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    headers.update(extra)
    return headers


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'acp.db'}",
        tax_rate_bps=1000,
        three_ds_mode="never",
    )


@pytest.fixture
def payments():
    return MockPaymentProvider()


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.init()
    await Catalog(db).upsert(PRODUCTS)
    yield db
    await db.close()


def build_store(database, settings, payments):
    gate = AuthenticationGate(
        AuthenticationPolicy.from_settings(settings), payments, merchant_id=settings.merchant_id
    )
    return SessionStore(database, Catalog(database), gate, payments, settings)


@pytest.fixture
def store(database, settings, payments):
    return build_store(database, settings, payments)


@pytest.fixture
def ledger(database):
    return IdempotencyLedger(database, ttl_seconds=60)


@pytest.fixture
def make_client(settings, payments):
    @contextmanager
    def _make(**overrides):
        app = create_app(
            dataclasses.replace(settings, **overrides),
            payments=payments,
            products=PRODUCTS,
        )
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client

    return _make


@pytest.fixture
def client(make_client):
    with make_client() as test_client:
        yield test_client
