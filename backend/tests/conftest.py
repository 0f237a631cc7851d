"""
Pytest fixtures for storefront backend tests.

Provides the application on in-memory SQLite, a per-test table wipe, store and
product factories, scriptable fake gateways and an in-memory object store.
"""

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.gateways import GATEWAY_CUSTOM, GATEWAY_STRIPE, GatewayRegistry, ManualGateway, PaymentGateway
from storefront.services import products_service, store_service
from storefront.storage import MemoryObjectStore


class FakeGateway(PaymentGateway):
    """Records every call. Set `fail_with` to an exception to make the next calls raise it."""

    def __init__(self, prefix="fake"):
        self.prefix = prefix
        self.fail_with = None
        self.refund_fail_with = None
        self.charges = []
        self.refunds = []

    def process(self, amount_cents, currency, order_id, metadata=None):
        self.charges.append((amount_cents, currency, order_id, metadata))
        if self.fail_with is not None:
            raise self.fail_with
        return f"{self.prefix}_txn_{len(self.charges)}"

    def refund(self, transaction_id, amount_cents, currency):
        self.refunds.append((transaction_id, amount_cents, currency))
        if self.refund_fail_with is not None:
            raise self.refund_fail_with
        return f"{self.prefix}_refund_{len(self.refunds)}"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OBJECT_STORE_PATH': None,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def fake_gateway():
    return FakeGateway()


@pytest.fixture(scope='function')
def gateways(app, fake_gateway):
    """Registry with the fake gateway as `stripe` and the manual gateway as `custom`."""
    registry = GatewayRegistry()
    registry.register(GATEWAY_STRIPE, fake_gateway)
    registry.register(GATEWAY_CUSTOM, ManualGateway())
    app.extensions["gateways"] = registry
    return registry


@pytest.fixture(scope='function')
def object_store(app):
    store = MemoryObjectStore()
    app.extensions["object_store"] = store
    return store


@pytest.fixture(scope='function')
def make_store(db_session):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        params = {
            "name": f"Store {counter['n']}",
            "slug": f"store-{counter['n']}",
            "tax_rate_bps": 1000,
        }
        params.update(overrides)
        name = params.pop("name")
        slug = params.pop("slug")
        return store_service.create_store(name, slug, **params)

    return _make


@pytest.fixture(scope='function')
def store(make_store):
    """Store A: USD, 10% tax."""
    return make_store(name="Store A", slug="store-a")


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _make(store_id, **overrides):
        counter["n"] += 1
        payload = {
            "name": f"Product {counter['n']}",
            "slug": f"product-{counter['n']}",
            "sku": f"SKU-{counter['n']:04d}",
            "price_cents": 1000,
            "stock_quantity": 100,
        }
        payload.update(overrides)
        return products_service.create_product(store_id, payload)

    return _make


@pytest.fixture(scope='function')
def digital_product(store, make_product):
    return make_product(store.id, name="E-Book", slug="e-book", type="digital", price_cents=1500, stock_quantity=0)
