"""
Pytest fixtures for StorePOS backend tests.

Provides the app with an in-memory database, per-test table cleanup,
a product factory and identity headers for each role.
"""

from decimal import Decimal

import pytest

from storepos import create_app
from storepos.extensions import db, ANALYTICS_CACHE_KEY, DISPATCHER_KEY, PUSH_BROKER_KEY
from storepos.models import Product
from storepos.money_utils import to_cents


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Refresh inline so assertions see the pushed/cached result
        'ANALYTICS_ASYNC_REFRESH': False,
        'ANALYTICS_BACKGROUND_REFRESH': False,
        'DEFAULT_VAT_RATE': 12,
        'SENIOR_PWD_DISCOUNT_RATE': 20,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data (and a cold analytics cache) for each test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions[ANALYTICS_CACHE_KEY].clear()

    yield db.session

    db.session.rollback()


@pytest.fixture
def cache(app):
    return app.extensions[ANALYTICS_CACHE_KEY]


@pytest.fixture
def broker(app):
    return app.extensions[PUSH_BROKER_KEY]


@pytest.fixture
def dispatcher(app):
    return app.extensions[DISPATCHER_KEY]


@pytest.fixture
def make_product(db_session):
    """Factory: make_product(price="10.00", stock=10, ...)."""
    counter = {"n": 0}

    def _make(price="10.00", stock=10, **overrides):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "category": "General",
            "price_cents": to_cents(Decimal(price)),
            "stock": stock,
            "min_stock": 0,
            "status": "active",
            "is_discountable": False,
            "is_vat_exemptable": False,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


def identity_headers(user_id: str, role: str, name: str | None = None) -> dict:
    """Helper to create the gateway identity headers."""
    return {
        'X-User-Id': user_id,
        'X-User-Name': name or user_id.title(),
        'X-User-Role': role,
    }


@pytest.fixture
def cashier_headers(db_session):
    return identity_headers("c1", "cashier", "Cashier One")


@pytest.fixture
def other_cashier_headers(db_session):
    return identity_headers("c2", "cashier", "Cashier Two")


@pytest.fixture
def manager_headers(db_session):
    return identity_headers("m1", "manager", "Manager One")


@pytest.fixture
def admin_headers(db_session):
    return identity_headers("a1", "admin", "Admin One")
