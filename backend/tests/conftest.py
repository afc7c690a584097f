"""
Pytest fixtures for valuation backend tests.

Provides an in-memory application, a per-test clean database, catalog
fixtures and the Flask test client.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from valuation import create_app
from valuation.config import TestConfig
from valuation.extensions import db
from valuation.models import Product, Store
from valuation.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(config_object=TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
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
def store(db_session):
    """Create the main store."""
    store = Store(name="Main Street", code="MAIN", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    """Create a second store (for isolation and batch tests)."""
    store = Store(name="Harbor", code="HARBOR", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session):
    """Create a product priced at 100.00."""
    product = Product(sku="WIDGET-001", name="Widget", sale_price=Decimal("100.00"), cost=Decimal("50"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session):
    """Create a cheaper second product."""
    product = Product(sku="GADGET-002", name="Gadget", sale_price=Decimal("20.00"), cost=Decimal("8"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def days_ago():
    """Business time helper: days_ago(3) is three days before now."""
    def _days_ago(days: float):
        return utcnow() - timedelta(days=days)
    return _days_ago
