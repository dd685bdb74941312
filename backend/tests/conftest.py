"""
Pytest fixtures for tillbook backend tests.

Provides the in-memory application, a per-test clean database and small
factories for catalog, customer and order rows.
"""

from datetime import datetime, timedelta

import pytest
from tillbook import create_app
from tillbook.extensions import db
from tillbook.models import Customer, Order, Product, ORDER_PAID


AS_OF = datetime(2026, 6, 30, 12, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'COMMIT_RETRY_BACKOFF_SECONDS': 0,
    })

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
    """Fresh data for each test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def make_product(db_session):
    def _make(**kwargs):
        values = {
            "name": "Widget",
            "category": "Hardware",
            "price_cents": 1000,
            "cost_cents": 600,
            "stock": 10,
        }
        values.update(kwargs)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def make_customer(db_session):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        values = {"name": f"Customer {counter['n']}", "email": f"customer{counter['n']}@example.com"}
        values.update(kwargs)
        customer = Customer(**values)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_paid_order(db_session):
    """Paid order with a preset total and no lines; enough for segmentation input."""
    def _make(customer, *, total_cents, days_ago, status=ORDER_PAID):
        order = Order(
            customer_id=customer.id,
            status=status,
            total_cents=total_cents,
            created_at=AS_OF - timedelta(days=days_ago),
        )
        db_session.add(order)
        db_session.commit()
        return order
    return _make
