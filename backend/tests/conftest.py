"""
Pytest fixtures for BizLedger backend tests.

Provides an in-memory database, a test client, and ready-made parties and
products created through the service layer.
"""

from decimal import Decimal

import pytest
from bizledger import create_app
from bizledger.extensions import db
from bizledger.services import party_service, stock_service


ACTOR = "tester"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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


@pytest.fixture
def actor_headers():
    return {'X-User-Id': ACTOR}


@pytest.fixture(scope='function')
def supplier(db_session):
    return party_service.create_supplier(
        patch={
            "name": "Apex Auto Supplies",
            "phone": "08011110000",
            "email": "orders@apex.example",
            "categories": ["Filters"],
            "payment_terms": "net30",
        },
        actor=ACTOR,
    )


@pytest.fixture(scope='function')
def customer(db_session):
    """Cash-terms customer: never credit limited."""
    return party_service.create_customer(
        patch={"name": "Chidi Nwosu", "phone": "08022220000", "payment_terms": "cash"},
        actor=ACTOR,
    )


@pytest.fixture(scope='function')
def credit_customer(db_session):
    return party_service.create_customer(
        patch={
            "name": "Bola Stores",
            "phone": "08033330000",
            "type": "business",
            "payment_terms": "credit",
            "credit_limit": Decimal("1000.00"),
            "credit_days": 30,
        },
        actor=ACTOR,
    )


@pytest.fixture(scope='function')
def product(db_session, supplier):
    """50 in stock at 100.00."""
    return stock_service.create_product(
        patch={
            "sku": "flt-001",
            "name": "Oil Filter",
            "brand": "Bosch",
            "category": "Filters",
            "cost_price": Decimal("60.00"),
            "selling_price": Decimal("100.00"),
            "stock_current": 50,
            "supplier_id": supplier.id,
        },
        actor=ACTOR,
    )


@pytest.fixture(scope='function')
def second_product(db_session):
    """Only 3 in stock."""
    return stock_service.create_product(
        patch={
            "sku": "BRK-002",
            "name": "Brake Pad",
            "category": "Brakes",
            "cost_price": Decimal("200.00"),
            "selling_price": Decimal("350.00"),
            "stock_current": 3,
        },
        actor=ACTOR,
    )
