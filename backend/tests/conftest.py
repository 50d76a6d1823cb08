"""
Pytest fixtures for SahaCRM billing tests.

Provides an in-memory database app, per-test table wipe, test client and
small factories for customers, products, cash registers and delivery notes.
"""

from datetime import date
from decimal import Decimal

import pytest

from sahacrm import create_app
from sahacrm.extensions import db
from sahacrm.models import CashRegister, Customer, Order, Product
from sahacrm.services import delivery_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_TAX_RATE_BPS': 0,
        'INVOICE_DUE_DAYS': 30,
        'MAIL_ENABLED': False,
        'NOTIFICATIONS_INLINE': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    db.session.remove()
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer with an email address."""
    customer = Customer(
        company_name="Yıldız Market Ltd.",
        contact_person="Mehmet Yıldız",
        email="mehmet@yildizmarket.example",
        address="Atatürk Cad. No:5, İzmir",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(db_session):
    customer = Customer(company_name="Deniz Gıda A.Ş.", email=None)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(name="Ayçiçek Yağı 5L", unit="adet", price_cents=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session):
    product = Product(name="Un 25kg", unit="çuval", price_cents=1200)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def order(db_session, customer):
    order = Order(order_number="SIP-0001", customer_id=customer.id, status="ready", total_amount_cents=0)
    db_session.add(order)
    db_session.commit()
    return order


@pytest.fixture(scope='function')
def cash_register(db_session):
    register = CashRegister(name="Merkez Kasa", balance_cents=0, is_active=True)
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def make_delivery_note(db_session):
    """
    Factory: create (and by default sign) a delivery note.

    lines: [(product_id, quantity, unit_price_cents), ...]
    """
    def _make(customer_id, lines, *, signed=True, delivery_date=None, order_id=None):
        note = delivery_service.create_delivery_note(
            customer_id=customer_id,
            order_id=order_id,
            delivery_date=delivery_date or date(2026, 10, 1),
            items=[
                {"product_id": pid, "quantity": Decimal(str(qty)), "unit_price_cents": price}
                for pid, qty, price in lines
            ],
        )
        if signed:
            note = delivery_service.sign_delivery_note(
                note.id,
                signature="data:image/png;base64,iVBORw0KGgo=",
                signer_name="Ayşe Kaya",
            )
        return note

    return _make
