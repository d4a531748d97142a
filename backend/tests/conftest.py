"""
Pytest fixtures for order desk backend tests.

Provides an in-memory database, domain fixtures (store, products,
customer, open register) and the Flask test client.
"""

from decimal import Decimal

import pytest
from orderdesk import create_app
from orderdesk.extensions import db, order_events
from orderdesk.models import Store, Product, ProductVariation, Customer, CashRegisterSession
from orderdesk.services.cart_service import Cart
from orderdesk.services.catalog_service import find_sellable


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REDIS_URL': None,
        'LOYALTY_REDEEM_COST': 9,
        'LOYALTY_ACCRUE_ON_DELIVERY': True,
        'TILL_REQUIRED_CHANNELS': ('pos', 'kiosk'),
        'DB_RETRY_BACKOFF_SECONDS': 0,
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
        order_events.clear()
        order_events.publisher = None

        yield db.session

        db.session.rollback()
        order_events.clear()
        order_events.publisher = None


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Padaria Central", display_name="Padaria Central", slug="padaria-central",
                  courier_phone="5511999990000")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Padaria Norte", slug="padaria-norte")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def bread(db_session, store):
    """Plain product: R$ 5.00, 10 in stock, 1 point per unit."""
    product = Product(
        store_id=store.id,
        name="Pao de Queijo",
        price_cents=500,
        stock_quantity=10,
        earns_loyalty_points=True,
        loyalty_points_value=Decimal("1"),
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def coffee(db_session, store):
    """Variation product: R$ 4.00 base; Pequeno (+0, 5 left), Grande (+3.00, 2 left)."""
    product = Product(
        store_id=store.id,
        name="Cafe",
        price_cents=400,
        stock_quantity=0,
        has_variations=True,
        earns_loyalty_points=True,
        loyalty_points_value=Decimal("1.5"),
    )
    db_session.add(product)
    db_session.flush()
    small = ProductVariation(product_id=product.id, name="Pequeno", price_adjustment_cents=0, stock_quantity=5)
    large = ProductVariation(product_id=product.id, name="Grande", price_adjustment_cents=300, stock_quantity=2)
    db_session.add_all([small, large])
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def coffee_small(coffee):
    return next(v for v in coffee.variations if v.name == "Pequeno")


@pytest.fixture(scope='function')
def coffee_large(coffee):
    return next(v for v in coffee.variations if v.name == "Grande")


@pytest.fixture(scope='function')
def customer(db_session, store):
    customer = Customer(store_id=store.id, name="Maria", phone="11988887777", points=12)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def open_register(db_session, store):
    session = CashRegisterSession(store_id=store.id, opened_by=1, initial_amount_cents=10000)
    db_session.add(session)
    db_session.commit()
    return session


@pytest.fixture(scope='function')
def make_cart(db_session):
    """Build a cart from (product, variation, quantity) tuples."""
    def _make(store_id, *lines):
        cart = Cart(store_id)
        for product, variation, quantity in lines:
            snapshot, snap_variation = find_sellable(
                store_id, product.id, variation.id if variation is not None else None
            )
            cart.add_item(snapshot, snap_variation)
            cart.set_quantity(product.id, snap_variation.id if snap_variation else None, quantity)
        return cart
    return _make


@pytest.fixture(scope='function')
def events(db_session, store):
    """Collect order events published for the default store."""
    received = []
    unsubscribe = order_events.subscribe(store.id, received.append)
    yield received
    unsubscribe()
