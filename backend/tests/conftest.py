"""
Pytest fixtures for shopledger backend tests.

Provides test database setup, shop fixtures, and test client.
"""

import pytest
from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Shop, Product, Supplier, Customer


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LEDGER_RETRY_BACKOFF': 0,
    'LOW_STOCK_THRESHOLD': 10,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
def shop(db_session):
    """Create Shop A (first tenant)."""
    shop = Shop(name="Shop A - Corner Store", code="SHOPA", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def other_shop(db_session):
    """Create Shop B (second tenant)."""
    shop = Shop(name="Shop B - Market Stall", code="SHOPB", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


def make_product(db_session, shop, *, name="Product", sku=None, stock=10, price_cents=1000, cost_price_cents=600):
    product = Product(
        shop_id=shop.id,
        name=name,
        sku=sku,
        stock=stock,
        price_cents=price_cents,
        cost_price_cents=cost_price_cents,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, shop):
    """Product in Shop A with 10 units at 10.00."""
    return make_product(db_session, shop, name="Rice 5kg", sku="RICE-5", stock=10, price_cents=1000)


@pytest.fixture(scope='function')
def product_b(db_session, shop):
    """Second product in Shop A with plenty of stock."""
    return make_product(db_session, shop, name="Cooking Oil", sku="OIL-1", stock=100, price_cents=250, cost_price_cents=150)


@pytest.fixture(scope='function')
def foreign_product(db_session, other_shop):
    """Product in Shop B."""
    return make_product(db_session, other_shop, name="Foreign Product", sku="FOREIGN-1", stock=50)


@pytest.fixture(scope='function')
def supplier(db_session, shop):
    supplier = Supplier(shop_id=shop.id, name="Wholesale Foods", contact_name="Ada")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def customer(db_session, shop):
    customer = Customer(shop_id=shop.id, name="Regular Customer", phone="555-0101")
    db_session.add(customer)
    db_session.commit()
    return customer


def shop_headers(shop, actor_id: int = 1) -> dict:
    """Helper to create the gateway-forwarded shop context headers."""
    return {'X-Shop-Id': str(shop.id), 'X-Actor-Id': str(actor_id)}
