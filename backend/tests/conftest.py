"""
Pytest fixtures for back-office tests.

Provides the application on an in-memory database, a clean database per
test, a test client and small factories for products, stock and sales.
"""

from datetime import timedelta

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import OutletStock, Product, ReturnPolicy, Transaction, TransactionItem
from backoffice.time_utils import utcnow


ACTOR = "user-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def headers():
    return {"X-Actor-Id": ACTOR}


@pytest.fixture
def make_product(db_session):
    def _make(name="Widget", category_id=None, sku=None):
        product = Product(name=name, category_id=category_id, sku=sku)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def put_stock(db_session):
    def _put(outlet_id, product_id, quantity):
        row = db_session.query(OutletStock).filter_by(outlet_id=outlet_id, product_id=product_id).first()
        if row is None:
            row = OutletStock(outlet_id=outlet_id, product_id=product_id, quantity=quantity)
            db_session.add(row)
        else:
            row.quantity = quantity
        db_session.commit()
        return row
    return _put


@pytest.fixture
def make_sale(db_session):
    """
    Record a sale. Each line is (product, quantity, unit_price[, discount_amount[, original_price]]).
    """
    counter = {"n": 0}

    def _make(lines, outlet_id="outlet-a", days_ago=0):
        counter["n"] += 1
        sale_date = utcnow() - timedelta(days=days_ago)
        transaction = Transaction(
            transaction_number=f"TXN-{counter['n']:05d}",
            outlet_id=outlet_id,
            transaction_date=sale_date,
        )
        total = 0
        for line in lines:
            product, quantity, unit_price = line[:3]
            discount = line[3] if len(line) > 3 else 0
            original = line[4] if len(line) > 4 else None
            transaction.items.append(TransactionItem(
                product_id=product.id,
                quantity=quantity,
                unit_price=unit_price,
                discount_amount=discount,
                original_price=original,
            ))
            total += ((original if original is not None else unit_price) - discount) * quantity
        transaction.total_amount = total
        db_session.add(transaction)
        db_session.commit()
        return transaction
    return _make


@pytest.fixture
def policy(db_session):
    """Active 7-day policy blocking category 'cat-hygiene'."""
    row = ReturnPolicy(
        max_return_days=7,
        non_returnable_categories=["cat-hygiene"],
        require_receipt=True,
        is_active=True,
    )
    db_session.add(row)
    db_session.commit()
    return row
