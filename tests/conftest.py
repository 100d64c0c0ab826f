"""Pytest fixtures for sawmill tests."""

from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import orders
from auth import CurrentUser
from catalog import create_product
from database import ensure_indexes, utcnow
from main import app, get_db
from promotions import create_promotion
from schemas import Product, Promotion


@pytest.fixture
def mongo():
    """An empty in-memory database with the production indexes."""
    db = mongomock.MongoClient()["sawmill_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def client(mongo):
    """API client wired to the in-memory database."""
    app.dependency_overrides[get_db] = lambda: mongo
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer():
    return CurrentUser(id="user-1", role="customer", email="jane@sawmill.co.za")


@pytest.fixture
def other_customer():
    return CurrentUser(id="user-2", role="customer", email="sipho@sawmill.co.za")


@pytest.fixture
def admin():
    return CurrentUser(id="admin-1", role="admin", email="admin@sawmill.co.za")


@pytest.fixture
def customer_headers(customer):
    return {"X-User-Id": customer.id, "X-User-Role": customer.role, "X-User-Email": customer.email}


@pytest.fixture
def admin_headers(admin):
    return {"X-User-Id": admin.id, "X-User-Role": admin.role, "X-User-Email": admin.email}


@pytest.fixture
def make_product(mongo):
    """Create a catalog product; keyword arguments override the defaults."""
    def _make(**overrides):
        data = {
            "name": "Premium Pine Plywood",
            "description": "18mm pine plywood sheet",
            "category": "Plywood",
            "product_type": "Standard Panel",
            "wood_type": "Pine",
            "color": "Natural",
            "price": 450,
            "stock": 10,
        }
        data.update(overrides)
        return create_product(mongo, Product(**data))
    return _make


@pytest.fixture
def plywood(make_product):
    return make_product()


@pytest.fixture
def post(make_product):
    return make_product(
        name="Treated Pine 4x4 Post",
        description="Treated pine post",
        category="4x4 Timber",
        product_type="Post",
        price=180,
        stock=5,
    )


@pytest.fixture
def make_order(mongo, customer):
    """Place an order for ``(product, quantity)`` pairs."""
    def _make(*lines, user=None, **kwargs):
        items = [{"product_id": str(product["_id"]), "quantity": qty} for product, qty in lines]
        params = {
            "delivery_method": "pickup",
            "customer_name": "Jane Dlamini",
            "customer_email": "jane@sawmill.co.za",
            "customer_phone": "0821234567",
        }
        params.update(kwargs)
        return orders.create_order(mongo, user or customer, items, **params)
    return _make


@pytest.fixture
def make_promotion(mongo):
    def _make(**overrides):
        now = utcnow()
        data = {
            "code": "SAVE10",
            "description": "10% off",
            "discount_type": "percentage",
            "discount_value": 10,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
        }
        data.update(overrides)
        return create_promotion(mongo, Promotion(**data))
    return _make


@pytest.fixture
def stock_of(mongo):
    """Current stock of a product, read back from the database."""
    def _stock(product):
        return mongo["product"].find_one({"_id": product["_id"]})["stock"]
    return _stock
