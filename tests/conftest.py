"""Pytest fixtures for the laundry API tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import create_document, ensure_indexes, get_db
from notifications import Dispatcher, get_dispatcher
from schemas import User
from seed import seed_services


class RecordingSender:
    """Collects emails instead of sending them."""

    def __init__(self):
        self.sent = []

    def send(self, email):
        self.sent.append(email)


@pytest.fixture(scope="session")
def password_hash():
    return main.get_password_hash("secret123")


@pytest.fixture
def db():
    database = mongomock.MongoClient()["laundry_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def client(db, sender):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_dispatcher] = lambda: Dispatcher(sender=sender)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _make_user(db, password_hash, **fields):
    return create_document(db, "user", User(password_hash=password_hash, **fields))


def _auth(user):
    return {"Authorization": f"Bearer {main.create_access_token({'sub': str(user['_id'])})}"}


@pytest.fixture
def user(db, password_hash):
    return _make_user(db, password_hash, name="John Doe", email="john@example.com", phone="9876543211")


@pytest.fixture
def other_user(db, password_hash):
    return _make_user(db, password_hash, name="Jane Smith", email="jane@example.com")


@pytest.fixture
def admin(db, password_hash):
    return _make_user(db, password_hash, name="Admin User", email="admin@freshwash.com", is_admin=True)


@pytest.fixture
def user_headers(user):
    return _auth(user)


@pytest.fixture
def other_headers(other_user):
    return _auth(other_user)


@pytest.fixture
def admin_headers(admin):
    return _auth(admin)


@pytest.fixture
def services(db):
    """The seeded catalog, keyed by service name."""
    return {s["name"]: s for s in seed_services(db)}


@pytest.fixture
def shipping_address():
    return {
        "name": "John Doe",
        "phone": "9876543211",
        "street": "456 Customer Street",
        "city": "Mumbai",
        "state": "Maharashtra",
        "zip_code": "400001",
    }


@pytest.fixture
def order_payload(services, shipping_address):
    """Two lines: Cotton Shirt wash x2 at 25, Formal Shirt iron x1 at 15."""
    return {
        "order_items": [
            {"service": str(services["Cotton Shirt"]["_id"]), "service_type": "wash", "quantity": 2, "price": 25.0},
            {"service": str(services["Formal Shirt"]["_id"]), "service_type": "iron", "quantity": 1, "price": 15.0},
        ],
        "shipping_address": shipping_address,
        "payment_method": "cod",
        "items_price": 65.0,
        "total_price": 65.0,
        "is_paid": False,
    }


@pytest.fixture
def order(client, user_headers, order_payload):
    response = client.post("/api/orders", json=order_payload, headers=user_headers)
    assert response.status_code == 201
    return response.json()["order"]
