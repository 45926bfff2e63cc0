"""
Pytest fixtures for the cake shop API tests.

Every test gets a fresh in-memory Mongo (mongomock) wired into the app through
the ``get_db`` dependency, plus helpers to create users, catalog entries and cakes.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db, utcnow
from main import app
from security import create_token, hash_password


@pytest.fixture(scope='function')
def db():
    """Fresh database for each test."""
    database = mongomock.MongoClient()["cakeshop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture(scope='function')
def client(db):
    """Test client bound to the per-test database."""
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user with profile; returns (user_id, token)."""
    def _make(email="user@example.com", role="user", password="secret123", name="Test User",
              phone="9876543210", addresses=None):
        now = utcnow()
        inserted = db["user"].insert_one({
            "email": email,
            "hashed_password": hash_password(password),
            "role": role,
            "created_at": now,
        }).inserted_id
        db["profile"].insert_one({
            "user_id": str(inserted),
            "name": name,
            "phone": phone,
            "email": email,
            "preferences": [],
            "addresses": addresses or [],
            "created_at": now,
            "updated_at": now,
        })
        user = db["user"].find_one({"_id": inserted})
        return str(inserted), create_token(user)
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role="admin")


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def catalog(db):
    """One entry of every catalog kind a cake or customization refers to."""
    def insert(collection, name):
        return str(db[collection].insert_one({"name": name, "created_at": utcnow()}).inserted_id)

    return {
        "category_id": insert("category", "Birthday"),
        "sponge_type_id": insert("spongetype", "Vanilla"),
        "other_sponge_type_id": insert("spongetype", "Chocolate"),
        "shape_id": insert("shape", "Round"),
        "size_id": insert("size", "1kg"),
        "flavor_id": insert("flavor", "Strawberry"),
        "availability_id": insert("availability", "In Stock"),
        "delivery_option_id": insert("deliveryoption", "Same Day"),
        "tag_id": insert("tag", "Bestseller"),
        "image_id": str(db["image"].insert_one({
            "data": b"\x89PNG", "filename": "cake.png", "mime_type": "image/png", "size": 4,
        }).inserted_id),
    }


@pytest.fixture
def make_cake(db, catalog):
    """Insert a cake directly; returns its id."""
    counter = {"n": 0}

    def _make(price=500.0, stock=10, name=None):
        counter["n"] += 1
        doc = {
            "name": name or f"Cake {counter['n']}",
            "description": "A test cake",
            "price": price,
            "stock": stock,
            "category_id": catalog["category_id"],
            "image_ids": [catalog["image_id"]],
            "tag_ids": [],
            "flavor_ids": [catalog["flavor_id"]],
            "size_ids": [catalog["size_id"]],
            "sponge_type_id": catalog["sponge_type_id"],
            "shape_id": catalog["shape_id"],
            "dietary_preference_ids": [],
            "availability_id": catalog["availability_id"],
            "delivery_option_ids": [catalog["delivery_option_id"]],
            "created_at": utcnow(),
        }
        return str(db["cake"].insert_one(doc).inserted_id)
    return _make


@pytest.fixture
def customization(catalog):
    return {
        "sponge_type_id": catalog["sponge_type_id"],
        "shape_id": catalog["shape_id"],
        "size_id": catalog["size_id"],
        "flavor_id": catalog["flavor_id"],
        "inscription": "Happy Birthday",
    }
