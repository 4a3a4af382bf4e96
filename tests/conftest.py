from datetime import date, datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import listings
from auth import Caller, create_access_token, hash_password
from database import create_document, ensure_indexes, get_db
from main import app
from schemas import ListingCreate

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)

# far enough ahead that "today" in UTC never catches up during a test run
SOON = date.today() + timedelta(days=30)


def insert_user(db, name, email, role):
    doc = {
        "name": name,
        "email": email,
        "phone": None,
        "role": role,
        "bio": None,
        "avatar_url": None,
        "password_hash": PASSWORD_HASH,
        "is_verified": False,
        "is_active": True,
        "joined_at": datetime.now(timezone.utc),
    }
    create_document(db, "user", doc)
    return Caller(id=str(doc["_id"]), role=role, name=name, email=email)


def auth_headers(caller, expires_delta=None):
    token = create_access_token({"sub": caller.id, "role": caller.role}, expires_delta)
    return {"Authorization": f"Bearer {token}"}


def listing_payload(**overrides):
    payload = {
        "title": "Loft by the river",
        "description": "Quiet loft with a view over the water.",
        "price": 150,
        "location": {
            "address": "1 Quay St",
            "city": "Portland",
            "state": "OR",
            "country": "USA",
            "zipCode": "97201",
        },
        "amenities": ["WiFi", "Kitchen"],
        "propertyType": "apartment",
        "roomType": "entire_place",
        "maxGuests": 4,
        "bedrooms": 2,
        "bathrooms": 1,
    }
    payload.update(overrides)
    return payload


def make_listing(db, host, **overrides):
    return listings.create_listing(db, host, ListingCreate(**listing_payload(**overrides)))


@pytest.fixture
def db():
    database = mongomock.MongoClient()["stayfinder_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def host(db):
    return insert_user(db, "Hana Host", "hana@example.com", "host")


@pytest.fixture
def guest(db):
    return insert_user(db, "Gus Guest", "gus@example.com", "guest")


@pytest.fixture
def stranger(db):
    return insert_user(db, "Sam Stranger", "sam@example.com", "guest")


@pytest.fixture
def listing(db, host):
    return make_listing(db, host)
