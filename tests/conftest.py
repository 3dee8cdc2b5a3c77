import os

os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_MAX", "100000")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from auth import sign_token
from main import app
from models import Tour, User

PASSWORD = "pass1234"


@pytest.fixture
def db(monkeypatch):
    test_db = mongomock.MongoClient()["natours_test"]
    monkeypatch.setattr(database, "db", test_db)
    database.ensure_indexes()
    return test_db


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="user", name=None, email=None, password=PASSWORD):
        counter["n"] += 1
        n = counter["n"]
        return User.create({
            "name": name or f"Test User {n}",
            "email": email or f"user{n}@example.com",
            "role": role,
            "password": password,
            "password_confirm": password,
        })

    return _make


@pytest.fixture
def auth_header():
    def _header(user):
        return {"Authorization": f"Bearer {sign_token(user['_id'])}"}

    return _header


@pytest.fixture
def make_tour(db):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"The Test Tour Number {counter['n']}",
            "duration": 7,
            "max_group_size": 10,
            "difficulty": "easy",
            "price": 500,
            "summary": "A tour used by the test suite",
            "image_cover": "tour-cover.jpg",
        }
        data.update(overrides)
        return Tour.create(data)

    return _make
