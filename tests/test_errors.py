import pytest
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

import config
import database
import tours
from errors import AppError, to_app_error
from main import app


@pytest.fixture
def production(monkeypatch):
    monkeypatch.setattr(config, "APP_ENV", "production")


@pytest.fixture
def broken_tours(monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(tours.handlers, "get_all", explode)


def test_app_error_status():
    assert AppError("nope", 404).status == "fail"
    assert AppError("broken", 500).status == "error"
    assert AppError("nope", 400).is_operational


def test_duplicate_key_message_from_details():
    err = DuplicateKeyError("E11000 duplicate key error", 11000, {"keyValue": {"name": "The Forest Hiker"}})
    app_error = to_app_error(err)
    assert app_error.status_code == 400
    assert app_error.message == "The name 'The Forest Hiker' already exists. Please use a different name."


def test_duplicate_key_message_from_text():
    err = DuplicateKeyError('E11000 duplicate key error collection: natours.tour index: name_1 dup key: { name: "The Forest Hiker" }', 11000)
    assert "The Forest Hiker" in to_app_error(err).message


def test_duplicate_key_without_detail():
    assert to_app_error(DuplicateKeyError("E11000 Duplicate Key Error", 11000)).message == (
        "Duplicate field value. Please use another value."
    )


def test_unknown_exception_is_not_operational():
    assert to_app_error(RuntimeError("x")) is None


def test_unmatched_route(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.json()["message"] == "Can't find /api/v1/nowhere on this server!"


def test_method_not_allowed(client):
    res = client.put("/api/v1/tours")
    assert res.status_code == 405
    assert res.json()["status"] == "fail"


def test_development_response_carries_details(client):
    res = client.get("/api/v1/tours/abc")
    body = res.json()
    assert res.status_code == 400
    assert body["status"] == "fail"
    assert body["message"] == "Invalid _id: abc."
    assert body["error"]["name"] == "CastError"
    assert body["stack"]


def test_production_response_is_minimal(client, production):
    res = client.get("/api/v1/tours/abc")
    assert res.status_code == 400
    assert res.json() == {"status": "fail", "message": "Invalid _id: abc."}


def test_production_validation_error(client, production, make_user, auth_header):
    admin = make_user(role="admin")
    res = client.post("/api/v1/tours", json={"name": "x"}, headers=auth_header(admin))
    assert res.status_code == 400
    body = res.json()
    assert set(body) == {"status", "message"}
    assert body["message"].startswith("Invalid input data.")


def test_production_hides_unknown_errors(db, production, broken_tours):
    client = TestClient(app, raise_server_exceptions=False)
    res = client.get("/api/v1/tours")
    assert res.status_code == 500
    assert res.json() == {"status": "error", "message": "Something went very wrong!"}


def test_development_shows_unknown_errors(db, broken_tours):
    client = TestClient(app, raise_server_exceptions=False)
    res = client.get("/api/v1/tours")
    assert res.status_code == 500
    body = res.json()
    assert body["status"] == "error"
    assert body["message"] == "kaboom"
    assert body["error"]["name"] == "RuntimeError"


def test_database_unavailable(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    client = TestClient(app, raise_server_exceptions=False)
    res = client.get("/api/v1/tours")
    assert res.status_code == 500
    assert "Database not available" in res.json()["message"]
