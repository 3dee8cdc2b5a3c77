from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

import security
from security import (
    RATE_LIMIT_MESSAGE,
    SECURITY_HEADERS,
    RateLimitMiddleware,
    is_trusted_proxy,
    sanitize_payload,
)


def limited_app(max_requests=2):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, max_requests=max_requests, window_seconds=3600)

    @app.get("/api/ping")
    def ping():
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


def test_security_headers(client):
    res = client.get("/")
    for name, value in SECURITY_HEADERS.items():
        assert res.headers[name] == value
    assert res.headers["X-Request-Time"]


def test_rate_limit_blocks_after_max():
    client = TestClient(limited_app(max_requests=2))
    first = client.get("/api/ping")
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert client.get("/api/ping").status_code == 200
    res = client.get("/api/ping")
    assert res.status_code == 429
    assert res.json()["message"] == RATE_LIMIT_MESSAGE


def test_rate_limit_is_per_client(monkeypatch):
    monkeypatch.setattr(RateLimitMiddleware, "_client_key", lambda self, request: request.headers["x-client"])
    client = TestClient(limited_app(max_requests=1))
    assert client.get("/api/ping", headers={"X-Client": "a"}).status_code == 200
    assert client.get("/api/ping", headers={"X-Client": "a"}).status_code == 429
    assert client.get("/api/ping", headers={"X-Client": "b"}).status_code == 200


def test_rotating_forwarded_for_does_not_bypass_limit():
    client = TestClient(limited_app(max_requests=2))
    statuses = [
        client.get("/api/ping", headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
        for i in range(5)
    ]
    assert statuses == [200, 200, 429, 429, 429]


def make_request(peer, forwarded=None):
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request({"type": "http", "method": "GET", "path": "/api/ping", "headers": headers, "client": (peer, 5000)})


def test_forwarded_for_only_trusted_from_proxies():
    limiter = RateLimitMiddleware(FastAPI())
    assert limiter._client_key(make_request("127.0.0.1", "203.0.113.7, 10.0.0.1")) == "203.0.113.7"
    assert limiter._client_key(make_request("10.1.2.3", "203.0.113.7")) == "203.0.113.7"
    assert limiter._client_key(make_request("198.51.100.4", "203.0.113.7")) == "198.51.100.4"
    assert limiter._client_key(make_request("198.51.100.4")) == "198.51.100.4"


def test_is_trusted_proxy():
    assert is_trusted_proxy("127.0.0.1")
    assert is_trusted_proxy("::1")
    assert is_trusted_proxy("fd12:3456::1")
    assert is_trusted_proxy("169.254.10.1")
    assert not is_trusted_proxy("8.8.8.8")
    assert not is_trusted_proxy("testclient")


def test_expired_windows_are_evicted(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr(security.time, "monotonic", lambda: clock["now"])
    limiter = RateLimitMiddleware(FastAPI(), max_requests=5, window_seconds=60)
    for i in range(50):
        limiter.hit(f"client-{i}")
    assert len(limiter._hits) == 50

    clock["now"] += 61
    assert limiter.hit("late-client") == (True, 4)
    assert list(limiter._hits) == ["late-client"]


def test_rate_limit_only_applies_to_api():
    client = TestClient(limited_app(max_requests=1))
    for _ in range(3):
        assert client.get("/health").status_code == 200


def test_large_body_rejected(client):
    res = client.post(
        "/api/v1/users/login",
        content=b"x" * 20000,
        headers={"Content-Type": "application/json"},
    )
    assert res.status_code == 413


def test_webhook_is_exempt_from_body_limit(client):
    res = client.post(
        "/webhook-checkout",
        content=b"x" * 20000,
        headers={"Content-Type": "application/json", "Stripe-Signature": "t=1,v1=abc"},
    )
    assert res.status_code == 400


def test_sanitize_strips_operators_and_escapes():
    dirty = {
        "email": {"$gt": ""},
        "name": "<b>Jonas</b>",
        "a.b": 1,
        "$where": "sleep(1000)",
        "tags": ["<i>x</i>", 3],
        "password": "<secret>",
    }
    assert sanitize_payload(dirty) == {
        "email": {},
        "name": "&lt;b&gt;Jonas&lt;/b&gt;",
        "tags": ["&lt;i&gt;x&lt;/i&gt;", 3],
        "password": "<secret>",
    }
