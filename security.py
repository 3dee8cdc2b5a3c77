"""
Security middleware and payload sanitization.

- security headers on every response
- fixed-window rate limiting per client IP on /api paths
- request body size cap
- NoSQL-injection and XSS scrubbing of write payloads
"""

import html
import ipaddress
import logging
import threading
import time
from typing import Any, Dict, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from database import utcnow

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-XSS-Protection": "0",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' https://js.stripe.com; "
        "frame-src 'self' https://js.stripe.com; img-src 'self' data: blob:; "
        "object-src 'none'"
    ),
}

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again in an hour!"
UNESCAPED_FIELDS = ("password", "password_confirm", "password_current")
TRUSTED_PROXY_NETWORKS = tuple(
    ipaddress.ip_network(n)
    for n in (
        "127.0.0.0/8", "::1/128",
        "169.254.0.0/16", "fe80::/10",
        "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7",
    )
)


def is_trusted_proxy(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(address in network for network in TRUSTED_PROXY_NETWORKS)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.request_time = utcnow().isoformat()
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        response.headers["X-Request-Time"] = request.state.request_time
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed window counter keyed by client IP.

    X-Forwarded-For is only honoured when the direct peer sits in
    TRUSTED_PROXY_NETWORKS.
    """

    def __init__(self, app, max_requests: int = 100, window_seconds: int = 3600, prefix: str = "/api"):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._last_sweep = time.monotonic()
        self._lock = threading.Lock()

    def _client_key(self, request: Request) -> str:
        peer = request.client.host if request.client else "unknown"
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded and is_trusted_proxy(peer):
            return forwarded.split(",")[0].strip()
        return peer

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        expired = [k for k, (start, _) in self._hits.items() if now - start >= self.window_seconds]
        for key in expired:
            del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str) -> Tuple[bool, int]:
        now = time.monotonic()
        with self._lock:
            self._sweep(now)
            window_start, count = self._hits.get(key, (now, 0))
            if now - window_start >= self.window_seconds:
                window_start, count = now, 0
            count += 1
            self._hits[key] = (window_start, count)
        return count <= self.max_requests, max(self.max_requests - count, 0)

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.prefix):
            return await call_next(request)
        key = self._client_key(request)
        allowed, remaining = self.hit(key)
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
            response = JSONResponse(
                status_code=429, content={"status": "fail", "message": RATE_LIMIT_MESSAGE}
            )
        else:
            response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_bytes: int = 10240, exempt_paths: Tuple[str, ...] = ()):
        super().__init__(app)
        self.max_bytes = max_bytes
        self.exempt_paths = exempt_paths

    async def dispatch(self, request: Request, call_next):
        length = request.headers.get("content-length")
        if (
            length
            and length.isdigit()
            and int(length) > self.max_bytes
            and request.url.path not in self.exempt_paths
        ):
            return JSONResponse(
                status_code=413, content={"status": "fail", "message": "Request body too large"}
            )
        return await call_next(request)


def sanitize_payload(value: Any, key: str = "") -> Any:
    """Strip operator-like keys and escape markup in string values."""
    if isinstance(value, dict):
        return {
            k: sanitize_payload(v, k)
            for k, v in value.items()
            if not (isinstance(k, str) and (k.startswith("$") or "." in k))
        }
    if isinstance(value, list):
        return [sanitize_payload(v, key) for v in value]
    if isinstance(value, str) and key not in UNESCAPED_FIELDS:
        return html.escape(value, quote=False)
    return value
