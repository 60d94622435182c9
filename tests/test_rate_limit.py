"""
Tests for admin rate limiting.
"""

from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.middleware.rate_limit import RateLimitMiddleware, SlidingWindowLimiter


class ManualTime:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def test_limiter_allows_up_to_limit_then_blocks():
    limiter = SlidingWindowLimiter(clock=ManualTime())
    assert [limiter.allow("ip", 2, 60) for _ in range(3)] == [True, True, False]
    assert limiter.allow("other-ip", 2, 60) is True


def test_limiter_window_slides():
    clock = ManualTime()
    limiter = SlidingWindowLimiter(clock=clock)
    limiter.allow("ip", 1, 60)
    assert limiter.allow("ip", 1, 60) is False
    clock.t += 61
    assert limiter.allow("ip", 1, 60) is True


def build_app():
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, rate_limited_paths=["/admin"])

    @app.get("/admin/ping")
    def admin_ping():
        return {"ok": True}

    @app.get("/public")
    def public():
        return {"ok": True}

    return app


def test_middleware_limits_only_matching_paths():
    """Admin paths get 429 once over the limit; other paths are untouched."""
    with patch("app.middleware.rate_limit.settings.rate_limit_enabled", True), patch(
        "app.middleware.rate_limit.settings.rate_limit_requests", 2
    ):
        client = TestClient(build_app())
        statuses = [client.get("/admin/ping").status_code for _ in range(3)]
        assert statuses == [200, 200, 429]
        assert client.get("/public").status_code == 200

        blocked = client.get("/admin/ping")
        assert blocked.headers["Retry-After"] == "60"
        assert blocked.json()["error"] == "Rate limit exceeded"


def test_middleware_disabled():
    with patch("app.middleware.rate_limit.settings.rate_limit_enabled", False), patch(
        "app.middleware.rate_limit.settings.rate_limit_requests", 1
    ):
        client = TestClient(build_app())
        assert all(client.get("/admin/ping").status_code == 200 for _ in range(3))


def test_forwarded_for_is_used_as_key():
    with patch("app.middleware.rate_limit.settings.rate_limit_enabled", True), patch(
        "app.middleware.rate_limit.settings.rate_limit_requests", 1
    ):
        client = TestClient(build_app())
        assert client.get("/admin/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
        assert client.get("/admin/ping", headers={"X-Forwarded-For": "2.2.2.2, 10.0.0.1"}).status_code == 200
        assert client.get("/admin/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429
