"""
Tests for the health and readiness endpoints.
"""
from __future__ import annotations

from unittest.mock import patch


def test_ready_ok(app_client):
    """Test /ready returns ok when all services are healthy."""
    _app, client = app_client

    with patch("app.routes.core._redis_reachable", return_value=True):
        res = client.get("/ready")
        assert res.status_code == 200

        body = res.get_json()
        assert body["status"] == "ok"
        assert body["checks"] == {"db": "ok", "redis": "ok"}


def test_ready_redis_down(app_client):
    """Test /ready returns 503 when Redis does not answer."""
    _app, client = app_client

    with patch("app.routes.core._redis_reachable", return_value=False):
        res = client.get("/ready")
        assert res.status_code == 503

        body = res.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["redis"] == "error"
        assert body["checks"]["db"] == "ok"


def test_ready_without_redis_url(app_client):
    """No REDIS_URL means there is nothing to ping."""
    _app, client = app_client
    res = client.get("/ready")
    assert res.status_code == 200

    from app.routes.core import _redis_reachable

    assert _redis_reachable("") is True


def test_health_and_version(app_client):
    _app, client = app_client

    res = client.get("/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "ok"
    assert "cache" in body
    assert "db" in body

    res = client.get("/version")
    assert res.status_code == 200
    assert res.get_json()["env"] == "test"


def test_request_id_and_security_headers(app_client):
    _app, client = app_client
    res = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert res.headers.get("X-Request-ID") == "req-123"
    assert res.headers.get("X-Content-Type-Options") == "nosniff"
