"""
Tests for admin authentication.
"""

from unittest.mock import patch

import pytest

from app.api.auth import get_admin_auth


def test_admin_endpoint_without_api_key_works_in_dev_mode(client):
    """Admin endpoints are open when no admin_api_key is configured (dev mode)."""
    response = client.get("/admin/hooks")
    assert response.status_code == 200


def test_admin_endpoint_with_correct_api_key(client):
    with patch("app.api.auth.settings.admin_api_key", "test-secret-key-123"):
        response = client.get("/admin/session-stats")
        assert response.status_code == 401
        assert "missing" in response.json()["detail"].lower()

        response = client.get(
            "/admin/session-stats", headers={"X-Admin-API-Key": "test-secret-key-123"}
        )
        assert response.status_code == 200


def test_admin_endpoint_with_wrong_api_key(client):
    with patch("app.api.auth.settings.admin_api_key", "test-secret-key-123"):
        response = client.get("/admin/hooks", headers={"X-Admin-API-Key": "wrong-key"})
        assert response.status_code == 403
        assert "Invalid" in response.json()["detail"]


def test_flow_endpoints_do_not_need_api_key(client):
    with patch("app.api.auth.settings.admin_api_key", "test-secret-key-123"):
        response = client.post(
            "/flows", json={"transaction_id": "tx", "customer_id": "c", "session_id": "s"}
        )
        assert response.status_code == 201


def test_production_without_key_refuses():
    """In production a missing admin key is a configuration error, not open access."""
    with patch("app.api.auth.settings.app_env", "production"), patch(
        "app.api.auth.settings.admin_api_key", None
    ):
        with pytest.raises(RuntimeError, match="ADMIN_API_KEY"):
            get_admin_auth(None)
