from unittest.mock import patch

from app.core.config import settings


def test_health_endpoint(client):
    """Health reports ok and the engine switches."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["features"]["trust_injection_enabled"] is True
    assert data["features"]["telemetry_sink_enabled"] is False


def test_ready_without_sink_skips_database(client):
    """With the sink disabled readiness does not depend on the database."""
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "database": "disabled"}


def test_ready_with_sink_checks_database(client):
    with patch.object(settings, "telemetry_sink_enabled", True):
        response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"


def test_health_echoes_correlation_id(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers["X-Correlation-ID"] == "abc-123"


def test_health_generates_correlation_id(client):
    response = client.get("/health")
    assert len(response.headers["X-Correlation-ID"]) == 36


def test_oversized_correlation_id_is_replaced(client):
    response = client.get("/health", headers={"X-Correlation-ID": "x" * 200})
    assert response.headers["X-Correlation-ID"] != "x" * 200
