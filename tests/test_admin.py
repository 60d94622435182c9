"""
Tests for the admin endpoints: stats, hook management, cleanup.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

from app.core.config import settings
from app.db.models import TelemetryEventRecord


def start_flow(client, tx="tx-admin", session="sess-admin"):
    response = client.post(
        "/flows", json={"transaction_id": tx, "customer_id": "c", "session_id": session}
    )
    assert response.status_code == 201


def test_session_stats_empty(client):
    """With no sessions the completion rate is 100."""
    response = client.get("/admin/session-stats")
    assert response.status_code == 200
    data = response.json()
    assert data["total_sessions"] == 0
    assert data["completion_rate"] == 100.0
    assert data["active_transactions"] == 0


def test_session_stats_after_cancel(client):
    start_flow(client)
    client.post("/flows/tx-admin/cancel")

    data = client.get("/admin/session-stats").json()

    assert data["total_sessions"] == 1
    assert data["completed_sessions"] == 1
    assert data["archived_transactions"] == 1


def test_detection_stats(client):
    start_flow(client)
    client.post("/flows/tx-admin/confidence", json={"level": 90})
    client.post("/flows/tx-admin/confidence", json={"level": 40})
    client.post("/flows/tx-admin/hesitation")

    data = client.get("/admin/detection-stats").json()

    assert data["hesitations"] == 1
    assert data["detection_events"] == 1


def test_list_hooks(client):
    hooks = client.get("/admin/hooks").json()
    assert len(hooks) == 10
    assert hooks[0]["id"] == "ch001"
    assert all(h["enabled"] for h in hooks)


def test_disable_enable_and_remove_hook(client):
    assert client.post("/admin/hooks/ch001/disable").json()["enabled"] is False
    hooks = {h["id"]: h for h in client.get("/admin/hooks").json()}
    assert hooks["ch001"]["enabled"] is False

    assert client.post("/admin/hooks/ch001/enable").json()["enabled"] is True

    assert client.delete("/admin/hooks/ch001").status_code == 200
    assert client.delete("/admin/hooks/ch001").status_code == 404
    assert client.post("/admin/hooks/ch001/enable").status_code == 404
    assert len(client.get("/admin/hooks").json()) == 9


def test_disabled_hook_no_longer_fires(client):
    client.post("/admin/hooks/ch001/disable")
    start_flow(client)

    data = client.post(
        "/flows/tx-admin/confidence", json={"level": 50, "hesitation_points": ["price"]}
    ).json()

    assert "ch001" not in [h["hook_id"] for h in data["conversion_hooks"]]


def test_session_cleanup(client):
    start_flow(client)
    client.post("/flows/tx-admin/cancel")

    # Nothing is old enough with the default max age
    assert client.post("/admin/sessions/cleanup").json()["removed"] == 0
    response = client.post("/admin/sessions/cleanup", json={"max_age_seconds": 0})
    assert response.status_code == 200
    assert response.json()["removed"] == 1
    assert client.get("/admin/session-stats").json()["total_sessions"] == 0


def test_retention_cleanup(client, db):
    now = datetime.now(UTC)
    db.add_all(
        [
            TelemetryEventRecord(
                event_id="evt_old", kind="booking_started", source="customer",
                importance="medium", created_at=now - timedelta(days=120),
            ),
            TelemetryEventRecord(
                event_id="evt_new", kind="booking_started", source="customer",
                importance="medium", created_at=now - timedelta(days=1),
            ),
        ]
    )
    db.commit()

    with patch.object(settings, "telemetry_sink_enabled", True):
        response = client.post("/admin/events/retention-cleanup", json={"retention_days": 90})
        remaining = client.get("/admin/events").json()

    assert response.status_code == 200
    assert response.json()["removed"] == 1
    assert [r["event_id"] for r in remaining] == ["evt_new"]


def test_persisted_events_with_sink_disabled(client):
    """Without the durable sink there is nothing persisted to list or clean up."""
    assert settings.telemetry_sink_enabled is False

    events = client.get("/admin/events")
    assert events.status_code == 200
    assert events.json() == []

    cleanup = client.post("/admin/events/retention-cleanup", json={"retention_days": 30})
    assert cleanup.status_code == 409
    assert "disabled" in cleanup.json()["detail"]
