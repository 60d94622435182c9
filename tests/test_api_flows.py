"""
Tests for the booking flow HTTP endpoints.
"""

from app.constants.stages import (
    STAGE_ACCEPTED,
    STAGE_ASSIGNED,
    STAGE_COMPLETED,
    STAGE_CONFIRMED,
    STAGE_ESCROW_PENDING,
    STAGE_INITIATED,
    STAGE_RESOURCE_MATCH,
    STAGE_VALIDATING,
)


def start_flow(client, tx="tx-api", session="sess-api"):
    response = client.post(
        "/flows",
        json={"transaction_id": tx, "customer_id": "cust-1", "session_id": session, "device_type": "mobile"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_initialize_flow(client):
    """POST /flows starts a booking and returns the booking_started event."""
    data = start_flow(client)
    assert data["success"] is True
    assert data["stage"] == STAGE_INITIATED
    assert [e["kind"] for e in data["telemetry_events"]] == ["booking_started"]


def test_initialize_duplicate_conflicts(client):
    start_flow(client)
    response = client.post(
        "/flows", json={"transaction_id": "tx-api", "customer_id": "c", "session_id": "s"}
    )
    assert response.status_code == 409
    assert "already exists" in response.json()["detail"]


def test_initialize_validation(client):
    """Missing required fields are rejected by body validation."""
    response = client.post("/flows", json={"transaction_id": "tx"})
    assert response.status_code == 422


def test_transition_and_get_flow(client):
    start_flow(client)

    response = client.post("/flows/tx-api/transition", json={"stage": STAGE_VALIDATING, "reason": "ok"})
    assert response.status_code == 200
    assert response.json()["stage"] == STAGE_VALIDATING

    flow = client.get("/flows/tx-api").json()
    assert flow["stage"] == STAGE_VALIDATING
    assert flow["previous_stage"] == STAGE_INITIATED
    assert flow["risk_level"] == "high"
    assert STAGE_RESOURCE_MATCH in flow["allowed_transitions"]
    assert flow["history"][0]["reason"] == "ok"
    assert flow["signals"]["device_type"] == "mobile"


def test_invalid_transition_returns_409(client):
    start_flow(client)
    response = client.post("/flows/tx-api/transition", json={"stage": STAGE_COMPLETED})
    assert response.status_code == 409
    assert "Invalid state transition" in response.json()["detail"]
    assert client.get("/flows/tx-api").json()["stage"] == STAGE_INITIATED


def test_unknown_transaction_returns_404(client):
    assert client.post("/flows/missing/transition", json={"stage": STAGE_VALIDATING}).status_code == 404
    assert client.get("/flows/missing").status_code == 404
    assert client.get("/flows/missing/events").status_code == 404
    assert client.get("/flows/missing/trust-history").status_code == 404


def test_confidence_update_returns_interventions(client):
    start_flow(client)
    client.post("/flows/tx-api/transition", json={"stage": STAGE_VALIDATING})

    response = client.post(
        "/flows/tx-api/confidence",
        json={"level": 45, "hesitation_points": ["price"], "risk_factors": ["new_customer"]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["trust_intervention"]["category"] == "transparency"
    assert [h["hook_id"] for h in data["conversion_hooks"]] == ["ch001"]
    assert len(client.get("/flows/tx-api/trust-history").json()) == 1


def test_confidence_out_of_range_is_422(client):
    start_flow(client)
    response = client.post("/flows/tx-api/confidence", json={"level": 101})
    assert response.status_code == 422


def test_views_and_signals(client):
    start_flow(client)

    signals = client.post("/flows/tx-api/signals", json={"estimated_cost": 20000, "deadline_hours": 48})
    assert signals.status_code == 200
    view = client.post("/flows/tx-api/views", json={"page_url": "/pricing", "view_name": "pricing"})
    assert view.status_code == 200

    flow = client.get("/flows/tx-api").json()
    assert flow["current_view"] == "pricing"
    assert flow["signals"]["estimated_cost"] == 20000
    assert flow["signals"]["device_type"] == "mobile"


def test_unknown_signal_field_is_422(client):
    start_flow(client)
    response = client.post("/flows/tx-api/signals", json={"colour": "blue"})
    assert response.status_code == 422


def test_complete_and_cancel(client):
    start_flow(client)
    for stage in (
        STAGE_VALIDATING,
        STAGE_RESOURCE_MATCH,
        STAGE_ASSIGNED,
        STAGE_ACCEPTED,
        STAGE_CONFIRMED,
        STAGE_ESCROW_PENDING,
    ):
        assert client.post("/flows/tx-api/transition", json={"stage": stage}).status_code == 200

    response = client.post("/flows/tx-api/complete")
    assert response.status_code == 200
    assert response.json()["stage"] == STAGE_COMPLETED

    assert client.post("/flows/tx-api/cancel", json={"reason": "late"}).status_code == 409
    assert client.post("/flows/tx-api/confidence", json={"level": 10}).status_code == 409


def test_cancel_without_body(client):
    start_flow(client)
    response = client.post("/flows/tx-api/cancel")
    assert response.status_code == 200
    assert response.json()["stage"] == "cancelled"


def test_hesitation_endpoint(client):
    start_flow(client)
    client.post("/flows/tx-api/confidence", json={"level": 80})
    client.post("/flows/tx-api/confidence", json={"level": 50})

    response = client.post("/flows/tx-api/hesitation")

    assert response.status_code == 200
    data = response.json()
    assert data["drop_off_event"]["type"] == "hesitated"
    assert "drop_off_detected" in [e["kind"] for e in data["telemetry_events"]]


def test_events_endpoint_carries_correlation_id(client):
    """Events created during a request carry that request's correlation id."""
    client.post(
        "/flows",
        json={"transaction_id": "tx-cid", "customer_id": "c", "session_id": "s"},
        headers={"X-Correlation-ID": "trace-42"},
    )

    events = client.get("/flows/tx-cid/events").json()

    assert events[0]["kind"] == "booking_started"
    assert events[0]["payload"]["correlation_id"] == "trace-42"
