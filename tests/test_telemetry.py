"""
Tests for telemetry event creation and the in-memory event log.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from app.constants.event_types import (
    EVENT_BOOKING_CONFIRMED,
    EVENT_BOOKING_STARTED,
    EVENT_TRUST_INJECTION,
    IMPORTANCE_CRITICAL,
    IMPORTANCE_LOW,
    IMPORTANCE_MEDIUM,
    SOURCE_SYSTEM,
)
from app.middleware.correlation_id import reset_correlation_id, set_correlation_id
from app.services.telemetry import (
    EVENT_CATEGORIES,
    EVENT_DESCRIPTIONS,
    EVENT_IMPORTANCE,
    TelemetryLog,
    create_event,
)


def test_create_event_shape():
    """Events carry static importance, a unique id and a kind/time context."""
    ts = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)
    event = create_event(
        EVENT_BOOKING_CONFIRMED,
        {"transaction_id": "tx1", "session_id": "s1"},
        source=SOURCE_SYSTEM,
        timestamp=ts,
    )

    assert event.importance == IMPORTANCE_CRITICAL
    assert event.event_id.startswith("evt_")
    assert event.context == f"{EVENT_BOOKING_CONFIRMED}_{int(ts.timestamp() * 1000)}"
    assert event.transaction_id == "tx1"
    assert event.session_id == "s1"
    assert event.source == SOURCE_SYSTEM
    assert event.to_dict()["timestamp"] == ts.isoformat()


def test_event_ids_are_unique():
    assert create_event(EVENT_BOOKING_STARTED).event_id != create_event(EVENT_BOOKING_STARTED).event_id


def test_unknown_kind_defaults_to_low_importance():
    assert create_event("custom_kind").importance == IMPORTANCE_LOW


def test_payload_is_copied():
    """Mutating the caller's dict after creation does not change the event."""
    payload = {"transaction_id": "tx1"}
    event = create_event(EVENT_TRUST_INJECTION, payload)
    payload["transaction_id"] = "changed"
    assert event.payload["transaction_id"] == "tx1"
    assert event.importance == IMPORTANCE_MEDIUM


def test_correlation_id_attached_when_set():
    """The request correlation id is added to the payload when one is active."""
    token = set_correlation_id("cid-123")
    try:
        event = create_event(EVENT_BOOKING_STARTED, {})
    finally:
        reset_correlation_id(token)

    assert event.payload["correlation_id"] == "cid-123"
    assert "correlation_id" not in create_event(EVENT_BOOKING_STARTED, {}).payload


def test_listeners_notified_in_subscription_order():
    log = TelemetryLog()
    calls = []
    log.subscribe(lambda e: calls.append(("first", e.kind)))
    log.subscribe(lambda e: calls.append(("second", e.kind)))

    log.emit(create_event(EVENT_BOOKING_STARTED))

    assert calls == [("first", EVENT_BOOKING_STARTED), ("second", EVENT_BOOKING_STARTED)]


def test_failing_listener_does_not_block_log_or_others():
    """The event is appended and later listeners still run when one listener raises."""
    log = TelemetryLog()
    broken = MagicMock(side_effect=RuntimeError("sink down"))
    healthy = MagicMock()
    log.subscribe(broken)
    log.subscribe(healthy)

    event = create_event(EVENT_BOOKING_STARTED)
    log.emit(event)

    assert log.events() == [event]
    healthy.assert_called_once_with(event)


def test_payload_is_read_only():
    """A listener cannot rewrite what the log and later listeners see."""
    event = create_event(EVENT_BOOKING_STARTED, {"transaction_id": "tx1"})
    with pytest.raises(TypeError):
        event.payload["transaction_id"] = "changed"
    assert event.to_dict()["payload"] == {"transaction_id": "tx1"}


def test_log_keeps_only_the_most_recent_events():
    """A bounded log drops its oldest events; subscribers still see all of them."""
    log = TelemetryLog(max_events=2)
    listener = MagicMock()
    log.subscribe(listener)

    for tx in ("a", "b", "c"):
        log.emit(create_event(EVENT_BOOKING_STARTED, {"transaction_id": tx}))

    assert [e.transaction_id for e in log.events()] == ["b", "c"]
    assert listener.call_count == 3


def test_discard_transaction():
    log = TelemetryLog(max_events=10)
    log.emit(create_event(EVENT_BOOKING_STARTED, {"transaction_id": "a"}))
    log.emit(create_event(EVENT_BOOKING_STARTED, {"transaction_id": "b"}))
    log.emit(create_event(EVENT_TRUST_INJECTION, {"transaction_id": "a"}))

    assert log.discard_transaction("a") == 2
    assert log.discard_transaction("a") == 0
    assert [e.transaction_id for e in log.events()] == ["b"]

    for _ in range(12):
        log.emit(create_event(EVENT_BOOKING_STARTED, {"transaction_id": "c"}))
    assert len(log) == 10


def test_unsubscribe():
    log = TelemetryLog()
    listener = MagicMock()
    unsubscribe = log.subscribe(listener)
    unsubscribe()
    unsubscribe()

    log.emit(create_event(EVENT_BOOKING_STARTED))

    listener.assert_not_called()


def test_log_queries():
    log = TelemetryLog()
    log.emit(create_event(EVENT_BOOKING_STARTED, {"transaction_id": "a"}))
    log.emit(create_event(EVENT_TRUST_INJECTION, {"transaction_id": "b"}))
    log.emit(create_event(EVENT_TRUST_INJECTION, {"transaction_id": "a"}))

    assert len(log) == 3
    assert [e.kind for e in log.events_for_transaction("a")] == [
        EVENT_BOOKING_STARTED,
        EVENT_TRUST_INJECTION,
    ]
    assert len(log.events_of_kind(EVENT_TRUST_INJECTION)) == 2


def test_catalogue_is_consistent():
    """Every categorized kind has an importance and a description."""
    for kinds in EVENT_CATEGORIES.values():
        for kind in kinds:
            assert kind in EVENT_IMPORTANCE
            assert kind in EVENT_DESCRIPTIONS
