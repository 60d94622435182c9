"""
Telemetry event log.

Every meaningful occurrence in a booking flow is recorded as an immutable TelemetryEvent.
All event creation should go through create_event to ensure consistent payload shape
and importance; emission goes through TelemetryLog.emit, which appends to an in-memory
log and then fans the event out to subscribers in subscription order.

Durability is a subscriber's concern (see telemetry_sink.DatabaseTelemetrySink).
"""

import logging
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from datetime import UTC, datetime
from typing import Any

from app.constants.event_types import (
    EVENT_AB_TEST_CONVERSION,
    EVENT_AB_TEST_IMPRESSION,
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_COMPLETED,
    EVENT_BOOKING_CONFIRMED,
    EVENT_BOOKING_FAILED,
    EVENT_BOOKING_STARTED,
    EVENT_BOOKING_VALIDATED,
    EVENT_BOUNCED_BOOKING,
    EVENT_CONFIDENCE_DROP,
    EVENT_CONFIDENCE_RECOVERY,
    EVENT_CONVERSION_OPTIMIZATION_FAILED,
    EVENT_CONVERSION_OPTIMIZATION_TRIGGERED,
    EVENT_CUSTOMER_CONTACT_COMPLETED,
    EVENT_CUSTOMER_CONTACT_INITIATED,
    EVENT_CUSTOMER_FEEDBACK_SUBMITTED,
    EVENT_CUSTOMER_REASSURANCE_REQUESTED,
    EVENT_DEADLINE_WARNING,
    EVENT_DROP_OFF_DETECTED,
    EVENT_EMAIL_NOTIFICATION_SENT,
    EVENT_HESITATION_DETECTED,
    EVENT_PAYMENT_PENDING,
    EVENT_PRICE_ACCEPTED,
    EVENT_PUSH_NOTIFICATION_SENT,
    EVENT_RESOURCE_ACCEPTED,
    EVENT_RESOURCE_ASSIGNED,
    EVENT_RESOURCE_MATCHED,
    EVENT_RISK_TRIGGERS_DETECTED,
    EVENT_SESSION_TIMEOUT,
    EVENT_SMS_NOTIFICATION_SENT,
    EVENT_SYSTEM_NOTIFICATION_SENT,
    EVENT_TRUST_INJECTION,
    EVENT_USER_ABANDON,
    IMPORTANCE_CRITICAL,
    IMPORTANCE_HIGH,
    IMPORTANCE_LOW,
    IMPORTANCE_MEDIUM,
    SOURCE_CUSTOMER,
)

logger = logging.getLogger(__name__)

# Static importance per event kind, used by consumers for alert prioritization
EVENT_IMPORTANCE = {
    EVENT_BOOKING_STARTED: IMPORTANCE_MEDIUM,
    EVENT_BOOKING_VALIDATED: IMPORTANCE_LOW,
    EVENT_RESOURCE_MATCHED: IMPORTANCE_MEDIUM,
    EVENT_RESOURCE_ASSIGNED: IMPORTANCE_HIGH,
    EVENT_RESOURCE_ACCEPTED: IMPORTANCE_HIGH,
    EVENT_BOOKING_CONFIRMED: IMPORTANCE_CRITICAL,
    EVENT_PAYMENT_PENDING: IMPORTANCE_HIGH,
    EVENT_BOOKING_COMPLETED: IMPORTANCE_CRITICAL,
    EVENT_BOOKING_CANCELLED: IMPORTANCE_HIGH,
    EVENT_BOOKING_FAILED: IMPORTANCE_CRITICAL,
    EVENT_TRUST_INJECTION: IMPORTANCE_MEDIUM,
    EVENT_HESITATION_DETECTED: IMPORTANCE_HIGH,
    EVENT_DEADLINE_WARNING: IMPORTANCE_HIGH,
    EVENT_PRICE_ACCEPTED: IMPORTANCE_MEDIUM,
    EVENT_CONFIDENCE_DROP: IMPORTANCE_HIGH,
    EVENT_CONFIDENCE_RECOVERY: IMPORTANCE_MEDIUM,
    EVENT_RISK_TRIGGERS_DETECTED: IMPORTANCE_HIGH,
    EVENT_DROP_OFF_DETECTED: IMPORTANCE_HIGH,
    EVENT_SESSION_TIMEOUT: IMPORTANCE_MEDIUM,
    EVENT_USER_ABANDON: IMPORTANCE_HIGH,
    EVENT_BOUNCED_BOOKING: IMPORTANCE_HIGH,
    EVENT_CUSTOMER_CONTACT_INITIATED: IMPORTANCE_MEDIUM,
    EVENT_CUSTOMER_CONTACT_COMPLETED: IMPORTANCE_LOW,
    EVENT_CUSTOMER_FEEDBACK_SUBMITTED: IMPORTANCE_MEDIUM,
    EVENT_CUSTOMER_REASSURANCE_REQUESTED: IMPORTANCE_HIGH,
    EVENT_SYSTEM_NOTIFICATION_SENT: IMPORTANCE_LOW,
    EVENT_PUSH_NOTIFICATION_SENT: IMPORTANCE_LOW,
    EVENT_SMS_NOTIFICATION_SENT: IMPORTANCE_MEDIUM,
    EVENT_EMAIL_NOTIFICATION_SENT: IMPORTANCE_LOW,
    EVENT_CONVERSION_OPTIMIZATION_TRIGGERED: IMPORTANCE_MEDIUM,
    EVENT_AB_TEST_IMPRESSION: IMPORTANCE_LOW,
    EVENT_AB_TEST_CONVERSION: IMPORTANCE_MEDIUM,
    EVENT_CONVERSION_OPTIMIZATION_FAILED: IMPORTANCE_HIGH,
}

# Event categories for filtering and analysis
EVENT_CATEGORIES = {
    "booking_flow": [
        EVENT_BOOKING_STARTED,
        EVENT_BOOKING_VALIDATED,
        EVENT_RESOURCE_MATCHED,
        EVENT_RESOURCE_ASSIGNED,
        EVENT_RESOURCE_ACCEPTED,
        EVENT_BOOKING_CONFIRMED,
        EVENT_PAYMENT_PENDING,
        EVENT_BOOKING_COMPLETED,
        EVENT_BOOKING_CANCELLED,
        EVENT_BOOKING_FAILED,
    ],
    "conversion_optimization": [
        EVENT_HESITATION_DETECTED,
        EVENT_TRUST_INJECTION,
        EVENT_CONFIDENCE_DROP,
        EVENT_CONFIDENCE_RECOVERY,
        EVENT_DEADLINE_WARNING,
        EVENT_PRICE_ACCEPTED,
        EVENT_RISK_TRIGGERS_DETECTED,
        EVENT_DROP_OFF_DETECTED,
        EVENT_BOUNCED_BOOKING,
        EVENT_USER_ABANDON,
        EVENT_SESSION_TIMEOUT,
        EVENT_CUSTOMER_REASSURANCE_REQUESTED,
        EVENT_CONVERSION_OPTIMIZATION_TRIGGERED,
        EVENT_AB_TEST_IMPRESSION,
        EVENT_AB_TEST_CONVERSION,
        EVENT_CONVERSION_OPTIMIZATION_FAILED,
    ],
    "communication": [
        EVENT_CUSTOMER_CONTACT_INITIATED,
        EVENT_CUSTOMER_CONTACT_COMPLETED,
        EVENT_CUSTOMER_FEEDBACK_SUBMITTED,
        EVENT_SYSTEM_NOTIFICATION_SENT,
        EVENT_PUSH_NOTIFICATION_SENT,
        EVENT_SMS_NOTIFICATION_SENT,
        EVENT_EMAIL_NOTIFICATION_SENT,
    ],
}

EVENT_DESCRIPTIONS = {
    EVENT_BOOKING_STARTED: "Customer initiates a booking",
    EVENT_BOOKING_VALIDATED: "System validates booking inputs",
    EVENT_RESOURCE_MATCHED: "Suitable technician found",
    EVENT_RESOURCE_ASSIGNED: "Technician assigned to booking",
    EVENT_RESOURCE_ACCEPTED: "Technician accepts the booking",
    EVENT_BOOKING_CONFIRMED: "Booking confirmed by both parties",
    EVENT_PAYMENT_PENDING: "Payment held in escrow",
    EVENT_BOOKING_COMPLETED: "Service completed successfully",
    EVENT_BOOKING_CANCELLED: "Booking cancelled",
    EVENT_BOOKING_FAILED: "Booking failed due to system issues",
    EVENT_TRUST_INJECTION: "Trust message injected during booking",
    EVENT_HESITATION_DETECTED: "Customer hesitation detected",
    EVENT_DEADLINE_WARNING: "Deadline risk detected and warned",
    EVENT_PRICE_ACCEPTED: "Customer accepts pricing",
    EVENT_CONFIDENCE_DROP: "Customer confidence level drops",
    EVENT_CONFIDENCE_RECOVERY: "Customer confidence level recovers",
    EVENT_RISK_TRIGGERS_DETECTED: "Multiple risk triggers detected",
    EVENT_DROP_OFF_DETECTED: "Customer disengagement detected",
    EVENT_SESSION_TIMEOUT: "Customer session times out",
    EVENT_USER_ABANDON: "User abandons the booking process",
    EVENT_BOUNCED_BOOKING: "Customer bounces from pricing pages",
    EVENT_CUSTOMER_CONTACT_INITIATED: "Customer initiates contact",
    EVENT_CUSTOMER_CONTACT_COMPLETED: "Customer contact completed",
    EVENT_CUSTOMER_FEEDBACK_SUBMITTED: "Customer submits feedback",
    EVENT_CUSTOMER_REASSURANCE_REQUESTED: "Customer requests reassurance",
    EVENT_SYSTEM_NOTIFICATION_SENT: "System notification sent",
    EVENT_PUSH_NOTIFICATION_SENT: "Push notification sent",
    EVENT_SMS_NOTIFICATION_SENT: "SMS notification sent",
    EVENT_EMAIL_NOTIFICATION_SENT: "Email notification sent",
    EVENT_CONVERSION_OPTIMIZATION_TRIGGERED: "Conversion optimization triggered",
    EVENT_AB_TEST_IMPRESSION: "A/B test impression recorded",
    EVENT_AB_TEST_CONVERSION: "A/B test conversion recorded",
    EVENT_CONVERSION_OPTIMIZATION_FAILED: "Conversion optimization failed",
}


@dataclass(frozen=True)
class TelemetryEvent:
    kind: str
    payload: Mapping[str, Any]
    event_id: str
    timestamp: datetime
    source: str
    importance: str
    context: str

    @property
    def transaction_id(self) -> str | None:
        return self.payload.get("transaction_id")

    @property
    def session_id(self) -> str | None:
        return self.payload.get("session_id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "payload": dict(self.payload),
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "importance": self.importance,
            "context": self.context,
        }


TelemetryListener = Callable[[TelemetryEvent], None]


def _resolve_correlation_id() -> str | None:
    """Use the request-scoped contextvar when one is set."""
    from app.middleware.correlation_id import get_correlation_id

    return get_correlation_id(None)


def create_event(
    kind: str,
    payload: dict[str, Any] | None = None,
    source: str = SOURCE_CUSTOMER,
    timestamp: datetime | None = None,
) -> TelemetryEvent:
    """
    Create a telemetry event with proper structure.

    Args:
        kind: Event kind (see app.constants.event_types)
        payload: Event data; copied and exposed read-only
        source: Actor that caused the event (customer or system)
        timestamp: Event time (defaults to now, UTC)

    Returns:
        Immutable TelemetryEvent with static importance for its kind; the payload is
        a read-only view, so a listener cannot change what later listeners see
    """
    normalized: dict[str, Any] = dict(payload) if payload else {}
    correlation_id = _resolve_correlation_id()
    if correlation_id is not None:
        normalized.setdefault("correlation_id", correlation_id)

    ts = timestamp or datetime.now(UTC)
    return TelemetryEvent(
        kind=kind,
        payload=MappingProxyType(normalized),
        event_id=f"evt_{uuid.uuid4().hex}",
        timestamp=ts,
        source=source,
        importance=EVENT_IMPORTANCE.get(kind, IMPORTANCE_LOW),
        context=f"{kind}_{int(ts.timestamp() * 1000)}",
    )


class TelemetryLog:
    """
    In-memory event log with synchronous subscriber fan-out.

    With max_events set the log keeps only the most recent events; subscribers
    still see every event.
    """

    def __init__(self, max_events: int | None = None) -> None:
        self._events: deque[TelemetryEvent] = deque(maxlen=max_events)
        self._listeners: list[TelemetryListener] = []

    def emit(self, event: TelemetryEvent) -> None:
        # Append first: a failing listener must never lose the event
        self._events.append(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Telemetry listener {getattr(listener, '__name__', listener)!r} failed "
                    f"for event {event.event_id} ({event.kind}): {e}",
                    exc_info=True,
                )

    def subscribe(self, listener: TelemetryListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def events(self) -> list[TelemetryEvent]:
        return list(self._events)

    def events_for_transaction(self, transaction_id: str) -> list[TelemetryEvent]:
        return [e for e in self._events if e.transaction_id == transaction_id]

    def events_of_kind(self, kind: str) -> list[TelemetryEvent]:
        return [e for e in self._events if e.kind == kind]

    def discard_transaction(self, transaction_id: str) -> int:
        """Drop a transaction's events from the log. Returns the number removed."""
        kept = [e for e in self._events if e.transaction_id != transaction_id]
        removed = len(self._events) - len(kept)
        if removed:
            self._events = deque(kept, maxlen=self._events.maxlen)
        return removed

    def __len__(self) -> int:
        return len(self._events)
