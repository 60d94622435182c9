"""
Durable telemetry sink.

DatabaseTelemetrySink is a TelemetryLog subscriber that writes one TelemetryEventRecord
row per event. It is off by default (TELEMETRY_SINK_ENABLED); the in-memory log stays
the source of truth for the engines, and a failing write is isolated by TelemetryLog.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.models import TelemetryEventRecord
from app.services.telemetry import TelemetryEvent

logger = logging.getLogger(__name__)

# Default retention: delete events older than this many days
DEFAULT_RETENTION_DAYS = 90


def record_from_event(event: TelemetryEvent) -> TelemetryEventRecord:
    payload = dict(event.payload)
    return TelemetryEventRecord(
        event_id=event.event_id,
        kind=event.kind,
        transaction_id=event.transaction_id,
        session_id=event.session_id,
        source=event.source,
        importance=event.importance,
        context=event.context,
        correlation_id=payload.get("correlation_id"),
        payload=payload or None,
        created_at=event.timestamp,
    )


class DatabaseTelemetrySink:
    """Telemetry listener persisting each event in its own short-lived session."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def __call__(self, event: TelemetryEvent) -> None:
        db = self._session_factory()
        try:
            db.add(record_from_event(event))
            db.commit()
        finally:
            db.close()


def list_events(
    db: Session, transaction_id: str | None = None, kind: str | None = None, limit: int = 100
) -> list[TelemetryEventRecord]:
    """Persisted events, oldest first, optionally filtered by transaction and kind."""
    stmt = select(TelemetryEventRecord).order_by(
        TelemetryEventRecord.created_at, TelemetryEventRecord.id
    )
    if transaction_id:
        stmt = stmt.where(TelemetryEventRecord.transaction_id == transaction_id)
    if kind:
        stmt = stmt.where(TelemetryEventRecord.kind == kind)
    stmt = stmt.limit(max(0, min(limit, 1000)))
    return list(db.execute(stmt).scalars().all())


def cleanup_old_events(
    db: Session,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    cutoff: datetime | None = None,
) -> int:
    """
    Delete persisted telemetry events older than retention_days (or before cutoff if provided).

    Args:
        db: Database session
        retention_days: Delete events older than this many days (default 90)
        cutoff: Optional explicit cutoff datetime (overrides retention_days)

    Returns:
        Number of rows deleted
    """
    if cutoff is None:
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=UTC)
    stmt = delete(TelemetryEventRecord).where(TelemetryEventRecord.created_at < cutoff)
    result = db.execute(stmt)
    db.commit()
    deleted = result.rowcount
    logger.info(f"Telemetry retention: deleted {deleted} events older than {cutoff.isoformat()}")
    return deleted
