"""
Drop-off detection service - infers disengagement from timing and count signals.

Customers who simply go silent never send a "cancel", so abandonment, bouncing and
hesitation have to be inferred from what a session has (and has not) done:

- abandoned: no page visit for longer than the abandonment timeout
- bounced: repeated visits to price/checkout views without completing
- hesitated: a sharp confidence drop, or too long in a hesitation-prone stage

check_drop_off evaluates those rules in that fixed order; the first match wins.
Every positive detection is appended to the detector's detection log and, if enabled
for its type, handed to the notifier callback (fire-and-forget).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from app.constants.hesitation import (
    BOUNCE_URL_TAGS,
    DROP_OFF_ABANDONED,
    DROP_OFF_BOUNCE_ATTEMPT,
    DROP_OFF_BOUNCED,
    DROP_OFF_HESITATED,
)
from app.constants.stages import (
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
    STAGE_ASSIGNED,
    STAGE_RESOURCE_MATCH,
    STAGE_VALIDATING,
)
from app.services.repository import InMemoryRepository, Repository

logger = logging.getLogger(__name__)

DEFAULT_HESITATION_PRONE_STAGES = frozenset(
    {STAGE_VALIDATING, STAGE_RESOURCE_MATCH, STAGE_ASSIGNED}
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class DropOffConfig:
    abandoned_flow_timeout: timedelta = timedelta(minutes=5)
    bounce_check_threshold: int = 3
    hesitation_timeout: timedelta = timedelta(seconds=30)
    confidence_drop_threshold: int = 20
    hesitation_prone_stages: frozenset[str] = DEFAULT_HESITATION_PRONE_STAGES
    bounce_url_tags: tuple[str, ...] = BOUNCE_URL_TAGS
    session_max_age: timedelta = timedelta(hours=24)
    enable_session_tracking: bool = True
    enable_page_tracking: bool = True
    notify_on_drop_off: bool = True
    notify_on_bounce: bool = True
    notify_on_hesitation: bool = True

    @classmethod
    def from_settings(cls, settings) -> "DropOffConfig":
        return cls(
            abandoned_flow_timeout=timedelta(seconds=settings.abandoned_flow_timeout_seconds),
            bounce_check_threshold=settings.bounce_check_threshold,
            hesitation_timeout=timedelta(seconds=settings.hesitation_timeout_seconds),
            confidence_drop_threshold=settings.confidence_drop_threshold,
            session_max_age=timedelta(seconds=settings.session_max_age_seconds),
            notify_on_drop_off=settings.notify_on_drop_off,
            notify_on_bounce=settings.notify_on_bounce,
            notify_on_hesitation=settings.notify_on_hesitation,
        )


@dataclass(frozen=True)
class PageVisit:
    page_url: str
    timestamp: datetime
    stage: str
    confidence: int  # Customer confidence at time of visit (0-100)
    previous_page: str | None = None


@dataclass
class SessionRecord:
    session_id: str
    started_at: datetime
    stage_entered_at: datetime
    stage_history: list[str] = field(default_factory=list)
    pages_visited: list[PageVisit] = field(default_factory=list)
    confidence_trend: list[int] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    is_complete: bool = False
    is_dropped_off: bool = False
    is_bounced: bool = False
    ended_at: datetime | None = None

    @property
    def current_stage(self) -> str | None:
        return self.stage_history[-1] if self.stage_history else None

    @property
    def last_activity_at(self) -> datetime:
        if self.pages_visited:
            return self.pages_visited[-1].timestamp
        return self.started_at

    def tagged_visit_count(self, tags: tuple[str, ...]) -> int:
        return sum(1 for v in self.pages_visited if any(tag in v.page_url for tag in tags))


@dataclass(frozen=True)
class DropOffEvent:
    type: str
    session_id: str
    timestamp: datetime
    stage: str | None
    context: str
    risk_factors: tuple[str, ...] = ()


@dataclass(frozen=True)
class DropOffResult:
    detected: bool
    type: str | None
    risk_level: str
    confidence: int  # Confidence in the detection (0-100)
    details: str
    event: DropOffEvent | None = None


def _no_detection(details: str) -> DropOffResult:
    return DropOffResult(
        detected=False, type=None, risk_level=RISK_LOW, confidence=0, details=details
    )


class DropOffDetector:
    def __init__(
        self,
        config: DropOffConfig | None = None,
        sessions: Repository[SessionRecord] | None = None,
        notifier: Callable[[DropOffEvent], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config if config is not None else DropOffConfig()
        self._sessions = sessions if sessions is not None else InMemoryRepository()
        self._notifier = notifier
        self._clock = clock
        self._detection_events: list[DropOffEvent] = []

    # ---- Session recording ----

    def start_session(self, session_id: str, stage: str) -> SessionRecord | None:
        """
        Start tracking a session.

        A session that is already being tracked and not complete is reused (a session can
        exist before its transaction starts); a completed one is replaced.
        """
        if not self.config.enable_session_tracking:
            return None

        existing = self._sessions.get(session_id)
        if existing is not None and not existing.is_complete:
            self.record_state_change(session_id, stage)
            return existing

        now = self._clock()
        session = SessionRecord(
            session_id=session_id,
            started_at=now,
            stage_entered_at=now,
            stage_history=[stage],
        )
        self._sessions.put(session_id, session)
        return session

    def record_page_visit(
        self, session_id: str, page_url: str, stage: str, confidence: int
    ) -> bool:
        if not self.config.enable_page_tracking:
            return False

        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Session {session_id} not found for page visit tracking")
            return False

        previous_page = session.pages_visited[-1].page_url if session.pages_visited else None
        session.pages_visited.append(
            PageVisit(
                page_url=page_url,
                timestamp=self._clock(),
                stage=stage,
                confidence=confidence,
                previous_page=previous_page,
            )
        )
        self._append_stage(session, stage)
        session.confidence_trend.append(confidence)

        tags = self.config.bounce_url_tags
        if any(tag in page_url for tag in tags):
            visits = session.tagged_visit_count(tags)
            if visits >= self.config.bounce_check_threshold and not session.is_bounced:
                # Sticky: stays set even if the session later completes
                session.is_bounced = True
                self._record_detection_event(
                    session,
                    stage,
                    DROP_OFF_BOUNCE_ATTEMPT,
                    f"Bounce behavior detected after {visits} price/checkout visits",
                )
        return True

    def record_state_change(self, session_id: str, stage: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        self._append_stage(session, stage)
        return True

    def record_confidence(self, session_id: str, confidence: int) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.confidence_trend.append(confidence)
        return True

    def record_risk_factor(self, session_id: str, risk_factor: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if risk_factor not in session.risk_factors:
            session.risk_factors.append(risk_factor)
        return True

    def mark_session_complete(self, session_id: str) -> bool:
        """Mark a session as complete (not a drop-off). Safe to call repeatedly."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if not session.is_complete:
            session.is_complete = True
            session.ended_at = self._clock()
        return True

    def _append_stage(self, session: SessionRecord, stage: str) -> None:
        if stage != session.current_stage:
            session.stage_entered_at = self._clock()
        session.stage_history.append(stage)

    # ---- Detection ----

    def check_drop_off(self, session_id: str) -> DropOffResult:
        """Evaluate the drop-off rules for a session; first match wins."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Drop-off check for unknown session {session_id}")
            return _no_detection("Session not found")

        if session.is_complete:
            return _no_detection("Session complete")

        now = self._clock()
        stage = session.current_stage

        # Abandonment: silent for longer than the timeout
        idle = now - session.last_activity_at
        if idle > self.config.abandoned_flow_timeout:
            session.is_dropped_off = True
            idle_seconds = int(idle.total_seconds())
            event = self._record_detection_event(
                session,
                session.pages_visited[-1].stage if session.pages_visited else stage,
                DROP_OFF_ABANDONED,
                f"User inactive for {idle_seconds}s",
            )
            return DropOffResult(
                detected=True,
                type=DROP_OFF_ABANDONED,
                risk_level=RISK_HIGH,
                confidence=90,
                details=f"Session abandoned after {idle_seconds}s of inactivity",
                event=event,
            )

        # Bounce: repeated price/checkout views
        if session.is_bounced:
            visits = session.tagged_visit_count(self.config.bounce_url_tags)
            if visits >= self.config.bounce_check_threshold:
                event = self._record_detection_event(
                    session, stage, DROP_OFF_BOUNCED, f"Visited pricing page {visits} times"
                )
                return DropOffResult(
                    detected=True,
                    type=DROP_OFF_BOUNCED,
                    risk_level=RISK_MEDIUM,
                    confidence=85,
                    details=f"User bounced from pricing page {visits} times",
                    event=event,
                )

        # Hesitation: sharp confidence drop between the last two samples
        if len(session.confidence_trend) >= 2:
            previous, current = session.confidence_trend[-2], session.confidence_trend[-1]
            drop = previous - current
            if drop > self.config.confidence_drop_threshold:
                event = self._record_detection_event(
                    session,
                    stage,
                    DROP_OFF_HESITATED,
                    f"Confidence dropped from {previous} to {current}",
                )
                return DropOffResult(
                    detected=True,
                    type=DROP_OFF_HESITATED,
                    risk_level=RISK_MEDIUM,
                    confidence=80,
                    details=f"User confidence dropped by {drop} points",
                    event=event,
                )

        # Hesitation: dwelling in a hesitation-prone stage
        if stage in self.config.hesitation_prone_stages:
            dwell = now - session.stage_entered_at
            if dwell > self.config.hesitation_timeout:
                dwell_seconds = int(dwell.total_seconds())
                event = self._record_detection_event(
                    session,
                    stage,
                    DROP_OFF_HESITATED,
                    f"Spent {dwell_seconds}s in {stage} state",
                )
                return DropOffResult(
                    detected=True,
                    type=DROP_OFF_HESITATED,
                    risk_level=RISK_HIGH,
                    confidence=85,
                    details=f"User hesitated for {dwell_seconds}s in {stage} state",
                    event=event,
                )

        return _no_detection("No drop-off detected")

    def _record_detection_event(
        self, session: SessionRecord, stage: str | None, drop_off_type: str, context: str
    ) -> DropOffEvent:
        event = DropOffEvent(
            type=drop_off_type,
            session_id=session.session_id,
            timestamp=self._clock(),
            stage=stage,
            context=context,
            risk_factors=tuple(session.risk_factors),
        )
        self._detection_events.append(event)
        logger.info(f"Drop-off detected: {drop_off_type} in session {session.session_id} ({context})")

        if self._should_notify(drop_off_type) and self._notifier is not None:
            try:
                self._notifier(event)
            except Exception as e:
                logger.error(
                    f"Drop-off notifier failed for session {session.session_id}: {e}",
                    exc_info=True,
                )
        return event

    def _should_notify(self, drop_off_type: str) -> bool:
        return (
            (drop_off_type == DROP_OFF_ABANDONED and self.config.notify_on_drop_off)
            or (drop_off_type == DROP_OFF_BOUNCED and self.config.notify_on_bounce)
            or (drop_off_type == DROP_OFF_HESITATED and self.config.notify_on_hesitation)
        )

    # ---- Queries and housekeeping ----

    def get_session(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    def get_session_events(self, session_id: str) -> list[DropOffEvent]:
        return [e for e in self._detection_events if e.session_id == session_id]

    def get_detection_events(self) -> list[DropOffEvent]:
        return list(self._detection_events)

    def get_active_sessions(self) -> list[SessionRecord]:
        return self._sessions.values()

    def get_detection_stats(self) -> dict:
        """
        Summary statistics about drop-off detection.

        completion_rate is completed/total*100, and 100.0 when no sessions are tracked.
        """
        sessions = self._sessions.values()
        total = len(sessions)
        completed = sum(1 for s in sessions if s.is_complete)
        hesitations = sum(1 for e in self._detection_events if e.type == DROP_OFF_HESITATED)

        return {
            "total_sessions": total,
            "completed_sessions": completed,
            "drop_offs": sum(1 for s in sessions if s.is_dropped_off),
            "bounce_attempts": sum(1 for s in sessions if s.is_bounced),
            "hesitations": hesitations,
            "detection_events": len(self._detection_events),
            "completion_rate": (completed / total) * 100 if total > 0 else 100.0,
        }

    def cleanup_old_sessions(self, max_age: timedelta | None = None) -> int:
        """
        Remove sessions that ended, or went inactive, more than max_age ago,
        together with their detection events.

        This is the only garbage collection the detector has.

        Returns:
            Number of sessions removed
        """
        max_age = max_age if max_age is not None else self.config.session_max_age
        now = self._clock()
        removed_ids = set()

        for session_id, session in self._sessions.items():
            reference = session.ended_at or session.last_activity_at
            if now - reference > max_age:
                self._sessions.delete(session_id)
                removed_ids.add(session_id)

        removed = len(removed_ids)
        if removed:
            self._detection_events = [
                e for e in self._detection_events if e.session_id not in removed_ids
            ]
            logger.info(f"Drop-off session cleanup: removed {removed} sessions older than {max_age}")
        return removed
