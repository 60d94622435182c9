"""
Trust trigger resolver - picks at most one reassurance/transparency message for the
current (stage, behavioral context) pair.

Each lifecycle stage is scoped to a fixed set of injection points. Resolution:

1. Rules whose injection point equals the requested point (the current view by default),
   is in scope for the stage, and whose condition holds.
2. If none, a best-effort fallback re-scans every rule in the stage scope whose condition
   holds, ignoring the exact injection point.

Among candidates the highest priority wins (high > medium > low); ties go to the rule
declared first. No randomness, no state kept between calls.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from app.constants.hesitation import (
    HESITATION_DELAY,
    HESITATION_PAYMENT,
    HESITATION_PRICE,
)
from app.constants.stages import (
    STAGE_ACCEPTED,
    STAGE_ASSIGNED,
    STAGE_CANCELLED,
    STAGE_COMPLETED,
    STAGE_CONFIRMED,
    STAGE_ESCROW_PENDING,
    STAGE_FAILED,
    STAGE_INITIATED,
    STAGE_RESOURCE_MATCH,
    STAGE_VALIDATING,
)
from app.constants.trust_points import (
    CATEGORY_CONFIDENCE,
    CATEGORY_REASSURANCE,
    CATEGORY_TRANSPARENCY,
    POINT_BOOKING_STARTED,
    POINT_BOOKING_VALIDATION,
    POINT_CHECKOUT,
    POINT_CONFIDENCE_DROP,
    POINT_CONTACT_INITIATION,
    POINT_DEADLINE_AMBIGUITY,
    POINT_DEADLINE_VIEW,
    POINT_DELAY_FEARS,
    POINT_PART_UNAVAILABILITY,
    POINT_PAYMENT_UNCERTAINTY,
    POINT_PRICE_CONFIRMATION,
    POINT_PRICE_HESITATION,
    POINT_RESOURCE_ASSIGNMENT,
    POINT_RESOURCE_UNCERTAINTY,
    POINT_SESSION_RESTART,
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    PRIORITY_RANK,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrustContext:
    stage: str
    customer_confidence: int  # 0-100
    current_view: str
    hesitation_triggers: tuple[str, ...] = ()
    risk_factors: tuple[str, ...] = ()
    time_in_state: float = 0.0  # seconds
    transaction_id: str | None = None
    customer_id: str | None = None
    deadline_status: str | None = None  # "active", "pending", "breached"
    price_perceived: str | None = None  # "high", "fair", "low"
    resource_certainty: int | None = None  # 0-100
    part_availability: bool | None = None


@dataclass(frozen=True)
class TrustTrigger:
    point: str
    condition: Callable[[TrustContext], bool]
    message: str
    priority: str
    category: str


@dataclass(frozen=True)
class TrustResult:
    message: str
    priority: str
    category: str
    injection_point: str
    injected_at: datetime
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "priority": self.priority,
            "category": self.category,
            "injection_point": self.injection_point,
            "injected_at": self.injected_at.isoformat(),
            "fallback": self.fallback,
        }


def default_trust_triggers() -> tuple[TrustTrigger, ...]:
    """The curated rule table. Declaration order breaks priority ties."""
    return (
        # Checkout
        TrustTrigger(
            POINT_CHECKOUT,
            lambda ctx: ctx.customer_confidence < 60,
            "Your repair is important to us. We'll provide updates every step of the way.",
            PRIORITY_HIGH,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_CHECKOUT,
            lambda ctx: HESITATION_PRICE in ctx.hesitation_triggers,
            "Transparent pricing with no hidden fees. Your cost is fixed once confirmed.",
            PRIORITY_HIGH,
            CATEGORY_TRANSPARENCY,
        ),
        # Resource assignment
        TrustTrigger(
            POINT_RESOURCE_ASSIGNMENT,
            lambda ctx: ctx.resource_certainty is not None and ctx.resource_certainty < 70,
            "We're assigning your preferred technician. If they're unavailable, "
            "we'll get the next best match.",
            PRIORITY_MEDIUM,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_RESOURCE_ASSIGNMENT,
            lambda ctx: ctx.customer_confidence < 50,
            "Your technician is verified and experienced. We'll handle any issues that arise.",
            PRIORITY_HIGH,
            CATEGORY_CONFIDENCE,
        ),
        # Part unavailability
        TrustTrigger(
            POINT_PART_UNAVAILABILITY,
            lambda ctx: ctx.part_availability is False,
            "We're checking for this part at our partners. We'll notify you within 2 hours.",
            PRIORITY_HIGH,
            CATEGORY_TRANSPARENCY,
        ),
        TrustTrigger(
            POINT_PART_UNAVAILABILITY,
            lambda ctx: ctx.customer_confidence < 40,
            "If we can't source the part, you'll get a full refund. No risk to you.",
            PRIORITY_HIGH,
            CATEGORY_REASSURANCE,
        ),
        # Price confirmation
        TrustTrigger(
            POINT_PRICE_CONFIRMATION,
            lambda ctx: ctx.price_perceived == "high",
            "Our prices are competitive and include a guarantee. "
            "You're paying for quality and assurance.",
            PRIORITY_MEDIUM,
            CATEGORY_CONFIDENCE,
        ),
        TrustTrigger(
            POINT_PRICE_CONFIRMATION,
            lambda ctx: ctx.customer_confidence < 55,
            "Price is fixed once confirmed. You'll only pay what you see here.",
            PRIORITY_HIGH,
            CATEGORY_TRANSPARENCY,
        ),
        # Deadline view
        TrustTrigger(
            POINT_DEADLINE_VIEW,
            lambda ctx: ctx.deadline_status == "breached",
            "We're working quickly to resolve this. We'll update you regularly on progress.",
            PRIORITY_HIGH,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_DEADLINE_VIEW,
            lambda ctx: ctx.customer_confidence < 50,
            "Our turnaround promise is backed by our reputation. We'll make it right if we're late.",
            PRIORITY_MEDIUM,
            CATEGORY_CONFIDENCE,
        ),
        # Risk moments
        TrustTrigger(
            POINT_PRICE_HESITATION,
            lambda ctx: HESITATION_PRICE in ctx.hesitation_triggers,
            "We value your trust. Our pricing is transparent with no surprise charges.",
            PRIORITY_HIGH,
            CATEGORY_TRANSPARENCY,
        ),
        TrustTrigger(
            POINT_DEADLINE_AMBIGUITY,
            lambda ctx: not ctx.deadline_status,
            "We'll provide clear updates on your timeline. No uncertainty about your repair date.",
            PRIORITY_MEDIUM,
            CATEGORY_TRANSPARENCY,
        ),
        TrustTrigger(
            POINT_RESOURCE_UNCERTAINTY,
            lambda ctx: ctx.resource_certainty is not None and ctx.resource_certainty < 60,
            "We're securing the best technician for your device. You'll be the first to know.",
            PRIORITY_HIGH,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_DELAY_FEARS,
            lambda ctx: HESITATION_DELAY in ctx.hesitation_triggers,
            "Delays are rare, but we'll contact you immediately if anything changes.",
            PRIORITY_HIGH,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_PAYMENT_UNCERTAINTY,
            lambda ctx: HESITATION_PAYMENT in ctx.hesitation_triggers,
            "Your payment is held securely until completion. Cancel anytime before work starts.",
            PRIORITY_HIGH,
            CATEGORY_TRANSPARENCY,
        ),
        # General
        TrustTrigger(
            POINT_BOOKING_STARTED,
            lambda ctx: ctx.customer_confidence < 45,
            "We're committed to your satisfaction. Your repair is our top priority.",
            PRIORITY_MEDIUM,
            CATEGORY_CONFIDENCE,
        ),
        TrustTrigger(
            POINT_BOOKING_VALIDATION,
            lambda ctx: len(ctx.risk_factors) > 0,
            "We're verifying everything to ensure a smooth process. You'll be updated immediately.",
            PRIORITY_MEDIUM,
            CATEGORY_TRANSPARENCY,
        ),
        TrustTrigger(
            POINT_CONFIDENCE_DROP,
            lambda ctx: ctx.customer_confidence < 40,
            "We understand your concerns. We're here to address any questions throughout.",
            PRIORITY_HIGH,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_SESSION_RESTART,
            lambda ctx: ctx.customer_confidence < 50,
            "Welcome back! Your booking progress is saved. Continue where you left off.",
            PRIORITY_MEDIUM,
            CATEGORY_REASSURANCE,
        ),
        TrustTrigger(
            POINT_CONTACT_INITIATION,
            lambda ctx: ctx.customer_confidence < 55,
            "We're here to help. Ask us anything about your repair or our process.",
            PRIORITY_MEDIUM,
            CATEGORY_REASSURANCE,
        ),
    )


# Mapping of lifecycle stages to the injection points relevant to them
DEFAULT_STATE_TRUST_POINTS: Mapping[str, tuple[str, ...]] = {
    STAGE_INITIATED: (POINT_BOOKING_STARTED, POINT_BOOKING_VALIDATION, POINT_CONTACT_INITIATION),
    STAGE_VALIDATING: (POINT_BOOKING_VALIDATION, POINT_DEADLINE_AMBIGUITY, POINT_PAYMENT_UNCERTAINTY),
    STAGE_RESOURCE_MATCH: (
        POINT_RESOURCE_UNCERTAINTY,
        POINT_RESOURCE_ASSIGNMENT,
        POINT_DELAY_FEARS,
    ),
    STAGE_ASSIGNED: (POINT_RESOURCE_ASSIGNMENT, POINT_CONFIDENCE_DROP),
    STAGE_ACCEPTED: (POINT_CONFIDENCE_DROP, POINT_DEADLINE_VIEW),
    STAGE_CONFIRMED: (POINT_PRICE_CONFIRMATION, POINT_DEADLINE_VIEW, POINT_CONTACT_INITIATION),
    STAGE_ESCROW_PENDING: (POINT_PAYMENT_UNCERTAINTY, POINT_CONFIDENCE_DROP),
    STAGE_COMPLETED: (POINT_CONTACT_INITIATION, POINT_CONFIDENCE_DROP),
    STAGE_CANCELLED: (POINT_CONFIDENCE_DROP, POINT_CONTACT_INITIATION),
    STAGE_FAILED: (POINT_CONFIDENCE_DROP, POINT_CONTACT_INITIATION),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrustTriggerResolver:
    def __init__(
        self,
        triggers: Sequence[TrustTrigger] | None = None,
        state_points: Mapping[str, Sequence[str]] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._triggers = tuple(triggers) if triggers is not None else default_trust_triggers()
        source = state_points if state_points is not None else DEFAULT_STATE_TRUST_POINTS
        self._state_points = {stage: tuple(points) for stage, points in source.items()}
        self._clock = clock

    @property
    def triggers(self) -> tuple[TrustTrigger, ...]:
        return self._triggers

    def points_for_stage(self, stage: str) -> tuple[str, ...]:
        return self._state_points.get(stage, ())

    def resolve(self, context: TrustContext, injection_point: str | None = None) -> TrustResult | None:
        """Exact-point resolution; injection_point defaults to the context's current view."""
        point = injection_point or context.current_view
        if point not in self.points_for_stage(context.stage):
            return None

        candidates = [
            t for t in self._triggers if t.point == point and self._holds(t, context)
        ]
        selected = self._select(candidates)
        if selected is None:
            return None
        return self._result(selected, fallback=False)

    def contextual_fallback(self, context: TrustContext) -> TrustResult | None:
        """
        Best-effort message from anything in the stage scope whose condition holds.

        Ignores the exact injection point, so the chosen rule may target a different
        concern than the view the customer is on.
        """
        scope = self.points_for_stage(context.stage)
        candidates = [t for t in self._triggers if t.point in scope and self._holds(t, context)]
        selected = self._select(candidates)
        if selected is None:
            return None
        return self._result(selected, fallback=True)

    def evaluate(self, context: TrustContext, injection_point: str | None = None) -> TrustResult | None:
        """Exact resolution, then the contextual fallback. At most one result."""
        result = self.resolve(context, injection_point)
        if result is not None:
            return result
        return self.contextual_fallback(context)

    @staticmethod
    def _select(candidates: list[TrustTrigger]) -> TrustTrigger | None:
        selected = None
        for trigger in candidates:
            # Strictly greater keeps the earliest declaration on ties
            if selected is None or PRIORITY_RANK[trigger.priority] > PRIORITY_RANK[selected.priority]:
                selected = trigger
        return selected

    @staticmethod
    def _holds(trigger: TrustTrigger, context: TrustContext) -> bool:
        try:
            return bool(trigger.condition(context))
        except Exception as e:
            logger.error(
                f"Trust trigger condition for point {trigger.point!r} failed: {e}", exc_info=True
            )
            return False

    def _result(self, trigger: TrustTrigger, fallback: bool) -> TrustResult:
        return TrustResult(
            message=trigger.message,
            priority=trigger.priority,
            category=trigger.category,
            injection_point=trigger.point,
            injected_at=self._clock(),
            fallback=fallback,
        )
