"""
Conversion hook engine - reacts to hesitation with concrete remediation actions.

Unlike the trust resolver, every enabled hook whose condition holds fires: independent
concerns (price and low confidence, say) can co-occur. Hooks run sequentially in
ascending priority number (0 first), declaration order breaking ties, and each hook's
action is isolated: a failing hook is logged and reported through on_failure, and the
remaining hooks still run.

The hook table belongs to the engine instance and can be changed at runtime
(add_hook / remove_hook / set_hook_enabled).
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from app.constants.hesitation import (
    ACTION_DISCOUNT,
    ACTION_REASSURANCE,
    ACTION_TRANSPARENCY,
    ACTION_URGENCY,
    HESITATION_DEADLINE,
    HESITATION_DELAY,
    HESITATION_PARTS,
    HESITATION_PAYMENT,
    HESITATION_PRICE,
    HESITATION_RESOURCE,
    HESITATION_URGENCY,
)
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
from app.services.drop_off_detector import DropOffDetector, DropOffEvent
from app.services.trust_triggers import TrustContext, TrustResult, TrustTriggerResolver

logger = logging.getLogger(__name__)

# Default view name per stage, used when asking the trust fallback for a message
STAGE_VIEWS = {
    STAGE_INITIATED: "booking-start",
    STAGE_VALIDATING: "booking-validation",
    STAGE_RESOURCE_MATCH: "technician-selection",
    STAGE_ASSIGNED: "technician-assigned",
    STAGE_ACCEPTED: "booking-acceptance",
    STAGE_CONFIRMED: "booking-confirmation",
    STAGE_ESCROW_PENDING: "payment-escrow",
    STAGE_COMPLETED: "booking-completed",
}

LONG_HESITATION_SECONDS = 30


@dataclass(frozen=True)
class HookContext:
    customer_id: str
    session_id: str
    stage: str
    customer_confidence: int  # 0-100
    price_sensitivity: int = 50  # 0-100
    time_in_state: float = 0.0  # seconds
    previous_states: tuple[str, ...] = ()
    hesitation_points: tuple[str, ...] = ()
    risk_factors: tuple[str, ...] = ()
    transaction_id: str | None = None
    device_type: str | None = None
    device_brand: str | None = None
    estimated_cost: float | None = None
    deadline_hours: float | None = None
    resource_certainty: int | None = None  # 0-100
    part_availability: bool | None = None
    location: str | None = None
    service_type: str | None = None


@dataclass(frozen=True)
class HookResult:
    hook_id: str
    should_trigger: bool
    action_type: str
    confidence: int  # Confidence in the decision (0-100)
    tracking_id: str
    message: str | None = None
    value: Any = None

    def to_dict(self) -> dict:
        return {
            "hook_id": self.hook_id,
            "should_trigger": self.should_trigger,
            "action_type": self.action_type,
            "confidence": self.confidence,
            "tracking_id": self.tracking_id,
            "message": self.message,
            "value": self.value,
        }


HookAction = Callable[[HookContext], Awaitable[HookResult]]


@dataclass
class ConversionHook:
    id: str
    name: str
    condition: Callable[[HookContext], bool]
    action: HookAction
    priority: int  # Lower number = higher priority
    description: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class HesitationOutcome:
    hook_results: list[HookResult] = field(default_factory=list)
    trust_messages: list[TrustResult] = field(default_factory=list)
    drop_off_event: DropOffEvent | None = None


def _tracking_id(hook_id: str) -> str:
    return f"{hook_id}_{uuid.uuid4().hex[:12]}"


def _message_action(
    hook_id: str, message: str, action_type: str, confidence: int, value: Any = None
) -> HookAction:
    async def action(ctx: HookContext) -> HookResult:
        return HookResult(
            hook_id=hook_id,
            should_trigger=True,
            action_type=action_type,
            confidence=confidence,
            tracking_id=_tracking_id(hook_id),
            message=message,
            value=value,
        )

    return action


LOYALTY_DISCOUNT = 0.05


def default_conversion_hooks() -> list[ConversionHook]:
    """Fresh copies of the default hook table (enabled flags are per engine)."""
    return [
        ConversionHook(
            id="ch001",
            name="PriceHesitationReassurance",
            description="Detects and addresses price-related hesitation",
            condition=lambda ctx: HESITATION_PRICE in ctx.hesitation_points
            and ctx.customer_confidence < 60,
            action=_message_action(
                "ch001",
                "We offer competitive pricing with no hidden fees. "
                "Our prices include a satisfaction guarantee.",
                ACTION_REASSURANCE,
                90,
            ),
            priority=1,
        ),
        ConversionHook(
            id="ch002",
            name="DeadlineAmbiguityClarifier",
            description="Provides clarity when the turnaround deadline is ambiguous",
            condition=lambda ctx: HESITATION_DEADLINE in ctx.hesitation_points
            and ctx.deadline_hours is None,
            action=_message_action(
                "ch002",
                "We'll provide a specific timeline within 2 hours of technician assignment. "
                "You'll be notified immediately.",
                ACTION_TRANSPARENCY,
                85,
            ),
            priority=2,
        ),
        ConversionHook(
            id="ch003",
            name="ResourceUncertaintyResolver",
            description="Addresses concerns about technician availability",
            condition=lambda ctx: HESITATION_RESOURCE in ctx.hesitation_points
            and ctx.resource_certainty is not None
            and ctx.resource_certainty < 70,
            action=_message_action(
                "ch003",
                "We're securing our best technician for your device type. "
                "If unavailable, we'll get the next best match.",
                ACTION_REASSURANCE,
                80,
            ),
            priority=2,
        ),
        ConversionHook(
            id="ch004",
            name="DelayFearMitigator",
            description="Mitigates concerns about repair delays",
            condition=lambda ctx: HESITATION_DELAY in ctx.hesitation_points
            and ctx.customer_confidence < 55,
            action=_message_action(
                "ch004",
                "Delays are rare (under 5% of cases), but we'll notify you immediately "
                "if anything changes with your timeline.",
                ACTION_REASSURANCE,
                88,
            ),
            priority=1,
        ),
        ConversionHook(
            id="ch005",
            name="PaymentUncertaintyResolver",
            description="Addresses payment-related concerns",
            condition=lambda ctx: HESITATION_PAYMENT in ctx.hesitation_points
            and ctx.customer_confidence < 65,
            action=_message_action(
                "ch005",
                "Your payment is held securely until completion. "
                "You're protected by our satisfaction guarantee.",
                ACTION_TRANSPARENCY,
                92,
            ),
            priority=1,
        ),
        ConversionHook(
            id="ch006",
            name="PartAvailabilityReassurance",
            description="Provides reassurance when parts are unavailable",
            condition=lambda ctx: HESITATION_PARTS in ctx.hesitation_points
            and ctx.part_availability is False,
            action=_message_action(
                "ch006",
                "We're sourcing this part from our partner network. "
                "We'll update you within 2 hours on availability.",
                ACTION_TRANSPARENCY,
                85,
            ),
            priority=1,
        ),
        ConversionHook(
            id="ch007",
            name="LowConfidenceBooster",
            description="Provides reassurance when customer confidence is very low",
            condition=lambda ctx: ctx.customer_confidence < 40,
            action=_message_action(
                "ch007",
                "We understand your concerns. Our team is here to answer any questions "
                "and ensure your satisfaction.",
                ACTION_REASSURANCE,
                95,
            ),
            priority=0,
        ),
        ConversionHook(
            id="ch008",
            name="LongHesitationIntervention",
            description="Intervenes when the customer dwells too long in one stage",
            condition=lambda ctx: ctx.time_in_state > LONG_HESITATION_SECONDS
            and ctx.customer_confidence < 60,
            action=_message_action(
                "ch008",
                "Need help? Our support team is ready to answer questions and ensure "
                "your comfort with the process.",
                ACTION_REASSURANCE,
                75,
            ),
            priority=3,
        ),
        ConversionHook(
            id="ch009",
            name="LoyaltyDiscountTrigger",
            description="Offers a discount to price-sensitive customers showing price hesitation",
            condition=lambda ctx: HESITATION_PRICE in ctx.hesitation_points
            and ctx.customer_confidence < 50
            and ctx.price_sensitivity > 70,
            action=_message_action(
                "ch009",
                f"Special offer: {LOYALTY_DISCOUNT * 100:g}% discount for valued customers "
                "like you. Use code LOYALTY at checkout.",
                ACTION_DISCOUNT,
                70,
                value=LOYALTY_DISCOUNT,
            ),
            priority=2,
        ),
        ConversionHook(
            id="ch010",
            name="DeviceUrgency",
            description="Creates appropriate urgency based on device and timing",
            condition=lambda ctx: HESITATION_URGENCY in ctx.hesitation_points
            and ctx.device_type == "mobile"
            and ctx.customer_confidence < 50,
            action=_message_action(
                "ch010",
                "Mobile devices are essential for daily life. We recommend securing your "
                "repair slot now before scheduling fills up.",
                ACTION_URGENCY,
                78,
            ),
            priority=2,
        ),
    ]


def create_decision_context(
    stage: str, customer_id: str, session_id: str, **overrides: Any
) -> HookContext:
    """Build a HookContext with default confidence (70) and price sensitivity (50)."""
    base = HookContext(
        customer_id=customer_id,
        session_id=session_id,
        stage=stage,
        customer_confidence=70,
    )
    return replace(base, **overrides)


class ConversionHookEngine:
    def __init__(
        self,
        drop_off_detector: DropOffDetector,
        trust_resolver: TrustTriggerResolver | None = None,
        hooks: Sequence[ConversionHook] | None = None,
        on_failure: Callable[[str, Exception, HookContext], None] | None = None,
    ) -> None:
        self._hooks = list(hooks) if hooks is not None else default_conversion_hooks()
        self._drop_off_detector = drop_off_detector
        self._trust_resolver = trust_resolver if trust_resolver is not None else TrustTriggerResolver()
        self._on_failure = on_failure

    @property
    def hooks(self) -> list[ConversionHook]:
        return list(self._hooks)

    async def evaluate(self, ctx: HookContext) -> list[HookResult]:
        """Run every enabled hook whose condition holds, in ascending priority."""
        # sorted() is stable: equal priorities keep declaration order
        ordered = sorted((h for h in self._hooks if h.enabled), key=lambda h: h.priority)
        results: list[HookResult] = []

        for hook in ordered:
            try:
                if not hook.condition(ctx):
                    continue
                result = await hook.action(ctx)
            except Exception as e:
                logger.error(f"Error executing conversion hook {hook.id}: {e}", exc_info=True)
                self._report_failure(hook.id, e, ctx)
                continue

            if result.should_trigger:
                logger.info(
                    f"Conversion hook {hook.id} fired for session {ctx.session_id} "
                    f"({result.action_type})"
                )
                results.append(result)

        return results

    def generate_trust_interventions(self, ctx: HookContext) -> list[TrustResult]:
        """Contextual trust message for the hook context (zero or one item)."""
        if ctx.price_sensitivity > 80:
            price_perceived = "high"
        elif ctx.price_sensitivity < 30:
            price_perceived = "low"
        else:
            price_perceived = "fair"

        trust_context = TrustContext(
            stage=ctx.stage,
            customer_confidence=ctx.customer_confidence,
            current_view=STAGE_VIEWS.get(ctx.stage, "unknown"),
            hesitation_triggers=ctx.hesitation_points,
            risk_factors=ctx.risk_factors,
            time_in_state=ctx.time_in_state,
            transaction_id=ctx.transaction_id,
            customer_id=ctx.customer_id,
            deadline_status="active" if ctx.deadline_hours else "pending",
            price_perceived=price_perceived,
            resource_certainty=ctx.resource_certainty,
            part_availability=ctx.part_availability,
        )
        result = self._trust_resolver.contextual_fallback(trust_context)
        return [result] if result is not None else []

    async def process_hesitation(self, ctx: HookContext) -> HesitationOutcome:
        """Hook evaluation, trust fallback and a correlated drop-off check in one pass."""
        hook_results = await self.evaluate(ctx)
        trust_messages = self.generate_trust_interventions(ctx)
        drop_off = self._drop_off_detector.check_drop_off(ctx.session_id)

        return HesitationOutcome(
            hook_results=hook_results,
            trust_messages=trust_messages,
            drop_off_event=drop_off.event if drop_off.detected else None,
        )

    # ---- Runtime rule-table management ----

    def add_hook(self, hook: ConversionHook) -> None:
        if self.get_hook(hook.id) is not None:
            raise ValueError(f"Conversion hook {hook.id} already registered")
        self._hooks.append(hook)
        logger.info(f"Conversion hook {hook.id} added (priority {hook.priority})")

    def remove_hook(self, hook_id: str) -> bool:
        before = len(self._hooks)
        self._hooks = [h for h in self._hooks if h.id != hook_id]
        removed = len(self._hooks) != before
        if removed:
            logger.info(f"Conversion hook {hook_id} removed")
        return removed

    def set_hook_enabled(self, hook_id: str, enabled: bool) -> bool:
        hook = self.get_hook(hook_id)
        if hook is None:
            return False
        hook.enabled = enabled
        logger.info(f"Conversion hook {hook_id} {'enabled' if enabled else 'disabled'}")
        return True

    def get_hook(self, hook_id: str) -> ConversionHook | None:
        return next((h for h in self._hooks if h.id == hook_id), None)

    def _report_failure(self, hook_id: str, exc: Exception, ctx: HookContext) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(hook_id, exc, ctx)
        except Exception as e:
            logger.error(f"Conversion hook failure callback raised for {hook_id}: {e}", exc_info=True)
