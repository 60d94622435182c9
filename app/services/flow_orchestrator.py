"""
Booking flow orchestrator - single entry point for every inbound booking signal.

Owns one TransactionContext per transaction id and routes each signal (transition
request, confidence update, page view) through the state machine, the drop-off
detector, the trust trigger resolver and the conversion hook engine, emitting
telemetry for every side effect and returning one aggregated FlowResult.

Failure semantics: operations never raise for expected problems. An unknown
transaction id, an illegal transition or a closed booking all come back as
FlowResult(success=False, error=...) with no state change and no intervention.

Callers must serialize operations per transaction id (the HTTP layer holds a
per-id asyncio.Lock); different transaction ids are independent.
"""

import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from app.constants.event_types import (
    EVENT_BOOKING_CANCELLED,
    EVENT_BOOKING_COMPLETED,
    EVENT_BOOKING_CONFIRMED,
    EVENT_BOOKING_FAILED,
    EVENT_BOOKING_STARTED,
    EVENT_BOOKING_VALIDATED,
    EVENT_CONFIDENCE_DROP,
    EVENT_CONFIDENCE_RECOVERY,
    EVENT_CONVERSION_OPTIMIZATION_FAILED,
    EVENT_CONVERSION_OPTIMIZATION_TRIGGERED,
    EVENT_DROP_OFF_DETECTED,
    EVENT_HESITATION_DETECTED,
    EVENT_PAYMENT_PENDING,
    EVENT_RESOURCE_ACCEPTED,
    EVENT_RESOURCE_ASSIGNED,
    EVENT_RESOURCE_MATCHED,
    EVENT_TRUST_INJECTION,
    SOURCE_CUSTOMER,
    SOURCE_SYSTEM,
)
from app.constants.stages import (
    STAGE_ACCEPTED,
    STAGE_ASSIGNED,
    STAGE_CANCELLED,
    STAGE_COMPLETED,
    STAGE_CONFIRMED,
    STAGE_ESCROW_PENDING,
    STAGE_FAILED,
    STAGE_RESOURCE_MATCH,
    STAGE_VALIDATING,
)
from app.services import state_machine
from app.services.conversion_hooks import (
    ConversionHook,
    ConversionHookEngine,
    HookContext,
    HookResult,
)
from app.services.drop_off_detector import DropOffDetector, DropOffEvent
from app.services.repository import InMemoryRepository, Repository
from app.services.state_machine import StateMachine
from app.services.telemetry import TelemetryEvent, TelemetryLog, create_event
from app.services.trust_triggers import TrustContext, TrustResult, TrustTriggerResolver

logger = logging.getLogger(__name__)

# FlowResult.error values
ERROR_MISSING_CONTEXT = "missing_context"
ERROR_INVALID_TRANSITION = "invalid_transition"
ERROR_ALREADY_EXISTS = "already_exists"
ERROR_CLOSED = "closed"
ERROR_INVALID_INPUT = "invalid_input"

# Telemetry kind emitted when a transaction enters each stage
STAGE_EVENTS = {
    STAGE_VALIDATING: EVENT_BOOKING_VALIDATED,
    STAGE_RESOURCE_MATCH: EVENT_RESOURCE_MATCHED,
    STAGE_ASSIGNED: EVENT_RESOURCE_ASSIGNED,
    STAGE_ACCEPTED: EVENT_RESOURCE_ACCEPTED,
    STAGE_CONFIRMED: EVENT_BOOKING_CONFIRMED,
    STAGE_ESCROW_PENDING: EVENT_PAYMENT_PENDING,
    STAGE_COMPLETED: EVENT_BOOKING_COMPLETED,
    STAGE_CANCELLED: EVENT_BOOKING_CANCELLED,
    STAGE_FAILED: EVENT_BOOKING_FAILED,
}

# Optional signals settable via set_signals
SIGNAL_FIELDS = (
    "device_type",
    "device_brand",
    "estimated_cost",
    "deadline_hours",
    "resource_certainty",
    "part_availability",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class FlowConfig:
    enable_telemetry: bool = True
    enable_trust_injection: bool = True
    enable_drop_off_detection: bool = True
    enable_conversion_hooks: bool = True
    trust_injection_threshold: int = 60
    default_customer_confidence: int = 70
    archive_max_contexts: int = 1000

    @classmethod
    def from_settings(cls, settings) -> "FlowConfig":
        return cls(
            enable_telemetry=settings.enable_telemetry,
            enable_trust_injection=settings.enable_trust_injection,
            enable_drop_off_detection=settings.enable_drop_off_detection,
            enable_conversion_hooks=settings.enable_conversion_hooks,
            trust_injection_threshold=settings.trust_injection_threshold,
            default_customer_confidence=settings.default_customer_confidence,
            archive_max_contexts=settings.archive_max_contexts,
        )


@dataclass
class TransactionContext:
    transaction_id: str
    customer_id: str
    session_id: str
    machine: StateMachine
    customer_confidence: int
    current_view: str = "booking-start"
    hesitation_points: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    device_type: str | None = None
    device_brand: str | None = None
    estimated_cost: float | None = None
    deadline_hours: float | None = None
    resource_certainty: int | None = None
    part_availability: bool | None = None
    telemetry_events: list[TelemetryEvent] = field(default_factory=list)
    trust_history: list[TrustResult] = field(default_factory=list)
    hook_results: list[HookResult] = field(default_factory=list)

    @property
    def stage(self) -> str:
        return self.machine.current_state

    @property
    def is_terminal(self) -> bool:
        return state_machine.is_terminal_state(self.stage)


@dataclass
class FlowResult:
    success: bool
    message: str
    error: str | None = None
    new_stage: str | None = None
    trust_intervention: TrustResult | None = None
    conversion_hooks: list[HookResult] | None = None
    trust_messages: list[TrustResult] | None = None
    drop_off_event: DropOffEvent | None = None
    telemetry_events: list[TelemetryEvent] = field(default_factory=list)


def _price_perceived(estimated_cost: float | None) -> str | None:
    if estimated_cost is None:
        return None
    if estimated_cost > 10000:
        return "high"
    if estimated_cost < 3000:
        return "low"
    return "fair"


def _price_sensitivity(estimated_cost: float | None) -> int:
    if estimated_cost is None:
        return 50
    if estimated_cost > 15000:
        return 80
    if estimated_cost < 5000:
        return 30
    return 50


def _union(target: list[str], items) -> None:
    for item in items:
        if item not in target:
            target.append(item)


class FlowOrchestrator:
    def __init__(
        self,
        config: FlowConfig | None = None,
        telemetry: TelemetryLog | None = None,
        drop_off_detector: DropOffDetector | None = None,
        trust_resolver: TrustTriggerResolver | None = None,
        hook_engine: ConversionHookEngine | None = None,
        contexts: Repository[TransactionContext] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config if config is not None else FlowConfig()
        self.telemetry = telemetry if telemetry is not None else TelemetryLog()
        self.drop_off_detector = (
            drop_off_detector if drop_off_detector is not None else DropOffDetector(clock=clock)
        )
        self.trust_resolver = (
            trust_resolver if trust_resolver is not None else TrustTriggerResolver(clock=clock)
        )
        self.hook_engine = hook_engine if hook_engine is not None else ConversionHookEngine(
            self.drop_off_detector,
            self.trust_resolver,
            on_failure=self._on_hook_failure,
        )
        self._contexts = contexts if contexts is not None else InMemoryRepository()
        self._archive: OrderedDict[str, TransactionContext] = OrderedDict()
        self._clock = clock

    # ---- Inbound signals ----

    async def initialize(
        self,
        transaction_id: str,
        customer_id: str,
        session_id: str,
        device_type: str | None = None,
        device_brand: str | None = None,
    ) -> FlowResult:
        """Create the context, start the correlated drop-off session, emit booking_started."""
        if transaction_id in self._contexts or transaction_id in self._archive:
            logger.warning(f"Booking context already exists for ID: {transaction_id}")
            return FlowResult(
                success=False,
                message=f"Booking context already exists for ID: {transaction_id}",
                error=ERROR_ALREADY_EXISTS,
            )

        context = TransactionContext(
            transaction_id=transaction_id,
            customer_id=customer_id,
            session_id=session_id,
            machine=state_machine.create_machine(self._clock),
            customer_confidence=self.config.default_customer_confidence,
            device_type=device_type,
            device_brand=device_brand,
        )
        self._contexts.put(transaction_id, context)

        mark = len(context.telemetry_events)
        self._emit(
            context,
            EVENT_BOOKING_STARTED,
            {"device_type": device_type, "device_brand": device_brand},
            source=SOURCE_CUSTOMER,
        )

        if self.config.enable_drop_off_detection:
            self.drop_off_detector.start_session(session_id, context.stage)

        logger.info(f"Booking flow {transaction_id} initialized (session {session_id})")
        return FlowResult(
            success=True,
            message="Booking flow initialized successfully",
            new_stage=context.stage,
            telemetry_events=context.telemetry_events[mark:],
        )

    async def transition(
        self, transaction_id: str, new_stage: str, reason: str | None = None
    ) -> FlowResult:
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)
        return await self._apply_transition(context, new_stage, reason)

    async def update_confidence(
        self,
        transaction_id: str,
        level: int,
        hesitation_points: list[str] | tuple[str, ...] = (),
        risk_factors: list[str] | tuple[str, ...] = (),
    ) -> FlowResult:
        """
        Record a confidence sample and any newly observed hesitation points/risk factors.

        Points and factors are unioned into the accumulated sets. The trust resolver runs
        only below the configured threshold; hooks run only when hesitation points arrive.
        """
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)
        if context.is_terminal:
            return self._closed(context)
        if not 0 <= level <= 100:
            return FlowResult(
                success=False,
                message=f"Confidence must be between 0 and 100, got {level}",
                error=ERROR_INVALID_INPUT,
            )

        mark = len(context.telemetry_events)
        previous = context.customer_confidence
        context.customer_confidence = level
        _union(context.hesitation_points, hesitation_points)
        _union(context.risk_factors, risk_factors)

        if self.config.enable_drop_off_detection:
            self.drop_off_detector.record_confidence(context.session_id, level)
            for risk in risk_factors:
                self.drop_off_detector.record_risk_factor(context.session_id, risk)

        if level < previous:
            self._emit(context, EVENT_CONFIDENCE_DROP, {"from": previous, "to": level})
        elif level > previous:
            self._emit(context, EVENT_CONFIDENCE_RECOVERY, {"from": previous, "to": level})
        if hesitation_points:
            self._emit(
                context,
                EVENT_HESITATION_DETECTED,
                {"hesitation_points": list(hesitation_points), "risk_factors": list(risk_factors)},
            )

        trust = None
        if self.config.enable_trust_injection and level < self.config.trust_injection_threshold:
            trust = self._process_trust(context)

        hooks = None
        if self.config.enable_conversion_hooks and hesitation_points:
            hooks = await self._process_hooks(context)

        return FlowResult(
            success=True,
            message=f"Customer confidence updated to: {level}",
            new_stage=context.stage,
            trust_intervention=trust,
            conversion_hooks=hooks,
            telemetry_events=context.telemetry_events[mark:],
        )

    async def record_view(self, transaction_id: str, page_url: str, view_name: str) -> FlowResult:
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)
        if context.is_terminal:
            return self._closed(context)

        mark = len(context.telemetry_events)
        context.current_view = view_name

        if self.config.enable_drop_off_detection:
            self.drop_off_detector.record_page_visit(
                context.session_id, page_url, context.stage, context.customer_confidence
            )

        trust = self._process_trust(context) if self.config.enable_trust_injection else None
        hooks = await self._process_hooks(context) if self.config.enable_conversion_hooks else None

        return FlowResult(
            success=True,
            message=f"Page view recorded: {view_name}",
            new_stage=context.stage,
            trust_intervention=trust,
            conversion_hooks=hooks,
            telemetry_events=context.telemetry_events[mark:],
        )

    def set_signals(self, transaction_id: str, **signals: Any) -> FlowResult:
        """Update optional device/price/deadline/resource/part signals. No rules run."""
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)

        unknown = sorted(set(signals) - set(SIGNAL_FIELDS))
        if unknown:
            return FlowResult(
                success=False,
                message=f"Unknown signals: {', '.join(unknown)}",
                error=ERROR_INVALID_INPUT,
            )
        for name, value in signals.items():
            setattr(context, name, value)
        return FlowResult(success=True, message="Signals updated", new_stage=context.stage)

    async def complete(self, transaction_id: str) -> FlowResult:
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)

        if context.stage == STAGE_COMPLETED:
            self._finish_session(context)
            return FlowResult(
                success=True,
                message="Booking flow completed successfully",
                new_stage=context.stage,
            )

        result = await self._apply_transition(
            context,
            STAGE_COMPLETED,
            None,
            summary={
                "final_confidence": context.customer_confidence,
                "total_events": len(context.telemetry_events),
                "total_trust_interventions": len(context.trust_history),
            },
        )
        if result.success:
            result.message = "Booking flow completed successfully"
        return result

    async def cancel(self, transaction_id: str, reason: str | None = None) -> FlowResult:
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)

        if context.stage == STAGE_CANCELLED:
            self._finish_session(context)
            return FlowResult(
                success=True,
                message="Booking flow cancelled successfully",
                new_stage=context.stage,
            )

        result = await self._apply_transition(
            context,
            STAGE_CANCELLED,
            reason,
            summary={"final_confidence": context.customer_confidence},
        )
        if result.success:
            result.message = "Booking flow cancelled successfully"
        return result

    async def process_hesitation(self, transaction_id: str) -> FlowResult:
        """
        Composite hesitation pass: all matching hooks, the trust fallback and a
        correlated drop-off check.
        """
        context = self._find(transaction_id)
        if context is None:
            return self._missing(transaction_id)

        mark = len(context.telemetry_events)
        outcome = await self.hook_engine.process_hesitation(self._hook_context(context))

        context.hook_results.extend(outcome.hook_results)
        self._emit_hook_events(context, outcome.hook_results)

        for trust in outcome.trust_messages:
            context.trust_history.append(trust)
            self._emit_trust_event(context, trust)

        if outcome.drop_off_event is not None:
            event = outcome.drop_off_event
            self._emit(
                context,
                EVENT_DROP_OFF_DETECTED,
                {
                    "drop_off_type": event.type,
                    "stage": event.stage,
                    "detail": event.context,
                    "risk_factors": list(event.risk_factors),
                },
            )

        return FlowResult(
            success=True,
            message="Hesitation processed",
            new_stage=context.stage,
            conversion_hooks=outcome.hook_results,
            trust_messages=outcome.trust_messages,
            drop_off_event=outcome.drop_off_event,
            telemetry_events=context.telemetry_events[mark:],
        )

    # ---- Queries ----

    def get_context(self, transaction_id: str) -> TransactionContext | None:
        return self._find(transaction_id)

    def get_telemetry_events(self, transaction_id: str) -> list[TelemetryEvent]:
        context = self._find(transaction_id)
        return list(context.telemetry_events) if context else []

    def get_trust_history(self, transaction_id: str) -> list[TrustResult]:
        context = self._find(transaction_id)
        return list(context.trust_history) if context else []

    def get_risk_level(self, transaction_id: str) -> str | None:
        context = self._find(transaction_id)
        return state_machine.risk_tier(context.stage) if context else None

    def get_session_stats(self) -> dict:
        stats = self.drop_off_detector.get_detection_stats()
        stats["active_transactions"] = len(self._contexts)
        stats["archived_transactions"] = len(self._archive)
        return stats

    def get_detection_stats(self) -> dict:
        return self.drop_off_detector.get_detection_stats()

    def cleanup_sessions(self, max_age: timedelta | None = None) -> int:
        return self.drop_off_detector.cleanup_old_sessions(max_age)

    # ---- Hook table management ----

    def list_hooks(self) -> list[ConversionHook]:
        return self.hook_engine.hooks

    def add_hook(self, hook: ConversionHook) -> None:
        self.hook_engine.add_hook(hook)

    def remove_hook(self, hook_id: str) -> bool:
        return self.hook_engine.remove_hook(hook_id)

    def set_hook_enabled(self, hook_id: str, enabled: bool) -> bool:
        return self.hook_engine.set_hook_enabled(hook_id, enabled)

    # ---- Internals ----

    def _find(self, transaction_id: str) -> TransactionContext | None:
        context = self._contexts.get(transaction_id)
        if context is None:
            context = self._archive.get(transaction_id)
        return context

    def _missing(self, transaction_id: str) -> FlowResult:
        logger.warning(f"Booking context not found for ID: {transaction_id}")
        return FlowResult(
            success=False,
            message=f"Booking context not found for ID: {transaction_id}",
            error=ERROR_MISSING_CONTEXT,
        )

    @staticmethod
    def _closed(context: TransactionContext) -> FlowResult:
        return FlowResult(
            success=False,
            message=f"Booking {context.transaction_id} is already {context.stage}",
            error=ERROR_CLOSED,
            new_stage=context.stage,
        )

    async def _apply_transition(
        self,
        context: TransactionContext,
        new_stage: str,
        reason: str | None,
        summary: dict | None = None,
    ) -> FlowResult:
        outcome = state_machine.transition(context.machine, new_stage, reason, self._clock)
        if not outcome.success:
            return FlowResult(
                success=False,
                message=outcome.message,
                error=ERROR_INVALID_TRANSITION,
                new_stage=context.stage,
            )

        mark = len(context.telemetry_events)
        context.machine = outcome.machine

        payload = {
            "from_state": context.machine.previous_state,
            "to_state": new_stage,
            "reason": reason,
        }
        if summary:
            payload.update(summary)
        self._emit(context, STAGE_EVENTS.get(new_stage, EVENT_BOOKING_STARTED), payload)

        if self.config.enable_drop_off_detection:
            self.drop_off_detector.record_state_change(context.session_id, new_stage)

        trust = self._process_trust(context) if self.config.enable_trust_injection else None
        hooks = await self._process_hooks(context) if self.config.enable_conversion_hooks else None

        if context.is_terminal:
            self._finish_session(context)
            self._archive_context(context)

        return FlowResult(
            success=True,
            message=outcome.message,
            new_stage=new_stage,
            trust_intervention=trust,
            conversion_hooks=hooks,
            telemetry_events=context.telemetry_events[mark:],
        )

    def _finish_session(self, context: TransactionContext) -> None:
        if self.config.enable_drop_off_detection:
            self.drop_off_detector.mark_session_complete(context.session_id)

    def _archive_context(self, context: TransactionContext) -> None:
        self._contexts.delete(context.transaction_id)
        self._archive[context.transaction_id] = context
        while len(self._archive) > self.config.archive_max_contexts:
            evicted_id, _ = self._archive.popitem(last=False)
            self.telemetry.discard_transaction(evicted_id)

    def _time_in_state(self, context: TransactionContext) -> float:
        return (self._clock() - context.machine.entered_current_state_at).total_seconds()

    def _trust_context(self, context: TransactionContext) -> TrustContext:
        return TrustContext(
            stage=context.stage,
            customer_confidence=context.customer_confidence,
            current_view=context.current_view,
            hesitation_triggers=tuple(context.hesitation_points),
            risk_factors=tuple(context.risk_factors),
            time_in_state=self._time_in_state(context),
            transaction_id=context.transaction_id,
            customer_id=context.customer_id,
            deadline_status="active" if context.deadline_hours else "pending",
            price_perceived=_price_perceived(context.estimated_cost),
            resource_certainty=context.resource_certainty,
            part_availability=context.part_availability,
        )

    def _hook_context(self, context: TransactionContext) -> HookContext:
        return HookContext(
            customer_id=context.customer_id,
            session_id=context.session_id,
            stage=context.stage,
            customer_confidence=context.customer_confidence,
            price_sensitivity=_price_sensitivity(context.estimated_cost),
            time_in_state=self._time_in_state(context),
            previous_states=tuple(context.machine.previous_states),
            hesitation_points=tuple(context.hesitation_points),
            risk_factors=tuple(context.risk_factors),
            transaction_id=context.transaction_id,
            device_type=context.device_type,
            device_brand=context.device_brand,
            estimated_cost=context.estimated_cost,
            deadline_hours=context.deadline_hours,
            resource_certainty=context.resource_certainty,
            part_availability=context.part_availability,
        )

    def _process_trust(self, context: TransactionContext) -> TrustResult | None:
        result = self.trust_resolver.evaluate(self._trust_context(context))
        if result is None:
            return None
        context.trust_history.append(result)
        self._emit_trust_event(context, result)
        return result

    async def _process_hooks(self, context: TransactionContext) -> list[HookResult]:
        results = await self.hook_engine.evaluate(self._hook_context(context))
        context.hook_results.extend(results)
        self._emit_hook_events(context, results)
        return results

    def _emit_trust_event(self, context: TransactionContext, trust: TrustResult) -> None:
        self._emit(
            context,
            EVENT_TRUST_INJECTION,
            {
                "trust_message": trust.message,
                "priority": trust.priority,
                "category": trust.category,
                "injection_point": trust.injection_point,
                "current_view": context.current_view,
                "fallback": trust.fallback,
            },
        )

    def _emit_hook_events(self, context: TransactionContext, results: list[HookResult]) -> None:
        for hook in results:
            self._emit(
                context,
                EVENT_CONVERSION_OPTIMIZATION_TRIGGERED,
                {
                    "hook_id": hook.hook_id,
                    "tracking_id": hook.tracking_id,
                    "action_type": hook.action_type,
                    "confidence": hook.confidence,
                    "hesitation_points": list(context.hesitation_points),
                },
            )

    def _on_hook_failure(self, hook_id: str, exc: Exception, hook_ctx: HookContext) -> None:
        context = self._find(hook_ctx.transaction_id) if hook_ctx.transaction_id else None
        if context is None:
            return
        self._emit(
            context,
            EVENT_CONVERSION_OPTIMIZATION_FAILED,
            {"hook_id": hook_id, "error": {"type": type(exc).__name__, "message": str(exc)[:500]}},
        )

    def _emit(
        self,
        context: TransactionContext,
        kind: str,
        payload: dict[str, Any],
        source: str = SOURCE_SYSTEM,
    ) -> TelemetryEvent | None:
        if not self.config.enable_telemetry:
            return None
        event = create_event(
            kind,
            {
                "transaction_id": context.transaction_id,
                "customer_id": context.customer_id,
                "session_id": context.session_id,
                **payload,
            },
            source=source,
            timestamp=self._clock(),
        )
        context.telemetry_events.append(event)
        self.telemetry.emit(event)
        return event
