"""
State machine service - defines allowed stage transitions and provides transition helper.

This centralizes all lifecycle transition logic to ensure consistency and prevent invalid transitions.

A StateMachine is an immutable value: transition() never mutates its input, it returns
a TransitionOutcome carrying either a new machine (with one more StateTransition in its
history) or the untouched original plus a rejection message. Telemetry is the caller's job.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from app.constants.stages import (
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
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

logger = logging.getLogger(__name__)

# Define allowed transitions
# Format: {from_stage: [allowed_to_stages]}
ALLOWED_TRANSITIONS = {
    STAGE_INITIATED: [STAGE_VALIDATING, STAGE_CANCELLED, STAGE_FAILED],
    STAGE_VALIDATING: [STAGE_RESOURCE_MATCH, STAGE_CANCELLED, STAGE_FAILED],
    STAGE_RESOURCE_MATCH: [STAGE_ASSIGNED, STAGE_CANCELLED, STAGE_FAILED],
    STAGE_ASSIGNED: [
        STAGE_ACCEPTED,
        STAGE_RESOURCE_MATCH,  # Assigned resource unavailable - rematch
        STAGE_CANCELLED,
        STAGE_FAILED,
    ],
    STAGE_ACCEPTED: [STAGE_CONFIRMED, STAGE_CANCELLED, STAGE_FAILED],
    STAGE_CONFIRMED: [STAGE_ESCROW_PENDING, STAGE_CANCELLED, STAGE_FAILED],
    STAGE_ESCROW_PENDING: [STAGE_COMPLETED, STAGE_CANCELLED, STAGE_FAILED],
    STAGE_COMPLETED: [
        # Terminal state - no transitions allowed
    ],
    STAGE_CANCELLED: [
        # Terminal state - no transitions allowed
    ],
    STAGE_FAILED: [
        # Terminal state - no transitions allowed
    ],
}

# Terminal state definitions
TERMINAL_STATES = {
    STAGE_COMPLETED,
    STAGE_CANCELLED,
    STAGE_FAILED,
}

# Stage groups for business logic categorization
ACTIVE_STATES = {
    STAGE_INITIATED,
    STAGE_VALIDATING,
    STAGE_RESOURCE_MATCH,
    STAGE_ASSIGNED,
    STAGE_ACCEPTED,
    STAGE_CONFIRMED,
    STAGE_ESCROW_PENDING,
}
RISK_STATES = {STAGE_RESOURCE_MATCH, STAGE_ASSIGNED, STAGE_VALIDATING}
CONFIRMED_STATES = {STAGE_ACCEPTED, STAGE_CONFIRMED, STAGE_ESCROW_PENDING, STAGE_COMPLETED}

# State semantics (for documentation)
STATE_SEMANTICS = {
    STAGE_INITIATED: "Customer begins the booking flow",
    STAGE_VALIDATING: "System validates inputs and checks availability",
    STAGE_RESOURCE_MATCH: "Finding a suitable technician for the job",
    STAGE_ASSIGNED: "Technician assigned but not yet confirmed",
    STAGE_ACCEPTED: "Technician accepted the booking",
    STAGE_CONFIRMED: "Booking confirmed by both parties",
    STAGE_ESCROW_PENDING: "Payment held in escrow until completion",
    STAGE_COMPLETED: "Service completed and payment released - terminal success state",
    STAGE_CANCELLED: "Booking cancelled - terminal state",
    STAGE_FAILED: "Booking failed - terminal state",
}

_RISK_TIERS = {
    STAGE_RESOURCE_MATCH: RISK_HIGH,
    STAGE_VALIDATING: RISK_HIGH,
    STAGE_ASSIGNED: RISK_MEDIUM,
    STAGE_ACCEPTED: RISK_MEDIUM,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StateTransition:
    """One applied transition. Never mutated or removed once appended."""

    from_state: str
    to_state: str
    timestamp: datetime
    reason: str | None = None


@dataclass(frozen=True)
class StateMachine:
    current_state: str
    created_at: datetime
    updated_at: datetime
    previous_state: str | None = None
    history: tuple[StateTransition, ...] = field(default_factory=tuple)

    @property
    def entered_current_state_at(self) -> datetime:
        """When the machine entered its current state (creation time if never moved)."""
        if self.history:
            return self.history[-1].timestamp
        return self.created_at

    @property
    def previous_states(self) -> list[str]:
        return [t.from_state for t in self.history]


@dataclass(frozen=True)
class TransitionOutcome:
    success: bool
    machine: StateMachine
    message: str


def is_transition_allowed(from_state: str, to_state: str) -> bool:
    """
    Check if a stage transition is allowed.

    Args:
        from_state: Current stage
        to_state: Target stage

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed = ALLOWED_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def create_machine(clock: Callable[[], datetime] = _utcnow) -> StateMachine:
    """Create a machine in the initiated stage with an empty history."""
    now = clock()
    return StateMachine(current_state=STAGE_INITIATED, created_at=now, updated_at=now)


def transition(
    machine: StateMachine,
    to_state: str,
    reason: str | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> TransitionOutcome:
    """
    Apply a stage transition to a machine.

    Never raises for an illegal target: the outcome carries success=False and the
    original machine, so the caller can treat a rejection as a no-op.

    Args:
        machine: Machine to transition (not modified)
        to_state: Target stage
        reason: Optional reason for the transition (kept in history for telemetry)
        clock: Time source for the transition timestamp

    Returns:
        TransitionOutcome with the new machine on success
    """
    from_state = machine.current_state

    if not is_transition_allowed(from_state, to_state):
        logger.warning(f"Invalid stage transition attempted: {from_state} -> {to_state}")
        return TransitionOutcome(
            success=False,
            machine=machine,
            message=(
                f"Invalid state transition from {from_state} to {to_state}. "
                f"Allowed transitions from {from_state}: {get_allowed_transitions(from_state)}"
            ),
        )

    now = clock()
    applied = StateTransition(
        from_state=from_state, to_state=to_state, timestamp=now, reason=reason
    )
    updated = replace(
        machine,
        previous_state=from_state,
        current_state=to_state,
        history=machine.history + (applied,),
        updated_at=now,
    )

    logger.info(
        f"Stage transitioned: {from_state} -> {to_state}"
        + (f" (reason: {reason})" if reason else "")
    )

    return TransitionOutcome(
        success=True,
        machine=updated,
        message=f"Successfully transitioned to state: {to_state}",
    )


def get_allowed_transitions(from_state: str) -> list[str]:
    """
    Get list of allowed transitions from a stage.

    Args:
        from_state: Current stage

    Returns:
        List of allowed target stages
    """
    return list(ALLOWED_TRANSITIONS.get(from_state, []))


def is_terminal_state(state: str) -> bool:
    """
    Check if a stage is terminal (no transitions allowed).

    Args:
        state: Stage to check

    Returns:
        True if terminal, False otherwise
    """
    return state in TERMINAL_STATES


def is_completed_state(state: str) -> bool:
    return state == STAGE_COMPLETED


def risk_tier(state: str) -> str:
    """Static risk tier used by downstream decisions: high, medium or low."""
    return _RISK_TIERS.get(state, RISK_LOW)


def get_state_semantics(state: str) -> str | None:
    """
    Get the semantic meaning of a stage (for documentation/debugging).

    Args:
        state: Stage to get semantics for

    Returns:
        Semantic description or None if not defined
    """
    return STATE_SEMANTICS.get(state)
