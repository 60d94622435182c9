"""
Tests for the lifecycle state machine: legal/illegal pairs, terminal stages, immutability.
"""

from datetime import UTC, datetime

import pytest

from app.constants.stages import (
    ALL_STAGES,
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
from app.services.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    StateMachine,
    create_machine,
    get_allowed_transitions,
    get_state_semantics,
    is_completed_state,
    is_terminal_state,
    is_transition_allowed,
    risk_tier,
    transition,
)
from tests.helpers.clock import FakeClock

LEGAL_PAIRS = [(a, b) for a, targets in ALLOWED_TRANSITIONS.items() for b in targets]
ILLEGAL_PAIRS = [
    (a, b) for a in ALL_STAGES for b in ALL_STAGES if b not in ALLOWED_TRANSITIONS[a]
]
TERMINAL_PAIRS = [(a, b) for a in sorted(TERMINAL_STATES) for b in ALL_STAGES]


def machine_in(stage: str, clock=None) -> StateMachine:
    """Machine sitting in `stage` with a one-entry history (bypasses the table)."""
    now = (clock or FakeClock())()
    return StateMachine(current_state=stage, created_at=now, updated_at=now)


def test_create_machine_starts_initiated():
    """A new machine is in initiated with no history."""
    clock = FakeClock()
    machine = create_machine(clock)
    assert machine.current_state == STAGE_INITIATED
    assert machine.previous_state is None
    assert machine.history == ()
    assert machine.created_at == clock.now


@pytest.mark.parametrize("from_state,to_state", LEGAL_PAIRS)
def test_legal_transition_succeeds(from_state, to_state):
    """Every legal pair moves the machine and appends exactly one history entry."""
    clock = FakeClock()
    machine = machine_in(from_state, clock)
    clock.advance(5)

    outcome = transition(machine, to_state, reason="test", clock=clock)

    assert outcome.success is True
    assert outcome.machine.current_state == to_state
    assert outcome.machine.previous_state == from_state
    assert len(outcome.machine.history) == len(machine.history) + 1
    last = outcome.machine.history[-1]
    assert (last.from_state, last.to_state, last.reason) == (from_state, to_state, "test")
    assert last.timestamp == clock.now
    assert outcome.message == f"Successfully transitioned to state: {to_state}"


@pytest.mark.parametrize("from_state,to_state", ILLEGAL_PAIRS)
def test_illegal_transition_leaves_machine_unchanged(from_state, to_state):
    """Illegal pairs fail and return the very same machine."""
    machine = machine_in(from_state)

    outcome = transition(machine, to_state)

    assert outcome.success is False
    assert outcome.machine is machine
    assert outcome.machine.current_state == from_state
    assert outcome.machine.history == machine.history
    assert "Invalid state transition" in outcome.message


@pytest.mark.parametrize("terminal,target", TERMINAL_PAIRS)
def test_terminal_states_reject_everything(terminal, target):
    """No transition is possible out of a terminal stage, including to itself."""
    outcome = transition(machine_in(terminal), target)
    assert outcome.success is False
    assert get_allowed_transitions(terminal) == []


def test_unknown_target_is_rejected():
    """A stage that does not exist is just another illegal target."""
    outcome = transition(create_machine(FakeClock()), "teleported")
    assert outcome.success is False
    assert outcome.machine.current_state == STAGE_INITIATED


def test_transition_does_not_mutate_input():
    """The input machine is untouched after a successful transition."""
    machine = create_machine(FakeClock())
    outcome = transition(machine, STAGE_VALIDATING)
    assert outcome.success is True
    assert machine.current_state == STAGE_INITIATED
    assert machine.history == ()


def test_assigned_can_fall_back_to_resource_match():
    """An assigned resource dropping out sends the booking back to matching."""
    assert is_transition_allowed(STAGE_ASSIGNED, STAGE_RESOURCE_MATCH)
    assert not is_transition_allowed(STAGE_ACCEPTED, STAGE_RESOURCE_MATCH)


@pytest.mark.parametrize("stage", [s for s in ALL_STAGES if s not in TERMINAL_STATES])
def test_every_active_stage_can_cancel_or_fail(stage):
    """Cancellation and failure are reachable from every non-terminal stage."""
    assert is_transition_allowed(stage, STAGE_CANCELLED)
    assert is_transition_allowed(stage, STAGE_FAILED)


def test_full_happy_path_history():
    """Walking the canonical path records each hop in order."""
    clock = FakeClock()
    machine = create_machine(clock)
    path = [
        STAGE_VALIDATING,
        STAGE_RESOURCE_MATCH,
        STAGE_ASSIGNED,
        STAGE_ACCEPTED,
        STAGE_CONFIRMED,
        STAGE_ESCROW_PENDING,
        STAGE_COMPLETED,
    ]
    for stage in path:
        clock.advance(1)
        outcome = transition(machine, stage, clock=clock)
        assert outcome.success is True
        machine = outcome.machine

    assert [t.to_state for t in machine.history] == path
    assert machine.previous_states == [STAGE_INITIATED] + path[:-1]
    assert machine.entered_current_state_at == clock.now


def test_get_allowed_transitions_returns_copy():
    """Mutating the returned list never changes the table."""
    allowed = get_allowed_transitions(STAGE_INITIATED)
    allowed.append(STAGE_COMPLETED)
    assert STAGE_COMPLETED not in get_allowed_transitions(STAGE_INITIATED)


def test_state_helpers():
    """Terminal/completed checks, risk tiers and semantics."""
    assert is_terminal_state(STAGE_FAILED)
    assert not is_terminal_state(STAGE_CONFIRMED)
    assert is_completed_state(STAGE_COMPLETED)
    assert not is_completed_state(STAGE_CANCELLED)
    assert risk_tier(STAGE_VALIDATING) == RISK_HIGH
    assert risk_tier(STAGE_ASSIGNED) == RISK_MEDIUM
    assert risk_tier(STAGE_CONFIRMED) == RISK_LOW
    assert get_state_semantics(STAGE_ESCROW_PENDING)
    assert get_state_semantics("nope") is None


def test_entered_current_state_at_defaults_to_creation():
    """Before any transition, the stage was entered at creation time."""
    created = datetime(2026, 3, 1, tzinfo=UTC)
    machine = StateMachine(current_state=STAGE_INITIATED, created_at=created, updated_at=created)
    assert machine.entered_current_state_at == created
