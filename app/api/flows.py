"""
Booking flow endpoints - the inbound signal surface of the orchestrator.

Each call on an existing transaction holds that transaction's lock, so signals for
one booking are applied strictly one at a time.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, status

from app.api.dependencies import get_orchestrator, get_transaction_lock
from app.api.errors import not_found, raise_for_result
from app.schemas.flows import (
    CancelRequest,
    ConfidenceRequest,
    FlowContextResponse,
    FlowResultResponse,
    InitializeFlowRequest,
    SignalsRequest,
    TransitionRecord,
    TransitionRequest,
    ViewRequest,
)
from app.services import state_machine
from app.services.drop_off_detector import DropOffEvent
from app.services.flow_orchestrator import SIGNAL_FIELDS, FlowOrchestrator, FlowResult, TransactionContext

logger = logging.getLogger(__name__)

router = APIRouter()


def drop_off_event_dict(event: DropOffEvent) -> dict:
    return {
        "type": event.type,
        "session_id": event.session_id,
        "timestamp": event.timestamp.isoformat(),
        "stage": event.stage,
        "context": event.context,
        "risk_factors": list(event.risk_factors),
    }


def to_response(result: FlowResult) -> FlowResultResponse:
    return FlowResultResponse(
        success=result.success,
        message=result.message,
        stage=result.new_stage,
        trust_intervention=result.trust_intervention.to_dict() if result.trust_intervention else None,
        conversion_hooks=(
            [h.to_dict() for h in result.conversion_hooks]
            if result.conversion_hooks is not None
            else None
        ),
        trust_messages=(
            [t.to_dict() for t in result.trust_messages] if result.trust_messages is not None else None
        ),
        drop_off_event=drop_off_event_dict(result.drop_off_event) if result.drop_off_event else None,
        telemetry_events=[e.to_dict() for e in result.telemetry_events],
    )


def context_response(context: TransactionContext) -> FlowContextResponse:
    machine = context.machine
    return FlowContextResponse(
        transaction_id=context.transaction_id,
        customer_id=context.customer_id,
        session_id=context.session_id,
        stage=context.stage,
        previous_stage=machine.previous_state,
        risk_level=state_machine.risk_tier(context.stage),
        allowed_transitions=state_machine.get_allowed_transitions(context.stage),
        customer_confidence=context.customer_confidence,
        current_view=context.current_view,
        hesitation_points=list(context.hesitation_points),
        risk_factors=list(context.risk_factors),
        signals={name: getattr(context, name) for name in SIGNAL_FIELDS},
        history=[TransitionRecord.model_validate(t) for t in machine.history],
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=FlowResultResponse)
async def initialize_flow(
    body: InitializeFlowRequest,
    request: Request,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
):
    """Start a booking flow; 409 if the transaction id is already known."""
    lock = request.app.state.transaction_locks.lock_for(body.transaction_id)
    async with lock:
        result = await orchestrator.initialize(
            body.transaction_id,
            body.customer_id,
            body.session_id,
            device_type=body.device_type,
            device_brand=body.device_brand,
        )
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/transition", response_model=FlowResultResponse)
async def transition_flow(
    transaction_id: str,
    body: TransitionRequest,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    async with lock:
        result = await orchestrator.transition(transaction_id, body.stage, body.reason)
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/confidence", response_model=FlowResultResponse)
async def update_confidence(
    transaction_id: str,
    body: ConfidenceRequest,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    async with lock:
        result = await orchestrator.update_confidence(
            transaction_id, body.level, body.hesitation_points, body.risk_factors
        )
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/views", response_model=FlowResultResponse)
async def record_view(
    transaction_id: str,
    body: ViewRequest,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    async with lock:
        result = await orchestrator.record_view(transaction_id, body.page_url, body.view_name)
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/signals", response_model=FlowResultResponse)
async def set_signals(
    transaction_id: str,
    body: SignalsRequest,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    async with lock:
        result = orchestrator.set_signals(transaction_id, **body.model_dump(exclude_unset=True))
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/complete", response_model=FlowResultResponse)
async def complete_flow(
    transaction_id: str,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    async with lock:
        result = await orchestrator.complete(transaction_id)
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/cancel", response_model=FlowResultResponse)
async def cancel_flow(
    transaction_id: str,
    body: CancelRequest | None = None,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    reason = body.reason if body else None
    async with lock:
        result = await orchestrator.cancel(transaction_id, reason)
    return to_response(raise_for_result(result))


@router.post("/{transaction_id}/hesitation", response_model=FlowResultResponse)
async def process_hesitation(
    transaction_id: str,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    lock: asyncio.Lock = Depends(get_transaction_lock),
):
    """Run every matching conversion hook, the trust fallback and a drop-off check."""
    async with lock:
        result = await orchestrator.process_hesitation(transaction_id)
    return to_response(raise_for_result(result))


@router.get("/{transaction_id}", response_model=FlowContextResponse)
def get_flow(transaction_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    context = orchestrator.get_context(transaction_id)
    if context is None:
        raise not_found(transaction_id)
    return context_response(context)


@router.get("/{transaction_id}/events")
def get_flow_events(transaction_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    """Telemetry events for one transaction, in emission order."""
    if orchestrator.get_context(transaction_id) is None:
        raise not_found(transaction_id)
    return [e.to_dict() for e in orchestrator.get_telemetry_events(transaction_id)]


@router.get("/{transaction_id}/trust-history")
def get_trust_history(transaction_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    if orchestrator.get_context(transaction_id) is None:
        raise not_found(transaction_id)
    return [t.to_dict() for t in orchestrator.get_trust_history(transaction_id)]
