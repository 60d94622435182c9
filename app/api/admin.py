import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Security
from sqlalchemy.orm import Session

from app.api.auth import get_admin_auth
from app.api.dependencies import get_orchestrator
from app.core.config import settings
from app.db.deps import get_db
from app.schemas.admin import (
    CleanupResponse,
    HookResponse,
    RetentionCleanupRequest,
    SessionCleanupRequest,
    SessionStatsResponse,
)
from app.services.flow_orchestrator import FlowOrchestrator
from app.services.telemetry_sink import cleanup_old_events, list_events

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/session-stats", response_model=SessionStatsResponse)
def session_stats(
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    """Drop-off statistics plus live and archived transaction counts."""
    return orchestrator.get_session_stats()


@router.get("/detection-stats", response_model=SessionStatsResponse)
def detection_stats(
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    return orchestrator.get_detection_stats()


@router.get("/hooks", response_model=list[HookResponse])
def list_hooks(
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    """Conversion hooks in table order (evaluation sorts by priority)."""
    return [
        HookResponse(
            id=h.id,
            name=h.name,
            description=h.description,
            priority=h.priority,
            enabled=h.enabled,
        )
        for h in orchestrator.list_hooks()
    ]


def _set_hook_enabled(orchestrator: FlowOrchestrator, hook_id: str, enabled: bool) -> dict:
    if not orchestrator.set_hook_enabled(hook_id, enabled):
        raise HTTPException(status_code=404, detail=f"Conversion hook {hook_id} not found")
    return {"success": True, "hook_id": hook_id, "enabled": enabled}


@router.post("/hooks/{hook_id}/enable")
def enable_hook(
    hook_id: str,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    return _set_hook_enabled(orchestrator, hook_id, True)


@router.post("/hooks/{hook_id}/disable")
def disable_hook(
    hook_id: str,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    return _set_hook_enabled(orchestrator, hook_id, False)


@router.delete("/hooks/{hook_id}")
def remove_hook(
    hook_id: str,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    if not orchestrator.remove_hook(hook_id):
        raise HTTPException(status_code=404, detail=f"Conversion hook {hook_id} not found")
    return {"success": True, "hook_id": hook_id}


@router.post("/sessions/cleanup", response_model=CleanupResponse)
def cleanup_sessions(
    body: SessionCleanupRequest | None = None,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    _auth: bool = Security(get_admin_auth),
):
    """Garbage-collect drop-off sessions older than max_age_seconds."""
    max_age = None
    if body is not None and body.max_age_seconds is not None:
        max_age = timedelta(seconds=body.max_age_seconds)
    removed = orchestrator.cleanup_sessions(max_age)
    return CleanupResponse(success=True, removed=removed)


@router.get("/events")
def list_persisted_events(
    transaction_id: str | None = None,
    kind: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Persisted telemetry rows. Empty when the durable sink is disabled."""
    if not settings.telemetry_sink_enabled:
        return []
    rows = list_events(db, transaction_id=transaction_id, kind=kind, limit=limit)
    return [
        {
            "event_id": r.event_id,
            "kind": r.kind,
            "transaction_id": r.transaction_id,
            "session_id": r.session_id,
            "source": r.source,
            "importance": r.importance,
            "correlation_id": r.correlation_id,
            "payload": r.payload,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]


@router.post("/events/retention-cleanup", response_model=CleanupResponse)
def retention_cleanup(
    body: RetentionCleanupRequest | None = None,
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Delete persisted telemetry rows older than retention_days."""
    if not settings.telemetry_sink_enabled:
        raise HTTPException(
            status_code=409,
            detail="Telemetry sink is disabled (set TELEMETRY_SINK_ENABLED=true)",
        )
    retention_days = settings.telemetry_retention_days
    if body is not None and body.retention_days is not None:
        retention_days = body.retention_days
    deleted = cleanup_old_events(db, retention_days=retention_days)
    return CleanupResponse(success=True, removed=deleted)
