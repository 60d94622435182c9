"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.admin import (
    CleanupResponse,
    HookResponse,
    RetentionCleanupRequest,
    SessionCleanupRequest,
    SessionStatsResponse,
)
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

__all__ = [
    "InitializeFlowRequest",
    "TransitionRequest",
    "ConfidenceRequest",
    "ViewRequest",
    "SignalsRequest",
    "CancelRequest",
    "TransitionRecord",
    "FlowResultResponse",
    "FlowContextResponse",
    "SessionStatsResponse",
    "HookResponse",
    "SessionCleanupRequest",
    "RetentionCleanupRequest",
    "CleanupResponse",
]
