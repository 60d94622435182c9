"""
Booking flow API request/response schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InitializeFlowRequest(BaseModel):
    """Request schema for starting a booking flow."""

    transaction_id: str = Field(min_length=1, max_length=128)
    customer_id: str = Field(min_length=1, max_length=128)
    session_id: str = Field(min_length=1, max_length=128)
    device_type: str | None = None  # mobile, laptop, tablet, ...
    device_brand: str | None = None


class TransitionRequest(BaseModel):
    stage: str
    reason: str | None = None


class ConfidenceRequest(BaseModel):
    level: int = Field(ge=0, le=100)
    hesitation_points: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)


class ViewRequest(BaseModel):
    page_url: str = Field(min_length=1)
    view_name: str = Field(min_length=1)


class SignalsRequest(BaseModel):
    """Optional booking signals; only fields that are sent are updated."""

    model_config = ConfigDict(extra="forbid")

    device_type: str | None = None
    device_brand: str | None = None
    estimated_cost: float | None = Field(default=None, ge=0)
    deadline_hours: float | None = Field(default=None, ge=0)
    resource_certainty: int | None = Field(default=None, ge=0, le=100)
    part_availability: bool | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class TransitionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_state: str
    to_state: str
    timestamp: datetime
    reason: str | None = None


class FlowResultResponse(BaseModel):
    """Aggregated outcome of one booking signal."""

    success: bool
    message: str
    stage: str | None = None
    trust_intervention: dict[str, Any] | None = None
    conversion_hooks: list[dict[str, Any]] | None = None
    trust_messages: list[dict[str, Any]] | None = None
    drop_off_event: dict[str, Any] | None = None
    telemetry_events: list[dict[str, Any]] = Field(default_factory=list)


class FlowContextResponse(BaseModel):
    """Snapshot of a transaction context."""

    transaction_id: str
    customer_id: str
    session_id: str
    stage: str
    previous_stage: str | None = None
    risk_level: str
    allowed_transitions: list[str]
    customer_confidence: int
    current_view: str
    hesitation_points: list[str]
    risk_factors: list[str]
    signals: dict[str, Any]
    history: list[TransitionRecord]
