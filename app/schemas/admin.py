"""
Admin API request/response schemas.
"""

from pydantic import BaseModel, Field


class SessionStatsResponse(BaseModel):
    """Drop-off detection statistics plus live/archived transaction counts."""

    total_sessions: int
    completed_sessions: int
    drop_offs: int
    bounce_attempts: int
    hesitations: int
    detection_events: int
    completion_rate: float
    active_transactions: int | None = None
    archived_transactions: int | None = None


class HookResponse(BaseModel):
    id: str
    name: str
    description: str
    priority: int
    enabled: bool


class SessionCleanupRequest(BaseModel):
    max_age_seconds: int | None = Field(default=None, ge=0)  # Defaults to SESSION_MAX_AGE_SECONDS


class RetentionCleanupRequest(BaseModel):
    retention_days: int | None = Field(default=None, ge=0)  # Defaults to TELEMETRY_RETENTION_DAYS


class CleanupResponse(BaseModel):
    success: bool
    removed: int
