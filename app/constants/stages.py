"""
Lifecycle stage constants - centralized to avoid circular imports.

Order matters: ALL_STAGES lists the canonical progression followed by the
terminal stages.
"""

# Canonical progression
STAGE_INITIATED = "initiated"  # Customer begins the booking flow
STAGE_VALIDATING = "validating"  # Inputs validated, availability checked
STAGE_RESOURCE_MATCH = "resource-match"  # Finding a suitable technician/resource
STAGE_ASSIGNED = "assigned"  # Resource assigned but not confirmed
STAGE_ACCEPTED = "accepted"  # Resource accepted the booking
STAGE_CONFIRMED = "confirmed"  # Confirmed by both parties
STAGE_ESCROW_PENDING = "escrow-pending"  # Payment held in escrow

# Terminal stages
STAGE_COMPLETED = "completed"  # Service completed and payment released
STAGE_CANCELLED = "cancelled"
STAGE_FAILED = "failed"

ALL_STAGES = (
    STAGE_INITIATED,
    STAGE_VALIDATING,
    STAGE_RESOURCE_MATCH,
    STAGE_ASSIGNED,
    STAGE_ACCEPTED,
    STAGE_CONFIRMED,
    STAGE_ESCROW_PENDING,
    STAGE_COMPLETED,
    STAGE_CANCELLED,
    STAGE_FAILED,
)

# Risk tiers (see state_machine.risk_tier)
RISK_HIGH = "high"
RISK_MEDIUM = "medium"
RISK_LOW = "low"
