"""
Trust injection points and message categories.
"""

# ---- Booking flow injection points ----
POINT_CHECKOUT = "checkout"
POINT_RESOURCE_ASSIGNMENT = "resource_assignment"
POINT_PART_UNAVAILABILITY = "part_unavailability"
POINT_PRICE_CONFIRMATION = "price_confirmation"
POINT_DEADLINE_VIEW = "deadline_view"

# ---- Risk moment injection points ----
POINT_PRICE_HESITATION = "price_hesitation"
POINT_DEADLINE_AMBIGUITY = "deadline_ambiguity"
POINT_RESOURCE_UNCERTAINTY = "resource_uncertainty"
POINT_DELAY_FEARS = "delay_fears"
POINT_PAYMENT_UNCERTAINTY = "payment_uncertainty"

# ---- General injection points ----
POINT_BOOKING_STARTED = "booking_started"
POINT_BOOKING_VALIDATION = "booking_validation"
POINT_CONFIDENCE_DROP = "confidence_drop"
POINT_SESSION_RESTART = "session_restart"
POINT_CONTACT_INITIATION = "contact_initiation"

# ---- Priorities (trust rules) ----
PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"

PRIORITY_RANK = {PRIORITY_HIGH: 3, PRIORITY_MEDIUM: 2, PRIORITY_LOW: 1}

# ---- Message categories ----
CATEGORY_REASSURANCE = "reassurance"
CATEGORY_TRANSPARENCY = "transparency"
CATEGORY_CONFIDENCE = "confidence"
CATEGORY_URGENCY = "urgency"
