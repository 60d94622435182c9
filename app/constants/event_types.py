"""
Telemetry event kinds.

Use these instead of string literals to ensure consistency.
"""

# ---- Booking flow ----
EVENT_BOOKING_STARTED = "booking_started"
EVENT_BOOKING_VALIDATED = "booking_validated"
EVENT_RESOURCE_MATCHED = "resource_matched"
EVENT_RESOURCE_ASSIGNED = "resource_assigned"
EVENT_RESOURCE_ACCEPTED = "resource_accepted"
EVENT_BOOKING_CONFIRMED = "booking_confirmed"
EVENT_PAYMENT_PENDING = "payment_pending"
EVENT_BOOKING_COMPLETED = "booking_completed"
EVENT_BOOKING_CANCELLED = "booking_cancelled"
EVENT_BOOKING_FAILED = "booking_failed"

# ---- Trust and conversion ----
EVENT_TRUST_INJECTION = "trust_injection"
EVENT_HESITATION_DETECTED = "hesitation_detected"
EVENT_DEADLINE_WARNING = "deadline_warning"
EVENT_PRICE_ACCEPTED = "price_accepted"
EVENT_CONFIDENCE_DROP = "confidence_drop"
EVENT_CONFIDENCE_RECOVERY = "confidence_recovery"

# ---- Risk and detection ----
EVENT_RISK_TRIGGERS_DETECTED = "risk_triggers_detected"
EVENT_DROP_OFF_DETECTED = "drop_off_detected"
EVENT_SESSION_TIMEOUT = "session_timeout"
EVENT_USER_ABANDON = "user_abandon"
EVENT_BOUNCED_BOOKING = "bounced_booking"

# ---- Customer interaction ----
EVENT_CUSTOMER_CONTACT_INITIATED = "customer_contact_initiated"
EVENT_CUSTOMER_CONTACT_COMPLETED = "customer_contact_completed"
EVENT_CUSTOMER_FEEDBACK_SUBMITTED = "customer_feedback_submitted"
EVENT_CUSTOMER_REASSURANCE_REQUESTED = "customer_reassurance_requested"

# ---- Notifications ----
EVENT_SYSTEM_NOTIFICATION_SENT = "system_notification_sent"
EVENT_PUSH_NOTIFICATION_SENT = "push_notification_sent"
EVENT_SMS_NOTIFICATION_SENT = "sms_notification_sent"
EVENT_EMAIL_NOTIFICATION_SENT = "email_notification_sent"

# ---- Conversion optimization ----
EVENT_CONVERSION_OPTIMIZATION_TRIGGERED = "conversion_optimization_triggered"
EVENT_AB_TEST_IMPRESSION = "a_b_test_impression"
EVENT_AB_TEST_CONVERSION = "a_b_test_conversion"
EVENT_CONVERSION_OPTIMIZATION_FAILED = "conversion_optimization_failed"

# ---- Sources (actor that caused the event) ----
SOURCE_CUSTOMER = "customer"
SOURCE_SYSTEM = "system"

# ---- Importance levels ----
IMPORTANCE_LOW = "low"
IMPORTANCE_MEDIUM = "medium"
IMPORTANCE_HIGH = "high"
IMPORTANCE_CRITICAL = "critical"
