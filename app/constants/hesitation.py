"""
Hesitation point tags and conversion action types.

Hesitation points arrive from the product layer as free strings; these are the
tags the default rules react to.
"""

HESITATION_PRICE = "price"
HESITATION_DEADLINE = "sla"
HESITATION_RESOURCE = "technician"
HESITATION_DELAY = "delay"
HESITATION_PAYMENT = "payment"
HESITATION_PARTS = "parts"
HESITATION_URGENCY = "urgency"

# ---- Conversion hook action types ----
ACTION_REASSURANCE = "reassurance"
ACTION_DISCOUNT = "discount"
ACTION_URGENCY = "urgency"
ACTION_TRANSPARENCY = "transparency"

# ---- Drop-off detection types ----
DROP_OFF_ABANDONED = "abandoned"
DROP_OFF_BOUNCED = "bounced"
DROP_OFF_HESITATED = "hesitated"
DROP_OFF_BOUNCE_ATTEMPT = "bounce_attempt"

# Page URL fragments that count towards bounce detection
BOUNCE_URL_TAGS = ("pricing", "checkout")
