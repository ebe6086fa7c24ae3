"""
Credits Configuration and Constants

Tier quotas, passcode format and user-facing messages are defined here.
"""

# ==================== TIER QUOTAS ====================
# Lifetime metered actions available on the free tier (never resets)
FREE_LIMIT = 3

# Uses granted by each successful passcode redemption
PREMIUM_USES = 100

# Length of the premium period started by a redemption
PREMIUM_DURATION_DAYS = 30

# ==================== PASSCODE FORMAT ====================
# Letters minus I/O, digits minus 0/1
PASSCODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PASSCODE_SUFFIX_LENGTH = 8
PASSCODE_PREFIX_MAX_LENGTH = 6
DEFAULT_PASSCODE_PREFIX = "AUTO"

# Longest code that can exist: PREFIX-SUFFIX
PASSCODE_MAX_LENGTH = PASSCODE_PREFIX_MAX_LENGTH + 1 + PASSCODE_SUFFIX_LENGTH

# Fresh suffixes tried before giving up on a unique code
PASSCODE_GENERATE_MAX_ATTEMPTS = 5

# ==================== ROLES ====================
ADMIN_ROLE = "admin"

# ==================== ADMIN LISTINGS ====================
ADMIN_LIST_DEFAULT_LIMIT = 50
ADMIN_LIST_MAX_LIMIT = 200

# ==================== ERROR CODES ====================
ERROR_CODES = {
    "QUOTA_EXHAUSTED": "No credits remaining. Upgrade to Premium for 100 monthly uses!",
    "NOT_FOUND_OR_USED": "Invalid or already used passcode.",
    "STORE_UNAVAILABLE": "Something went wrong on our side. Please try again.",
    "INVALID_PREFIX": "Prefix must be 1-6 letters or digits.",
    "ADMIN_REQUIRED": "Admin access required",
}

# Confirmation shown after a successful redemption
REDEEM_SUCCESS_MESSAGE = (
    f"Premium activated! You have {PREMIUM_USES} uses for the next "
    f"{PREMIUM_DURATION_DAYS} days."
)

# ==================== METERED FEATURES ====================
# AI features that spend one use per request
METERED_FEATURES = {
    "damage_analysis": "AI damage analysis",
    "fault_code": "Fault code explanation",
    "ocr_scan": "Document OCR scan",
    "workshop_chat": "Workshop assistant chat",
}
