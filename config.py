"""
config.py
=========
Runtime settings, read once from the environment.
"""

import os
from decimal import Decimal

# ── Database ──────────────────────────────────────────────────
DATABASE_URL = os.environ.get("PRICING_DATABASE_URL", "sqlite:///./pricing.db")

# ── Logging ───────────────────────────────────────────────────
LOG_LEVEL = os.environ.get("PRICING_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# ── Coupons ───────────────────────────────────────────────────
COUPON_CODE_LENGTH = int(os.environ.get("PRICING_COUPON_CODE_LENGTH", "8"))
COUPON_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_BULK_COUPONS = 1000

# ── Tax ───────────────────────────────────────────────────────
# Used when a request does not say whether prices already include tax.
TAX_INCLUSIVE_DEFAULT = os.environ.get("PRICING_TAX_INCLUSIVE", "false").lower() in ("1", "true", "yes")

# Audit trail entries kept; the oldest are dropped beyond this.
TAX_HISTORY_LIMIT = int(os.environ.get("PRICING_TAX_HISTORY_LIMIT", "1000"))

# ── Loyalty ───────────────────────────────────────────────────
# Defaults until an administrator saves a program through the API.
LOYALTY_POINTS_PER_DOLLAR = Decimal(os.environ.get("PRICING_LOYALTY_POINTS_PER_DOLLAR", "1"))
LOYALTY_DOLLARS_PER_POINT = Decimal(os.environ.get("PRICING_LOYALTY_DOLLARS_PER_POINT", "0.01"))
LOYALTY_MINIMUM_REDEMPTION = int(os.environ.get("PRICING_LOYALTY_MINIMUM_REDEMPTION", "100"))
LOYALTY_EXPIRATION_DAYS = int(os.environ.get("PRICING_LOYALTY_EXPIRATION_DAYS", "365")) or None
LOYALTY_LOT_POLICY = os.environ.get("PRICING_LOYALTY_LOT_POLICY", "fifo")
LOYALTY_TIER_MULTIPLIERS = {
    "vip": Decimal("3"),
    "wholesale": Decimal("2"),
    "regular": Decimal("1"),
    "new": Decimal("1.5"),
}
