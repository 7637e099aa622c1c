"""
stacking.py
===========
Combines several coupon codes on one order into a single discount.

Codes are taken in the order they were submitted. Invalid codes are recorded
as conflicts and skipped. The first non-stackable coupon accepted closes the
batch to every later code, and a non-stackable coupon is refused once any
coupon has been accepted. The result is best-effort: whatever could be
applied is applied, and the caller decides whether that is good enough.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from coupon_validator import validate_coupon
from money import from_cents, to_cents
from repositories import CouponStore, normalize_code
from schemas import AppliedCoupon, Customer, DiscountStackingResult, OrderItem

logger = logging.getLogger(__name__)

CANNOT_COMBINE = "Cannot be combined with other coupons"


def calculate_stacked_discounts(
    store: CouponStore,
    items: List[OrderItem],
    customer: Customer,
    codes: List[str],
    subtotal: Decimal,
    now: Optional[datetime] = None,
) -> DiscountStackingResult:
    applied: List[AppliedCoupon] = []
    conflicts: List[str] = []
    warnings: List[str] = []
    seen = set()
    total_cents = 0
    has_non_stackable = False

    for code in codes:
        key = normalize_code(code)
        if key in seen:
            warnings.append(f"{code}: Coupon already applied")
            continue
        seen.add(key)

        validation = validate_coupon(store, code, items, customer, subtotal, now=now)
        if not validation.valid:
            conflicts.append(f"{code}: {validation.error}")
            continue

        coupon = validation.coupon
        if has_non_stackable:
            warnings.append(f"{code}: {CANNOT_COMBINE}")
            continue

        if not coupon.is_stackable:
            if applied:
                warnings.append(f"{code}: {CANNOT_COMBINE}")
                continue
            has_non_stackable = True

        applied.append(AppliedCoupon(
            code=coupon.code,
            type=coupon.type,
            discount=validation.discount,
            is_stackable=coupon.is_stackable,
            message=validation.message,
        ))
        total_cents += to_cents(validation.discount)

    if conflicts or warnings:
        logger.info(
            "Stacking for customer %s applied %d of %d codes",
            customer.id, len(applied), len(codes),
        )

    return DiscountStackingResult(
        total_discount=from_cents(total_cents),
        applied_coupons=applied,
        conflicts=conflicts,
        warnings=warnings,
    )
