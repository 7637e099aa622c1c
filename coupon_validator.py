"""
coupon_validator.py
===================
Decides whether a coupon code may be used on an order.

Checks run in a fixed order and stop at the first failure:
exists → active → inside validity window → global cap → minimum order value
→ customer allow-list → tier allow-list → per-customer cap → has applicable
lines. Only a coupon that passes all of them gets its discount computed. A
coupon that is valid but discounts nothing is still reported valid.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import coupon_engine
from clock import as_utc, resolve_now
from money import from_cents, to_cents, to_decimal
from repositories import CouponStore
from schemas import CouponValidation, Customer, InvalidReason, OrderItem

logger = logging.getLogger(__name__)


def validate_coupon(
    store: CouponStore,
    code: str,
    items: List[OrderItem],
    customer: Customer,
    subtotal: Decimal,
    now: Optional[datetime] = None,
) -> CouponValidation:
    coupon = store.get(code)
    if coupon is None:
        return CouponValidation.invalid(InvalidReason.not_found, "Invalid coupon code")

    if not coupon.is_active:
        return CouponValidation.invalid(InvalidReason.inactive, "This coupon is not active")

    now = resolve_now(now)
    if as_utc(coupon.valid_from) > now:
        return CouponValidation.invalid(
            InvalidReason.not_yet_valid,
            f"This coupon is not valid until {as_utc(coupon.valid_from):%Y-%m-%d}",
        )
    if as_utc(coupon.valid_until) < now:
        return CouponValidation.invalid(InvalidReason.expired, "This coupon has expired")

    if coupon.max_usages is not None and coupon.usage_count >= coupon.max_usages:
        return CouponValidation.invalid(
            InvalidReason.usage_limit_reached, "This coupon has reached its usage limit"
        )

    if coupon.min_order_value is not None and to_cents(subtotal) < to_cents(coupon.min_order_value):
        return CouponValidation.invalid(
            InvalidReason.below_minimum_order,
            f"Minimum order value of ${to_decimal(coupon.min_order_value):.2f} required",
        )

    if coupon.applicable_customers and customer.id not in coupon.applicable_customers:
        return CouponValidation.invalid(
            InvalidReason.customer_not_eligible, "This coupon is not valid for your account"
        )

    if coupon.applicable_customer_tiers and customer.tier not in coupon.applicable_customer_tiers:
        return CouponValidation.invalid(
            InvalidReason.tier_not_eligible,
            f"This coupon is only valid for {', '.join(coupon.applicable_customer_tiers)} customers",
        )

    if coupon.max_usages_per_customer is not None:
        used = store.get_customer_usage(customer.id, coupon.code)
        if used >= coupon.max_usages_per_customer:
            return CouponValidation.invalid(
                InvalidReason.customer_usage_limit_reached,
                "You have already used this coupon the maximum number of times",
            )

    if not coupon_engine.get_applicable_items(items, coupon):
        return CouponValidation.invalid(
            InvalidReason.no_applicable_items,
            "This coupon is not valid for any items in your cart",
        )

    discount = from_cents(coupon_engine.calculate_discount_cents(coupon, items))
    logger.debug("Coupon %s valid for customer %s, discount %s", coupon.code, customer.id, discount)
    return CouponValidation(
        valid=True,
        discount=discount,
        coupon=coupon,
        message=coupon_engine.coupon_message(coupon, discount),
    )
