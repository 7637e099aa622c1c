"""
pricing.py
==========
Prices an order end to end:

1. subtotal from the order lines
2. all coupon codes resolved together against that subtotal
3. each applied coupon's discount spread over the lines that coupon covers,
   never taking a line below zero
4. tax computed on the discounted lines
5. total = discounted subtotal + tax that is not already in the prices

Discount is applied before tax so that value given away is never taxed, and
only on the lines it was given on, so product-specific tax rules see the
right base.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

import coupon_engine
from money import from_cents, round_cents, to_cents
from repositories import CouponStore, TaxConfigStore
from schemas import Customer, OrderItem, PricingBreakdown, TaxConfig
from stacking import calculate_stacked_discounts
from tax_engine import item_net_cents, calculate_tax

logger = logging.getLogger(__name__)


def _split(bases: Sequence[int], amount: int) -> List[int]:
    """Split ``amount`` cents in proportion to ``bases``, capped at their sum."""
    total = sum(bases)
    amount = min(amount, total)
    if amount <= 0:
        return [0] * len(bases)

    shares = [round_cents(Decimal(base) * amount / total) for base in bases]

    # Fix rounding drift on the largest line
    drift = amount - sum(shares)
    if drift:
        largest = max(range(len(bases)), key=lambda i: bases[i])
        shares[largest] += drift
    return shares


def _with_line_discounts(items: List[OrderItem], shares: Sequence[int]) -> List[OrderItem]:
    allocated = []
    for item, share in zip(items, shares):
        if not share:
            allocated.append(item)
            continue
        existing = to_cents(item.discount) if item.discount else 0
        allocated.append(item.model_copy(update={"discount": from_cents(existing + share)}))
    return allocated


def allocate_discount(items: List[OrderItem], discount_cents: int) -> List[OrderItem]:
    """
    Spread an order-level discount over all lines in proportion to their net
    value, recording it in each line's ``discount``.
    """
    return _with_line_discounts(items, _split([item_net_cents(item) for item in items], discount_cents))


def allocate_coupon_discounts(
    coupon_store: CouponStore,
    items: List[OrderItem],
    applied_coupons,
) -> List[int]:
    """
    Cents of discount per line. Each coupon's discount goes onto the lines it
    applies to, in proportion to what is left of them after earlier coupons.
    """
    remaining = [item_net_cents(item) for item in items]
    shares = [0] * len(items)

    for applied in applied_coupons:
        coupon = coupon_store.get(applied.code)
        if coupon is None:
            lines = list(range(len(items)))
        else:
            lines = [i for i, item in enumerate(items) if coupon_engine.is_applicable(item, coupon)]

        split = _split([remaining[i] for i in lines], to_cents(applied.discount))
        for i, share in zip(lines, split):
            remaining[i] -= share
            shares[i] += share

    return shares


def price_order(
    coupon_store: CouponStore,
    items: List[OrderItem],
    customer: Customer,
    coupon_codes: List[str],
    tax_configs: Optional[List[TaxConfig]] = None,
    is_inclusive: Optional[bool] = None,
    tax_store: Optional[TaxConfigStore] = None,
    now: Optional[datetime] = None,
) -> PricingBreakdown:
    subtotal_cents = sum(item_net_cents(item) for item in items)
    subtotal = from_cents(subtotal_cents)

    stacking = calculate_stacked_discounts(coupon_store, items, customer, coupon_codes, subtotal, now=now)

    shares = allocate_coupon_discounts(coupon_store, items, stacking.applied_coupons)
    discount_cents = sum(shares)
    discounted_items = _with_line_discounts(items, shares)

    tax = calculate_tax(discounted_items, tax_configs, is_inclusive, store=tax_store)

    logger.debug(
        "Priced order for %s: subtotal=%s discount=%s tax=%s total=%s",
        customer.id, subtotal, from_cents(discount_cents), tax.tax_amount, tax.total,
    )
    return PricingBreakdown(
        subtotal=subtotal,
        discount=from_cents(discount_cents),
        discounted_subtotal=from_cents(subtotal_cents - discount_cents),
        tax=tax,
        total=tax.total,
        stacking=stacking,
    )
