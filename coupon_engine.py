"""
coupon_engine.py
================
Core business logic for computing coupon discounts.

Implemented Cases:
------------------
1. percentage:
   - Percentage of the applicable subtotal, clamped to max_discount when it
     is set and non-zero.

2. fixed:
   - Flat amount off, never more than the applicable subtotal.

3. bogo (Buy X, Get Y, repeating):
   - Every complete set of (buy_quantity + get_quantity) applicable units
     earns get_quantity free units.

4. buy_x_get_y (single threshold):
   - Reaching buy_quantity applicable units earns get_quantity free units once.

5. free_shipping:
   - The discount is the coupon value, i.e. the shipping cost being waived.

Free units for 3 and 4 are taken from the cheapest applicable lines first
(ascending unit price), splitting a line when it holds more units than are
still owed.

All arithmetic is in integer cents; the result is rounded half-up to a cent
only when it is returned.

Applicability:
--------------
A line is applicable when its product and category are not excluded and,
where applicable_products / applicable_categories are configured, its
product / category is listed. Lines without a category never match a
category allow-list.
"""

from decimal import Decimal
from typing import List

from money import from_cents, line_cents, round_cents, to_cents, to_decimal
from schemas import Coupon, CouponType, OrderItem


def is_applicable(item: OrderItem, coupon: Coupon) -> bool:
    if coupon.excluded_products and item.product_id in coupon.excluded_products:
        return False
    if coupon.excluded_categories and item.category in coupon.excluded_categories:
        return False
    if coupon.applicable_products and item.product_id not in coupon.applicable_products:
        return False
    if coupon.applicable_categories and item.category not in coupon.applicable_categories:
        return False
    return True


def get_applicable_items(items: List[OrderItem], coupon: Coupon) -> List[OrderItem]:
    return [item for item in items if is_applicable(item, coupon)]


def _subtotal_cents(items: List[OrderItem]) -> int:
    return sum(line_cents(item.quantity, item.price) for item in items)


# ─────────────────────────── Percentage ───────────────────────────

def _percentage_discount(items: List[OrderItem], coupon: Coupon) -> Decimal:
    discount = Decimal(_subtotal_cents(items)) * to_decimal(coupon.value) / 100
    # A max_discount of 0 means no cap
    if coupon.max_discount:
        discount = min(discount, Decimal(to_cents(coupon.max_discount)))
    return discount


# ─────────────────────────── Fixed ───────────────────────────

def _fixed_discount(items: List[OrderItem], coupon: Coupon) -> Decimal:
    return Decimal(min(to_cents(coupon.value), _subtotal_cents(items)))


# ─────────────────────────── BOGO / Buy X Get Y ───────────────────────────

def _free_units_value(items: List[OrderItem], free_units: int) -> int:
    """Value in cents of ``free_units`` units taken cheapest line first."""
    total = 0
    remaining = free_units
    for item in sorted(items, key=lambda i: to_decimal(i.price)):
        if remaining <= 0:
            break
        free_qty = min(item.quantity, remaining)
        total += line_cents(free_qty, item.price)
        remaining -= free_qty
    return total


def _bogo_discount(items: List[OrderItem], coupon: Coupon) -> Decimal:
    if not coupon.buy_quantity or not coupon.get_quantity:
        return Decimal(0)
    total_qty = sum(item.quantity for item in items)
    sets = total_qty // (coupon.buy_quantity + coupon.get_quantity)
    return Decimal(_free_units_value(items, sets * coupon.get_quantity))


def _buy_x_get_y_discount(items: List[OrderItem], coupon: Coupon) -> Decimal:
    if not coupon.buy_quantity or not coupon.get_quantity:
        return Decimal(0)
    total_qty = sum(item.quantity for item in items)
    if total_qty < coupon.buy_quantity:
        return Decimal(0)
    return Decimal(_free_units_value(items, coupon.get_quantity))


# ─────────────────────────── Free shipping ───────────────────────────

def _free_shipping_discount(items: List[OrderItem], coupon: Coupon) -> Decimal:
    return Decimal(to_cents(coupon.value))


_CALCULATORS = {
    CouponType.percentage: _percentage_discount,
    CouponType.fixed: _fixed_discount,
    CouponType.bogo: _bogo_discount,
    CouponType.buy_x_get_y: _buy_x_get_y_discount,
    CouponType.free_shipping: _free_shipping_discount,
}


def calculate_discount_cents(coupon: Coupon, items: List[OrderItem]) -> int:
    """Discount in whole cents over the lines the coupon applies to."""
    calculator = _CALCULATORS.get(coupon.type)
    if calculator is None:
        raise ValueError(f"Unknown coupon type: {coupon.type}")
    return round_cents(calculator(get_applicable_items(items, coupon), coupon))


def calculate_coupon_discount(coupon: Coupon, items: List[OrderItem]) -> Decimal:
    return from_cents(calculate_discount_cents(coupon, items))


# ─────────────────────────── Messages ───────────────────────────

def coupon_message(coupon: Coupon, discount: Decimal) -> str:
    saved = f"You saved ${discount:.2f}"
    if coupon.type == CouponType.percentage:
        return f"{to_decimal(coupon.value).normalize():f}% off applied! {saved}"
    if coupon.type == CouponType.fixed:
        return f"${to_decimal(coupon.value):.2f} off applied! {saved}"
    if coupon.type in (CouponType.bogo, CouponType.buy_x_get_y):
        return f"Buy {coupon.buy_quantity} Get {coupon.get_quantity} Free! {saved}"
    if coupon.type == CouponType.free_shipping:
        return "Free shipping applied!"
    return f"Coupon applied! {saved}"
