"""
test_coupon_engine.py
=====================
Discount computation per coupon type, applicability filtering and rounding.
"""

from decimal import Decimal

import pytest

import coupon_engine
from conftest import item, make_coupon
from schemas import CouponType


# ══════════════════════════════════════════════
#  Percentage
# ══════════════════════════════════════════════

class TestPercentage:

    def test_capped_at_max_discount(self):
        coupon = make_coupon(value="20", max_discount=Decimal("50"))
        items = [item("p1", 10, "100")]
        assert coupon_engine.calculate_coupon_discount(coupon, items) == Decimal("50.00")

    def test_uncapped(self):
        coupon = make_coupon(value="20")
        items = [item("p1", 10, "100")]
        assert coupon_engine.calculate_coupon_discount(coupon, items) == Decimal("200.00")

    def test_rounds_half_up_at_the_end(self):
        # 15% of 33.33 is 4.9995
        coupon = make_coupon(value="15")
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 1, "33.33")]) == Decimal("5.00")

    def test_only_applicable_lines_are_discounted(self):
        coupon = make_coupon(value="50", applicable_products=["p1"])
        items = [item("p1", 1, "10"), item("p2", 1, "90")]
        assert coupon_engine.calculate_coupon_discount(coupon, items) == Decimal("5.00")

    def test_zero_max_discount_means_no_cap(self):
        coupon = make_coupon(value="20", max_discount=Decimal("0"))
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 1, "100")]) == Decimal("20.00")

    def test_sub_cent_price_is_rounded_on_the_line_total(self):
        # 8 × 0.125 is exactly 1.00; never more than the line is worth
        coupon = make_coupon(value="100")
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 8, "0.125")]) == Decimal("1.00")


# ══════════════════════════════════════════════
#  Fixed
# ══════════════════════════════════════════════

class TestFixed:

    def test_never_exceeds_subtotal(self):
        coupon = make_coupon(type=CouponType.fixed, value="10")
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 1, "5")]) == Decimal("5.00")

    def test_full_value_when_subtotal_is_larger(self):
        coupon = make_coupon(type=CouponType.fixed, value="10")
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 2, "25")]) == Decimal("10.00")


# ══════════════════════════════════════════════
#  BOGO / Buy X Get Y
# ══════════════════════════════════════════════

class TestBogo:

    def test_repeating_sets(self):
        # 7 units in sets of 3 -> 2 sets -> 2 free units at $10
        coupon = make_coupon(type=CouponType.bogo, value="0", buy_quantity=2, get_quantity=1)
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 7, "10")]) == Decimal("20.00")

    def test_free_units_come_from_cheapest_line(self):
        coupon = make_coupon(type=CouponType.bogo, value="0", buy_quantity=2, get_quantity=1)
        items = [item("expensive", 3, "20"), item("cheap", 3, "5")]
        assert coupon_engine.calculate_coupon_discount(coupon, items) == Decimal("10.00")

    def test_incomplete_set_gives_nothing(self):
        coupon = make_coupon(type=CouponType.bogo, value="0", buy_quantity=2, get_quantity=1)
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 2, "10")]) == Decimal("0.00")

    def test_missing_quantities_give_nothing(self):
        coupon = make_coupon(type=CouponType.bogo, value="0")
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 9, "10")]) == Decimal("0.00")


class TestBuyXGetY:

    def test_single_threshold_with_partial_line(self):
        coupon = make_coupon(type=CouponType.buy_x_get_y, value="0", buy_quantity=3, get_quantity=2)
        items = [item("p1", 5, "10"), item("p2", 1, "4")]
        # cheapest first: 1 x $4, then 1 of the 5 x $10
        assert coupon_engine.calculate_coupon_discount(coupon, items) == Decimal("14.00")

    def test_does_not_repeat(self):
        coupon = make_coupon(type=CouponType.buy_x_get_y, value="0", buy_quantity=3, get_quantity=1)
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 12, "10")]) == Decimal("10.00")

    def test_below_threshold(self):
        coupon = make_coupon(type=CouponType.buy_x_get_y, value="0", buy_quantity=3, get_quantity=1)
        assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 2, "10")]) == Decimal("0.00")


# ══════════════════════════════════════════════
#  Free shipping
# ══════════════════════════════════════════════

def test_free_shipping_waives_the_given_cost():
    coupon = make_coupon(type=CouponType.free_shipping, value="7.50")
    assert coupon_engine.calculate_coupon_discount(coupon, [item("p1", 1, "30")]) == Decimal("7.50")


def test_every_coupon_type_is_handled():
    items = [item("p1", 4, "10")]
    for coupon_type in CouponType:
        coupon = make_coupon(type=coupon_type, value="5", buy_quantity=1, get_quantity=1)
        assert coupon_engine.calculate_coupon_discount(coupon, items) >= 0


@pytest.mark.parametrize("coupon", [
    make_coupon(value="100"),
    make_coupon(type=CouponType.fixed, value="1000"),
    make_coupon(type=CouponType.bogo, value="0", buy_quantity=1, get_quantity=5),
    make_coupon(type=CouponType.buy_x_get_y, value="0", buy_quantity=1, get_quantity=50),
])
def test_discount_never_exceeds_applicable_subtotal(coupon):
    items = [item("p1", 3, "9.99"), item("p2", 2, "0.01")]
    discount = coupon_engine.calculate_coupon_discount(coupon, items)
    assert Decimal("0") <= discount <= Decimal("29.99")


# ══════════════════════════════════════════════
#  Applicability
# ══════════════════════════════════════════════

class TestApplicability:

    def test_excluded_products_are_dropped(self):
        coupon = make_coupon(excluded_products=["p2"])
        items = [item("p1", 1, "10"), item("p2", 1, "10")]
        assert [i.product_id for i in coupon_engine.get_applicable_items(items, coupon)] == ["p1"]

    def test_exclusion_wins_over_allow_list(self):
        coupon = make_coupon(applicable_products=["p1", "p2"], excluded_products=["p2"])
        items = [item("p1", 1, "10"), item("p2", 1, "10")]
        assert [i.product_id for i in coupon_engine.get_applicable_items(items, coupon)] == ["p1"]

    def test_category_allow_list(self):
        coupon = make_coupon(applicable_categories=["shoes"])
        items = [
            item("p1", 1, "10", category="shoes"),
            item("p2", 1, "10", category="hats"),
            item("p3", 1, "10"),
        ]
        assert [i.product_id for i in coupon_engine.get_applicable_items(items, coupon)] == ["p1"]

    def test_excluded_categories(self):
        coupon = make_coupon(excluded_categories=["gift-cards"])
        items = [item("p1", 1, "10", category="gift-cards"), item("p2", 1, "10")]
        assert [i.product_id for i in coupon_engine.get_applicable_items(items, coupon)] == ["p2"]

    def test_empty_lists_mean_no_restriction(self):
        coupon = make_coupon(applicable_products=[], applicable_categories=[])
        items = [item("p1", 1, "10"), item("p2", 1, "10")]
        assert len(coupon_engine.get_applicable_items(items, coupon)) == 2


# ══════════════════════════════════════════════
#  Messages
# ══════════════════════════════════════════════

def test_messages():
    assert coupon_engine.coupon_message(make_coupon(value="20"), Decimal("50.00")) == \
        "20% off applied! You saved $50.00"
    assert coupon_engine.coupon_message(
        make_coupon(type=CouponType.bogo, value="0", buy_quantity=2, get_quantity=1), Decimal("20.00")
    ) == "Buy 2 Get 1 Free! You saved $20.00"
    assert coupon_engine.coupon_message(
        make_coupon(type=CouponType.free_shipping, value="5"), Decimal("5.00")
    ) == "Free shipping applied!"
