"""
test_stacking.py
================
Combining several codes on one order.
"""

from decimal import Decimal

from conftest import NOW, item, make_coupon
from schemas import CouponType, Customer
from stacking import calculate_stacked_discounts

CUSTOMER = Customer(id="cust-1")
CART = [item("p1", 1, "100")]


def stack(store, codes, items=CART, subtotal=Decimal("100.00")):
    return calculate_stacked_discounts(store, items, CUSTOMER, codes, subtotal, now=NOW)


def seed(store):
    store.save(make_coupon(code="TEN", value="10", is_stackable=True))
    store.save(make_coupon(code="FIVEOFF", type=CouponType.fixed, value="5", is_stackable=True))
    store.save(make_coupon(code="SOLO", value="20", is_stackable=False))
    store.save(make_coupon(code="SHIP", type=CouponType.free_shipping, value="7.50", is_stackable=True))


class TestStacking:

    def test_stackable_coupons_add_up(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["TEN", "FIVEOFF", "SHIP"])
        assert [c.code for c in result.applied_coupons] == ["TEN", "FIVEOFF", "SHIP"]
        assert result.total_discount == Decimal("22.50")
        assert result.conflicts == []
        assert result.warnings == []

    def test_total_is_sum_of_applied(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["TEN", "SHIP", "FIVEOFF"])
        assert result.total_discount == sum(c.discount for c in result.applied_coupons)

    def test_each_coupon_is_computed_on_the_full_order(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["FIVEOFF", "TEN"])
        # TEN is 10% of 100, not of 95
        assert result.applied_coupons[1].discount == Decimal("10.00")

    def test_non_stackable_first_closes_the_batch(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["SOLO", "TEN"])
        assert [c.code for c in result.applied_coupons] == ["SOLO"]
        assert result.total_discount == Decimal("20.00")
        assert result.warnings == ["TEN: Cannot be combined with other coupons"]

    def test_non_stackable_after_others_is_refused(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["TEN", "SOLO"])
        assert [c.code for c in result.applied_coupons] == ["TEN"]
        assert result.total_discount == Decimal("10.00")
        assert result.warnings == ["SOLO: Cannot be combined with other coupons"]

    def test_invalid_codes_are_conflicts_and_do_not_stop_the_batch(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["BOGUS", "TEN"])
        assert result.conflicts == ["BOGUS: Invalid coupon code"]
        assert [c.code for c in result.applied_coupons] == ["TEN"]

    def test_invalid_non_stackable_does_not_block_others(self, coupon_store):
        seed(coupon_store)
        coupon_store.save(make_coupon(code="DEAD", value="50", is_active=False))
        result = stack(coupon_store, ["DEAD", "TEN"])
        assert result.conflicts == ["DEAD: This coupon is not active"]
        assert result.total_discount == Decimal("10.00")

    def test_duplicate_code_applied_once(self, coupon_store):
        seed(coupon_store)
        result = stack(coupon_store, ["TEN", "ten"])
        assert len(result.applied_coupons) == 1
        assert result.total_discount == Decimal("10.00")
        assert result.warnings == ["ten: Coupon already applied"]

    def test_empty_code_list(self, coupon_store):
        result = stack(coupon_store, [])
        assert result.total_discount == Decimal("0.00")
        assert result.applied_coupons == []
