"""
test_coupon_validator.py
========================
Eligibility checks, their order, and the discount reported for valid coupons.
"""

from datetime import timedelta
from decimal import Decimal

from conftest import NOW, WINDOW_END, WINDOW_START, item, make_coupon
from coupon_validator import validate_coupon
from schemas import CouponType, Customer, InvalidReason

CUSTOMER = Customer(id="cust-1", tier="regular")
CART = [item("p1", 2, "50")]
SUBTOTAL = Decimal("100.00")


def check(store, code="SAVE", items=CART, customer=CUSTOMER, subtotal=SUBTOTAL, now=NOW):
    return validate_coupon(store, code, items, customer, subtotal, now=now)


# ══════════════════════════════════════════════
#  Valid coupons
# ══════════════════════════════════════════════

class TestValid:

    def test_returns_discount_and_message(self, coupon_store):
        coupon_store.save(make_coupon(value="20"))
        result = check(coupon_store)
        assert result.valid is True
        assert result.discount == Decimal("20.00")
        assert result.message == "20% off applied! You saved $20.00"
        assert result.coupon.code == "SAVE"
        assert result.reason is None

    def test_code_lookup_is_case_insensitive(self, coupon_store):
        coupon_store.save(make_coupon(code="Summer20", value="20"))
        assert check(coupon_store, code="summer20").valid is True
        assert check(coupon_store, code="  SUMMER20 ").valid is True

    def test_validity_window_is_inclusive(self, coupon_store):
        coupon_store.save(make_coupon())
        assert check(coupon_store, now=WINDOW_START).valid is True
        assert check(coupon_store, now=WINDOW_END).valid is True

    def test_zero_discount_is_still_valid(self, coupon_store):
        coupon_store.save(make_coupon(type=CouponType.bogo, value="0", buy_quantity=5, get_quantity=1))
        result = check(coupon_store)
        assert result.valid is True
        assert result.discount == Decimal("0.00")

    def test_minimum_order_value_met_exactly(self, coupon_store):
        coupon_store.save(make_coupon(min_order_value=Decimal("100")))
        assert check(coupon_store).valid is True

    def test_listed_customer_and_tier(self, coupon_store):
        coupon_store.save(make_coupon(applicable_customers=["cust-1"], applicable_customer_tiers=["regular", "vip"]))
        assert check(coupon_store).valid is True


# ══════════════════════════════════════════════
#  Rejections
# ══════════════════════════════════════════════

class TestInvalid:

    def test_unknown_code(self, coupon_store):
        result = check(coupon_store, code="NOPE")
        assert result.valid is False
        assert result.reason == InvalidReason.not_found
        assert result.error == "Invalid coupon code"
        assert result.discount == Decimal("0")

    def test_inactive(self, coupon_store):
        coupon_store.save(make_coupon(is_active=False))
        result = check(coupon_store)
        assert result.reason == InvalidReason.inactive
        assert result.error == "This coupon is not active"

    def test_not_yet_valid(self, coupon_store):
        coupon_store.save(make_coupon())
        result = check(coupon_store, now=WINDOW_START - timedelta(seconds=1))
        assert result.reason == InvalidReason.not_yet_valid
        assert result.error == "This coupon is not valid until 2026-01-01"

    def test_expired(self, coupon_store):
        coupon_store.save(make_coupon())
        result = check(coupon_store, now=WINDOW_END + timedelta(seconds=1))
        assert result.reason == InvalidReason.expired
        assert result.error == "This coupon has expired"

    def test_usage_limit_reached(self, coupon_store):
        coupon_store.save(make_coupon(max_usages=1))
        assert coupon_store.increment_usage("SAVE", "someone-else") is True
        result = check(coupon_store)
        assert result.reason == InvalidReason.usage_limit_reached
        assert result.error == "This coupon has reached its usage limit"

    def test_below_minimum_order(self, coupon_store):
        coupon_store.save(make_coupon(min_order_value=Decimal("150")))
        result = check(coupon_store)
        assert result.reason == InvalidReason.below_minimum_order
        assert result.error == "Minimum order value of $150.00 required"

    def test_customer_not_listed(self, coupon_store):
        coupon_store.save(make_coupon(applicable_customers=["cust-9"]))
        result = check(coupon_store)
        assert result.reason == InvalidReason.customer_not_eligible
        assert result.error == "This coupon is not valid for your account"

    def test_tier_not_listed(self, coupon_store):
        coupon_store.save(make_coupon(applicable_customer_tiers=["vip", "wholesale"]))
        result = check(coupon_store)
        assert result.reason == InvalidReason.tier_not_eligible
        assert result.error == "This coupon is only valid for vip, wholesale customers"

    def test_per_customer_limit(self, coupon_store):
        coupon_store.save(make_coupon(max_usages_per_customer=1))
        assert coupon_store.increment_usage("SAVE", "cust-1") is True
        result = check(coupon_store)
        assert result.reason == InvalidReason.customer_usage_limit_reached
        assert result.error == "You have already used this coupon the maximum number of times"
        # Other customers are unaffected
        assert check(coupon_store, customer=Customer(id="cust-2")).valid is True

    def test_no_applicable_items(self, coupon_store):
        coupon_store.save(make_coupon(applicable_products=["p9"]))
        result = check(coupon_store)
        assert result.reason == InvalidReason.no_applicable_items
        assert result.error == "This coupon is not valid for any items in your cart"


# ══════════════════════════════════════════════
#  Check order
# ══════════════════════════════════════════════

class TestCheckOrder:

    def test_inactive_reported_before_expiry(self, coupon_store):
        coupon_store.save(make_coupon(is_active=False))
        result = check(coupon_store, now=WINDOW_END + timedelta(days=1))
        assert result.reason == InvalidReason.inactive

    def test_minimum_order_reported_before_customer(self, coupon_store):
        coupon_store.save(make_coupon(min_order_value=Decimal("500"), applicable_customers=["cust-9"]))
        assert check(coupon_store).reason == InvalidReason.below_minimum_order

    def test_customer_reported_before_tier(self, coupon_store):
        coupon_store.save(make_coupon(applicable_customers=["cust-9"], applicable_customer_tiers=["vip"]))
        assert check(coupon_store).reason == InvalidReason.customer_not_eligible

    def test_minimum_order_uses_the_given_subtotal(self, coupon_store):
        coupon_store.save(make_coupon(min_order_value=Decimal("50")))
        result = check(coupon_store, subtotal=Decimal("49.99"))
        assert result.reason == InvalidReason.below_minimum_order
