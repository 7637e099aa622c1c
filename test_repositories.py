"""
test_repositories.py
====================
SQL stores: usage counters and the rules around them.
"""

from conftest import NOW, WINDOW_END, make_coupon
from datetime import timedelta


class TestIncrementUsage:

    def test_counts_global_and_per_customer(self, coupon_store):
        coupon_store.save(make_coupon())
        assert coupon_store.increment_usage("SAVE", "c1") is True
        assert coupon_store.increment_usage("save", "c1") is True
        assert coupon_store.increment_usage("SAVE", "c2") is True
        assert coupon_store.get("SAVE").usage_count == 3
        assert coupon_store.get_customer_usage("c1", "SAVE") == 2
        assert coupon_store.get_customer_usage("c2", "save") == 1

    def test_global_cap(self, coupon_store):
        coupon_store.save(make_coupon(max_usages=2))
        assert coupon_store.increment_usage("SAVE", "c1") is True
        assert coupon_store.increment_usage("SAVE", "c2") is True
        assert coupon_store.increment_usage("SAVE", "c3") is False
        assert coupon_store.get("SAVE").usage_count == 2
        assert coupon_store.get_customer_usage("c3", "SAVE") == 0

    def test_per_customer_cap_rolls_back_global_count(self, coupon_store):
        coupon_store.save(make_coupon(max_usages=10, max_usages_per_customer=1))
        assert coupon_store.increment_usage("SAVE", "c1") is True
        assert coupon_store.increment_usage("SAVE", "c1") is False
        assert coupon_store.get("SAVE").usage_count == 1
        assert coupon_store.get_customer_usage("c1", "SAVE") == 1

    def test_unknown_code(self, coupon_store):
        assert coupon_store.increment_usage("NOPE", "c1") is False

    def test_unused_customer_reads_zero(self, coupon_store):
        coupon_store.save(make_coupon())
        assert coupon_store.get_customer_usage("c1", "SAVE") == 0


class TestCouponStore:

    def test_codes_stored_uppercase(self, coupon_store):
        saved = coupon_store.save(make_coupon(code="spring"))
        assert saved.code == "SPRING"
        assert coupon_store.get("Spring") is not None

    def test_save_does_not_reset_usage(self, coupon_store):
        coupon_store.save(make_coupon())
        coupon_store.increment_usage("SAVE", "c1")
        stale = make_coupon(description="edited")
        coupon_store.save(stale)
        stored = coupon_store.get("SAVE")
        assert stored.usage_count == 1
        assert stored.description == "edited"

    def test_active_only(self, coupon_store):
        coupon_store.save(make_coupon(code="LIVE"))
        coupon_store.save(make_coupon(code="OFF", is_active=False))
        coupon_store.save(make_coupon(code="USED", max_usages=1))
        coupon_store.increment_usage("USED", "c1")
        assert [c.code for c in coupon_store.list()] == ["LIVE", "OFF", "USED"]
        assert [c.code for c in coupon_store.list(active_only=True, now=NOW)] == ["LIVE"]
        assert coupon_store.list(active_only=True, now=WINDOW_END + timedelta(days=1)) == []

    def test_delete_removes_usage(self, coupon_store):
        coupon_store.save(make_coupon())
        coupon_store.increment_usage("SAVE", "c1")
        assert coupon_store.delete("SAVE") is True
        assert coupon_store.get("SAVE") is None
        assert coupon_store.get_customer_usage("c1", "SAVE") == 0
        assert coupon_store.delete("SAVE") is False

    def test_restrictions_round_trip(self, coupon_store):
        coupon_store.save(make_coupon(applicable_products=["p1", "p2"], applicable_customer_tiers=["vip"]))
        stored = coupon_store.get("SAVE")
        assert stored.applicable_products == ["p1", "p2"]
        assert stored.applicable_customer_tiers == ["vip"]
        assert stored.excluded_products is None
