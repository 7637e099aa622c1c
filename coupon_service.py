"""
coupon_service.py
=================
Administrative operations on coupons: configuration checks, creation,
updates, bulk code generation, redemption and usage statistics.
"""

import logging
import secrets
from datetime import datetime
from typing import List, Optional

import config
from clock import as_utc
from errors import InvalidConfigurationError, NotFoundError
from repositories import CouponStore, is_currently_active, normalize_code
from schemas import (
    BulkCouponCreate, ConfigValidation, Coupon, CouponCreate, CouponRedemption,
    CouponStatistics, CouponType, CouponUpdate, CouponUsageSummary,
)

logger = logging.getLogger(__name__)


def validate_coupon_config(coupon: Coupon) -> ConfigValidation:
    """Collect every rule the coupon breaks, not just the first."""
    errors = []

    if not coupon.code or not coupon.code.strip():
        errors.append("Coupon code is required")

    if coupon.value < 0:
        errors.append("Coupon value must be non-negative")

    if coupon.type == CouponType.percentage and coupon.value > 100:
        errors.append("Percentage discount cannot exceed 100%")

    if as_utc(coupon.valid_from) > as_utc(coupon.valid_until):
        errors.append("Valid until date must be after valid from date")

    if coupon.min_order_value is not None and coupon.min_order_value < 0:
        errors.append("Minimum order value must be non-negative")

    if coupon.max_discount is not None and coupon.max_discount < 0:
        errors.append("Maximum discount must be non-negative")

    if coupon.max_usages is not None:
        if coupon.max_usages < 1:
            errors.append("Maximum usages must be at least 1")
        elif coupon.usage_count > coupon.max_usages:
            errors.append("Usage count cannot exceed maximum usages")

    if coupon.max_usages_per_customer is not None and coupon.max_usages_per_customer < 1:
        errors.append("Maximum usages per customer must be at least 1")

    if coupon.type in (CouponType.bogo, CouponType.buy_x_get_y):
        if not coupon.buy_quantity or coupon.buy_quantity < 1:
            errors.append("Buy quantity must be a positive integer")
        if not coupon.get_quantity or coupon.get_quantity < 1:
            errors.append("Get quantity must be a positive integer")

    return ConfigValidation(valid=not errors, errors=errors)


def _ensure_valid(coupon: Coupon) -> None:
    result = validate_coupon_config(coupon)
    if not result.valid:
        logger.warning("Rejected coupon %r: %s", coupon.code, "; ".join(result.errors))
        raise InvalidConfigurationError(result.errors)


def get_coupon(store: CouponStore, code: str) -> Coupon:
    coupon = store.get(code)
    if coupon is None:
        raise NotFoundError("Coupon", code)
    return coupon


def create_coupon(store: CouponStore, data: CouponCreate) -> Coupon:
    coupon = Coupon(**data.model_dump(), usage_count=0)
    coupon.code = normalize_code(coupon.code)
    _ensure_valid(coupon)
    if store.get(coupon.code) is not None:
        raise InvalidConfigurationError([f"Coupon code {coupon.code} already exists"])
    saved = store.save(coupon)
    logger.info("Created %s coupon %s", saved.type.value, saved.code)
    return saved


def update_coupon(store: CouponStore, code: str, updates: CouponUpdate) -> Coupon:
    """Apply the provided fields only; the result is re-validated as a whole."""
    current = get_coupon(store, code)
    changes = updates.model_dump(exclude_unset=True)
    merged = current.model_copy(update=changes)
    # Round-trip so that changed fields are coerced like on creation
    merged = Coupon.model_validate(merged.model_dump())
    _ensure_valid(merged)
    return store.save(merged)


def delete_coupon(store: CouponStore, code: str) -> None:
    if not store.delete(code):
        raise NotFoundError("Coupon", code)


def get_active_coupons(store: CouponStore, now: Optional[datetime] = None) -> List[Coupon]:
    return [c for c in store.list(active_only=False) if is_currently_active(c, now)]


def generate_coupon_code(
    store: CouponStore,
    prefix: str = "",
    length: int = config.COUPON_CODE_LENGTH,
) -> str:
    while True:
        code = prefix.upper() + "".join(
            secrets.choice(config.COUPON_CODE_ALPHABET) for _ in range(length)
        )
        if store.get(code) is None:
            return code


def generate_bulk_coupons(store: CouponStore, data: BulkCouponCreate) -> List[str]:
    """Create ``data.count`` coupons sharing one configuration; returns the codes."""
    if data.count > config.MAX_BULK_COUPONS:
        raise InvalidConfigurationError([f"Cannot generate more than {config.MAX_BULK_COUPONS} coupons at once"])

    template = data.model_dump(exclude={"count", "prefix"})
    # Validate once up front so that a bad template creates nothing
    _ensure_valid(Coupon(**template, code=data.prefix or "BULK"))

    codes = []
    for _ in range(data.count):
        code = generate_coupon_code(store, prefix=data.prefix)
        store.save(Coupon(**template, code=code))
        codes.append(code)
    logger.info("Generated %d coupons with prefix %r", len(codes), data.prefix)
    return codes


def redeem_coupon(store: CouponStore, code: str, customer_id: str) -> CouponRedemption:
    """Record one use of a coupon after the order it discounted has settled."""
    code = normalize_code(code)
    if store.get(code) is None:
        return CouponRedemption(code=code, customer_id=customer_id, redeemed=False, error="Invalid coupon code")

    if not store.increment_usage(code, customer_id):
        return CouponRedemption(
            code=code,
            customer_id=customer_id,
            redeemed=False,
            error="This coupon has reached its usage limit",
        )

    logger.info("Coupon %s redeemed by %s", code, customer_id)
    return CouponRedemption(code=code, customer_id=customer_id, redeemed=True)


def coupon_statistics(store: CouponStore, now: Optional[datetime] = None, top: int = 5) -> CouponStatistics:
    coupons = store.list(active_only=False)
    ranked = sorted(coupons, key=lambda c: c.usage_count, reverse=True)[:top]
    return CouponStatistics(
        total_coupons=len(coupons),
        active_coupons=sum(1 for c in coupons if is_currently_active(c, now)),
        total_redemptions=sum(c.usage_count for c in coupons),
        top_coupons=[CouponUsageSummary(code=c.code, redemptions=c.usage_count) for c in ranked],
    )
