"""
loyalty.py
==========
Loyalty points ledger: accrual, redemption, expiry and manual adjustments.

Points are earned on the final charged amount, scaled by the customer's tier
multiplier. When an expiry window is configured each accrual also opens a lot
of exactly the points earned, expiring ``expiration_days`` later. Every
mutation appends one transaction to a newest-first, append-only log.

Lots and redemption
-------------------
Redemption draws from the aggregate balance. With ``LotPolicy.fifo`` (the
default) it also consumes lots soonest-expiry first, so the sum of open lots
never exceeds the balance and an expiry sweep can only remove points that
are still there. ``LotPolicy.advisory`` leaves lots untouched on redemption;
a later sweep then deducts the full lot even if those points were spent, and
the balance may go negative.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import config
from clock import as_utc, resolve_now
from errors import InvalidConfigurationError
from money import quantize, to_decimal
from repositories import LoyaltyConfigStore, LoyaltyStore
from schemas import (
    ConfigValidation, LotPolicy, LoyaltyAccount, LoyaltyConfig, LoyaltyLot, LoyaltyTransaction,
    RedemptionFailure, RedemptionResult, TransactionType,
)

logger = logging.getLogger(__name__)


def default_loyalty_config() -> LoyaltyConfig:
    return LoyaltyConfig(
        points_per_dollar=config.LOYALTY_POINTS_PER_DOLLAR,
        dollars_per_point=config.LOYALTY_DOLLARS_PER_POINT,
        tier_multipliers=dict(config.LOYALTY_TIER_MULTIPLIERS),
        minimum_redemption=config.LOYALTY_MINIMUM_REDEMPTION,
        expiration_days=config.LOYALTY_EXPIRATION_DAYS,
        lot_policy=LotPolicy(config.LOYALTY_LOT_POLICY),
    )


def validate_loyalty_config(loyalty_config: LoyaltyConfig) -> ConfigValidation:
    """Collect every problem with a loyalty program's settings."""
    errors = []
    if loyalty_config.points_per_dollar < 0:
        errors.append("Points per dollar must be non-negative")
    if loyalty_config.dollars_per_point < 0:
        errors.append("Dollars per point must be non-negative")
    for tier, multiplier in loyalty_config.tier_multipliers.items():
        if multiplier < 0:
            errors.append(f"Multiplier for tier {tier} must be non-negative")
    if loyalty_config.minimum_redemption < 0:
        errors.append("Minimum redemption must be non-negative")
    if loyalty_config.expiration_days is not None and loyalty_config.expiration_days < 1:
        errors.append("Expiration days must be at least 1")
    return ConfigValidation(valid=not errors, errors=errors)


def load_loyalty_config(store: LoyaltyConfigStore) -> LoyaltyConfig:
    """The saved program settings, or the defaults when none were saved."""
    return store.get() or default_loyalty_config()


def save_loyalty_config(store: LoyaltyConfigStore, loyalty_config: LoyaltyConfig) -> LoyaltyConfig:
    result = validate_loyalty_config(loyalty_config)
    if not result.valid:
        logger.warning("Rejected loyalty config: %s", "; ".join(result.errors))
        raise InvalidConfigurationError(result.errors)
    store.save(loyalty_config)
    logger.info("Saved loyalty config (lot policy %s)", loyalty_config.lot_policy.value)
    return loyalty_config


def calculate_points_earned(final_amount, tier: str, config: LoyaltyConfig) -> int:
    multiplier = config.tier_multipliers.get(tier, Decimal("1"))
    raw = to_decimal(final_amount) * config.points_per_dollar * multiplier
    return max(0, math.floor(raw))


def points_value(points: int, config: LoyaltyConfig) -> Decimal:
    return quantize(Decimal(points) * config.dollars_per_point)


def _transaction(customer_id: str, type_: TransactionType, points: int, description: str,
                 now: datetime, order_id: Optional[str] = None) -> LoyaltyTransaction:
    return LoyaltyTransaction(
        id=f"txn_{uuid.uuid4().hex}",
        customer_id=customer_id,
        type=type_,
        points=points,
        description=description,
        order_id=order_id,
        timestamp=now,
    )


def _consume_lots(lots: List[LoyaltyLot], points: int) -> List[LoyaltyLot]:
    """Take ``points`` out of the lots expiring first; returns the lots left."""
    remaining = points
    kept = []
    for lot in sorted(lots, key=lambda l: as_utc(l.expiry_date)):
        if remaining > 0:
            taken = min(lot.points, remaining)
            remaining -= taken
            if lot.points - taken > 0:
                kept.append(LoyaltyLot(points=lot.points - taken, expiry_date=lot.expiry_date))
        else:
            kept.append(lot)
    return kept


class LoyaltyLedger:
    """Loyalty operations over a LoyaltyStore.

    The store is last-write-wins, so callers must serialise access per
    customer (one checkout at a time per account).
    """

    def __init__(self, store: LoyaltyStore, config: Optional[LoyaltyConfig] = None):
        self.store = store
        self.config = config or default_loyalty_config()

    def get_account(self, customer_id: str) -> LoyaltyAccount:
        account = self.store.get(customer_id)
        if account is None:
            account = LoyaltyAccount(customer_id=customer_id)
        return account

    def set_tier(self, customer_id: str, tier: str) -> LoyaltyAccount:
        account = self.get_account(customer_id)
        account.tier = tier
        self.store.save(account)
        return account

    # ── Accrual ───────────────────────────────────────────────

    def add_points(self, customer_id: str, points: int, description: str,
                   order_id: Optional[str] = None, now: Optional[datetime] = None) -> LoyaltyAccount:
        if points < 0:
            raise ValueError("Points to add must be non-negative")
        now = resolve_now(now)
        account = self.get_account(customer_id)
        if points == 0:
            return account

        account.points += points
        account.lifetime_points += points
        account.transactions.insert(
            0, _transaction(customer_id, TransactionType.earned, points, description, now, order_id)
        )
        if self.config.expiration_days:
            account.expiring_lots.append(
                LoyaltyLot(points=points, expiry_date=now + timedelta(days=self.config.expiration_days))
            )

        self.store.save(account)
        logger.info("Customer %s earned %d points", customer_id, points)
        return account

    def earn_for_order(self, customer_id: str, final_amount, order_id: Optional[str] = None,
                       now: Optional[datetime] = None) -> LoyaltyAccount:
        """Accrue points for a settled order, keyed by the amount actually charged."""
        account = self.get_account(customer_id)
        points = calculate_points_earned(final_amount, account.tier, self.config)
        description = f"Points earned on order {order_id}" if order_id else "Points earned"
        return self.add_points(customer_id, points, description, order_id=order_id, now=now)

    # ── Redemption ────────────────────────────────────────────

    def redeem_points(self, customer_id: str, points: int, description: str = "Points redeemed",
                      now: Optional[datetime] = None) -> RedemptionResult:
        account = self.get_account(customer_id)

        if points <= 0 or points < self.config.minimum_redemption:
            return RedemptionResult(
                success=False,
                reason=RedemptionFailure.minimum_redemption,
                error=f"Minimum redemption is {max(self.config.minimum_redemption, 1)} points",
            )
        if points > account.points:
            return RedemptionResult(
                success=False,
                reason=RedemptionFailure.insufficient_points,
                error=f"Insufficient points. You have {account.points} points",
            )

        now = resolve_now(now)
        account.points -= points
        if self.config.lot_policy == LotPolicy.fifo:
            account.expiring_lots = _consume_lots(account.expiring_lots, points)
        account.transactions.insert(
            0, _transaction(customer_id, TransactionType.redeemed, -points, description, now)
        )
        self.store.save(account)

        value = points_value(points, self.config)
        logger.info("Customer %s redeemed %d points for %s", customer_id, points, value)
        return RedemptionResult(success=True, dollar_value=value, account=account)

    # ── Expiry ────────────────────────────────────────────────

    def expire_old_points(self, customer_id: str, now: Optional[datetime] = None) -> int:
        """Remove lots past their expiry; returns the points expired (0 if none)."""
        now = resolve_now(now)
        account = self.get_account(customer_id)

        expired_total = 0
        retained = []
        for lot in account.expiring_lots:
            if as_utc(lot.expiry_date) < now:
                expired_total += lot.points
            else:
                retained.append(lot)

        if expired_total == 0:
            return 0

        account.expiring_lots = retained
        account.points -= expired_total
        account.transactions.insert(
            0, _transaction(customer_id, TransactionType.expired, -expired_total, "Points expired", now)
        )
        self.store.save(account)

        if account.points < 0:
            logger.warning("Loyalty balance for %s went negative after expiry: %d", customer_id, account.points)
        else:
            logger.info("Expired %d points for customer %s", expired_total, customer_id)
        return expired_total

    # ── Corrections ───────────────────────────────────────────

    def adjust_points(self, customer_id: str, points: int, description: str,
                      now: Optional[datetime] = None) -> LoyaltyAccount:
        """Manual correction, recorded as a new 'adjusted' entry.

        Positive adjustments do not count towards lifetime points and open no lot.
        """
        if points == 0:
            raise ValueError("Adjustment must be non-zero")
        now = resolve_now(now)
        account = self.get_account(customer_id)
        if account.points + points < 0:
            raise ValueError(f"Adjustment would make the balance negative ({account.points} available)")

        account.points += points
        if points < 0 and self.config.lot_policy == LotPolicy.fifo:
            account.expiring_lots = _consume_lots(account.expiring_lots, -points)
        account.transactions.insert(
            0, _transaction(customer_id, TransactionType.adjusted, points, description, now)
        )
        self.store.save(account)
        logger.info("Adjusted %s by %+d points: %s", customer_id, points, description)
        return account
