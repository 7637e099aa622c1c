"""
repositories.py
===============
Storage seams for the pricing engine.

The engine only talks to the protocols below. The SQLAlchemy implementations
are what the API wires in; any transactional store can stand in for them as
long as ``increment_usage`` is a single conditional write.
"""

import logging
from typing import List, Optional, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

import models
import schemas
from clock import as_utc, resolve_now, to_naive_utc

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


# ═══════════════════════════════════════════════════
#  Protocols
# ═══════════════════════════════════════════════════

class CouponStore(Protocol):
    def get(self, code: str) -> Optional[schemas.Coupon]: ...

    def list(self, active_only: bool = False) -> List[schemas.Coupon]: ...

    def save(self, coupon: schemas.Coupon) -> schemas.Coupon: ...

    def delete(self, code: str) -> bool: ...

    def increment_usage(self, code: str, customer_id: str) -> bool:
        """Atomically bump the global and per-customer counters.

        Returns False, leaving both counters untouched, when either cap has
        already been reached.
        """
        ...

    def get_customer_usage(self, customer_id: str, code: str) -> int: ...


class LoyaltyStore(Protocol):
    def get(self, customer_id: str) -> Optional[schemas.LoyaltyAccount]: ...

    def save(self, account: schemas.LoyaltyAccount) -> None: ...


class TaxConfigStore(Protocol):
    def list_active(self) -> List[schemas.TaxConfig]: ...


class TaxRecordStore(Protocol):
    def add(self, record: schemas.TaxRecord, keep: int) -> None: ...

    def recent(self, limit: int) -> List[schemas.TaxRecord]: ...

    def between(self, start, end) -> List[schemas.TaxRecord]: ...


class LoyaltyConfigStore(Protocol):
    def get(self) -> Optional[schemas.LoyaltyConfig]: ...

    def save(self, config: schemas.LoyaltyConfig) -> None: ...


# ═══════════════════════════════════════════════════
#  Coupons
# ═══════════════════════════════════════════════════

_COUPON_FIELDS = list(schemas.CouponFields.model_fields)


def is_currently_active(coupon: schemas.Coupon, now=None) -> bool:
    now = resolve_now(now)
    if not coupon.is_active:
        return False
    if as_utc(coupon.valid_from) > now or as_utc(coupon.valid_until) < now:
        return False
    if coupon.max_usages is not None and coupon.usage_count >= coupon.max_usages:
        return False
    return True


class SqlCouponStore:

    def __init__(self, db: Session):
        self.db = db

    def get(self, code: str) -> Optional[schemas.Coupon]:
        row = self.db.get(models.Coupon, normalize_code(code))
        if row is None:
            return None
        return schemas.Coupon.model_validate(row)

    def list(self, active_only: bool = False, now=None) -> List[schemas.Coupon]:
        query = select(models.Coupon).order_by(models.Coupon.code)
        if active_only:
            query = query.where(models.Coupon.is_active == True)  # noqa: E712
        coupons = [schemas.Coupon.model_validate(row) for row in self.db.scalars(query)]
        if active_only:
            coupons = [c for c in coupons if is_currently_active(c, now)]
        return coupons

    def save(self, coupon: schemas.Coupon) -> schemas.Coupon:
        code = normalize_code(coupon.code)
        row = self.db.get(models.Coupon, code)
        if row is None:
            # usage_count is only written on insert; afterwards it belongs to increment_usage
            row = models.Coupon(code=code, usage_count=coupon.usage_count)
            self.db.add(row)

        for name in _COUPON_FIELDS:
            value = getattr(coupon, name)
            if name in ("valid_from", "valid_until"):
                value = to_naive_utc(value)
            elif name == "type":
                value = value.value
            setattr(row, name, value)

        self.db.commit()
        self.db.refresh(row)
        return schemas.Coupon.model_validate(row)

    def delete(self, code: str) -> bool:
        row = self.db.get(models.Coupon, normalize_code(code))
        if row is None:
            return False
        self.db.query(models.CouponUsage).filter(models.CouponUsage.coupon_code == row.code).delete()
        self.db.delete(row)
        self.db.commit()
        return True

    def increment_usage(self, code: str, customer_id: str) -> bool:
        code = normalize_code(code)
        try:
            bumped = self.db.execute(
                update(models.Coupon)
                .where(
                    models.Coupon.code == code,
                    or_(
                        models.Coupon.max_usages.is_(None),
                        models.Coupon.usage_count < models.Coupon.max_usages,
                    ),
                )
                .values(usage_count=models.Coupon.usage_count + 1)
            )
            if bumped.rowcount == 0:
                self.db.rollback()
                logger.info("Usage cap reached or unknown coupon %s", code)
                return False

            per_customer_cap = self.db.scalar(
                select(models.Coupon.max_usages_per_customer).where(models.Coupon.code == code)
            )
            if not self._increment_customer_usage(code, customer_id, per_customer_cap):
                self.db.rollback()
                logger.info("Per-customer cap reached for %s by %s", code, customer_id)
                return False

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return True

    def _increment_customer_usage(self, code: str, customer_id: str, cap: Optional[int]) -> bool:
        conditions = [
            models.CouponUsage.coupon_code == code,
            models.CouponUsage.customer_id == customer_id,
        ]
        if cap is not None:
            conditions.append(models.CouponUsage.count < cap)

        bumped = self.db.execute(
            update(models.CouponUsage)
            .where(*conditions)
            .values(count=models.CouponUsage.count + 1)
        )
        if bumped.rowcount:
            return True

        exists = self.db.scalar(
            select(models.CouponUsage.id).where(
                models.CouponUsage.coupon_code == code,
                models.CouponUsage.customer_id == customer_id,
            )
        )
        if exists is not None:
            return False
        if cap is not None and cap < 1:
            return False

        # The unique constraint turns a concurrent first redemption into an IntegrityError
        self.db.add(models.CouponUsage(coupon_code=code, customer_id=customer_id, count=1))
        self.db.flush()
        return True

    def get_customer_usage(self, customer_id: str, code: str) -> int:
        count = self.db.scalar(
            select(models.CouponUsage.count).where(
                models.CouponUsage.coupon_code == normalize_code(code),
                models.CouponUsage.customer_id == customer_id,
            )
        )
        return count or 0


# ═══════════════════════════════════════════════════
#  Loyalty
# ═══════════════════════════════════════════════════

class SqlLoyaltyStore:

    def __init__(self, db: Session):
        self.db = db

    def get(self, customer_id: str) -> Optional[schemas.LoyaltyAccount]:
        row = self.db.get(models.LoyaltyAccount, customer_id)
        if row is None:
            return None
        return schemas.LoyaltyAccount(
            customer_id=row.customer_id,
            points=row.points,
            lifetime_points=row.lifetime_points,
            tier=row.tier,
            expiring_lots=[schemas.LoyaltyLot(**lot) for lot in (row.expiring_lots or [])],
            transactions=[schemas.LoyaltyTransaction.model_validate(t) for t in row.transactions],
        )

    def save(self, account: schemas.LoyaltyAccount) -> None:
        row = self.db.get(models.LoyaltyAccount, account.customer_id)
        if row is None:
            row = models.LoyaltyAccount(customer_id=account.customer_id)
            self.db.add(row)

        row.points = account.points
        row.lifetime_points = account.lifetime_points
        row.tier = account.tier
        row.expiring_lots = [
            {"points": lot.points, "expiry_date": as_utc(lot.expiry_date).isoformat()}
            for lot in account.expiring_lots
        ]

        # Ledger rows are immutable: only entries not yet stored are written,
        # oldest first so that seq order matches the in-memory order.
        known = set(self.db.scalars(
            select(models.LoyaltyTransaction.id).where(
                models.LoyaltyTransaction.customer_id == account.customer_id
            )
        ))
        for txn in reversed(account.transactions):
            if txn.id in known:
                continue
            row.transactions.append(models.LoyaltyTransaction(
                id=txn.id,
                type=txn.type.value,
                points=txn.points,
                description=txn.description,
                order_id=txn.order_id,
                timestamp=to_naive_utc(txn.timestamp),
            ))

        self.db.commit()


# ═══════════════════════════════════════════════════
#  Tax configs
# ═══════════════════════════════════════════════════

class SqlTaxConfigStore:

    def __init__(self, db: Session):
        self.db = db

    def list(self) -> List[schemas.TaxConfig]:
        rows = self.db.scalars(select(models.TaxConfig).order_by(models.TaxConfig.created_at, models.TaxConfig.id))
        return [schemas.TaxConfig.model_validate(row) for row in rows]

    def list_active(self) -> List[schemas.TaxConfig]:
        return [c for c in self.list() if c.is_active]

    def get(self, tax_id: str) -> Optional[schemas.TaxConfig]:
        row = self.db.get(models.TaxConfig, tax_id)
        if row is None:
            return None
        return schemas.TaxConfig.model_validate(row)

    def save(self, config: schemas.TaxConfig) -> schemas.TaxConfig:
        row = self.db.get(models.TaxConfig, config.id)
        if row is None:
            row = models.TaxConfig(id=config.id)
            self.db.add(row)
        for name in schemas.TaxConfigFields.model_fields:
            value = getattr(config, name)
            if name == "type":
                value = value.value
            setattr(row, name, value)
        self.db.commit()
        self.db.refresh(row)
        return schemas.TaxConfig.model_validate(row)

    def delete(self, tax_id: str) -> bool:
        row = self.db.get(models.TaxConfig, tax_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True


# ═══════════════════════════════════════════════════
#  Tax audit trail
# ═══════════════════════════════════════════════════

def _tax_record_from_row(row: models.TaxRecord) -> schemas.TaxRecord:
    return schemas.TaxRecord(
        id=row.id,
        date=as_utc(row.recorded_at),
        items=row.items,
        tax_configs=row.tax_configs,
        calculation=row.calculation,
        notes=row.notes,
    )


class SqlTaxRecordStore:

    def __init__(self, db: Session):
        self.db = db

    def add(self, record: schemas.TaxRecord, keep: int) -> None:
        """Store ``record`` and drop the oldest entries beyond ``keep``."""
        self.db.add(models.TaxRecord(
            id=record.id,
            recorded_at=to_naive_utc(record.date),
            items=[item.model_dump(mode="json") for item in record.items],
            tax_configs=[tc.model_dump(mode="json") for tc in record.tax_configs],
            calculation=record.calculation.model_dump(mode="json"),
            notes=record.notes,
        ))
        self.db.flush()

        excess = self.db.scalar(select(func.count(models.TaxRecord.seq))) - keep
        if excess > 0:
            oldest = list(self.db.scalars(
                select(models.TaxRecord.seq).order_by(models.TaxRecord.seq).limit(excess)
            ))
            self.db.execute(delete(models.TaxRecord).where(models.TaxRecord.seq.in_(oldest)))
            logger.debug("Dropped %d old tax records", len(oldest))
        self.db.commit()

    def recent(self, limit: int) -> List[schemas.TaxRecord]:
        """Newest first."""
        rows = self.db.scalars(select(models.TaxRecord).order_by(models.TaxRecord.seq.desc()).limit(limit))
        return [_tax_record_from_row(row) for row in rows]

    def between(self, start, end) -> List[schemas.TaxRecord]:
        """Records with ``start <= date <= end``, newest first."""
        rows = self.db.scalars(
            select(models.TaxRecord)
            .where(
                models.TaxRecord.recorded_at >= to_naive_utc(start),
                models.TaxRecord.recorded_at <= to_naive_utc(end),
            )
            .order_by(models.TaxRecord.seq.desc())
        )
        return [_tax_record_from_row(row) for row in rows]


# ═══════════════════════════════════════════════════
#  Loyalty program settings
# ═══════════════════════════════════════════════════

class SqlLoyaltyConfigStore:

    SETTINGS_ID = 1

    def __init__(self, db: Session):
        self.db = db

    def get(self) -> Optional[schemas.LoyaltyConfig]:
        row = self.db.get(models.LoyaltySettings, self.SETTINGS_ID)
        if row is None:
            return None
        return schemas.LoyaltyConfig.model_validate(row.config)

    def save(self, config: schemas.LoyaltyConfig) -> None:
        row = self.db.get(models.LoyaltySettings, self.SETTINGS_ID)
        if row is None:
            row = models.LoyaltySettings(id=self.SETTINGS_ID)
            self.db.add(row)
        row.config = config.model_dump(mode="json")
        self.db.commit()
