from sqlalchemy import (
    Column, Integer, String, JSON, DateTime, Boolean, Numeric, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class Coupon(Base):
    """
    Database model for coupons.

    type: 'percentage' | 'fixed' | 'bogo' | 'buy_x_get_y' | 'free_shipping'
    value: percent for 'percentage', currency amount for 'fixed' and
           'free_shipping' (the shipping cost waived), unused for the
           quantity-based types which read buy_quantity / get_quantity.
    Product and customer restrictions are JSON lists; NULL or [] means
    "no restriction".
    """
    __tablename__ = "coupons"

    code = Column(String, primary_key=True, index=True)
    type = Column(String, nullable=False)
    value = Column(Numeric(12, 2), nullable=False, default=0)

    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)

    min_order_value = Column(Numeric(12, 2), nullable=True)
    max_discount = Column(Numeric(12, 2), nullable=True)

    applicable_products = Column(JSON, nullable=True)
    applicable_categories = Column(JSON, nullable=True)
    excluded_products = Column(JSON, nullable=True)
    excluded_categories = Column(JSON, nullable=True)

    max_usages = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    max_usages_per_customer = Column(Integer, nullable=True)

    applicable_customers = Column(JSON, nullable=True)
    applicable_customer_tiers = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_stackable = Column(Boolean, default=False, nullable=False)

    buy_quantity = Column(Integer, nullable=True)
    get_quantity = Column(Integer, nullable=True)

    description = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class CouponUsage(Base):
    """Per-customer redemption counter. Only ever incremented."""
    __tablename__ = "coupon_usage"
    __table_args__ = (UniqueConstraint("customer_id", "coupon_code"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String, nullable=False, index=True)
    coupon_code = Column(String, ForeignKey("coupons.code", ondelete="CASCADE"), nullable=False)
    count = Column(Integer, nullable=False, default=0)


class LoyaltyAccount(Base):
    """
    Loyalty balance per customer.

    expiring_lots: JSON list of {"points": <int>, "expiry_date": <iso datetime>}
    """
    __tablename__ = "loyalty_accounts"

    customer_id = Column(String, primary_key=True)
    points = Column(Integer, nullable=False, default=0)
    lifetime_points = Column(Integer, nullable=False, default=0)
    tier = Column(String, nullable=False, default="regular")
    expiring_lots = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    transactions = relationship(
        "LoyaltyTransaction",
        back_populates="account",
        order_by="LoyaltyTransaction.seq.desc()",
        cascade="all, delete-orphan",
    )


class LoyaltyTransaction(Base):
    """Append-only ledger entry; corrections are new 'adjusted' rows."""
    __tablename__ = "loyalty_transactions"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False)
    customer_id = Column(String, ForeignKey("loyalty_accounts.customer_id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    points = Column(Integer, nullable=False)
    description = Column(String, nullable=False, default="")
    order_id = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False)

    account = relationship("LoyaltyAccount", back_populates="transactions")


class TaxConfig(Base):
    """
    Administrator-authored tax rule.

    rate: percent for every type except 'flat-fee', where it is an amount.
    is_inclusive: NULL defers to the caller's inclusive/exclusive default.
    """
    __tablename__ = "tax_configs"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    rate = Column(Numeric(12, 4), nullable=False)
    is_inclusive = Column(Boolean, nullable=True)
    applicable_items = Column(JSON, nullable=True)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class LoyaltySettings(Base):
    """Loyalty program settings; a single row, id 1, holding a LoyaltyConfig as JSON."""
    __tablename__ = "loyalty_settings"

    id = Column(Integer, primary_key=True)
    config = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TaxRecord(Base):
    """
    Audit trail entry for one tax calculation.

    items / tax_configs / calculation: JSON snapshots of the inputs and the
    result, so later edits to tax rules do not rewrite history.
    """
    __tablename__ = "tax_records"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False)
    recorded_at = Column(DateTime, nullable=False, index=True)
    items = Column(JSON, nullable=False)
    tax_configs = Column(JSON, nullable=False)
    calculation = Column(JSON, nullable=False)
    notes = Column(String, nullable=True)
