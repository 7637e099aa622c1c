from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers the tables on Base)
from database import Base
from repositories import (
    SqlCouponStore, SqlLoyaltyConfigStore, SqlLoyaltyStore, SqlTaxConfigStore, SqlTaxRecordStore,
)
from schemas import Coupon, CouponType, OrderItem

# ── In-memory SQLite shared by one connection ──
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
WINDOW_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2026, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def coupon_store(db):
    return SqlCouponStore(db)


@pytest.fixture
def loyalty_store(db):
    return SqlLoyaltyStore(db)


@pytest.fixture
def tax_store(db):
    return SqlTaxConfigStore(db)


@pytest.fixture
def tax_record_store(db):
    return SqlTaxRecordStore(db)


@pytest.fixture
def loyalty_config_store(db):
    return SqlLoyaltyConfigStore(db)


def make_coupon(code="SAVE", type=CouponType.percentage, value="10", **overrides) -> Coupon:
    fields = dict(
        code=code,
        type=type,
        value=Decimal(value),
        valid_from=WINDOW_START,
        valid_until=WINDOW_END,
    )
    fields.update(overrides)
    return Coupon(**fields)


def item(product_id, quantity, price, **extra) -> OrderItem:
    return OrderItem(product_id=product_id, quantity=quantity, price=Decimal(str(price)), **extra)
