from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from enum import Enum


# ─────────────── Enums ───────────────

class CouponType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"
    bogo = "bogo"
    buy_x_get_y = "buy_x_get_y"
    free_shipping = "free_shipping"


class InvalidReason(str, Enum):
    not_found = "not_found"
    inactive = "inactive"
    not_yet_valid = "not_yet_valid"
    expired = "expired"
    usage_limit_reached = "usage_limit_reached"
    below_minimum_order = "below_minimum_order"
    customer_not_eligible = "customer_not_eligible"
    tier_not_eligible = "tier_not_eligible"
    customer_usage_limit_reached = "customer_usage_limit_reached"
    no_applicable_items = "no_applicable_items"


class TaxType(str, Enum):
    vat = "vat"
    gst = "gst"
    sales_tax = "sales-tax"
    flat_fee = "flat-fee"
    percentage = "percentage"
    custom = "custom"


class TransactionType(str, Enum):
    earned = "earned"
    redeemed = "redeemed"
    expired = "expired"
    adjusted = "adjusted"


class LotPolicy(str, Enum):
    fifo = "fifo"          # redemption consumes the soonest-expiring lots
    advisory = "advisory"  # lots are left alone on redemption


# ─────────────── Order context ───────────────

class OrderItem(BaseModel):
    product_id: str
    quantity: int
    price: Decimal  # Price per unit
    category: Optional[str] = None
    discount: Optional[Decimal] = None  # Line discount already applied upstream

    @field_validator("quantity")
    @classmethod
    def qty_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Price cannot be negative")
        return v


class Customer(BaseModel):
    id: str
    tier: str = "regular"


# ─────────────── Coupons ───────────────

class CouponFields(BaseModel):
    type: CouponType
    value: Decimal = Decimal("0")
    valid_from: datetime
    valid_until: datetime
    min_order_value: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    applicable_products: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    excluded_products: Optional[List[str]] = None
    excluded_categories: Optional[List[str]] = None
    max_usages: Optional[int] = None
    max_usages_per_customer: Optional[int] = None
    applicable_customers: Optional[List[str]] = None
    applicable_customer_tiers: Optional[List[str]] = None
    is_active: bool = True
    is_stackable: bool = False
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class CouponCreate(CouponFields):
    code: str


class BulkCouponCreate(CouponFields):
    count: int = Field(gt=0)
    prefix: str = ""


class CouponUpdate(BaseModel):
    type: Optional[CouponType] = None
    value: Optional[Decimal] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    min_order_value: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    applicable_products: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    excluded_products: Optional[List[str]] = None
    excluded_categories: Optional[List[str]] = None
    max_usages: Optional[int] = None
    max_usages_per_customer: Optional[int] = None
    applicable_customers: Optional[List[str]] = None
    applicable_customer_tiers: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_stackable: Optional[bool] = None
    buy_quantity: Optional[int] = None
    get_quantity: Optional[int] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class Coupon(CouponFields):
    code: str
    usage_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConfigValidation(BaseModel):
    valid: bool
    errors: List[str] = []


# ─────────────── Coupon results ───────────────

class CouponValidation(BaseModel):
    valid: bool
    discount: Decimal = Decimal("0.00")
    reason: Optional[InvalidReason] = None
    error: Optional[str] = None
    message: Optional[str] = None
    coupon: Optional[Coupon] = None

    @classmethod
    def invalid(cls, reason: InvalidReason, error: str) -> "CouponValidation":
        return cls(valid=False, reason=reason, error=error)


class AppliedCoupon(BaseModel):
    code: str
    type: CouponType
    discount: Decimal
    is_stackable: bool
    message: Optional[str] = None


class DiscountStackingResult(BaseModel):
    total_discount: Decimal = Decimal("0.00")
    applied_coupons: List[AppliedCoupon] = []
    conflicts: List[str] = []
    warnings: List[str] = []


class CouponRedemption(BaseModel):
    code: str
    customer_id: str
    redeemed: bool
    error: Optional[str] = None


class CouponUsageSummary(BaseModel):
    code: str
    redemptions: int


class CouponStatistics(BaseModel):
    total_coupons: int
    active_coupons: int
    total_redemptions: int
    top_coupons: List[CouponUsageSummary]


# ─────────────── Tax ───────────────

class TaxConfigFields(BaseModel):
    name: str
    type: TaxType
    rate: Decimal  # Percent, or an amount for flat-fee
    is_inclusive: Optional[bool] = None
    applicable_items: Optional[List[str]] = None
    description: Optional[str] = None
    is_active: bool = True


class TaxConfigCreate(TaxConfigFields):
    id: Optional[str] = None


class TaxConfigUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[TaxType] = None
    rate: Optional[Decimal] = None
    is_inclusive: Optional[bool] = None
    applicable_items: Optional[List[str]] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class TaxConfig(TaxConfigFields):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TaxBreakdownLine(BaseModel):
    tax_id: str
    tax_name: str
    rate: Decimal
    amount: Decimal
    is_inclusive: bool


class TaxCalculation(BaseModel):
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    tax_breakdown: List[TaxBreakdownLine]
    is_inclusive: bool


class TaxRecord(BaseModel):
    id: str
    date: datetime
    items: List[OrderItem]
    tax_configs: List[TaxConfig]
    calculation: TaxCalculation
    notes: Optional[str] = None


class TaxStatistics(BaseModel):
    total_tax_collected: Decimal
    average_tax_per_transaction: Decimal
    transaction_count: int
    tax_breakdown_by_name: Dict[str, Decimal]


class TaxReport(BaseModel):
    period_start: datetime
    period_end: datetime
    statistics: TaxStatistics
    records: List[TaxRecord]


# ─────────────── Loyalty ───────────────

class LoyaltyConfig(BaseModel):
    points_per_dollar: Decimal = Decimal("1")
    dollars_per_point: Decimal = Decimal("0.01")
    tier_multipliers: Dict[str, Decimal] = {}
    minimum_redemption: int = 0
    expiration_days: Optional[int] = None
    lot_policy: LotPolicy = LotPolicy.fifo


class LoyaltyLot(BaseModel):
    points: int
    expiry_date: datetime


class LoyaltyTransaction(BaseModel):
    id: str
    customer_id: str
    type: TransactionType
    points: int
    description: str = ""
    order_id: Optional[str] = None
    timestamp: datetime

    model_config = {"from_attributes": True}


class LoyaltyAccount(BaseModel):
    customer_id: str
    points: int = 0
    lifetime_points: int = 0
    tier: str = "regular"
    expiring_lots: List[LoyaltyLot] = []
    transactions: List[LoyaltyTransaction] = []  # Newest first


class RedemptionFailure(str, Enum):
    minimum_redemption = "minimum_redemption"
    insufficient_points = "insufficient_points"


class RedemptionResult(BaseModel):
    success: bool
    reason: Optional[RedemptionFailure] = None
    error: Optional[str] = None
    dollar_value: Optional[Decimal] = None
    account: Optional[LoyaltyAccount] = None


class ExpirationResult(BaseModel):
    expired_points: int
    account: LoyaltyAccount


# ─────────────── Pricing ───────────────

class PricingBreakdown(BaseModel):
    subtotal: Decimal
    discount: Decimal
    discounted_subtotal: Decimal
    tax: TaxCalculation
    total: Decimal
    stacking: DiscountStackingResult


# ─────────────── Request bodies ───────────────

class ValidateCouponRequest(BaseModel):
    code: str
    items: List[OrderItem]
    customer: Customer
    subtotal: Optional[Decimal] = None  # Derived from items when omitted


class StackCouponsRequest(BaseModel):
    codes: List[str]
    items: List[OrderItem]
    customer: Customer
    subtotal: Optional[Decimal] = None


class RedeemCouponRequest(BaseModel):
    customer_id: str


class TaxRequest(BaseModel):
    items: List[OrderItem]
    tax_configs: Optional[List[TaxConfigCreate]] = None  # Active stored configs when omitted
    is_inclusive: Optional[bool] = None


class TaxRecordRequest(TaxRequest):
    notes: Optional[str] = None


class DuplicateTaxConfigRequest(BaseModel):
    name: Optional[str] = None  # Defaults to "<name> (copy)"


class PricingRequest(BaseModel):
    items: List[OrderItem]
    customer: Customer
    coupon_codes: List[str] = []
    is_inclusive: Optional[bool] = None


class EarnPointsRequest(BaseModel):
    amount: Decimal  # Final charged amount
    order_id: Optional[str] = None


class RedeemPointsRequest(BaseModel):
    points: int
    description: str = "Points redeemed"


class TierUpdate(BaseModel):
    tier: str


class AdjustPointsRequest(BaseModel):
    points: int
    description: str
