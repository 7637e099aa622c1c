"""
main.py
=======
FastAPI application entry point.

Endpoints:
  POST   /coupons                      - Create a coupon
  POST   /coupons/bulk                 - Generate many coupons from one template
  GET    /coupons                      - List coupons (optionally only active ones)
  GET    /coupons/statistics           - Coupon usage statistics
  GET    /coupons/{code}               - Get coupon by code
  PUT    /coupons/{code}               - Update coupon
  DELETE /coupons/{code}               - Delete coupon
  POST   /coupons/validate             - Validate one code against an order
  POST   /coupons/stack                - Resolve several codes into one discount
  POST   /coupons/{code}/redeem        - Record a redemption after settlement
  GET    /tax-configs                  - List tax rules
  POST   /tax-configs                  - Create a tax rule
  GET    /tax-configs/defaults/{region} - Starter tax rules for a region
  PUT    /tax-configs/{tax_id}         - Update a tax rule
  DELETE /tax-configs/{tax_id}         - Delete a tax rule
  POST   /tax-configs/{tax_id}/duplicate - Copy a tax rule
  POST   /tax/calculate                - Tax for a set of order lines
  POST   /tax/records                  - Calculate tax and keep it in the audit trail
  GET    /tax/records                  - Recent recorded calculations, newest first
  GET    /tax/statistics               - Totals over the recorded calculations
  GET    /tax/report                   - Statistics and records for a date range
  GET    /loyalty/config               - Loyalty program settings
  PUT    /loyalty/config               - Replace the loyalty program settings
  GET    /loyalty/{customer_id}        - Loyalty account
  PUT    /loyalty/{customer_id}/tier   - Set a customer's tier
  POST   /loyalty/{customer_id}/earn   - Accrue points for a settled order
  POST   /loyalty/{customer_id}/redeem - Redeem points
  POST   /loyalty/{customer_id}/expire - Sweep expired points
  POST   /loyalty/{customer_id}/adjust - Manual correction
  POST   /pricing/quote                - Full order pricing breakdown
"""

import logging
from datetime import datetime
from typing import List

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import config
import coupon_service
import models
import schemas
import tax_engine
from clock import as_utc
from coupon_validator import validate_coupon
from database import engine, get_db
from errors import InvalidConfigurationError, NotFoundError
from loyalty import LoyaltyLedger, load_loyalty_config, save_loyalty_config
from pricing import price_order
from repositories import (
    SqlCouponStore, SqlLoyaltyConfigStore, SqlLoyaltyStore, SqlTaxConfigStore, SqlTaxRecordStore,
)
from stacking import calculate_stacked_discounts

logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
logger = logging.getLogger(__name__)

# Create DB tables on startup
models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Pricing & Promotions API",
    description="Coupon validation and stacking, loyalty points and tax calculation for storefront orders.",
    version="1.0.0",
)


@app.exception_handler(InvalidConfigurationError)
def invalid_configuration_handler(request: Request, exc: InvalidConfigurationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


def get_coupon_store(db: Session = Depends(get_db)) -> SqlCouponStore:
    return SqlCouponStore(db)


def get_tax_store(db: Session = Depends(get_db)) -> SqlTaxConfigStore:
    return SqlTaxConfigStore(db)


def get_tax_record_store(db: Session = Depends(get_db)) -> SqlTaxRecordStore:
    return SqlTaxRecordStore(db)


def get_loyalty_config_store(db: Session = Depends(get_db)) -> SqlLoyaltyConfigStore:
    return SqlLoyaltyConfigStore(db)


def get_loyalty_ledger(db: Session = Depends(get_db)) -> LoyaltyLedger:
    return LoyaltyLedger(SqlLoyaltyStore(db), load_loyalty_config(SqlLoyaltyConfigStore(db)))


def _request_tax_configs(request_configs):
    """Validate inline tax rules and give the ones without an id a fresh one."""
    if request_configs is None:
        return None
    tax_configs = []
    for tc in request_configs:
        result = tax_engine.validate_tax_config(tc)
        if not result.valid:
            raise InvalidConfigurationError(result.errors)
        tax_configs.append(schemas.TaxConfig(
            **tc.model_dump(exclude={"id"}), id=tc.id or tax_engine.new_tax_id()
        ))
    return tax_configs


# ═══════════════════════════════════════════════════
#  COUPON CRUD
# ═══════════════════════════════════════════════════

@app.post(
    "/coupons",
    response_model=schemas.Coupon,
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Create a new coupon",
)
def create_coupon(coupon: schemas.CouponCreate, store: SqlCouponStore = Depends(get_coupon_store)):
    """
    Create a new coupon. Supports five types:
    - **percentage**: percent off the applicable lines, optionally capped.
    - **fixed**: flat amount off, never more than the applicable lines.
    - **bogo**: every buy+get set earns get_quantity free units.
    - **buy_x_get_y**: buying buy_quantity units earns get_quantity free units once.
    - **free_shipping**: waives a shipping cost given as the value.

    Every configuration error is reported at once.
    """
    return coupon_service.create_coupon(store, coupon)


@app.post(
    "/coupons/bulk",
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Generate coupons in bulk",
)
def create_bulk_coupons(request: schemas.BulkCouponCreate, store: SqlCouponStore = Depends(get_coupon_store)):
    """Create `count` coupons with random codes that share one configuration."""
    return {"codes": coupon_service.generate_bulk_coupons(store, request)}


@app.get(
    "/coupons",
    response_model=List[schemas.Coupon],
    tags=["Coupons"],
    summary="Get all coupons",
)
def get_all_coupons(active_only: bool = False, store: SqlCouponStore = Depends(get_coupon_store)):
    """Retrieve coupons; with `active_only` only those usable right now."""
    return store.list(active_only=active_only)


@app.get(
    "/coupons/statistics",
    response_model=schemas.CouponStatistics,
    tags=["Coupons"],
    summary="Coupon usage statistics",
)
def get_coupon_statistics(store: SqlCouponStore = Depends(get_coupon_store)):
    return coupon_service.coupon_statistics(store)


@app.get(
    "/coupons/{code}",
    response_model=schemas.Coupon,
    tags=["Coupons"],
    summary="Get a coupon by code",
)
def get_coupon(code: str, store: SqlCouponStore = Depends(get_coupon_store)):
    """Retrieve a specific coupon; codes are case-insensitive."""
    return coupon_service.get_coupon(store, code)


@app.put(
    "/coupons/{code}",
    response_model=schemas.Coupon,
    tags=["Coupons"],
    summary="Update a coupon",
)
def update_coupon(code: str, update_data: schemas.CouponUpdate, store: SqlCouponStore = Depends(get_coupon_store)):
    """
    Update a specific coupon. All fields are optional; only provided fields are updated.
    """
    return coupon_service.update_coupon(store, code, update_data)


@app.delete(
    "/coupons/{code}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Coupons"],
    summary="Delete a coupon",
)
def delete_coupon(code: str, store: SqlCouponStore = Depends(get_coupon_store)):
    coupon_service.delete_coupon(store, code)
    return None


# ═══════════════════════════════════════════════════
#  APPLY COUPONS
# ═══════════════════════════════════════════════════

@app.post(
    "/coupons/validate",
    response_model=schemas.CouponValidation,
    tags=["Apply Coupons"],
    summary="Validate a coupon against an order",
)
def validate_coupon_code(request: schemas.ValidateCouponRequest, store: SqlCouponStore = Depends(get_coupon_store)):
    """
    Returns `valid` with the discount the coupon would give, or the reason it
    cannot be used. An invalid coupon is not an HTTP error.
    """
    subtotal = request.subtotal
    if subtotal is None:
        subtotal = tax_engine.calculate_items_subtotal(request.items)
    return validate_coupon(store, request.code, request.items, request.customer, subtotal)


@app.post(
    "/coupons/stack",
    response_model=schemas.DiscountStackingResult,
    tags=["Apply Coupons"],
    summary="Combine several coupon codes",
)
def stack_coupons(request: schemas.StackCouponsRequest, store: SqlCouponStore = Depends(get_coupon_store)):
    """
    Codes are processed in the order given. Invalid codes end up in
    `conflicts`, codes that cannot be combined in `warnings`.
    """
    subtotal = request.subtotal
    if subtotal is None:
        subtotal = tax_engine.calculate_items_subtotal(request.items)
    return calculate_stacked_discounts(store, request.items, request.customer, request.codes, subtotal)


@app.post(
    "/coupons/{code}/redeem",
    response_model=schemas.CouponRedemption,
    tags=["Apply Coupons"],
    summary="Record a coupon redemption",
)
def redeem_coupon(code: str, request: schemas.RedeemCouponRequest, store: SqlCouponStore = Depends(get_coupon_store)):
    """Increments the usage counters; refused once a usage cap has been reached."""
    return coupon_service.redeem_coupon(store, code, request.customer_id)


# ═══════════════════════════════════════════════════
#  TAX
# ═══════════════════════════════════════════════════

@app.get(
    "/tax-configs",
    response_model=List[schemas.TaxConfig],
    tags=["Tax"],
    summary="Get all tax rules",
)
def get_tax_configs(store: SqlTaxConfigStore = Depends(get_tax_store)):
    return store.list()


@app.post(
    "/tax-configs",
    response_model=schemas.TaxConfig,
    status_code=status.HTTP_201_CREATED,
    tags=["Tax"],
    summary="Create a tax rule",
)
def create_tax_config(tax_config: schemas.TaxConfigCreate, store: SqlTaxConfigStore = Depends(get_tax_store)):
    return tax_engine.create_tax_config(store, tax_config)


@app.get(
    "/tax-configs/defaults/{region}",
    response_model=List[schemas.TaxConfig],
    tags=["Tax"],
    summary="Starter tax rules for a region",
)
def get_default_tax_configs(region: str):
    """Not persisted; `thailand`, `us` and `eu` are known, anything else is empty."""
    return tax_engine.default_tax_configs(region)


@app.put(
    "/tax-configs/{tax_id}",
    response_model=schemas.TaxConfig,
    tags=["Tax"],
    summary="Update a tax rule",
)
def update_tax_config(tax_id: str, update_data: schemas.TaxConfigUpdate,
                      store: SqlTaxConfigStore = Depends(get_tax_store)):
    return tax_engine.update_tax_config(store, tax_id, update_data)


@app.delete(
    "/tax-configs/{tax_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Tax"],
    summary="Delete a tax rule",
)
def delete_tax_config(tax_id: str, store: SqlTaxConfigStore = Depends(get_tax_store)):
    tax_engine.delete_tax_config(store, tax_id)
    return None


@app.post(
    "/tax-configs/{tax_id}/duplicate",
    response_model=schemas.TaxConfig,
    status_code=status.HTTP_201_CREATED,
    tags=["Tax"],
    summary="Copy a tax rule",
)
def duplicate_tax_config(tax_id: str, request: schemas.DuplicateTaxConfigRequest,
                         store: SqlTaxConfigStore = Depends(get_tax_store)):
    """The copy gets a new id and is named "<name> (copy)" unless a name is given."""
    return tax_engine.duplicate_tax_config(store, tax_id, request.name)


@app.post(
    "/tax/calculate",
    response_model=schemas.TaxCalculation,
    tags=["Tax"],
    summary="Calculate tax for order lines",
)
def calculate_tax(request: schemas.TaxRequest, store: SqlTaxConfigStore = Depends(get_tax_store)):
    """Uses the rules in the request when given, otherwise every active stored rule."""
    tax_configs = _request_tax_configs(request.tax_configs)
    return tax_engine.calculate_tax(request.items, tax_configs, request.is_inclusive, store=store)


@app.post(
    "/tax/records",
    response_model=schemas.TaxRecord,
    status_code=status.HTTP_201_CREATED,
    tags=["Tax"],
    summary="Calculate and record tax",
)
def record_tax(request: schemas.TaxRecordRequest,
               store: SqlTaxConfigStore = Depends(get_tax_store),
               record_store: SqlTaxRecordStore = Depends(get_tax_record_store)):
    """Same as `/tax/calculate`, and keeps the inputs and result in the audit trail."""
    return tax_engine.record_tax_calculation(
        record_store,
        request.items,
        _request_tax_configs(request.tax_configs),
        request.is_inclusive,
        notes=request.notes,
        store=store,
    )


@app.get(
    "/tax/records",
    response_model=List[schemas.TaxRecord],
    tags=["Tax"],
    summary="Recent tax calculations",
)
def get_tax_records(limit: int = 100, record_store: SqlTaxRecordStore = Depends(get_tax_record_store)):
    return tax_engine.get_tax_history(record_store, limit)


@app.get(
    "/tax/statistics",
    response_model=schemas.TaxStatistics,
    tags=["Tax"],
    summary="Tax statistics",
)
def get_tax_statistics(record_store: SqlTaxRecordStore = Depends(get_tax_record_store)):
    """Totals over every calculation still held in the audit trail."""
    return tax_engine.tax_statistics(tax_engine.get_tax_history(record_store, config.TAX_HISTORY_LIMIT))


@app.get(
    "/tax/report",
    response_model=schemas.TaxReport,
    tags=["Tax"],
    summary="Tax report for a period",
)
def get_tax_report(start: datetime, end: datetime,
                   record_store: SqlTaxRecordStore = Depends(get_tax_record_store)):
    """Both ends of the period are inclusive."""
    if as_utc(end) < as_utc(start):
        raise HTTPException(status_code=422, detail="Report end must not be before its start")
    return tax_engine.export_tax_report(record_store, start, end)


# ═══════════════════════════════════════════════════
#  LOYALTY
# ═══════════════════════════════════════════════════

@app.get(
    "/loyalty/config",
    response_model=schemas.LoyaltyConfig,
    tags=["Loyalty"],
    summary="Get the loyalty program settings",
)
def get_loyalty_config(store: SqlLoyaltyConfigStore = Depends(get_loyalty_config_store)):
    """The saved settings, or the defaults from the environment when none were saved."""
    return load_loyalty_config(store)


@app.put(
    "/loyalty/config",
    response_model=schemas.LoyaltyConfig,
    tags=["Loyalty"],
    summary="Replace the loyalty program settings",
)
def update_loyalty_config(loyalty_config: schemas.LoyaltyConfig,
                          store: SqlLoyaltyConfigStore = Depends(get_loyalty_config_store)):
    return save_loyalty_config(store, loyalty_config)


@app.get(
    "/loyalty/{customer_id}",
    response_model=schemas.LoyaltyAccount,
    tags=["Loyalty"],
    summary="Get a loyalty account",
)
def get_loyalty_account(customer_id: str, ledger: LoyaltyLedger = Depends(get_loyalty_ledger)):
    """Customers without an account get an empty one (not persisted)."""
    return ledger.get_account(customer_id)


@app.put(
    "/loyalty/{customer_id}/tier",
    response_model=schemas.LoyaltyAccount,
    tags=["Loyalty"],
    summary="Set a customer's loyalty tier",
)
def set_loyalty_tier(customer_id: str, request: schemas.TierUpdate,
                     ledger: LoyaltyLedger = Depends(get_loyalty_ledger)):
    return ledger.set_tier(customer_id, request.tier)


@app.post(
    "/loyalty/{customer_id}/earn",
    response_model=schemas.LoyaltyAccount,
    tags=["Loyalty"],
    summary="Accrue points for a settled order",
)
def earn_points(customer_id: str, request: schemas.EarnPointsRequest,
                ledger: LoyaltyLedger = Depends(get_loyalty_ledger)):
    """Points = floor(amount × points per dollar × tier multiplier)."""
    if request.amount < 0:
        raise HTTPException(status_code=422, detail="Amount cannot be negative")
    return ledger.earn_for_order(customer_id, request.amount, order_id=request.order_id)


@app.post(
    "/loyalty/{customer_id}/redeem",
    response_model=schemas.RedemptionResult,
    tags=["Loyalty"],
    summary="Redeem loyalty points",
)
def redeem_points(customer_id: str, request: schemas.RedeemPointsRequest,
                  ledger: LoyaltyLedger = Depends(get_loyalty_ledger)):
    """A refused redemption comes back as `success: false` with the reason."""
    return ledger.redeem_points(customer_id, request.points, request.description)


@app.post(
    "/loyalty/{customer_id}/expire",
    response_model=schemas.ExpirationResult,
    tags=["Loyalty"],
    summary="Expire old points",
)
def expire_points(customer_id: str, ledger: LoyaltyLedger = Depends(get_loyalty_ledger)):
    expired = ledger.expire_old_points(customer_id)
    return schemas.ExpirationResult(expired_points=expired, account=ledger.get_account(customer_id))


@app.post(
    "/loyalty/{customer_id}/adjust",
    response_model=schemas.LoyaltyAccount,
    tags=["Loyalty"],
    summary="Manually adjust a points balance",
)
def adjust_points(customer_id: str, request: schemas.AdjustPointsRequest,
                  ledger: LoyaltyLedger = Depends(get_loyalty_ledger)):
    try:
        return ledger.adjust_points(customer_id, request.points, request.description)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ═══════════════════════════════════════════════════
#  PRICING
# ═══════════════════════════════════════════════════

@app.post(
    "/pricing/quote",
    response_model=schemas.PricingBreakdown,
    tags=["Pricing"],
    summary="Price an order",
)
def quote_order(request: schemas.PricingRequest,
                coupon_store: SqlCouponStore = Depends(get_coupon_store),
                tax_store: SqlTaxConfigStore = Depends(get_tax_store)):
    """
    Resolves the coupon codes, takes the discount off the subtotal and
    computes tax on what is left. Nothing is redeemed here.
    """
    return price_order(
        coupon_store,
        request.items,
        request.customer,
        request.coupon_codes,
        is_inclusive=request.is_inclusive,
        tax_store=tax_store,
    )


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@app.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": "Pricing & Promotions API is running"}
