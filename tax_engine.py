"""
tax_engine.py
=============
Tax computation over one or more independent tax rules.

Every active rule is evaluated against its own applicable subtotal (all
lines, or only the products it lists); rules never compound on each other.

* flat-fee: the rate is the tax amount, whatever the subtotal.
* vat / gst / sales-tax / percentage / custom:
    - exclusive: tax = subtotal × rate / 100
    - inclusive: base = subtotal / (1 + rate / 100), tax = base × rate / 100

A rule's own ``is_inclusive`` wins; rules that leave it unset follow the
caller's default. Each rule's amount is rounded half-up to the cent and the
order's tax is the sum of those rounded amounts, so the breakdown always
adds up exactly. Inclusive tax is already inside the prices and is therefore
not added to the total.

Calculations can also be recorded to an audit trail (newest first, capped at
``config.TAX_HISTORY_LIMIT`` entries) for statistics and period reports.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import config
from clock import resolve_now
from errors import InvalidConfigurationError, NotFoundError
from money import from_cents, line_cents, round_cents, to_cents, to_decimal
from repositories import TaxConfigStore, TaxRecordStore
from schemas import (
    ConfigValidation, OrderItem, TaxBreakdownLine, TaxCalculation, TaxConfig,
    TaxConfigCreate, TaxConfigFields, TaxConfigUpdate, TaxRecord, TaxReport, TaxStatistics, TaxType,
)

logger = logging.getLogger(__name__)

PERCENTAGE_TYPES = (TaxType.vat, TaxType.gst, TaxType.sales_tax, TaxType.percentage, TaxType.custom)


def item_net_cents(item: OrderItem) -> int:
    net = line_cents(item.quantity, item.price)
    if item.discount:
        net -= to_cents(item.discount)
    return max(0, net)


def calculate_items_subtotal(items: List[OrderItem]) -> Decimal:
    """Sum of quantity × price less line discounts, each line floored at zero."""
    return from_cents(sum(item_net_cents(item) for item in items))


def _applicable_items(items: List[OrderItem], tax_config: TaxConfig) -> List[OrderItem]:
    if not tax_config.applicable_items:
        return list(items)
    return [item for item in items if item.product_id in tax_config.applicable_items]


def _tax_cents(subtotal_cents: int, tax_config: TaxConfig, inclusive: bool) -> int:
    if tax_config.type == TaxType.flat_fee:
        return to_cents(tax_config.rate)
    if tax_config.type not in PERCENTAGE_TYPES:
        raise ValueError(f"Unknown tax type: {tax_config.type}")

    rate = to_decimal(tax_config.rate)
    base = Decimal(subtotal_cents)
    if inclusive:
        base = base / (1 + rate / 100)
    return round_cents(base * rate / 100)


def calculate_tax(
    items: List[OrderItem],
    tax_configs: Optional[List[TaxConfig]] = None,
    is_inclusive: Optional[bool] = None,
    store: Optional[TaxConfigStore] = None,
) -> TaxCalculation:
    """Tax for a set of order lines.

    When ``tax_configs`` is omitted the store's active rules are used; with
    neither the order is untaxed.
    """
    if is_inclusive is None:
        is_inclusive = config.TAX_INCLUSIVE_DEFAULT
    if tax_configs is None:
        tax_configs = store.list_active() if store is not None else []

    subtotal_cents = sum(item_net_cents(item) for item in items)
    breakdown = []
    tax_cents = 0
    exclusive_cents = 0

    for tax_config in tax_configs:
        if not tax_config.is_active:
            continue

        applicable = _applicable_items(items, tax_config)
        if not applicable:
            continue

        if tax_config.type == TaxType.flat_fee:
            inclusive = False
        elif tax_config.is_inclusive is not None:
            # The rule's own flag beats the caller's default, in both directions
            inclusive = tax_config.is_inclusive
        else:
            inclusive = is_inclusive

        amount = _tax_cents(sum(item_net_cents(item) for item in applicable), tax_config, inclusive)
        tax_cents += amount
        if not inclusive:
            exclusive_cents += amount

        breakdown.append(TaxBreakdownLine(
            tax_id=tax_config.id,
            tax_name=tax_config.name,
            rate=to_decimal(tax_config.rate),
            amount=from_cents(amount),
            is_inclusive=inclusive,
        ))

    return TaxCalculation(
        subtotal=from_cents(subtotal_cents),
        tax_amount=from_cents(tax_cents),
        total=from_cents(subtotal_cents + exclusive_cents),
        tax_breakdown=breakdown,
        is_inclusive=is_inclusive,
    )


def calculate_item_tax(item: OrderItem, tax_configs: List[TaxConfig], is_inclusive: Optional[bool] = None) -> Decimal:
    return calculate_tax([item], tax_configs, is_inclusive).tax_amount


# ─────────────────────────── Configuration ───────────────────────────

def validate_tax_config(tax_config) -> ConfigValidation:
    """Collect every rule the tax configuration breaks."""
    errors = []

    if not tax_config.name or not tax_config.name.strip():
        errors.append("Tax name is required")

    if tax_config.rate is None or tax_config.rate < 0:
        errors.append("Tax rate must be non-negative")
    elif tax_config.type in PERCENTAGE_TYPES and tax_config.rate > 100:
        errors.append("Percentage tax rate cannot exceed 100%")

    if tax_config.type == TaxType.flat_fee and tax_config.is_inclusive:
        errors.append("Flat-fee taxes cannot be inclusive")

    return ConfigValidation(valid=not errors, errors=errors)


def new_tax_id() -> str:
    return f"tax_{uuid.uuid4().hex[:12]}"


def _ensure_valid(tax_config) -> None:
    result = validate_tax_config(tax_config)
    if not result.valid:
        logger.warning("Rejected tax config %r: %s", tax_config.name, "; ".join(result.errors))
        raise InvalidConfigurationError(result.errors)


def create_tax_config(store, data: TaxConfigCreate) -> TaxConfig:
    _ensure_valid(data)
    tax_config = TaxConfig(**data.model_dump(exclude={"id"}), id=data.id or new_tax_id())
    if store.get(tax_config.id) is not None:
        raise InvalidConfigurationError([f"Tax config {tax_config.id} already exists"])
    saved = store.save(tax_config)
    logger.info("Created %s tax config %s (%s)", saved.type.value, saved.id, saved.name)
    return saved


def update_tax_config(store, tax_id: str, updates: TaxConfigUpdate) -> TaxConfig:
    current = store.get(tax_id)
    if current is None:
        raise NotFoundError("Tax config", tax_id)
    merged = TaxConfig.model_validate(
        current.model_copy(update=updates.model_dump(exclude_unset=True)).model_dump()
    )
    _ensure_valid(merged)
    return store.save(merged)


def delete_tax_config(store, tax_id: str) -> None:
    if not store.delete(tax_id):
        raise NotFoundError("Tax config", tax_id)


def duplicate_tax_config(store, tax_id: str, name: Optional[str] = None) -> TaxConfig:
    """Copy a rule under a new id; the copy is named "<name> (copy)" unless a name is given."""
    source = store.get(tax_id)
    if source is None:
        raise NotFoundError("Tax config", tax_id)
    fields = source.model_dump(include=set(TaxConfigFields.model_fields))
    fields["name"] = name or f"{source.name} (copy)"
    return create_tax_config(store, TaxConfigCreate(**fields))


def default_tax_configs(region: str = "custom") -> List[TaxConfig]:
    """Starter rules for a region; rates are typical values, not a lookup."""
    if region == "thailand":
        return [TaxConfig(
            id=new_tax_id(), name="VAT", type=TaxType.vat, rate=Decimal("7"),
            is_inclusive=True, description="Thailand Value Added Tax (7%)",
        )]
    if region == "us":
        return [TaxConfig(
            id=new_tax_id(), name="Sales Tax", type=TaxType.sales_tax, rate=Decimal("5"),
            is_inclusive=False, description="US Sales Tax (varies by state)",
        )]
    if region == "eu":
        return [TaxConfig(
            id=new_tax_id(), name="VAT", type=TaxType.vat, rate=Decimal("21"),
            is_inclusive=True, description="EU VAT (varies by country)",
        )]
    return []


# ─────────────────────────── Audit trail ───────────────────────────

def record_tax_calculation(
    record_store: TaxRecordStore,
    items: List[OrderItem],
    tax_configs: Optional[List[TaxConfig]] = None,
    is_inclusive: Optional[bool] = None,
    notes: Optional[str] = None,
    store: Optional[TaxConfigStore] = None,
    now: Optional[datetime] = None,
) -> TaxRecord:
    """Calculate tax and keep a snapshot of inputs and result for auditing."""
    if tax_configs is None:
        tax_configs = store.list_active() if store is not None else []

    record = TaxRecord(
        id=f"tax_record_{uuid.uuid4().hex}",
        date=resolve_now(now),
        items=items,
        tax_configs=tax_configs,
        calculation=calculate_tax(items, tax_configs, is_inclusive),
        notes=notes,
    )
    record_store.add(record, keep=config.TAX_HISTORY_LIMIT)
    logger.info("Recorded tax calculation %s: %s", record.id, record.calculation.tax_amount)
    return record


def get_tax_history(record_store: TaxRecordStore, limit: int = 100) -> List[TaxRecord]:
    return record_store.recent(limit)


def tax_statistics(records: List[TaxRecord]) -> TaxStatistics:
    total_cents = sum(to_cents(r.calculation.tax_amount) for r in records)
    by_name = defaultdict(int)
    for record in records:
        for line in record.calculation.tax_breakdown:
            by_name[line.tax_name] += to_cents(line.amount)

    average_cents = round_cents(Decimal(total_cents) / len(records)) if records else 0
    return TaxStatistics(
        total_tax_collected=from_cents(total_cents),
        average_tax_per_transaction=from_cents(average_cents),
        transaction_count=len(records),
        tax_breakdown_by_name={name: from_cents(cents) for name, cents in by_name.items()},
    )


def export_tax_report(record_store: TaxRecordStore, start: datetime, end: datetime) -> TaxReport:
    """Statistics and records for ``start <= date <= end``."""
    records = record_store.between(start, end)
    return TaxReport(
        period_start=start,
        period_end=end,
        statistics=tax_statistics(records),
        records=records,
    )
