"""
money.py
========
Monetary helpers. Amounts are carried as integer cents inside the engine and
converted to two-place Decimals only when they leave it.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, str, Decimal]

CENT = Decimal("0.01")


def to_decimal(amount: Number) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    # str() first so that 0.1 stays 0.1 and not its binary expansion
    return Decimal(str(amount))


def to_cents(amount: Number) -> int:
    """Convert a currency amount to whole cents, rounding half-up."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_cents(cents: Decimal) -> int:
    """Round a fractional number of cents to a whole cent, half-up."""
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def line_cents(quantity: int, unit_price: Number) -> int:
    """Cents for ``quantity`` units; sub-cent prices are rounded on the line total, not per unit."""
    return to_cents(to_decimal(unit_price) * quantity)
