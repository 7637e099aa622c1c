"""
errors.py
=========
Exceptions raised by the service layer. Customer-facing failures (bad coupon,
not enough points) are returned as results instead and never show up here.
"""

from typing import List


class PricingError(Exception):
    """Base class for engine errors."""


class InvalidConfigurationError(PricingError):
    """A coupon or tax rule failed validation and was not persisted."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(PricingError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")
