"""
Pricing calculator.

Pure arithmetic over priced cart lines: no database access, no clock, no
configuration lookups. Given the same inputs it always returns the same
Totals, which is what checkout persists and what the tests pin down.

Rules:
- subtotal = sum(unit_price * quantity)
- discount = percentage ? subtotal * value / 100 : value, clamped to [0, subtotal]
- tax      = percentage ? subtotal * value / 100 : value, clamped to >= 0
  (tax is on the subtotal, not on the discounted amount)
- total    = max(0, subtotal - discount + tax)

Subtotal and total are bounded by MAX_AMOUNT_CENTS, percentages by
MAX_PERCENT; anything larger is a ValidationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..errors import ValidationError
from ..money import MAX_AMOUNT_CENTS, MAX_PERCENT, percent_of

MODE_PERCENTAGE = "percentage"
MODE_FIXED = "fixed"
ADJUSTMENT_MODES = (MODE_PERCENTAGE, MODE_FIXED)


@dataclass(frozen=True)
class PricedLine:
    unit_price_cents: int
    quantity: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


def _adjustment(subtotal_cents: int, mode: str, value: Decimal, label: str) -> int:
    if mode not in ADJUSTMENT_MODES:
        raise ValidationError(f"{label} mode must be one of {list(ADJUSTMENT_MODES)}")
    if value < 0:
        raise ValidationError(f"{label} value cannot be negative")
    if mode == MODE_PERCENTAGE:
        if value > MAX_PERCENT:
            raise ValidationError(f"{label} percentage cannot exceed {MAX_PERCENT}")
        return percent_of(subtotal_cents, value)
    if value != value.to_integral_value():
        raise ValidationError(f"fixed {label} must be a whole number of cents")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"fixed {label} exceeds maximum amount")
    return int(value)


def compute_subtotal(items: Iterable[PricedLine]) -> int:
    subtotal = 0
    for item in items:
        if item.unit_price_cents < 0:
            raise ValidationError("unit price cannot be negative")
        if item.quantity < 0:
            raise ValidationError("quantity cannot be negative")
        subtotal += item.line_total_cents
    return subtotal


def compute_totals(
    items: Iterable[PricedLine],
    tax_mode: str,
    tax_value: Decimal,
    discount_mode: str,
    discount_value: Decimal,
) -> Totals:
    subtotal = compute_subtotal(items)
    if subtotal > MAX_AMOUNT_CENTS:
        raise ValidationError("Sale subtotal exceeds maximum amount", details={"subtotal_cents": subtotal})

    discount = _adjustment(subtotal, discount_mode, Decimal(discount_value), "discount")
    discount = min(max(discount, 0), subtotal)

    tax = max(_adjustment(subtotal, tax_mode, Decimal(tax_value), "tax"), 0)

    total = max(0, subtotal - discount + tax)
    if total > MAX_AMOUNT_CENTS:
        raise ValidationError("Sale total exceeds maximum amount", details={"total_cents": total})
    return Totals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=total,
    )
