# Overview: Money and quantity primitives shared by pricing, stock, and loyalty.

"""
Money is carried as integer cents everywhere (columns are *_cents), the same
way product prices are stored. Percentages are Decimals. Rounding of
percentage amounts is half-up to the nearest cent.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError

# Maximum single amount: 9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999

# Upper bound for tax and discount percentages (discounts above 100% clamp to the subtotal)
MAX_PERCENT = Decimal(1000)

# Units per line or per stock correction
MAX_QUANTITY = 1_000_000

# One loyalty point per 10.00 of spend
CENTS_PER_LOYALTY_POINT = 1000

_HUNDRED = Decimal(100)


def to_decimal(value: Any, field: str = "value") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def to_cents(value: Any, field: str = "amount", *, allow_negative: bool = False) -> int:
    """
    Coerce an integer-cents value.

    Accepts ints and integral strings/Decimals. Fractional cents and
    scientific notation are rejected rather than silently rounded.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer number of cents")
    if isinstance(value, int):
        cents = value
    else:
        if isinstance(value, str) and "e" in value.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        dec = to_decimal(value, field)
        if dec != dec.to_integral_value():
            raise ValidationError(f"{field} must be a whole number of cents")
        cents = int(dec)
    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum amount")
    return cents


def to_percent(value: Any, field: str = "percent") -> Decimal:
    """A non-negative percentage no larger than MAX_PERCENT."""
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(f"{field} cannot be negative")
    if result > MAX_PERCENT:
        raise ValidationError(f"{field} cannot exceed {MAX_PERCENT}%")
    return result


def percent_of(cents: int, percent: Decimal) -> int:
    """cents * percent / 100, rounded half-up to the cent."""
    amount = (Decimal(cents) * percent / _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(amount)


def bps_to_percent(bps: int) -> Decimal:
    """Basis points (825) to percent (Decimal('8.25'))."""
    return Decimal(bps) / _HUNDRED


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def require_quantity(value: Any, field: str = "quantity") -> int:
    """Quantities are plain ints in [1, MAX_QUANTITY]."""
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        else:
            raise ValidationError(f"{field} must be an integer")
    if value < 1:
        raise ValidationError(f"{field} must be at least 1")
    if value > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return value


def loyalty_points_for(cents: int) -> int:
    """floor(amount / 10) in currency units; non-positive amounts earn nothing."""
    if cents <= 0:
        return 0
    return cents // CENTS_PER_LOYALTY_POINT
