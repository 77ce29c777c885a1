"""
Money - Decimal amounts with a single rounding rule.

All monetary values are decimal.Decimal. Effective amounts are rounded
ROUND_HALF_UP to 2 decimal places exactly once, when they are computed.
An effective amount of None means "unknown" (legacy rows written before
multipliers existed) and is never treated as zero.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from leasebid.core.errors import ValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")


def to_decimal(value: Any, name: str = "amount") -> Decimal:
    """
    Convert an input value to Decimal.
    
    Floats go through str() so 33.33 stays 33.33 rather than its binary
    expansion.
    
    Raises:
        ValidationError: on non-numeric, NaN or infinite input
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"{name} is not a valid number: {value!r}")
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValidationError(f"{name} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round half-up to 2 decimal places."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def apply_multiplier(raw: Any, multiplier: Any) -> Decimal:
    """
    Compute an effective amount: round(raw * multiplier, 2).
    
    A multiplier of exactly 1 returns the raw amount unchanged so a value
    that is already rounded is never re-rounded.
    """
    raw_d = to_decimal(raw, "raw amount")
    mult_d = to_decimal(multiplier, "multiplier")
    if mult_d < ONE:
        raise ValidationError(f"multiplier must be >= 1.0, got {mult_d}")
    if mult_d == ONE:
        return raw_d
    return round_money(raw_d * mult_d)


def format_money(value: Optional[Decimal]) -> str:
    """Human-readable amount; None renders as 'unknown'."""
    if value is None:
        return "unknown"
    return f"${value:.2f}"


__all__ = [
    "CENTS",
    "ZERO",
    "ONE",
    "to_decimal",
    "round_money",
    "apply_multiplier",
    "format_money",
]
