"""
Money Utilities.

Decimal helpers shared by the reward, payout and commission calculators.
All amounts are settled in cents; percentages are expressed in points
(``Decimal("8")`` means 8%).
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional

__all__: list[str] = [
    "ZERO",
    "clamp_non_negative",
    "percent_of",
    "to_cents",
    "to_cents_floor",
]

ZERO: Decimal = Decimal("0")
_CENT: Decimal = Decimal("0.01")
_HUNDRED: Decimal = Decimal("100")


def to_cents(value: Decimal) -> Decimal:
    """Round *value* half-up to cents."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents_floor(value: Decimal) -> Decimal:
    """Truncate *value* to cents (toward zero)."""
    return value.quantize(_CENT, rounding=ROUND_DOWN)


def percent_of(value: Decimal, percent: Decimal) -> Decimal:
    """Return ``percent`` points of ``value`` without rounding."""
    return value * percent / _HUNDRED


def clamp_non_negative(value: Optional[Decimal]) -> Decimal:
    """Map ``None`` and negative amounts to zero."""
    if value is None or value < ZERO:
        return ZERO
    return value
