"""
Decimal helpers shared by the comparison passes.

Every monetary boundary rounds with ROUND_HALF_UP so repeated passes
never drift.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONEY_TOLERANCE = Decimal("0.01")
PERCENT_PLACES = 2
SCORE_PLACES = 4


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings and Decimals to Decimal without going through float repr."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def money_quantum(places: int) -> Decimal:
    """Quantum for the given number of decimal places (2 -> 0.01)."""
    return Decimal(1).scaleb(-places)


def quantize(value: Decimal, places: int) -> Decimal:
    """Round half-up to a fixed number of places."""
    return value.quantize(money_quantum(places), rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal, places: int = 2) -> Decimal:
    """Round a monetary amount half-up."""
    return quantize(value, places)


def percent_change(original: Decimal, revised: Decimal) -> Optional[Decimal]:
    """
    Percent change relative to the original value.

    Returns None when the original is zero.
    """
    if original == ZERO:
        return None
    return quantize((revised - original) / abs(original) * HUNDRED, PERCENT_PLACES)


def round_score(value: float) -> float:
    """Round a similarity score half-up to four places."""
    return float(quantize(to_decimal(value), SCORE_PLACES))
