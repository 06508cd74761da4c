"""Utilities package."""
from estimate_audit.utils.decimal_math import (
    ZERO,
    MONEY_TOLERANCE,
    money_quantum,
    percent_change,
    quantize,
    quantize_money,
    round_score,
    to_decimal,
)

__all__ = [
    "ZERO",
    "MONEY_TOLERANCE",
    "money_quantum",
    "percent_change",
    "quantize",
    "quantize_money",
    "round_score",
    "to_decimal",
]
