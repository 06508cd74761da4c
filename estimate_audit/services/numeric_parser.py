"""
Numeric parser service for estimate line item values.

Handles parsing of numeric values as they come out of extracted estimates:
- Currency: $1,234.56, USD 99.00
- Negative: (123.00), -123
- Labor hour suffixes: 2.5 hrs, 1.0h
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ParsedNumber:
    """Result of parsing a numeric string."""

    value: Optional[Decimal]
    raw_value: str
    confidence: float
    is_negative: bool = False
    currency: Optional[str] = None
    is_hours: bool = False


class NumericParser:
    """
    Parser for estimate amounts, quantities and labor hours.

    Handles the number formats found on repair estimates:
    - Standard numbers: 1234, 1,234.56
    - Currency symbols: $, USD, CAD
    - Negative notation: parentheses (123) or minus sign -123
    - Hour suffixes: hr, hrs, hour, hours, h
    """

    CURRENCY_SYMBOLS = ("USD", "CAD", "$")

    PARENTHESES_PATTERN = re.compile(r"^\s*\(([^)]+)\)\s*$")
    HOURS_PATTERN = re.compile(r"\s*(?:hours?|hrs?|h)\.?\s*$", re.IGNORECASE)
    NUMBER_PATTERN = re.compile(r"^\d{1,3}(?:,\d{3})+(?:\.\d+)?$|^\d*\.?\d+$")

    def parse(self, value_str: str) -> ParsedNumber:
        """
        Parse a string value into a numeric result.

        Args:
            value_str: The string to parse.

        Returns:
            ParsedNumber with parsed value and metadata.
        """
        if not value_str or not value_str.strip():
            return ParsedNumber(value=None, raw_value=value_str or "", confidence=0.0)

        original = value_str
        value_str = value_str.strip()

        # Accounting negative
        is_negative = False
        paren_match = self.PARENTHESES_PATTERN.match(value_str)
        if paren_match:
            value_str = paren_match.group(1).strip()
            is_negative = True

        if value_str.startswith("-"):
            is_negative = True
            value_str = value_str[1:].strip()
        elif value_str.startswith("+"):
            value_str = value_str[1:].strip()

        currency = None
        for symbol in self.CURRENCY_SYMBOLS:
            if value_str.upper().startswith(symbol):
                currency = symbol
                value_str = value_str[len(symbol):].strip()
                break

        # Minus may follow the currency symbol: $-12.00
        if value_str.startswith("-"):
            is_negative = True
            value_str = value_str[1:].strip()

        is_hours = False
        if self.HOURS_PATTERN.search(value_str):
            is_hours = True
            value_str = self.HOURS_PATTERN.sub("", value_str).strip()

        parsed_value, confidence = self._parse_number(value_str)
        if parsed_value is not None and is_negative:
            parsed_value = -parsed_value

        return ParsedNumber(
            value=parsed_value,
            raw_value=original,
            confidence=confidence,
            is_negative=is_negative,
            currency=currency,
            is_hours=is_hours,
        )

    def _parse_number(self, value_str: str) -> Tuple[Optional[Decimal], float]:
        """
        Parse a cleaned numeric string into a Decimal.

        Args:
            value_str: Cleaned string containing only the number.

        Returns:
            Tuple of (parsed Decimal or None, confidence score).
        """
        value_str = value_str.replace(" ", "")
        if not value_str or not self.NUMBER_PATTERN.match(value_str):
            return None, 0.0

        try:
            if "," in value_str:
                return Decimal(value_str.replace(",", "")), 0.95
            return Decimal(value_str), 1.0
        except (InvalidOperation, ValueError) as e:
            logger.warning("Failed to parse number", value=value_str, error=str(e))
            return None, 0.0


# Singleton instance
_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance
