"""
Numeric parser service for entity values.

Normalizes the numeric strings carried by entities:
- Thousands separators: 1,234,567.89 -> 1234567.89
- Currency prefixes: $1,234.56, EUR 1234
- Negative notation: (123), -123
- Percent suffix: 12.5%

Entity values must be comma-free strings that parse as finite decimals.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ParsedNumber:
    """Result of parsing a numeric string."""

    value: Optional[Decimal]
    raw_value: str
    is_negative: bool = False
    currency: Optional[str] = None
    is_percentage: bool = False

    @property
    def is_valid(self) -> bool:
        return self.value is not None and self.value.is_finite()


class NumericParser:
    """
    Parser for numeric entity values.

    Accepts the formats the extraction paths produce and the oracle tends to
    return: plain numbers, US thousands separators, leading currency
    symbols or ISO codes, accounting parentheses and a trailing percent sign.
    """

    CURRENCY_PATTERN = re.compile(r"^(?:[\$€£¥]|USD|EUR|GBP)\s*", re.IGNORECASE)
    PARENTHESES_PATTERN = re.compile(r"^\(([^)]+)\)$")
    PERCENTAGE_PATTERN = re.compile(r"\s*%$")
    NUMBER_PATTERN = re.compile(r"^\d+(?:\.\d+)?$|^\.\d+$")

    def parse(self, value_str: Optional[str]) -> ParsedNumber:
        """
        Parse a string value into a Decimal.

        Args:
            value_str: The string to parse.

        Returns:
            ParsedNumber; value is None when the string is not numeric.
        """
        raw = "" if value_str is None else str(value_str)
        text = raw.strip()
        if not text:
            return ParsedNumber(value=None, raw_value=raw)

        is_negative = False
        paren_match = self.PARENTHESES_PATTERN.match(text)
        if paren_match:
            text = paren_match.group(1).strip()
            is_negative = True

        if text.startswith("-"):
            is_negative = not is_negative
            text = text[1:].strip()
        elif text.startswith("+"):
            text = text[1:].strip()

        currency = None
        currency_match = self.CURRENCY_PATTERN.match(text)
        if currency_match:
            currency = currency_match.group(0).strip()
            text = text[currency_match.end():]

        is_percentage = bool(self.PERCENTAGE_PATTERN.search(text))
        if is_percentage:
            text = self.PERCENTAGE_PATTERN.sub("", text)

        cleaned = text.replace(",", "").replace(" ", "")
        if not self.NUMBER_PATTERN.match(cleaned):
            return ParsedNumber(value=None, raw_value=raw, currency=currency)

        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            logger.warning("Failed to parse number", value=raw)
            return ParsedNumber(value=None, raw_value=raw, currency=currency)

        return ParsedNumber(
            value=-value if is_negative else value,
            raw_value=raw,
            is_negative=is_negative,
            currency=currency,
            is_percentage=is_percentage,
        )

    def to_decimal(self, value_str: Optional[str]) -> Optional[Decimal]:
        """Parse and return only the Decimal (None if not numeric)."""
        parsed = self.parse(value_str)
        return parsed.value if parsed.is_valid else None

    def normalize(self, value_str: Optional[str]) -> Optional[str]:
        """
        Normalize a value to the entity wire format.

        A value that already parses once commas are removed keeps its literal
        digits ("1,000.50" -> "1000.50"); anything else that parses is
        rendered from the Decimal.

        Returns:
            Comma-free numeric string, or None when the value is not numeric.
        """
        if value_str is None:
            return None
        stripped = str(value_str).replace(",", "").strip()
        try:
            if stripped and Decimal(stripped).is_finite():
                return stripped
        except InvalidOperation:
            pass

        parsed = self.parse(str(value_str))
        if not parsed.is_valid:
            return None
        return format(parsed.value, "f")


# Singleton instance
_parser_instance: Optional[NumericParser] = None


def get_numeric_parser() -> NumericParser:
    """Get singleton NumericParser instance."""
    global _parser_instance
    if _parser_instance is None:
        _parser_instance = NumericParser()
    return _parser_instance
