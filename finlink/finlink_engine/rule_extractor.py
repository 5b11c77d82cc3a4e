"""
Rule-based numeric entity extractor.

Deterministic regex scan used when the oracle is disabled or has failed.
Three passes run in a fixed order (monetary, percentage, plain number) and
the candidates are deduplicated by (value, type), so a literal classified as
monetary or percentage is never reported again as a generic count.
"""

import re
from typing import Iterable, List, Optional, Set, Tuple

import structlog

from finlink.finlink_engine.models import Entity, EntityLocation, EntityType

logger = structlog.get_logger(__name__)

# Number with US thousands separators, or a bare number. The grouped form is
# tried first so "1,234.56" is never cut at the first comma.
_NUMBER = r"([0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]+)?|[0-9]+(?:\.[0-9]+)?)"

PAGE_BREAK = "\f"


def dedupe_entities(entities: Iterable[Entity]) -> List[Entity]:
    """
    Drop repeated (value, type) pairs, keeping the first occurrence.

    Idempotent: applying it to its own output returns an equal list.
    """
    seen: Set[Tuple[str, str]] = set()
    unique: List[Entity] = []
    for entity in entities:
        key = (entity.value, entity.type)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entity)
    return unique


class RuleBasedExtractor:
    """
    Regex and keyword heuristics for numeric facts in free text.

    Monetary and percentage matches carry confidence 0.8; plain numbers
    carry 0.6 and are typed from a window of surrounding text.
    """

    MONETARY_PATTERN = re.compile(
        r"(?:\bUSD\b|\bEUR\b|\bGBP\b|[$€£])\s?" + _NUMBER,
        re.IGNORECASE,
    )
    PERCENTAGE_PATTERN = re.compile(r"\b" + _NUMBER + r"\s?%")
    NUMBER_PATTERN = re.compile(r"\b" + _NUMBER + r"\b")
    CURRENCY_PATTERN = re.compile(r"USD|EUR|GBP|[$€£]", re.IGNORECASE)

    SHARES_CONTEXT = re.compile(r"\b(?:share|issued|outstanding)", re.IGNORECASE)
    DATE_CONTEXT = re.compile(r"\b(?:year|fy|q[1-4]|quarter|as of)", re.IGNORECASE)

    CONTEXT_WINDOW = 40
    MATCH_CONFIDENCE = 0.8
    PLAIN_CONFIDENCE = 0.6

    def extract(self, text: Optional[str]) -> List[Entity]:
        """
        Extract numeric entities from text.

        Args:
            text: Document text; pages separated by form feeds.

        Returns:
            Deduplicated entities in pass order.
        """
        if not text:
            return []

        claimed: List[Tuple[int, int]] = []
        candidates: List[Entity] = []

        for match in self.MONETARY_PATTERN.finditer(text):
            raw = match.group(0)
            currency = self.CURRENCY_PATTERN.search(raw).group(0)
            unit = currency if currency in "$€£" else currency.upper()
            candidates.append(Entity(
                value=match.group(1).replace(",", ""),
                type=EntityType.MONETARY.value,
                description=f"Found monetary value: {raw}",
                unit=unit,
                confidence=self.MATCH_CONFIDENCE,
                location=self._location(text, match.start()),
            ))
            claimed.append(match.span())

        for match in self.PERCENTAGE_PATTERN.finditer(text):
            raw = match.group(0)
            candidates.append(Entity(
                value=match.group(1).replace(",", ""),
                type=EntityType.PERCENTAGE.value,
                description=f"Found percentage: {raw}",
                unit="%",
                confidence=self.MATCH_CONFIDENCE,
                location=self._location(text, match.start()),
            ))
            claimed.append(match.span())

        for match in self.NUMBER_PATTERN.finditer(text):
            if self._overlaps(match.span(), claimed):
                continue

            start = max(0, match.start() - self.CONTEXT_WINDOW)
            end = min(len(text), match.end() + self.CONTEXT_WINDOW)
            context = text[start:end]

            if self.SHARES_CONTEXT.search(context):
                entity_type, unit = EntityType.SHARES.value, "shares"
            elif self.DATE_CONTEXT.search(context):
                entity_type, unit = EntityType.DATE.value, "unknown"
            else:
                entity_type, unit = EntityType.COUNT.value, "unknown"

            candidates.append(Entity(
                value=match.group(1).replace(",", ""),
                type=entity_type,
                description=f"Context: {' '.join(context.split())}",
                unit=unit,
                confidence=self.PLAIN_CONFIDENCE,
                location=self._location(text, match.start()),
            ))

        entities = dedupe_entities(candidates)
        logger.debug(
            "Rule-based extraction complete",
            candidates=len(candidates),
            entities=len(entities),
        )
        return entities

    @staticmethod
    def _overlaps(span: Tuple[int, int], claimed: List[Tuple[int, int]]) -> bool:
        start, end = span
        return any(start < c_end and c_start < end for c_start, c_end in claimed)

    @staticmethod
    def _location(text: str, offset: int) -> EntityLocation:
        return EntityLocation(page_num=text.count(PAGE_BREAK, 0, offset) + 1)


# Singleton instance
_extractor_instance: Optional[RuleBasedExtractor] = None


def get_rule_extractor() -> RuleBasedExtractor:
    """Get singleton RuleBasedExtractor instance."""
    global _extractor_instance
    if _extractor_instance is None:
        _extractor_instance = RuleBasedExtractor()
    return _extractor_instance
