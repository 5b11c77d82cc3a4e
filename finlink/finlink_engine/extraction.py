"""
Entity extraction engine.

Asks the oracle for a JSON list of numeric entities, validates and
normalizes the answer, and retries with linear backoff. Whenever the oracle
is disabled, unconfigured or keeps failing, the rule-based extractor runs
over the full document text instead. Oracle failures never reach the caller.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from finlink.exceptions import ExtractionOracleError, OracleError, OracleUnavailableError
from finlink.finlink_engine.models import (
    Entity,
    EntityLocation,
    EntityType,
    ExtractionResult,
    ExtractionSource,
)
from finlink.finlink_engine.response_validation import parse_oracle_json
from finlink.finlink_engine.rule_extractor import RuleBasedExtractor, get_rule_extractor
from finlink.services.numeric_parser import NumericParser, get_numeric_parser
from finlink.services.oracles.base import Oracle, OracleConfig, generate_with_timeout
from finlink.utils.logging import log_performance

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

EXTRACTION_PROMPT = """You are a financial statement parsing expert. Your task is to extract numeric values from financial statements with high precision.

Follow these strict rules:
1. Return ONLY a JSON object with an "entities" array
2. Each entity MUST have all required fields
3. Remove commas from numeric values
4. Skip unclear or partial numbers
5. Use high confidence (0.9+) for clear items
6. Use lower confidence (0.6-0.8) for derived or unclear items

Allowed types: {types}

Typical financial statement items to identify:
- Revenue and income figures (monetary)
- Expense items (monetary)
- Balance sheet amounts (monetary)
- Financial ratios (ratio)
- Fiscal periods and dates (date)
- Share counts or values (shares)
- Percentages like growth rates (percentage)

Return this exact JSON structure with no other text:
{{
    "entities": [
        {{
            "value": "string, no commas",
            "type": "monetary",
            "description": "Revenue for fiscal year",
            "unit": "USD",
            "period": "FY 2021",
            "confidence": 0.95
        }}
    ]
}}

Financial statement text to analyze:
{text}
"""


@dataclass
class ExtractionOptions:
    """Per-call extraction options."""
    use_local_only: bool = False
    retries: Optional[int] = None  # overrides the engine default


class EntityExtractionEngine:
    """
    Oracle-first entity extractor with a deterministic fallback.

    Flow:
    1. Rule path when local-only is requested or no oracle is usable
    2. Prompt with the document text, truncated to ``max_prompt_chars``
    3. Validate the response (fences, completeness, JSON, entities array)
    4. Retry up to ``retries`` times, waiting ``backoff_ms * attempt``
    5. Rule path over the untruncated text once attempts are exhausted
    """

    def __init__(
        self,
        oracle: Optional[Oracle] = None,
        oracle_enabled: bool = True,
        max_prompt_chars: int = 30000,
        retries: int = 2,
        backoff_ms: int = 1000,
        timeout_seconds: Optional[float] = 120.0,
        oracle_config: Optional[OracleConfig] = None,
        rule_extractor: Optional[RuleBasedExtractor] = None,
        numeric_parser: Optional[NumericParser] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.oracle = oracle
        self.oracle_enabled = oracle_enabled
        self.max_prompt_chars = max_prompt_chars
        self.retries = retries
        self.backoff_ms = backoff_ms
        self.timeout_seconds = timeout_seconds
        self.oracle_config = oracle_config or OracleConfig(max_output_tokens=8192)
        self.rule_extractor = rule_extractor or get_rule_extractor()
        self.parser = numeric_parser or get_numeric_parser()
        self._sleep = sleep

    @log_performance("entity_extraction")
    async def extract(
        self,
        text: Optional[str],
        options: Optional[ExtractionOptions] = None,
    ) -> ExtractionResult:
        """
        Extract numeric entities from document text.

        Args:
            text: Full document text.
            options: Per-call options.

        Returns:
            ExtractionResult; never raises for oracle failures.
        """
        options = options or ExtractionOptions()
        text = text or ""

        if options.use_local_only or not self.oracle_enabled or self.oracle is None:
            logger.info(
                "Using rule-based extractor",
                local_only=options.use_local_only,
                oracle_enabled=self.oracle_enabled,
                oracle_configured=self.oracle is not None,
            )
            return self._rule_result(text, attempts=0)

        retries = self.retries if options.retries is None else max(0, options.retries)
        prompt = self.build_prompt(text)
        attempts = 0

        for attempt in range(1, retries + 2):
            attempts = attempt
            try:
                entities = await self._attempt(prompt)
            except OracleUnavailableError as e:
                logger.warning("Oracle unavailable, skipping retries", error=e.message)
                break
            except OracleError as e:
                logger.warning(
                    "Extraction attempt failed",
                    attempt=attempt,
                    max_attempts=retries + 1,
                    error_code=e.error_code,
                    error=e.message,
                )
                if attempt <= retries:
                    await self._sleep(self.backoff_ms * attempt / 1000)
                continue

            logger.info("Oracle extraction succeeded", entities=len(entities), attempt=attempt)
            return ExtractionResult(entities=entities, source=ExtractionSource.ORACLE, attempts=attempt)

        logger.warning("Falling back to rule-based extraction", attempts=attempts)
        return self._rule_result(text, attempts=attempts)

    def build_prompt(self, text: str) -> str:
        """Build the extraction prompt, truncating long documents."""
        if len(text) > self.max_prompt_chars:
            logger.info(
                "Truncating document for extraction prompt",
                length=len(text),
                limit=self.max_prompt_chars,
            )
            text = text[: self.max_prompt_chars] + "..."
        return EXTRACTION_PROMPT.format(types=", ".join(EntityType.values()), text=text)

    async def _attempt(self, prompt: str) -> List[Entity]:
        """One oracle call plus validation."""
        raw = await generate_with_timeout(self.oracle, prompt, self.oracle_config, self.timeout_seconds)
        payload = parse_oracle_json(raw, "entities", ExtractionOracleError)
        raw_entities = payload["entities"]
        entities = self.normalize_entities(raw_entities)

        if raw_entities and not entities:
            raise ExtractionOracleError(
                "No usable entities in oracle response",
                details={"received": len(raw_entities)},
            )
        return entities

    def normalize_entities(self, raw_entities: List[Any]) -> List[Entity]:
        """
        Normalize oracle entities to the entity contract.

        Entities whose value is not a finite number or whose type is not a
        known entity type are dropped.
        """
        entities: List[Entity] = []
        valid_types = set(EntityType.values())

        for index, item in enumerate(raw_entities):
            if not isinstance(item, dict):
                logger.warning("Dropping non-object entity", index=index)
                continue

            raw_value = item.get("value")
            value = None if raw_value is None else self.parser.normalize(str(raw_value))
            entity_type = str(item.get("type") or "").strip().lower()
            if value is None or entity_type not in valid_types:
                logger.warning(
                    "Dropping invalid entity",
                    index=index,
                    value=item.get("value"),
                    type=item.get("type"),
                )
                continue

            entities.append(Entity(
                value=value,
                type=entity_type,
                description=self._description(item, entity_type, value),
                unit=str(item.get("unit") or "unknown"),
                period=self._period(item.get("period")),
                confidence=self._confidence(item.get("confidence")),
                location=EntityLocation.from_dict(item.get("location")),
            ))

        return entities

    def _rule_result(self, text: str, attempts: int) -> ExtractionResult:
        entities = self.rule_extractor.extract(text)
        logger.info("Rule-based extraction complete", entities=len(entities))
        return ExtractionResult(entities=entities, source=ExtractionSource.RULE_BASED, attempts=attempts)

    @staticmethod
    def _description(item: Dict[str, Any], entity_type: str, value: str) -> str:
        description = str(item.get("description") or "").strip()
        return description or f"Extracted {entity_type} value: {value}"

    @staticmethod
    def _period(raw: Any) -> Optional[str]:
        if raw is None or isinstance(raw, (dict, list)):
            return None
        return str(raw).strip() or None

    @staticmethod
    def _confidence(raw: Any) -> float:
        # zero and missing both mean "not stated"
        try:
            confidence = float(raw) if raw else 0.9
        except (TypeError, ValueError):
            confidence = 0.9
        return min(1.0, max(0.0, confidence))
