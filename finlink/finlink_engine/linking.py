"""
Concept linking engine.

Assigns a US-GAAP concept to every extracted entity:
1. Partition entities into fixed-size batches
2. Ask the oracle for a mapping per batch, concurrently, with exponential
   backoff between attempts
3. Re-index batch-local ids to global entity indices
4. Fill entities the oracle left unmapped from FALLBACK_RULES
5. Skip the oracle entirely and apply BASIC_RULES when no oracle is usable

Output is always one entity per input entity, in input order.
"""

import asyncio
import json
import os
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from finlink.exceptions import (
    IncompleteMappingError,
    MalformedOracleResponseError,
    OracleError,
    OracleUnavailableError,
)
from finlink.finlink_engine.concept_rules import (
    BASIC_FALLBACK_EXPLANATION,
    BASIC_RULES,
    FALLBACK_EXPLANATION,
    FALLBACK_RULES,
    NO_MAPPING_EXPLANATION,
    ConceptRule,
    match_rule,
)
from finlink.finlink_engine.models import Entity, MappingSource, TaxonomyConcept, XbrlTag
from finlink.finlink_engine.response_validation import meets_coverage, parse_oracle_json
from finlink.services.oracles.base import Oracle, OracleConfig, generate_with_timeout
from finlink.utils.logging import log_performance

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
Mapping = Tuple[XbrlTag, str]

DEFAULT_ORACLE_EXPLANATION = "Mapped by oracle"

LINKING_PROMPT = """You are an expert in XBRL and US-GAAP taxonomy mapping. Map financial facts to US-GAAP concepts.

Task: Map {count} financial entities to US-GAAP concepts.

Entities:
{entities}

US-GAAP Concepts Available:
{concepts}

CRITICAL: Provide mapping for ALL {count} entities (id 0 to {last_id}). Keep explanations SHORT (max 10 words).

Response format (JSON only):
{{
    "mappings": [
        {{"entityId": 0, "xbrlTag": {{"concept": "us-gaap:Revenue", "taxonomy": "us-gaap", "confidence": 0.95}}, "explanation": "Service revenue"}}
    ]
}}
"""


@dataclass
class LinkingStats:
    """Counters for one link() call."""
    total: int = 0
    oracle: int = 0
    rule_based: int = 0
    unmapped: int = 0
    batches: int = 0
    failed_batches: int = 0
    basic_fallback: bool = False

    @property
    def mapped(self) -> int:
        return self.oracle + self.rule_based

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mapped"] = self.mapped
        return data


@dataclass
class LinkingResult:
    """Linked entities with the counters of the call that produced them."""
    entities: List[Entity]
    stats: LinkingStats


class ConceptLinkingEngine:
    """
    Batched oracle concept linker with keyword-rule fallbacks.

    Batches run concurrently, bounded by a semaphore; retry delays go through
    the injected ``sleep`` so a waiting batch never blocks the others.
    """

    def __init__(
        self,
        oracle: Optional[Oracle] = None,
        oracle_enabled: bool = True,
        batch_size: int = 40,
        max_retries: int = 3,
        backoff_base_ms: int = 1000,
        min_coverage: float = 0.7,
        catalogue_limit: int = 50,
        concurrency: Optional[int] = None,
        timeout_seconds: Optional[float] = 120.0,
        oracle_config: Optional[OracleConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.oracle = oracle
        self.oracle_enabled = oracle_enabled
        self.batch_size = batch_size
        self.max_retries = max(1, max_retries)
        self.backoff_base_ms = backoff_base_ms
        self.min_coverage = min_coverage
        self.catalogue_limit = catalogue_limit
        self.concurrency = concurrency or os.cpu_count() or 1
        self.timeout_seconds = timeout_seconds
        self.oracle_config = oracle_config or OracleConfig(max_output_tokens=16384)
        self._sleep = sleep

    async def link(
        self,
        entities: Iterable[Entity],
        taxonomy: Sequence[TaxonomyConcept],
    ) -> List[Entity]:
        """
        Link entities to taxonomy concepts.

        Args:
            entities: Extracted entities; never mutated.
            taxonomy: Concept dictionary.

        Returns:
            New entities, one per input, each with a mapping explanation.
        """
        result = await self.link_with_stats(entities, taxonomy)
        return result.entities

    @log_performance("concept_linking")
    async def link_with_stats(
        self,
        entities: Iterable[Entity],
        taxonomy: Sequence[TaxonomyConcept],
    ) -> LinkingResult:
        """Link entities and return the counters for this call alongside them."""
        entities = list(entities)
        taxonomy = list(taxonomy)
        stats = LinkingStats(total=len(entities))

        if not entities:
            return LinkingResult(entities=[], stats=stats)

        if not self.oracle_enabled or self.oracle is None:
            logger.info("No oracle for linking, applying basic rules", entities=len(entities))
            return self._apply_basic_rules(entities, stats)

        try:
            mappings = await self._map_batches(entities, taxonomy, stats)
        except OracleError as e:
            logger.warning(
                "Oracle linking failed, applying basic rules",
                error_code=e.error_code,
                error=e.message,
            )
            return self._apply_basic_rules(entities, stats)

        linked = self._merge(entities, mappings, stats)
        logger.info("Concept linking complete", **stats.to_dict())
        return LinkingResult(entities=linked, stats=stats)

    def build_prompt(self, batch: Sequence[Entity], catalogue: Sequence[TaxonomyConcept]) -> str:
        """Build the mapping prompt for one batch."""
        batch_entities = [
            {"id": i, "value": e.value, "desc": e.description, "type": e.type}
            for i, e in enumerate(batch)
        ]
        concepts = [{"name": c.name, "id": c.id, "type": c.type} for c in catalogue]
        return LINKING_PROMPT.format(
            count=len(batch),
            last_id=len(batch) - 1,
            entities=json.dumps(batch_entities, indent=2),
            concepts=json.dumps(concepts, indent=2),
        )

    def parse_mappings(
        self,
        raw: str,
        batch_len: int,
        taxonomy: Sequence[TaxonomyConcept] = (),
    ) -> Dict[int, Mapping]:
        """
        Parse and validate a batch response.

        Entries are kept when ``entityId`` is an in-batch index and
        ``xbrlTag.concept`` is a non-empty string. The first entry for an
        index wins.

        Returns:
            Batch-local index -> (tag, explanation).
        """
        payload = parse_oracle_json(raw, "mappings", MalformedOracleResponseError)
        lookup = self._concept_lookup(taxonomy)
        accepted: Dict[int, Mapping] = {}

        for item in payload["mappings"]:
            if not isinstance(item, dict):
                continue

            local_id = self._entity_id(item.get("entityId"))
            if local_id is None or not 0 <= local_id < batch_len or local_id in accepted:
                continue

            tag_data = item.get("xbrlTag")
            if not isinstance(tag_data, dict):
                continue
            concept = tag_data.get("concept")
            if not isinstance(concept, str) or not concept.strip():
                continue

            concept = concept.strip()
            tag = XbrlTag(
                concept=lookup.get(concept.lower(), concept),
                taxonomy=str(tag_data.get("taxonomy") or "us-gaap"),
                confidence=self._confidence(tag_data.get("confidence")),
            )
            explanation = str(item.get("explanation") or "").strip() or DEFAULT_ORACLE_EXPLANATION
            accepted[local_id] = (tag, explanation)

        return accepted

    async def _map_batches(
        self,
        entities: List[Entity],
        taxonomy: List[TaxonomyConcept],
        stats: LinkingStats,
    ) -> Dict[int, Mapping]:
        """Run every batch and merge the re-indexed mappings."""
        semaphore = asyncio.Semaphore(self.concurrency)
        catalogue = taxonomy[: self.catalogue_limit]
        starts = list(range(0, len(entities), self.batch_size))
        stats.batches = len(starts)

        async def run(start: int) -> Dict[int, Mapping]:
            async with semaphore:
                batch = entities[start:start + self.batch_size]
                return await self._link_batch(batch, start, catalogue, taxonomy, stats)

        results = await asyncio.gather(*(run(start) for start in starts), return_exceptions=True)

        merged: Dict[int, Mapping] = {}
        for result in results:
            if isinstance(result, BaseException):
                raise result
            for global_id, mapping in result.items():
                merged.setdefault(global_id, mapping)
        return merged

    async def _link_batch(
        self,
        batch: List[Entity],
        batch_start: int,
        catalogue: Sequence[TaxonomyConcept],
        taxonomy: Sequence[TaxonomyConcept],
        stats: LinkingStats,
    ) -> Dict[int, Mapping]:
        """Map one batch; an exhausted batch contributes no mappings."""
        batch_number = batch_start // self.batch_size + 1
        prompt = self.build_prompt(batch, catalogue)

        for attempt in range(1, self.max_retries + 1):
            try:
                raw = await generate_with_timeout(
                    self.oracle, prompt, self.oracle_config, self.timeout_seconds
                )
                local = self.parse_mappings(raw, len(batch), taxonomy)
                if not meets_coverage(len(local), len(batch), self.min_coverage):
                    raise IncompleteMappingError(len(local), int(len(batch) * self.min_coverage))
            except OracleUnavailableError:
                raise
            except OracleError as e:
                logger.warning(
                    "Linking batch attempt failed",
                    batch=batch_number,
                    attempt=attempt,
                    max_attempts=self.max_retries,
                    error_code=e.error_code,
                    error=e.message,
                )
                if attempt < self.max_retries:
                    await self._sleep((2 ** attempt) * self.backoff_base_ms / 1000)
                continue

            logger.debug("Linking batch mapped", batch=batch_number, mappings=len(local))
            return {batch_start + local_id: mapping for local_id, mapping in local.items()}

        logger.warning("All retries exhausted for batch", batch=batch_number, size=len(batch))
        stats.failed_batches += 1
        return {}

    def _merge(
        self,
        entities: List[Entity],
        mappings: Dict[int, Mapping],
        stats: LinkingStats,
    ) -> List[Entity]:
        linked: List[Entity] = []
        for index, entity in enumerate(entities):
            mapping = mappings.get(index)
            if mapping is not None:
                tag, explanation = mapping
                stats.oracle += 1
                linked.append(entity.with_tag(tag, explanation, MappingSource.ORACLE))
            else:
                linked.append(self._apply_rules(entity, FALLBACK_RULES, FALLBACK_EXPLANATION, stats))
        return linked

    def _apply_basic_rules(self, entities: List[Entity], stats: LinkingStats) -> LinkingResult:
        stats.basic_fallback = True
        linked = [
            self._apply_rules(entity, BASIC_RULES, BASIC_FALLBACK_EXPLANATION, stats)
            for entity in entities
        ]
        logger.info("Basic rule mapping complete", **stats.to_dict())
        return LinkingResult(entities=linked, stats=stats)

    def _apply_rules(
        self,
        entity: Entity,
        rules: Sequence[ConceptRule],
        explanation: str,
        stats: LinkingStats,
    ) -> Entity:
        rule = match_rule(entity.description or entity.value, rules)
        if rule is None:
            stats.unmapped += 1
            return entity.with_tag(None, NO_MAPPING_EXPLANATION, MappingSource.UNMAPPED)

        stats.rule_based += 1
        tag = XbrlTag(concept=rule.concept, taxonomy=rule.taxonomy, confidence=rule.confidence)
        return entity.with_tag(tag, explanation, MappingSource.RULE_BASED)

    @staticmethod
    def _concept_lookup(taxonomy: Sequence[TaxonomyConcept]) -> Dict[str, str]:
        lookup: Dict[str, str] = {}
        for concept in taxonomy:
            lookup[concept.id.lower()] = concept.id
            lookup.setdefault(concept.name.lower(), concept.id)
        return lookup

    @staticmethod
    def _entity_id(raw: Any) -> Optional[int]:
        if isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str) and raw.strip().isdecimal():
            return int(raw.strip())
        return None

    @staticmethod
    def _confidence(raw: Any) -> float:
        try:
            confidence = float(raw) if raw is not None else 0.9
        except (TypeError, ValueError):
            confidence = 0.9
        return min(1.0, max(0.0, confidence))
