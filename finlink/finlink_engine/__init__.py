"""
FinLink Engine - Financial numeric entity extraction and US-GAAP concept linking.

Turns unstructured financial text into typed numeric entities, links them to
taxonomy concepts, and scores the output against gold-standard samples.

Key Principles:
1. Oracle-first, rules-always - every oracle path degrades to deterministic rules
2. Never fail the caller on oracle errors - retry, then fall back
3. Output order always follows input order
4. Provenance on every entity - confidence and mapping explanation

The pipeline entry point lives in ``finlink.finlink_engine.orchestrator``.
"""

from finlink.finlink_engine.models import (
    DocumentStatus,
    Entity,
    EntityType,
    EvaluationMetrics,
    ProcessingRecord,
    TaskType,
    XbrlTag,
)
from finlink.finlink_engine.evaluation import EvaluationEngine
from finlink.finlink_engine.extraction import EntityExtractionEngine, ExtractionOptions
from finlink.finlink_engine.linking import ConceptLinkingEngine, LinkingResult, LinkingStats
from finlink.finlink_engine.rule_extractor import RuleBasedExtractor, dedupe_entities

__version__ = "1.0.0"
__all__ = [
    "ConceptLinkingEngine",
    "DocumentStatus",
    "Entity",
    "EntityExtractionEngine",
    "EntityType",
    "EvaluationEngine",
    "EvaluationMetrics",
    "ExtractionOptions",
    "LinkingResult",
    "LinkingStats",
    "ProcessingRecord",
    "RuleBasedExtractor",
    "TaskType",
    "XbrlTag",
    "dedupe_entities",
]
