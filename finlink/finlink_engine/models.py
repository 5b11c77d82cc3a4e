"""
Data structures for the FinLink Engine.

Implements the shared entity contract between the engines:
- Entity records with location and optional XBRL tag
- Taxonomy concepts
- Evaluation metrics with per-item match details
- Immutable processing records persisted per pipeline stage
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EntityType(str, Enum):
    """Standardized numeric entity types."""
    MONETARY = "monetary"
    PERCENTAGE = "percentage"
    RATIO = "ratio"
    SHARES = "shares"
    DATE = "date"
    COUNT = "count"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


class TaskType(str, Enum):
    """Pipeline stage a processing record belongs to."""
    EXTRACTION = "Extraction"
    LINKING = "Linking"

    @classmethod
    def parse(cls, value: Any) -> Optional["TaskType"]:
        """Parse a task type name, accepting the FinNI/FinCL aliases."""
        if isinstance(value, TaskType):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        aliases = {
            "extraction": cls.EXTRACTION,
            "finni": cls.EXTRACTION,
            "linking": cls.LINKING,
            "fincl": cls.LINKING,
        }
        return aliases.get(key)


class DocumentStatus(str, Enum):
    """Document processing lifecycle."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MappingSource(str, Enum):
    """Where an entity's concept mapping came from."""
    ORACLE = "oracle"
    RULE_BASED = "rule_based"
    UNMAPPED = "unmapped"


class ExtractionSource(str, Enum):
    """Which path produced an extraction result."""
    ORACLE = "oracle"
    RULE_BASED = "rule_based"


# =============================================================================
# Entities
# =============================================================================

@dataclass
class EntityLocation:
    """Where an entity was found. Coordinates are reserved."""
    page_num: int = 1
    coordinates: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"pageNum": self.page_num, "coordinates": self.coordinates}

    @classmethod
    def from_dict(cls, data: Any) -> "EntityLocation":
        """Build a location; anything unreadable falls back to page 1."""
        if not isinstance(data, dict):
            return cls()

        try:
            page_num = int(data.get("pageNum", data.get("page_num", 1)) or 1)
        except (TypeError, ValueError):
            page_num = 1

        coordinates = data.get("coordinates")
        return cls(
            page_num=max(1, page_num),
            coordinates=coordinates if isinstance(coordinates, dict) else None,
        )


@dataclass
class XbrlTag:
    """A taxonomy concept assigned to an entity."""
    concept: str
    taxonomy: str = "us-gaap"
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "concept": self.concept,
            "taxonomy": self.taxonomy,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["XbrlTag"]:
        if not data or not data.get("concept"):
            return None
        return cls(
            concept=str(data["concept"]),
            taxonomy=str(data.get("taxonomy") or "us-gaap"),
            confidence=float(data.get("confidence", 0.0) or 0.0),
        )


@dataclass
class Entity:
    """A single extracted numeric fact."""
    value: str
    type: str
    description: str
    unit: str = "unknown"
    period: Optional[str] = None
    confidence: float = 0.9
    location: EntityLocation = field(default_factory=EntityLocation)
    # Set by concept linking
    xbrl_tag: Optional[XbrlTag] = None
    mapping_explanation: Optional[str] = None
    mapping_source: Optional[MappingSource] = None

    def with_tag(
        self,
        tag: Optional[XbrlTag],
        explanation: str,
        source: MappingSource,
    ) -> "Entity":
        """Return a copy carrying a concept mapping."""
        return replace(
            self,
            xbrl_tag=tag,
            mapping_explanation=explanation,
            mapping_source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "value": self.value,
            "type": self.type,
            "description": self.description,
            "unit": self.unit,
            "period": self.period,
            "confidence": self.confidence,
            "location": self.location.to_dict(),
        }
        if self.mapping_explanation is not None or self.xbrl_tag is not None:
            data["xbrlTag"] = self.xbrl_tag.to_dict() if self.xbrl_tag else None
            data["mappingExplanation"] = self.mapping_explanation
        if self.mapping_source is not None:
            data["mappingSource"] = self.mapping_source.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        source = data.get("mappingSource")
        confidence = data.get("confidence")
        return cls(
            value=str(data.get("value", "")),
            type=str(data.get("type") or data.get("entityType") or "").lower(),
            description=str(data.get("description") or ""),
            unit=str(data.get("unit") or "unknown"),
            period=data.get("period"),
            confidence=float(confidence) if confidence is not None else 0.9,
            location=EntityLocation.from_dict(data.get("location")),
            xbrl_tag=XbrlTag.from_dict(data.get("xbrlTag")),
            mapping_explanation=data.get("mappingExplanation"),
            mapping_source=MappingSource(source) if source else None,
        )


# =============================================================================
# Taxonomy
# =============================================================================

@dataclass(frozen=True)
class TaxonomyConcept:
    """A standardized accounting concept an entity can be linked to."""
    name: str
    id: str
    definition: str = ""
    type: str = "monetary"  # monetary, perShare, shares, ...
    period: str = "duration"  # instant, duration


# =============================================================================
# Evaluation
# =============================================================================

@dataclass
class MatchDetail:
    """Classification of one gold item or one unmatched prediction."""
    status: str  # correct, missed, false_positive
    predicted: Optional[Dict[str, Any]] = None
    actual: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "predicted": self.predicted, "actual": self.actual}


@dataclass
class EvaluationMetrics:
    """Precision/recall/F1/accuracy for one evaluation call."""
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    accuracy: float = 0.0
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    detailed_results: List[MatchDetail] = field(default_factory=list)

    @classmethod
    def uniform(cls, score: float) -> "EvaluationMetrics":
        """Metrics carrying the same score in every field."""
        return cls(precision=score, recall=score, f1_score=score, accuracy=score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "precision": self.precision,
            "recall": self.recall,
            "f1Score": self.f1_score,
            "accuracy": self.accuracy,
            "truePositives": self.true_positives,
            "falsePositives": self.false_positives,
            "falseNegatives": self.false_negatives,
            "detailedResults": [d.to_dict() for d in self.detailed_results],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EvaluationMetrics":
        if not data:
            return cls()
        return cls(
            precision=float(data.get("precision", 0.0)),
            recall=float(data.get("recall", 0.0)),
            f1_score=float(data.get("f1Score", 0.0)),
            accuracy=float(data.get("accuracy", 0.0)),
            true_positives=int(data.get("truePositives", 0)),
            false_positives=int(data.get("falsePositives", 0)),
            false_negatives=int(data.get("falseNegatives", 0)),
            detailed_results=[
                MatchDetail(
                    status=d.get("status", ""),
                    predicted=d.get("predicted"),
                    actual=d.get("actual"),
                )
                for d in data.get("detailedResults", [])
            ],
        )


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class ProcessingRecord:
    """Result of one pipeline stage execution. Immutable once created."""
    document_id: str
    model_name: str
    task_type: TaskType
    predictions: Tuple[Entity, ...]
    metrics: EvaluationMetrics
    processing_time_ms: float
    id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def with_id(self, record_id: Optional[str] = None) -> "ProcessingRecord":
        """Return a copy with a store-assigned identifier."""
        return replace(self, id=record_id or str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "modelName": self.model_name,
            "taskType": self.task_type.value,
            "predictions": [e.to_dict() for e in self.predictions],
            "metrics": self.metrics.to_dict(),
            "processingTimeMs": self.processing_time_ms,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class ExtractionResult:
    """Output of the entity extraction engine."""
    entities: List[Entity]
    source: ExtractionSource
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"entities": [e.to_dict() for e in self.entities]}


@dataclass
class PipelineResult:
    """Final result of a pipeline run for one document."""
    document_id: str
    status: DocumentStatus
    extraction: ProcessingRecord
    linking: ProcessingRecord
    run_id: str = ""

    @property
    def entities(self) -> List[Entity]:
        return list(self.linking.predictions)
