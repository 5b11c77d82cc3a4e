"""
Evaluation engine.

Scores a prediction set against a gold standard. Matching is one-to-one and
greedy in gold order: each prediction can satisfy at most one gold item.
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from finlink.exceptions import EvaluationInputMismatchError
from finlink.finlink_engine.models import Entity, EvaluationMetrics, MatchDetail, TaskType
from finlink.services.numeric_parser import NumericParser, get_numeric_parser

logger = structlog.get_logger(__name__)

Item = Union[Entity, Dict[str, Any]]

VALUE_TOLERANCE = Decimal("0.01")


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


class EvaluationEngine:
    """Precision, recall, F1 and accuracy for extraction or linking output."""

    def __init__(self, numeric_parser: Optional[NumericParser] = None):
        self.parser = numeric_parser or get_numeric_parser()

    def evaluate(
        self,
        task_type: Union[TaskType, str],
        predictions: Optional[Iterable[Item]],
        gold_standard: Optional[Iterable[Item]],
    ) -> EvaluationMetrics:
        """
        Evaluate predictions against a gold standard.

        Args:
            task_type: Extraction or Linking (FinNI / FinCL accepted).
            predictions: Predicted entities or entity dicts.
            gold_standard: Gold entities or entity dicts.

        Returns:
            EvaluationMetrics with per-item details.

        Raises:
            EvaluationInputMismatchError: If the task type is unknown.
        """
        task = TaskType.parse(task_type)
        if task is None:
            raise EvaluationInputMismatchError(task_type)

        preds = [self._as_dict(p) for p in predictions or []]
        gold = [self._as_dict(g) for g in gold_standard or []]
        is_match = self._extraction_match if task is TaskType.EXTRACTION else self._linking_match

        used = set()
        details: List[MatchDetail] = []
        true_positives = 0

        for gold_item in gold:
            match_index = next(
                (i for i, pred in enumerate(preds) if i not in used and is_match(pred, gold_item)),
                None,
            )
            if match_index is None:
                details.append(MatchDetail(status="missed", predicted=None, actual=gold_item))
                continue
            used.add(match_index)
            true_positives += 1
            details.append(MatchDetail(status="correct", predicted=preds[match_index], actual=gold_item))

        unmatched = [pred for i, pred in enumerate(preds) if i not in used]
        details.extend(MatchDetail(status="false_positive", predicted=p, actual=None) for p in unmatched)

        false_positives = len(unmatched)
        false_negatives = len(gold) - true_positives

        precision = _ratio(true_positives, true_positives + false_positives)
        recall = _ratio(true_positives, true_positives + false_negatives)
        f1_score = _ratio(2 * precision * recall, precision + recall)
        accuracy = _ratio(true_positives, len(gold))

        logger.info(
            "Evaluation complete",
            task_type=task.value,
            true_positives=true_positives,
            false_positives=false_positives,
            false_negatives=false_negatives,
            f1_score=round(f1_score, 4),
        )

        return EvaluationMetrics(
            precision=precision,
            recall=recall,
            f1_score=f1_score,
            accuracy=accuracy,
            true_positives=true_positives,
            false_positives=false_positives,
            false_negatives=false_negatives,
            detailed_results=details,
        )

    def _extraction_match(self, pred: Dict[str, Any], gold: Dict[str, Any]) -> bool:
        pred_type = str(pred.get("type") or pred.get("entityType") or "").lower()
        gold_type = str(gold.get("type") or gold.get("entityType") or "").lower()
        if pred_type != gold_type:
            return False

        pred_value = self.parser.to_decimal(self._text(pred.get("value")))
        gold_value = self.parser.to_decimal(self._text(gold.get("value")))
        if pred_value is None or gold_value is None:
            return False
        return abs(pred_value - gold_value) < VALUE_TOLERANCE

    @staticmethod
    def _linking_match(pred: Dict[str, Any], gold: Dict[str, Any]) -> bool:
        pred_concept = _concept_of(pred)
        return pred_concept is not None and pred_concept == _concept_of(gold)

    @staticmethod
    def _as_dict(item: Item) -> Dict[str, Any]:
        if isinstance(item, Entity):
            return item.to_dict()
        return dict(item)

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        return None if value is None else str(value)


def _concept_of(item: Dict[str, Any]) -> Optional[str]:
    tag = item.get("xbrlTag")
    concept = tag.get("concept") if isinstance(tag, dict) else item.get("concept")
    return concept if isinstance(concept, str) and concept else None


# Singleton instance
_evaluation_instance: Optional[EvaluationEngine] = None


def get_evaluation_engine() -> EvaluationEngine:
    """Get singleton EvaluationEngine instance."""
    global _evaluation_instance
    if _evaluation_instance is None:
        _evaluation_instance = EvaluationEngine()
    return _evaluation_instance
