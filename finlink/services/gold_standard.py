"""
Gold-standard sample loader for evaluation.

Reads cached evaluation datasets from JSON files, one per task:
- finni_eval.json: samples with an ``entities`` list (extraction)
- fincl_eval.json: samples with a ``mappings`` list (linking)
"""
import json
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog

from finlink.exceptions import EvaluationInputMismatchError, GoldStandardUnavailableError
from finlink.finlink_engine.models import TaskType

logger = structlog.get_logger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data" / "eval"

DATASET_FILES = {
    TaskType.EXTRACTION: "finni_eval.json",
    TaskType.LINKING: "fincl_eval.json",
}

ITEM_KEYS = {
    TaskType.EXTRACTION: "entities",
    TaskType.LINKING: "mappings",
}


class GoldStandardLoader:
    """
    Loads and samples gold-standard datasets.

    Datasets are read once per task and kept in memory.
    """

    def __init__(self, data_dir: Optional[Path] = None, rng: Optional[random.Random] = None):
        """
        Initialize loader.

        Args:
            data_dir: Directory holding the dataset JSON files.
            rng: Random source for sampling; seed it for repeatable runs.
        """
        self.data_dir = Path(data_dir or DEFAULT_DATA_DIR)
        self._rng = rng or random.Random()
        self._cache: Dict[TaskType, List[Dict[str, Any]]] = {}

    def load(self, task_type: Union[TaskType, str]) -> List[Dict[str, Any]]:
        """
        Load every sample for a task.

        Raises:
            EvaluationInputMismatchError: Unknown task type.
            GoldStandardUnavailableError: Missing, unreadable or empty dataset.
        """
        task = self._task(task_type)
        if task in self._cache:
            return self._cache[task]

        path = self.data_dir / DATASET_FILES[task]
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Gold standard unavailable", path=str(path), error=str(e))
            raise GoldStandardUnavailableError(task.value, str(path)) from e

        key = ITEM_KEYS[task]
        samples = [
            s for s in (data if isinstance(data, list) else [])
            if isinstance(s, dict) and isinstance(s.get(key), list)
        ]
        if not samples:
            raise GoldStandardUnavailableError(task.value, str(path))

        logger.info("Gold standard loaded", task_type=task.value, samples=len(samples))
        self._cache[task] = samples
        return samples

    def get_sample(self, task_type: Union[TaskType, str]) -> Dict[str, Any]:
        """Get a random sample for a task."""
        return self._rng.choice(self.load(task_type))

    def get_gold_items(self, task_type: Union[TaskType, str]) -> List[Dict[str, Any]]:
        """Get the gold entity list of a random sample."""
        task = self._task(task_type)
        return list(self.get_sample(task)[ITEM_KEYS[task]])

    @staticmethod
    def _task(task_type: Union[TaskType, str]) -> TaskType:
        task = TaskType.parse(task_type)
        if task is None:
            raise EvaluationInputMismatchError(task_type)
        return task
