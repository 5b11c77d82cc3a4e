"""
Taxonomy service for loading and querying the US-GAAP concept dictionary.

Provides lookup by concept name and canonical id. The dictionary is read-only
once loaded and is shared across concurrent linking batches.
"""
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import yaml

from finlink.exceptions import TaxonomyLoadError
from finlink.finlink_engine.models import TaxonomyConcept

logger = structlog.get_logger(__name__)

DEFAULT_TAXONOMY_PATH = Path(__file__).parent.parent / "data" / "us_gaap_taxonomy.yaml"


class TaxonomyService:
    """
    Service for managing and querying the concept dictionary.

    Loads concepts from YAML and provides efficient lookup methods.
    """

    def __init__(self, taxonomy_path: Optional[Path] = None):
        """
        Initialize taxonomy service.

        Args:
            taxonomy_path: Path to taxonomy YAML file.
        """
        self._concepts: List[TaxonomyConcept] = []
        self._name_index: Dict[str, TaxonomyConcept] = {}
        self._id_index: Dict[str, TaxonomyConcept] = {}
        self.namespace = "us-gaap"

        self._load_taxonomy(Path(taxonomy_path or DEFAULT_TAXONOMY_PATH))

    def _load_taxonomy(self, path: Path) -> None:
        """
        Load concepts from a YAML file.

        Args:
            path: Path to taxonomy YAML file.
        """
        logger.info("Loading taxonomy", path=str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to load taxonomy", path=str(path), error=str(e))
            raise TaxonomyLoadError(str(path), str(e)) from e

        if not isinstance(data, dict) or not isinstance(data.get("concepts"), list):
            raise TaxonomyLoadError(str(path), "missing 'concepts' list")

        self.namespace = data.get("taxonomy", self.namespace)

        for item in data["concepts"]:
            if not isinstance(item, dict) or "name" not in item or "id" not in item:
                continue

            concept = TaxonomyConcept(
                name=item["name"],
                id=item["id"],
                definition=item.get("definition", ""),
                type=item.get("type", "monetary"),
                period=item.get("period", "duration"),
            )
            self._concepts.append(concept)
            self._name_index[concept.name.lower()] = concept
            self._id_index[concept.id.lower()] = concept

        logger.info("Taxonomy loaded", concepts=len(self._concepts))

    def list_concepts(self) -> List[TaxonomyConcept]:
        """Get all concepts in dictionary order."""
        return list(self._concepts)

    def get_by_name(self, name: str) -> Optional[TaxonomyConcept]:
        """Get concept by short name (case-insensitive)."""
        return self._name_index.get(name.strip().lower()) if name else None

    def get_by_id(self, concept_id: str) -> Optional[TaxonomyConcept]:
        """Get concept by canonical id (case-insensitive)."""
        return self._id_index.get(concept_id.strip().lower()) if concept_id else None

    def resolve_concept(self, concept: str) -> Optional[TaxonomyConcept]:
        """Resolve either a canonical id or a short name to a concept."""
        return self.get_by_id(concept) or self.get_by_name(concept)


# Singleton instance
_taxonomy_instance: Optional[TaxonomyService] = None


def get_taxonomy_service() -> TaxonomyService:
    """Get singleton TaxonomyService instance."""
    global _taxonomy_instance
    if _taxonomy_instance is None:
        _taxonomy_instance = TaxonomyService()
    return _taxonomy_instance
