"""
Orchestrator for the FinLink Engine.

Main entry point that sequences one pipeline run per document:
Stage 1: Extraction (oracle with retries, rule-based fallback)
Stage 2: Linking (batched oracle mapping, keyword-rule fallback)
Stage 3: Evaluation against a gold sample (optional)

The orchestrator is the only writer of document status. A document moves
uploaded -> processing -> completed | failed; ``processing`` doubles as an
advisory lock so a second run for the same document is rejected.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import structlog

from finlink.config import Settings, get_settings
from finlink.exceptions import (
    DocumentBusyError,
    EvaluationInputMismatchError,
    InvalidStatusTransitionError,
)
from finlink.finlink_engine.evaluation import EvaluationEngine, get_evaluation_engine
from finlink.finlink_engine.extraction import EntityExtractionEngine, ExtractionOptions
from finlink.finlink_engine.linking import ConceptLinkingEngine
from finlink.finlink_engine.models import (
    DocumentStatus,
    Entity,
    EvaluationMetrics,
    PipelineResult,
    ProcessingRecord,
    TaskType,
)
from finlink.services.gold_standard import GoldStandardLoader
from finlink.services.oracles import OracleConfig, build_oracle_chain
from finlink.services.stores import DocumentStore, ResultStore, TaxonomySource
from finlink.services.taxonomy_service import TaxonomyService
from finlink.utils.logging import bind_run_id, get_run_id, reset_run_id

logger = structlog.get_logger(__name__)


@dataclass
class PipelineOptions:
    """Configuration options for one pipeline run."""
    # Extraction
    use_local_only: bool = False
    extraction_retries: Optional[int] = None
    # Score each stage against a gold sample
    evaluate: bool = False


class PipelineOrchestrator:
    """
    Sequences extraction, linking and optional evaluation for a document.

    Stores and engines are injected; the orchestrator holds no global state
    beyond the set of runs in flight in this process.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        result_store: ResultStore,
        taxonomy_source: TaxonomySource,
        extraction_engine: EntityExtractionEngine,
        linking_engine: ConceptLinkingEngine,
        evaluation_engine: Optional[EvaluationEngine] = None,
        gold_standard_loader: Optional[GoldStandardLoader] = None,
        model_name: str = "Gemini 2.5 Flash",
    ):
        self.document_store = document_store
        self.result_store = result_store
        self.taxonomy_source = taxonomy_source
        self.extraction_engine = extraction_engine
        self.linking_engine = linking_engine
        self.evaluation_engine = evaluation_engine or get_evaluation_engine()
        self.gold_standard_loader = gold_standard_loader
        self.model_name = model_name
        self._in_flight: Set[str] = set()

    async def process_document(
        self,
        document_id: str,
        options: Optional[PipelineOptions] = None,
    ) -> PipelineResult:
        """
        Run extraction and linking for a document.

        Args:
            document_id: Id in the document store.
            options: Pipeline options.

        Returns:
            PipelineResult with both stage records.

        Raises:
            DocumentNotFoundError: Unknown document.
            DocumentBusyError: A run for this document is in flight.
            InvalidStatusTransitionError: Document is not ``uploaded``.
        """
        options = options or PipelineOptions()

        if document_id in self._in_flight:
            raise DocumentBusyError(document_id)

        status = self.document_store.get_status(document_id)
        if status is DocumentStatus.PROCESSING:
            raise DocumentBusyError(document_id)
        if status is not DocumentStatus.UPLOADED:
            raise InvalidStatusTransitionError(
                document_id, status.value, DocumentStatus.PROCESSING.value
            )

        self._in_flight.add(document_id)
        token = bind_run_id()
        current_run = get_run_id()
        try:
            logger.info("Starting pipeline run", document_id=document_id, options=options.__dict__)
            self.document_store.update_status(document_id, DocumentStatus.PROCESSING)

            try:
                result = await self._run(document_id, options, current_run)
            except Exception as e:
                logger.error(
                    "Pipeline run failed",
                    document_id=document_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.document_store.update_status(
                    document_id, DocumentStatus.FAILED, error_message=str(e) or type(e).__name__
                )
                raise

            self.document_store.update_status(document_id, DocumentStatus.COMPLETED)
            result.status = DocumentStatus.COMPLETED
            logger.info(
                "Pipeline run complete",
                document_id=document_id,
                entities=len(result.entities),
                extraction_ms=result.extraction.processing_time_ms,
                linking_ms=result.linking.processing_time_ms,
            )
            return result
        finally:
            reset_run_id(token)
            self._in_flight.discard(document_id)

    def resubmit(self, document_id: str) -> None:
        """Move a failed document back to ``uploaded``."""
        status = self.document_store.get_status(document_id)
        if status is not DocumentStatus.FAILED:
            raise InvalidStatusTransitionError(
                document_id, status.value, DocumentStatus.UPLOADED.value
            )
        self.document_store.update_status(document_id, DocumentStatus.UPLOADED)
        logger.info("Document resubmitted", document_id=document_id)

    def evaluate(
        self,
        document_id: str,
        task_type: Union[TaskType, str],
        predictions: Iterable[Union[Entity, Dict[str, Any]]],
        gold_standard: Optional[List[Dict[str, Any]]] = None,
    ) -> ProcessingRecord:
        """
        Evaluate a stored prediction set and persist the scored record.

        Fetches a gold sample when none is given.
        """
        task = TaskType.parse(task_type)
        if task is None:
            raise EvaluationInputMismatchError(task_type)

        start = time.perf_counter()
        entities = [p if isinstance(p, Entity) else Entity.from_dict(p) for p in predictions]
        if gold_standard is None:
            gold_standard = self._gold_loader().get_gold_items(task)

        metrics = self.evaluation_engine.evaluate(task, entities, gold_standard)
        record = ProcessingRecord(
            document_id=document_id,
            model_name=self.model_name,
            task_type=task,
            predictions=tuple(entities),
            metrics=metrics,
            processing_time_ms=_elapsed_ms(start),
        )
        return self.result_store.save_result(record)

    async def _run(self, document_id: str, options: PipelineOptions, current_run: str) -> PipelineResult:
        # =================================================================
        # Stage 1: EXTRACTION
        # =================================================================
        start = time.perf_counter()
        text = self.document_store.get_document_text(document_id)
        extraction = await self.extraction_engine.extract(
            text,
            ExtractionOptions(
                use_local_only=options.use_local_only,
                retries=options.extraction_retries,
            ),
        )
        extraction_metrics = (
            self._score(TaskType.EXTRACTION, extraction.entities)
            if options.evaluate
            else EvaluationMetrics()
        )
        extraction_record = self.result_store.save_result(ProcessingRecord(
            document_id=document_id,
            model_name=self.model_name,
            task_type=TaskType.EXTRACTION,
            predictions=tuple(extraction.entities),
            metrics=extraction_metrics,
            processing_time_ms=_elapsed_ms(start),
        ))
        logger.info(
            "Extraction stage complete",
            entities=len(extraction.entities),
            source=extraction.source.value,
            attempts=extraction.attempts,
        )

        # =================================================================
        # Stage 2: LINKING
        # =================================================================
        start = time.perf_counter()
        linking = await self.linking_engine.link_with_stats(
            extraction.entities,
            self.taxonomy_source.list_concepts(),
        )
        linked = linking.entities
        if options.evaluate:
            linking_metrics = self._score(TaskType.LINKING, linked)
        else:
            mapped = sum(1 for e in linked if e.xbrl_tag is not None)
            linking_metrics = EvaluationMetrics.uniform(mapped / len(linked) if linked else 0.0)

        linking_record = self.result_store.save_result(ProcessingRecord(
            document_id=document_id,
            model_name=self.model_name,
            task_type=TaskType.LINKING,
            predictions=tuple(linked),
            metrics=linking_metrics,
            processing_time_ms=_elapsed_ms(start),
        ))
        logger.info("Linking stage complete", **linking.stats.to_dict())

        return PipelineResult(
            document_id=document_id,
            status=DocumentStatus.PROCESSING,
            extraction=extraction_record,
            linking=linking_record,
            run_id=current_run,
        )

    def _score(self, task: TaskType, entities: List[Entity]) -> EvaluationMetrics:
        gold = self._gold_loader().get_gold_items(task)
        return self.evaluation_engine.evaluate(task, entities, gold)

    def _gold_loader(self) -> GoldStandardLoader:
        if self.gold_standard_loader is None:
            self.gold_standard_loader = GoldStandardLoader()
        return self.gold_standard_loader


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def build_orchestrator(
    settings: Optional[Settings] = None,
    document_store: Optional[DocumentStore] = None,
    result_store: Optional[ResultStore] = None,
    taxonomy_source: Optional[TaxonomySource] = None,
) -> PipelineOrchestrator:
    """
    Wire an orchestrator from settings.

    Args:
        settings: Application settings (defaults to environment settings).
        document_store: Document store; required.
        result_store: Result store; required.
        taxonomy_source: Concept dictionary (defaults to the configured YAML).
    """
    if document_store is None or result_store is None:
        raise ValueError("build_orchestrator needs a document store and a result store")

    settings = settings or get_settings()
    oracle = build_oracle_chain(settings) if settings.oracle_enabled else None

    extraction_engine = EntityExtractionEngine(
        oracle=oracle,
        oracle_enabled=settings.oracle_enabled,
        max_prompt_chars=settings.extraction_max_prompt_chars,
        retries=settings.extraction_retries,
        backoff_ms=settings.extraction_backoff_ms,
        timeout_seconds=settings.oracle_timeout_seconds,
        oracle_config=OracleConfig(
            temperature=settings.oracle_temperature,
            max_output_tokens=settings.extraction_max_output_tokens,
        ),
    )
    linking_engine = ConceptLinkingEngine(
        oracle=oracle,
        oracle_enabled=settings.oracle_enabled,
        batch_size=settings.linking_batch_size,
        max_retries=settings.linking_max_retries,
        backoff_base_ms=settings.linking_backoff_base_ms,
        min_coverage=settings.linking_min_coverage,
        catalogue_limit=settings.linking_catalogue_limit,
        concurrency=settings.linking_concurrency,
        timeout_seconds=settings.oracle_timeout_seconds,
        oracle_config=OracleConfig(
            temperature=settings.oracle_temperature,
            max_output_tokens=settings.linking_max_output_tokens,
        ),
    )

    logger.info(
        "Orchestrator built",
        oracle_enabled=settings.oracle_enabled,
        providers=oracle.providers if oracle else [],
    )

    return PipelineOrchestrator(
        document_store=document_store,
        result_store=result_store,
        taxonomy_source=taxonomy_source or TaxonomyService(settings.taxonomy_path),
        extraction_engine=extraction_engine,
        linking_engine=linking_engine,
        evaluation_engine=get_evaluation_engine(),
        gold_standard_loader=GoldStandardLoader(settings.gold_standard_dir),
        model_name=settings.model_name,
    )
