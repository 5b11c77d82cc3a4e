"""
Tests for the pipeline orchestrator.

Covers the document status lifecycle, stage records, failure handling,
optional evaluation and wiring from settings.
"""
import asyncio
import random

import pytest

from finlink.config import Settings
from finlink.exceptions import (
    DocumentBusyError,
    DocumentNotFoundError,
    EvaluationInputMismatchError,
    InvalidStatusTransitionError,
    TextExtractionError,
)
from finlink.finlink_engine.evaluation import get_evaluation_engine
from finlink.finlink_engine.extraction import EntityExtractionEngine
from finlink.finlink_engine.linking import ConceptLinkingEngine
from finlink.finlink_engine.models import DocumentStatus, ExtractionSource, MappingSource, TaskType
from finlink.finlink_engine.orchestrator import (
    PipelineOptions,
    PipelineOrchestrator,
    build_orchestrator,
)
from finlink.services.gold_standard import GoldStandardLoader
from finlink.utils.logging import get_run_id
from tests.fakes import FakeOracle, batch_size_of, entities_response, mappings_response

TEXT = "Revenue was $1,234.56 and grew 12.5% to 1,000,000 shares outstanding"

EXTRACTION_RESPONSE = entities_response(
    {"value": "1234.56", "type": "monetary", "description": "Total revenue", "unit": "$"},
    {"value": "12.5", "type": "percentage", "description": "Revenue growth", "unit": "%"},
)


def routing_oracle(prompt: str) -> str:
    """Answer extraction and linking prompts from one fake."""
    if "Task: Map" in prompt:
        return mappings_response(batch_size_of(prompt))
    return EXTRACTION_RESPONSE


@pytest.fixture
def oracle():
    return FakeOracle(routing_oracle)


@pytest.fixture
def orchestrator(document_store, result_store, taxonomy_service, oracle, sleep):
    return PipelineOrchestrator(
        document_store=document_store,
        result_store=result_store,
        taxonomy_source=taxonomy_service,
        extraction_engine=EntityExtractionEngine(oracle=oracle, sleep=sleep),
        linking_engine=ConceptLinkingEngine(oracle=oracle, sleep=sleep),
        gold_standard_loader=GoldStandardLoader(rng=random.Random(0)),
    )


class TestProcessDocument:
    """Happy path."""

    @pytest.mark.asyncio
    async def test_completes_and_persists_both_stages(self, orchestrator, document_store, result_store):
        document_id = document_store.add_document(text=TEXT)

        result = await orchestrator.process_document(document_id)

        assert result.status is DocumentStatus.COMPLETED
        assert document_store.get_status(document_id) is DocumentStatus.COMPLETED
        assert [e.value for e in result.entities] == ["1234.56", "12.5"]
        assert all(e.mapping_source is MappingSource.ORACLE for e in result.entities)

        records = result_store.get_results_for(document_id)
        assert [r.task_type for r in records] == [TaskType.EXTRACTION, TaskType.LINKING]
        assert records[0].id == result.extraction.id
        assert records[1].id == result.linking.id
        assert all(r.model_name == "Gemini 2.5 Flash" for r in records)
        assert all(r.processing_time_ms >= 0 for r in records)

    @pytest.mark.asyncio
    async def test_default_metrics(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)

        result = await orchestrator.process_document(document_id)

        assert result.extraction.metrics.f1_score == 0.0
        assert result.linking.metrics.precision == 1.0
        assert result.linking.metrics.accuracy == 1.0

    @pytest.mark.asyncio
    async def test_run_id_scoped_to_run(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)
        before = get_run_id()

        result = await orchestrator.process_document(document_id)

        assert result.run_id
        assert get_run_id() == before

    @pytest.mark.asyncio
    async def test_local_only(self, orchestrator, document_store, oracle):
        document_id = document_store.add_document(text=TEXT)

        result = await orchestrator.process_document(
            document_id, PipelineOptions(use_local_only=True)
        )

        assert [e.value for e in result.extraction.predictions] == ["1234.56", "12.5", "1000000"]
        assert all("Task: Map" in prompt for prompt in oracle.prompts)

    @pytest.mark.asyncio
    async def test_odd_oracle_location_still_completes(self, document_store, result_store, taxonomy, sleep):
        def respond(prompt):
            if "Task: Map" in prompt:
                return mappings_response(batch_size_of(prompt))
            return entities_response(
                {"value": "100", "type": "monetary", "description": "Revenue", "location": "page 3"}
            )

        oracle = FakeOracle(respond)
        orchestrator = PipelineOrchestrator(
            document_store=document_store,
            result_store=result_store,
            taxonomy_source=taxonomy_source_of(taxonomy),
            extraction_engine=EntityExtractionEngine(oracle=oracle, sleep=sleep),
            linking_engine=ConceptLinkingEngine(oracle=oracle, sleep=sleep),
        )
        document_id = document_store.add_document(text=TEXT)

        result = await orchestrator.process_document(document_id)

        assert result.status is DocumentStatus.COMPLETED
        assert [e.location.page_num for e in result.entities] == [1]

    @pytest.mark.asyncio
    async def test_oracle_down_still_completes(self, document_store, result_store, taxonomy, sleep):
        failing = FakeOracle(["not json"])
        orchestrator = PipelineOrchestrator(
            document_store=document_store,
            result_store=result_store,
            taxonomy_source=taxonomy_source_of(taxonomy),
            extraction_engine=EntityExtractionEngine(oracle=failing, sleep=sleep),
            linking_engine=ConceptLinkingEngine(oracle=failing, sleep=sleep),
        )
        document_id = document_store.add_document(text=TEXT)

        result = await orchestrator.process_document(document_id)

        assert result.status is DocumentStatus.COMPLETED
        assert len(result.entities) == 3
        assert all(e.mapping_explanation for e in result.entities)

    @pytest.mark.asyncio
    async def test_with_evaluation(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)

        result = await orchestrator.process_document(document_id, PipelineOptions(evaluate=True))

        assert result.extraction.metrics.detailed_results
        assert result.linking.metrics.detailed_results


class TestStatusLifecycle:
    """Busy, invalid and resubmitted documents."""

    @pytest.mark.asyncio
    async def test_unknown_document(self, orchestrator):
        with pytest.raises(DocumentNotFoundError):
            await orchestrator.process_document("missing")

    @pytest.mark.asyncio
    async def test_processing_document_busy(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)
        document_store.update_status(document_id, DocumentStatus.PROCESSING)

        with pytest.raises(DocumentBusyError):
            await orchestrator.process_document(document_id)

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, document_store, result_store, taxonomy_service, sleep):
        release = asyncio.Event()

        class BlockingOracle(FakeOracle):
            async def generate(self, prompt, config):
                await release.wait()
                return routing_oracle(prompt)

        oracle = BlockingOracle([])
        orchestrator = PipelineOrchestrator(
            document_store=document_store,
            result_store=result_store,
            taxonomy_source=taxonomy_service,
            extraction_engine=EntityExtractionEngine(oracle=oracle, sleep=sleep),
            linking_engine=ConceptLinkingEngine(oracle=oracle, sleep=sleep),
        )
        document_id = document_store.add_document(text=TEXT)

        first = asyncio.create_task(orchestrator.process_document(document_id))
        await asyncio.sleep(0)
        with pytest.raises(DocumentBusyError):
            await orchestrator.process_document(document_id)
        release.set()
        result = await first

        assert result.status is DocumentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_document_rejected(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)
        await orchestrator.process_document(document_id)

        with pytest.raises(InvalidStatusTransitionError):
            await orchestrator.process_document(document_id)

    @pytest.mark.asyncio
    async def test_failure_marks_document(self, orchestrator, document_store, result_store, temp_dir):
        document_id = document_store.add_document(file_path=temp_dir / "gone.txt")

        with pytest.raises(TextExtractionError):
            await orchestrator.process_document(document_id)

        document = document_store.get_document(document_id)
        assert document.status is DocumentStatus.FAILED
        assert "file not found" in document.error_message
        assert result_store.get_results_for(document_id) == []

    @pytest.mark.asyncio
    async def test_resubmit_after_failure(self, orchestrator, document_store, temp_dir):
        path = temp_dir / "late.txt"
        document_id = document_store.add_document(file_path=path)
        with pytest.raises(TextExtractionError):
            await orchestrator.process_document(document_id)

        path.write_text(TEXT, encoding="utf-8")
        orchestrator.resubmit(document_id)
        result = await orchestrator.process_document(document_id)

        assert result.status is DocumentStatus.COMPLETED

    def test_resubmit_requires_failed(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)
        with pytest.raises(InvalidStatusTransitionError):
            orchestrator.resubmit(document_id)


class TestEvaluate:
    """Standalone evaluation requests."""

    def test_persists_scored_record(self, orchestrator, document_store, result_store):
        document_id = document_store.add_document(text=TEXT)

        record = orchestrator.evaluate(
            document_id,
            "Extraction",
            [{"value": "100", "type": "monetary"}],
            gold_standard=[{"value": "100.00", "type": "monetary"}],
        )

        assert record.id
        assert record.task_type is TaskType.EXTRACTION
        assert record.metrics.f1_score == 1.0
        assert result_store.get_results_for(document_id) == [record]

    def test_gold_sample_fetched(self, orchestrator, document_store):
        document_id = document_store.add_document(text=TEXT)

        record = orchestrator.evaluate(document_id, "FinCL", [])

        assert record.metrics.false_negatives > 0
        assert record.metrics.recall == 0.0

    def test_unknown_task(self, orchestrator):
        with pytest.raises(EvaluationInputMismatchError):
            orchestrator.evaluate("doc", "Translation", [])


class TestBuildOrchestrator:

    def test_requires_stores(self):
        with pytest.raises(ValueError):
            build_orchestrator(Settings(_env_file=None))

    @pytest.mark.asyncio
    async def test_rule_only_wiring(self, document_store, result_store):
        settings = Settings(
            _env_file=None,
            oracle_enabled=False,
            linking_batch_size=5,
            model_name="rules",
        )

        orchestrator = build_orchestrator(settings, document_store, result_store)
        document_id = document_store.add_document(text=TEXT)
        result = await orchestrator.process_document(document_id)

        assert orchestrator.linking_engine.batch_size == 5
        assert orchestrator.evaluation_engine is get_evaluation_engine()
        assert result.extraction.model_name == "rules"
        assert all(e.mapping_source != MappingSource.ORACLE for e in result.entities)
        assert len(result.entities) == 3


def taxonomy_source_of(concepts):
    """Minimal TaxonomySource over a fixed list."""

    class _Source:
        def list_concepts(self):
            return list(concepts)

    return _Source()
