"""
Tests for the entity extraction engine.

Covers the oracle path, validation-driven retries with linear backoff,
timeouts, and the rule-based fallback.
"""
import asyncio

import pytest

from finlink.exceptions import OracleTransportError, OracleUnavailableError
from finlink.finlink_engine.extraction import EntityExtractionEngine, ExtractionOptions
from finlink.finlink_engine.models import ExtractionSource
from finlink.services.oracles.base import OracleConfig
from tests.fakes import FakeOracle, entities_response

TEXT = "Revenue was $1,234.56 and grew 12.5% to 1,000,000 shares outstanding"

GOOD_RESPONSE = entities_response(
    {"value": "1,234.56", "type": "Monetary", "description": "Revenue", "unit": "USD",
     "period": "FY 2023", "confidence": 0.95},
    {"value": "12.5", "type": "percentage", "description": "Revenue growth", "unit": "%"},
)


def make_engine(oracle, sleep, **kwargs) -> EntityExtractionEngine:
    return EntityExtractionEngine(oracle=oracle, sleep=sleep, **kwargs)


class TestOraclePath:
    """Successful oracle extraction."""

    @pytest.mark.asyncio
    async def test_normalizes_entities(self, sleep):
        engine = make_engine(FakeOracle([GOOD_RESPONSE]), sleep)

        result = await engine.extract(TEXT)

        assert result.source == ExtractionSource.ORACLE
        assert result.attempts == 1
        revenue, growth = result.entities
        assert revenue.value == "1234.56"
        assert revenue.type == "monetary"
        assert revenue.period == "FY 2023"
        assert revenue.confidence == 0.95
        assert growth.confidence == 0.9
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_code_fenced_response(self, sleep):
        engine = make_engine(FakeOracle([f"```json\n{GOOD_RESPONSE}\n```"]), sleep)
        result = await engine.extract(TEXT)
        assert result.source == ExtractionSource.ORACLE
        assert len(result.entities) == 2

    @pytest.mark.asyncio
    async def test_defaults_filled(self, sleep):
        response = entities_response({"value": "42", "type": "COUNT"})
        engine = make_engine(FakeOracle([response]), sleep)

        entity = (await engine.extract(TEXT)).entities[0]

        assert entity.type == "count"
        assert entity.unit == "unknown"
        assert entity.description
        assert entity.location.page_num == 1

    @pytest.mark.asyncio
    async def test_confidence_clamped(self, sleep):
        response = entities_response({"value": "1", "type": "count", "description": "x", "confidence": 7})
        engine = make_engine(FakeOracle([response]), sleep)
        assert (await engine.extract(TEXT)).entities[0].confidence == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("location", [
        "page 3",
        {"pageNum": "three"},
        {"pageNum": None, "coordinates": "top-left"},
        ["page", 3],
    ])
    async def test_unreadable_location_defaults_to_first_page(self, sleep, location):
        response = entities_response(
            {"value": "100", "type": "monetary", "description": "Revenue", "location": location}
        )
        engine = make_engine(FakeOracle([response]), sleep)

        result = await engine.extract(TEXT)

        assert result.source == ExtractionSource.ORACLE
        entity = result.entities[0]
        assert entity.value == "100"
        assert entity.location.page_num == 1
        assert entity.location.coordinates is None

    @pytest.mark.asyncio
    async def test_location_page_read(self, sleep):
        response = entities_response(
            {"value": "100", "type": "monetary", "description": "Revenue", "location": {"pageNum": "4"}}
        )
        engine = make_engine(FakeOracle([response]), sleep)
        assert (await engine.extract(TEXT)).entities[0].location.page_num == 4

    @pytest.mark.asyncio
    async def test_zero_value_kept(self, sleep):
        response = entities_response(
            {"value": 0, "type": "monetary", "description": "Impairment"},
            {"value": None, "type": "monetary", "description": "Missing"},
        )
        engine = make_engine(FakeOracle([response]), sleep)

        result = await engine.extract(TEXT)

        assert result.source == ExtractionSource.ORACLE
        assert [e.value for e in result.entities] == ["0"]

    @pytest.mark.asyncio
    async def test_structured_period_dropped(self, sleep):
        response = entities_response(
            {"value": "5", "type": "count", "description": "Stores", "period": {"year": 2023}},
            {"value": "6", "type": "count", "description": "Stores", "period": 2024},
        )
        engine = make_engine(FakeOracle([response]), sleep)

        first, second = (await engine.extract(TEXT)).entities

        assert first.period is None
        assert second.period == "2024"

    @pytest.mark.asyncio
    async def test_invalid_entities_dropped(self, sleep):
        response = entities_response(
            {"value": "abc", "type": "monetary", "description": "bad value"},
            {"value": "10", "type": "currency", "description": "bad type"},
            {"value": "10", "type": "ratio", "description": "good"},
        )
        engine = make_engine(FakeOracle([response]), sleep)

        result = await engine.extract(TEXT)

        assert [e.description for e in result.entities] == ["good"]

    @pytest.mark.asyncio
    async def test_empty_entity_list_is_valid(self, sleep):
        oracle = FakeOracle(['{"entities": []}'])
        engine = make_engine(oracle, sleep)

        result = await engine.extract(TEXT)

        assert result.source == ExtractionSource.ORACLE
        assert result.entities == []
        assert oracle.call_count == 1

    @pytest.mark.asyncio
    async def test_prompt_truncated(self, sleep):
        oracle = FakeOracle([GOOD_RESPONSE])
        engine = make_engine(oracle, sleep, max_prompt_chars=100)

        await engine.extract("A" * 500)

        assert "A" * 100 + "..." in oracle.prompts[0]
        assert "A" * 101 not in oracle.prompts[0]

    @pytest.mark.asyncio
    async def test_oracle_config_passed(self, sleep):
        oracle = FakeOracle([GOOD_RESPONSE])
        config = OracleConfig(temperature=0.3, max_output_tokens=1000)
        engine = make_engine(oracle, sleep, oracle_config=config)

        await engine.extract(TEXT)

        assert oracle.configs == [config]


class TestRetries:
    """Validation failures and transport errors are retried, then fall back."""

    @pytest.mark.asyncio
    async def test_missing_entities_key_retried_then_falls_back(self, sleep):
        """No 'entities' key, retries exhausted, rule result returned."""
        oracle = FakeOracle(['{"items": []}'])
        engine = make_engine(oracle, sleep, retries=2, backoff_ms=1000)

        result = await engine.extract(TEXT)

        assert oracle.call_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert result.source == ExtractionSource.RULE_BASED
        assert result.attempts == 3
        assert [(e.value, e.type) for e in result.entities] == [
            ("1234.56", "monetary"),
            ("12.5", "percentage"),
            ("1000000", "shares"),
        ]

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self, sleep):
        oracle = FakeOracle(['{"entities": [{"value": "1"', GOOD_RESPONSE])
        engine = make_engine(oracle, sleep)

        result = await engine.extract(TEXT)

        assert result.source == ExtractionSource.ORACLE
        assert result.attempts == 2
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, sleep):
        oracle = FakeOracle([OracleTransportError("boom"), GOOD_RESPONSE])
        engine = make_engine(oracle, sleep)

        result = await engine.extract(TEXT)

        assert result.source == ExtractionSource.ORACLE
        assert oracle.call_count == 2

    @pytest.mark.asyncio
    async def test_unusable_payload_counts_as_failure(self, sleep):
        response = entities_response({"value": "n/a", "type": "monetary"})
        oracle = FakeOracle([response])
        engine = make_engine(oracle, sleep, retries=1)

        result = await engine.extract(TEXT)

        assert oracle.call_count == 2
        assert result.source == ExtractionSource.RULE_BASED

    @pytest.mark.asyncio
    async def test_unavailable_skips_retries(self, sleep):
        oracle = FakeOracle([OracleUnavailableError()])
        engine = make_engine(oracle, sleep, retries=5)

        result = await engine.extract(TEXT)

        assert oracle.call_count == 1
        assert sleep.delays == []
        assert result.source == ExtractionSource.RULE_BASED

    @pytest.mark.asyncio
    async def test_per_call_retry_override(self, sleep):
        oracle = FakeOracle(["not json"])
        engine = make_engine(oracle, sleep, retries=2)

        await engine.extract(TEXT, ExtractionOptions(retries=0))

        assert oracle.call_count == 1

    @pytest.mark.asyncio
    async def test_fallback_uses_untruncated_text(self, sleep):
        text = "x" * 200 + " Revenue of $999"
        engine = make_engine(FakeOracle(["garbage"]), sleep, max_prompt_chars=50, retries=0)

        result = await engine.extract(text)

        assert [e.value for e in result.entities] == ["999"]

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self, sleep):
        class SlowOracle(FakeOracle):
            async def generate(self, prompt, config):
                self.prompts.append(prompt)
                await asyncio.sleep(1)
                return GOOD_RESPONSE

        oracle = SlowOracle([])
        engine = make_engine(oracle, sleep, retries=1, timeout_seconds=0.01)

        result = await engine.extract(TEXT)

        assert oracle.call_count == 2
        assert result.source == ExtractionSource.RULE_BASED


class TestLocalPath:
    """Rule path without touching the oracle."""

    @pytest.mark.asyncio
    async def test_use_local_only(self, sleep):
        oracle = FakeOracle([GOOD_RESPONSE])
        engine = make_engine(oracle, sleep)

        result = await engine.extract(TEXT, ExtractionOptions(use_local_only=True))

        assert oracle.call_count == 0
        assert result.source == ExtractionSource.RULE_BASED
        assert result.attempts == 0
        assert len(result.entities) == 3

    @pytest.mark.asyncio
    async def test_oracle_disabled(self, sleep):
        oracle = FakeOracle([GOOD_RESPONSE])
        engine = make_engine(oracle, sleep, oracle_enabled=False)

        result = await engine.extract(TEXT)

        assert oracle.call_count == 0
        assert result.source == ExtractionSource.RULE_BASED

    @pytest.mark.asyncio
    async def test_no_oracle_configured(self, sleep):
        engine = make_engine(None, sleep)
        result = await engine.extract(TEXT)
        assert result.source == ExtractionSource.RULE_BASED

    @pytest.mark.asyncio
    async def test_empty_text(self, sleep):
        engine = make_engine(None, sleep)
        result = await engine.extract("")
        assert result.entities == []
