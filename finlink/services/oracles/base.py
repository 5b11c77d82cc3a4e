"""
Oracle strategy interface.

An oracle takes a prompt and returns raw text that is expected to hold a
single JSON object, possibly wrapped in code fences. Oracles never retry;
retry and backoff belong to the calling engine.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from finlink.exceptions import (
    OracleError,
    OracleTimeoutError,
    OracleTransportError,
    OracleUnavailableError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OracleConfig:
    """Generation parameters passed to every provider."""

    temperature: float = 0.1
    max_output_tokens: int = 8192
    top_k: int = 40
    top_p: float = 0.95
    system_prompt: Optional[str] = None


class Oracle(ABC):
    """A hosted text-reasoning service."""

    name: str = "oracle"

    @abstractmethod
    async def generate(self, prompt: str, config: OracleConfig) -> str:
        """
        Generate a completion for a prompt.

        Args:
            prompt: Full prompt text.
            config: Generation parameters.

        Returns:
            Raw completion text.

        Raises:
            OracleError: On any provider failure.
        """


class OracleChain(Oracle):
    """
    Ordered list of providers tried in sequence.

    The first provider that returns text wins. New providers are added by
    implementing Oracle, not by branching on provider names.
    """

    name = "chain"

    def __init__(self, oracles: Sequence[Oracle]):
        self._oracles: List[Oracle] = list(oracles)

    @property
    def providers(self) -> List[str]:
        return [oracle.name for oracle in self._oracles]

    async def generate(self, prompt: str, config: OracleConfig) -> str:
        if not self._oracles:
            raise OracleUnavailableError()

        last_error: Optional[OracleError] = None
        for oracle in self._oracles:
            try:
                return await oracle.generate(prompt, config)
            except OracleError as e:
                last_error = e
                logger.warning(
                    "Oracle provider failed, trying next",
                    provider=oracle.name,
                    error=e.message,
                )

        raise OracleTransportError(
            f"All oracle providers failed: {last_error.message}",
            provider=self._oracles[-1].name,
        ) from last_error


async def generate_with_timeout(
    oracle: Oracle,
    prompt: str,
    config: OracleConfig,
    timeout_seconds: Optional[float],
) -> str:
    """
    Call an oracle bounded by a timeout.

    Raises:
        OracleTimeoutError: If the call does not finish in time.
    """
    if not timeout_seconds:
        return await oracle.generate(prompt, config)
    try:
        return await asyncio.wait_for(oracle.generate(prompt, config), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise OracleTimeoutError(timeout_seconds, provider=oracle.name) from e
