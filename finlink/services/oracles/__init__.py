"""Oracle providers package."""
from typing import List, Optional

import structlog

from finlink.config import Settings
from finlink.services.oracles.base import Oracle, OracleChain, OracleConfig, generate_with_timeout

logger = structlog.get_logger(__name__)

__all__ = ["Oracle", "OracleChain", "OracleConfig", "build_oracle_chain", "generate_with_timeout"]


def build_oracle_chain(settings: Settings) -> Optional[OracleChain]:
    """
    Build the provider chain from configured credentials.

    Order: Gemini, OpenAI, then a local Ollama server when enabled.

    Returns:
        OracleChain, or None when no provider is configured.
    """
    if not settings.has_oracle_credentials:
        logger.warning("No oracle provider configured, rule-based paths only")
        return None

    oracles: List[Oracle] = []

    if settings.gemini_api_key:
        from finlink.services.oracles.gemini import GeminiOracle
        oracles.append(GeminiOracle(settings.gemini_api_key, settings.gemini_model))

    if settings.openai_api_key:
        from finlink.services.oracles.openai_based import OpenAIOracle
        oracles.append(OpenAIOracle(settings.openai_api_key, settings.openai_model))

    if settings.ollama_enabled:
        from finlink.services.oracles.ollama import OllamaOracle
        oracles.append(OllamaOracle(
            settings.ollama_base_url,
            settings.ollama_model,
            timeout=settings.oracle_timeout_seconds,
        ))

    chain = OracleChain(oracles)
    logger.info("Oracle chain built", providers=chain.providers)
    return chain
