"""
Local Ollama oracle.
"""
from typing import Optional

import httpx
import structlog

from finlink.exceptions import OracleTransportError
from finlink.services.oracles.base import Oracle, OracleConfig

logger = structlog.get_logger(__name__)


class OllamaOracle(Oracle):
    """Oracle backed by a local Ollama server."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2:3b",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def generate(self, prompt: str, config: OracleConfig) -> str:
        if config.system_prompt:
            prompt = f"{config.system_prompt}\n\n{prompt}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/api/generate",
                    json={
                        "model": self._model,
                        "prompt": prompt,
                        "stream": False,
                        "format": "json",
                        "options": {
                            "temperature": config.temperature,
                            "top_k": config.top_k,
                            "top_p": config.top_p,
                            "num_predict": config.max_output_tokens,
                        },
                    },
                )
                response.raise_for_status()
                result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise OracleTransportError(f"Ollama error: {e}", provider=self.name) from e

        if not isinstance(result, dict) or not isinstance(result.get("response", ""), str):
            raise OracleTransportError("Ollama returned an unexpected response body", provider=self.name)
        return result.get("response", "")
