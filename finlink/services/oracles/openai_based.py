"""
OpenAI chat-completions oracle.
"""
import structlog
from openai import AsyncOpenAI, OpenAIError

from finlink.exceptions import OracleTransportError
from finlink.services.oracles.base import Oracle, OracleConfig

logger = structlog.get_logger(__name__)


class OpenAIOracle(Oracle):
    """Oracle using OpenAI chat completions in JSON mode."""

    name = "openai"

    DEFAULT_SYSTEM_PROMPT = (
        "You are a financial data expert. Respond only with a single JSON object."
    )

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", client: AsyncOpenAI = None):
        """
        Initialize OpenAI oracle.

        Args:
            api_key: OpenAI API key.
            model: Chat model name.
            client: Optional preconfigured async client.
        """
        self._model = model
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._total_tokens = 0
        logger.info("OpenAI oracle initialized", model=model)

    async def generate(self, prompt: str, config: OracleConfig) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": config.system_prompt or self.DEFAULT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=config.max_output_tokens,
                temperature=config.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise OracleTransportError(f"OpenAI API error: {e}", provider=self.name) from e

        if completion.usage:
            self._total_tokens += completion.usage.total_tokens
            logger.debug(
                "OpenAI tokens used",
                tokens=completion.usage.total_tokens,
                total_tokens=self.total_tokens,
            )

        content = completion.choices[0].message.content if completion.choices else None
        if content is None:
            raise OracleTransportError("OpenAI returned no content", provider=self.name)
        return content

    @property
    def total_tokens(self) -> int:
        """Get total tokens used."""
        return self._total_tokens
