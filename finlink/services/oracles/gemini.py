"""
Google Gemini oracle.
"""
import google.generativeai as genai
import structlog

from finlink.exceptions import OracleTransportError
from finlink.services.oracles.base import Oracle, OracleConfig

logger = structlog.get_logger(__name__)


class GeminiOracle(Oracle):
    """Oracle backed by the Gemini generative model API."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = "models/gemini-2.5-flash"):
        """
        Initialize Gemini oracle.

        Args:
            api_key: Google AI Studio API key.
            model: Gemini model name.
        """
        genai.configure(api_key=api_key)
        self._model_name = model
        self._model = genai.GenerativeModel(model)
        logger.info("Gemini oracle initialized", model=model)

    async def generate(self, prompt: str, config: OracleConfig) -> str:
        if config.system_prompt:
            prompt = f"{config.system_prompt}\n\n{prompt}"

        generation_config = genai.GenerationConfig(
            temperature=config.temperature,
            top_k=config.top_k,
            top_p=config.top_p,
            max_output_tokens=config.max_output_tokens,
        )

        try:
            response = await self._model.generate_content_async(
                prompt,
                generation_config=generation_config,
            )
            text = response.text
        except Exception as e:
            raise OracleTransportError(f"Gemini API error: {e}", provider=self.name) from e

        logger.debug("Gemini response received", model=self._model_name, length=len(text))
        return text
