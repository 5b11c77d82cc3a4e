"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite:///./finlink.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Oracle providers
    oracle_enabled: bool = True
    gemini_api_key: Optional[str] = None
    gemini_model: str = "models/gemini-2.5-flash"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ollama_enabled: bool = False
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:3b"
    oracle_timeout_seconds: float = 120.0
    oracle_temperature: float = 0.1

    # Entity extraction
    extraction_max_prompt_chars: int = 30000
    extraction_retries: int = 2
    extraction_backoff_ms: int = 1000
    extraction_max_output_tokens: int = 8192

    # Concept linking
    linking_batch_size: int = 40
    linking_max_retries: int = 3
    linking_backoff_base_ms: int = 1000
    linking_min_coverage: float = 0.7
    linking_catalogue_limit: int = 50
    linking_concurrency: Optional[int] = None
    linking_max_output_tokens: int = 16384

    # Reference data
    taxonomy_path: Path = PACKAGE_DIR / "data" / "us_gaap_taxonomy.yaml"
    gold_standard_dir: Path = PACKAGE_DIR / "data" / "eval"

    # Recorded on every processing result
    model_name: str = "Gemini 2.5 Flash"

    @property
    def has_oracle_credentials(self) -> bool:
        """Whether any oracle provider can be constructed."""
        return bool(self.gemini_api_key or self.openai_api_key or self.ollama_enabled)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
