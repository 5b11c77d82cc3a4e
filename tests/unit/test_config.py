"""
Unit tests for application settings.
"""
from finlink.config import Settings, get_settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("GEMINI_API_KEY", "OPENAI_API_KEY", "OLLAMA_ENABLED", "LINKING_BATCH_SIZE"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.linking_batch_size == 40
        assert settings.linking_max_retries == 3
        assert settings.linking_min_coverage == 0.7
        assert settings.extraction_retries == 2
        assert settings.extraction_max_prompt_chars == 30000
        assert settings.taxonomy_path.name == "us_gaap_taxonomy.yaml"
        assert not settings.has_oracle_credentials

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LINKING_BATCH_SIZE", "10")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("ORACLE_ENABLED", "false")

        settings = Settings(_env_file=None)

        assert settings.linking_batch_size == 10
        assert settings.has_oracle_credentials
        assert settings.oracle_enabled is False

    def test_cached(self):
        assert get_settings() is get_settings()
