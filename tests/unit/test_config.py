"""Tests for configuration module."""

import pytest


@pytest.fixture
def isolated_settings(tmp_path, monkeypatch):
    """Run settings tests in an isolated directory without litrev.yaml."""
    # Change to temp directory so no litrev.yaml is found
    monkeypatch.chdir(tmp_path)
    # Clear any cached settings
    from litrev.config.settings import get_settings

    get_settings.cache_clear()
    yield tmp_path
    # Clean up cache after test
    get_settings.cache_clear()


class TestLitrevSettings:
    """Tests for LitrevSettings."""

    def test_default_settings(self, isolated_settings):  # noqa: ARG002
        """Test default settings values."""
        from litrev.config.settings import LitrevSettings

        settings = LitrevSettings()

        assert settings.log_level == "INFO"
        assert settings.log_dir == ".logs"

    def test_filtering_defaults(self, isolated_settings):  # noqa: ARG002
        """Test filtering configuration defaults."""
        from litrev.config.settings import LitrevSettings

        filtering = LitrevSettings().filtering

        assert filtering.batch_size == 20
        assert filtering.max_concurrent_batches == 5
        assert filtering.timeout_ms == 30000
        assert filtering.retry_attempts == 3
        assert filtering.temperature == 0.3
        assert filtering.fallback_strategy == "rule_based"
        assert filtering.enable_key_rotation is True

    def test_llm_defaults(self, isolated_settings):  # noqa: ARG002
        """Test model catalogue and chains."""
        from litrev.config.settings import LitrevSettings

        llm = LitrevSettings().llm

        assert llm.semantic_filtering_chain[0] == "gemini-2.5-flash-lite"
        assert llm.draft_generation_chain[0] == "gemini-3-pro-preview"
        assert llm.models["gemini-2.0-flash-lite"].rpm == 30
        assert llm.models["gemini-2.5-pro"].rpd == 50
        assert llm.rate_limit_cooldown == 90

    def test_generation_defaults(self, isolated_settings):  # noqa: ARG002
        """Test draft generation defaults."""
        from litrev.config.settings import LitrevSettings

        generation = LitrevSettings().generation

        assert generation.paper_batch_size == 15
        assert generation.timeout_ms == 120000

    def test_yaml_file(self, isolated_settings):
        """Test loading settings from litrev.yaml."""
        from litrev.config.settings import LitrevSettings

        (isolated_settings / "litrev.yaml").write_text(
            "log_level: DEBUG\nfiltering:\n  batch_size: 8\n  fallback_strategy: fail\n",
            encoding="utf-8",
        )

        settings = LitrevSettings()

        assert settings.log_level == "DEBUG"
        assert settings.filtering.batch_size == 8
        assert settings.filtering.fallback_strategy == "fail"

    def test_env_overrides(self, isolated_settings, monkeypatch):  # noqa: ARG002
        """Test LITREV_ environment variables with nested delimiter."""
        from litrev.config.settings import LitrevSettings

        monkeypatch.setenv("LITREV_FILTERING__MAX_CONCURRENT_BATCHES", "2")
        monkeypatch.setenv("LITREV_LOG_LEVEL", "WARNING")

        settings = LitrevSettings()

        assert settings.filtering.max_concurrent_batches == 2
        assert settings.log_level == "WARNING"

    def test_invalid_batch_size(self, isolated_settings):  # noqa: ARG002
        """Test validation of numeric limits."""
        from pydantic import ValidationError

        from litrev.config.settings import FilteringConfig

        with pytest.raises(ValidationError):
            FilteringConfig(batch_size=0)

    def test_get_settings_is_cached(self, isolated_settings):  # noqa: ARG002
        """Test that get_settings returns one instance until reloaded."""
        from litrev.config.settings import get_settings, reload_settings

        first = get_settings()

        assert get_settings() is first
        assert reload_settings() is not first


class TestResolveCredentials:
    """Tests for LLMConfig.resolve_credentials."""

    def test_configured_credentials_win(self, monkeypatch):
        """Test that configured keys take precedence over the environment."""
        from litrev.config.settings import LLMConfig

        monkeypatch.setenv("GEMINI_API_KEYS", "env-key")
        config = LLMConfig(credentials=[" configured ", ""])

        assert config.resolve_credentials() == ["configured"]

    def test_environment_fallback(self, monkeypatch):
        """Test comma-separated keys from the environment."""
        from litrev.config.settings import LLMConfig

        monkeypatch.setenv("GEMINI_API_KEYS", "key-a, key-b,,")

        assert LLMConfig().resolve_credentials() == ["key-a", "key-b"]

    def test_custom_env_var(self, monkeypatch):
        """Test reading keys from a different variable."""
        from litrev.config.settings import LLMConfig

        monkeypatch.setenv("MY_KEYS", "k1")

        assert LLMConfig(api_keys_env="MY_KEYS").resolve_credentials() == ["k1"]

    def test_no_keys(self):
        """Test the empty result."""
        from litrev.config.settings import LLMConfig

        assert LLMConfig().resolve_credentials() == []


class TestFilterRequest:
    """Tests for FilterRequest."""

    def test_from_config_with_overrides(self):
        """Test defaults from config and per-request overrides."""
        from litrev.config.settings import FilteringConfig
        from litrev.models import FilterRequest

        request = FilterRequest.from_config(
            [], FilteringConfig(batch_size=7), inclusion_prompt="x", max_concurrent_batches=1
        )

        assert request.batch_size == 7
        assert request.max_concurrent_batches == 1
        assert request.selection_mode == "auto"

    def test_camel_case_input(self):
        """Test that transport payloads in camelCase are accepted."""
        from litrev.models import FilterRequest

        request = FilterRequest.model_validate(
            {
                "papers": [{"id": "1", "title": "T"}],
                "inclusionPrompt": "x",
                "batchSize": 5,
                "model": "gemini-2.5-pro",
                "fallbackStrategy": "fail",
            }
        )

        assert request.batch_size == 5
        assert request.selection_mode == "manual"
        assert request.fallback_strategy == "fail"

    def test_paper_dump_uses_camel_case(self):
        """Test the serialized paper annotations."""
        from litrev.models import Paper

        paper = Paper(id="1", title="T", inclusion_reasoning="fits")

        data = paper.model_dump(by_alias=True)

        assert data["inclusionReasoning"] == "fits"
        assert data["exclusionReason"] is None
