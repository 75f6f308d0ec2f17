"""Configuration settings using pydantic-settings."""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict, YamlConfigSettingsSource

from litrev.config.constants import (
    DEFAULT_API_KEYS_ENV,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_ESCALATION_THRESHOLD_PCT,
    DEFAULT_FALLBACK_STRATEGY,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_CONCURRENT_BATCHES,
    DEFAULT_MODEL,
    DEFAULT_PAPER_BATCH_SIZE,
    DEFAULT_RATE_LIMIT_COOLDOWN,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_MS,
    DRAFT_GENERATION_CHAIN,
    MODEL_QUOTAS,
    SEMANTIC_FILTERING_CHAIN,
)

FallbackStrategyName = Literal["rule_based", "prompt_user", "fail"]


class ModelQuotaConfig(BaseModel):
    """Quota limits and cost tier for a single model."""

    tier: int = Field(default=1, ge=0)
    rpm: int = Field(default=2, ge=1)  # Requests per minute
    tpm: int = Field(default=125_000, ge=1)  # Tokens per minute
    rpd: int = Field(default=50, ge=1)  # Requests per day


def _default_model_quotas() -> dict[str, ModelQuotaConfig]:
    return {name: ModelQuotaConfig(**limits) for name, limits in MODEL_QUOTAS.items()}


class LLMConfig(BaseModel):
    """LLM backend configuration."""

    credentials: list[str] = Field(default_factory=list)
    api_keys_env: str = DEFAULT_API_KEYS_ENV
    default_model: str = DEFAULT_MODEL

    models: dict[str, ModelQuotaConfig] = Field(default_factory=_default_model_quotas)
    semantic_filtering_chain: list[str] = Field(
        default_factory=lambda: list(SEMANTIC_FILTERING_CHAIN)
    )
    draft_generation_chain: list[str] = Field(default_factory=lambda: list(DRAFT_GENERATION_CHAIN))

    # Escalate to the next model when a pair's estimated quota drops to this value
    escalation_threshold_pct: float = Field(default=DEFAULT_ESCALATION_THRESHOLD_PCT, ge=0, le=100)
    rate_limit_cooldown: int = Field(default=DEFAULT_RATE_LIMIT_COOLDOWN, ge=0)  # seconds
    backoff_base: float = Field(default=DEFAULT_BACKOFF_BASE, ge=0)
    backoff_max: float = Field(default=DEFAULT_BACKOFF_MAX, ge=0)

    def resolve_credentials(self) -> list[str]:
        """Return configured credentials, falling back to the API keys env var.

        Returns:
            Non-blank credential secrets, in configuration order
        """
        keys = [k.strip() for k in self.credentials if k and k.strip()]
        if keys:
            return keys
        raw = os.environ.get(self.api_keys_env, "")
        return [k.strip() for k in raw.split(",") if k.strip()]


class FilteringConfig(BaseModel):
    """Semantic filtering configuration."""

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    max_concurrent_batches: int = Field(default=DEFAULT_MAX_CONCURRENT_BATCHES, ge=1)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    retry_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0, le=2)
    fallback_strategy: FallbackStrategyName = DEFAULT_FALLBACK_STRATEGY
    enable_key_rotation: bool = True


class GenerationConfig(BaseModel):
    """Draft generation configuration."""

    paper_batch_size: int = Field(default=DEFAULT_PAPER_BATCH_SIZE, ge=1)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0, le=2)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS * 4, ge=1)


class LitrevSettings(BaseSettings):
    """Main configuration class for LitRev."""

    model_config = SettingsConfigDict(
        env_prefix="LITREV_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings sources to include YAML file."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=DEFAULT_CONFIG_FILE),
            file_secret_settings,
        )

    # Sub-configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    filtering: FilteringConfig = Field(default_factory=FilteringConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)

    # Global settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_dir: str = DEFAULT_LOG_DIR


@lru_cache
def get_settings() -> LitrevSettings:
    """Get cached settings instance."""
    return LitrevSettings()


def reload_settings() -> LitrevSettings:
    """Force reload settings (clear cache)."""
    get_settings.cache_clear()
    return get_settings()
