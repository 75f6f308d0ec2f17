"""Configuration module for LitRev."""

from litrev.config.settings import (
    FilteringConfig,
    GenerationConfig,
    LitrevSettings,
    LLMConfig,
    ModelQuotaConfig,
    get_settings,
    reload_settings,
)

__all__ = [
    "FilteringConfig",
    "GenerationConfig",
    "LLMConfig",
    "LitrevSettings",
    "ModelQuotaConfig",
    "get_settings",
    "reload_settings",
]
