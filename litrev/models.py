"""Data models exchanged with callers."""

from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from litrev.config.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FALLBACK_STRATEGY,
    DEFAULT_MAX_CONCURRENT_BATCHES,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_MS,
)
from litrev.config.settings import FallbackStrategyName, FilteringConfig


class CamelModel(BaseModel):
    """Accepts camelCase or snake_case keys and dumps camelCase by alias."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Paper(CamelModel):
    """A paper and, after filtering, its annotations."""

    id: str
    title: str
    abstract: str = ""
    year: int | None = None
    authors: list[str] = Field(default_factory=list)
    venue: str | None = None

    inclusion: bool | None = None
    inclusion_reasoning: str | None = None
    exclusion: bool | None = None
    exclusion_reasoning: str | None = None
    included: bool | None = None
    exclusion_reason: str | None = None

    category: str | None = None
    llm_confidence: float | None = None


class RunOptions(CamelModel):
    """Papers plus the options shared by every batch run."""

    papers: list[Paper]
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    max_concurrent_batches: int = Field(default=DEFAULT_MAX_CONCURRENT_BATCHES, ge=1)
    model: str = "auto"
    credentials: list[str] = Field(default_factory=list)
    fallback_strategy: FallbackStrategyName = DEFAULT_FALLBACK_STRATEGY
    enable_key_rotation: bool = True
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    retry_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0, le=2)

    @classmethod
    def from_config(
        cls, papers: list[Paper], config: FilteringConfig, **overrides
    ) -> Self:
        """Build a request with defaults taken from the filtering configuration."""
        values = config.model_dump()
        values.update(overrides)
        return cls(papers=papers, **values)

    @property
    def selection_mode(self) -> Literal["auto", "manual"]:
        return "auto" if self.model in ("", "auto") else "manual"


class FilterRequest(RunOptions):
    """Input of one semantic filtering invocation."""

    inclusion_prompt: str = ""
    exclusion_prompt: str | None = None


class CategorizeRequest(RunOptions):
    """Input of a category identification run over the included papers."""
