"""Base classes for LLM providers."""

import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, NoReturn

from litrev.exceptions import (
    AuthError,
    LLMError,
    QuotaExhaustedError,
    RateLimitError,
    TransientNetworkError,
)

if TYPE_CHECKING:
    from litrev.utils.logging import BoundLogger


@dataclass
class ResponseFormat:
    """Configuration for structured output format.

    Gemini maps this to response_mime_type="application/json" with an
    optional response_schema.
    """

    type: Literal["json_object", "json_schema", "text"] = "json_object"
    json_schema: dict[str, Any] | None = None


@dataclass
class TokenUsage:
    """Token usage information."""

    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.prompt_tokens + self.completion_tokens


@dataclass
class LLMMessage:
    """A message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str

    @classmethod
    def system(cls, content: str) -> "LLMMessage":
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "LLMMessage":
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "LLMMessage":
        """Create an assistant message."""
        return cls(role="assistant", content=content)


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    usage: TokenUsage | None
    model: str
    finish_reason: str


_RETRY_AFTER_PATTERN = re.compile(r"retry(?:[ _-]?delay)?\D{0,12}?(\d+(?:\.\d+)?)\s*s", re.I)
_DAILY_QUOTA_MARKERS = ("per day", "perday", "daily", "requests_per_day")
_RATE_LIMIT_MARKERS = ("rate limit", "429", "resource has been exhausted", "resource_exhausted")
_AUTH_MARKERS = ("api key not valid", "invalid api key", "unauthorized", "permission denied")
_TRANSIENT_MARKERS = ("network", "timeout", "timed out", "connection", "unavailable", "overloaded")


def parse_retry_after(message: str) -> int | None:
    """Extract a retry delay in seconds from an error message, if present."""
    match = _RETRY_AFTER_PATTERN.search(message)
    if not match:
        return None
    return max(1, round(float(match.group(1))))


def classify_error(error: Exception) -> LLMError:
    """Map a provider SDK error onto the LLM error taxonomy.

    HTTP status codes (``error.code``) take precedence; the message is used
    when no code is available.
    """
    if isinstance(error, LLMError):
        return error

    message = str(error)
    lowered = message.lower()
    code = getattr(error, "code", None)
    if not isinstance(code, int):
        code = None

    is_rate_limit = code == 429 or any(m in lowered for m in _RATE_LIMIT_MARKERS)
    is_quota = "quota" in lowered and "exceeded" in lowered

    if is_quota and any(m in lowered for m in _DAILY_QUOTA_MARKERS):
        return QuotaExhaustedError(message)
    if is_rate_limit or is_quota:
        return RateLimitError(retry_after=parse_retry_after(message))
    if code in (401, 403) or any(m in lowered for m in _AUTH_MARKERS) or (
        code is None and ("401" in lowered or "403" in lowered)
    ):
        return AuthError(message)
    if (code is not None and code >= 500) or any(m in lowered for m in _TRANSIENT_MARKERS):
        return TransientNetworkError(message)
    if isinstance(error, (TimeoutError, ConnectionError, OSError)):
        return TransientNetworkError(message or type(error).__name__)
    return LLMError(message)


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str = "base"

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion.

        Args:
            messages: List of messages in the conversation
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            **kwargs: Provider-specific arguments (model, response_format)

        Returns:
            LLM response
        """
        ...

    @abstractmethod
    async def stream(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Stream a completion as an async generator.

        Args:
            messages: List of messages in the conversation
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            **kwargs: Provider-specific arguments

        Yields:
            Chunks of the response
        """
        yield ""  # pragma: no cover
        raise NotImplementedError  # pragma: no cover

    async def validate(self) -> bool:
        """Validate the provider configuration.

        Returns:
            True if the provider is properly configured
        """
        return True

    def _handle_api_error(
        self,
        error: Exception,
        operation: str,
        log: "BoundLogger",
    ) -> NoReturn:
        """Translate an SDK error and raise it.

        Args:
            error: The caught exception
            operation: Description of the operation that failed (e.g., "API", "streaming")
            log: The logger instance to use for error logging

        Raises:
            RateLimitError, QuotaExhaustedError, AuthError, TransientNetworkError, LLMError
        """
        translated = classify_error(error)
        if translated is error:
            raise translated

        log.debug(
            f"{self.name} {operation} error classified",
            error_type=type(translated).__name__,
        )
        if type(translated) is LLMError:
            raise LLMError(f"{self.name} {operation} error: {error}") from error
        raise translated from error
