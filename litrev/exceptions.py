"""Custom exceptions for LitRev."""


class LitrevError(Exception):
    """Base exception class for LitRev."""

    pass


class ConfigurationError(LitrevError):
    """Configuration error."""

    pass


class FatalConfigError(ConfigurationError):
    """Configuration is unusable, no work can start (e.g. no credentials)."""

    pass


class StoppedByCaller(LitrevError):
    """The caller asked the run to stop."""

    def __init__(self, message: str = "Stopped by caller") -> None:
        super().__init__(message)


class LLMError(LitrevError):
    """LLM-related error."""

    pass


class RateLimitError(LLMError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        message = f"Rate limited, retry after {retry_after}s" if retry_after else "Rate limited"
        super().__init__(message)


class QuotaExhaustedError(LLMError):
    """Daily quota exhausted for a credential/model pair."""

    def __init__(self, message: str = "Quota exhausted") -> None:
        super().__init__(message)


class TransientNetworkError(LLMError):
    """Network failure, timeout or 5xx response that may succeed on retry."""

    pass


class MalformedResponseError(LLMError):
    """Response could not be decoded into the expected structure."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class AuthError(LLMError):
    """Credential was rejected by the provider."""

    pass


class AllKeysExhaustedError(LLMError):
    """No usable credential/model pair remains."""

    def __init__(self, message: str = "All API keys exhausted") -> None:
        super().__init__(message)
