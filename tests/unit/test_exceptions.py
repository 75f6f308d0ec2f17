"""Tests for exceptions module."""


class TestExceptions:
    """Tests for custom exceptions."""

    def test_litrev_error(self):
        """Test base LitrevError."""
        from litrev.exceptions import LitrevError

        error = LitrevError("Test error")
        assert str(error) == "Test error"

    def test_fatal_config_is_configuration_error(self):
        """Test the configuration error hierarchy."""
        from litrev.exceptions import ConfigurationError, FatalConfigError, LitrevError

        error = FatalConfigError("no keys")
        assert isinstance(error, ConfigurationError)
        assert isinstance(error, LitrevError)

    def test_rate_limit_error(self):
        """Test RateLimitError with retry_after."""
        from litrev.exceptions import LLMError, RateLimitError

        error = RateLimitError(retry_after=60)

        assert error.retry_after == 60
        assert "60" in str(error)
        assert isinstance(error, LLMError)

    def test_rate_limit_error_without_delay(self):
        """Test RateLimitError without retry_after."""
        from litrev.exceptions import RateLimitError

        error = RateLimitError()

        assert error.retry_after is None
        assert str(error) == "Rate limited"

    def test_malformed_response_keeps_raw(self):
        """Test MalformedResponseError."""
        from litrev.exceptions import MalformedResponseError

        error = MalformedResponseError("bad", raw="{oops")

        assert error.raw == "{oops"
        assert str(error) == "bad"

    def test_llm_error_family(self):
        """Test that provider failures share one base."""
        from litrev.exceptions import (
            AllKeysExhaustedError,
            AuthError,
            LLMError,
            QuotaExhaustedError,
            TransientNetworkError,
        )

        for cls in (AllKeysExhaustedError, AuthError, QuotaExhaustedError, TransientNetworkError):
            assert issubclass(cls, LLMError)

    def test_default_messages(self):
        """Test default messages."""
        from litrev.exceptions import AllKeysExhaustedError, StoppedByCaller

        assert str(AllKeysExhaustedError()) == "All API keys exhausted"
        assert str(StoppedByCaller()) == "Stopped by caller"
