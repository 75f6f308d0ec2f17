"""Google Gemini LLM provider implementation."""

import time
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types

from litrev.config.constants import DEFAULT_MODEL, DEFAULT_TIMEOUT_MS
from litrev.llm.base import BaseLLMProvider, LLMMessage, LLMResponse, ResponseFormat, TokenUsage
from litrev.llm.ledger import mask_key
from litrev.utils.logging import generate_request_id, get_logger

log = get_logger(__name__)


class GeminiProvider(BaseLLMProvider):
    """Google Gemini API provider bound to one API key.

    The model is chosen per call (``model=`` keyword) so a single provider
    serves every model of its key.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        """Initialize Gemini provider.

        Args:
            api_key: Google API key
            model: Default model when a call does not name one
            timeout_ms: HTTP timeout in milliseconds
        """
        self.model = model
        self.key_masked = mask_key(api_key)
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=timeout_ms),
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion using Gemini API.

        Args:
            messages: List of messages
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            **kwargs: ``model`` and ``response_format`` (ResponseFormat for JSON mode)

        Returns:
            LLM response

        Raises:
            RateLimitError, QuotaExhaustedError, AuthError, TransientNetworkError, LLMError
        """
        request_id = generate_request_id()
        model_name = kwargs.get("model") or self.model
        response_format: ResponseFormat | None = kwargs.get("response_format")
        start_time = time.perf_counter()

        log.debug(
            "Sending LLM request",
            provider="gemini",
            model=model_name,
            key=self.key_masked,
            request_id=request_id,
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=model_name,
                contents=self._convert_to_gemini_contents(messages),  # type: ignore[arg-type]
                config=self._build_generation_config(temperature, max_tokens, response_format),
            )
        except Exception as e:
            log.warning(
                "LLM request failed",
                provider="gemini",
                model=model_name,
                key=self.key_masked,
                request_id=request_id,
                duration_ms=int((time.perf_counter() - start_time) * 1000),
                error=str(e),
                error_type=type(e).__name__,
            )
            self._handle_api_error(e, "API", log)

        content = response.text or ""

        usage = None
        if getattr(response, "usage_metadata", None):
            usage = TokenUsage(
                prompt_tokens=response.usage_metadata.prompt_token_count or 0,
                completion_tokens=response.usage_metadata.candidates_token_count or 0,
            )

        log.debug(
            "LLM response received",
            provider="gemini",
            model=model_name,
            request_id=request_id,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )

        return LLMResponse(
            content=content,
            usage=usage,
            model=model_name,
            finish_reason="stop",
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Stream a completion from Gemini API.

        Args:
            messages: List of messages
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            **kwargs: ``model`` override

        Yields:
            Chunks of the response
        """
        model_name = kwargs.get("model") or self.model
        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=model_name,
                contents=self._convert_to_gemini_contents(messages),  # type: ignore[arg-type]
                config=self._build_generation_config(temperature, max_tokens, None),
            )

            async for chunk in stream:
                if chunk.text:
                    yield chunk.text

        except Exception as e:
            log.warning(
                "LLM stream failed",
                provider="gemini",
                model=model_name,
                key=self.key_masked,
                error=str(e),
            )
            self._handle_api_error(e, "streaming", log)

    def _build_generation_config(
        self,
        temperature: float,
        max_tokens: int | None,
        response_format: ResponseFormat | None,
    ) -> types.GenerateContentConfig:
        """Build Gemini generation config with optional JSON mode."""
        config_kwargs: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if response_format and response_format.type in ("json_object", "json_schema"):
            config_kwargs["response_mime_type"] = "application/json"
            if response_format.json_schema:
                config_kwargs["response_schema"] = response_format.json_schema
        return types.GenerateContentConfig(**config_kwargs)

    def _convert_to_gemini_contents(self, messages: list[LLMMessage]) -> list[types.Part]:
        """Flatten messages into Gemini Parts with role prefixes."""
        parts: list[types.Part] = []
        for msg in messages:
            if msg.role == "system":
                parts.append(types.Part.from_text(text=f"[System]: {msg.content}\n\n"))
            else:
                prefix = "[User]: " if msg.role == "user" else "[Assistant]: "
                parts.append(types.Part.from_text(text=f"{prefix}{msg.content}"))
        return parts

    async def validate(self) -> bool:
        """Check that the client was configured. Credentials are checked on first use."""
        return self.client is not None
