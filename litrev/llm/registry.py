"""Per-credential provider instances."""

from collections.abc import Callable

from litrev.llm.base import BaseLLMProvider
from litrev.llm.gemini import GeminiProvider
from litrev.llm.pool import Credential

ProviderFactory = Callable[[Credential, int], BaseLLMProvider]


def gemini_factory(credential: Credential, timeout_ms: int) -> BaseLLMProvider:
    return GeminiProvider(api_key=credential.secret, timeout_ms=timeout_ms)


class ProviderRegistry:
    """Creates one provider per credential on first use and reuses it."""

    def __init__(self, factory: ProviderFactory = gemini_factory, timeout_ms: int = 30000) -> None:
        self.factory = factory
        self.timeout_ms = timeout_ms
        self._providers: dict[str, BaseLLMProvider] = {}

    def get(self, credential: Credential) -> BaseLLMProvider:
        provider = self._providers.get(credential.secret)
        if provider is None:
            provider = self._providers[credential.secret] = self.factory(
                credential, self.timeout_ms
            )
        return provider
