"""LLM provider, credential pool and usage accounting."""

from litrev.llm.base import BaseLLMProvider, LLMMessage, LLMResponse, ResponseFormat, TokenUsage
from litrev.llm.ledger import DailySummary, UsageLedger, UsageStats, mask_key
from litrev.llm.pool import Credential, CredentialPool, ModelProfile, QuotaState
from litrev.llm.selector import AutoStrategy, ManualStrategy, Selection, SelectionStrategy, Selector

__all__ = [
    "AutoStrategy",
    "BaseLLMProvider",
    "Credential",
    "CredentialPool",
    "DailySummary",
    "LLMMessage",
    "LLMResponse",
    "ManualStrategy",
    "ModelProfile",
    "QuotaState",
    "ResponseFormat",
    "Selection",
    "SelectionStrategy",
    "Selector",
    "TokenUsage",
    "UsageLedger",
    "UsageStats",
    "mask_key",
]
