"""Pytest configuration and fixtures."""

import inspect
import json
import re
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from litrev.config.settings import LitrevSettings, LLMConfig
from litrev.llm.base import BaseLLMProvider, LLMMessage, LLMResponse, TokenUsage
from litrev.llm.ledger import UsageLedger
from litrev.llm.pool import Credential, CredentialPool
from litrev.models import Paper

KEY_ONE = "AIzaSyTEST-key-one-000000000000000000001"
KEY_TWO = "AIzaSyTEST-key-two-000000000000000000002"
KEY_THREE = "AIzaSyTEST-key-three-0000000000000000003"

_ID_PATTERN = re.compile(r"^ID: (.+)$", re.M)


def prompt_ids(prompt: str) -> list[str]:
    """Paper ids listed in a filtering prompt, in prompt order."""
    return _ID_PATTERN.findall(prompt)


def prompt_phase(prompt: str) -> str:
    return "exclusion" if "EXCLUSION CRITERIA" in prompt else "inclusion"


def decisions_reply(prompt: str, decide: Callable[[str, str], bool] | None = None) -> str:
    """A well-formed batch reply covering every id in ``prompt``."""
    phase = prompt_phase(prompt)
    decide = decide or (lambda _pid, ph: ph == "inclusion")
    return json.dumps(
        {
            pid: {"decision": decide(pid, phase), "reasoning": f"{phase} reason {pid}"}
            for pid in prompt_ids(prompt)
        }
    )


def categories_reply(prompt: str, categorize: Callable[[str], str] | None = None) -> str:
    """A well-formed category reply covering every id in ``prompt``."""
    categorize = categorize or (lambda pid: f"Area of {pid}")
    return json.dumps(
        {pid: {"category": categorize(pid), "confidence": 0.9} for pid in prompt_ids(prompt)}
    )


def draft_reply(tag: str = "v1") -> str:
    return json.dumps(
        {
            "abstract": f"Abstract {tag}",
            "introduction": f"Intro {tag} \\cite{{smith2020deep}}",
            "methodology": f"Method {tag}",
            "results": f"Results {tag}",
            "discussion": f"Discussion {tag}",
            "conclusion": f"Conclusion {tag}",
        }
    )


class ScriptedCall:
    """One request seen by a scripted provider."""

    def __init__(self, key_label: str, model: str, prompt: str) -> None:
        self.key_label = key_label
        self.model = model
        self.prompt = prompt

    @property
    def ids(self) -> list[str]:
        return prompt_ids(self.prompt)


class ScriptedProvider(BaseLLMProvider):
    """In-memory provider whose replies come from a handler function.

    The handler receives ``(credential, model, prompt)`` and returns the reply
    text, returns/raises an exception, or returns an awaitable of either.
    """

    name = "scripted"

    def __init__(self, credential: Credential, llm: "ScriptedLLM") -> None:
        self.credential = credential
        self.llm = llm

    async def _reply(self, messages: list[LLMMessage], model: str) -> str:
        prompt = messages[-1].content
        self.llm.calls.append(ScriptedCall(self.credential.label, model, prompt))
        result: Any = self.llm.handler(self.credential, model, prompt)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        model = kwargs.get("model") or "scripted-model"
        content = await self._reply(messages, model)
        return LLMResponse(
            content=content,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
            model=model,
            finish_reason="stop",
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        content = await self._reply(messages, kwargs.get("model") or "scripted-model")
        for start in range(0, len(content), 40):
            yield content[start : start + 40]


class ScriptedLLM:
    """Provider factory plus the record of every call made through it."""

    def __init__(self) -> None:
        self.calls: list[ScriptedCall] = []
        self.handler: Callable[[Credential, str, str], Any] = (
            lambda _credential, _model, prompt: decisions_reply(prompt)
        )

    def factory(self, credential: Credential, timeout_ms: int) -> BaseLLMProvider:  # noqa: ARG002
        return ScriptedProvider(credential, self)

    def calls_for(self, key_label: str) -> list[ScriptedCall]:
        return [c for c in self.calls if c.key_label == key_label]


class FakeClock:
    """Settable wall clock for the usage ledger."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock for cooldowns and elapsed time."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


async def no_sleep(_seconds: float) -> None:
    return None


def make_papers(count: int, prefix: str = "p") -> list[Paper]:
    return [
        Paper(
            id=f"{prefix}{i}",
            title=f"Deep learning study number {i}",
            abstract=f"Abstract of paper {i}.",
            year=2020 + i % 5,
            authors=[f"Author {i}", "Co Author"],
        )
        for i in range(count)
    ]


@pytest.fixture(autouse=True)
def _no_ambient_keys(monkeypatch):
    """Keep keys from the developer environment out of tests."""
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    for name in ("LITREV_LOG_LEVEL", "LITREV_LOG_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def llm_config() -> LLMConfig:
    """LLM config without configured keys and without backoff delays."""
    return LLMConfig(backoff_base=0.0, backoff_max=0.0)


@pytest.fixture
def settings(llm_config, tmp_path) -> LitrevSettings:
    return LitrevSettings(llm=llm_config, log_dir=str(tmp_path / "logs"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def ledger(clock) -> UsageLedger:
    return UsageLedger(clock=clock)


@pytest.fixture
def pool(llm_config, ledger, monotonic) -> CredentialPool:
    pool = CredentialPool(llm_config, ledger, monotonic=monotonic)
    pool.initialize([KEY_ONE, KEY_TWO])
    return pool


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()
