"""Iterative literature review drafting.

Included papers are fed to the model in batches. The first batch produces an
initial draft; every later batch rewrites the whole draft with the new papers
merged in. Batches are strictly sequential because each one needs the
previous draft.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from litrev.config.settings import LitrevSettings, get_settings
from litrev.core.control import RunControl
from litrev.core.executor import estimate_tokens
from litrev.core.progress import ProgressReporter, ProgressSink, ProgressSnapshot
from litrev.exceptions import AllKeysExhaustedError, StoppedByCaller, TransientNetworkError
from litrev.llm.base import LLMMessage
from litrev.llm.decoder import DraftSections, decode_draft
from litrev.llm.ledger import UsageLedger
from litrev.llm.pool import Credential, CredentialPool
from litrev.llm.prompts import build_draft_prompt, build_regenerate_prompt
from litrev.llm.registry import ProviderFactory, ProviderRegistry, gemini_factory
from litrev.llm.retry import RetryController
from litrev.llm.selector import AutoStrategy, Selection, Selector
from litrev.models import Paper
from litrev.utils.logging import generate_request_id, get_logger

log = get_logger(__name__)

DraftStatus = Literal["completed", "stopped", "error"]


@dataclass
class DraftResult:
    """Outcome of a drafting run."""

    sections: DraftSections | None
    status: DraftStatus
    snapshot: ProgressSnapshot
    papers_used: int
    batches_completed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "sections": self.sections.model_dump() if self.sections else None,
            "status": self.status,
            "papersUsed": self.papers_used,
            "batchesCompleted": self.batches_completed,
            "progress": self.snapshot.to_dict(),
        }


class DraftGenerator:
    """Writes a literature review draft from the included papers."""

    def __init__(
        self,
        settings: LitrevSettings | None = None,
        ledger: UsageLedger | None = None,
        provider_factory: ProviderFactory = gemini_factory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.ledger = ledger or UsageLedger()
        self.pool = CredentialPool(self.settings.llm, self.ledger)
        self.providers = ProviderRegistry(provider_factory, self.settings.generation.timeout_ms)
        self._sleep = sleep
        self.control = RunControl()
        self._reporter: ProgressReporter | None = None

        for secret in self.settings.llm.resolve_credentials():
            self.pool.add_credential(secret)

    async def generate(
        self,
        papers: list[Paper],
        topic: str,
        inclusion_criteria: str = "",
        sink: ProgressSink | None = None,
        credentials: list[str] | None = None,
    ) -> DraftResult:
        """Draft the review from every paper with ``included`` set.

        Args:
            papers: Filtered papers; only included ones are used
            topic: Review topic
            inclusion_criteria: Criteria text quoted in the prompt
            sink: Receives progress snapshots, including stream status
            credentials: Extra API keys for this run

        Returns:
            DraftResult; on stop the draft of the last completed batch is kept

        Raises:
            FatalConfigError: If no API key is available
        """
        self.pool.initialize(credentials or [])
        self.control = RunControl()

        gen_config = self.settings.generation
        llm_config = self.settings.llm
        selector = Selector(self.pool, AutoStrategy(llm_config.draft_generation_chain))
        reporter = ProgressReporter(sink, self.pool, models=llm_config.draft_generation_chain)
        self._reporter = reporter
        retry = RetryController(
            selector,
            self.pool,
            reporter,
            self.control,
            llm_config,
            retry_attempts=self.settings.filtering.retry_attempts,
            fallback_strategy=self.settings.filtering.fallback_strategy,
            sleep=self._sleep,
        )

        included = [p for p in papers if p.included]
        size = gen_config.paper_batch_size
        batches = [included[i : i + size] for i in range(0, len(included), size)]

        log.info("Draft generation started", papers=len(included), batches=len(batches))
        reporter.start(len(included), ["drafting"])
        reporter.start_phase("drafting", len(batches))

        if not included:
            log.warning("No included papers to draft from", total_papers=len(papers))

        draft: DraftSections | None = None
        completed = 0
        for index, batch in enumerate(batches):
            await self.control.wait_if_paused()
            if self.control.is_stopped:
                log.info("Draft generation stopped", batch=index + 1, total=len(batches))
                break

            reporter.batch_started(index, len(batch))
            papers_so_far = min((index + 1) * size, len(included))
            if draft is None:
                prompt = build_draft_prompt(batch, topic, inclusion_criteria)
            else:
                prompt = build_regenerate_prompt(draft, batch, papers_so_far, topic)

            try:
                draft = await retry.execute(
                    lambda selection, prompt=prompt: self._stream_draft(
                        selection, prompt, reporter
                    ),
                    label=f"draft batch {index + 1}",
                )
            except (AllKeysExhaustedError, StoppedByCaller) as e:
                status: DraftStatus = "stopped" if isinstance(e, StoppedByCaller) else "error"
                snapshot = reporter.finish(status, f"Draft generation halted: {e}", error=str(e))
                return DraftResult(draft, status, snapshot, papers_so_far - len(batch), completed)

            completed += 1
            reporter.batch_completed(index, len(batch))
            log.info(
                "Draft batch completed",
                batch=index + 1,
                total=len(batches),
                draft_size=draft.size,
            )

        papers_used = min(completed * size, len(included))
        if self.control.is_stopped:
            snapshot = reporter.finish("stopped", "Stopped by user")
            return DraftResult(draft, "stopped", snapshot, papers_used, completed)

        if draft is None:
            snapshot = reporter.finish("error", "No included papers", error="No included papers")
            return DraftResult(None, "error", snapshot, 0, 0)

        snapshot = reporter.finish("completed", f"Draft completed from {papers_used} papers")
        return DraftResult(draft, "completed", snapshot, papers_used, completed)

    async def _stream_draft(
        self, selection: Selection, prompt: str, reporter: ProgressReporter
    ) -> DraftSections:
        """Stream one draft request, reporting tokens as they arrive."""
        provider = self.providers.get(selection.credential)
        request_id = generate_request_id()
        chunks: list[str] = []
        reporter.stream_started(request_id, selection.credential.label, selection.model.name)

        async def consume() -> None:
            async for chunk in provider.stream(
                [LLMMessage.user(prompt)],
                temperature=self.settings.generation.temperature,
                model=selection.model.name,
            ):
                chunks.append(chunk)
                reporter.stream_progress(request_id, estimate_tokens("".join(chunks)))

        timeout_ms = self.settings.generation.timeout_ms
        try:
            await asyncio.wait_for(consume(), timeout=timeout_ms / 1000)
        except TimeoutError as e:
            reporter.stream_finished(request_id, success=False)
            raise TransientNetworkError(f"Draft stream timed out after {timeout_ms}ms") from e
        except Exception:
            reporter.stream_finished(request_id, success=False)
            raise

        text = "".join(chunks)
        reporter.stream_finished(request_id)
        self.ledger.record_usage(
            selection.credential.secret,
            selection.model.name,
            estimate_tokens(prompt, text),
            label=selection.credential.label,
        )
        return decode_draft(text)

    def stop(self) -> None:
        self.control.stop()

    def pause(self) -> None:
        self.control.pause()
        if self._reporter is not None:
            self._reporter.paused()

    def resume(self) -> None:
        self.control.resume()
        if self._reporter is not None:
            self._reporter.resumed()

    def add_credential(self, secret: str, label: str | None = None) -> Credential:
        """Add an API key, waking a draft batch waiting for one."""
        credential = self.pool.add_credential(secret, label)
        self.control.notify_credential_added()
        return credential
