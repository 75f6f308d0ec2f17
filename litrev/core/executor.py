"""Batch execution for filtering and categorization phases.

Papers are split into contiguous, indexed batches. Batches run concurrently
under a semaphore and every result is written back by batch index, so the
output order always equals the input order.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal

from litrev.config.constants import CHARS_PER_TOKEN
from litrev.core.control import RunControl
from litrev.core.progress import Phase, ProgressReporter
from litrev.exceptions import (
    AllKeysExhaustedError,
    MalformedResponseError,
    StoppedByCaller,
    TransientNetworkError,
)
from litrev.llm.base import LLMMessage, LLMResponse, ResponseFormat
from litrev.llm.decoder import (
    PaperCategory,
    PaperDecision,
    batch_response_schema,
    category_response_schema,
    decode_batch_categories,
    decode_batch_decisions,
)
from litrev.llm.ledger import UsageLedger
from litrev.llm.prompts import (
    build_category_prompt,
    build_exclusion_prompt,
    build_inclusion_prompt,
    build_repair_prompt,
)
from litrev.llm.registry import ProviderRegistry
from litrev.llm.retry import RetryController
from litrev.llm.selector import Selection, SelectionMode
from litrev.models import Paper
from litrev.utils.logging import get_logger

log = get_logger(__name__)

BatchStatus = Literal["pending", "running", "done", "failed"]

RULE_BASED_REASONING = "fallback: rule-based decision (no API key available)"

# Per-paper result of one phase
Verdict = PaperDecision | PaperCategory


@dataclass
class Batch:
    """An ordered slice of papers with a fixed index."""

    index: int
    phase: Phase
    papers: list[Paper]
    status: BatchStatus = "pending"
    error: str | None = None
    model: str | None = None
    fallback: bool = False

    @property
    def paper_ids(self) -> list[str]:
        return [p.id for p in self.papers]


@dataclass(frozen=True)
class BatchError:
    """A batch that ended without results."""

    index: int
    phase: Phase
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "phase": self.phase, "error": self.error}


@dataclass
class PhaseResult:
    """Decisions for one phase, aligned with the input papers."""

    decisions: list[Verdict | None]
    batches: list[Batch] = field(default_factory=list)
    aborted: bool = False

    @property
    def errors(self) -> list[BatchError]:
        return [
            BatchError(b.index, b.phase, b.error)
            for b in self.batches
            if b.status == "failed" and b.error
        ]


def partition(papers: list[Paper], batch_size: int, phase: Phase) -> list[Batch]:
    """Split papers into contiguous batches; the last one may be shorter."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [
        Batch(index=i, phase=phase, papers=papers[start : start + batch_size])
        for i, start in enumerate(range(0, len(papers), batch_size))
    ]


def rule_based_decisions(batch: Batch) -> dict[str, Verdict]:
    """Deterministic decisions used when no API key is left.

    Papers are kept: they meet inclusion and do not meet exclusion. There is
    no rule-based category, so categorization batches stay uncategorized.
    """
    if batch.phase == "categorization":
        return {}
    decision = batch.phase == "inclusion"
    return {
        paper_id: PaperDecision(decision=decision, reasoning=RULE_BASED_REASONING)
        for paper_id in batch.paper_ids
    }


def estimate_tokens(*texts: str) -> int:
    return sum(len(t) for t in texts) // CHARS_PER_TOKEN


class BatchExecutor:
    """Runs one batch phase (inclusion, exclusion or categorization) over all papers."""

    def __init__(
        self,
        retry: RetryController,
        providers: ProviderRegistry,
        ledger: UsageLedger,
        reporter: ProgressReporter,
        control: RunControl,
        temperature: float,
        timeout_ms: int,
        mode: SelectionMode = "auto",
        requested_model: str | None = None,
    ) -> None:
        self.retry = retry
        self.providers = providers
        self.ledger = ledger
        self.reporter = reporter
        self.control = control
        self.temperature = temperature
        self.timeout_ms = timeout_ms
        self.mode = mode
        self.requested_model = requested_model
        self._aborted: str | None = None

    async def run(
        self,
        papers: list[Paper],
        criteria: str,
        phase: Phase,
        batch_size: int,
        max_concurrency: int,
    ) -> PhaseResult:
        """Make one decision (or category) per paper for ``phase``.

        Args:
            papers: Papers in caller order
            criteria: Inclusion or exclusion criteria text; unused for categorization
            phase: ``inclusion``, ``exclusion`` or ``categorization``
            batch_size: Papers per request
            max_concurrency: Maximum batches in flight

        Returns:
            PhaseResult whose decisions align index-for-index with ``papers``;
            entries are None for papers whose batch did not produce results
        """
        batches = partition(papers, batch_size, phase)
        results: list[dict[str, Verdict] | None] = [None] * len(batches)
        semaphore = asyncio.Semaphore(max_concurrency)
        self._aborted = None

        self.reporter.start_phase(phase, len(batches))
        log.info(
            "Phase started",
            phase=phase,
            papers=len(papers),
            batches=len(batches),
            concurrency=max_concurrency,
        )

        async def process(batch: Batch) -> None:
            async with semaphore:
                await self._process_batch(batch, criteria, results)

        await asyncio.gather(*(process(batch) for batch in batches))

        decisions: list[Verdict | None] = []
        for batch in batches:
            batch_result = results[batch.index]
            for paper in batch.papers:
                decisions.append(batch_result.get(paper.id) if batch_result else None)

        log.info(
            "Phase finished",
            phase=phase,
            done=sum(1 for b in batches if b.status == "done"),
            failed=sum(1 for b in batches if b.status == "failed"),
            pending=sum(1 for b in batches if b.status == "pending"),
        )
        return PhaseResult(decisions=decisions, batches=batches, aborted=self._aborted is not None)

    async def _process_batch(
        self,
        batch: Batch,
        criteria: str,
        results: list[dict[str, Verdict] | None],
    ) -> None:
        await self.control.wait_if_paused()
        if self.control.is_stopped:
            log.debug("Batch skipped after stop", index=batch.index)
            return
        if self._aborted:
            batch.status = "failed"
            batch.error = f"Aborted: {self._aborted}"
            return

        batch.status = "running"
        self.reporter.batch_started(batch.index, len(batch.papers))

        if batch.phase == "inclusion":
            prompt = build_inclusion_prompt(batch.papers, criteria)
        elif batch.phase == "exclusion":
            prompt = build_exclusion_prompt(batch.papers, criteria)
        else:
            prompt = build_category_prompt(batch.papers)

        def fallback() -> dict[str, Verdict]:
            batch.fallback = True
            return rule_based_decisions(batch)

        try:
            results[batch.index] = await self.retry.execute(
                lambda selection: self._call_batch(selection, batch, prompt),
                fallback=fallback,
                mode=self.mode,
                requested_model=self.requested_model,
                label=f"batch {batch.index + 1}",
            )
        except StoppedByCaller:
            batch.status = "failed"
            batch.error = "Stopped while waiting for an API key"
            return
        except AllKeysExhaustedError as e:
            self._aborted = str(e)
            batch.status = "failed"
            batch.error = str(e)
            self.reporter.batch_failed(batch.index, str(e))
            return
        except Exception as e:
            log.warning(
                "Batch failed", index=batch.index, error=str(e), error_type=type(e).__name__
            )
            batch.status = "failed"
            batch.error = str(e)
            self.reporter.batch_failed(batch.index, str(e))
            return

        batch.status = "done"
        self.reporter.batch_completed(batch.index, len(batch.papers), model=batch.model)

    async def _call_batch(
        self, selection: Selection, batch: Batch, prompt: str
    ) -> dict[str, Verdict]:
        """One structured call, plus one repair re-prompt on a malformed reply."""
        batch.model = selection.model.name
        if batch.phase == "categorization":
            schema, decode = category_response_schema, decode_batch_categories
        else:
            schema, decode = batch_response_schema, decode_batch_decisions
        response_format = ResponseFormat(type="json_schema", json_schema=schema(batch.paper_ids))

        response = await self.complete(selection, prompt, response_format)
        try:
            return decode(response.content, batch.paper_ids)
        except MalformedResponseError as e:
            log.info("Malformed batch reply, re-prompting", index=batch.index, error=str(e))
            repair = build_repair_prompt(prompt, response.content, str(e))
            response = await self.complete(selection, repair, response_format)
            return decode(response.content, batch.paper_ids)

    async def complete(
        self,
        selection: Selection,
        prompt: str,
        response_format: ResponseFormat | None = None,
    ) -> LLMResponse:
        """Send one request on the selected pair and record its usage.

        Raises:
            TransientNetworkError: If the request exceeds the timeout
        """
        provider = self.providers.get(selection.credential)
        try:
            response = await asyncio.wait_for(
                provider.complete(
                    [LLMMessage.user(prompt)],
                    temperature=self.temperature,
                    model=selection.model.name,
                    response_format=response_format,
                ),
                timeout=self.timeout_ms / 1000,
            )
        except TimeoutError as e:
            raise TransientNetworkError(f"Request timed out after {self.timeout_ms}ms") from e

        tokens = (
            response.usage.total_tokens
            if response.usage
            else estimate_tokens(prompt, response.content)
        )
        self.ledger.record_usage(
            selection.credential.secret,
            selection.model.name,
            tokens,
            label=selection.credential.label,
        )
        return response


def finalize_papers(
    papers: list[Paper],
    inclusion: list[PaperDecision | None] | None,
    exclusion: list[PaperDecision | None] | None,
) -> list[Paper]:
    """Merge phase decisions into annotated copies of ``papers``.

    A phase passed as None was not run: it counts as meeting inclusion or
    as not excluded. A paper missing a decision for a phase that ran stays
    unannotated (``included`` and ``exclusion_reason`` are None).
    """
    annotated: list[Paper] = []
    for i, paper in enumerate(papers):
        inc = inclusion[i] if inclusion is not None else None
        exc = exclusion[i] if exclusion is not None else None
        update: dict[str, Any] = {}

        if inc is not None:
            update["inclusion"] = inc.decision
            update["inclusion_reasoning"] = inc.reasoning
        if exc is not None:
            update["exclusion"] = exc.decision
            update["exclusion_reasoning"] = exc.reasoning

        missing = (inclusion is not None and inc is None) or (exclusion is not None and exc is None)
        if missing:
            update["included"] = None
            update["exclusion_reason"] = None
        else:
            meets = inc.decision if inc is not None else True
            excluded = exc.decision if exc is not None else False
            included = meets and not excluded
            update["included"] = included
            if included:
                update["exclusion_reason"] = None
            elif excluded:
                update["exclusion_reason"] = exc.reasoning or "Meets exclusion criteria"
            else:
                update["exclusion_reason"] = inc.reasoning or "Does not meet inclusion criteria"

        annotated.append(paper.model_copy(update=update))
    return annotated


def categorize_papers(papers: list[Paper], categories: list[PaperCategory | None]) -> list[Paper]:
    """Copy ``papers`` with their category and confidence; None leaves a paper as is."""
    return [
        paper.model_copy(update={"category": c.category, "llm_confidence": c.confidence})
        if c is not None
        else paper
        for paper, c in zip(papers, categories, strict=True)
    ]
