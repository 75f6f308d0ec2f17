"""Semantic filtering engine.

Entry point used by the transport layer: runs the inclusion phase, then the
exclusion phase, then merges both into annotated papers. Included papers can
then be categorized by research area in a separate run.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from litrev.config.settings import LitrevSettings, get_settings
from litrev.core.control import RunControl
from litrev.core.executor import (
    BatchError,
    BatchExecutor,
    categorize_papers,
    finalize_papers,
    partition,
)
from litrev.core.progress import Phase, ProgressReporter, ProgressSink, ProgressSnapshot
from litrev.llm.decoder import PaperCategory, PaperDecision
from litrev.llm.ledger import DailySummary, UsageLedger, UsageStats
from litrev.llm.pool import Credential, CredentialPool
from litrev.llm.registry import ProviderFactory, ProviderRegistry, gemini_factory
from litrev.llm.retry import RetryController
from litrev.llm.selector import AutoStrategy, Selector
from litrev.models import CategorizeRequest, FilterRequest, Paper, RunOptions
from litrev.utils.logging import get_logger

log = get_logger(__name__)

FilterStatus = Literal["completed", "stopped", "error"]


@dataclass
class FilterResult:
    """Outcome of one filtering invocation."""

    papers: list[Paper]
    status: FilterStatus
    snapshot: ProgressSnapshot
    errors: list[BatchError] = field(default_factory=list)

    @property
    def included(self) -> list[Paper]:
        return [p for p in self.papers if p.included]

    def to_dict(self) -> dict[str, Any]:
        return {
            "papers": [p.model_dump(by_alias=True) for p in self.papers],
            "status": self.status,
            "progress": self.snapshot.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
        }


class SemanticFilterEngine:
    """Filters papers against inclusion/exclusion criteria with a rate-limited LLM.

    One engine owns a usage ledger and a credential pool that outlive single
    invocations. Each call to :meth:`filter` gets its own run control.
    """

    def __init__(
        self,
        settings: LitrevSettings | None = None,
        ledger: UsageLedger | None = None,
        provider_factory: ProviderFactory = gemini_factory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Settings; defaults to the cached global settings
            ledger: Usage ledger; a fresh one is created when omitted
            provider_factory: Builds a provider for a credential
            sleep: Awaitable sleep used for retry backoff
        """
        self.settings = settings or get_settings()
        self.ledger = ledger or UsageLedger()
        self.pool = CredentialPool(self.settings.llm, self.ledger)
        self.provider_factory = provider_factory
        self._sleep = sleep
        self.control = RunControl()
        self._reporter: ProgressReporter | None = None

        for secret in self.settings.llm.resolve_credentials():
            self.pool.add_credential(secret)

    def _prepare(
        self, request: RunOptions, sink: ProgressSink | None
    ) -> tuple[ProgressReporter, BatchExecutor]:
        """Build the per-run control, reporter and executor for ``request``."""
        self.pool.initialize(request.credentials)
        self.control = RunControl()

        llm_config = self.settings.llm
        mode = request.selection_mode
        requested_model = request.model if mode == "manual" else None
        selector = Selector(
            self.pool,
            AutoStrategy(llm_config.semantic_filtering_chain, llm_config.escalation_threshold_pct),
            enable_key_rotation=request.enable_key_rotation,
        )
        reporter = ProgressReporter(
            sink, self.pool, models=selector.models_for(mode, requested_model)
        )
        self._reporter = reporter
        retry = RetryController(
            selector,
            self.pool,
            reporter,
            self.control,
            llm_config,
            retry_attempts=request.retry_attempts,
            fallback_strategy=request.fallback_strategy,
            sleep=self._sleep,
        )
        executor = BatchExecutor(
            retry,
            ProviderRegistry(self.provider_factory, request.timeout_ms),
            self.ledger,
            reporter,
            self.control,
            temperature=request.temperature,
            timeout_ms=request.timeout_ms,
            mode=mode,
            requested_model=requested_model,
        )
        return reporter, executor

    async def filter(
        self, request: FilterRequest, sink: ProgressSink | None = None
    ) -> FilterResult:
        """Run semantic filtering.

        Args:
            request: Papers, criteria and run options
            sink: Receives a progress snapshot after every state change

        Returns:
            FilterResult with papers in input order, even when stopped early

        Raises:
            FatalConfigError: If no API key is available
        """
        reporter, executor = self._prepare(request, sink)

        papers = request.papers
        inclusion_prompt = request.inclusion_prompt.strip()
        exclusion_prompt = (request.exclusion_prompt or "").strip()
        phases: list[Phase] = []
        if inclusion_prompt:
            phases.append("inclusion")
        if exclusion_prompt:
            phases.append("exclusion")

        log.info(
            "Semantic filtering started",
            papers=len(papers),
            phases=phases,
            model=request.model,
            batch_size=request.batch_size,
            concurrency=request.max_concurrent_batches,
            fallback=request.fallback_strategy,
        )
        reporter.start(len(papers), phases)

        decisions: dict[Phase, list[PaperDecision | None]] = {}
        errors: list[BatchError] = []
        abort_reason: str | None = None
        for phase in phases:
            if abort_reason is not None:
                decisions[phase] = [None] * len(papers)
                errors.extend(
                    BatchError(b.index, phase, f"Skipped after abort: {abort_reason}")
                    for b in partition(papers, request.batch_size, phase)
                )
                continue
            if self.control.is_stopped:
                decisions[phase] = [None] * len(papers)
                continue
            criteria = inclusion_prompt if phase == "inclusion" else exclusion_prompt
            result = await executor.run(
                papers,
                criteria,
                phase,
                batch_size=request.batch_size,
                max_concurrency=request.max_concurrent_batches,
            )
            decisions[phase] = result.decisions
            errors.extend(result.errors)
            if result.aborted:
                abort_reason = result.errors[0].error if result.errors else "all API keys exhausted"

        annotated = finalize_papers(papers, decisions.get("inclusion"), decisions.get("exclusion"))
        reporter.finalizing(sum(1 for p in annotated if p.included is not None))

        status: FilterStatus
        if abort_reason is not None:
            status = "error"
            snapshot = reporter.finish(
                status, "Aborted: all API keys exhausted", error=abort_reason
            )
        elif self.control.is_stopped:
            status = "stopped"
            snapshot = reporter.finish(status, "Stopped by user")
        else:
            status = "completed"
            included = sum(1 for p in annotated if p.included)
            snapshot = reporter.finish(
                status, f"Completed: {included}/{len(annotated)} papers included"
            )

        log.info(
            "Semantic filtering finished",
            status=status,
            included=sum(1 for p in annotated if p.included),
            unannotated=sum(1 for p in annotated if p.included is None),
            errors=len(errors),
            retries=snapshot.retry_count,
            key_rotations=snapshot.key_rotations,
            model_fallbacks=snapshot.model_fallbacks,
        )
        return FilterResult(papers=annotated, status=status, snapshot=snapshot, errors=errors)

    async def categorize(
        self, request: CategorizeRequest, sink: ProgressSink | None = None
    ) -> FilterResult:
        """Identify the primary research category of every included paper.

        Papers marked excluded (``included`` is False) are passed through
        untouched. Papers never filtered are categorized.

        Args:
            request: Papers and run options
            sink: Receives a progress snapshot after every state change

        Returns:
            FilterResult with all papers in input order; categorized papers
            carry ``category`` and ``llm_confidence``

        Raises:
            FatalConfigError: If no API key is available
        """
        reporter, executor = self._prepare(request, sink)

        papers = request.papers
        positions = [i for i, p in enumerate(papers) if p.included is not False]
        targets = [papers[i] for i in positions]

        log.info(
            "Categorization started",
            papers=len(targets),
            model=request.model,
            batch_size=request.batch_size,
            concurrency=request.max_concurrent_batches,
        )
        reporter.start(len(targets), ["categorization"])
        if not targets:
            snapshot = reporter.finish(
                "error", "Nothing to categorize", error="No included papers to categorize"
            )
            return FilterResult(papers=list(papers), status="error", snapshot=snapshot)

        result = await executor.run(
            targets,
            "",
            "categorization",
            batch_size=request.batch_size,
            max_concurrency=request.max_concurrent_batches,
        )
        categories: list[PaperCategory | None] = [
            c if isinstance(c, PaperCategory) else None for c in result.decisions
        ]
        categorized = categorize_papers(targets, categories)
        output = list(papers)
        for position, paper in zip(positions, categorized, strict=True):
            output[position] = paper

        done = sum(1 for c in categories if c is not None)
        reporter.finalizing(done)

        status: FilterStatus
        if result.aborted:
            status = "error"
            snapshot = reporter.finish(
                status,
                "Aborted: all API keys exhausted",
                error=result.errors[0].error if result.errors else None,
            )
        elif self.control.is_stopped:
            status = "stopped"
            snapshot = reporter.finish(status, "Stopped by user")
        else:
            status = "completed"
            distinct = len({c.category for c in categories if c is not None})
            snapshot = reporter.finish(
                status, f"Completed: {done}/{len(targets)} papers in {distinct} categories"
            )

        log.info(
            "Categorization finished",
            status=status,
            categorized=done,
            errors=len(result.errors),
            retries=snapshot.retry_count,
        )
        return FilterResult(papers=output, status=status, snapshot=snapshot, errors=result.errors)

    # Control surface

    def stop(self) -> None:
        """Stop issuing batches; in-flight batches finish and are merged."""
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
        """Add an API key, waking any batch waiting for one."""
        credential = self.pool.add_credential(secret, label)
        self.control.notify_credential_added()
        return credential

    # Usage queries

    def get_all_usage_stats(self) -> list[UsageStats]:
        return self.ledger.get_all_usage_stats()

    def get_key_usage_stats(self, credential: str) -> list[UsageStats]:
        return self.ledger.get_key_usage_stats(credential)

    def get_model_usage_stats(self, model: str) -> list[UsageStats]:
        return self.ledger.get_model_usage_stats(model)

    def get_daily_summary(self) -> DailySummary:
        return self.ledger.get_daily_summary()

    def get_historical_data(self) -> list[DailySummary]:
        return self.ledger.get_historical_data()
