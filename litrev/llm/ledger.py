"""Daily LLM usage ledger per API key and model.

Counts requests and tokens for every (credential, model) pair. Counters
belong to a UTC calendar day: the first read or write after midnight archives
the finished day as a :class:`DailySummary` (the last 7 are kept) and starts
from zero again. Recent requests are also kept per pair for a sliding
one-minute window, the basis of the per-minute quota estimates.
"""

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from litrev.config.constants import DEFAULT_KEY_LABEL, RATE_WINDOW_SECONDS, USAGE_HISTORY_DAYS
from litrev.utils.logging import get_logger

log = get_logger(__name__)


def mask_key(secret: str) -> str:
    """Mask an API key for display.

    Keys of 12 characters or fewer are fully starred. Longer keys keep the
    first 8 and last 4 characters.
    """
    if len(secret) <= 12:
        return "*" * len(secret)
    return secret[:8] + "*" * (len(secret) - 12) + secret[-4:]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class UsageRecord:
    """Live counters for one (credential, model) pair."""

    request_count: int
    token_count: int
    last_used: datetime
    day_started: str
    label: str = DEFAULT_KEY_LABEL


@dataclass(frozen=True)
class UsageStats:
    """Read-only view of a usage record, safe to hand to callers."""

    key_label: str
    api_key_masked: str
    model: str
    request_count: int
    token_count: int
    last_used: datetime
    day_started: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "keyLabel": self.key_label,
            "apiKeyMasked": self.api_key_masked,
            "model": self.model,
            "requestCount": self.request_count,
            "tokenCount": self.token_count,
            "lastUsed": self.last_used.isoformat(),
            "dayStarted": self.day_started,
        }


@dataclass
class UsageTotals:
    """Request and token totals."""

    requests: int = 0
    tokens: int = 0

    def add(self, requests: int, tokens: int) -> None:
        self.requests += requests
        self.tokens += tokens

    def to_dict(self) -> dict[str, int]:
        return {"requests": self.requests, "tokens": self.tokens}


@dataclass
class KeyUsageTotals(UsageTotals):
    """Totals for one credential with a per-model breakdown."""

    models: dict[str, UsageTotals] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = super().to_dict()
        data["models"] = {model: totals.to_dict() for model, totals in self.models.items()}
        return data


@dataclass
class DailySummary:
    """Aggregated usage for one day, keyed by model and by masked credential."""

    date: str
    total_requests: int = 0
    total_tokens: int = 0
    by_model: dict[str, UsageTotals] = field(default_factory=dict)
    by_key: dict[str, KeyUsageTotals] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "totalRequests": self.total_requests,
            "totalTokens": self.total_tokens,
            "byModel": {model: totals.to_dict() for model, totals in self.by_model.items()},
            "byKey": {key: totals.to_dict() for key, totals in self.by_key.items()},
        }


class UsageLedger:
    """Thread-safe usage counters with daily rollover and a bounded history.

    The ledger is a plain object: each engine (or test) owns its own instance.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        history_days: int = USAGE_HISTORY_DAYS,
    ) -> None:
        """Initialize the ledger.

        Args:
            clock: Returns the current time; its UTC date decides the usage day
            history_days: Number of archived daily summaries to keep
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._usage: dict[str, dict[str, UsageRecord]] = {}
        self._history: deque[DailySummary] = deque(maxlen=history_days)
        # (credential, model) -> (time, tokens) of recent requests, oldest first
        self._recent: dict[tuple[str, str], deque[tuple[datetime, int]]] = {}
        self._current_day = self._today()
        log.debug("Usage ledger initialized", day=self._current_day)

    @property
    def current_day(self) -> str:
        """The active usage day (YYYY-MM-DD, UTC), after any pending rollover."""
        with self._lock:
            self._check_day_reset()
            return self._current_day

    def now(self) -> datetime:
        """Current time according to the ledger clock."""
        return self._clock()

    def _today(self) -> str:
        return self._clock().astimezone(UTC).date().isoformat()

    def _check_day_reset(self) -> None:
        """Archive and clear counters if the calendar day changed. Caller holds the lock."""
        today = self._today()
        if today == self._current_day:
            return

        log.info("Usage day changed, archiving", previous_day=self._current_day, day=today)
        self._history.append(self._build_summary())
        self._usage.clear()
        self._current_day = today

    def record_usage(
        self,
        credential: str,
        model: str,
        tokens_used: int,
        label: str | None = None,
    ) -> None:
        """Record one successful request.

        Args:
            credential: The API key secret used for the request
            model: Model name the request was sent to
            tokens_used: Tokens consumed by the request
            label: Optional display label for the credential
        """
        with self._lock:
            self._check_day_reset()

            models = self._usage.setdefault(credential, {})
            record = models.get(model)
            if record is None:
                record = UsageRecord(
                    request_count=0,
                    token_count=0,
                    last_used=self._clock(),
                    day_started=self._current_day,
                    label=label or DEFAULT_KEY_LABEL,
                )
                models[model] = record

            record.request_count += 1
            record.token_count += max(tokens_used, 0)
            record.last_used = self._clock()
            if label:
                record.label = label
            self._recent.setdefault((credential, model), deque()).append(
                (record.last_used, max(tokens_used, 0))
            )

        log.debug(
            "Usage recorded",
            key=mask_key(credential),
            model=model,
            tokens=tokens_used,
        )

    def _stats(self, credential: str, model: str, record: UsageRecord) -> UsageStats:
        return UsageStats(
            key_label=record.label,
            api_key_masked=mask_key(credential),
            model=model,
            request_count=record.request_count,
            token_count=record.token_count,
            last_used=record.last_used,
            day_started=record.day_started,
        )

    def get_all_usage_stats(self) -> list[UsageStats]:
        """Get stats for every (credential, model) pair used today."""
        with self._lock:
            self._check_day_reset()
            return [
                self._stats(credential, model, record)
                for credential, models in self._usage.items()
                for model, record in models.items()
            ]

    def get_key_usage_stats(self, credential: str) -> list[UsageStats]:
        """Get today's stats for one credential, one entry per model."""
        with self._lock:
            self._check_day_reset()
            return [
                self._stats(credential, model, record)
                for model, record in self._usage.get(credential, {}).items()
            ]

    def get_model_usage_stats(self, model: str) -> list[UsageStats]:
        """Get today's stats for one model, one entry per credential."""
        with self._lock:
            self._check_day_reset()
            return [
                self._stats(credential, model, models[model])
                for credential, models in self._usage.items()
                if model in models
            ]

    def get_pair_requests(self, credential: str, model: str) -> int:
        """Get today's request count for a single (credential, model) pair."""
        with self._lock:
            self._check_day_reset()
            record = self._usage.get(credential, {}).get(model)
            return record.request_count if record else 0

    def get_pair_window_usage(
        self, credential: str, model: str, window_seconds: float = RATE_WINDOW_SECONDS
    ) -> UsageTotals:
        """Get requests and tokens of one pair within the last ``window_seconds``.

        The window slides with the clock and ignores the usage day, so requests
        made just before midnight still count after the rollover.
        """
        cutoff = self._clock() - timedelta(seconds=window_seconds)
        totals = UsageTotals()
        with self._lock:
            recent = self._recent.get((credential, model))
            if not recent:
                return totals
            while recent and recent[0][0] <= cutoff:
                recent.popleft()
            for _, tokens in recent:
                totals.add(1, tokens)
        return totals

    def get_key_total_usage(self, credential: str) -> UsageTotals:
        """Get today's totals for one credential across all models."""
        totals = UsageTotals()
        for stats in self.get_key_usage_stats(credential):
            totals.add(stats.request_count, stats.token_count)
        return totals

    def get_model_total_usage(self, model: str) -> UsageTotals:
        """Get today's totals for one model across all credentials."""
        totals = UsageTotals()
        for stats in self.get_model_usage_stats(model):
            totals.add(stats.request_count, stats.token_count)
        return totals

    def _build_summary(self) -> DailySummary:
        """Build the summary of the live counters. Caller holds the lock."""
        summary = DailySummary(date=self._current_day)
        for credential, models in self._usage.items():
            key_totals = summary.by_key.setdefault(mask_key(credential), KeyUsageTotals())
            for model, record in models.items():
                summary.total_requests += record.request_count
                summary.total_tokens += record.token_count
                summary.by_model.setdefault(model, UsageTotals()).add(
                    record.request_count, record.token_count
                )
                key_totals.add(record.request_count, record.token_count)
                key_totals.models.setdefault(model, UsageTotals()).add(
                    record.request_count, record.token_count
                )
        return summary

    def get_daily_summary(self) -> DailySummary:
        """Get the aggregated summary of today's usage."""
        with self._lock:
            self._check_day_reset()
            return self._build_summary()

    def get_historical_data(self) -> list[DailySummary]:
        """Get archived daily summaries, oldest first."""
        with self._lock:
            self._check_day_reset()
            return list(self._history)

    def format_summary(self) -> str:
        """Render today's summary as plain text for logs and the console."""
        summary = self.get_daily_summary()
        lines = [
            f"LLM usage for {summary.date}",
            f"Total: {summary.total_requests} requests, {summary.total_tokens:,} tokens",
        ]
        if summary.by_model:
            lines.append("By model:")
            for model, totals in sorted(summary.by_model.items()):
                lines.append(f"  {model}: {totals.requests} requests, {totals.tokens:,} tokens")
        if summary.by_key:
            lines.append("By key:")
            for key, key_totals in summary.by_key.items():
                lines.append(
                    f"  {key}: {key_totals.requests} requests, {key_totals.tokens:,} tokens"
                )
                for model, totals in sorted(key_totals.models.items()):
                    lines.append(f"    {model}: {totals.requests} requests")
        return "\n".join(lines)

    def force_archive(self) -> None:
        """Archive the live counters now and start a fresh day."""
        with self._lock:
            self._history.append(self._build_summary())
            self._usage.clear()
            self._current_day = self._today()
        log.info("Usage data archived on request")

    def reset_all(self) -> None:
        """Drop all live counters and history."""
        with self._lock:
            self._usage.clear()
            self._history.clear()
            self._recent.clear()
            self._current_day = self._today()
        log.info("Usage data reset")
