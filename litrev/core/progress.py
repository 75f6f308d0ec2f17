"""Progress snapshots and reporting.

The reporter builds an immutable :class:`ProgressSnapshot` after every state
change and hands it straight to a sink. Nothing is buffered.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from litrev.llm.pool import CredentialPool, KeyQuotaReport
from litrev.utils.logging import get_logger

log = get_logger(__name__)

RunStatus = Literal["running", "paused", "completed", "stopped", "error"]
Phase = Literal["inclusion", "exclusion", "categorization", "finalizing", "drafting"]


@dataclass(frozen=True)
class StreamStatus:
    """Live state of one streaming request."""

    request_id: str
    key_label: str
    model_name: str
    tokens_received: int = 0
    stream_speed: float = 0.0  # tokens per second
    status: Literal["streaming", "completed", "error"] = "streaming"

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestId": self.request_id,
            "keyLabel": self.key_label,
            "modelName": self.model_name,
            "tokensReceived": self.tokens_received,
            "streamSpeed": round(self.stream_speed, 1),
            "status": self.status,
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """Immutable view of a run at one point in time."""

    status: RunStatus
    current_task: str
    progress: float  # 0-100
    phase: Phase | None
    total_papers: int
    processed_papers: int
    current_batch: int
    total_batches: int
    time_elapsed_ms: int
    estimated_time_remaining_ms: int | None
    current_model: str | None
    healthy_keys_count: int
    retry_count: int
    key_rotations: int
    model_fallbacks: int
    fallback_batches: int = 0
    api_key_quotas: tuple[KeyQuotaReport, ...] = ()
    active_streams: tuple[StreamStatus, ...] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys used on the wire."""
        data: dict[str, Any] = {
            "status": self.status,
            "currentTask": self.current_task,
            "progress": round(self.progress, 1),
            "phase": self.phase,
            "totalPapers": self.total_papers,
            "processedPapers": self.processed_papers,
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "timeElapsedMs": self.time_elapsed_ms,
            "estimatedTimeRemainingMs": self.estimated_time_remaining_ms,
            "currentModel": self.current_model,
            "healthyKeysCount": self.healthy_keys_count,
            "retryCount": self.retry_count,
            "keyRotations": self.key_rotations,
            "modelFallbacks": self.model_fallbacks,
            "fallbackBatches": self.fallback_batches,
            "apiKeyQuotas": [q.to_dict() for q in self.api_key_quotas],
        }
        if self.active_streams is not None:
            data["activeStreams"] = [s.to_dict() for s in self.active_streams]
        if self.error is not None:
            data["error"] = self.error
        return data


class ProgressSink(Protocol):
    """Receives every snapshot as soon as it is built."""

    def emit(self, snapshot: ProgressSnapshot) -> None: ...


class CallbackSink:
    """Adapts a plain callable to :class:`ProgressSink`."""

    def __init__(self, callback: Callable[[ProgressSnapshot], None]) -> None:
        self.callback = callback

    def emit(self, snapshot: ProgressSnapshot) -> None:
        self.callback(snapshot)


class QueueSink:
    """Pushes snapshots into an asyncio queue for a consumer task.

    A bounded queue drops the oldest snapshot when full; only the latest
    state matters to observers.
    """

    def __init__(self, queue: asyncio.Queue[ProgressSnapshot] | None = None) -> None:
        self.queue: asyncio.Queue[ProgressSnapshot] = (
            queue if queue is not None else asyncio.Queue()
        )

    def emit(self, snapshot: ProgressSnapshot) -> None:
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(snapshot)


@dataclass
class _Counters:
    retry_count: int = 0
    key_rotations: int = 0
    model_fallbacks: int = 0
    fallback_batches: int = 0


class ProgressReporter:
    """Tracks run state and emits snapshots to a sink."""

    def __init__(
        self,
        sink: ProgressSink | None,
        pool: CredentialPool,
        models: list[str] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the reporter.

        Args:
            sink: Snapshot receiver; None disables emission
            pool: Credential pool, source of key health and quota rows
            models: Models considered when reporting key health
            monotonic: Clock for elapsed time and ETA
        """
        self.sink = sink
        self.pool = pool
        self.models = models
        self._monotonic = monotonic
        self._start = monotonic()

        self.status: RunStatus = "running"
        self.current_task = ""
        self.phase: Phase | None = None
        self.phases: list[Phase] = []
        self.total_papers = 0
        self.processed_papers = 0
        self.current_batch = 0
        self.total_batches = 0
        self.current_model: str | None = None
        self.counters = _Counters()
        self.error: str | None = None
        self._streams: dict[str, StreamStatus] = {}
        self._stream_started: dict[str, float] = {}
        self._tracks_streams = False
        self.last_snapshot: ProgressSnapshot | None = None
        self._fraction_floor = 0.0

    # Run structure

    def start(self, total_papers: int, phases: list[Phase]) -> None:
        self._start = self._monotonic()
        self.total_papers = total_papers
        self.phases = list(phases)
        self.phase = None
        self.processed_papers = 0
        self._fraction_floor = 0.0
        self.status = "running"
        self.current_task = "Starting"
        self.emit()

    def start_phase(self, phase: Phase, total_batches: int) -> None:
        self.phase = phase
        self.total_batches = total_batches
        self.current_batch = 0
        self.processed_papers = 0
        self.current_task = f"{phase.capitalize()} phase: {total_batches} batches"
        self.emit()

    def finalizing(self, processed_papers: int) -> None:
        """Enter the merge step with the number of papers that got a final verdict."""
        self.phase = "finalizing"
        self.total_batches = 0
        self.current_batch = 0
        self.processed_papers = min(processed_papers, self.total_papers)
        self.current_task = "Merging phase decisions"
        self.emit()

    def batch_started(self, index: int, size: int, model: str | None = None) -> None:
        self.current_batch = index + 1
        if model:
            self.current_model = model
        self.current_task = f"Processing batch {index + 1}/{self.total_batches} ({size} papers)"
        self.emit()

    def batch_completed(self, index: int, size: int, model: str | None = None) -> None:
        self.processed_papers = min(self.processed_papers + size, self.total_papers)
        if model:
            self.current_model = model
        self.current_task = f"Completed batch {index + 1}/{self.total_batches}"
        self.emit()

    def batch_failed(self, index: int, error: str) -> None:
        self.current_task = f"Batch {index + 1}/{self.total_batches} failed: {error}"
        self.emit()

    # Recovery counters

    def retry(self, detail: str) -> None:
        self.counters.retry_count += 1
        self.current_task = detail
        self.emit()

    def key_rotation(self, detail: str) -> None:
        self.counters.key_rotations += 1
        self.current_task = detail
        self.emit()

    def model_fallback(self, model: str) -> None:
        self.counters.model_fallbacks += 1
        self.current_model = model
        self.current_task = f"Falling back to model {model}"
        self.emit()

    def fallback_applied(self, detail: str) -> None:
        self.counters.fallback_batches += 1
        self.current_task = detail
        self.emit()

    def notify(self, detail: str, error: str | None = None) -> None:
        """Emit an informational (or error) update without changing counters."""
        self.current_task = detail
        if error is not None:
            self.error = error
        self.emit()

    # Streams

    def stream_started(self, request_id: str, key_label: str, model: str) -> None:
        self._tracks_streams = True
        self._stream_started[request_id] = self._monotonic()
        self._streams[request_id] = StreamStatus(request_id, key_label, model)
        self.current_model = model
        self.emit()

    def stream_progress(self, request_id: str, tokens_received: int) -> None:
        stream = self._streams.get(request_id)
        if stream is None:
            return
        elapsed = self._monotonic() - self._stream_started[request_id]
        speed = tokens_received / elapsed if elapsed > 0 else 0.0
        self._streams[request_id] = StreamStatus(
            stream.request_id,
            stream.key_label,
            stream.model_name,
            tokens_received=tokens_received,
            stream_speed=speed,
        )
        self.emit()

    def stream_finished(self, request_id: str, success: bool = True) -> None:
        stream = self._streams.pop(request_id, None)
        self._stream_started.pop(request_id, None)
        if stream is None:
            return
        log.debug(
            "Stream finished",
            request_id=request_id,
            tokens=stream.tokens_received,
            status="completed" if success else "error",
        )
        self.emit()

    # Terminal states

    def paused(self) -> None:
        self.status = "paused"
        self.current_task = "Paused"
        self.emit()

    def resumed(self) -> None:
        self.status = "running"
        self.current_task = "Resumed"
        self.error = None
        self.emit()

    def awaiting_credential(self, detail: str, error: str) -> None:
        """Report that work is blocked until an operator adds an API key."""
        self.status = "error"
        self.current_task = detail
        self.error = error
        self.emit()

    def finish(self, status: RunStatus, detail: str, error: str | None = None) -> ProgressSnapshot:
        self.status = status
        self.current_task = detail
        if error is not None:
            self.error = error
        return self.emit()

    # Snapshot

    def _fraction_done(self) -> float:
        if self.status == "completed":
            return 1.0
        if not self.total_papers or not self.phases or self.phase is None:
            return 0.0
        if self.phase not in self.phases:
            # Finalizing: processed_papers counts papers with a final verdict
            return min(self.processed_papers / self.total_papers, 1.0)
        phase_index = self.phases.index(self.phase)
        done = phase_index * self.total_papers + self.processed_papers
        return min(done / (self.total_papers * len(self.phases)), 1.0)

    def snapshot(self) -> ProgressSnapshot:
        """Build a snapshot of the current state. Progress never goes backwards."""
        elapsed = self._monotonic() - self._start
        fraction = max(self._fraction_done(), self._fraction_floor)
        self._fraction_floor = fraction
        eta: int | None = None
        if 0 < fraction < 1:
            eta = int(elapsed / fraction * (1 - fraction) * 1000)
        elif fraction >= 1:
            eta = 0

        return ProgressSnapshot(
            status=self.status,
            current_task=self.current_task,
            progress=fraction * 100,
            phase=self.phase,
            total_papers=self.total_papers,
            processed_papers=self.processed_papers,
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            time_elapsed_ms=int(elapsed * 1000),
            estimated_time_remaining_ms=eta,
            current_model=self.current_model,
            healthy_keys_count=self.pool.healthy_credentials_count(self.models),
            retry_count=self.counters.retry_count,
            key_rotations=self.counters.key_rotations,
            model_fallbacks=self.counters.model_fallbacks,
            fallback_batches=self.counters.fallback_batches,
            api_key_quotas=tuple(self.pool.quota_report(self.models)),
            active_streams=tuple(self._streams.values()) if self._tracks_streams else None,
            error=self.error,
        )

    def emit(self) -> ProgressSnapshot:
        """Build a snapshot and deliver it. Sink failures are logged, never raised."""
        snapshot = self.snapshot()
        self.last_snapshot = snapshot
        if self.sink is not None:
            try:
                self.sink.emit(snapshot)
            except Exception as e:
                log.warning("Progress sink failed", error=str(e), error_type=type(e).__name__)
        return snapshot
