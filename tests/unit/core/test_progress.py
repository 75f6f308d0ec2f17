"""Tests for progress reporting."""

import asyncio

import pytest

from litrev.core.progress import CallbackSink, ProgressReporter, QueueSink

MODELS = ["gemini-2.5-flash-lite"]


@pytest.fixture
def snapshots():
    return []


@pytest.fixture
def reporter(pool, monotonic, snapshots):
    return ProgressReporter(
        CallbackSink(snapshots.append), pool, models=MODELS, monotonic=monotonic
    )


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_every_change_emits(self, reporter, snapshots):
        """Test that each state change reaches the sink immediately."""
        reporter.start(40, ["inclusion"])
        reporter.start_phase("inclusion", 2)
        reporter.batch_started(0, 20)
        reporter.batch_completed(0, 20)

        assert len(snapshots) == 4
        assert snapshots[-1].processed_papers == 20
        assert snapshots[-1].current_batch == 1
        assert snapshots[-1].total_batches == 2

    def test_progress_spans_phases(self, reporter, snapshots, monotonic):
        """Test overall progress across two phases and the ETA."""
        reporter.start(10, ["inclusion", "exclusion"])
        reporter.start_phase("inclusion", 1)
        reporter.batch_completed(0, 10)
        reporter.start_phase("exclusion", 1)
        monotonic.advance(4)
        reporter.batch_completed(0, 5)

        last = snapshots[-1]
        assert last.progress == pytest.approx(75.0)
        assert last.time_elapsed_ms == 4000
        assert last.estimated_time_remaining_ms == pytest.approx(1333, abs=1)

    def test_finalizing_reports_papers_with_verdict(self, reporter):
        """Test that the merge step keeps the processed count of a full run."""
        reporter.start(10, ["inclusion"])
        reporter.start_phase("inclusion", 1)
        reporter.batch_completed(0, 10)
        reporter.finalizing(10)

        snapshot = reporter.finish("completed", "Done")
        assert snapshot.processed_papers == 10
        assert snapshot.phase == "finalizing"
        assert snapshot.progress == pytest.approx(100.0)

    def test_stopped_run_shows_partial_progress(self, reporter):
        """Test that a stop after one of three batches is not reported as done."""
        reporter.start(30, ["inclusion"])
        reporter.start_phase("inclusion", 3)
        reporter.batch_completed(0, 10)
        reporter.finalizing(10)

        snapshot = reporter.finish("stopped", "Stopped by user")
        assert snapshot.processed_papers == 10
        assert snapshot.progress == pytest.approx(100 / 3)

    def test_progress_never_decreases(self, reporter, snapshots):
        """Test that fewer final verdicts than phase work keeps the progress reached."""
        reporter.start(10, ["inclusion", "exclusion"])
        reporter.start_phase("inclusion", 1)
        reporter.batch_completed(0, 10)
        reporter.start_phase("exclusion", 2)
        reporter.batch_completed(0, 5)
        reporter.finalizing(5)

        assert snapshots[-1].processed_papers == 5
        assert snapshots[-1].progress == pytest.approx(75.0)
        progress = [s.progress for s in snapshots]
        assert progress == sorted(progress)

    def test_counters(self, reporter):
        """Test the recovery counters."""
        reporter.retry("again")
        reporter.key_rotation("rotated")
        reporter.model_fallback("gemini-2.0-flash-lite")
        reporter.fallback_applied("rule based")

        snapshot = reporter.snapshot()
        assert snapshot.retry_count == 1
        assert snapshot.key_rotations == 1
        assert snapshot.model_fallbacks == 1
        assert snapshot.fallback_batches == 1
        assert snapshot.current_model == "gemini-2.0-flash-lite"

    def test_health_from_pool(self, reporter, pool):
        """Test that key health is read from the pool."""
        pool.mark_disabled(pool.credentials[0], MODELS[0], "bad key")

        snapshot = reporter.snapshot()

        assert snapshot.healthy_keys_count == 1
        assert [q.status for q in snapshot.api_key_quotas] == ["invalid", "active"]

    def test_awaiting_credential_and_resume(self, reporter, snapshots):
        """Test the blocked state and its recovery."""
        reporter.awaiting_credential("Add a key", "All API keys exhausted")
        assert snapshots[-1].status == "error"
        assert snapshots[-1].error == "All API keys exhausted"

        reporter.resumed()
        assert snapshots[-1].status == "running"
        assert snapshots[-1].error is None

    def test_finish_returns_snapshot(self, reporter):
        """Test the terminal snapshot."""
        snapshot = reporter.finish("completed", "Done")

        assert snapshot.status == "completed"
        assert snapshot.progress == 100.0
        assert snapshot.estimated_time_remaining_ms == 0
        assert reporter.last_snapshot is snapshot

    def test_sink_errors_are_swallowed(self, pool):
        """Test that a failing sink does not break the run."""

        def broken(_snapshot):
            raise RuntimeError("display gone")

        reporter = ProgressReporter(CallbackSink(broken), pool, models=MODELS)

        snapshot = reporter.finish("completed", "Done")

        assert snapshot.status == "completed"


class TestStreams:
    """Tests for stream status."""

    def test_active_streams_omitted_without_streaming(self, reporter):
        """Test that filtering snapshots carry no stream list."""
        data = reporter.snapshot().to_dict()

        assert "activeStreams" not in data
        assert "error" not in data

    def test_stream_lifecycle(self, reporter, monotonic):
        """Test tokens and speed of a running stream."""
        reporter.stream_started("req1", "Key 1", "gemini-2.5-pro")
        monotonic.advance(2)
        reporter.stream_progress("req1", 100)

        stream = reporter.snapshot().active_streams[0]
        assert stream.tokens_received == 100
        assert stream.stream_speed == pytest.approx(50.0)
        assert stream.to_dict()["modelName"] == "gemini-2.5-pro"

        reporter.stream_finished("req1")
        assert reporter.snapshot().active_streams == ()
        assert reporter.snapshot().to_dict()["activeStreams"] == []

    def test_progress_for_unknown_stream_ignored(self, reporter, snapshots):
        """Test that late updates for finished streams are dropped."""
        reporter.stream_progress("missing", 10)

        assert snapshots == []


class TestSnapshotSerialization:
    """Tests for ProgressSnapshot.to_dict."""

    def test_camel_case_keys(self, reporter):
        """Test the wire keys."""
        reporter.start(5, ["inclusion"])
        data = reporter.snapshot().to_dict()

        for key in (
            "status",
            "currentTask",
            "progress",
            "totalPapers",
            "processedPapers",
            "currentBatch",
            "totalBatches",
            "timeElapsedMs",
            "estimatedTimeRemainingMs",
            "currentModel",
            "healthyKeysCount",
            "retryCount",
            "keyRotations",
            "modelFallbacks",
            "apiKeyQuotas",
        ):
            assert key in data
        assert data["apiKeyQuotas"][0]["label"] == "Key 1"


class TestQueueSink:
    """Tests for QueueSink."""

    @pytest.mark.asyncio
    async def test_bounded_queue_keeps_latest(self, pool):
        """Test that a full queue drops its oldest snapshot."""
        sink = QueueSink(asyncio.Queue(maxsize=2))
        reporter = ProgressReporter(sink, pool, models=MODELS)

        reporter.notify("one")
        reporter.notify("two")
        reporter.notify("three")

        tasks = [sink.queue.get_nowait().current_task for _ in range(sink.queue.qsize())]
        assert tasks == ["two", "three"]
