"""Tests for the retry controller."""

import asyncio

import pytest
from conftest import KEY_THREE, no_sleep

from litrev.core.control import RunControl
from litrev.core.progress import ProgressReporter
from litrev.exceptions import (
    AllKeysExhaustedError,
    AuthError,
    LLMError,
    MalformedResponseError,
    QuotaExhaustedError,
    RateLimitError,
    StoppedByCaller,
    TransientNetworkError,
)
from litrev.llm.pool import Disabled, Exhausted, RateLimited
from litrev.llm.retry import RetryController
from litrev.llm.selector import AutoStrategy, Selector

LITE = "gemini-2.5-flash-lite"
LITE_2 = "gemini-2.0-flash-lite"
CHAIN = [LITE, LITE_2]


@pytest.fixture
def reporter(pool):
    return ProgressReporter(None, pool, models=CHAIN)


@pytest.fixture
def control():
    return RunControl()


def make_controller(
    pool, reporter, control, llm_config, strategy="fail", attempts=3, sleep=no_sleep
):
    return RetryController(
        Selector(pool, AutoStrategy(CHAIN)),
        pool,
        reporter,
        control,
        llm_config,
        retry_attempts=attempts,
        fallback_strategy=strategy,
        sleep=sleep,
    )


class Script:
    """Call that fails according to a list of outcomes, then succeeds."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.selections = []

    async def __call__(self, selection):
        self.selections.append((selection.credential.label, selection.model.name))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
        return "ok"


class TestBackoff:
    """Tests for backoff delays."""

    def test_delay_grows_and_is_capped(self, pool, reporter, control, llm_config):
        """Test exponential growth with a hard cap."""
        llm_config.backoff_base = 1.0
        llm_config.backoff_max = 5.0
        controller = make_controller(pool, reporter, control, llm_config)

        first = controller.backoff_delay(1)
        third = controller.backoff_delay(3)

        assert 1.0 <= first <= 2.0
        assert 4.0 <= third <= 5.0
        assert controller.backoff_delay(10) == 5.0


class TestExecute:
    """Tests for RetryController.execute."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, pool, reporter, control, llm_config):
        """Test the happy path."""
        controller = make_controller(pool, reporter, control, llm_config)
        call = Script()

        assert await controller.execute(call) == "ok"
        assert call.selections == [("Key 1", LITE)]
        assert reporter.counters.retry_count == 0

    @pytest.mark.asyncio
    async def test_rate_limit_rotates_key(self, pool, reporter, control, llm_config):
        """Test that a rate limit cools the pair down and moves to another key."""
        controller = make_controller(pool, reporter, control, llm_config)
        call = Script(RateLimitError(retry_after=30))

        assert await controller.execute(call) == "ok"

        assert call.selections == [("Key 1", LITE), ("Key 2", LITE)]
        assert isinstance(pool.get_state(pool.credentials[0], LITE).health, RateLimited)
        assert reporter.counters.retry_count == 1
        assert reporter.counters.key_rotations == 1
        assert reporter.counters.model_fallbacks == 0

    @pytest.mark.asyncio
    async def test_quota_falls_back_to_next_model(self, pool, reporter, control, llm_config):
        """Test escalation once every key of a model is exhausted."""
        controller = make_controller(pool, reporter, control, llm_config)
        call = Script(QuotaExhaustedError(), QuotaExhaustedError())

        assert await controller.execute(call) == "ok"

        assert call.selections[-1] == ("Key 1", LITE_2)
        assert isinstance(pool.get_state(pool.credentials[1], LITE).health, Exhausted)
        assert reporter.counters.model_fallbacks == 1
        assert reporter.last_snapshot.current_model == LITE_2

    @pytest.mark.asyncio
    async def test_auth_error_disables_pair(self, pool, reporter, control, llm_config):
        """Test that a rejected key is disabled."""
        controller = make_controller(pool, reporter, control, llm_config)
        call = Script(AuthError("API key not valid"))

        await controller.execute(call)

        assert isinstance(pool.get_state(pool.credentials[0], LITE).health, Disabled)

    @pytest.mark.asyncio
    async def test_transient_retries_same_pair(self, pool, reporter, control, llm_config):
        """Test that transient failures back off on the same pair."""
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        controller = make_controller(pool, reporter, control, llm_config, sleep=record_sleep)
        call = Script(TransientNetworkError("503"), MalformedResponseError("bad json"))

        assert await controller.execute(call) == "ok"

        assert call.selections == [("Key 1", LITE)] * 3
        assert len(delays) == 2
        assert reporter.counters.retry_count == 2
        assert pool.is_healthy(pool.credentials[0], LITE)

    @pytest.mark.asyncio
    async def test_transient_budget_then_rotation(self, pool, reporter, control, llm_config):
        """Test rotating away after the transient retry budget is spent."""
        controller = make_controller(pool, reporter, control, llm_config, attempts=1)
        call = Script(LLMError("boom"), LLMError("boom"))

        assert await controller.execute(call) == "ok"

        assert call.selections == [("Key 1", LITE), ("Key 1", LITE), ("Key 2", LITE)]

    @pytest.mark.asyncio
    async def test_fail_strategy_raises(self, pool, reporter, control, llm_config):
        """Test that the fail strategy surfaces exhaustion."""
        controller = make_controller(pool, reporter, control, llm_config, attempts=10)
        call = Script(*[QuotaExhaustedError()] * 4)

        with pytest.raises(AllKeysExhaustedError):
            await controller.execute(call)

        assert len(call.selections) == 4

    @pytest.mark.asyncio
    async def test_rotations_bounded_by_retry_attempts(self, pool, reporter, control, llm_config):
        """Test that a call gives up after retry_attempts rotations."""
        controller = make_controller(pool, reporter, control, llm_config, attempts=1)
        call = Script(*[RateLimitError()] * 4)

        with pytest.raises(AllKeysExhaustedError):
            await controller.execute(call)

        assert len(call.selections) == 2

    @pytest.mark.asyncio
    async def test_rule_based_fallback(self, pool, reporter, control, llm_config):
        """Test that rule_based returns the fallback result."""
        controller = make_controller(pool, reporter, control, llm_config, strategy="rule_based")
        call = Script(*[AuthError("revoked")] * 4)

        result = await controller.execute(call, fallback=lambda: "fallback")

        assert result == "fallback"
        assert reporter.counters.fallback_batches == 1

    @pytest.mark.asyncio
    async def test_rule_based_without_fallback_raises(self, pool, reporter, control, llm_config):
        """Test that rule_based needs a fallback callable to recover."""
        controller = make_controller(pool, reporter, control, llm_config, strategy="rule_based")
        call = Script(*[AuthError("revoked")] * 4)

        with pytest.raises(AllKeysExhaustedError):
            await controller.execute(call)

    @pytest.mark.asyncio
    async def test_prompt_user_waits_for_new_key(self, pool, reporter, control, llm_config):
        """Test that prompt_user blocks until a key is added, then continues."""
        controller = make_controller(pool, reporter, control, llm_config, strategy="prompt_user")
        for credential in pool.credentials:
            for model in CHAIN:
                pool.mark_exhausted(credential, model)
        call = Script()

        task = asyncio.create_task(controller.execute(call))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert not task.done()
        assert control.is_paused
        assert reporter.status == "error"

        pool.add_credential(KEY_THREE)
        control.notify_credential_added()

        assert await task == "ok"
        assert call.selections == [("Key 3", LITE)]
        assert not control.is_paused
        assert reporter.status == "running"

    @pytest.mark.asyncio
    async def test_prompt_user_stop_while_waiting(self, pool, reporter, control, llm_config):
        """Test that stopping releases a call waiting for a key."""
        controller = make_controller(pool, reporter, control, llm_config, strategy="prompt_user")
        for credential in pool.credentials:
            for model in CHAIN:
                pool.mark_disabled(credential, model, "revoked")

        task = asyncio.create_task(controller.execute(Script()))
        await asyncio.sleep(0)
        control.stop()

        with pytest.raises(StoppedByCaller):
            await task
