"""Retry, key rotation and fallback handling for LLM calls."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

from litrev.config.settings import FallbackStrategyName, LLMConfig
from litrev.core.control import RunControl
from litrev.core.progress import ProgressReporter
from litrev.exceptions import (
    AllKeysExhaustedError,
    AuthError,
    LLMError,
    QuotaExhaustedError,
    RateLimitError,
    StoppedByCaller,
)
from litrev.llm.pool import CredentialPool
from litrev.llm.selector import PairKey, Selection, SelectionMode, Selector
from litrev.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

FailureKind = Literal["rate_limit", "quota", "auth", "transient"]


class RetryController:
    """Wraps a call with failure classification, rotation and a terminal fallback.

    - Rate limit: cool the pair down and rotate to another pair.
    - Quota exhausted: mark the pair exhausted for the day and rotate.
    - Auth: disable the pair and rotate.
    - Transient (network, timeout, malformed reply, other provider errors):
      back off and retry the same pair, then rotate away from it.

    Rotations per call are bounded by ``retry_attempts``. When no pair is
    left the ``fallback_strategy`` decides what happens.
    """

    def __init__(
        self,
        selector: Selector,
        pool: CredentialPool,
        reporter: ProgressReporter,
        control: RunControl,
        llm_config: LLMConfig,
        retry_attempts: int,
        fallback_strategy: FallbackStrategyName,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.selector = selector
        self.pool = pool
        self.reporter = reporter
        self.control = control
        self.retry_attempts = retry_attempts
        self.fallback_strategy = fallback_strategy
        self.rate_limit_cooldown = llm_config.rate_limit_cooldown
        self.backoff_base = llm_config.backoff_base
        self.backoff_max = llm_config.backoff_max
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter for the given attempt (1-based)."""
        delay = self.backoff_base * 2 ** (attempt - 1) + random.uniform(0, self.backoff_base)
        return min(delay, self.backoff_max)

    def _handle_failure(self, selection: Selection, error: LLMError) -> FailureKind:
        """Apply the health transition for a failed pair and return the failure kind."""
        credential, model = selection.credential, selection.model.name
        if isinstance(error, RateLimitError):
            cooldown = error.retry_after or self.rate_limit_cooldown
            self.pool.mark_rate_limited(credential, model, cooldown)
            return "rate_limit"
        if isinstance(error, QuotaExhaustedError):
            self.pool.mark_exhausted(credential, model)
            return "quota"
        if isinstance(error, AuthError):
            self.pool.mark_disabled(credential, model, str(error))
            return "auth"
        return "transient"

    async def execute(
        self,
        call: Callable[[Selection], Awaitable[T]],
        fallback: Callable[[], T] | None = None,
        mode: SelectionMode = "auto",
        requested_model: str | None = None,
        label: str = "request",
    ) -> T:
        """Run ``call`` on a selected pair, recovering from provider failures.

        Args:
            call: Performs the request on the given pair
            fallback: Produces the rule-based result when every pair is used up;
                without it ``rule_based`` behaves like ``fail``
            mode: Selection mode
            requested_model: Model for manual mode
            label: Name of the unit of work, for progress messages

        Returns:
            The call's result, or the fallback result

        Raises:
            AllKeysExhaustedError: No pair left and the strategy does not recover
            StoppedByCaller: Stopped while waiting for a new credential
        """
        exclude: set[PairKey] = set()
        rotations = 0
        transient_attempts = 0
        selection: Selection | None = None

        while True:
            if selection is None:
                try:
                    selection = self.selector.select(mode, requested_model, exclude)
                except AllKeysExhaustedError as e:
                    result = await self._exhausted(e, fallback, label)
                    if result is not None:
                        return result[0]
                    exclude.clear()
                    rotations = 0
                    continue

            try:
                return await call(selection)
            except AllKeysExhaustedError:
                raise
            except LLMError as e:
                kind = self._handle_failure(selection, e)
                log.warning(
                    "LLM call failed",
                    unit=label,
                    key=selection.credential.label,
                    model=selection.model.name,
                    kind=kind,
                    error=str(e),
                )

                if kind == "transient":
                    transient_attempts += 1
                    if transient_attempts <= self.retry_attempts:
                        self.reporter.retry(
                            f"Retrying {label} ({transient_attempts}/{self.retry_attempts})"
                        )
                        await self._sleep(self.backoff_delay(transient_attempts))
                        continue

                transient_attempts = 0
                exclude.add(selection.key)
                previous = selection
                selection = None

                rotations += 1
                if rotations > self.retry_attempts:
                    result = await self._exhausted(
                        AllKeysExhaustedError(f"Retry attempts exhausted for {label}"),
                        fallback,
                        label,
                    )
                    if result is not None:
                        return result[0]
                    exclude.clear()
                    rotations = 0
                    continue

                try:
                    selection = self.selector.select(mode, requested_model, exclude)
                except AllKeysExhaustedError:
                    continue

                self.reporter.retry(f"Retrying {label} after {kind.replace('_', ' ')}")
                if selection.model.name != previous.model.name:
                    self.reporter.model_fallback(selection.model.name)
                else:
                    self.reporter.key_rotation(
                        f"Rotated from {previous.credential.label} to {selection.credential.label}"
                    )

    async def _exhausted(
        self,
        error: AllKeysExhaustedError,
        fallback: Callable[[], T] | None,
        label: str,
    ) -> tuple[T] | None:
        """Apply the fallback strategy.

        Returns:
            ``(result,)`` when a fallback result is produced, None to try again
            with a freshly added credential
        """
        log.warning("No usable API key left", unit=label, strategy=self.fallback_strategy)

        if self.fallback_strategy == "rule_based" and fallback is not None:
            self.reporter.fallback_applied(f"Rule-based fallback applied to {label}")
            return (fallback(),)

        if self.fallback_strategy == "prompt_user":
            self.control.pause()
            self.reporter.awaiting_credential(
                f"All API keys exhausted while processing {label}. Add a new API key to continue.",
                str(error),
            )
            if not await self.control.wait_for_credential():
                raise StoppedByCaller()
            self.control.resume()
            self.reporter.resumed()
            log.info("Resuming with new API key", unit=label)
            return None

        raise error
