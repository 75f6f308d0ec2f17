"""Run control signals shared between a caller and a running job."""

import asyncio

from litrev.utils.logging import get_logger

log = get_logger(__name__)


class RunControl:
    """Stop, pause/resume and "credential added" signals for one run.

    Stop prevents new work from starting; work already in flight finishes.
    Pause holds new work until resume. Stop also releases anything waiting on
    pause or on a new credential.
    """

    def __init__(self) -> None:
        self._stopped = asyncio.Event()
        self._running = asyncio.Event()
        self._running.set()
        self._credential_event = asyncio.Event()

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set() and not self.is_stopped

    def stop(self) -> None:
        if self.is_stopped:
            return
        log.info("Stop requested")
        self._stopped.set()
        self._running.set()
        self._credential_event.set()

    def pause(self) -> None:
        if self.is_stopped:
            return
        log.info("Pause requested")
        self._running.clear()

    def resume(self) -> None:
        log.info("Resume requested")
        self._running.set()

    async def wait_if_paused(self) -> None:
        """Block while paused. Returns immediately when running or stopped."""
        await self._running.wait()

    def notify_credential_added(self) -> None:
        """Wake everything waiting in :meth:`wait_for_credential`."""
        event, self._credential_event = self._credential_event, asyncio.Event()
        event.set()

    async def wait_for_credential(self) -> bool:
        """Wait until a credential is added or the run is stopped.

        Returns:
            True if a credential was added, False if the run was stopped
        """
        if self.is_stopped:
            return False
        await self._credential_event.wait()
        return not self.is_stopped
