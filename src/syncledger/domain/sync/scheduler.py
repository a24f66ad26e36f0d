"""Periodic sync passes."""

from __future__ import annotations

import asyncio
import contextlib
from logging import getLogger
from typing import TYPE_CHECKING, Final

from syncledger.domain.errors import SyncBusyError, SyncFailure

if TYPE_CHECKING:
    from .orchestrator import SyncOrchestrator
    from .report import SyncReport

log = getLogger(__name__)

MIN_INTERVAL_SECONDS: Final[float] = 10.0
DEFAULT_INTERVAL_SECONDS: Final[float] = 30.0


class AutoSyncScheduler:
    """Re-run sync passes on a fixed interval.

    Busy and failed passes are logged and the loop carries on; the next tick
    retries from fetching. Failing event subscribers are logged the same way.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval < MIN_INTERVAL_SECONDS:
            log.warning(
                f"Auto-sync interval {interval}s is below the {MIN_INTERVAL_SECONDS}s floor; "
                "using the floor instead"
            )
            interval = MIN_INTERVAL_SECONDS
        self.orchestrator = orchestrator
        self.interval = interval
        self.passes = 0
        self.failures = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="auto-sync")
        log.info(f"Auto-sync every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def trigger(self) -> SyncReport:
        """Run a pass now; raises ``SyncBusyError`` while one is in flight."""

        return await self.orchestrator.run_pass()

    async def tick(self) -> SyncReport | None:
        try:
            report = await self.orchestrator.run_pass()
        except SyncBusyError:
            log.info("Skipping scheduled sync; a pass is already running")
            return None
        except SyncFailure as failure:
            self.failures += 1
            level = "retry next tick" if failure.retryable else "needs attention"
            log.warning(f"Scheduled sync failed ({failure.reason}, {level}): {failure}")
            return None
        except ExceptionGroup as handler_errors:
            # Raised by failing event subscribers.
            self.failures += 1
            log.error(f"Sync event handlers failed during a scheduled pass: {handler_errors!r}")
            return None
        self.passes += 1
        return report

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)
