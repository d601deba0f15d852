"""Periodic refresh of the store while a session is active."""

import asyncio
from contextlib import suppress
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Set

from loguru import logger

from ..config import settings
from ..storage import FetchResult
from .store import DashboardStore


class FlightResult(NamedTuple):
    ran: bool
    value: Any = None


class SingleFlight:
    """Runs at most one call at a time; calls made meanwhile are skipped."""

    def __init__(self):
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> FlightResult:
        if self._lock.locked():
            return FlightResult(False)
        async with self._lock:
            return FlightResult(True, await func(*args))


class SyncLoop:
    """Ticks every `tick_seconds`; every `interval_ticks` ticks re-fetches everything.

    The fetch runs in a worker thread and is not awaited by the ticker, so
    the countdown keeps moving while a slow request is outstanding; the
    single-flight guard drops ticks that land during a fetch.
    """

    def __init__(
        self,
        store: DashboardStore,
        interval_ticks: Optional[int] = None,
        tick_seconds: Optional[float] = None,
    ):
        self.store = store
        self.interval_ticks = interval_ticks or settings.sync_interval_ticks
        self.tick_seconds = settings.tick_seconds if tick_seconds is None else tick_seconds
        self.countdown = self.interval_ticks
        self._flight = SingleFlight()
        self._task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fetching(self) -> bool:
        return self._flight.in_flight

    async def refresh(self) -> Optional[FetchResult]:
        """Fetch now unless a fetch is already running; None when skipped."""
        result = await self._flight.run(asyncio.to_thread, self.store.refresh)
        if not result.ran:
            logger.debug("Refresh skipped, another fetch is in flight")
            return None
        self.countdown = self.interval_ticks
        return result.value

    def _tick(self) -> None:
        if self.countdown <= 1:
            self.countdown = self.interval_ticks
            task = asyncio.create_task(self.refresh())
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        else:
            self.countdown -= 1

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self._tick()

    def start(self) -> None:
        """Start ticking; must be called from a running event loop."""
        if self.running:
            return
        self.countdown = self.interval_ticks
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(
            f"Refresh loop started (every {self.interval_ticks} x {self.tick_seconds}s)"
        )

    async def stop(self) -> None:
        """Cancel the ticker. A fetch already in flight is left to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Refresh loop stopped")
