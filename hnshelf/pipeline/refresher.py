"""Background refresh: keeps the content cache warm on a timer, one cycle at a time."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Any, Callable, List, Optional, Union

from hnshelf.clock import Clock, SystemClock
from hnshelf.pipeline.fetch import FetchPipeline
from hnshelf.pipeline.scheduler import IntervalScheduler, Scheduler
from hnshelf.storage.models import Origin, RetrievalResult

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = timedelta(minutes=30)

Subscriber = Callable[[RetrievalResult], Any]


class BackgroundRefresher:
    """Single-flight periodic refresher over a FetchPipeline.

    Every cycle runs pipeline.retrieve(force=True). Callers of trigger_now()
    during a cycle join it instead of starting another retrieval. Network
    results are published to subscribers.

    Usage:
        refresher = BackgroundRefresher(pipeline)
        unsubscribe = refresher.subscribe(on_update)
        refresher.start(timedelta(minutes=30))
        ...
        await refresher.stop()
    """

    def __init__(
        self,
        pipeline: FetchPipeline,
        clock: Optional[Clock] = None,
        scheduler_factory: Optional[Callable[[float], Scheduler]] = None,
    ):
        self.pipeline = pipeline
        self.clock = clock or SystemClock()
        self._scheduler_factory = scheduler_factory or self._default_scheduler
        self._scheduler: Optional[Scheduler] = None
        self._inflight: Optional[asyncio.Task] = None
        self._subscribers: List[Subscriber] = []
        self.cycles = 0

    def _default_scheduler(self, interval: float) -> Scheduler:
        return IntervalScheduler(interval, clock=self.clock, run_immediately=True, name="background-refresh")

    # --- Scheduling ---

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self, interval: Union[timedelta, float] = DEFAULT_REFRESH_INTERVAL) -> None:
        """Refresh once now, then every interval until stop()."""
        if self.running:
            logger.warning("Background refresh already running")
            return
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        self._scheduler = self._scheduler_factory(seconds)
        self._scheduler.start(self._scheduled_refresh)
        logger.info("Background refresh scheduled every %.0f minutes", seconds / 60)

    async def stop(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None

    async def _scheduled_refresh(self) -> None:
        logger.info("Background refresh triggered")
        await self.trigger_now()

    # --- Refresh ---

    async def trigger_now(self) -> RetrievalResult:
        """Run a refresh cycle, or join the one already in flight."""
        if self.refreshing:
            logger.debug("Refresh already in flight; joining it")
        else:
            self._inflight = asyncio.get_running_loop().create_task(self._cycle())
        assert self._inflight is not None
        # Shield so a cancelled caller does not cancel the shared cycle.
        return await asyncio.shield(self._inflight)

    async def force_refresh(self) -> RetrievalResult:
        """Clear the cache, then refresh.

        Clearing invalidates the cache write of any cycle already in flight;
        that cycle is allowed to finish and a new one runs after it.
        """
        await self.pipeline.cache.clear()
        if self.refreshing:
            assert self._inflight is not None
            await asyncio.wait({self._inflight})
        return await self.trigger_now()

    async def _cycle(self) -> RetrievalResult:
        self.cycles += 1
        result = await self.pipeline.retrieve(force=True)
        if result.superseded:
            logger.info("Background refresh superseded by a newer write or a clear; not publishing")
        elif result.origin is Origin.FRESH:
            logger.info("Background refresh: %d items from %s", len(result.items), result.source)
            await self._publish(result)
        else:
            logger.warning("Background refresh got no network data (%s)", result.origin.value)
        return result

    # --- Notifications ---

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for refresh results. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _publish(self, result: RetrievalResult) -> None:
        for callback in list(self._subscribers):
            try:
                outcome = callback(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Refresh subscriber %r failed", callback)
