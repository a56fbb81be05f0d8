"""Periodic job schedulers on asyncio, driven by an injectable Clock."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta, tzinfo
from typing import Any, Awaitable, Callable, Optional, Union

from hnshelf.clock import Clock, SystemClock
from hnshelf.errors import ConfigError

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class Scheduler(ABC):
    """Runs one job repeatedly until stopped.

    A failing job is logged and the schedule carries on. stop() lets a job
    that is already running finish; only the wait between runs is cancelled.
    """

    def __init__(self, clock: Optional[Clock] = None, run_immediately: bool = False, name: str = "scheduler"):
        self.clock = clock or SystemClock()
        self.run_immediately = run_immediately
        self.name = name
        self.runs = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._in_job = False

    @abstractmethod
    def next_delay(self, now: datetime) -> float:
        """Seconds to wait, from `now`, before the next run."""
        ...

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, job: Job) -> None:
        """Begin the schedule. Must be called from a running event loop."""
        if self.running:
            logger.warning("Scheduler %s already running; start ignored", self.name)
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self._loop(job), name=self.name)

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._stopping = True
        if not self._in_job:
            task.cancel()
        if task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        logger.info("Scheduler %s stopped after %d run(s)", self.name, self.runs)

    async def _loop(self, job: Job) -> None:
        if self.run_immediately:
            await self._run(job)
        while not self._stopping:
            delay = self.next_delay(self.clock.now())
            logger.debug("Scheduler %s: next run in %.0fs", self.name, delay)
            await self.clock.sleep(delay)
            if self._stopping:
                break
            await self._run(job)

    async def _run(self, job: Job) -> None:
        self._in_job = True
        try:
            await job()
        except Exception:
            logger.exception("Scheduled job %s failed", self.name)
        finally:
            self._in_job = False
            self.runs += 1


class IntervalScheduler(Scheduler):
    """Fixed interval between runs, optionally with one run at start."""

    def __init__(
        self,
        interval: Union[timedelta, float],
        clock: Optional[Clock] = None,
        run_immediately: bool = True,
        name: str = "interval",
    ):
        super().__init__(clock=clock, run_immediately=run_immediately, name=name)
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            raise ConfigError(f"Scheduler interval must be positive, got {interval}")
        self.interval = seconds

    def next_delay(self, now: datetime) -> float:
        return self.interval


class DailyScheduler(Scheduler):
    """Runs once a day at a fixed wall-clock time (server local time unless tz is given)."""

    def __init__(
        self,
        at: time = time(2, 0),
        clock: Optional[Clock] = None,
        run_immediately: bool = False,
        tz: Optional[tzinfo] = None,
        name: str = "daily",
    ):
        super().__init__(clock=clock, run_immediately=run_immediately, name=name)
        self.at = at
        self.tz = tz

    def next_delay(self, now: datetime) -> float:
        local = now.astimezone(self.tz) if self.tz else now.astimezone()
        target = local.replace(hour=self.at.hour, minute=self.at.minute, second=0, microsecond=0)
        if target <= local:
            target += timedelta(days=1)
        return (target - local).total_seconds()


def parse_daily_time(value: Union[str, time]) -> time:
    """Parse "HH:MM" into a time."""
    if isinstance(value, time):
        return value
    try:
        hour, minute = (int(part) for part in str(value).strip().split(":"))
        return time(hour, minute)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid daily time {value!r}: expected HH:MM") from e
