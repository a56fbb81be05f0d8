"""Shared fixtures: temporary database, controllable clock and fake sources."""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Tuple

import aiohttp
import pytest

from hnshelf.sources.base import Source
from hnshelf.storage.db import DatabaseManager
from hnshelf.storage.models import Item

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose time only moves when the test advances it.

    sleep() blocks until advance() carries the clock past the deadline.
    """

    def __init__(self, start: datetime = T0):
        self.current = start
        self.sleeps: List[float] = []
        self._waiters: List[Tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((self.current + timedelta(seconds=seconds), fut))
        await fut

    async def advance(self, delta: timedelta) -> None:
        self.current += delta
        pending = []
        for deadline, fut in self._waiters:
            if fut.done():
                continue
            if deadline <= self.current:
                fut.set_result(None)
            else:
                pending.append((deadline, fut))
        self._waiters = pending
        for _ in range(5):
            await asyncio.sleep(0)


async def eventually(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    """Wait until predicate() holds (sync or async), failing the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        outcome = predicate()
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if outcome:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def make_items(count: int = 5, start: int = 1, prefix: str = "Story") -> List[Item]:
    """Create test Items with sequential ids."""
    return [
        Item(
            id=i,
            title=f"{prefix} {i}",
            url=f"https://example.com/{prefix.lower()}-{i}",
            author="tester",
            score=i * 10,
            comment_count=i,
        )
        for i in range(start, start + count)
    ]


class StaticSource(Source):
    """Returns a fixed item list (or fails while `fail` is set)."""

    def __init__(self, items: List[Item], name: str = "static", **kwargs):
        super().__init__(name, **kwargs)
        self.items = list(items)
        self.fail = False
        self.calls = 0

    async def fetch(self, limit: int) -> List[Item]:
        self.calls += 1
        if self.fail:
            raise aiohttp.ClientConnectionError("Simulated network failure")
        return self.items[:limit]


class FailingSource(Source):
    """Always raises the given exception."""

    def __init__(self, name: str = "failing", exc: Optional[Exception] = None, **kwargs):
        super().__init__(name, **kwargs)
        self.exc = exc
        self.calls = 0

    async def fetch(self, limit: int) -> List[Item]:
        self.calls += 1
        raise self.exc or aiohttp.ClientConnectionError("Simulated network failure")


class GatedSource(Source):
    """Blocks every fetch until the gate is opened."""

    def __init__(self, items: List[Item], name: str = "gated", **kwargs):
        super().__init__(name, **kwargs)
        self.items = list(items)
        self.gate = asyncio.Event()
        self.calls = 0

    async def fetch(self, limit: int) -> List[Item]:
        self.calls += 1
        await self.gate.wait()
        return self.items[:limit]


# --- Fixtures ---

@pytest.fixture
def tmp_db(tmp_path):
    """Return a path to a temporary database file."""
    return str(tmp_path / "test.db")


@pytest.fixture
async def db(tmp_db):
    """Return an initialized DatabaseManager."""
    manager = DatabaseManager(tmp_db)
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def clock():
    return FakeClock()
