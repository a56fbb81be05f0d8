"""Cache-first retrieval pipeline for hnshelf.

Serves fresh cached content without touching the network; otherwise walks
the configured sources in priority order (timeouts, retries with backoff),
writes the first usable result back to the cache, and degrades to stale
cache or a fixed placeholder when every source fails.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence

import aiohttp
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hnshelf.cache.store import CacheStore
from hnshelf.clock import Clock, SystemClock, ensure_utc
from hnshelf.errors import ConfigError, SourceError
from hnshelf.sources.base import Source
from hnshelf.storage.models import (
    OFFLINE_WARNING,
    STALE_WARNING,
    Item,
    Origin,
    RetrievalResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TARGET_COUNT = 20
MAX_BACKOFF_SECONDS = 60

# Transport failures, timeouts and malformed payloads. Retried, then skipped.
RECOVERABLE_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError, SourceError)

PLACEHOLDER_ITEMS = (
    Item(
        id=1,
        title="Welcome to hnshelf",
        url="https://news.ycombinator.com/",
        author="hnshelf",
        score=100,
    ),
    Item(
        id=2,
        title="You appear to be offline. Check your internet connection for live stories.",
        url="https://news.ycombinator.com/",
        author="system",
        score=50,
    ),
    Item(
        id=3,
        title="Saved and read-later lists are still available while offline",
        url="https://news.ycombinator.com/",
        author="system",
        score=25,
    ),
)

SleepFn = Callable[[float], Awaitable[None]]


class FetchPipeline:
    """Ordered sources behind one retrieval call that never raises.

    Usage:
        pipeline = FetchPipeline(cache, build_sources(DEFAULT_SOURCES))
        result = await pipeline.retrieve()
        if result.warning:
            ...  # "data may be outdated" / "offline"
    """

    def __init__(
        self,
        cache: CacheStore,
        sources: Sequence[Source],
        target_count: int = DEFAULT_TARGET_COUNT,
        placeholder: Sequence[Item] = PLACEHOLDER_ITEMS,
        clock: Optional[Clock] = None,
        sleep: Optional[SleepFn] = None,
    ):
        if not sources:
            raise ConfigError("FetchPipeline needs at least one source")
        if target_count < 1:
            raise ConfigError(f"target_count must be >= 1, got {target_count}")
        self.cache = cache
        self.sources = list(sources)
        self.target_count = target_count
        self.placeholder = list(placeholder)
        self.clock = clock or SystemClock()
        self._sleep = sleep or asyncio.sleep

    async def retrieve(self, now: Optional[datetime] = None, force: bool = False) -> RetrievalResult:
        """Return content for display.

        With force=True the cache's freshness is ignored and the network is
        always attempted; stale/placeholder fallbacks still apply.
        """
        now = ensure_utc(now) if now else self.clock.now()

        if not force:
            entry = await self.cache.get()
            if entry is not None and self.cache.is_fresh(entry, now):
                logger.debug("Serving fresh cache (%d items)", len(entry.items))
                return RetrievalResult(
                    items=list(entry.items),
                    origin=Origin.FRESH,
                    fetched_at=entry.fetched_at,
                    source="cache",
                )
            logger.info("Cache is stale or empty, fetching fresh items")

        # Ticket taken now: if a newer refresh lands first, this one must not overwrite it.
        ticket = self.cache.begin_write()

        for source in self.sources:
            items = await self._try_source(source)
            if items:
                stored = await self.cache.set(items, ticket=ticket, now=now)
                logger.info("Fetched %d items from %s", len(items), source.name)
                return RetrievalResult(
                    items=items,
                    origin=Origin.FRESH,
                    fetched_at=now,
                    source=source.name,
                    superseded=not stored and self.cache.is_superseded(ticket),
                )

        return await self._degraded(now)

    async def _degraded(self, now: datetime) -> RetrievalResult:
        entry = await self.cache.get()
        if entry is not None and entry.items:
            age_minutes = int(self.cache.age(entry, now).total_seconds() // 60)
            if self.cache.is_stale(entry, now):
                logger.warning("All sources failed; serving cache that is %d minutes old", age_minutes)
            else:
                logger.warning("All sources failed; serving stale cache (%d minutes old)", age_minutes)
            return RetrievalResult(
                items=list(entry.items),
                origin=Origin.STALE,
                fetched_at=entry.fetched_at,
                source="cache",
                warning=STALE_WARNING,
            )

        logger.error("All sources failed and nothing is cached; serving placeholder items")
        return RetrievalResult(
            items=list(self.placeholder),
            origin=Origin.FALLBACK,
            warning=OFFLINE_WARNING,
        )

    async def _try_source(self, source: Source) -> Optional[List[Item]]:
        """Run a source with its timeout and retry schedule. None on failure."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RECOVERABLE_ERRORS),
            stop=stop_after_attempt(source.attempts),
            wait=wait_exponential(multiplier=source.backoff_base, max=MAX_BACKOFF_SECONDS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        items: Optional[List[Item]] = None
        try:
            async for attempt in retrying:
                with attempt:
                    items = await self._attempt(source)
        except RECOVERABLE_ERRORS as e:
            logger.warning(
                "Source %s failed after %d attempt(s): %s", source.name, source.attempts, str(e) or type(e).__name__
            )
            return None
        except Exception:
            logger.exception("Source %s failed unexpectedly", source.name)
            return None
        return items

    async def _attempt(self, source: Source) -> List[Item]:
        try:
            items = await asyncio.wait_for(source.fetch(self.target_count), timeout=source.timeout)
        except asyncio.TimeoutError:
            raise SourceError(source.name, f"timed out after {source.timeout:.0f}s") from None
        if not items:
            raise SourceError(source.name, "no items returned")
        return list(items)[: self.target_count]
