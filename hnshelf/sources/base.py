"""Base source interface for hnshelf content retrieval."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, List, Optional, Sequence

from hnshelf.errors import ConfigError, SourceError
from hnshelf.storage.models import Item

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_BATCH_SIZE = 5
DEFAULT_ITEM_TIMEOUT = 5.0
DEFAULT_BATCH_DELAY = 0.2
DEFAULT_CANDIDATE_COUNT = 30


class Source(ABC):
    """One interchangeable way of retrieving the ranked item list.

    Subclasses implement fetch(). The pipeline owns timeouts and retries:
    `timeout` bounds a single attempt, `attempts` and `backoff_base` shape
    the retry schedule (delay = backoff_base * 2 ** (n - 1)).
    """

    def __init__(
        self,
        name: str,
        timeout: float = DEFAULT_TIMEOUT,
        attempts: int = 1,
        backoff_base: float = 2.0,
    ) -> None:
        if not name:
            raise ConfigError("Source name is required")
        if timeout <= 0:
            raise ConfigError(f"Source {name}: timeout must be positive, got {timeout}")
        if attempts < 1:
            raise ConfigError(f"Source {name}: attempts must be >= 1, got {attempts}")
        if backoff_base < 0:
            raise ConfigError(f"Source {name}: backoff_base must be >= 0, got {backoff_base}")
        self.name = name
        self.timeout = timeout
        self.attempts = attempts
        self.backoff_base = backoff_base

    @abstractmethod
    async def fetch(self, limit: int) -> List[Item]:
        """Return up to `limit` valid items. Raise on failure; never return partial junk."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class BatchedSource(Source):
    """Item-by-id retrieval: fetch the ranked id list, then items in parallel batches.

    Items are requested `batch_size` at a time, each bounded by
    `item_timeout`. Failed or malformed items are skipped. No further batches
    are issued once `limit` items are in hand.
    """

    def __init__(
        self,
        name: str,
        timeout: float = DEFAULT_TIMEOUT,
        attempts: int = 1,
        backoff_base: float = 2.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        item_timeout: float = DEFAULT_ITEM_TIMEOUT,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        candidate_count: int = DEFAULT_CANDIDATE_COUNT,
    ) -> None:
        super().__init__(name, timeout=timeout, attempts=attempts, backoff_base=backoff_base)
        if batch_size < 1:
            raise ConfigError(f"Source {name}: batch_size must be >= 1, got {batch_size}")
        if item_timeout <= 0:
            raise ConfigError(f"Source {name}: item_timeout must be positive, got {item_timeout}")
        self.batch_size = batch_size
        self.item_timeout = item_timeout
        self.batch_delay = batch_delay
        self.candidate_count = candidate_count

    def client(self) -> AsyncContextManager[Any]:
        """Per-attempt client handed to fetch_ids/fetch_item (e.g. an HTTP session)."""
        return contextlib.nullcontext()

    @abstractmethod
    async def fetch_ids(self, client: Any) -> List[int]:
        ...

    @abstractmethod
    async def fetch_item(self, client: Any, item_id: int) -> Optional[Item]:
        ...

    async def fetch(self, limit: int) -> List[Item]:
        async with self.client() as client:
            ids = await self.fetch_ids(client)
            candidates = ids[: max(limit, self.candidate_count)]
            items: List[Item] = []

            for start in range(0, len(candidates), self.batch_size):
                batch = candidates[start : start + self.batch_size]
                items.extend(await self._fetch_batch(client, batch))
                if len(items) >= limit:
                    break
                if self.batch_delay > 0 and start + self.batch_size < len(candidates):
                    await asyncio.sleep(self.batch_delay)

        if not items:
            raise SourceError(self.name, f"no valid items among {len(candidates)} candidates")
        logger.debug("Source %s: %d/%d items", self.name, len(items), len(candidates))
        return items[:limit]

    async def _fetch_batch(self, client: Any, batch: Sequence[int]) -> List[Item]:
        results = await asyncio.gather(
            *(self._fetch_one(client, item_id) for item_id in batch)
        )
        return [item for item in results if item is not None]

    async def _fetch_one(self, client: Any, item_id: int) -> Optional[Item]:
        try:
            return await asyncio.wait_for(self.fetch_item(client, item_id), self.item_timeout)
        except asyncio.TimeoutError:
            logger.warning("Source %s: item %s timed out after %.1fs", self.name, item_id, self.item_timeout)
        except Exception as e:
            logger.warning("Source %s: item %s failed: %s", self.name, item_id, e)
        return None
