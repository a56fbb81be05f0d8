"""Content cache: one named slot holding the latest snapshot and its fetch time."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Protocol

from hnshelf.clock import Clock, SystemClock, ensure_utc
from hnshelf.errors import ConfigError
from hnshelf.storage.db import STORAGE_ERRORS, DatabaseManager
from hnshelf.storage.models import CACHE_VERSION, CacheEntry, Item

logger = logging.getLogger(__name__)

DEFAULT_SLOT = "hn_cache"
DEFAULT_TTL = timedelta(minutes=30)
DEFAULT_TOO_OLD = timedelta(hours=2)


class SlotStorage(Protocol):
    """Durable key-value backend holding JSON-compatible payloads by name."""

    async def read(self, name: str) -> Optional[Dict[str, Any]]:
        ...

    async def write(self, name: str, payload: Dict[str, Any]) -> None:
        ...

    async def remove(self, name: str) -> None:
        ...


class MemorySlotStorage:
    """Process-local slot storage."""

    def __init__(self) -> None:
        self._slots: Dict[str, Dict[str, Any]] = {}

    async def read(self, name: str) -> Optional[Dict[str, Any]]:
        payload = self._slots.get(name)
        return copy.deepcopy(payload) if payload is not None else None

    async def write(self, name: str, payload: Dict[str, Any]) -> None:
        self._slots[name] = copy.deepcopy(payload)

    async def remove(self, name: str) -> None:
        self._slots.pop(name, None)


class SQLiteSlotStorage:
    """Slot storage in the cache_slots table of the hnshelf database."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def read(self, name: str) -> Optional[Dict[str, Any]]:
        return await self.db.get_cache_slot(name)

    async def write(self, name: str, payload: Dict[str, Any]) -> None:
        await self.db.put_cache_slot(name, payload)

    async def remove(self, name: str) -> None:
        await self.db.delete_cache_slot(name)


class CacheStore:
    """Holds one CacheEntry at a time; the only way consumers touch cached content.

    Writes are ordered by tickets from begin_write(): a write holding an older
    ticket than the last committed one, or one issued before the last clear(),
    is rejected. Storage failures on read look like an empty cache.

    Usage:
        cache = CacheStore(MemorySlotStorage())
        ticket = cache.begin_write()
        await cache.set(items, ticket=ticket)
        entry = await cache.get()
    """

    def __init__(
        self,
        storage: SlotStorage,
        ttl: timedelta = DEFAULT_TTL,
        too_old: timedelta = DEFAULT_TOO_OLD,
        slot: str = DEFAULT_SLOT,
        clock: Optional[Clock] = None,
    ):
        if ttl <= timedelta(0) or too_old < ttl:
            raise ConfigError(f"Invalid cache windows: ttl={ttl}, too_old={too_old}")
        self.storage = storage
        self.ttl = ttl
        self.too_old = too_old
        self.slot = slot
        self.clock = clock or SystemClock()
        self._issued = 0
        self._committed = 0
        self._cleared_after = 0

    # --- Read / write ---

    async def get(self) -> Optional[CacheEntry]:
        """Return the current entry, or None if absent, unreadable or outdated in shape."""
        try:
            payload = await self.storage.read(self.slot)
        except STORAGE_ERRORS as e:
            logger.warning("Cache read failed, treating as empty: %s", e)
            return None
        if payload is None:
            return None
        try:
            entry = CacheEntry.from_payload(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed cache payload: %s", e)
            return None
        if entry.version != CACHE_VERSION:
            logger.info("Ignoring cache entry with version %s (want %s)", entry.version, CACHE_VERSION)
            return None
        return entry

    def begin_write(self) -> int:
        """Reserve a write ticket. Take it when a refresh starts, not when it ends."""
        self._issued += 1
        return self._issued

    def is_superseded(self, ticket: int) -> bool:
        """True if a write holding ticket would be rejected."""
        return ticket <= self._cleared_after or ticket < self._committed

    async def set(
        self,
        items: Iterable[Item],
        ticket: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Replace the entry with items stamped now (or the clock's time). Returns whether it was applied."""
        if ticket is None:
            ticket = self.begin_write()
        if ticket <= self._cleared_after:
            logger.info("Dropping cache write %d: cache was cleared after it started", ticket)
            return False
        if ticket < self._committed:
            logger.info("Dropping cache write %d: newer write %d already stored", ticket, self._committed)
            return False

        entry = CacheEntry.create(items, now or self.clock.now())
        try:
            await self.storage.write(self.slot, entry.to_payload())
        except STORAGE_ERRORS as e:
            logger.error("Cache write failed: %s", e)
            return False
        self._committed = ticket
        logger.debug("Cached %d items (write %d)", len(entry.items), ticket)
        return True

    async def clear(self) -> None:
        """Remove the entry and invalidate every write ticket issued so far."""
        self._cleared_after = self._issued
        try:
            await self.storage.remove(self.slot)
        except STORAGE_ERRORS as e:
            logger.error("Cache clear failed: %s", e)
            return
        logger.info("Cache cleared")

    async def auto_cleanup(self, now: Optional[datetime] = None) -> bool:
        """Clear the entry if it is too old to be worth serving."""
        entry = await self.get()
        if entry is None or not self.is_stale(entry, now or self.clock.now()):
            return False
        await self.clear()
        return True

    # --- Age ---

    def age(self, entry: CacheEntry, now: Optional[datetime] = None) -> timedelta:
        return ensure_utc(now or self.clock.now()) - entry.fetched_at

    def is_fresh(self, entry: CacheEntry, now: Optional[datetime] = None) -> bool:
        return self.age(entry, now) < self.ttl

    def is_stale(self, entry: CacheEntry, now: Optional[datetime] = None) -> bool:
        """True once the entry is past the too-old threshold."""
        return self.age(entry, now) > self.too_old

    async def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self.clock.now()
        entry = await self.get()
        if entry is None:
            return {"present": False, "item_count": 0, "age_minutes": None, "fresh": False, "too_old": False}
        return {
            "present": True,
            "item_count": len(entry.items),
            "age_minutes": int(self.age(entry, now).total_seconds() // 60),
            "fresh": self.is_fresh(entry, now),
            "too_old": self.is_stale(entry, now),
        }
