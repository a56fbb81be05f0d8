"""Tests for the content cache: freshness, write ordering, failure handling."""

from __future__ import annotations

from datetime import timedelta

import pytest

from hnshelf.cache.store import CacheStore, MemorySlotStorage, SQLiteSlotStorage
from hnshelf.errors import ConfigError

from tests.conftest import T0, make_items


class BrokenStorage:
    """Slot storage whose every operation fails like a full or missing disk."""

    async def read(self, name):
        raise OSError("disk unavailable")

    async def write(self, name, payload):
        raise OSError("disk full")

    async def remove(self, name):
        raise OSError("disk unavailable")


@pytest.fixture
def cache(clock):
    return CacheStore(MemorySlotStorage(), clock=clock)


class TestCacheBasics:
    @pytest.mark.asyncio
    async def test_empty(self, cache):
        assert await cache.get() is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache):
        items = make_items(3)
        assert await cache.set(items) is True

        entry = await cache.get()
        assert entry is not None
        assert list(entry.items) == items
        assert entry.fetched_at == T0

    @pytest.mark.asyncio
    async def test_set_with_explicit_time(self, cache):
        fetched = T0 - timedelta(hours=1)
        await cache.set(make_items(2), now=fetched)

        entry = await cache.get()
        assert entry.fetched_at == fetched
        assert not cache.is_fresh(entry)

    @pytest.mark.asyncio
    async def test_set_replaces_wholesale(self, cache):
        await cache.set(make_items(5))
        await cache.set(make_items(2, start=100))
        entry = await cache.get()
        assert [i.id for i in entry.items] == [100, 101]

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.set(make_items(1))
        await cache.clear()
        assert await cache.get() is None

    def test_invalid_windows(self):
        with pytest.raises(ConfigError):
            CacheStore(MemorySlotStorage(), ttl=timedelta(0))
        with pytest.raises(ConfigError):
            CacheStore(MemorySlotStorage(), ttl=timedelta(hours=1), too_old=timedelta(minutes=30))


class TestFreshness:
    @pytest.mark.asyncio
    async def test_fresh_within_ttl(self, cache):
        await cache.set(make_items(1))
        entry = await cache.get()
        assert cache.is_fresh(entry, T0 + timedelta(minutes=29, seconds=59))
        assert not cache.is_fresh(entry, T0 + timedelta(minutes=30))

    @pytest.mark.asyncio
    async def test_fresh_follows_clock(self, cache, clock):
        await cache.set(make_items(1))
        entry = await cache.get()
        assert cache.is_fresh(entry)
        await clock.advance(timedelta(minutes=31))
        assert not cache.is_fresh(entry)
        assert cache.age(entry) == timedelta(minutes=31)

    @pytest.mark.asyncio
    async def test_stale_after_too_old(self, cache):
        await cache.set(make_items(1))
        entry = await cache.get()
        assert not cache.is_stale(entry, T0 + timedelta(hours=2))
        assert cache.is_stale(entry, T0 + timedelta(hours=2, seconds=1))

    @pytest.mark.asyncio
    async def test_auto_cleanup(self, cache):
        await cache.set(make_items(1))
        assert await cache.auto_cleanup(T0 + timedelta(hours=1)) is False
        assert await cache.get() is not None

        assert await cache.auto_cleanup(T0 + timedelta(hours=3)) is True
        assert await cache.get() is None

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        assert (await cache.stats())["present"] is False

        await cache.set(make_items(4))
        stats = await cache.stats(T0 + timedelta(minutes=45))
        assert stats == {
            "present": True,
            "item_count": 4,
            "age_minutes": 45,
            "fresh": False,
            "too_old": False,
        }


class TestWriteOrdering:
    @pytest.mark.asyncio
    async def test_older_ticket_cannot_overwrite_newer(self, cache):
        first = cache.begin_write()
        second = cache.begin_write()

        assert await cache.set(make_items(2, start=200), ticket=second) is True
        assert await cache.set(make_items(2, start=100), ticket=first) is False

        entry = await cache.get()
        assert entry.items[0].id == 200

    @pytest.mark.asyncio
    async def test_in_order_tickets_both_apply(self, cache):
        first = cache.begin_write()
        second = cache.begin_write()
        assert await cache.set(make_items(1, start=100), ticket=first) is True
        assert await cache.set(make_items(1, start=200), ticket=second) is True

    @pytest.mark.asyncio
    async def test_clear_invalidates_inflight_write(self, cache):
        ticket = cache.begin_write()
        await cache.clear()

        assert await cache.set(make_items(1), ticket=ticket) is False
        assert await cache.get() is None

        assert await cache.set(make_items(1)) is True
        assert await cache.get() is not None

    def test_is_superseded(self, cache):
        first = cache.begin_write()
        assert not cache.is_superseded(first)

    @pytest.mark.asyncio
    async def test_is_superseded_after_clear_or_newer_write(self, cache):
        stale = cache.begin_write()
        await cache.clear()
        assert cache.is_superseded(stale)

        older = cache.begin_write()
        newer = cache.begin_write()
        await cache.set(make_items(1), ticket=newer)
        assert cache.is_superseded(older)
        assert not cache.is_superseded(newer)


class TestDegradedStorage:
    @pytest.mark.asyncio
    async def test_malformed_payload_is_absent(self, cache):
        await cache.storage.write(cache.slot, {"unexpected": True})
        assert await cache.get() is None

    @pytest.mark.asyncio
    async def test_version_mismatch_is_absent(self, cache):
        await cache.set(make_items(1))
        payload = await cache.storage.read(cache.slot)
        payload["version"] = "0.9"
        await cache.storage.write(cache.slot, payload)
        assert await cache.get() is None

    @pytest.mark.asyncio
    async def test_read_failure_is_absent(self, clock):
        cache = CacheStore(BrokenStorage(), clock=clock)
        assert await cache.get() is None

    @pytest.mark.asyncio
    async def test_write_failure_reports_false(self, clock):
        cache = CacheStore(BrokenStorage(), clock=clock)
        assert await cache.set(make_items(1)) is False
        await cache.clear()


class TestSQLiteSlotStorage:
    @pytest.mark.asyncio
    async def test_persists_across_stores(self, db, clock):
        await CacheStore(SQLiteSlotStorage(db), clock=clock).set(make_items(3))

        reopened = CacheStore(SQLiteSlotStorage(db), clock=clock)
        entry = await reopened.get()
        assert entry is not None
        assert [i.id for i in entry.items] == [1, 2, 3]
        assert entry.fetched_at == T0

    @pytest.mark.asyncio
    async def test_clear(self, db, clock):
        cache = CacheStore(SQLiteSlotStorage(db), clock=clock)
        await cache.set(make_items(1))
        await cache.clear()
        assert await db.get_cache_slot(cache.slot) is None

    @pytest.mark.asyncio
    async def test_closed_database_reads_as_absent(self, db, clock):
        cache = CacheStore(SQLiteSlotStorage(db), clock=clock)
        await cache.set(make_items(1))
        await db.close()

        assert await cache.get() is None
        assert await cache.set(make_items(2)) is False
        await cache.clear()
