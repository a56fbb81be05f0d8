"""Tests for retention policy and the cleanup service."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import aiosqlite
import pytest

from hnshelf.errors import ConfigError
from hnshelf.retention.cleanup import RetentionCleanupService, RetentionPolicy, ServiceState
from hnshelf.storage.models import Category, RetentionRecord

from tests.conftest import T0, eventually


async def save(db, item_id: str, category: Category, age: timedelta, owner_id: str = "alice") -> None:
    await db.save_record(RetentionRecord(
        owner_id=owner_id,
        item_id=item_id,
        category=category,
        saved_at=T0 - age,
    ))


class BlockingDB:
    """Stands in for DatabaseManager; delete_expired waits for the gate."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = 0

    async def delete_expired(self, cutoffs):
        self.calls += 1
        await self.gate.wait()
        return {category: 0 for category in cutoffs}


class LockedDB:
    async def delete_expired(self, cutoffs):
        raise aiosqlite.OperationalError("database is locked")


@pytest.fixture
def service(db, clock):
    return RetentionCleanupService(db, clock=clock)


# --- Policy ---

class TestRetentionPolicy:
    def test_defaults(self):
        policy = RetentionPolicy()
        assert policy.window(Category.EPHEMERAL) == timedelta(days=15)
        assert policy.window(Category.DURABLE) == timedelta(days=365)
        assert policy.warning(Category.EPHEMERAL) == timedelta(days=3)
        assert policy.warning(Category.DURABLE) == timedelta(days=7)

    def test_cutoffs(self):
        cutoffs = RetentionPolicy().cutoffs(T0)
        assert cutoffs == {
            Category.EPHEMERAL: T0 - timedelta(days=15),
            Category.DURABLE: T0 - timedelta(days=365),
        }

    def test_from_config(self):
        policy = RetentionPolicy.from_config({
            "ephemeral_retention_days": 7,
            "durable_retention_days": "30",
            "warning_days": {"ephemeral": 1},
        })
        assert policy.retention_days == {Category.EPHEMERAL: 7, Category.DURABLE: 30}
        assert policy.warning_days == {Category.EPHEMERAL: 1, Category.DURABLE: 7}

    def test_from_empty_config(self):
        assert RetentionPolicy.from_config(None) == RetentionPolicy()

    @pytest.mark.parametrize("cfg", [
        {"ephemeral_retention_days": 0},
        {"durable_retention_days": -1},
        {"ephemeral_retention_days": "two weeks"},
        {"warning_days": {"ephemeral": 15}},
        {"warning_days": {"durable": -1}},
    ])
    def test_invalid_config(self, cfg):
        with pytest.raises(ConfigError):
            RetentionPolicy.from_config(cfg)

    def test_every_category_required(self):
        with pytest.raises(ConfigError):
            RetentionPolicy(retention_days={Category.EPHEMERAL: 15})


# --- Cleanup runs ---

class TestRunCleanup:
    @pytest.mark.asyncio
    async def test_deletes_only_expired_category(self, service, db):
        await save(db, "1", Category.EPHEMERAL, timedelta(days=16))
        await save(db, "1", Category.DURABLE, timedelta(days=16))

        result = await service.run_cleanup()

        assert result.success
        assert not result.skipped
        assert result.deleted_by_category == {Category.EPHEMERAL: 1, Category.DURABLE: 0}
        assert result.total_deleted == 1
        assert await db.count_records(Category.EPHEMERAL) == 0
        assert await db.count_records(Category.DURABLE) == 1
        assert service.state is ServiceState.IDLE

    @pytest.mark.asyncio
    async def test_second_run_deletes_nothing(self, service, db):
        await save(db, "1", Category.EPHEMERAL, timedelta(days=20))
        first = await service.run_cleanup()
        second = await service.run_cleanup()
        assert first.total_deleted == 1
        assert second.total_deleted == 0
        assert second.success

    @pytest.mark.asyncio
    async def test_boundary(self, service, db):
        await save(db, "exact", Category.EPHEMERAL, timedelta(days=15))
        await save(db, "over", Category.EPHEMERAL, timedelta(days=15, seconds=1))
        await save(db, "year", Category.DURABLE, timedelta(days=364))
        await save(db, "past-year", Category.DURABLE, timedelta(days=366))

        result = await service.run_cleanup()

        assert result.deleted_by_category == {Category.EPHEMERAL: 1, Category.DURABLE: 1}
        remaining = {r.item_id for r in await db.get_records()}
        assert remaining == {"exact", "year"}

    @pytest.mark.asyncio
    async def test_explicit_now(self, service, db):
        await save(db, "1", Category.EPHEMERAL, timedelta(days=1))
        result = await service.run_cleanup(now=T0 + timedelta(days=30))
        assert result.total_deleted == 1

    @pytest.mark.asyncio
    async def test_move_restarts_retention(self, service, db):
        await save(db, "8863", Category.EPHEMERAL, timedelta(days=14))
        before = await service.get_expiring_soon(now=T0)
        assert before == {Category.EPHEMERAL: 1, Category.DURABLE: 0}

        await db.move_record("alice", "8863", Category.EPHEMERAL, Category.DURABLE, T0)

        after = await service.get_expiring_soon(now=T0)
        assert after[Category.EPHEMERAL] == 0
        assert after[Category.DURABLE] == before[Category.DURABLE]

        result = await service.run_cleanup(now=T0 + timedelta(days=2))

        assert result.total_deleted == 0
        assert await db.count_records(Category.DURABLE) == 1

    @pytest.mark.asyncio
    async def test_other_owners_untouched(self, service, db):
        await save(db, "1", Category.EPHEMERAL, timedelta(days=16), owner_id="alice")
        await save(db, "1", Category.EPHEMERAL, timedelta(days=2), owner_id="bob")

        await service.run_cleanup()
        records = await db.get_records()
        assert [r.owner_id for r in records] == ["bob"]

    @pytest.mark.asyncio
    async def test_concurrent_trigger_rejected(self, clock):
        db = BlockingDB()
        service = RetentionCleanupService(db, clock=clock)

        running = asyncio.ensure_future(service.run_cleanup())
        await eventually(lambda: service.state is ServiceState.RUNNING)

        rejected = await service.trigger_manual()
        assert rejected.skipped
        assert not rejected.success
        assert rejected.error == "cleanup already in progress"

        db.gate.set()
        completed = await running
        assert completed.success
        assert db.calls == 1
        assert service.state is ServiceState.IDLE

    @pytest.mark.asyncio
    async def test_storage_failure(self, clock):
        service = RetentionCleanupService(LockedDB(), clock=clock)

        result = await service.run_cleanup()

        assert not result.success
        assert "database is locked" in result.error
        assert result.total_deleted == 0
        assert service.state is ServiceState.IDLE

    @pytest.mark.asyncio
    async def test_closed_database(self, db, clock):
        service = RetentionCleanupService(db, clock=clock)
        await db.close()

        result = await service.trigger_manual()

        assert not result.success
        assert not result.skipped
        assert "not initialized" in result.error
        assert service.state is ServiceState.IDLE

    @pytest.mark.asyncio
    async def test_trigger_manual(self, service, db):
        await save(db, "1", Category.EPHEMERAL, timedelta(days=16))
        result = await service.trigger_manual()
        assert result.total_deleted == 1
        assert result.to_dict()["deleted_by_category"] == {"ephemeral": 1, "durable": 0}


# --- Expiry warnings ---

class TestExpiringSoon:
    @pytest.fixture
    async def seeded(self, db):
        await save(db, "e13", Category.EPHEMERAL, timedelta(days=13))
        await save(db, "e11", Category.EPHEMERAL, timedelta(days=11))
        await save(db, "d361", Category.DURABLE, timedelta(days=361))
        await save(db, "d300", Category.DURABLE, timedelta(days=300))
        return db

    @pytest.mark.asyncio
    async def test_policy_windows(self, service, seeded):
        counts = await service.get_expiring_soon()
        assert counts == {Category.EPHEMERAL: 1, Category.DURABLE: 1}

    @pytest.mark.asyncio
    async def test_single_window(self, service, seeded):
        counts = await service.get_expiring_soon(warning_window=timedelta(days=5))
        assert counts == {Category.EPHEMERAL: 2, Category.DURABLE: 1}

    @pytest.mark.asyncio
    async def test_per_category_window(self, service, seeded):
        counts = await service.get_expiring_soon(
            warning_window={Category.EPHEMERAL: timedelta(days=1)},
        )
        assert counts == {Category.EPHEMERAL: 0, Category.DURABLE: 1}

    @pytest.mark.asyncio
    async def test_read_only(self, service, seeded):
        await service.get_expiring_soon()
        assert await seeded.count_records() == 4


# --- Daily schedule ---

class TestSchedule:
    @pytest.mark.asyncio
    async def test_runs_on_start_and_daily(self, service, db, clock):
        await save(db, "old", Category.EPHEMERAL, timedelta(days=16))

        async def purged():
            return await db.count_records() == 0

        service.schedule()
        await eventually(purged)
        await eventually(lambda: len(clock.sleeps) == 1)

        # Exactly fifteen days old at the first daily run, so it survives until the next one.
        await save(db, "recent", Category.EPHEMERAL, timedelta(days=1))
        await clock.advance(timedelta(days=14))
        await eventually(lambda: len(clock.sleeps) >= 2)
        assert await db.count_records() == 1

        await clock.advance(timedelta(days=1))
        await eventually(purged)
        await service.stop()

    @pytest.mark.asyncio
    async def test_without_run_on_start(self, service, db, clock):
        await save(db, "old", Category.EPHEMERAL, timedelta(days=16))

        service.schedule(run_on_start=False)
        await eventually(lambda: len(clock.sleeps) == 1)
        assert await db.count_records() == 1
        await service.stop()

    @pytest.mark.asyncio
    async def test_stop_without_schedule(self, service):
        await service.stop()
