"""Retention cleanup for persisted reading-list records.

Retention policy:
- ephemeral (read later): 15 days
- durable (saved): 365 days

Runs daily at a fixed time and on demand. Each run issues one set-based
delete per category inside a single transaction, so a failed run deletes
nothing and the next run simply retries.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, time as dtime, timedelta
from typing import Any, Dict, Mapping, Optional, Union

from hnshelf.clock import Clock, SystemClock, ensure_utc
from hnshelf.errors import ConfigError
from hnshelf.pipeline.scheduler import DailyScheduler, Scheduler
from hnshelf.storage.db import STORAGE_ERRORS, DatabaseManager
from hnshelf.storage.models import Category, CleanupResult

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_TIME = dtime(2, 0)


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention window and expiry warning window per category, in days."""

    retention_days: Dict[Category, int] = field(
        default_factory=lambda: {Category.EPHEMERAL: 15, Category.DURABLE: 365}
    )
    warning_days: Dict[Category, int] = field(
        default_factory=lambda: {Category.EPHEMERAL: 3, Category.DURABLE: 7}
    )

    def __post_init__(self) -> None:
        for category in Category:
            if category not in self.retention_days:
                raise ConfigError(f"No retention window configured for {category.value}")
            if category not in self.warning_days:
                raise ConfigError(f"No warning window configured for {category.value}")
            days = self.retention_days[category]
            warning = self.warning_days[category]
            if days <= 0:
                raise ConfigError(f"Retention for {category.value} must be positive, got {days}")
            if not 0 <= warning < days:
                raise ConfigError(
                    f"Warning window for {category.value} must be in [0, {days}), got {warning}"
                )

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> RetentionPolicy:
        """Build from the `retention` section of config.yaml."""
        cfg = cfg or {}
        warning_cfg = cfg.get("warning_days") or {}
        try:
            return cls(
                retention_days={
                    Category.EPHEMERAL: int(cfg.get("ephemeral_retention_days", 15)),
                    Category.DURABLE: int(cfg.get("durable_retention_days", 365)),
                },
                warning_days={
                    Category.EPHEMERAL: int(warning_cfg.get("ephemeral", 3)),
                    Category.DURABLE: int(warning_cfg.get("durable", 7)),
                },
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid retention config: {e}") from e

    def window(self, category: Category) -> timedelta:
        return timedelta(days=self.retention_days[category])

    def warning(self, category: Category) -> timedelta:
        return timedelta(days=self.warning_days[category])

    def cutoffs(self, now: datetime) -> Dict[Category, datetime]:
        """Records saved before these instants are expired."""
        return {category: now - self.window(category) for category in Category}


class ServiceState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


WarningWindow = Union[timedelta, Mapping[Category, timedelta], None]


class RetentionCleanupService:
    """Deletes records once they outlive their category's retention window.

    Usage:
        service = RetentionCleanupService(db)
        service.schedule()                      # daily at 02:00
        result = await service.trigger_manual()
        expiring = await service.get_expiring_soon()
    """

    def __init__(
        self,
        db: DatabaseManager,
        policy: Optional[RetentionPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.policy = policy or RetentionPolicy()
        self.clock = clock or SystemClock()
        self.state = ServiceState.IDLE
        self._scheduler: Optional[Scheduler] = None

    async def run_cleanup(self, now: Optional[datetime] = None) -> CleanupResult:
        """Delete expired records in every category. Never raises."""
        if self.state is ServiceState.RUNNING:
            logger.warning("Cleanup already running; trigger rejected")
            return CleanupResult(success=False, skipped=True, error="cleanup already in progress")

        self.state = ServiceState.RUNNING
        t0 = time.monotonic()
        try:
            now = ensure_utc(now) if now else self.clock.now()
            deleted = await self.db.delete_expired(self.policy.cutoffs(now))
        except STORAGE_ERRORS as e:
            logger.error("Error during cleanup: %s", e)
            return CleanupResult(success=False, error=str(e), duration_seconds=time.monotonic() - t0)
        finally:
            self.state = ServiceState.IDLE

        result = CleanupResult(
            deleted_by_category=deleted,
            total_deleted=sum(deleted.values()),
            duration_seconds=time.monotonic() - t0,
        )
        self._log_summary(result)
        return result

    def _log_summary(self, result: CleanupResult) -> None:
        if result.total_deleted == 0:
            logger.info("Cleanup completed - no expired records to delete")
            return
        logger.info("Cleanup completed: %d record(s) deleted", result.total_deleted)
        for category, count in result.deleted_by_category.items():
            logger.info(
                "  %s: %d deleted (older than %d days)",
                category.value, count, self.policy.retention_days[category],
            )

    async def get_expiring_soon(
        self,
        now: Optional[datetime] = None,
        warning_window: WarningWindow = None,
    ) -> Dict[Category, int]:
        """Count records that will be deleted within the warning window. Read-only.

        warning_window is a single timedelta for every category, a
        per-category mapping, or None for the policy defaults.
        """
        now = ensure_utc(now) if now else self.clock.now()
        cutoffs: Dict[Category, datetime] = {}
        for category in Category:
            if isinstance(warning_window, timedelta):
                warning = warning_window
            elif warning_window is not None and category in warning_window:
                warning = warning_window[category]
            else:
                warning = self.policy.warning(category)
            cutoffs[category] = now - (self.policy.window(category) - warning)
        return await self.db.count_older_than(cutoffs)

    # --- Triggers ---

    def schedule(self, daily_time: dtime = DEFAULT_CLEANUP_TIME, run_on_start: bool = True) -> None:
        """Run cleanup every day at daily_time (server time), plus once now if run_on_start."""
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Cleanup schedule already active")
            return
        self._scheduler = DailyScheduler(
            at=daily_time, clock=self.clock, run_immediately=run_on_start, name="retention-cleanup"
        )
        self._scheduler.start(self._scheduled_run)
        logger.info("Cleanup service started - will run daily at %s", daily_time.strftime("%H:%M"))

    async def stop(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None

    async def _scheduled_run(self) -> None:
        logger.info("Starting scheduled retention cleanup")
        await self.run_cleanup()

    async def trigger_manual(self, now: Optional[datetime] = None) -> CleanupResult:
        """Out-of-band cleanup (admin/CLI). Same result shape as scheduled runs."""
        logger.info("Manual cleanup triggered")
        return await self.run_cleanup(now)
