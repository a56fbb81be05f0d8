"""Async SQLite manager for retention records and the persisted cache slot."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import aiosqlite

from hnshelf.errors import StorageError
from hnshelf.storage.migrations import apply_migrations
from hnshelf.storage.models import Category, RetentionRecord, format_ts

logger = logging.getLogger(__name__)

# Everything the persistence layer raises when it cannot serve a call.
STORAGE_ERRORS = (StorageError, aiosqlite.Error, sqlite3.Error, OSError, ValueError)


class DatabaseManager:
    """Async SQLite manager with WAL mode and a single write lock.

    Usage:
        db = DatabaseManager("data/hnshelf.db")
        await db.initialize()
        # ... use db ...
        await db.close()
    """

    def __init__(self, db_path: str, cache_size_mb: int = 16):
        self.db_path = db_path
        self.cache_size_mb = cache_size_mb
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create database, apply migrations, and configure pragmas."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Apply migrations synchronously (schema changes)
        apply_migrations(self.db_path)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute(f"PRAGMA cache_size=-{self.cache_size_mb * 1000}")
        await self._conn.execute("PRAGMA synchronous=NORMAL")

        logger.info("Database initialized: %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError(f"Database not initialized: {self.db_path}")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Acquire write lock and begin a transaction."""
        conn = self._connection()
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    # --- Retention records ---

    async def save_record(self, record: RetentionRecord) -> bool:
        """Insert a record. Returns False if the (owner, item, category) tuple exists."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """INSERT OR IGNORE INTO retention_records
                   (owner_id, item_id, category, saved_at)
                   VALUES (?, ?, ?, ?)""",
                record.to_row(),
            )
            return cursor.rowcount > 0

    async def delete_record(self, owner_id: str, item_id: str, category: Category) -> bool:
        """Delete one record. Returns whether anything was removed."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """DELETE FROM retention_records
                   WHERE owner_id = ? AND item_id = ? AND category = ?""",
                (owner_id, item_id, category.value),
            )
            return cursor.rowcount > 0

    async def move_record(
        self,
        owner_id: str,
        item_id: str,
        from_category: Category,
        to_category: Category,
        moved_at: datetime,
    ) -> Optional[RetentionRecord]:
        """Re-file a record under another category.

        Delete-then-recreate in one transaction, so saved_at restarts at
        moved_at. Returns None when there was nothing to move.
        """
        new_record = RetentionRecord(
            owner_id=owner_id,
            item_id=item_id,
            category=to_category,
            saved_at=moved_at,
        )
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """DELETE FROM retention_records
                   WHERE owner_id = ? AND item_id = ? AND category = ?""",
                (owner_id, item_id, from_category.value),
            )
            if cursor.rowcount == 0:
                return None
            await conn.execute(
                """INSERT OR REPLACE INTO retention_records
                   (owner_id, item_id, category, saved_at)
                   VALUES (?, ?, ?, ?)""",
                new_record.to_row(),
            )
        return new_record

    async def get_records(
        self,
        owner_id: Optional[str] = None,
        category: Optional[Category] = None,
        limit: int = 100,
    ) -> List[RetentionRecord]:
        """List records, newest first, optionally filtered by owner and category."""
        conn = self._connection()
        conditions = []
        params: list = []
        if owner_id:
            conditions.append("owner_id = ?")
            params.append(owner_id)
        if category:
            conditions.append("category = ?")
            params.append(category.value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        cursor = await conn.execute(
            f"""SELECT * FROM retention_records {where}
                ORDER BY saved_at DESC LIMIT ?""",
            params,
        )
        rows = await cursor.fetchall()
        return [RetentionRecord.from_row(dict(r)) for r in rows]

    async def count_records(self, category: Optional[Category] = None) -> int:
        """Count records, optionally filtered by category."""
        conn = self._connection()
        if category:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM retention_records WHERE category = ?",
                (category.value,),
            )
        else:
            cursor = await conn.execute("SELECT COUNT(*) FROM retention_records")
        row = await cursor.fetchone()
        return row[0] if row else 0

    # --- Bulk retention operations ---

    async def delete_expired(self, cutoffs: Mapping[Category, datetime]) -> Dict[Category, int]:
        """Delete every record saved before its category's cutoff.

        One set-based DELETE per category, all in a single transaction: either
        every category is purged or none is.
        """
        deleted: Dict[Category, int] = {}
        async with self._transaction() as conn:
            for category, cutoff in cutoffs.items():
                cursor = await conn.execute(
                    """DELETE FROM retention_records
                       WHERE category = ? AND saved_at < ?""",
                    (category.value, format_ts(cutoff)),
                )
                deleted[category] = max(cursor.rowcount, 0)
        return deleted

    async def count_older_than(self, cutoffs: Mapping[Category, datetime]) -> Dict[Category, int]:
        """Count records saved before each category's cutoff. Read-only."""
        conn = self._connection()
        counts: Dict[Category, int] = {}
        for category, cutoff in cutoffs.items():
            cursor = await conn.execute(
                """SELECT COUNT(*) FROM retention_records
                   WHERE category = ? AND saved_at < ?""",
                (category.value, format_ts(cutoff)),
            )
            row = await cursor.fetchone()
            counts[category] = row[0] if row else 0
        return counts

    # --- Cache slots ---

    async def get_cache_slot(self, name: str) -> Optional[Dict[str, Any]]:
        """Read a named cache slot payload."""
        conn = self._connection()
        cursor = await conn.execute(
            "SELECT payload FROM cache_slots WHERE name = ?", (name,)
        )
        row = await cursor.fetchone()
        return json.loads(row["payload"]) if row else None

    async def put_cache_slot(self, name: str, payload: Dict[str, Any]) -> None:
        """Replace a named cache slot payload in one statement."""
        async with self._transaction() as conn:
            await conn.execute(
                """INSERT INTO cache_slots (name, payload, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(name) DO UPDATE SET
                       payload=excluded.payload,
                       updated_at=excluded.updated_at""",
                (name, json.dumps(payload)),
            )

    async def delete_cache_slot(self, name: str) -> None:
        async with self._transaction() as conn:
            await conn.execute("DELETE FROM cache_slots WHERE name = ?", (name,))

    # --- Maintenance ---

    async def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        conn = self._connection()
        stats: Dict[str, Any] = {}

        cursor = await conn.execute("SELECT COUNT(*) FROM retention_records")
        row = await cursor.fetchone()
        stats["total_records"] = row[0] if row else 0

        cursor = await conn.execute(
            """SELECT category, COUNT(*) as cnt FROM retention_records
               GROUP BY category ORDER BY cnt DESC"""
        )
        stats["records_by_category"] = {r["category"]: r["cnt"] for r in await cursor.fetchall()}

        cursor = await conn.execute(
            "SELECT page_count * page_size as size FROM pragma_page_count(), pragma_page_size()"
        )
        row = await cursor.fetchone()
        stats["db_size_bytes"] = row[0] if row else 0

        return stats
