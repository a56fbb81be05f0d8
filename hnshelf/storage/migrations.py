"""Version-controlled schema migrations for the hnshelf database."""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Each migration is (version, description, list_of_sql_statements)
MigrationStep = Tuple[int, str, List[str]]

_SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

_RECORDS_SQL = """
CREATE TABLE IF NOT EXISTS retention_records (
    owner_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    category TEXT NOT NULL CHECK (category IN ('ephemeral', 'durable')),
    saved_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, item_id, category)
);
CREATE INDEX IF NOT EXISTS idx_records_category_saved
    ON retention_records(category, saved_at);
"""

_CACHE_SLOTS_SQL = """
CREATE TABLE IF NOT EXISTS cache_slots (
    name TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


def _get_migrations() -> List[MigrationStep]:
    """Return ordered list of migrations."""
    return [
        (
            1,
            "Initial schema: retention_records with (category, saved_at) index",
            [_SCHEMA_VERSION_SQL, _RECORDS_SQL],
        ),
        (
            2,
            "Add cache_slots for the persisted content cache",
            [_CACHE_SLOTS_SQL],
        ),
    ]


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    try:
        row = conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        return row[0] if row and row[0] is not None else 0
    except sqlite3.OperationalError:
        return 0


def apply_migrations(db_path: str) -> int:
    """Apply all pending migrations. Returns the final schema version."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")

        current = get_current_version(conn)
        applied = 0

        for version, description, statements in _get_migrations():
            if version <= current:
                continue

            logger.info("Applying migration v%d: %s", version, description)
            try:
                for sql in statements:
                    conn.executescript(sql)
                conn.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    (version, description),
                )
                conn.commit()
                applied += 1
            except Exception:
                conn.rollback()
                logger.exception("Migration v%d failed", version)
                raise

        final = get_current_version(conn)
    finally:
        conn.close()

    if applied:
        logger.info("Applied %d migration(s). Schema at v%d", applied, final)
    else:
        logger.debug("Schema up to date at v%d", final)

    return final
