"""Storage layer - SQLite (WAL) for retention records and the cache slot."""

from hnshelf.storage.db import DatabaseManager
from hnshelf.storage.models import (
    CacheEntry,
    Category,
    CleanupResult,
    Item,
    Origin,
    RetentionRecord,
    RetrievalResult,
)

__all__ = [
    "DatabaseManager",
    "CacheEntry",
    "Category",
    "CleanupResult",
    "Item",
    "Origin",
    "RetentionRecord",
    "RetrievalResult",
]
