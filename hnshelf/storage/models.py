"""Data models for hnshelf: cached items, cache entries and retention records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from hnshelf.clock import ensure_utc

HN_DISCUSSION_URL = "https://news.ycombinator.com/item?id={id}"

# Bump when the cached payload shape changes; older slots are then ignored.
CACHE_VERSION = "1.0"


@dataclass(frozen=True)
class Item:
    """A single story from the upstream content source."""

    id: int
    title: str
    url: str
    author: str = "unknown"
    score: int = 0
    comment_count: int = 0
    published_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Any) -> Optional[Item]:
        """Build an Item from an upstream item object, or None if it is unusable.

        Deleted, dead, untitled or id-less objects are rejected. Posts without
        an external link point at their discussion page.
        """
        if not isinstance(data, dict):
            return None
        if data.get("deleted") or data.get("dead"):
            return None
        title = data.get("title")
        if not title or not isinstance(title, str):
            return None
        try:
            item_id = int(data["id"])
        except (KeyError, TypeError, ValueError):
            return None

        published_at = None
        ts = data.get("time")
        if isinstance(ts, (int, float)):
            published_at = datetime.fromtimestamp(ts, tz=timezone.utc)

        return cls(
            id=item_id,
            title=title,
            url=data.get("url") or HN_DISCUSSION_URL.format(id=item_id),
            author=data.get("by") or "unknown",
            score=_as_int(data.get("score")),
            comment_count=_as_int(data.get("descendants")),
            published_at=published_at,
        )

    @property
    def discussion_url(self) -> str:
        return HN_DISCUSSION_URL.format(id=self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "author": self.author,
            "score": self.score,
            "comment_count": self.comment_count,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> Item:
        return cls(
            id=int(row["id"]),
            title=row["title"],
            url=row["url"],
            author=row.get("author") or "unknown",
            score=_as_int(row.get("score")),
            comment_count=_as_int(row.get("comment_count")),
            published_at=_parse_ts(row.get("published_at")),
        )


@dataclass(frozen=True)
class CacheEntry:
    """One cached content snapshot. Replaced wholesale, never merged."""

    items: Tuple[Item, ...]
    fetched_at: datetime
    version: str = CACHE_VERSION

    @classmethod
    def create(cls, items: Iterable[Item], fetched_at: datetime) -> CacheEntry:
        return cls(items=tuple(items), fetched_at=ensure_utc(fetched_at))

    def to_payload(self) -> Dict[str, Any]:
        """Slot payload: items, epoch-millisecond timestamp and version."""
        return {
            "items": [item.to_dict() for item in self.items],
            "timestamp": int(self.fetched_at.timestamp() * 1000),
            "version": self.version,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> CacheEntry:
        """Parse a slot payload. Raises KeyError/TypeError/ValueError when malformed."""
        fetched_at = datetime.fromtimestamp(payload["timestamp"] / 1000, tz=timezone.utc)
        return cls(
            items=tuple(Item.from_dict(row) for row in payload["items"]),
            fetched_at=fetched_at,
            version=str(payload.get("version", "")),
        )


class Category(str, Enum):
    """Retention class of a persisted record."""

    EPHEMERAL = "ephemeral"
    DURABLE = "durable"

    @classmethod
    def parse(cls, value: Any) -> Category:
        """Accept enum values, names, and the reading-list aliases."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        alias = _CATEGORY_ALIASES.get(text, text)
        try:
            return cls(alias)
        except ValueError:
            raise ValueError(f"Unknown category: {value!r}") from None


_CATEGORY_ALIASES = {
    "read-later": "ephemeral",
    "read_later": "ephemeral",
    "saved": "durable",
}


@dataclass
class RetentionRecord:
    """An item persisted by a user under one retention category."""

    owner_id: str
    item_id: str
    category: Category
    saved_at: datetime

    def to_row(self) -> tuple:
        return (
            self.owner_id,
            self.item_id,
            self.category.value,
            format_ts(self.saved_at),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> RetentionRecord:
        return cls(
            owner_id=row["owner_id"],
            item_id=row["item_id"],
            category=Category(row["category"]),
            saved_at=_parse_ts(row["saved_at"]) or datetime.min.replace(tzinfo=timezone.utc),
        )


class Origin(str, Enum):
    """Where a retrieval result came from."""

    FRESH = "fresh"
    STALE = "stale"
    FALLBACK = "fallback"


STALE_WARNING = "data may be outdated"
OFFLINE_WARNING = "offline"


@dataclass
class RetrievalResult:
    """What FetchPipeline.retrieve hands back. Always usable."""

    items: List[Item]
    origin: Origin
    fetched_at: Optional[datetime] = None
    source: Optional[str] = None
    warning: Optional[str] = None
    # Network data whose cache write lost to a later write or a clear.
    superseded: bool = False

    @property
    def is_outdated(self) -> bool:
        return self.origin is Origin.STALE

    @property
    def is_offline(self) -> bool:
        return self.origin is Origin.FALLBACK


@dataclass
class CleanupResult:
    """Outcome of one retention cleanup run."""

    deleted_by_category: Dict[Category, int] = field(default_factory=dict)
    total_deleted: int = 0
    success: bool = True
    error: Optional[str] = None
    skipped: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "deleted_by_category": {c.value: n for c, n in self.deleted_by_category.items()},
            "total_deleted": self.total_deleted,
            "success": self.success,
        }
        if self.error:
            out["error"] = self.error
        return out


# --- Helpers ---

def format_ts(val: datetime) -> str:
    """Fixed-width UTC ISO string; lexical order matches time order."""
    return ensure_utc(val).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _parse_ts(val: Any) -> Optional[datetime]:
    """Parse a timestamp string into an aware UTC datetime, or return None."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return ensure_utc(val)
    try:
        from dateutil.parser import parse
        return ensure_utc(parse(str(val)))
    except (ValueError, TypeError, OverflowError):
        return None


def _as_int(val: Any) -> int:
    try:
        return int(val or 0)
    except (TypeError, ValueError):
        return 0
