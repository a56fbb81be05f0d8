"""Exception types shared across hnshelf."""

from __future__ import annotations


class HnShelfError(Exception):
    """Base class for hnshelf errors."""


class ConfigError(HnShelfError):
    """Invalid configuration. Raised at startup; never recovered at runtime."""


class SourceError(HnShelfError):
    """A content source produced nothing usable (bad payload, no valid items)."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class StorageError(HnShelfError):
    """The persistence layer is unavailable (not initialized or already closed)."""
