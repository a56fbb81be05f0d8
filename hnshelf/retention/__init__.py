"""Retention management for saved and read-later records."""

from hnshelf.retention.cleanup import RetentionCleanupService, RetentionPolicy, ServiceState

__all__ = ["RetentionCleanupService", "RetentionPolicy", "ServiceState"]
