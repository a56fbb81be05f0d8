"""Configuration loading for hnshelf (config.yaml)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import time, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from hnshelf.errors import ConfigError
from hnshelf.pipeline.scheduler import parse_daily_time
from hnshelf.retention.cleanup import RetentionPolicy
from hnshelf.sources.factory import DEFAULT_SOURCES

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_DB_PATH = "data/hnshelf.db"


@dataclass
class Settings:
    """Validated runtime settings."""

    db_path: str = DEFAULT_DB_PATH
    cache_ttl: timedelta = timedelta(minutes=30)
    cache_too_old: timedelta = timedelta(hours=2)
    refresh_interval: timedelta = timedelta(minutes=30)
    target_count: int = 20
    sources: List[Dict[str, Any]] = field(default_factory=lambda: [dict(s) for s in DEFAULT_SOURCES])
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    cleanup_time: time = time(2, 0)

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> Settings:
        config = config or {}
        cache = config.get("cache") or {}
        cleanup = config.get("cleanup") or {}
        try:
            settings = cls(
                db_path=str(config.get("db_path", DEFAULT_DB_PATH)),
                cache_ttl=timedelta(minutes=float(cache.get("ttl_minutes", 30))),
                cache_too_old=timedelta(minutes=float(cache.get("too_old_minutes", 120))),
                refresh_interval=timedelta(minutes=float(cache.get("refresh_interval_minutes", 30))),
                target_count=int(cache.get("target_count", 20)),
                sources=list(config.get("sources") or [dict(s) for s in DEFAULT_SOURCES]),
                retention=RetentionPolicy.from_config(config.get("retention")),
                cleanup_time=parse_daily_time(cleanup.get("daily_time", "02:00")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.cache_ttl <= timedelta(0):
            raise ConfigError("cache.ttl_minutes must be positive")
        if self.cache_too_old < self.cache_ttl:
            raise ConfigError("cache.too_old_minutes must not be shorter than cache.ttl_minutes")
        if self.refresh_interval <= timedelta(0):
            raise ConfigError("cache.refresh_interval_minutes must be positive")
        if self.target_count < 1:
            raise ConfigError("cache.target_count must be >= 1")
        if not self.sources:
            raise ConfigError("At least one source must be configured")


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load and return the YAML configuration. A missing file means defaults."""
    config_path = Path(path)
    if not config_path.exists():
        logger.info("No config at %s; using defaults", path)
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def load_settings(path: str = DEFAULT_CONFIG_PATH) -> Settings:
    return Settings.from_dict(load_config(path))
