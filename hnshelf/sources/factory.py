"""Source factory: build the right source from a config.yaml entry."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence

from hnshelf.errors import ConfigError
from hnshelf.sources.base import Source
from hnshelf.sources.hn_api import HackerNewsSource
from hnshelf.sources.proxy import PassthroughProxySource, WrappedProxySource

SOURCE_TYPES: Dict[str, Callable[..., Source]] = {
    "hn_api": HackerNewsSource,
    "wrapped_proxy": WrappedProxySource,
    "passthrough_proxy": PassthroughProxySource,
}

_FLOAT_KEYS = ("timeout", "backoff_base", "item_timeout", "batch_delay")
_INT_KEYS = ("attempts", "batch_size", "candidate_count")
_STR_KEYS = ("api_base", "feed", "proxy_url")

# Primary direct source first, then relays in fallback order.
DEFAULT_SOURCES: List[Dict[str, Any]] = [
    {"type": "hn_api", "name": "hn_api", "timeout": 20, "attempts": 3, "backoff_base": 2},
    {"type": "wrapped_proxy", "name": "allorigins", "timeout": 15},
    {"type": "passthrough_proxy", "name": "thingproxy", "timeout": 15},
]


def build_source(config: Dict[str, Any]) -> Source:
    """Return a source for the given config.

    config must have 'type' (hn_api | wrapped_proxy | passthrough_proxy);
    'name' defaults to the type. Unknown types and bad values raise ConfigError.
    """
    source_type = str(config.get("type") or "").lower().strip()
    factory = SOURCE_TYPES.get(source_type)
    if factory is None:
        raise ConfigError(
            f"Unknown source type {config.get('type')!r} (expected one of {sorted(SOURCE_TYPES)})"
        )

    kwargs: Dict[str, Any] = {"name": str(config.get("name") or source_type)}
    try:
        for key in _FLOAT_KEYS:
            if config.get(key) is not None:
                kwargs[key] = float(config[key])
        for key in _INT_KEYS:
            if config.get(key) is not None:
                kwargs[key] = int(config[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Source {kwargs['name']}: {e}") from e
    for key in _STR_KEYS:
        if config.get(key):
            kwargs[key] = str(config[key])
    if config.get("headers"):
        kwargs["headers"] = {str(k): str(v) for k, v in dict(config["headers"]).items()}

    return factory(**kwargs)


def build_sources(configs: Sequence[Dict[str, Any]]) -> List[Source]:
    """Build sources in priority order. Names must be unique."""
    sources = [build_source(cfg) for cfg in configs]
    names = [s.name for s in sources]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"Duplicate source names: {', '.join(dupes)}")
    return sources
