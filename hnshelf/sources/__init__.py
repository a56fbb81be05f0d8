"""Content sources for hnshelf.

Supported types: hn_api (direct), wrapped_proxy and passthrough_proxy (relays).
"""

from hnshelf.sources.base import BatchedSource, Source
from hnshelf.sources.factory import DEFAULT_SOURCES, build_source, build_sources
from hnshelf.sources.hn_api import HackerNewsSource
from hnshelf.sources.proxy import PassthroughProxySource, WrappedProxySource

__all__ = [
    "Source",
    "BatchedSource",
    "build_source",
    "build_sources",
    "DEFAULT_SOURCES",
    "HackerNewsSource",
    "WrappedProxySource",
    "PassthroughProxySource",
]
