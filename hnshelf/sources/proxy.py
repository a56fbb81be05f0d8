"""Relay sources: the same HN endpoints fetched through CORS-style proxies."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

from hnshelf.errors import ConfigError
from hnshelf.sources.hn_api import HackerNewsSource

logger = logging.getLogger(__name__)

ALLORIGINS_URL = "https://api.allorigins.win/get?url={url}"
THINGPROXY_URL = "https://thingproxy.freeboard.io/fetch/{url}"


class WrappedProxySource(HackerNewsSource):
    """Relay that wraps the upstream body as a string: {"contents": "<json>"}.

    `proxy_url` must contain `{url}`, which receives the percent-encoded
    upstream URL. Bodies without the wrapper are decoded as-is.
    """

    def __init__(self, name: str = "wrapped_proxy", proxy_url: str = ALLORIGINS_URL, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        if "{url}" not in proxy_url:
            raise ConfigError(f"Source {name}: proxy_url must contain '{{url}}'")
        self.proxy_url = proxy_url

    def request_url(self, upstream_url: str) -> str:
        return self.proxy_url.format(url=quote(upstream_url, safe=""))

    def decode(self, body: str) -> Any:
        return unwrap_contents(json.loads(body))


class PassthroughProxySource(HackerNewsSource):
    """Relay that forwards the upstream body verbatim; the upstream URL is appended raw."""

    def __init__(self, name: str = "passthrough_proxy", proxy_url: str = THINGPROXY_URL, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        if "{url}" not in proxy_url:
            raise ConfigError(f"Source {name}: proxy_url must contain '{{url}}'")
        self.proxy_url = proxy_url

    def request_url(self, upstream_url: str) -> str:
        return self.proxy_url.format(url=upstream_url)


def unwrap_contents(data: Any) -> Any:
    """Return the upstream JSON held in a relay's `contents` field."""
    if isinstance(data, dict) and "contents" in data:
        contents = data["contents"]
        if isinstance(contents, str):
            return json.loads(contents)
        return contents
    return data
