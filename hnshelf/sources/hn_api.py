"""Hacker News item-by-id API source, reached directly over aiohttp."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from hnshelf.errors import ConfigError, SourceError
from hnshelf.sources.base import BatchedSource
from hnshelf.storage.models import Item

logger = logging.getLogger(__name__)

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
FEEDS = {"top": "topstories", "new": "newstories", "best": "beststories"}

DEFAULT_USER_AGENT = "hnshelf/0.1 (+https://github.com/HackerNews/API)"


def parse_id_list(data: Any, source_name: str) -> List[int]:
    """Validate a ranked id list. Non-integer entries are dropped."""
    if not isinstance(data, list):
        raise SourceError(source_name, "invalid response format: expected an array of item ids")
    ids: List[int] = []
    for raw in data:
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            continue
    return ids


class HackerNewsSource(BatchedSource):
    """Fetch the ranked story list and story details from the HN API.

    Subclasses route the same upstream URLs through relays by overriding
    request_url() and decode().
    """

    def __init__(
        self,
        name: str = "hn_api",
        api_base: str = HN_API_BASE,
        feed: str = "top",
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        if feed not in FEEDS:
            raise ConfigError(f"Source {name}: unknown feed {feed!r} (expected one of {sorted(FEEDS)})")
        self.api_base = api_base.rstrip("/")
        self.feed = feed
        self.headers = {"Accept": "application/json", "User-Agent": DEFAULT_USER_AGENT}
        self.headers.update(headers or {})

    @property
    def ids_url(self) -> str:
        return f"{self.api_base}/{FEEDS[self.feed]}.json"

    def item_url(self, item_id: int) -> str:
        return f"{self.api_base}/item/{item_id}.json"

    def request_url(self, upstream_url: str) -> str:
        """URL actually requested for an upstream URL."""
        return upstream_url

    def decode(self, body: str) -> Any:
        """Decode a response body into the upstream JSON value."""
        return json.loads(body)

    def client(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(headers=self.headers)

    async def get_json(self, session: aiohttp.ClientSession, upstream_url: str) -> Any:
        async with session.get(self.request_url(upstream_url)) as resp:
            resp.raise_for_status()
            body = await resp.text()
        return self.decode(body)

    async def fetch_ids(self, client: aiohttp.ClientSession) -> List[int]:
        data = await self.get_json(client, self.ids_url)
        ids = parse_id_list(data, self.name)
        logger.debug("Source %s: %d ids from %s", self.name, len(ids), self.feed)
        return ids

    async def fetch_item(self, client: aiohttp.ClientSession, item_id: int) -> Optional[Item]:
        data = await self.get_json(client, self.item_url(item_id))
        return Item.from_api(data)
