"""
RSS feed adapters (primary tier of the source chain).

Each configured feed is its own adapter so the resolver can fan out across
them concurrently. Feeds are not searchable; the query is ignored and
keyword filtering happens after the tier's results are merged.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import feedparser
import requests

from ..base import (
    DEFAULT_FETCH_TIMEOUT,
    MalformedPayloadError,
    SourceAdapter,
    SourceAPIError,
)
from ..models import Author, Item
from ..news import compose_text

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; SignalTerminal/1.0)"

SNIPPET_LENGTH = 200


@dataclass(frozen=True)
class FeedSource:
    """A configured RSS/Atom feed."""
    id: str
    name: str
    url: str
    follower_count: int  # influence weight given to the feed's articles


RSS_FEEDS: List[FeedSource] = [
    FeedSource("defillama", "DeFiLlama", "https://defillama.substack.com/feed", 1_000_000),
    FeedSource("coindesk", "CoinDesk", "https://www.coindesk.com/arc/outboundfeeds/rss/", 3_000_000),
    FeedSource("theblock", "The Block", "https://www.theblock.co/rss.xml", 800_000),
    FeedSource("decrypt", "Decrypt", "https://decrypt.co/feed", 600_000),
]

DEFAULT_FEED_IDS = [feed.id for feed in RSS_FEEDS]


def _content_key(entry) -> str:
    """Stable id for entries without guid or link: hash of title and publication date."""
    published = entry.get("published") or entry.get("updated") or ""
    raw = f"{entry.get('title') or ''}|{published}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


def _entry_timestamp(entry) -> datetime:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


class RSSFeedAdapter(SourceAdapter):
    """
    Adapter for a single RSS/Atom feed.

    Usage:
        adapter = RSSFeedAdapter(RSS_FEEDS[0])
        result = adapter.fetch("", max_items=10)
    """

    def __init__(self, feed: FeedSource, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.feed = feed
        self.name = feed.id
        self.timeout = timeout

    def _parse_entry(self, entry, image_url: str) -> Item:
        handle = self.feed.name.lower().replace(" ", "_")
        guid = entry.get("id") or entry.get("link") or _content_key(entry)
        snippet = (entry.get("summary") or "")[:SNIPPET_LENGTH] or None

        return Item(
            id=f"rss_{self.feed.id}_{guid}",
            text=compose_text(entry.get("title"), snippet),
            author=Author(
                id=f"rss_{self.feed.id}",
                handle=handle,
                display_name=self.feed.name,
                avatar_url=image_url,
                verified=True,
                follower_count=self.feed.follower_count,
            ),
            created_at=_entry_timestamp(entry),
            source_kind=self.name,
        )

    def fetch_items(self, query: str, max_items: int) -> List[Item]:
        try:
            response = requests.get(
                self.feed.url,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise SourceAPIError(f"{self.feed.name} feed timed out")
        except requests.exceptions.RequestException as e:
            raise SourceAPIError(f"Failed to fetch {self.feed.name} feed: {e}")

        if response.status_code >= 400:
            raise SourceAPIError(
                f"{self.feed.name} feed returned {response.status_code}",
                status_code=response.status_code
            )

        parsed = feedparser.parse(response.content)
        if parsed.bozo and not parsed.entries:
            raise MalformedPayloadError(f"{self.feed.name} feed is not valid RSS: {parsed.get('bozo_exception')}")

        image_url = (parsed.feed.get("image") or {}).get("href", "")

        items = []
        for entry in parsed.entries[:max_items]:
            try:
                items.append(self._parse_entry(entry, image_url))
            except (ValueError, TypeError) as e:
                logger.warning(f"[{self.feed.name}] Skipping malformed entry: {e}")

        logger.info(f"Fetched {len(items)} items from {self.feed.name} feed")
        return items


def build_feed_adapters(
    feed_ids: Optional[Iterable[str]] = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT
) -> List[RSSFeedAdapter]:
    """Create adapters for the requested feed ids (default: all known feeds)."""
    wanted = set(feed_ids) if feed_ids is not None else set(DEFAULT_FEED_IDS)
    unknown = wanted - set(DEFAULT_FEED_IDS)
    if unknown:
        logger.warning(f"Ignoring unknown RSS feed ids: {sorted(unknown)}")
    return [RSSFeedAdapter(feed, timeout=timeout) for feed in RSS_FEEDS if feed.id in wanted]


__all__ = [
    "DEFAULT_FEED_IDS",
    "FeedSource",
    "RSS_FEEDS",
    "RSSFeedAdapter",
    "build_feed_adapters",
]
