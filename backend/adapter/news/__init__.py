"""
NewsAPI.org adapter (secondary tier of the source chain).

Docs: https://newsapi.org/docs/endpoints/everything
Free tier: 100 requests/day, developer use only.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from typing import List, Optional

import requests

from ..base import (
    DEFAULT_FETCH_TIMEOUT,
    MalformedPayloadError,
    SourceAdapter,
    SourceAPIError,
    SourceAuthenticationError,
    SourceRateLimitError,
)
from ..models import Author, Item
from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)

# Items are kept post-length
MAX_TEXT_LENGTH = 280

# News outlets get a fixed influence weight
OUTLET_FOLLOWER_COUNT = 100_000


def _handle_from_name(name: str) -> str:
    handle = re.sub(r"\s+", "_", name.lower())
    return re.sub(r"[^a-z0-9_]", "", handle)


def compose_text(title: Optional[str], description: Optional[str]) -> str:
    """Article text is title plus description, trimmed to post length."""
    if title:
        text = f"{title} — {description}" if description else title
    else:
        text = description or "(no content)"
    return text[:MAX_TEXT_LENGTH]


class NewsAPIAdapter(SourceAdapter):
    """
    Adapter for the NewsAPI "everything" endpoint.

    Usage:
        adapter = NewsAPIAdapter()  # Uses NEWSAPI_KEY env var
        result = adapter.fetch("market OR technology", max_items=20)
    """

    name = "newsapi"
    BASE_URL = "https://newsapi.org/v2"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=100,
        window_seconds=86400,
        strategy="sliding_window"
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        language: str = "en",
        timeout: float = DEFAULT_FETCH_TIMEOUT
    ):
        self.api_key = api_key or os.environ.get("NEWSAPI_KEY")
        self.language = language
        self.timeout = timeout

        if not self.api_key:
            logger.warning("No NEWSAPI_KEY provided - NewsAPI tier will be skipped")

        self.rate_limiter = rate_limiter or RateLimiter()
        if "newsapi" not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit("newsapi", self.DEFAULT_RATE_LIMIT)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _parse_article(self, article: dict) -> Item:
        """Convert a NewsAPI article into an Item; the outlet is the author."""
        source_name = (article.get("source") or {}).get("name") or "Unknown"
        handle = _handle_from_name(source_name)
        published_at = article["publishedAt"]

        return Item(
            id=f"newsapi_{handle}_{article.get('url') or published_at}",
            text=compose_text(article.get("title"), article.get("description")),
            author=Author(
                id=f"src_{handle}",
                handle=handle,
                display_name=source_name,
                avatar_url=article.get("urlToImage") or "",
                verified=True,
                follower_count=OUTLET_FOLLOWER_COUNT,
            ),
            created_at=datetime.fromisoformat(published_at.replace("Z", "+00:00")),
            source_kind=self.name,
        )

    def fetch_items(self, query: str, max_items: int) -> List[Item]:
        """
        Fetch the newest articles matching `query`.

        Raises:
            SourceAuthenticationError: If NEWSAPI_KEY is missing or rejected
            SourceRateLimitError: If the daily budget is exhausted
            SourceAPIError: On HTTP or network errors, or a non-"ok" status
            MalformedPayloadError: If articles cannot be parsed
        """
        if not self.is_configured:
            raise SourceAuthenticationError("NEWSAPI_KEY is not set")

        if not self.rate_limiter.try_acquire("newsapi"):
            raise SourceRateLimitError("newsapi daily budget exhausted")

        params = {
            "q": query,
            "language": self.language,
            "sortBy": "publishedAt",
            "pageSize": max(1, min(max_items, 100)),
            "apiKey": self.api_key,
        }

        try:
            response = requests.get(f"{self.BASE_URL}/everything", params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise SourceAPIError("NewsAPI request timed out")
        except requests.exceptions.RequestException as e:
            raise SourceAPIError(f"Failed to connect to NewsAPI: {e}")

        if response.status_code == 401:
            raise SourceAuthenticationError("NewsAPI rejected the API key")
        elif response.status_code == 429:
            raise SourceRateLimitError("NewsAPI rate limit exceeded")
        elif response.status_code >= 400:
            raise SourceAPIError(
                f"NewsAPI {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                response_text=response.text
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedPayloadError(f"NewsAPI returned invalid JSON: {e}")

        if data.get("status") != "ok":
            raise SourceAPIError(f"NewsAPI returned status: {data.get('status')}")

        try:
            items = [self._parse_article(a) for a in data.get("articles", [])]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedPayloadError(f"Malformed NewsAPI article: {e}")

        logger.info(f"Fetched {len(items)} articles from NewsAPI for query '{query}'")
        return items[:max_items]


__all__ = ["NewsAPIAdapter", "compose_text"]
