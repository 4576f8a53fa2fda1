"""
X (Twitter) API Adapter for Signal Terminal.

Fetches recent posts through the Twitter API v2 Recent Search endpoint and
normalizes them into Items. Serves as the tertiary tier of the source chain
(a paid plan is required for search access).
"""

from __future__ import annotations

import logging
import os
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
from ..models import Author, Item, ItemMetrics
from ..rate_limiter import RateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)


class XAdapter(SourceAdapter):
    """
    Adapter for X (Twitter) API v2.

    Usage:
        adapter = XAdapter()  # Uses X_BEARER_TOKEN env var
        result = adapter.fetch("bitcoin OR ethereum", max_items=20)
    """

    name = "x_api"
    BASE_URL = "https://api.x.com/2"

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=300,
        window_seconds=900,
        strategy="sliding_window"
    )

    def __init__(
        self,
        bearer_token: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT
    ):
        """
        Initialize the X adapter.

        Args:
            bearer_token: X API bearer token (or set X_BEARER_TOKEN env var)
            rate_limiter: Optional shared rate limiter
            timeout: HTTP timeout in seconds
        """
        self.bearer_token = bearer_token or os.environ.get("X_BEARER_TOKEN")
        self.timeout = timeout

        if not self.bearer_token:
            logger.warning("No X_BEARER_TOKEN provided - X tier will be skipped")

        self.headers = {
            "Authorization": f"Bearer {self.bearer_token}" if self.bearer_token else "",
        }

        self.rate_limiter = rate_limiter or RateLimiter()
        if "x_search" not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit("x_search", self.DEFAULT_RATE_LIMIT)

        # Rate limit status reported by the API in response headers
        self._rate_limit_status = {
            "limit": None,
            "remaining": None,
            "reset_time": None,
        }

    @property
    def is_configured(self) -> bool:
        return bool(self.bearer_token)

    def get_rate_limit_status(self) -> dict:
        """Rate limit status from the last API response."""
        status = self._rate_limit_status.copy()
        if status["reset_time"]:
            reset_dt = datetime.fromtimestamp(status["reset_time"], tz=timezone.utc)
            status["seconds_until_reset"] = max(0, int((reset_dt - datetime.now(timezone.utc)).total_seconds()))
        else:
            status["seconds_until_reset"] = None
        return status

    def _update_rate_limit_status(self, response) -> None:
        """Update rate limit status from response headers."""
        headers = response.headers

        reset = headers.get("x-rate-limit-reset")
        remaining = headers.get("x-rate-limit-remaining")
        limit = headers.get("x-rate-limit-limit")

        if reset:
            self._rate_limit_status["reset_time"] = int(reset)
        if remaining:
            self._rate_limit_status["remaining"] = int(remaining)
            if int(remaining) <= 5:
                logger.warning(f"X API rate limit nearly exhausted: {remaining} requests remaining")
        if limit:
            self._rate_limit_status["limit"] = int(limit)

    def _parse_tweet(self, tweet: dict, users_map: dict) -> Item:
        """Convert a raw tweet plus its expanded author into an Item."""
        author_id = tweet.get("author_id", "")
        user = users_map.get(author_id, {})

        created_at = tweet.get("created_at")
        if created_at:
            timestamp = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        else:
            timestamp = datetime.now(timezone.utc)

        public_metrics = tweet.get("public_metrics", {})
        user_metrics = user.get("public_metrics", {})

        return Item(
            id=f"x_{tweet['id']}",
            text=tweet.get("text", ""),
            author=Author(
                id=f"x_{user.get('id', author_id)}",
                handle=user.get("username", "unknown"),
                display_name=user.get("name", "Unknown"),
                avatar_url=user.get("profile_image_url", ""),
                verified=bool(user.get("verified", False)),
                follower_count=user_metrics.get("followers_count", 0),
            ),
            metrics=ItemMetrics(
                likes=public_metrics.get("like_count", 0),
                reshares=public_metrics.get("retweet_count", 0),
                replies=public_metrics.get("reply_count", 0),
                views=public_metrics.get("impression_count", 0),
            ),
            created_at=timestamp,
            source_kind=self.name,
        )

    def fetch_items(self, query: str, max_items: int) -> List[Item]:
        """
        Search recent posts matching a query.

        Raises:
            SourceAuthenticationError: If not configured or token rejected
            SourceRateLimitError: If our budget or the API limit is exhausted
            SourceAPIError: If the API returns an error or is unreachable
            MalformedPayloadError: If the response cannot be parsed
        """
        if not self.is_configured:
            raise SourceAuthenticationError("X adapter not configured - set X_BEARER_TOKEN")

        if not self.rate_limiter.try_acquire("x_search"):
            raise SourceRateLimitError("x_search budget exhausted")

        # X API accepts 10-100 results per page
        max_results = max(10, min(100, max_items))

        if "-is:retweet" not in query.lower():
            query = f"{query} -is:retweet"

        params = {
            "query": query,
            "max_results": max_results,
            "tweet.fields": "id,text,created_at,author_id,public_metrics",
            "expansions": "author_id",
            "user.fields": "name,username,profile_image_url,verified,public_metrics",
        }

        try:
            response = requests.get(
                f"{self.BASE_URL}/tweets/search/recent",
                headers=self.headers,
                params=params,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise SourceAPIError("X API request timed out")
        except requests.exceptions.RequestException as e:
            raise SourceAPIError(f"Failed to connect to X API: {e}")

        self._update_rate_limit_status(response)

        if response.status_code == 401:
            raise SourceAuthenticationError("Invalid or expired bearer token")
        elif response.status_code == 429:
            reset_time = response.headers.get("x-rate-limit-reset")
            raise SourceRateLimitError(
                "X API rate limit exceeded",
                reset_time=int(reset_time) if reset_time else None
            )
        elif response.status_code >= 400:
            raise SourceAPIError(
                f"X API error: {response.status_code}",
                status_code=response.status_code,
                response_text=response.text
            )

        try:
            data = response.json()
            users_map = {u["id"]: u for u in data.get("includes", {}).get("users", [])}
            items = [self._parse_tweet(tweet, users_map) for tweet in data.get("data") or []]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedPayloadError(f"Malformed X API response: {e}")

        logger.info(f"Fetched {len(items)} items from X for query '{query}'")
        return items[:max_items]


__all__ = ["XAdapter"]
