"""
Per-category request budgets shared by the source adapters and the annotator.

Unlike a blocking limiter, every check here is non-blocking: a fetch that
would exceed its budget is reported as a rate-limit failure so the resolver
can fall through to the next tier instead of stalling the ingestion cycle.
"""

from __future__ import annotations

import time
import logging
import threading
from typing import Dict, List, Literal
from dataclasses import dataclass
from collections import defaultdict

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for a specific rate limit."""
    requests_per_window: int
    window_seconds: int
    strategy: Literal["sliding_window", "token_bucket"] = "sliding_window"


class RateLimiter:
    """
    Rate limiter keyed by category (e.g. "newsapi", "x_search", "grok_enrich").

    Supports a sliding window (hard cap per window) and a token bucket
    (smooth refill). Unconfigured categories are always allowed.
    Safe to call from worker threads.
    """

    def __init__(self):
        # category -> request timestamps inside the current window
        self.sliding_windows: Dict[str, List[float]] = defaultdict(list)

        # category -> available tokens
        self.token_buckets: Dict[str, float] = {}
        self.last_refill: Dict[str, float] = {}

        self.configs: Dict[str, RateLimitConfig] = {}
        self._lock = threading.Lock()

    def configure_limit(self, category: str, config: RateLimitConfig) -> None:
        """Configure rate limiting for a specific category."""
        with self._lock:
            self.configs[category] = config
            if config.strategy == "token_bucket":
                self.token_buckets[category] = float(config.requests_per_window)
                self.last_refill[category] = time.time()

        logger.info(f"Configured rate limit for {category}: {config.requests_per_window} req/{config.window_seconds}s ({config.strategy})")

    def try_acquire(self, category: str) -> bool:
        """
        Consume one request from the category's budget.

        Returns:
            True if the request may proceed, False if the budget is exhausted
        """
        with self._lock:
            config = self.configs.get(category)
            if config is None:
                return True

            if config.strategy == "token_bucket":
                return self._acquire_token(category, config)
            return self._acquire_sliding(category, config)

    def _acquire_sliding(self, category: str, config: RateLimitConfig) -> bool:
        now = time.time()
        window_times = self.sliding_windows[category]
        window_times[:] = [t for t in window_times if now - t < config.window_seconds]

        if len(window_times) >= config.requests_per_window:
            if window_times:
                retry_in = config.window_seconds - (now - min(window_times))
                logger.warning(f"Rate limit reached for {category}, next slot in {retry_in:.1f}s")
            else:
                logger.warning(f"Rate limit for {category} allows no requests")
            return False

        window_times.append(now)
        return True

    def _refill(self, category: str, config: RateLimitConfig) -> None:
        now = time.time()
        elapsed = now - self.last_refill.get(category, now)
        refill_rate = config.requests_per_window / config.window_seconds
        current = self.token_buckets.get(category, float(config.requests_per_window))
        self.token_buckets[category] = min(float(config.requests_per_window), current + elapsed * refill_rate)
        self.last_refill[category] = now

    def _acquire_token(self, category: str, config: RateLimitConfig) -> bool:
        self._refill(category, config)
        if self.token_buckets[category] < 1:
            logger.warning(f"Rate limit reached for {category}, token bucket empty")
            return False
        self.token_buckets[category] -= 1
        return True

    def get_remaining_requests(self, category: str) -> int:
        """Estimated number of requests still allowed for a category."""
        with self._lock:
            config = self.configs.get(category)
            if config is None:
                return 0

            if config.strategy == "token_bucket":
                self._refill(category, config)
                return max(0, int(self.token_buckets[category]))

            now = time.time()
            recent = [t for t in self.sliding_windows[category] if now - t < config.window_seconds]
            return max(0, config.requests_per_window - len(recent))


def create_default_limiter() -> RateLimiter:
    """Rate limiter pre-configured with the budgets of the bundled providers."""
    limiter = RateLimiter()

    # NewsAPI free tier: 100 requests per day
    limiter.configure_limit("newsapi", RateLimitConfig(100, 86400, "sliding_window"))

    # X API v2 recent search (app-only): 300 requests per 15 minutes
    limiter.configure_limit("x_search", RateLimitConfig(300, 900, "sliding_window"))

    # Grok enrichment calls, one per item
    limiter.configure_limit("grok_enrich", RateLimitConfig(60, 60, "token_bucket"))

    return limiter


__all__ = ["RateLimitConfig", "RateLimiter", "create_default_limiter"]
