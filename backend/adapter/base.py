"""
Source adapter contract.

An adapter fetches a bounded batch of items from one external provider and
normalizes them into Item records. Internally adapters raise SourceAdapterError
subclasses; `fetch` and `fetch_async` turn every failure into a FetchResult so
nothing is thrown across the adapter boundary.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from monitoring import monitor, EventType
from .models import Item

logger = logging.getLogger(__name__)

# Per-fetch bound after which a provider counts as failed
DEFAULT_FETCH_TIMEOUT = 8.0


class SourceAdapterError(Exception):
    """Base exception for source adapter errors."""
    pass


class SourceAuthenticationError(SourceAdapterError):
    """Raised when credentials are missing or rejected."""
    pass


class SourceRateLimitError(SourceAdapterError):
    """Raised when the provider (or our own budget) refuses more requests."""
    def __init__(self, message: str, reset_time: int = None):
        super().__init__(message)
        self.reset_time = reset_time  # Unix timestamp when the limit resets


class SourceAPIError(SourceAdapterError):
    """Raised when the provider returns an error or cannot be reached."""
    def __init__(self, message: str, status_code: int = None, response_text: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class SourceTimeoutError(SourceAdapterError):
    """Raised when a fetch exceeds its time bound."""
    pass


class MalformedPayloadError(SourceAdapterError):
    """Raised when the provider response cannot be parsed into items."""
    pass


class FetchResult(BaseModel):
    """Outcome of one adapter fetch: items on success, a typed error otherwise."""
    source: str = Field(description="Adapter name")
    items: List[Item] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, description="Failure message")
    error_type: Optional[str] = Field(default=None, description="Failure class name")
    latency_ms: float = Field(default=0.0)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def diagnostic(self) -> str:
        return f"{self.source}: {self.error}"

    @classmethod
    def failure(cls, source: str, error: Exception, latency_ms: float = 0.0) -> "FetchResult":
        return cls(
            source=source,
            error=str(error) or error.__class__.__name__,
            error_type=error.__class__.__name__,
            latency_ms=latency_ms,
        )


class SourceAdapter(ABC):
    """
    Base class for all content providers.

    Subclasses implement `fetch_items`, raising SourceAdapterError subclasses
    on failure, and set `name` to a unique adapter id.
    """

    name: str = "source"

    @property
    def is_configured(self) -> bool:
        """Whether the adapter has the credentials it needs."""
        return True

    @abstractmethod
    def fetch_items(self, query: str, max_items: int) -> List[Item]:
        """Fetch and normalize up to `max_items` items. May raise."""

    def fetch(self, query: str, max_items: int) -> FetchResult:
        """Blocking fetch that never raises."""
        start_ms = time.time() * 1000
        try:
            items = self.fetch_items(query, max_items)
        except SourceAdapterError as e:
            latency_ms = (time.time() * 1000) - start_ms
            logger.warning(f"{self.name} fetch failed: {e}")
            return FetchResult.failure(self.name, e, latency_ms)
        except Exception as e:
            latency_ms = (time.time() * 1000) - start_ms
            logger.error(f"{self.name} fetch failed unexpectedly: {e}", exc_info=True)
            return FetchResult.failure(self.name, SourceAPIError(f"Unexpected error: {e}"), latency_ms)

        latency_ms = (time.time() * 1000) - start_ms
        return FetchResult(source=self.name, items=items[:max_items], latency_ms=latency_ms)

    async def fetch_async(
        self,
        query: str,
        max_items: int,
        timeout: float = DEFAULT_FETCH_TIMEOUT
    ) -> FetchResult:
        """
        Async fetch bounded by `timeout` seconds.

        The blocking fetch runs in a worker thread; a timeout is reported as
        a SourceTimeoutError failure. Never raises.
        """
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.fetch, query, max_items),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            result = FetchResult.failure(
                self.name,
                SourceTimeoutError(f"timed out after {timeout:g}s"),
                latency_ms=timeout * 1000,
            )
            logger.warning(f"{self.name} fetch timed out after {timeout:g}s")

        monitor.metrics.record_source_call(self.name, result.latency_ms, error=not result.ok)
        if result.ok:
            monitor.activity.add_event(
                EventType.SOURCE_CALL,
                source=self.name,
                items_fetched=len(result.items),
                latency_ms=round(result.latency_ms, 1)
            )
        else:
            monitor.activity.add_event(
                EventType.SOURCE_FAILURE,
                source=self.name,
                error=(result.error or "")[:200],
                error_type=result.error_type
            )
        return result


__all__ = [
    "DEFAULT_FETCH_TIMEOUT",
    "FetchResult",
    "MalformedPayloadError",
    "SourceAdapter",
    "SourceAdapterError",
    "SourceAPIError",
    "SourceAuthenticationError",
    "SourceRateLimitError",
    "SourceTimeoutError",
]
