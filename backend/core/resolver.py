"""
Source resolver: ordered fallback across source tiers.

Tiers are tried in priority order. A tier produces a result only when its
merged, keyword-filtered output is non-empty; otherwise resolution moves on.
The terminal synthetic tier cannot fail, so `resolve` always returns items.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from adapter.base import DEFAULT_FETCH_TIMEOUT, FetchResult, SourceAdapter
from adapter.models import Item
from adapter.news import NewsAPIAdapter
from adapter.rate_limiter import RateLimiter
from adapter.rss import build_feed_adapters
from adapter.synthetic import SyntheticSource
from adapter.x import XAdapter
from monitoring import monitor, EventType

logger = logging.getLogger(__name__)

SYNTHETIC_TIER = "mock"


class SourceResolutionError(RuntimeError):
    """Raised when even the terminal tier cannot produce items."""
    pass


@dataclass
class SourceTier:
    """
    One level of the fallback chain.

    Adapters within a tier are queried concurrently and their results
    merged. Fan-out tiers group interchangeable sources of one kind (feeds)
    and can be narrowed per request.
    """
    name: str
    adapters: List[SourceAdapter] = field(default_factory=list)
    fan_out: bool = False


class ResolveResult(BaseModel):
    items: List[Item] = Field(default_factory=list, description="Newest first, at most max_items")
    source_kind: str = Field(description="Name of the tier that produced the items")
    diagnostics: List[str] = Field(default_factory=list, description="One entry per failed or skipped source")


def filter_by_keywords(items: Iterable[Item], keywords: Optional[Sequence[str]]) -> List[Item]:
    """Keep items whose text contains any keyword (case-insensitive). No keywords keeps all."""
    needles = [k.lower() for k in (keywords or []) if k]
    if not needles:
        return list(items)
    return [item for item in items if any(n in item.text.lower() for n in needles)]


def merge_items(batches: Iterable[List[Item]]) -> List[Item]:
    """Deduplicate by id and sort newest first, ties broken by id."""
    seen = {}
    for batch in batches:
        for item in batch:
            seen.setdefault(item.id, item)
    return sorted(seen.values(), key=lambda i: (i.created_at, i.id), reverse=True)


class SourceResolver:
    """
    Usage:
        resolver = build_default_resolver()
        result = await resolver.resolve("bitcoin", max_items=20, keywords=["etf"])
        result.source_kind  # "rss", "newsapi", "x_api" or "mock"
    """

    def __init__(
        self,
        tiers: Sequence[SourceTier],
        synthetic: Optional[SyntheticSource] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT
    ):
        self.tiers = list(tiers)
        self.synthetic = synthetic or SyntheticSource()
        self.timeout = timeout

    def _select_adapters(
        self,
        tier: SourceTier,
        sources: Optional[Sequence[str]],
        diagnostics: List[str]
    ) -> List[SourceAdapter]:
        adapters = tier.adapters
        if sources is not None and tier.fan_out:
            wanted = set(sources)
            adapters = [a for a in adapters if a.name in wanted]
            if not adapters:
                diagnostics.append(f"{tier.name}: no requested sources in tier")
                return []

        configured = []
        for adapter in adapters:
            if adapter.is_configured:
                configured.append(adapter)
            else:
                logger.debug(f"Skipping unconfigured source {adapter.name}")
                diagnostics.append(f"{adapter.name}: not configured")
        return configured

    async def _run_tier(
        self,
        adapters: List[SourceAdapter],
        query: str,
        max_items: int,
        diagnostics: List[str]
    ) -> List[Item]:
        results: List[FetchResult] = await asyncio.gather(
            *(adapter.fetch_async(query, max_items, timeout=self.timeout) for adapter in adapters)
        )

        successes = [r for r in results if r.ok]
        for failure in (r for r in results if not r.ok):
            logger.warning(f"Source failed: {failure.diagnostic}")
            diagnostics.append(failure.diagnostic)

        return merge_items(r.items for r in successes)

    async def resolve(
        self,
        query: str,
        max_items: int,
        keywords: Optional[Sequence[str]] = None,
        sources: Optional[Sequence[str]] = None
    ) -> ResolveResult:
        """
        Resolve up to `max_items` items for the query.

        Args:
            query: Provider search query
            max_items: Output cap (at least 1)
            keywords: Optional keyword filter applied to every tier's output
            sources: Optional adapter ids narrowing fan-out tiers

        Returns:
            ResolveResult from the first tier with a non-empty filtered result

        Raises:
            SourceResolutionError: The synthetic tier failed (systemic fault)
        """
        max_items = max(1, max_items)
        diagnostics: List[str] = []

        for tier in self.tiers:
            adapters = self._select_adapters(tier, sources, diagnostics)
            if not adapters:
                continue

            merged = await self._run_tier(adapters, query, max_items, diagnostics)
            filtered = filter_by_keywords(merged, keywords)
            if filtered:
                logger.info(f"Resolved {min(len(filtered), max_items)} items from tier {tier.name}")
                monitor.metrics.record_resolution(tier.name)
                return ResolveResult(items=filtered[:max_items], source_kind=tier.name, diagnostics=diagnostics)

            if merged:
                diagnostics.append(f"{tier.name}: no items matched keywords")
            logger.info(f"Tier {tier.name} produced no items, falling back")
            monitor.activity.add_event(EventType.TIER_FALLBACK, source=tier.name, query=query)

        try:
            items = self.synthetic.generate(max_items, keywords=keywords)
        except Exception as e:
            logger.exception("Synthetic tier failed")
            raise SourceResolutionError(f"Synthetic tier failed: {e}") from e

        items = merge_items([filter_by_keywords(items, keywords)])[:max_items]
        if not items:
            raise SourceResolutionError("Synthetic tier produced no items")

        logger.info(f"Resolved {len(items)} synthetic items ({len(diagnostics)} diagnostics)")
        monitor.metrics.record_resolution(SYNTHETIC_TIER)
        return ResolveResult(items=items, source_kind=SYNTHETIC_TIER, diagnostics=diagnostics)


def build_default_resolver(
    rss_sources: Optional[Iterable[str]] = None,
    rate_limiter: Optional[RateLimiter] = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    synthetic: Optional[SyntheticSource] = None
) -> SourceResolver:
    """
    The standard chain: RSS feeds (fan-out), NewsAPI, X API, then synthetic.
    """
    rate_limiter = rate_limiter or RateLimiter()
    return SourceResolver(
        tiers=[
            SourceTier("rss", list(build_feed_adapters(rss_sources, timeout=timeout)), fan_out=True),
            SourceTier("newsapi", [NewsAPIAdapter(rate_limiter=rate_limiter, timeout=timeout)]),
            SourceTier("x_api", [XAdapter(rate_limiter=rate_limiter, timeout=timeout)]),
        ],
        synthetic=synthetic,
        timeout=timeout,
    )


__all__ = [
    "ResolveResult",
    "SourceResolutionError",
    "SourceResolver",
    "SourceTier",
    "SYNTHETIC_TIER",
    "build_default_resolver",
    "filter_by_keywords",
    "merge_items",
]
