"""
Unit tests for the SourceResolver fallback chain.
"""

import asyncio
import time
import pytest
from datetime import datetime, timezone, timedelta
from typing import List

from adapter.base import MalformedPayloadError, SourceAdapter, SourceAPIError
from adapter.models import Author, Item
from adapter.synthetic import SyntheticSource
from core.resolver import (
    SourceResolutionError,
    SourceResolver,
    SourceTier,
    filter_by_keywords,
    merge_items,
)


BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def create_item(item_id, offset_seconds=0, text=None, source="fake"):
    return Item(
        id=item_id,
        text=text or f"Headline {item_id}",
        author=Author(id="a1", handle="desk", display_name="News Desk"),
        created_at=BASE_TIME + timedelta(seconds=offset_seconds),
        source_kind=source,
    )


class FakeAdapter(SourceAdapter):
    """Adapter returning canned items or raising a canned error."""

    def __init__(self, name, items=None, error=None, delay=0.0, configured=True):
        self.name = name
        self.items = items or []
        self.error = error
        self.delay = delay
        self.configured = configured
        self.calls = 0

    @property
    def is_configured(self) -> bool:
        return self.configured

    def fetch_items(self, query: str, max_items: int) -> List[Item]:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.items[:max_items]


# ============================================================================
# Helpers
# ============================================================================

def test_merge_dedups_and_sorts_newest_first():
    merged = merge_items([
        [create_item("a", 10), create_item("b", 30)],
        [create_item("b", 30), create_item("c", 20)],
    ])

    assert [i.id for i in merged] == ["b", "c", "a"]


def test_merge_breaks_ties_by_id():
    merged = merge_items([[create_item("a", 0), create_item("c", 0), create_item("b", 0)]])

    assert [i.id for i in merged] == ["c", "b", "a"]


def test_filter_by_keywords():
    items = [create_item("1", text="Bitcoin ETF"), create_item("2", text="Oil prices")]

    assert [i.id for i in filter_by_keywords(items, ["etf"])] == ["1"]
    assert len(filter_by_keywords(items, None)) == 2
    assert len(filter_by_keywords(items, [])) == 2


# ============================================================================
# Resolution
# ============================================================================

class TestResolve:

    @pytest.mark.asyncio
    async def test_fan_out_merges_feeds(self):
        feed_a = FakeAdapter("feed_a", [create_item("a1", 10), create_item("a2", 40)])
        feed_b = FakeAdapter("feed_b", [create_item("b1", 20), create_item("b2", 30)])
        resolver = SourceResolver([SourceTier("rss", [feed_a, feed_b], fan_out=True)])

        result = await resolver.resolve("q", max_items=10)

        assert result.source_kind == "rss"
        assert [i.id for i in result.items] == ["a2", "b2", "b1", "a1"]
        assert result.diagnostics == []

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_siblings(self):
        good = FakeAdapter("good", [create_item("g1")])
        bad = FakeAdapter("bad", error=MalformedPayloadError("not xml"))
        resolver = SourceResolver([SourceTier("rss", [good, bad], fan_out=True)])

        result = await resolver.resolve("q", max_items=10)

        assert result.source_kind == "rss"
        assert [i.id for i in result.items] == ["g1"]
        assert result.diagnostics == ["bad: not xml"]

    @pytest.mark.asyncio
    async def test_falls_back_to_next_tier(self):
        rss = FakeAdapter("feed", error=SourceAPIError("HTTP 503"))
        news = FakeAdapter("newsapi", [create_item("n1")])
        resolver = SourceResolver([
            SourceTier("rss", [rss], fan_out=True),
            SourceTier("newsapi", [news]),
        ])

        result = await resolver.resolve("q", max_items=5)

        assert result.source_kind == "newsapi"
        assert [i.id for i in result.items] == ["n1"]
        assert result.diagnostics == ["feed: HTTP 503"]

    @pytest.mark.asyncio
    async def test_empty_tier_falls_back(self):
        empty = FakeAdapter("feed", [])
        x = FakeAdapter("x_api", [create_item("x1")])
        resolver = SourceResolver([SourceTier("rss", [empty], fan_out=True), SourceTier("x_api", [x])])

        result = await resolver.resolve("q", max_items=5)

        assert result.source_kind == "x_api"

    @pytest.mark.asyncio
    async def test_first_success_stops_the_chain(self):
        first = FakeAdapter("newsapi", [create_item("n1")])
        second = FakeAdapter("x_api", [create_item("x1")])
        resolver = SourceResolver([SourceTier("newsapi", [first]), SourceTier("x_api", [second])])

        await resolver.resolve("q", max_items=5)

        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_all_fail_yields_synthetic(self):
        resolver = SourceResolver(
            [
                SourceTier("rss", [FakeAdapter("feed", error=SourceAPIError("down"))], fan_out=True),
                SourceTier("newsapi", [FakeAdapter("newsapi", error=SourceAPIError("401"))]),
                SourceTier("x_api", [FakeAdapter("x_api", error=SourceAPIError("429"))]),
            ],
            synthetic=SyntheticSource(seed=7),
        )

        result = await resolver.resolve("q", max_items=12)

        assert result.source_kind == "mock"
        assert len(result.items) == 12
        assert all(item.source_kind == "synthetic" for item in result.items)
        assert len(result.diagnostics) == 3

    @pytest.mark.asyncio
    async def test_no_tiers_yields_synthetic(self):
        resolver = SourceResolver([], synthetic=SyntheticSource(seed=1))

        result = await resolver.resolve("q", max_items=3)

        assert result.source_kind == "mock"
        assert len(result.items) == 3

    @pytest.mark.asyncio
    async def test_output_capped_and_sorted(self):
        items = [create_item(f"i{n}", n) for n in range(30)]
        resolver = SourceResolver([SourceTier("newsapi", [FakeAdapter("newsapi", items)])])

        result = await resolver.resolve("q", max_items=5)

        assert len(result.items) == 5
        timestamps = [i.created_at for i in result.items]
        assert timestamps == sorted(timestamps, reverse=True)

    @pytest.mark.asyncio
    async def test_keyword_filter_applies_before_emptiness_check(self):
        rss = FakeAdapter("feed", [create_item("r1", text="Oil prices climb")])
        news = FakeAdapter("newsapi", [create_item("n1", text="Bitcoin ETF inflows")])
        resolver = SourceResolver([SourceTier("rss", [rss], fan_out=True), SourceTier("newsapi", [news])])

        result = await resolver.resolve("q", max_items=5, keywords=["bitcoin"])

        assert result.source_kind == "newsapi"
        assert [i.id for i in result.items] == ["n1"]
        assert "rss: no items matched keywords" in result.diagnostics

    @pytest.mark.asyncio
    async def test_synthetic_tier_honours_keywords(self):
        resolver = SourceResolver([], synthetic=SyntheticSource(seed=3))

        result = await resolver.resolve("q", max_items=8, keywords=["solana", "ETF"])

        assert len(result.items) == 8
        for item in result.items:
            text = item.text.lower()
            assert "solana" in text or "etf" in text

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self):
        slow = FakeAdapter("slow", [create_item("s1")], delay=0.5)
        fast = FakeAdapter("fast", [create_item("f1")])
        resolver = SourceResolver([SourceTier("rss", [slow, fast], fan_out=True)], timeout=0.05)

        result = await resolver.resolve("q", max_items=5)

        assert [i.id for i in result.items] == ["f1"]
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].startswith("slow: timed out")

    @pytest.mark.asyncio
    async def test_sources_narrow_fan_out_tier(self):
        feed_a = FakeAdapter("feed_a", [create_item("a1")])
        feed_b = FakeAdapter("feed_b", [create_item("b1")])
        resolver = SourceResolver([SourceTier("rss", [feed_a, feed_b], fan_out=True)])

        result = await resolver.resolve("q", max_items=5, sources=["feed_b"])

        assert [i.id for i in result.items] == ["b1"]
        assert feed_a.calls == 0

    @pytest.mark.asyncio
    async def test_sources_do_not_narrow_single_provider_tiers(self):
        feed = FakeAdapter("feed_a", [create_item("a1")])
        news = FakeAdapter("newsapi", [create_item("n1")])
        resolver = SourceResolver([SourceTier("rss", [feed], fan_out=True), SourceTier("newsapi", [news])])

        result = await resolver.resolve("q", max_items=5, sources=["feed_z"])

        assert result.source_kind == "newsapi"
        assert "rss: no requested sources in tier" in result.diagnostics

    @pytest.mark.asyncio
    async def test_unconfigured_adapter_is_skipped(self):
        news = FakeAdapter("newsapi", [create_item("n1")], configured=False)
        resolver = SourceResolver([SourceTier("newsapi", [news])], synthetic=SyntheticSource(seed=2))

        result = await resolver.resolve("q", max_items=2)

        assert news.calls == 0
        assert result.source_kind == "mock"
        assert result.diagnostics == ["newsapi: not configured"]

    @pytest.mark.asyncio
    async def test_unexpected_adapter_exception_is_contained(self):
        broken = FakeAdapter("broken", error=KeyError("title"))
        news = FakeAdapter("newsapi", [create_item("n1")])
        resolver = SourceResolver([SourceTier("rss", [broken], fan_out=True), SourceTier("newsapi", [news])])

        result = await resolver.resolve("q", max_items=5)

        assert result.source_kind == "newsapi"
        assert result.diagnostics[0].startswith("broken: Unexpected error")

    @pytest.mark.asyncio
    async def test_synthetic_failure_is_systemic(self):
        class BrokenSynthetic(SyntheticSource):
            def generate(self, count, keywords=None):
                raise RuntimeError("rng exploded")

        resolver = SourceResolver([], synthetic=BrokenSynthetic())

        with pytest.raises(SourceResolutionError):
            await resolver.resolve("q", max_items=5)
