"""
Grok (xai-sdk) annotator: enriches items with sentiment, category and spam score.

Enrichment is best effort. Without XAI_API_KEY, on API failure, or when the
request budget is exhausted, items come back unchanged and ingestion carries
on with partially enriched data.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel, Field
from xai_sdk import Client
from xai_sdk.chat import system, user

from monitoring import monitor, EventType
from ..models import Item, ItemCategory, Sentiment, SentimentLabel
from ..rate_limiter import RateLimiter, RateLimitConfig

load_dotenv(find_dotenv(usecwd=True))

logger = logging.getLogger(__name__)

# Concurrent Grok calls per batch
DEFAULT_CONCURRENCY = 5


class ItemAnalysis(BaseModel):
    """Structured annotator reply for one item."""
    sentiment_score: float = Field(ge=-1.0, le=1.0, description="-1 very negative, 0 neutral, 1 very positive")
    sentiment_label: SentimentLabel = Field(description="positive / negative / neutral")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence in the sentiment")
    keywords: List[str] = Field(description="1-5 key terms that influenced the sentiment")
    category: ItemCategory = Field(description="Editorial category of the post")
    spam_score: float = Field(ge=0.0, le=1.0, description="Probability the post is spam or from a bot")


SYSTEM_PROMPT = """You annotate social media posts and news headlines for a live monitoring dashboard.
For each post return:
- sentiment score from -1 (very negative) to 1 (very positive), its label and your confidence
- 1-5 keywords that drove the sentiment
- category: breaking_news (confirmed news from reliable sources), rumor (unverified speculation),
  opinion (hot takes, commentary), analysis (in-depth research), official (statements from
  organizations), spam (promotion, bots, irrelevant)
- spam score from 0 to 1 considering promotional language, template-like text and low follower counts"""


class GrokAdapter:
    """
    Annotator backed by the Grok API.

    Usage:
        grok = GrokAdapter()
        enriched = await grok.enrich_batch_async(items)
    """

    DEFAULT_RATE_LIMIT = RateLimitConfig(
        requests_per_window=60,
        window_seconds=60,
        strategy="token_bucket"
    )

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        concurrency: int = DEFAULT_CONCURRENCY
    ) -> None:
        self.api_key = os.getenv("XAI_API_KEY")
        self.model = os.getenv("GROK_MODEL_FAST", "grok-4-1-fast")
        self.concurrency = concurrency
        self._client: Optional[Client] = None

        self.rate_limiter = rate_limiter or RateLimiter()
        if "grok_enrich" not in self.rate_limiter.configs:
            self.rate_limiter.configure_limit("grok_enrich", self.DEFAULT_RATE_LIMIT)

        if self.api_key:
            try:
                self._client = Client(api_key=self.api_key)
                logger.info("GrokAdapter initialized with live API client")
            except Exception as e:
                logger.warning(f"Failed to initialize xAI client: {e}")
                self._client = None
        else:
            logger.warning("GrokAdapter initialized without API client - enrichment disabled")

    @property
    def is_live(self) -> bool:
        return self._client is not None

    def _structured_call(self, user_prompt: str) -> Optional[ItemAnalysis]:
        """
        Perform a structured chat call. Returns None on any failure.
        """
        if not self._client:
            return None

        if not self.rate_limiter.try_acquire("grok_enrich"):
            monitor.activity.add_event(EventType.RATE_LIMIT_WARNING, source="grok", category="grok_enrich")
            return None

        start_time_ms = time.time() * 1000
        try:
            chat = self._client.chat.create(model=self.model)
            chat.append(system(SYSTEM_PROMPT))
            chat.append(user(user_prompt))
            _, payload = chat.parse(ItemAnalysis)

            latency_ms = (time.time() * 1000) - start_time_ms
            logger.debug(f"Grok call successful ({latency_ms:.0f}ms)")
            monitor.metrics.record_grok_call(latency_ms, error=False)
            return payload

        except Exception as e:
            latency_ms = (time.time() * 1000) - start_time_ms
            logger.error(f"Grok call failed: {e}", exc_info=True)
            monitor.metrics.record_grok_call(latency_ms, error=True)
            monitor.activity.add_event(
                EventType.ENRICHMENT_FAILURE,
                source="grok",
                error=f"Grok API: {str(e)[:100]}",
                model=self.model
            )
            return None

    def _build_prompt(self, item: Item) -> str:
        author = item.author
        return (
            f"Post from @{author.handle} (followers: {author.follower_count}, verified: {author.verified}):\n"
            f"\"{item.text}\""
        )

    def enrich(self, item: Item) -> Item:
        """
        Annotate one item. Returns the original item if it is already
        enriched or if the annotator is unavailable.
        """
        if item.is_enriched or not self.is_live:
            return item

        analysis = self._structured_call(self._build_prompt(item))
        if not isinstance(analysis, ItemAnalysis):
            return item

        return item.model_copy(update={
            "sentiment": Sentiment(
                score=analysis.sentiment_score,
                label=analysis.sentiment_label,
                confidence=analysis.confidence,
                keywords=analysis.keywords[:5],
                analyzed_at=datetime.now(timezone.utc),
            ),
            "category": analysis.category,
            "spam_score": analysis.spam_score,
        })

    async def enrich_batch_async(self, items: List[Item]) -> List[Item]:
        """
        Annotate a batch concurrently, preserving order.
        Runs the blocking xai-sdk calls in a thread pool.
        """
        if not self.is_live or not items:
            return list(items)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _enrich_one(item: Item) -> Item:
            async with semaphore:
                try:
                    return await asyncio.to_thread(self.enrich, item)
                except Exception as e:
                    logger.error(f"Enrichment of {item.id} failed: {e}", exc_info=True)
                    return item

        return list(await asyncio.gather(*(_enrich_one(item) for item in items)))


__all__ = ["GrokAdapter", "ItemAnalysis"]
