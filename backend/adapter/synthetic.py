"""
Synthetic item generator: the terminal tier of the source chain.

Produces plausible, already-enriched items with no external dependency, so
the dashboard always has something to show when every provider is down.
Pass a seed for reproducible output.
"""

from __future__ import annotations

import math
import random
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from .models import (
    SYNTHETIC_SOURCE,
    Author,
    Item,
    ItemCategory,
    ItemMetrics,
    Sentiment,
    SentimentLabel,
)


# (handle, display name, verified, followers)
SYNTHETIC_AUTHORS = [
    ("BBCBreaking", "BBC Breaking News", True, 58_000_000),
    ("Reuters", "Reuters", True, 25_000_000),
    ("WSJ", "The Wall Street Journal", True, 22_000_000),
    ("AP", "The Associated Press", True, 18_000_000),
    ("cryptowhale", "Crypto Whale", False, 450_000),
    ("newsbreaker", "News Breaker", False, 120_000),
    ("tech_insider", "Tech Insider", False, 890_000),
    ("markets_daily", "Markets Daily", False, 230_000),
    ("ai_updates", "AI Updates", True, 1_200_000),
    ("random_user_123", "John Doe", False, 342),
    ("bot_account_456", "News Bot", False, 5),
]

TOPICS = {
    "tech": [
        "Apple announces new AI-powered features for iPhone",
        "Google unveils breakthrough in quantum computing",
        "Microsoft to acquire major AI startup for $10B",
        "Amazon AWS experiences major outage affecting services",
        "NVIDIA hits new all-time high on AI chip demand",
    ],
    "crypto": [
        "Bitcoin breaks $100,000 for the first time",
        "Ethereum upgrade completed successfully",
        "Major exchange reports security breach",
        "SEC approves new crypto ETF applications",
        "DeFi protocol loses $50M in exploit",
    ],
    "politics": [
        "Congress passes major infrastructure bill",
        "President announces new trade policy",
        "International summit reaches historic agreement",
    ],
    "markets": [
        "S&P 500 reaches new record high",
        "Federal Reserve hints at rate changes",
        "Oil prices surge amid supply concerns",
        "Bond yields rise to multi-year highs",
    ],
}

BREAKING_TEMPLATES = [
    "BREAKING: {topic} - More details to follow",
    "JUST IN: {topic}",
    "DEVELOPING: {topic} according to sources",
    "ALERT: {topic} - officials confirm",
]

OPINION_TEMPLATES = [
    "Hot take: {topic}. What do you think?",
    "Unpopular opinion but {topic}",
    "Everyone is sleeping on {topic}",
    "Thread: Why {topic} matters more than you think",
]

RUMOR_TEMPLATES = [
    "Hearing rumors that {topic}. Unconfirmed.",
    "Sources say {topic} but not verified yet",
    "Word on the street: {topic}",
]

SPIKE_TEMPLATES = [
    "{topic}",
    "BREAKING: {topic}",
    "Just heard about {topic}",
    "Everyone talking about {topic}",
]

CATEGORY_WEIGHTS = [
    (ItemCategory.BREAKING_NEWS, 0.30),
    (ItemCategory.RUMOR, 0.15),
    (ItemCategory.OPINION, 0.25),
    (ItemCategory.ANALYSIS, 0.20),
    (ItemCategory.OFFICIAL, 0.10),
]

SENTIMENT_KEYWORDS = ["market", "tech", "breaking", "update"]


class SyntheticSource:
    """
    Infallible item generator.

    Usage:
        source = SyntheticSource(seed=42)
        items = source.generate(20, keywords=["bitcoin"])
    """

    name = SYNTHETIC_SOURCE

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def _next_id(self) -> str:
        return f"synthetic_{self._rng.getrandbits(64):016x}"

    def _pick_author(self) -> Author:
        handle, display_name, verified, followers = self._rng.choice(SYNTHETIC_AUTHORS)
        return Author(
            id=f"user_{handle}",
            handle=handle,
            display_name=display_name,
            avatar_url=f"https://unavatar.io/twitter/{handle}",
            verified=verified,
            follower_count=followers,
        )

    def _metrics(self, follower_count: int) -> ItemMetrics:
        weight = math.log10(follower_count + 1) / 2
        rng = self._rng
        return ItemMetrics(
            likes=int(rng.random() * 1000 * weight),
            reshares=int(rng.random() * 200 * weight),
            replies=int(rng.random() * 100 * weight),
            views=int(rng.random() * 50000 * weight),
        )

    def _sentiment(self, now: datetime) -> Sentiment:
        score = self._rng.uniform(-1.0, 1.0)
        if score > 0.3:
            label = SentimentLabel.POSITIVE
        elif score < -0.3:
            label = SentimentLabel.NEGATIVE
        else:
            label = SentimentLabel.NEUTRAL
        return Sentiment(
            score=score,
            label=label,
            confidence=0.7 + self._rng.random() * 0.3,
            keywords=SENTIMENT_KEYWORDS[: self._rng.randint(1, len(SENTIMENT_KEYWORDS))],
            analyzed_at=now,
        )

    def _category(self) -> ItemCategory:
        roll = self._rng.random()
        cumulative = 0.0
        for category, weight in CATEGORY_WEIGHTS:
            cumulative += weight
            if roll < cumulative:
                return category
        return ItemCategory.UNKNOWN

    def _text(self, category: ItemCategory, keyword: Optional[str]) -> str:
        topic = self._rng.choice(TOPICS[self._rng.choice(list(TOPICS))])
        if keyword:
            topic = f"{keyword}: {topic}"

        if category in (ItemCategory.BREAKING_NEWS, ItemCategory.OFFICIAL):
            template = self._rng.choice(BREAKING_TEMPLATES)
        elif category == ItemCategory.RUMOR:
            template = self._rng.choice(RUMOR_TEMPLATES)
        elif category in (ItemCategory.OPINION, ItemCategory.ANALYSIS):
            template = self._rng.choice(OPINION_TEMPLATES)
        else:
            template = "{topic}"
        return template.format(topic=topic)

    def generate_item(
        self,
        keyword: Optional[str] = None,
        now: Optional[datetime] = None,
        max_age_seconds: float = 60.0
    ) -> Item:
        """Generate one item created within the last `max_age_seconds`."""
        now = now or datetime.now(timezone.utc)
        author = self._pick_author()
        category = self._category()

        if author.follower_count < 10:
            spam_score = 0.8 + self._rng.random() * 0.2
        else:
            spam_score = self._rng.random() * 0.3

        return Item(
            id=self._next_id(),
            text=self._text(category, keyword),
            author=author,
            metrics=self._metrics(author.follower_count),
            created_at=now - timedelta(seconds=self._rng.random() * max_age_seconds),
            source_kind=SYNTHETIC_SOURCE,
            sentiment=self._sentiment(now),
            category=category,
            spam_score=spam_score,
        )

    def generate(self, count: int, keywords: Optional[Sequence[str]] = None) -> List[Item]:
        """
        Generate `count` items.

        When keywords are given, each item mentions one of them (round robin)
        so keyword filtering downstream keeps every item.
        """
        now = datetime.now(timezone.utc)
        keywords = [k for k in (keywords or []) if k]
        return [
            self.generate_item(keyword=keywords[i % len(keywords)] if keywords else None, now=now)
            for i in range(count)
        ]

    def generate_spike(self, topic: str, count: int = 20) -> List[Item]:
        """Generate a burst of near-simultaneous breaking items about one topic."""
        now = datetime.now(timezone.utc)
        items = []
        for _ in range(count):
            author = self._pick_author()
            items.append(Item(
                id=self._next_id(),
                text=self._rng.choice(SPIKE_TEMPLATES).format(topic=topic),
                author=author,
                metrics=self._metrics(author.follower_count),
                created_at=now - timedelta(seconds=self._rng.random() * 10),
                source_kind=SYNTHETIC_SOURCE,
                sentiment=self._sentiment(now),
                category=ItemCategory.BREAKING_NEWS,
                spam_score=0.1,
            ))
        return items


__all__ = ["SyntheticSource", "SYNTHETIC_AUTHORS"]
