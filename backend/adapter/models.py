"""
Shared data models for source adapters.

Every adapter normalizes its provider-specific payload into an Item. The
enrichment fields (sentiment, category, spam_score) stay None until the
annotator has looked at the item; None means "not analyzed", not "neutral".
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

# source_kind of items produced by the terminal fallback tier
SYNTHETIC_SOURCE = "synthetic"


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ItemCategory(str, Enum):
    """Editorial category assigned by the annotator."""
    BREAKING_NEWS = "breaking_news"
    RUMOR = "rumor"
    OPINION = "opinion"
    ANALYSIS = "analysis"
    OFFICIAL = "official"
    SPAM = "spam"
    UNKNOWN = "unknown"


class Author(BaseModel):
    id: str = Field(description="Provider-namespaced author ID")
    handle: str = Field(description="Author handle (without @)")
    display_name: str = Field(description="Human readable name")
    avatar_url: str = Field(default="", description="Avatar image URL")
    verified: bool = Field(default=False)
    follower_count: int = Field(default=0, ge=0, description="Influence weight")


class ItemMetrics(BaseModel):
    likes: int = Field(default=0, ge=0)
    reshares: int = Field(default=0, ge=0)
    replies: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)


class Sentiment(BaseModel):
    score: float = Field(ge=-1.0, le=1.0, description="-1 very negative, 0 neutral, 1 very positive")
    label: SentimentLabel
    confidence: float = Field(ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list, description="Terms that drove the score")
    analyzed_at: Optional[datetime] = Field(default=None)


class Item(BaseModel):
    """
    A single normalized content record (post or article) from any source.

    Attributes:
        id: Unique, adapter-namespaced ID
        text: Post text (articles are title + description)
        author: Who published it
        metrics: Engagement counters
        created_at: Publication time
        source_kind: Name of the adapter that produced it, or "synthetic"
        sentiment: Annotator sentiment, if analyzed
        category: Annotator category, if analyzed
        spam_score: Annotator spam probability, if analyzed
    """
    id: str = Field(description="Unique, adapter-namespaced item ID")
    text: str = Field(description="Item text")
    author: Author
    metrics: ItemMetrics = Field(default_factory=ItemMetrics)
    created_at: datetime = Field(description="When the item was published")
    source_kind: str = Field(description="Adapter name or 'synthetic'")

    sentiment: Optional[Sentiment] = Field(default=None)
    category: Optional[ItemCategory] = Field(default=None)
    spam_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_enriched(self) -> bool:
        return self.sentiment is not None and self.category is not None


__all__ = [
    "Author",
    "Item",
    "ItemCategory",
    "ItemMetrics",
    "Sentiment",
    "SentimentLabel",
    "SYNTHETIC_SOURCE",
]
