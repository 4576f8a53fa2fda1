"""
Aggregator module for Signal Terminal.

Architecture:
- Every ingestion cycle produces exactly one VelocitySnapshot (the window is
  "one cycle", not a fixed wall-clock bucket; the poller controls cadence)
- Snapshots live in a fixed-capacity ring buffer, oldest first
- Recent items live in a bounded, deduplicating ItemStore, newest first

Both structures are owned by the event loop that runs ingestion and alert
evaluation; they are never touched from worker threads.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from adapter.models import Item, ItemCategory

logger = logging.getLogger(__name__)

# Snapshots retained for spike detection and charts
DEFAULT_HISTORY_CAPACITY = 60

TOP_CATEGORIES = 5
TOP_KEYWORDS = 10

# Ids remembered by ItemStore, as a multiple of its capacity
SEEN_IDS_FACTOR = 10


class CategoryCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: ItemCategory
    count: int


class KeywordCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str
    count: int


class VelocitySnapshot(BaseModel):
    """
    Ingestion velocity for one cycle. Immutable once created.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(description="When the batch was ingested")
    count: int = Field(ge=0, description="Items ingested in this cycle")
    sentiment_avg: float = Field(default=0.0, description="Mean sentiment of analyzed items in the batch")
    top_categories: List[CategoryCount] = Field(default_factory=list)
    top_keywords: List[KeywordCount] = Field(default_factory=list)


def summarize_batch(items: Sequence[Item]) -> Dict[str, object]:
    """
    Compute snapshot statistics for a batch.

    Mean sentiment only covers items the annotator has scored; a batch with
    no scored items has a mean of 0.0.
    """
    scored = [item.sentiment.score for item in items if item.sentiment is not None]
    sentiment_avg = sum(scored) / len(scored) if scored else 0.0

    categories = Counter(item.category for item in items if item.category is not None)
    keywords = Counter(
        keyword.lower()
        for item in items if item.sentiment is not None
        for keyword in item.sentiment.keywords
    )

    return {
        "sentiment_avg": sentiment_avg,
        "top_categories": [
            CategoryCount(category=category, count=count)
            for category, count in categories.most_common(TOP_CATEGORIES)
        ],
        "top_keywords": [
            KeywordCount(keyword=keyword, count=count)
            for keyword, count in keywords.most_common(TOP_KEYWORDS)
        ],
    }


class VelocityAggregator:
    """
    Converts ingestion batches into a bounded rolling history of snapshots.

    Usage:
        aggregator = VelocityAggregator(capacity=60)
        aggregator.record_batch(new_items)
        aggregator.average_velocity()
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._history: Deque[VelocitySnapshot] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._history)

    def record(
        self,
        batch_size: int,
        sentiment_avg: float,
        at: Optional[datetime] = None,
        top_categories: Iterable[CategoryCount] = (),
        top_keywords: Iterable[KeywordCount] = ()
    ) -> VelocitySnapshot:
        """
        Append one snapshot for the batch just ingested, evicting the oldest
        snapshot when the history is full.
        """
        snapshot = VelocitySnapshot(
            timestamp=at or datetime.now(timezone.utc),
            count=batch_size,
            sentiment_avg=sentiment_avg,
            top_categories=list(top_categories),
            top_keywords=list(top_keywords),
        )
        self._history.append(snapshot)
        logger.debug(f"Recorded velocity snapshot: {batch_size} items (history={len(self._history)})")
        return snapshot

    def record_batch(self, items: Sequence[Item], at: Optional[datetime] = None) -> VelocitySnapshot:
        """Record a snapshot computed from the batch's items."""
        stats = summarize_batch(items)
        return self.record(len(items), at=at, **stats)

    def history(self) -> List[VelocitySnapshot]:
        """Snapshots, oldest first."""
        return list(self._history)

    def latest(self) -> Optional[VelocitySnapshot]:
        return self._history[-1] if self._history else None

    def current_velocity(self) -> int:
        return self._history[-1].count if self._history else 0

    def average_velocity(self, exclude_latest: bool = False) -> float:
        """
        Mean count over retained history.

        Args:
            exclude_latest: Leave out the most recent snapshot (baseline for
                comparing the current cycle against)
        """
        counts = [s.count for s in self._history]
        if exclude_latest:
            counts = counts[:-1]
        return sum(counts) / len(counts) if counts else 0.0

    def peak_velocity(self) -> int:
        return max((s.count for s in self._history), default=0)

    def clear(self) -> None:
        self._history.clear()


class ItemStore:
    """
    Bounded store of recent items, deduplicated by id.

    Items are kept newest first by creation time; the alert context is built
    from `recent()`. Ids of items trimmed from the store are remembered in a
    larger bounded set, so a source that keeps returning an old item does
    not make it count as new again.
    """

    def __init__(self, max_items: int = 500, seen_capacity: Optional[int] = None):
        self.max_items = max_items
        self.seen_capacity = max(seen_capacity or max_items * SEEN_IDS_FACTOR, max_items)
        self._items: List[Item] = []
        # Insertion-ordered; oldest ids are forgotten first
        self._seen: Dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._items)

    def _remember(self, item_id: str) -> None:
        self._seen[item_id] = None
        while len(self._seen) > self.seen_capacity:
            del self._seen[next(iter(self._seen))]

    def add_items(self, items: Iterable[Item]) -> List[Item]:
        """
        Add items, skipping ids already seen.

        Returns:
            The new items that are still in the store after trimming
        """
        stored = {i.id for i in self._items}
        candidates = []
        for item in items:
            if item.id in self._seen or item.id in stored:
                continue
            self._remember(item.id)
            candidates.append(item)

        if not candidates:
            return []

        self._items = sorted(self._items + candidates, key=lambda i: (i.created_at, i.id), reverse=True)
        del self._items[self.max_items:]

        kept = {i.id for i in self._items}
        return [item for item in candidates if item.id in kept]

    def recent(self, limit: Optional[int] = None) -> List[Item]:
        """Most recent items first."""
        return list(self._items if limit is None else self._items[:limit])

    def clear(self) -> None:
        self._items = []
        self._seen = {}


__all__ = [
    "CategoryCount",
    "DEFAULT_HISTORY_CAPACITY",
    "ItemStore",
    "KeywordCount",
    "VelocityAggregator",
    "VelocitySnapshot",
    "summarize_batch",
]
