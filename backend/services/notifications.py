"""
In-process notification channel.

Carries alert, spike, velocity and item events from the pipeline to whatever
pushes them to clients. Keeps a bounded buffer of recent notifications so the
API can serve them to clients that poll instead of subscribing.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class Notification(BaseModel):
    """One published event."""
    event: str = Field(description="Event name: alert, spike, velocity, items")
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationChannel:
    """
    Fan-out of published events to subscriber queues.

    Must be used from the event loop that owns the subscriber queues. A
    subscriber that stops draining its queue loses events instead of blocking
    publishers.

    Usage:
        channel = NotificationChannel()
        queue = channel.subscribe()
        channel.publish("alert", {...})
        notification = await queue.get()
    """

    def __init__(self, max_recent: int = 100, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._recent: Deque[Notification] = deque(maxlen=max_recent)
        self._subscribers: Set[asyncio.Queue] = set()
        self.queue_size = queue_size
        self.dropped = 0

    def publish(self, event: str, payload: Optional[Dict[str, Any]] = None) -> Notification:
        notification = Notification(event=event, payload=payload or {})
        self._recent.append(notification)

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(f"Subscriber queue full, dropped '{event}' notification")

        logger.debug(f"Published '{event}' to {len(self._subscribers)} subscribers")
        return notification

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def recent(self, limit: int = 20, event: Optional[str] = None) -> List[Notification]:
        """Most recent notifications first, optionally filtered by event name."""
        notifications = [n for n in reversed(self._recent) if event is None or n.event == event]
        return notifications[:limit]


__all__ = ["Notification", "NotificationChannel"]
