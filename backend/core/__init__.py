"""
Core services for Signal Terminal backend.
- IngestionService: one ingestion cycle (resolve, enrich, store, record velocity)
- IngestionPoller: background service running cycles on a fixed cadence

Architecture:
- One velocity snapshot per cycle, counting only newly seen items
- The alert engine's context is refreshed at the end of every cycle; the
  engine evaluates on its own timer
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from adapter.grok import GrokAdapter
from adapter.models import Item
from aggregator import ItemStore, VelocityAggregator, VelocitySnapshot
from alerts import AlertEngine, SpikeDetectionResult, detect_spike, DEFAULT_SPIKE_THRESHOLD
from monitoring import monitor, EventType
from services.notifications import NotificationChannel
from .resolver import (
    ResolveResult,
    SourceResolutionError,
    SourceResolver,
    SourceTier,
    build_default_resolver,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_MAX_ITEMS = 20

# Items handed to the alert context each cycle
CONTEXT_ITEMS = 100


class IngestionResult(BaseModel):
    """Outcome of one ingestion cycle."""
    source_kind: str
    fetched: int = Field(description="Items returned by the resolver")
    new_items: List[Item] = Field(default_factory=list, description="Items not seen in earlier cycles")
    snapshot: VelocitySnapshot
    spike: SpikeDetectionResult
    diagnostics: List[str] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IngestionService:
    """
    Runs ingestion cycles and feeds their output to the aggregator, the
    notification channel and the alert engine.

    Usage:
        service = IngestionService(resolver, grok, aggregator, store, engine, channel)
        result = await service.ingest_once()
    """

    def __init__(
        self,
        resolver: SourceResolver,
        grok_adapter: Optional[GrokAdapter],
        aggregator: VelocityAggregator,
        item_store: ItemStore,
        alert_engine: Optional[AlertEngine] = None,
        channel: Optional[NotificationChannel] = None,
        query: str = "",
        keywords: Optional[Sequence[str]] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        spike_threshold: float = DEFAULT_SPIKE_THRESHOLD
    ):
        self.resolver = resolver
        self.grok_adapter = grok_adapter
        self.aggregator = aggregator
        self.item_store = item_store
        self.alert_engine = alert_engine
        self.channel = channel
        self.query = query
        self.keywords = list(keywords or [])
        self.max_items = max_items
        self.spike_threshold = spike_threshold

        self.cycle_count = 0
        self.last_result: Optional[IngestionResult] = None
        # Serializes cycles started by the poller and by the API
        self._lock = asyncio.Lock()

    async def ingest_once(
        self,
        query: Optional[str] = None,
        keywords: Optional[Sequence[str]] = None
    ) -> IngestionResult:
        """
        Run one ingestion cycle.

        Raises:
            SourceResolutionError: Only if the synthetic tier itself fails
        """
        async with self._lock:
            return await self._ingest(
                query if query is not None else self.query,
                keywords if keywords is not None else self.keywords,
            )

    async def _ingest(self, query: str, keywords: Sequence[str]) -> IngestionResult:
        resolved: ResolveResult = await self.resolver.resolve(query, self.max_items, keywords=keywords)

        items = resolved.items
        if self.grok_adapter is not None:
            items = await self.grok_adapter.enrich_batch_async(items)

        new_items = self.item_store.add_items(items)
        snapshot = self.aggregator.record_batch(new_items)
        history = self.aggregator.history()
        spike = detect_spike(history, self.spike_threshold)

        self.cycle_count += 1
        monitor.metrics.record_items(len(new_items))
        monitor.metrics.record_snapshot()
        monitor.activity.add_event(
            EventType.INGEST,
            source=resolved.source_kind,
            fetched=len(items),
            new_items=len(new_items),
            diagnostics=len(resolved.diagnostics),
        )
        logger.info(
            f"Ingestion cycle {self.cycle_count}: {len(new_items)} new of {len(items)} "
            f"from {resolved.source_kind}"
        )

        if spike.is_spike:
            logger.info(
                f"Velocity spike: {spike.current_count} items vs avg {spike.average_count:.1f} "
                f"({spike.severity.value})"
            )
            monitor.activity.add_event(
                EventType.SPIKE_DETECTED,
                source="aggregator",
                severity=spike.severity.value,
                current=spike.current_count,
                average=round(spike.average_count, 2),
            )

        if self.channel is not None:
            if spike.is_spike:
                self.channel.publish("spike", spike.model_dump(mode="json"))
            self.channel.publish("velocity", snapshot.model_dump(mode="json"))
            if new_items:
                self.channel.publish("items", {
                    "source_kind": resolved.source_kind,
                    "items": [item.model_dump(mode="json") for item in new_items],
                })

        if self.alert_engine is not None:
            self.alert_engine.update_context(
                items=self.item_store.recent(CONTEXT_ITEMS),
                snapshots=history,
            )

        result = IngestionResult(
            source_kind=resolved.source_kind,
            fetched=len(items),
            new_items=new_items,
            snapshot=snapshot,
            spike=spike,
            diagnostics=resolved.diagnostics,
        )
        self.last_result = result
        return result


class IngestionPoller:
    """
    Background service that runs ingestion cycles.

    Usage:
        poller = IngestionPoller(service, poll_interval=60)
        await poller.start()  # First cycle runs immediately
        await poller.stop()
    """

    def __init__(self, service: IngestionService, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.service = service
        self.poll_interval = poll_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background polling task."""
        if self._running:
            logger.warning("Poller already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"IngestionPoller started with {self.poll_interval}s interval")

    async def stop(self):
        """Stop the background polling task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("IngestionPoller stopped")

    async def _poll_loop(self):
        """Main polling loop."""
        while self._running:
            try:
                await self.service.ingest_once()
            except SourceResolutionError as e:
                logger.critical(f"Ingestion cannot produce items: {e}")
                monitor.set_component_status("ingestion", "error", {"error": str(e)})
            except Exception as e:
                logger.error(f"Error in poll loop: {e}", exc_info=True)
            else:
                monitor.set_component_status("ingestion", "healthy", {"cycles": self.service.cycle_count})

            await asyncio.sleep(self.poll_interval)

    async def poll_now(self) -> IngestionResult:
        """Manually trigger a cycle."""
        return await self.service.ingest_once()


__all__ = [
    "DEFAULT_MAX_ITEMS",
    "DEFAULT_POLL_INTERVAL",
    "IngestionPoller",
    "IngestionResult",
    "IngestionService",
    "ResolveResult",
    "SourceResolutionError",
    "SourceResolver",
    "SourceTier",
    "build_default_resolver",
]
