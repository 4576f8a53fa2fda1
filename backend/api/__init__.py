"""
FastAPI routes for Signal Terminal backend.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Depends
from pydantic import BaseModel, Field

from adapter.models import Item
from aggregator import ItemStore, VelocityAggregator, VelocitySnapshot
from alerts import (
    Alert,
    AlertConfigurationError,
    AlertEngine,
    SpikeDetectionResult,
    detect_spike,
    DEFAULT_SPIKE_THRESHOLD,
)
from core import IngestionService, IngestionPoller, SourceResolver, SourceResolutionError
from monitoring import monitor, get_rate_limit_status, EventType
from services.notifications import Notification, NotificationChannel

logger = logging.getLogger(__name__)

# Router for API endpoints
router = APIRouter(prefix="/api/v1", tags=["Signal Terminal"])

MAX_ITEMS_PER_REQUEST = 50


# ============================================================================
# Request/Response Models
# ============================================================================

class ItemsResponse(BaseModel):
    """Resolved items with the tier that produced them."""
    items: List[Item]
    source_kind: str = Field(description="rss, newsapi, x_api or mock")
    diagnostics: List[str] = Field(default_factory=list, description="Failed or skipped sources")


class IngestResponse(BaseModel):
    """Response after running an ingestion cycle."""
    source_kind: str
    fetched: int
    new_items: int
    snapshot: VelocitySnapshot
    spike: SpikeDetectionResult
    diagnostics: List[str]


class VelocityResponse(BaseModel):
    """Velocity history and derived statistics."""
    current: int
    average: float
    peak: int
    capacity: int
    history: List[VelocitySnapshot]


class CreateAlertRequest(BaseModel):
    """
    Request to create an alert.

    Conditions and actions are validated by the alert engine so that
    configuration errors come back as 400 with a readable message.
    """
    name: str = Field(description="Display name")
    enabled: bool = Field(default=True)
    conditions: List[Dict[str, Any]] = Field(description="Tagged conditions, e.g. {'type': 'velocity_spike', 'threshold': 300}")
    actions: List[Dict[str, Any]] = Field(default_factory=list, description="Tagged actions, e.g. {'type': 'in_app_notification'}")


class CheckAlertsResponse(BaseModel):
    checked: int
    triggered: List[Alert]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    alerts_count: int
    enabled_alerts: int
    monitoring: bool
    polling: bool
    snapshots: int
    stored_items: int


# ============================================================================
# Dependency Injection - these get set by the main app
# ============================================================================

_resolver: Optional[SourceResolver] = None
_ingestion_service: Optional[IngestionService] = None
_ingestion_poller: Optional[IngestionPoller] = None
_aggregator: Optional[VelocityAggregator] = None
_item_store: Optional[ItemStore] = None
_alert_engine: Optional[AlertEngine] = None
_channel: Optional[NotificationChannel] = None


def set_dependencies(
    resolver: SourceResolver,
    ingestion_service: IngestionService,
    ingestion_poller: Optional[IngestionPoller],
    aggregator: VelocityAggregator,
    item_store: ItemStore,
    alert_engine: AlertEngine,
    channel: NotificationChannel
):
    """Set the service dependencies (called from main app)."""
    global _resolver, _ingestion_service, _ingestion_poller, _aggregator, _item_store, _alert_engine, _channel
    _resolver = resolver
    _ingestion_service = ingestion_service
    _ingestion_poller = ingestion_poller
    _aggregator = aggregator
    _item_store = item_store
    _alert_engine = alert_engine
    _channel = channel


def get_resolver() -> SourceResolver:
    if _resolver is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _resolver


def get_ingestion_service() -> IngestionService:
    if _ingestion_service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _ingestion_service


def get_aggregator() -> VelocityAggregator:
    if _aggregator is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _aggregator


def get_item_store() -> ItemStore:
    if _item_store is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _item_store


def get_alert_engine() -> AlertEngine:
    if _alert_engine is None:
        raise HTTPException(status_code=503, detail="Alert engine not initialized")
    return _alert_engine


def get_channel() -> NotificationChannel:
    if _channel is None:
        raise HTTPException(status_code=503, detail="Notification channel not initialized")
    return _channel


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    parts = [p.strip() for p in value.split(",") if p.strip()]
    return parts or None


# ============================================================================
# Routes
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(
    engine: AlertEngine = Depends(get_alert_engine),
    aggregator: VelocityAggregator = Depends(get_aggregator),
    store: ItemStore = Depends(get_item_store)
):
    """Health check endpoint."""
    alerts = engine.list_alerts()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        alerts_count=len(alerts),
        enabled_alerts=sum(1 for a in alerts if a.enabled),
        monitoring=engine.is_monitoring,
        polling=_ingestion_poller.is_running if _ingestion_poller else False,
        snapshots=len(aggregator),
        stored_items=len(store),
    )


# ----------------------------------------------------------------------------
# Items & ingestion
# ----------------------------------------------------------------------------

@router.get("/items", response_model=ItemsResponse)
async def get_items(
    query: str = Query(default="breaking OR market OR technology OR politics", description="Provider search query"),
    max_items: int = Query(default=20, ge=1, alias="max", description="Maximum items (capped at 50)"),
    sources: Optional[str] = Query(default=None, description="Comma-separated feed ids to query"),
    keywords: Optional[str] = Query(default=None, description="Comma-separated keyword filter"),
    resolver: SourceResolver = Depends(get_resolver)
):
    """
    Fetch items through the source fallback chain.

    Always returns items; when every provider fails the synthetic tier
    answers and `source_kind` is "mock".
    """
    try:
        result = await resolver.resolve(
            query,
            min(max_items, MAX_ITEMS_PER_REQUEST),
            keywords=_split_csv(keywords),
            sources=_split_csv(sources),
        )
    except SourceResolutionError as e:
        logger.critical(f"Source resolution failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return ItemsResponse(items=result.items, source_kind=result.source_kind, diagnostics=result.diagnostics)


@router.post("/ingest", response_model=IngestResponse)
async def ingest_now(service: IngestionService = Depends(get_ingestion_service)):
    """Run one ingestion cycle now."""
    try:
        result = await service.ingest_once()
    except SourceResolutionError as e:
        logger.critical(f"Ingestion failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return IngestResponse(
        source_kind=result.source_kind,
        fetched=result.fetched,
        new_items=len(result.new_items),
        snapshot=result.snapshot,
        spike=result.spike,
        diagnostics=result.diagnostics,
    )


@router.get("/items/recent", response_model=List[Item])
async def get_recent_items(
    limit: int = Query(default=50, ge=1, le=500),
    store: ItemStore = Depends(get_item_store)
):
    """Items ingested so far, newest first."""
    return store.recent(limit)


# ----------------------------------------------------------------------------
# Velocity
# ----------------------------------------------------------------------------

@router.get("/velocity", response_model=VelocityResponse)
async def get_velocity(aggregator: VelocityAggregator = Depends(get_aggregator)):
    """Velocity history, oldest first, with current/average/peak."""
    return VelocityResponse(
        current=aggregator.current_velocity(),
        average=aggregator.average_velocity(),
        peak=aggregator.peak_velocity(),
        capacity=aggregator.capacity,
        history=aggregator.history(),
    )


@router.get("/velocity/spike", response_model=SpikeDetectionResult)
async def get_spike(
    threshold: float = Query(default=DEFAULT_SPIKE_THRESHOLD, gt=0, description="Spike threshold, percent"),
    aggregator: VelocityAggregator = Depends(get_aggregator)
):
    """Run spike detection on the current history."""
    return detect_spike(aggregator.history(), threshold)


# ----------------------------------------------------------------------------
# Alerts
# ----------------------------------------------------------------------------

@router.get("/alerts", response_model=List[Alert])
async def list_alerts(engine: AlertEngine = Depends(get_alert_engine)):
    """List all alerts."""
    return engine.list_alerts()


@router.post("/alerts", response_model=Alert, status_code=201)
async def create_alert(
    request: CreateAlertRequest,
    engine: AlertEngine = Depends(get_alert_engine)
):
    """Create an alert."""
    try:
        return engine.create_alert(
            name=request.name,
            conditions=request.conditions,
            actions=request.actions,
            enabled=request.enabled,
        )
    except AlertConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/alerts/check", response_model=CheckAlertsResponse)
async def check_alerts(engine: AlertEngine = Depends(get_alert_engine)):
    """Evaluate all enabled alerts against the current context now."""
    triggered = await engine.check_alerts()
    return CheckAlertsResponse(
        checked=sum(1 for a in engine.list_alerts() if a.enabled),
        triggered=triggered,
    )


@router.get("/alerts/{alert_id}", response_model=Alert)
async def get_alert(alert_id: str, engine: AlertEngine = Depends(get_alert_engine)):
    """Get a specific alert."""
    alert = engine.get_alert(alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail=f"Alert '{alert_id}' not found")
    return alert


@router.delete("/alerts/{alert_id}", status_code=204)
async def delete_alert(alert_id: str, engine: AlertEngine = Depends(get_alert_engine)):
    """Delete an alert."""
    if not engine.delete_alert(alert_id):
        raise HTTPException(status_code=404, detail=f"Alert '{alert_id}' not found")


@router.post("/alerts/{alert_id}/enable", response_model=Alert)
async def enable_alert(alert_id: str, engine: AlertEngine = Depends(get_alert_engine)):
    """Enable an alert."""
    alert = engine.enable_alert(alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail=f"Alert '{alert_id}' not found")
    return alert


@router.post("/alerts/{alert_id}/disable", response_model=Alert)
async def disable_alert(alert_id: str, engine: AlertEngine = Depends(get_alert_engine)):
    """Disable an alert; it is skipped by every tick until re-enabled."""
    alert = engine.disable_alert(alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail=f"Alert '{alert_id}' not found")
    return alert


# ----------------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------------

@router.get("/notifications", response_model=List[Notification])
async def get_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    event: Optional[str] = Query(default=None, description="Filter by event: alert, spike, velocity, items"),
    channel: NotificationChannel = Depends(get_channel)
):
    """Recent notifications, newest first."""
    return channel.recent(limit=limit, event=event)


# ============================================================================
# Monitoring & Observability
# ============================================================================

# Store rate limiter reference for monitoring
_rate_limiter = None

def set_rate_limiter(rate_limiter):
    """Set the rate limiter for monitoring."""
    global _rate_limiter
    _rate_limiter = rate_limiter


@router.get("/monitor/dashboard", tags=["Monitoring"])
async def get_dashboard():
    """
    Full monitoring dashboard data.

    Returns all metrics, health status, and recent activity in one call.
    """
    return monitor.get_dashboard_data()


@router.get("/monitor/health", tags=["Monitoring"])
async def get_system_health():
    """System health check with component status."""
    return monitor.get_health_status()


@router.get("/monitor/metrics", tags=["Monitoring"])
async def get_metrics():
    """
    Detailed performance metrics.

    Includes:
    - Request counts and latencies
    - Per-source call statistics and resolved tiers
    - Grok enrichment calls
    - Alert evaluations, triggers and action outcomes
    """
    return monitor.metrics.get_metrics()


@router.get("/monitor/rate-limits", tags=["Monitoring"])
async def get_rate_limits():
    """
    Request budget status for NewsAPI, X search and Grok enrichment.
    """
    if _rate_limiter is None:
        return {"error": "Rate limiter not configured", "categories": {}}

    status = get_rate_limit_status(_rate_limiter)

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "categories": status,
        "summary": {
            "total_categories": len(status),
            "critical": sum(1 for s in status.values() if s["status"] == "critical"),
            "warning": sum(1 for s in status.values() if s["status"] == "warning"),
            "ok": sum(1 for s in status.values() if s["status"] == "ok"),
        }
    }


@router.get("/monitor/activity", tags=["Monitoring"])
async def get_activity_feed(
    limit: int = Query(default=50, ge=1, le=200, description="Number of events"),
    event_type: Optional[str] = Query(default=None, description="Filter by event type")
):
    """
    Recent system events: ingestion cycles, source failures, tier
    fallbacks, spikes and alert triggers.
    """
    filter_type = None
    if event_type:
        try:
            filter_type = EventType(event_type)
        except ValueError:
            valid_types = [e.value for e in EventType]
            raise HTTPException(
                status_code=400,
                detail=f"Invalid event_type. Valid options: {valid_types}"
            )

    events = monitor.activity.get_recent(limit=limit, event_type=filter_type)
    event_counts = monitor.activity.get_event_counts(since_minutes=5)

    return {
        "events": events,
        "event_counts_5m": event_counts,
        "available_types": [e.value for e in EventType],
    }


__all__ = ["router", "set_dependencies", "set_rate_limiter"]
