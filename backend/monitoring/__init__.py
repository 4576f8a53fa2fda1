"""
Monitoring and observability module for Signal Terminal.

Provides real-time metrics and insights for:
- System health per component
- Source adapter calls, latencies and failures
- Enrichment (Grok) calls
- Velocity and alerting pipeline throughput
- Activity feed
"""

from __future__ import annotations

import time
import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Deque, Dict, List, Optional
from dataclasses import dataclass
from collections import Counter, deque
from enum import Enum

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of system events."""
    INGEST = "ingest"
    SOURCE_CALL = "source_call"
    SOURCE_FAILURE = "source_failure"
    TIER_FALLBACK = "tier_fallback"
    ENRICHMENT_FAILURE = "enrichment_failure"
    SPIKE_DETECTED = "spike_detected"
    ALERT_CREATED = "alert_created"
    ALERT_DELETED = "alert_deleted"
    ALERT_TRIGGERED = "alert_triggered"
    ACTION_FAILED = "action_failed"
    RATE_LIMIT_WARNING = "rate_limit_warning"
    ERROR = "error"


@dataclass
class SystemEvent:
    """A recorded system event."""
    timestamp: datetime
    event_type: EventType
    source: Optional[str]
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "source": self.source,
            "details": self.details,
            "age_seconds": (datetime.now(timezone.utc) - self.timestamp).total_seconds()
        }


class MetricsCollector:
    """
    Collects and aggregates system metrics.

    Tracks:
    - Request counts per endpoint
    - Per-source call counts, errors and latencies
    - Grok enrichment calls
    - Items ingested, snapshots recorded
    - Alert evaluations, triggers and action outcomes
    """

    MAX_SAMPLES = 1000

    def __init__(self):
        self._start_time = time.time()
        self._request_counts: Dict[str, int] = {}
        self._latencies: Dict[str, List[float]] = {}
        self._error_counts: Dict[str, int] = {}

        # Source adapter metrics
        self._source_calls: Dict[str, int] = {}
        self._source_errors: Dict[str, int] = {}
        self._source_latencies: Dict[str, List[float]] = {}

        # Grok API metrics
        self._grok_calls = 0
        self._grok_errors = 0
        self._grok_latencies: List[float] = []

        # Pipeline metrics
        self._items_ingested = 0
        self._snapshots_recorded = 0
        self._fallbacks: Dict[str, int] = {}

        # Alerting metrics
        self._alert_evaluations = 0
        self._alert_evaluation_errors = 0
        self._alerts_triggered = 0
        self._action_results: Dict[str, Dict[str, int]] = {}

    def _append_sample(self, samples: List[float], value: float) -> None:
        samples.append(value)
        if len(samples) > self.MAX_SAMPLES:
            del samples[:-self.MAX_SAMPLES]

    def record_request(self, endpoint: str, latency_ms: float, error: bool = False) -> None:
        """Record an API request."""
        self._request_counts[endpoint] = self._request_counts.get(endpoint, 0) + 1
        self._append_sample(self._latencies.setdefault(endpoint, []), latency_ms)
        if error:
            self._error_counts[endpoint] = self._error_counts.get(endpoint, 0) + 1

    def record_source_call(self, source: str, latency_ms: float, error: bool = False) -> None:
        """Record a source adapter fetch."""
        self._source_calls[source] = self._source_calls.get(source, 0) + 1
        self._append_sample(self._source_latencies.setdefault(source, []), latency_ms)
        if error:
            self._source_errors[source] = self._source_errors.get(source, 0) + 1

    def record_grok_call(self, latency_ms: float, error: bool = False) -> None:
        """Record a Grok API call."""
        self._grok_calls += 1
        self._append_sample(self._grok_latencies, latency_ms)
        if error:
            self._grok_errors += 1

    def record_items(self, count: int) -> None:
        """Record newly ingested items."""
        self._items_ingested += count

    def record_snapshot(self) -> None:
        self._snapshots_recorded += 1

    def record_resolution(self, source_kind: str) -> None:
        """Record which tier produced a resolution result."""
        self._fallbacks[source_kind] = self._fallbacks.get(source_kind, 0) + 1

    def record_alert_evaluation(self, error: bool = False) -> None:
        self._alert_evaluations += 1
        if error:
            self._alert_evaluation_errors += 1

    def record_alert_triggered(self) -> None:
        self._alerts_triggered += 1

    def record_action(self, action_type: str, success: bool) -> None:
        """Record the outcome of a notification action."""
        counts = self._action_results.setdefault(action_type, {"success": 0, "failure": 0})
        counts["success" if success else "failure"] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Get all collected metrics."""
        uptime = time.time() - self._start_time

        sources = {
            source: {
                "calls": calls,
                "errors": self._source_errors.get(source, 0),
                "error_rate": _rate(self._source_errors.get(source, 0), calls),
                "latency_ms": latency_summary(self._source_latencies.get(source, [])),
            }
            for source, calls in self._source_calls.items()
        }

        return {
            "uptime_seconds": int(uptime),
            "uptime_human": format_uptime(uptime),

            "requests": {
                "total": sum(self._request_counts.values()),
                "by_endpoint": self._request_counts,
                "errors": self._error_counts,
            },

            "sources": sources,

            "grok_api": {
                "calls": self._grok_calls,
                "errors": self._grok_errors,
                "error_rate": _rate(self._grok_errors, self._grok_calls),
                "latency_ms": latency_summary(self._grok_latencies),
            },

            "data_pipeline": {
                "items_ingested": self._items_ingested,
                "snapshots_recorded": self._snapshots_recorded,
                "resolutions_by_source": self._fallbacks,
                "items_per_minute": self._items_ingested / (uptime / 60) if uptime > 0 else 0,
            },

            "alerting": {
                "evaluations": self._alert_evaluations,
                "evaluation_errors": self._alert_evaluation_errors,
                "triggered": self._alerts_triggered,
                "actions": self._action_results,
            },
        }


def _rate(errors: int, calls: int) -> str:
    return f"{errors / calls:.1%}" if calls else "0.0%"


def latency_summary(samples: List[float]) -> Dict[str, float]:
    """p50/p95/p99 and mean of latency samples, zeros when empty."""
    if not samples:
        return {"p50": 0, "p95": 0, "p99": 0, "avg": 0}

    ordered = sorted(samples)
    last = len(ordered) - 1

    def at(fraction: float) -> float:
        return ordered[min(last, int(len(ordered) * fraction))]

    return {"p50": at(0.50), "p95": at(0.95), "p99": at(0.99), "avg": sum(ordered) / len(ordered)}


def format_uptime(seconds: float) -> str:
    """Compact uptime such as "42s", "3m 5s" or "2h 14m"."""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class ActivityFeed:
    """
    Bounded, chronological feed of system events.

    The API serves it newest first; the oldest events fall off once
    `max_events` is reached.
    """

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self._events: Deque[SystemEvent] = deque(maxlen=max_events)

    def add_event(self, event_type: EventType, source: Optional[str] = None, **details) -> SystemEvent:
        event = SystemEvent(
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            source=source,
            details=details,
        )
        self._events.append(event)
        return event

    def get_recent(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[Dict]:
        """Newest events first, optionally only one type."""
        recent = []
        for event in reversed(self._events):
            if event_type is not None and event.event_type != event_type:
                continue
            recent.append(event.to_dict())
            if len(recent) >= limit:
                break
        return recent

    def get_event_counts(self, since_minutes: int = 5) -> Dict[str, int]:
        """Per-type event counts over the last `since_minutes`."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=since_minutes)
        return dict(Counter(e.event_type.value for e in self._events if e.timestamp >= cutoff))


# Component status -> severity; the worst component decides overall health
STATUS_SEVERITY = {"healthy": 0, "warning": 1, "error": 2}
OVERALL_STATUS = {0: "healthy", 1: "warning", 2: "degraded"}


class SystemMonitor:
    """
    Process-wide monitoring hub: metrics, activity feed and the last status
    reported by each component (ingestion, alert engine, poller, annotator).
    """

    def __init__(self):
        self.metrics = MetricsCollector()
        self.activity = ActivityFeed()
        self._component_status: Dict[str, Dict[str, Any]] = {}

    def set_component_status(
        self,
        component: str,
        status: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self._component_status[component] = {
            "status": status,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
        }

    def get_health_status(self) -> Dict[str, Any]:
        """Overall health: "unknown" until a component reports, else its worst status."""
        severities = [
            STATUS_SEVERITY.get(c["status"], STATUS_SEVERITY["warning"])
            for c in self._component_status.values()
        ]
        overall = OVERALL_STATUS[max(severities)] if severities else "unknown"

        return {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": self._component_status,
        }

    def get_dashboard_data(self) -> Dict[str, Any]:
        """Everything the monitoring dashboard shows, in one payload."""
        return {
            "health": self.get_health_status(),
            "metrics": self.metrics.get_metrics(),
            "recent_activity": self.activity.get_recent(limit=20),
            "event_counts_5m": self.activity.get_event_counts(since_minutes=5),
        }


# Process-wide monitor; components report into it, the API reads from it
monitor = SystemMonitor()

# Budget usage (percent) at which a category is reported as warning / critical
BUDGET_WARNING_PCT = 80
BUDGET_CRITICAL_PCT = 95


def get_rate_limit_status(rate_limiter) -> Dict[str, Any]:
    """
    Budget usage of every category configured on a RateLimiter.

    Returns:
        category -> limit, window, strategy, remaining, used, usage and a
        status of "ok", "warning" or "critical"
    """
    status = {}
    for category, config in rate_limiter.configs.items():
        limit = config.requests_per_window
        remaining = rate_limiter.get_remaining_requests(category)
        used = limit - remaining
        usage_pct = used / limit * 100 if limit > 0 else 0

        if usage_pct >= BUDGET_CRITICAL_PCT:
            level = "critical"
        elif usage_pct >= BUDGET_WARNING_PCT:
            level = "warning"
        else:
            level = "ok"

        status[category] = {
            "limit": limit,
            "window_seconds": config.window_seconds,
            "strategy": config.strategy,
            "remaining": remaining,
            "used": used,
            "usage_percent": f"{usage_pct:.1f}%",
            "status": level,
        }
    return status


__all__ = [
    "ActivityFeed",
    "EventType",
    "MetricsCollector",
    "SystemEvent",
    "SystemMonitor",
    "format_uptime",
    "get_rate_limit_status",
    "latency_summary",
    "monitor",
]
