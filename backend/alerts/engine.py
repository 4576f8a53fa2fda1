"""
Alert engine: evaluates user-defined alerts on a timer and dispatches the
actions of those whose conditions all hold.

The engine never fetches data. Callers refresh its context (recent items and
velocity history) with `update_context`; each tick evaluates every enabled
alert against the context current at the start of the tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from adapter.models import Item
from aggregator import VelocitySnapshot
from monitoring import monitor, EventType
from .dispatcher import NotificationDispatcher
from .models import (
    Alert,
    AlertAction,
    AlertCondition,
    AlertConfigurationError,
    AlertContext,
    CategoryMatchCondition,
    KeywordMatchCondition,
    SentimentShiftCondition,
    VelocitySpikeCondition,
    build_alert,
    validate_alert,
)
from .spike import detect_spike

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 30.0

# Windows over the context's items, newest first
SENTIMENT_MIN_ITEMS = 10
SENTIMENT_WINDOW = 20
KEYWORD_WINDOW = 50
CATEGORY_WINDOW = 20


def evaluate_condition(condition: AlertCondition, context: AlertContext) -> bool:
    """Evaluate a single condition against the context."""
    if isinstance(condition, VelocitySpikeCondition):
        return detect_spike(context.snapshots, condition.threshold).is_spike

    if isinstance(condition, SentimentShiftCondition):
        analyzed = sum(1 for item in context.items if item.sentiment is not None)
        if analyzed < SENTIMENT_MIN_ITEMS:
            return False
        # Unanalyzed items stay in the denominator and pull the mean toward zero
        window = context.items[:SENTIMENT_WINDOW]
        total = sum(item.sentiment.score for item in window if item.sentiment is not None)
        return abs(total / len(window)) >= condition.threshold

    if isinstance(condition, KeywordMatchCondition):
        keywords = [k.lower() for k in condition.keywords if k]
        if not keywords:
            return False
        return any(
            keyword in item.text.lower()
            for item in context.items[:KEYWORD_WINDOW]
            for keyword in keywords
        )

    if isinstance(condition, CategoryMatchCondition):
        if not condition.categories:
            return False
        categories = set(condition.categories)
        matches = sum(
            1 for item in context.items[:CATEGORY_WINDOW]
            if item.category is not None and item.category in categories
        )
        return matches >= condition.min_count

    raise TypeError(f"Unsupported condition type: {type(condition).__name__}")


def evaluate_alert(alert: Alert, context: AlertContext) -> bool:
    """
    Whether the alert should fire: enabled, at least one condition, and every
    condition true.
    """
    if not alert.enabled or not alert.conditions:
        return False
    return all(evaluate_condition(condition, context) for condition in alert.conditions)


class AlertEngine:
    """
    Owns the alert set, the evaluation context and the evaluation loop.

    Usage:
        engine = AlertEngine(NotificationDispatcher(channel))
        engine.create_alert("BTC spike", [VelocitySpikeCondition()], [InAppNotificationAction()])
        engine.update_context(items=store.recent(100), snapshots=aggregator.history())
        await engine.start_monitoring()
        ...
        await engine.stop_monitoring()
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        check_interval: float = DEFAULT_CHECK_INTERVAL
    ):
        self.dispatcher = dispatcher
        self.check_interval = check_interval
        self._alerts: Dict[str, Alert] = {}
        self._context = AlertContext()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        # Serializes start/stop so at most one loop exists
        self._lifecycle_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def create_alert(
        self,
        name: str,
        conditions: Sequence[AlertCondition],
        actions: Sequence[AlertAction],
        enabled: bool = True
    ) -> Alert:
        """
        Create and register an alert.

        Conditions and actions may be model instances or plain dicts.

        Raises:
            AlertConfigurationError: Empty condition list or invalid
                condition/action definitions
        """
        alert = build_alert({
            "name": name,
            "enabled": enabled,
            "conditions": [c.model_dump() if hasattr(c, "model_dump") else c for c in conditions],
            "actions": [a.model_dump(mode="json") if hasattr(a, "model_dump") else a for a in actions],
        })
        return self.add_alert(alert)

    def add_alert(self, alert: Alert) -> Alert:
        validate_alert(alert)
        if alert.id in self._alerts:
            raise AlertConfigurationError(f"Alert '{alert.id}' already exists")
        self._alerts[alert.id] = alert
        logger.info(f"Created alert '{alert.name}' ({alert.id})")
        monitor.activity.add_event(EventType.ALERT_CREATED, source="alerts", alert_id=alert.id, name=alert.name)
        return alert

    def set_alerts(self, alerts: Iterable[Alert]) -> None:
        """Replace the whole alert set."""
        alerts = [validate_alert(alert) for alert in alerts]
        self._alerts = {alert.id: alert for alert in alerts}
        logger.info(f"Loaded {len(self._alerts)} alerts")

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def list_alerts(self) -> List[Alert]:
        return sorted(self._alerts.values(), key=lambda a: a.created_at)

    def _set_enabled(self, alert_id: str, enabled: bool) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        alert.enabled = enabled
        logger.info(f"Alert '{alert.name}' {'enabled' if enabled else 'disabled'}")
        return alert

    def enable_alert(self, alert_id: str) -> Optional[Alert]:
        return self._set_enabled(alert_id, True)

    def disable_alert(self, alert_id: str) -> Optional[Alert]:
        return self._set_enabled(alert_id, False)

    def delete_alert(self, alert_id: str) -> bool:
        alert = self._alerts.pop(alert_id, None)
        if alert is None:
            return False
        logger.info(f"Deleted alert '{alert.name}' ({alert_id})")
        monitor.activity.add_event(EventType.ALERT_DELETED, source="alerts", alert_id=alert_id)
        return True

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    @property
    def context(self) -> AlertContext:
        return self._context

    def update_context(
        self,
        items: Optional[List[Item]] = None,
        snapshots: Optional[List[VelocitySnapshot]] = None
    ) -> AlertContext:
        """
        Replace the evaluation context. Omitted parts keep their current value.
        """
        self._context = AlertContext.build(
            items=list(items) if items is not None else self._context.items,
            snapshots=list(snapshots) if snapshots is not None else self._context.snapshots,
        )
        return self._context

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def check_alerts(self) -> List[Alert]:
        """
        Run one evaluation tick.

        Returns:
            Alerts whose actions were dispatched with at least one success
        """
        context = self._context
        matched: List[Alert] = []

        for alert in list(self._alerts.values()):
            if not alert.enabled:
                continue
            try:
                fired = evaluate_alert(alert, context)
                monitor.metrics.record_alert_evaluation(error=False)
            except Exception as e:
                logger.exception(f"Evaluating alert '{alert.name}' failed")
                monitor.metrics.record_alert_evaluation(error=True)
                monitor.activity.add_event(
                    EventType.ERROR,
                    source="alerts",
                    alert_id=alert.id,
                    error=str(e)[:200],
                )
                continue
            if fired:
                matched.append(alert)

        if not matched:
            return []

        results = await asyncio.gather(
            *(self.dispatcher.dispatch(alert, context) for alert in matched),
            return_exceptions=True
        )

        triggered: List[Alert] = []
        now = datetime.now(timezone.utc)
        for alert, result in zip(matched, results):
            if isinstance(result, BaseException):
                logger.error(f"Dispatch for alert '{alert.name}' failed: {result}", exc_info=result)
                continue
            if not result:
                logger.warning(f"Alert '{alert.name}' matched but every action failed")
                continue

            alert.trigger_count += 1
            alert.last_triggered_at = now
            triggered.append(alert)

            logger.info(f"Alert '{alert.name}' triggered (count={alert.trigger_count})")
            monitor.metrics.record_alert_triggered()
            monitor.activity.add_event(
                EventType.ALERT_TRIGGERED,
                source="alerts",
                alert_id=alert.id,
                name=alert.name,
                trigger_count=alert.trigger_count,
            )

        return triggered

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_monitoring(self, interval_seconds: Optional[float] = None) -> None:
        """
        Start the evaluation loop, replacing any loop already running.
        The first tick fires one interval after start.
        """
        async with self._lifecycle_lock:
            await self._stop_loop()
            if interval_seconds is not None:
                self.check_interval = interval_seconds

            self._stop_event = asyncio.Event()
            self._task = asyncio.create_task(self._monitor_loop(self._stop_event))
            logger.info(f"Alert monitoring started with {self.check_interval}s interval")

    async def stop_monitoring(self) -> None:
        """
        Stop the evaluation loop. A tick in progress completes first; no tick
        starts after this returns.
        """
        async with self._lifecycle_lock:
            await self._stop_loop()

    async def _stop_loop(self) -> None:
        task, stop_event = self._task, self._stop_event
        if task is None:
            return

        if stop_event is not None:
            stop_event.set()
        try:
            await task
        except Exception as e:
            logger.error(f"Alert monitoring loop ended with error: {e}")
        finally:
            if self._task is task:
                self._task = None
                self._stop_event = None
        logger.info("Alert monitoring stopped")

    async def _monitor_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.check_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.check_alerts()
            except Exception as e:
                logger.error(f"Error in alert check loop: {e}", exc_info=True)


__all__ = [
    "AlertEngine",
    "DEFAULT_CHECK_INTERVAL",
    "evaluate_alert",
    "evaluate_condition",
]
