"""
Notification dispatcher: executes a triggered alert's actions.

Actions of one alert run concurrently and fail independently; an alert
counts as triggered when at least one action succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from monitoring import monitor, EventType
from services.notifications import NotificationChannel
from .models import (
    Alert,
    AlertAction,
    AlertContext,
    AlertTriggerData,
    DiscordWebhookAction,
    EmailAction,
    InAppNotificationAction,
    TriggerDetails,
)

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT = 10.0

SAMPLE_ITEMS = 5
EMBED_SAMPLE_ITEMS = 3
EMBED_TEXT_LENGTH = 100

COLOR_SPIKE = 0xFF4444
COLOR_DEFAULT = 0x3498DB
EMBED_FOOTER = "Signal Terminal Alert System"


def build_trigger_data(alert: Alert, context: AlertContext) -> AlertTriggerData:
    """Describe why the alert fired, from the context it was evaluated against."""
    trigger_type = alert.conditions[0].type if alert.conditions else "unknown"
    latest = context.snapshots[-1] if context.snapshots else None
    condition_types = ", ".join(c.type for c in alert.conditions)

    return AlertTriggerData(
        alert=alert,
        trigger=TriggerDetails(
            type=trigger_type,
            details=f"Alert \"{alert.name}\" triggered ({condition_types}).",
            items=context.items[:SAMPLE_ITEMS],
            velocity=context.current_velocity,
            sentiment=latest.sentiment_avg if latest else None,
        ),
    )


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(channel)
        triggered = await dispatcher.dispatch(alert, context)
    """

    def __init__(
        self,
        channel: Optional[NotificationChannel] = None,
        webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT
    ):
        self.channel = channel or NotificationChannel()
        self.webhook_timeout = webhook_timeout

    def build_discord_message(self, data: AlertTriggerData) -> Dict[str, Any]:
        trigger = data.trigger
        fields: List[Dict[str, Any]] = []

        if trigger.velocity is not None:
            fields.append({
                "name": "Velocity",
                "value": f"{trigger.velocity:g} items/cycle",
                "inline": True,
            })
        if trigger.sentiment is not None:
            fields.append({
                "name": "Avg Sentiment",
                "value": f"{trigger.sentiment:.2f}",
                "inline": True,
            })
        if trigger.items:
            fields.append({
                "name": "Sample Items",
                "value": "\n".join(
                    f"• @{item.author.handle}: {item.text[:EMBED_TEXT_LENGTH]}"
                    for item in trigger.items[:EMBED_SAMPLE_ITEMS]
                ),
                "inline": False,
            })

        return {
            "embeds": [{
                "title": f"🚨 Alert: {data.alert.name}",
                "description": trigger.details,
                "color": COLOR_SPIKE if trigger.type == "velocity_spike" else COLOR_DEFAULT,
                "fields": fields,
                "footer": {"text": EMBED_FOOTER},
                "timestamp": data.timestamp.isoformat(),
            }]
        }

    def _post_webhook(self, url: str, message: Dict[str, Any]) -> bool:
        try:
            response = requests.post(url, json=message, timeout=self.webhook_timeout)
        except requests.RequestException as e:
            logger.warning(f"Discord webhook request failed: {e}")
            return False

        if not 200 <= response.status_code < 300:
            logger.warning(f"Discord webhook returned {response.status_code}: {response.text[:200]}")
            return False
        return True

    async def execute_action(self, action: AlertAction, data: AlertTriggerData) -> bool:
        """
        Run one action. Returns whether it succeeded.
        """
        if isinstance(action, DiscordWebhookAction):
            message = self.build_discord_message(data)
            return await asyncio.to_thread(self._post_webhook, str(action.webhook_url), message)

        if isinstance(action, InAppNotificationAction):
            self.channel.publish("alert", data.model_dump(mode="json"))
            return True

        if isinstance(action, EmailAction):
            # No mail transport yet; delivery is logged only.
            logger.info(f"Email notification for alert '{data.alert.name}' to {action.email} (not sent)")
            return True

        raise TypeError(f"Unsupported action type: {type(action).__name__}")

    async def dispatch(self, alert: Alert, context: AlertContext) -> bool:
        """
        Execute all of the alert's actions concurrently.

        Returns:
            True if at least one action succeeded
        """
        if not alert.actions:
            logger.warning(f"Alert '{alert.name}' has no actions to dispatch")
            return False

        data = build_trigger_data(alert, context)
        results = await asyncio.gather(
            *(self.execute_action(action, data) for action in alert.actions),
            return_exceptions=True
        )

        succeeded = False
        for action, result in zip(alert.actions, results):
            if isinstance(result, BaseException):
                logger.error(f"Action {action.type} for alert '{alert.name}' raised: {result}", exc_info=result)
                ok = False
            else:
                ok = bool(result)

            monitor.metrics.record_action(action.type, success=ok)
            if ok:
                succeeded = True
            else:
                monitor.activity.add_event(
                    EventType.ACTION_FAILED,
                    source=action.type,
                    alert_id=alert.id,
                    alert_name=alert.name,
                )

        return succeeded


__all__ = ["NotificationDispatcher", "build_trigger_data"]
