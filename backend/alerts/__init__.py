"""
Alerting for Signal Terminal.
- Spike detection over velocity history
- AlertEngine: rule evaluation on an independent timer
- NotificationDispatcher: Discord webhook, in-app and email actions
"""

from .models import (
    Alert,
    AlertAction,
    AlertCondition,
    AlertConfigurationError,
    AlertContext,
    AlertTriggerData,
    CategoryMatchCondition,
    DiscordWebhookAction,
    EmailAction,
    InAppNotificationAction,
    KeywordMatchCondition,
    SentimentShiftCondition,
    TriggerDetails,
    VelocitySpikeCondition,
    build_alert,
    load_alerts,
)
from .spike import SpikeDetectionResult, SpikeSeverity, detect_spike, DEFAULT_SPIKE_THRESHOLD
from .dispatcher import NotificationDispatcher, build_trigger_data
from .engine import AlertEngine, evaluate_alert, evaluate_condition, DEFAULT_CHECK_INTERVAL

__all__ = [
    "Alert",
    "AlertAction",
    "AlertCondition",
    "AlertConfigurationError",
    "AlertContext",
    "AlertEngine",
    "AlertTriggerData",
    "CategoryMatchCondition",
    "DEFAULT_CHECK_INTERVAL",
    "DEFAULT_SPIKE_THRESHOLD",
    "DiscordWebhookAction",
    "EmailAction",
    "InAppNotificationAction",
    "KeywordMatchCondition",
    "NotificationDispatcher",
    "SentimentShiftCondition",
    "SpikeDetectionResult",
    "SpikeSeverity",
    "TriggerDetails",
    "VelocitySpikeCondition",
    "build_alert",
    "build_trigger_data",
    "detect_spike",
    "evaluate_alert",
    "evaluate_condition",
    "load_alerts",
]
