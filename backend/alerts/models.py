"""
Alert configuration and evaluation models.

Conditions and actions are tagged unions discriminated by `type`; each
variant carries only the fields its kind needs.
"""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from adapter.models import Item, ItemCategory
from aggregator import VelocitySnapshot

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AlertConfigurationError(ValueError):
    """Raised when an alert definition is rejected at creation time."""
    pass


# ----------------------------------------------------------------------------
# Conditions
# ----------------------------------------------------------------------------

class VelocitySpikeCondition(BaseModel):
    type: Literal["velocity_spike"] = "velocity_spike"
    threshold: float = Field(default=300.0, gt=0, description="Spike threshold, percent over baseline")


class SentimentShiftCondition(BaseModel):
    type: Literal["sentiment_shift"] = "sentiment_shift"
    threshold: float = Field(default=0.5, ge=0, le=1, description="Minimum |mean sentiment|")


class KeywordMatchCondition(BaseModel):
    type: Literal["keyword_match"] = "keyword_match"
    keywords: List[str] = Field(default_factory=list, description="Case-insensitive substrings")


class CategoryMatchCondition(BaseModel):
    type: Literal["category_match"] = "category_match"
    categories: List[ItemCategory] = Field(default_factory=list)
    min_count: int = Field(default=5, ge=1, description="Matching items needed among the most recent 20")


AlertCondition = Annotated[
    Union[VelocitySpikeCondition, SentimentShiftCondition, KeywordMatchCondition, CategoryMatchCondition],
    Field(discriminator="type"),
]


# ----------------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------------

class DiscordWebhookAction(BaseModel):
    type: Literal["discord_webhook"] = "discord_webhook"
    webhook_url: AnyHttpUrl


class InAppNotificationAction(BaseModel):
    type: Literal["in_app_notification"] = "in_app_notification"


class EmailAction(BaseModel):
    type: Literal["email"] = "email"
    email: str

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError(f"Invalid email address: {value!r}")
        return value


AlertAction = Annotated[
    Union[DiscordWebhookAction, InAppNotificationAction, EmailAction],
    Field(discriminator="type"),
]


# ----------------------------------------------------------------------------
# Alert
# ----------------------------------------------------------------------------

class Alert(BaseModel):
    """
    A user-defined alert rule.

    Conditions are AND-combined. Only configuration calls mutate name,
    enabled, conditions and actions; the engine updates trigger_count and
    last_triggered_at after a successful dispatch.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(min_length=1)
    enabled: bool = Field(default=True)
    conditions: List[AlertCondition] = Field(default_factory=list)
    actions: List[AlertAction] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_triggered_at: Optional[datetime] = Field(default=None)
    trigger_count: int = Field(default=0, ge=0)


def validate_alert(alert: Alert) -> Alert:
    """Reject definitions that can never be evaluated meaningfully."""
    if not alert.conditions:
        raise AlertConfigurationError(f"Alert '{alert.name}' has no conditions")
    return alert


def build_alert(data: dict) -> Alert:
    """
    Build and validate an alert from a plain dict (API body or config file).

    Raises:
        AlertConfigurationError: On schema errors (e.g. a malformed webhook
            URL) or an empty condition list
    """
    try:
        alert = Alert.model_validate(data)
    except ValidationError as e:
        raise AlertConfigurationError(f"Invalid alert definition: {e}") from e
    return validate_alert(alert)


def load_alerts(path: Union[str, Path]) -> List[Alert]:
    """Load alert definitions from a JSON file holding a list of alerts."""
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, list):
        raise AlertConfigurationError(f"{path}: expected a JSON list of alerts")
    return [build_alert(entry) for entry in raw]


# ----------------------------------------------------------------------------
# Evaluation context and trigger payload
# ----------------------------------------------------------------------------

class AlertContext(BaseModel):
    """
    What alerts are evaluated against during one tick.

    Replaced wholesale on refresh, never mutated in place, so every alert in
    a tick sees the same snapshot.
    """
    model_config = ConfigDict(frozen=True)

    items: List[Item] = Field(default_factory=list, description="Recent items, newest first")
    snapshots: List[VelocitySnapshot] = Field(default_factory=list, description="Velocity history, oldest first")
    current_velocity: float = Field(default=0.0)
    average_velocity: float = Field(default=0.0)

    @classmethod
    def build(cls, items: List[Item], snapshots: List[VelocitySnapshot]) -> "AlertContext":
        counts = [s.count for s in snapshots]
        return cls(
            items=items,
            snapshots=snapshots,
            current_velocity=counts[-1] if counts else 0,
            average_velocity=sum(counts) / len(counts) if counts else 0.0,
        )


class TriggerDetails(BaseModel):
    type: str
    details: str
    items: List[Item] = Field(default_factory=list)
    velocity: Optional[float] = None
    sentiment: Optional[float] = None


class AlertTriggerData(BaseModel):
    alert: Alert
    trigger: TriggerDetails
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))



__all__ = [
    "Alert",
    "AlertAction",
    "AlertCondition",
    "AlertConfigurationError",
    "AlertContext",
    "AlertTriggerData",
    "CategoryMatchCondition",
    "DiscordWebhookAction",
    "EmailAction",
    "InAppNotificationAction",
    "KeywordMatchCondition",
    "SentimentShiftCondition",
    "TriggerDetails",
    "VelocitySpikeCondition",
    "build_alert",
    "load_alerts",
    "validate_alert",
]
