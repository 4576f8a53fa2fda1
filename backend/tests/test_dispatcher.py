"""
Unit tests for the NotificationDispatcher and NotificationChannel.
"""

import asyncio
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import Mock, patch

import requests

from adapter.models import Author, Item, Sentiment, SentimentLabel
from aggregator import VelocitySnapshot
from alerts import (
    Alert,
    AlertContext,
    AlertEngine,
    DiscordWebhookAction,
    EmailAction,
    InAppNotificationAction,
    KeywordMatchCondition,
    NotificationDispatcher,
    VelocitySpikeCondition,
    build_trigger_data,
)
from services.notifications import NotificationChannel


WEBHOOK_URL = "https://discord.com/api/webhooks/123/token"
BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def create_item(index, text="Bitcoin breaks record high"):
    return Item(
        id=f"item_{index}",
        text=text,
        author=Author(id="u1", handle="cryptowhale", display_name="Crypto Whale"),
        created_at=BASE_TIME + timedelta(seconds=index),
        source_kind="test",
        sentiment=Sentiment(score=0.5, label=SentimentLabel.POSITIVE, confidence=0.9),
    )


def create_context():
    snapshots = [
        VelocitySnapshot(timestamp=BASE_TIME + timedelta(minutes=i), count=c, sentiment_avg=s)
        for i, (c, s) in enumerate([(5, 0.1), (5, 0.1), (50, 0.42)])
    ]
    items = [create_item(i) for i in range(8, 0, -1)]
    return AlertContext.build(items=items, snapshots=snapshots)


def mock_response(status_code=204, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture
def channel():
    return NotificationChannel()


@pytest.fixture
def dispatcher(channel):
    return NotificationDispatcher(channel, webhook_timeout=5)


# ============================================================================
# Trigger payload
# ============================================================================

class TestTriggerData:

    def test_trigger_data_from_context(self):
        alert = Alert(name="Spike", conditions=[VelocitySpikeCondition()])

        data = build_trigger_data(alert, create_context())

        assert data.alert is alert
        assert data.trigger.type == "velocity_spike"
        assert data.trigger.velocity == 50
        assert data.trigger.sentiment == pytest.approx(0.42)
        assert len(data.trigger.items) == 5
        assert "Spike" in data.trigger.details

    def test_trigger_data_without_snapshots(self):
        alert = Alert(name="Kw", conditions=[KeywordMatchCondition(keywords=["btc"])])

        data = build_trigger_data(alert, AlertContext())

        assert data.trigger.type == "keyword_match"
        assert data.trigger.sentiment is None
        assert data.trigger.items == []


# ============================================================================
# Discord message
# ============================================================================

class TestDiscordMessage:

    def test_spike_embed(self, dispatcher):
        alert = Alert(name="BTC", conditions=[VelocitySpikeCondition()])
        data = build_trigger_data(alert, create_context())

        message = dispatcher.build_discord_message(data)
        embed = message["embeds"][0]

        assert embed["title"] == "🚨 Alert: BTC"
        assert embed["color"] == 0xFF4444
        assert embed["description"] == data.trigger.details
        names = [f["name"] for f in embed["fields"]]
        assert names == ["Velocity", "Avg Sentiment", "Sample Items"]
        assert embed["fields"][1]["value"] == "0.42"
        # At most three sample items
        assert embed["fields"][2]["value"].count("\n") == 2
        assert embed["fields"][2]["value"].startswith("• @cryptowhale: ")
        assert embed["timestamp"] == data.timestamp.isoformat()
        assert "footer" in embed

    def test_non_spike_embed_is_blue(self, dispatcher):
        alert = Alert(name="Kw", conditions=[KeywordMatchCondition(keywords=["btc"])])
        data = build_trigger_data(alert, AlertContext())

        embed = dispatcher.build_discord_message(data)["embeds"][0]

        assert embed["color"] == 0x3498DB
        # No sentiment or items when the context is empty
        assert [f["name"] for f in embed["fields"]] == ["Velocity"]

    def test_sample_text_truncated(self, dispatcher):
        alert = Alert(name="Long", conditions=[VelocitySpikeCondition()])
        context = AlertContext.build(items=[create_item(1, text="x" * 500)], snapshots=[])

        embed = dispatcher.build_discord_message(build_trigger_data(alert, context))["embeds"][0]
        sample = embed["fields"][-1]["value"]

        assert sample == "• @cryptowhale: " + "x" * 100


# ============================================================================
# Action execution
# ============================================================================

class TestExecuteAction:

    @pytest.mark.asyncio
    async def test_webhook_success(self, dispatcher):
        alert = Alert(name="a", conditions=[VelocitySpikeCondition()])
        data = build_trigger_data(alert, create_context())

        with patch("alerts.dispatcher.requests.post", return_value=mock_response(204)) as mock_post:
            ok = await dispatcher.execute_action(DiscordWebhookAction(webhook_url=WEBHOOK_URL), data)

        assert ok is True
        args, kwargs = mock_post.call_args
        assert args[0] == WEBHOOK_URL
        assert kwargs["timeout"] == 5
        assert kwargs["json"]["embeds"][0]["title"] == "🚨 Alert: a"

    @pytest.mark.asyncio
    async def test_webhook_non_2xx_fails(self, dispatcher):
        data = build_trigger_data(Alert(name="a", conditions=[VelocitySpikeCondition()]), create_context())

        with patch("alerts.dispatcher.requests.post", return_value=mock_response(500, "oops")):
            ok = await dispatcher.execute_action(DiscordWebhookAction(webhook_url=WEBHOOK_URL), data)

        assert ok is False

    @pytest.mark.asyncio
    async def test_webhook_network_error_fails(self, dispatcher):
        data = build_trigger_data(Alert(name="a", conditions=[VelocitySpikeCondition()]), create_context())

        with patch("alerts.dispatcher.requests.post", side_effect=requests.ConnectionError("refused")):
            ok = await dispatcher.execute_action(DiscordWebhookAction(webhook_url=WEBHOOK_URL), data)

        assert ok is False

    @pytest.mark.asyncio
    async def test_in_app_publishes(self, dispatcher, channel):
        data = build_trigger_data(Alert(name="a", conditions=[VelocitySpikeCondition()]), create_context())

        ok = await dispatcher.execute_action(InAppNotificationAction(), data)

        assert ok is True
        recent = channel.recent()
        assert len(recent) == 1
        assert recent[0].event == "alert"
        assert recent[0].payload["alert"]["name"] == "a"

    @pytest.mark.asyncio
    async def test_email_placeholder_succeeds(self, dispatcher, channel):
        data = build_trigger_data(Alert(name="a", conditions=[VelocitySpikeCondition()]), create_context())

        with patch("alerts.dispatcher.requests.post") as mock_post:
            ok = await dispatcher.execute_action(EmailAction(email="ops@example.com"), data)

        assert ok is True
        mock_post.assert_not_called()
        assert channel.recent() == []


# ============================================================================
# Dispatch
# ============================================================================

class TestDispatch:

    @pytest.mark.asyncio
    async def test_one_success_is_enough(self, dispatcher):
        alert = Alert(
            name="mixed",
            conditions=[VelocitySpikeCondition()],
            actions=[DiscordWebhookAction(webhook_url=WEBHOOK_URL), InAppNotificationAction()],
        )

        with patch("alerts.dispatcher.requests.post", return_value=mock_response(500)):
            assert await dispatcher.dispatch(alert, create_context()) is True

    @pytest.mark.asyncio
    async def test_all_failures(self, dispatcher):
        alert = Alert(
            name="hooks",
            conditions=[VelocitySpikeCondition()],
            actions=[DiscordWebhookAction(webhook_url=WEBHOOK_URL)],
        )

        with patch("alerts.dispatcher.requests.post", side_effect=requests.Timeout("slow")):
            assert await dispatcher.dispatch(alert, create_context()) is False

    @pytest.mark.asyncio
    async def test_no_actions(self, dispatcher):
        alert = Alert(name="silent", conditions=[VelocitySpikeCondition()])

        assert await dispatcher.dispatch(alert, create_context()) is False

    @pytest.mark.asyncio
    async def test_action_exception_is_contained(self, dispatcher):
        alert = Alert(
            name="mixed",
            conditions=[VelocitySpikeCondition()],
            actions=[DiscordWebhookAction(webhook_url=WEBHOOK_URL), InAppNotificationAction()],
        )

        with patch.object(dispatcher, "build_discord_message", side_effect=RuntimeError("bad embed")):
            assert await dispatcher.dispatch(alert, create_context()) is True

    @pytest.mark.asyncio
    async def test_engine_counts_mixed_dispatch_once(self, dispatcher, channel):
        """Failing webhook plus succeeding in-app: triggered, counted exactly once."""
        engine = AlertEngine(dispatcher)
        alert = engine.create_alert(
            "mixed",
            [VelocitySpikeCondition()],
            [DiscordWebhookAction(webhook_url=WEBHOOK_URL), InAppNotificationAction()],
        )
        context = create_context()
        engine.update_context(items=list(context.items), snapshots=list(context.snapshots))

        with patch("alerts.dispatcher.requests.post", return_value=mock_response(404)):
            triggered = await engine.check_alerts()

        assert triggered == [alert]
        assert alert.trigger_count == 1
        assert [n.event for n in channel.recent()] == ["alert"]


# ============================================================================
# Notification channel
# ============================================================================

class TestNotificationChannel:

    def test_recent_newest_first(self, channel):
        channel.publish("velocity", {"count": 1})
        channel.publish("spike", {"count": 2})

        assert [n.event for n in channel.recent()] == ["spike", "velocity"]
        assert [n.event for n in channel.recent(event="velocity")] == ["velocity"]
        assert len(channel.recent(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_subscribers_receive_events(self, channel):
        queue = channel.subscribe()

        channel.publish("alert", {"name": "a"})
        notification = await asyncio.wait_for(queue.get(), timeout=1)

        assert notification.event == "alert"
        assert notification.payload == {"name": "a"}

        channel.unsubscribe(queue)
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_instead_of_blocking(self):
        channel = NotificationChannel(queue_size=1)
        channel.subscribe()

        channel.publish("a")
        channel.publish("b")

        assert channel.dropped == 1
        assert len(channel.recent()) == 2
