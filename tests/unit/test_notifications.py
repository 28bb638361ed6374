"""Tests for the notification dispatcher, deduplication and channels."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import timedelta

import httpx
import pytest

from reflexagent.models.alerts import Alert, AlertSeverity
from reflexagent.models.config import NotificationConfig
from reflexagent.notifications import (
    AlertDeduplicator,
    LogNotificationChannel,
    NotificationChannel,
    NotificationDispatcher,
    WebhookNotificationChannel,
    build_notification_dispatcher,
)
from reflexagent.ports import NotificationPort


class StubChannel(NotificationChannel):
    def __init__(self, name: str, outcome: bool = True, error: Exception | None = None) -> None:
        self._name = name
        self.outcome = outcome
        self.error = error
        self.sent: list[Alert] = []
        self.messages: list[str] = []

    @property
    def channel_name(self) -> str:
        return self._name

    async def send(self, alert: Alert) -> bool:
        self.sent.append(alert)
        if self.error is not None:
            raise self.error
        return self.outcome

    async def send_message(self, text: str) -> bool:
        self.messages.append(text)
        if self.error is not None:
            raise self.error
        return self.outcome


@pytest.fixture
def alert(make_metric) -> Alert:
    metric = make_metric("cpu_usage.hourly", 120.0, dimensions={"host": "web-1", "time_period": "2026-03-01T10:00"})
    return Alert(name="cpu threshold", severity=AlertSeverity.WARNING, metric=metric, threshold=80.0)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TestDispatcher:
    def test_implements_port(self) -> None:
        assert isinstance(NotificationDispatcher([]), NotificationPort)

    async def test_fans_out_to_every_channel(self, alert: Alert) -> None:
        first, second = StubChannel("a"), StubChannel("b")
        dispatcher = NotificationDispatcher([first, second])
        assert await dispatcher.send_alert(alert)
        assert first.sent == [alert]
        assert second.sent == [alert]
        assert dispatcher.channels == ["a", "b"]

    async def test_one_failing_channel_does_not_block_others(self, alert: Alert) -> None:
        broken = StubChannel("broken", error=RuntimeError("boom"))
        working = StubChannel("working")
        assert await NotificationDispatcher([broken, working]).send_alert(alert)
        assert working.sent == [alert]

    async def test_all_channels_failing(self, alert: Alert) -> None:
        dispatcher = NotificationDispatcher([StubChannel("a", outcome=False), StubChannel("b", error=OSError())])
        assert not await dispatcher.send_alert(alert)

    async def test_no_channels(self, alert: Alert) -> None:
        assert not await NotificationDispatcher([]).send_alert(alert)

    async def test_duplicate_suppressed(self, alert: Alert) -> None:
        channel = StubChannel("a")
        dispatcher = NotificationDispatcher([channel])
        await dispatcher.send_alert(alert)
        assert await dispatcher.send_alert(replace(alert, alert_id="another"))
        assert len(channel.sent) == 1

    async def test_send_message_routes_by_name(self) -> None:
        first, second = StubChannel("a"), StubChannel("b", outcome=False)
        dispatcher = NotificationDispatcher([first, second])
        assert await dispatcher.send_message("a", "hello")
        assert not await dispatcher.send_message("b", "hello")
        assert not await dispatcher.send_message("missing", "hello")
        assert first.messages == ["hello"]

    async def test_send_message_error_is_failure(self) -> None:
        dispatcher = NotificationDispatcher([StubChannel("a", error=RuntimeError("down"))])
        assert not await dispatcher.send_message("a", "hello")


class TestDeduplicator:
    def test_next_bucket_shares_cooldown(self, alert: Alert) -> None:
        dedup = AlertDeduplicator()
        later_bucket = replace(
            alert,
            metric=replace(alert.metric, dimensions={"host": "web-1", "time_period": "2026-03-01T11:00"}),
        )
        assert dedup.should_send(alert)
        assert not dedup.should_send(later_bucket)

    def test_other_series_not_suppressed(self, alert: Alert) -> None:
        dedup = AlertDeduplicator()
        other = replace(alert, metric=replace(alert.metric, dimensions={"host": "web-2"}))
        assert dedup.should_send(alert)
        assert dedup.should_send(other)

    def test_zero_cooldown_and_reset(self, alert: Alert) -> None:
        assert AlertDeduplicator(cooldown=timedelta(0)).should_send(alert)
        dedup = AlertDeduplicator()
        dedup.should_send(alert)
        dedup.reset(alert)
        assert dedup.should_send(alert)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class TestWebhookChannel:
    async def test_posts_alert_json(self, alert: Alert) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(202)

        channel = WebhookNotificationChannel(
            "https://hooks.example.com/alerts",
            headers={"Authorization": "Bearer t"},
            transport=httpx.MockTransport(handler),
        )
        assert await channel.send(alert)
        [request] = captured
        body = json.loads(request.content)
        assert body["alert_id"] == alert.alert_id
        assert body["severity"] == "warning"
        assert body["message"] == "cpu threshold - cpu_usage.hourly exceeded threshold of 80.0"
        assert body["metric"]["value"] == 120.0
        assert request.headers["Authorization"] == "Bearer t"

    async def test_non_2xx_is_failure(self, alert: Alert) -> None:
        channel = WebhookNotificationChannel(
            "https://hooks.example.com/alerts",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oops")),
        )
        assert not await channel.send(alert)

    async def test_transport_error_is_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        channel = WebhookNotificationChannel("https://hooks.example.com/alerts", transport=httpx.MockTransport(handler))
        assert not await channel.send_message("hello")

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            WebhookNotificationChannel("")


class TestLogChannel:
    async def test_always_succeeds(self, alert: Alert) -> None:
        channel = LogNotificationChannel()
        assert await channel.send(alert)
        assert await channel.send_message("hello")


class TestBuildDispatcher:
    def test_log_only_by_default(self) -> None:
        assert build_notification_dispatcher(NotificationConfig()).channels == ["log"]

    def test_webhook_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.com/alerts")
        config = NotificationConfig(webhook_secret_ref="ALERT_WEBHOOK_URL", log_channel_enabled=False)
        assert build_notification_dispatcher(config).channels == ["webhook"]

    def test_empty_secret_skips_webhook(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
        config = NotificationConfig(webhook_secret_ref="ALERT_WEBHOOK_URL", log_channel_enabled=False)
        assert build_notification_dispatcher(config).channels == []
