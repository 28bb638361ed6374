"""Notification dispatcher and deduplication.

NotificationChannel    -- ABC every channel must implement.
NotificationDispatcher -- NotificationPort; fans alerts out to every channel.
                          A failing channel never blocks the others or the
                          detection pipeline.
AlertDeduplicator      -- Cooldown per (rule, metric name, series dimensions).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

import structlog

from reflexagent.models.alerts import Alert
from reflexagent.models.metrics import dimension_key
from reflexagent.observability.metrics import notifications_total

_log = structlog.get_logger(component="notifications.manager")

_DEDUP_COOLDOWN = timedelta(minutes=15)


class NotificationChannel(ABC):
    """A destination for alerts and free-form messages.

    Implementations should not raise: return ``False`` instead.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Channel identifier used in metrics, logs and ``send_message`` routing."""

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """Deliver *alert*. True when the remote end accepted it."""

    @abstractmethod
    async def send_message(self, text: str) -> bool:
        """Deliver a free-form text message."""


class AlertDeduplicator:
    """Suppresses repeats of the same alert within a cooldown window.

    The key ignores the bucket label so that consecutive buckets of one
    series share a cooldown. State is in-process and resets on restart.
    """

    def __init__(self, cooldown: timedelta = _DEDUP_COOLDOWN) -> None:
        self._cooldown = cooldown
        self._last_sent: dict[tuple[str, str, str], datetime] = {}

    @staticmethod
    def key(alert: Alert) -> tuple[str, str, str]:
        series = {k: v for k, v in alert.metric.dimensions.items() if k != "time_period"}
        return (alert.name, alert.metric.name, dimension_key(series))

    def should_send(self, alert: Alert) -> bool:
        key = self.key(alert)
        now = datetime.now(tz=UTC)
        last = self._last_sent.get(key)
        if last is not None and (now - last) < self._cooldown:
            _log.debug(
                "alert_suppressed_by_deduplicator",
                alert_id=alert.alert_id,
                metric_name=alert.metric.name,
                seconds_remaining=int((self._cooldown - (now - last)).total_seconds()),
            )
            return False
        self._last_sent[key] = now
        return True

    def reset(self, alert: Alert) -> None:
        self._last_sent.pop(self.key(alert), None)


class NotificationDispatcher:
    """NotificationPort that sends to every registered channel concurrently.

    * Never raises: channel exceptions are caught and logged.
    * ``send_alert`` returns True when at least one channel delivered, or
      when the alert was suppressed as a duplicate.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        deduplicator: AlertDeduplicator | None = None,
    ) -> None:
        self._channels = channels
        self._deduplicator = deduplicator or AlertDeduplicator()

    @property
    def channels(self) -> list[str]:
        return [c.channel_name for c in self._channels]

    async def send_alert(self, alert: Alert) -> bool:
        if not self._deduplicator.should_send(alert):
            return True
        if not self._channels:
            _log.warning("alert_not_delivered_no_channels", alert_id=alert.alert_id)
            return False
        results = await asyncio.gather(*(self._send_one(c, alert) for c in self._channels))
        return any(results)

    async def send_message(self, channel: str, text: str) -> bool:
        for candidate in self._channels:
            if candidate.channel_name == channel:
                try:
                    success = await candidate.send_message(text)
                except Exception as exc:  # noqa: BLE001
                    _log.error("notification_message_unexpected_error", channel=channel, error=str(exc))
                    success = False
                notifications_total.labels(channel=channel, success="true" if success else "false").inc()
                return success
        _log.warning("notification_channel_unknown", channel=channel)
        return False

    async def _send_one(self, channel: NotificationChannel, alert: Alert) -> bool:
        """Send to one channel and count the outcome."""
        try:
            success = await channel.send(alert)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "notification_channel_unexpected_error",
                channel=channel.channel_name,
                alert_id=alert.alert_id,
                error=str(exc),
            )
            success = False

        label = "true" if success else "false"
        notifications_total.labels(channel=channel.channel_name, success=label).inc()

        if success:
            _log.info(
                "notification_sent",
                channel=channel.channel_name,
                alert_id=alert.alert_id,
                severity=alert.severity.value,
                metric_name=alert.metric.name,
            )
        else:
            _log.warning(
                "notification_failed",
                channel=channel.channel_name,
                alert_id=alert.alert_id,
            )
        return success
