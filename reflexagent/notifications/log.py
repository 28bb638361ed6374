"""Notification channel that writes alerts to the structured log."""

from __future__ import annotations

import structlog

from reflexagent.models.alerts import Alert
from reflexagent.notifications.manager import NotificationChannel

_log = structlog.get_logger(component="notifications.log")


class LogNotificationChannel(NotificationChannel):
    @property
    def channel_name(self) -> str:
        return "log"

    async def send(self, alert: Alert) -> bool:
        _log.warning(
            "alert",
            alert_id=alert.alert_id,
            severity=alert.severity.value,
            message=alert.message,
            **alert.details,
        )
        return True

    async def send_message(self, text: str) -> bool:
        _log.info("message", text=text)
        return True
