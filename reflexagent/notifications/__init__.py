"""Notification system for ReflexAgent.

Dispatches Alert instances to one or more notification channels with
built-in deduplication.

Exports:
    NotificationChannel        -- Abstract base for all channel implementations.
    NotificationDispatcher     -- NotificationPort over every registered channel.
    AlertDeduplicator          -- Cooldown per alert series.
    WebhookNotificationChannel -- Generic JSON POST webhook channel.
    LogNotificationChannel     -- Structured-log channel.
    build_notification_dispatcher -- Factory used by the application bootstrap.
"""

from __future__ import annotations

import os
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from reflexagent.notifications.log import LogNotificationChannel
from reflexagent.notifications.manager import (
    AlertDeduplicator,
    NotificationChannel,
    NotificationDispatcher,
)
from reflexagent.notifications.webhook import WebhookNotificationChannel

if TYPE_CHECKING:
    from reflexagent.models.config import NotificationConfig

_log = structlog.get_logger(component="notifications")

__all__ = [
    "AlertDeduplicator",
    "LogNotificationChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "WebhookNotificationChannel",
    "build_notification_dispatcher",
]


def build_notification_dispatcher(config: NotificationConfig) -> NotificationDispatcher:
    """Build a NotificationDispatcher from environment-resolved secrets.

    ``webhook_secret_ref`` names the environment variable holding the webhook
    URL; the channel is enabled only when that variable is non-empty.
    """
    channels: list[NotificationChannel] = []

    if config.log_channel_enabled:
        channels.append(LogNotificationChannel())

    webhook_ref = config.webhook_secret_ref
    if webhook_ref:
        webhook_url = os.environ.get(webhook_ref, "")
        if webhook_url:
            try:
                channels.append(WebhookNotificationChannel(url=webhook_url))
                _log.info("webhook_channel_enabled")
            except ValueError as exc:
                _log.warning("webhook_channel_disabled", reason=str(exc))
        else:
            _log.debug("webhook_channel_skipped", reason="secret ref env var is empty")

    if not channels:
        _log.info("no_notification_channels_configured")

    deduplicator = AlertDeduplicator(cooldown=timedelta(minutes=config.cooldown_minutes))
    return NotificationDispatcher(channels=channels, deduplicator=deduplicator)
