"""Generic JSON webhook notification channel.

Posts alerts (and free-form messages) as JSON bodies to a configured HTTP
endpoint. The alert payload mirrors the Alert fields so that consumers can
parse it without knowledge of this service.
"""

from __future__ import annotations

import httpx
import structlog

from reflexagent.models.alerts import Alert
from reflexagent.notifications.manager import NotificationChannel

_log = structlog.get_logger(component="notifications.webhook")


class WebhookNotificationChannel(NotificationChannel):
    """POSTs each alert as JSON to one endpoint.

    Args:
        url:       Full endpoint URL (must be HTTPS in production).
        headers:   Optional extra headers (e.g. Authorization).
        timeout:   HTTP request timeout in seconds. Defaults to 10.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._transport = transport

    @property
    def channel_name(self) -> str:
        return "webhook"

    async def send(self, alert: Alert) -> bool:
        return await self._post(self._build_payload(alert), alert_id=alert.alert_id)

    async def send_message(self, text: str) -> bool:
        return await self._post({"text": text}, alert_id=None)

    async def _post(self, payload: dict[str, object], alert_id: str | None) -> bool:
        """Returns True on a 2xx response, False otherwise."""
        request_headers = {"Content-Type": "application/json", **self._headers}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers=request_headers)
                if response.is_success:
                    return True
                _log.warning(
                    "webhook_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                    alert_id=alert_id,
                )
                return False
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", alert_id=alert_id, url=self._url)
            return False
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", error=str(exc), alert_id=alert_id)
            return False

    def _build_payload(self, alert: Alert) -> dict[str, object]:
        """Alert fields plus the metric snapshot."""
        return {
            "alert_id": alert.alert_id,
            "name": alert.name,
            "severity": alert.severity.value,
            "status": alert.status.value,
            "message": alert.message,
            "threshold": alert.threshold,
            "timestamp": alert.timestamp.isoformat(),
            "metric": alert.details,
        }
