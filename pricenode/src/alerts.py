"""Operator alert sinks.

The node calls ``send_alert(message)`` when an asset's failure counter reaches
the alert threshold, when a publish is rejected as unauthorized, and when a
health check finds problems. Every alert is logged; WebhookAlertSink also posts
it to a Discord/Slack-compatible webhook.
"""

from __future__ import annotations

import logging

import httpx

from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


class AlertSink:
    """Logs alerts. Base class for sinks that also deliver them elsewhere."""

    async def send_alert(self, message: str) -> bool:
        """Report an alert to the operator.

        :param message: Human-readable description of the problem.
        :returns: True if the alert was delivered beyond the log.
        """
        logger.error(f"ALERT: {message}")
        return False


LogAlertSink = AlertSink


class WebhookAlertSink(AlertSink):
    """Posts alerts as ``{"content": message}`` to a webhook URL.

    :ivar webhook_url: Target URL.
    :ivar timeout: Request timeout in seconds.
    """

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        if not webhook_url:
            raise ValueError("webhook_url must not be empty")
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send_alert(self, message: str) -> bool:
        await super().send_alert(message)
        client = BaseFetcher.get_shared_client()
        try:
            response = await client.post(
                self.webhook_url, json={"content": message}, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver alert to webhook: {e}")
            return False
        return True
