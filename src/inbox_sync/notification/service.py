"""Slack and generic webhook notifications for high-value messages."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from inbox_sync.core.config import NotificationSettings
from inbox_sync.core.datetime_utils import display_datetime, serialize_datetime, utcnow
from inbox_sync.core.interfaces import NotificationError, Notifier
from inbox_sync.core.models import Message

LOGGER = logging.getLogger(__name__)

SLACK_PREVIEW_CHARS = 200
WEBHOOK_BODY_CHARS = 500
WEBHOOK_EVENT = "email.interested"


class WebhookNotifier(Notifier):
    """Post message summaries to Slack and to a generic JSON webhook.

    Both channels are attempted concurrently. A channel without a configured
    URL is skipped. Failures are logged and never propagate out of
    :meth:`notify`.
    """

    def __init__(
        self,
        settings: NotificationSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client

    async def notify(self, message: Message) -> None:
        """Deliver ``message`` to every configured channel."""
        results = await asyncio.gather(
            self.send_slack(message),
            self.trigger_webhook(message),
            return_exceptions=True,
        )
        for channel, result in zip(("slack", "webhook"), results):
            if isinstance(result, BaseException):
                LOGGER.warning(
                    "%s notification failed for message %s: %s",
                    channel,
                    message.id,
                    result,
                )

    async def send_slack(self, message: Message) -> bool:
        """Post a Block Kit summary to Slack. Returns ``False`` when disabled."""
        url = self._settings.slack_webhook_url
        if not url:
            LOGGER.debug("Slack webhook URL not configured")
            return False
        await self._post(url, build_slack_payload(message))
        LOGGER.info("Slack notification sent for message %s", message.id)
        return True

    async def trigger_webhook(self, message: Message) -> bool:
        """Post a JSON event to the generic webhook. Returns ``False`` when disabled."""
        url = self._settings.webhook_url
        if not url:
            LOGGER.debug("Webhook URL not configured")
            return False
        await self._post(url, build_webhook_payload(message))
        LOGGER.info("Webhook triggered for message %s", message.id)
        return True

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, timeout=self._settings.timeout_seconds
                )
                response.raise_for_status()
                return
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url, json=payload, timeout=self._settings.timeout_seconds
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"POST to notification endpoint failed: {exc}") from exc


def build_slack_payload(message: Message) -> dict[str, Any]:
    """Return the Slack Block Kit body announcing ``message``."""
    preview = message.body[:SLACK_PREVIEW_CHARS]
    return {
        "text": "New Interested Email!",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "New Interested Email Received"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*From:*\n{message.sender}"},
                    {"type": "mrkdwn", "text": f"*Account:*\n{message.account_id}"},
                    {"type": "mrkdwn", "text": f"*Subject:*\n{message.subject}"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Date:*\n{display_datetime(message.date)}",
                    },
                ],
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Preview:*\n{preview}..."},
            },
        ],
    }


def build_webhook_payload(message: Message) -> dict[str, Any]:
    """Return the generic webhook event body for ``message``."""
    return {
        "event": WEBHOOK_EVENT,
        "timestamp": serialize_datetime(utcnow()),
        "data": {
            "emailId": message.id,
            "accountId": message.account_id,
            "from": message.sender,
            "subject": message.subject,
            "body": message.body[:WEBHOOK_BODY_CHARS],
            "date": serialize_datetime(message.date),
            "category": message.category.value if message.category else None,
        },
    }


__all__ = ["WebhookNotifier", "build_slack_payload", "build_webhook_payload"]
