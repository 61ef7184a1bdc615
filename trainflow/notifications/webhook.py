"""Slack and Microsoft Teams delivery through incoming webhooks."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

import httpx

from ..errors import DeliveryFailure
from .base import DispatchResult, NotificationDispatcher

logger = logging.getLogger(__name__)

WEBHOOK_CHANNELS = ("slack", "teams")


class WebhookDispatcher(NotificationDispatcher):
    """Posts messages to chat channels named in the recipient list."""

    def __init__(
        self,
        slack_url: Optional[str] = None,
        teams_url: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.urls: Dict[str, Optional[str]] = {"slack": slack_url, "teams": teams_url}
        self.timeout = timeout
        self._client = client

    @staticmethod
    def build_payload(channel: str, subject: str, body: str) -> dict:
        if channel == "slack":
            return {"text": f"*{subject}*\n{body}" if subject else body}
        # Teams accepts a bare text field in place of a full message card.
        return {"text": f"{subject}\n{body}" if subject else body}

    async def _post(self, client: httpx.AsyncClient, channel: str, payload: dict) -> None:
        url = self.urls.get(channel)
        if not url:
            raise DeliveryFailure(f"Missing {channel} webhook URL")
        try:
            resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryFailure(f"{channel} webhook request failed: {exc}") from exc
        if resp.is_error:
            raise DeliveryFailure(f"{channel} webhook returned {resp.status_code}: {resp.text}")

    async def dispatch(
        self, recipients: Sequence[str], subject: str, body: str
    ) -> DispatchResult:
        channels = [r for r in recipients if r in WEBHOOK_CHANNELS]
        if not channels:
            return DispatchResult.failure("No webhook channel among recipients", channel="webhook")

        errors = []
        if self._client is not None:
            for channel in channels:
                errors.extend(await self._send(self._client, channel, subject, body))
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                for channel in channels:
                    errors.extend(await self._send(client, channel, subject, body))

        if errors:
            return DispatchResult.failure("; ".join(errors), channel="webhook")
        return DispatchResult.success(channel="webhook", detail=", ".join(channels))

    async def _send(
        self, client: httpx.AsyncClient, channel: str, subject: str, body: str
    ) -> list[str]:
        try:
            await self._post(client, channel, self.build_payload(channel, subject, body))
        except DeliveryFailure as exc:
            logger.warning(f"Webhook delivery to {channel} failed: {exc}")
            return [str(exc)]
        logger.info(f"Delivered notification to {channel}")
        return []
