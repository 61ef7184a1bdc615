"""Email delivery through the ElasticEmail HTTP API."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from ..errors import DeliveryFailure
from .base import DispatchResult, NotificationDispatcher

logger = logging.getLogger(__name__)


class EmailDispatcher(NotificationDispatcher):
    """Sends transactional HTML email to every address in ``recipients``."""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: Optional[str],
        from_name: str = "Training Manager",
        api_url: str = "https://api.elasticemail.com/v2/email/send",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    def build_form(self, recipients: Sequence[str], subject: str, body: str) -> dict:
        return {
            "apikey": self.api_key,
            "to": ",".join(recipients),
            "subject": subject,
            "from": self.from_email,
            "fromName": self.from_name,
            "isTransactional": "true",
            "bodyHtml": body,
        }

    async def _send(self, client: httpx.AsyncClient, form: dict) -> None:
        try:
            resp = await client.post(self.api_url, data=form)
        except httpx.HTTPError as exc:
            raise DeliveryFailure(f"Email request failed: {exc}") from exc
        if resp.is_error:
            raise DeliveryFailure(f"Email API returned {resp.status_code}: {resp.text}")
        try:
            result = resp.json()
        except ValueError:
            result = {}
        # ElasticEmail v2 reports errors with a 200 and success=false.
        if isinstance(result, dict) and result.get("success") is False:
            raise DeliveryFailure(f"Email API error: {result.get('error', 'unknown error')}")

    async def dispatch(
        self, recipients: Sequence[str], subject: str, body: str
    ) -> DispatchResult:
        addresses = [r for r in recipients if "@" in r]
        if not addresses:
            return DispatchResult.failure("No email recipients", channel="email")
        if not self.api_key or not self.from_email:
            return DispatchResult.failure("Email API credentials missing", channel="email")

        form = self.build_form(addresses, subject, body)
        try:
            if self._client is not None:
                await self._send(self._client, form)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await self._send(client, form)
        except DeliveryFailure as exc:
            logger.warning(f"Email delivery to {', '.join(addresses)} failed: {exc}")
            return DispatchResult.failure(str(exc), channel="email")

        logger.info(f"Sent email '{subject}' to {len(addresses)} recipient(s)")
        return DispatchResult.success(channel="email", detail=", ".join(addresses))
