"""Routes recipients to chat webhooks or email."""

from __future__ import annotations

from typing import Sequence

from .base import DispatchResult, NotificationDispatcher
from .webhook import WEBHOOK_CHANNELS


class CompositeDispatcher(NotificationDispatcher):
    """Sends ``slack``/``teams`` recipients through ``chat``, the rest through ``email``."""

    def __init__(self, chat: NotificationDispatcher, email: NotificationDispatcher) -> None:
        self.chat = chat
        self.email = email

    async def aclose(self) -> None:
        await self.chat.aclose()
        await self.email.aclose()

    async def dispatch(
        self, recipients: Sequence[str], subject: str, body: str
    ) -> DispatchResult:
        channels = [r for r in recipients if r in WEBHOOK_CHANNELS]
        addresses = [r for r in recipients if r not in WEBHOOK_CHANNELS]
        if not channels and not addresses:
            return DispatchResult.failure("No recipients", channel="composite")

        results = []
        if channels:
            results.append(await self.chat.dispatch(channels, subject, body))
        if addresses:
            results.append(await self.email.dispatch(addresses, subject, body))

        failures = [r.detail or "delivery failed" for r in results if not r.ok]
        if failures:
            return DispatchResult.failure("; ".join(failures), channel="composite")
        details = [r.detail for r in results if r.detail]
        return DispatchResult.success(channel="composite", detail="; ".join(details) or None)
