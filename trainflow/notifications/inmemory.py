"""In-memory dispatcher for testing."""

from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from .base import DispatchResult, NotificationDispatcher


class SentNotification(BaseModel):
    recipients: List[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    ok: bool = True


class InMemoryDispatcher(NotificationDispatcher):
    """Records every message; set ``fail_with`` to simulate a channel outage."""

    def __init__(self, fail_with: Optional[str] = None) -> None:
        self.fail_with = fail_with
        self.sent: List[SentNotification] = []

    async def dispatch(
        self, recipients: Sequence[str], subject: str, body: str
    ) -> DispatchResult:
        ok = self.fail_with is None
        self.sent.append(
            SentNotification(recipients=list(recipients), subject=subject, body=body, ok=ok)
        )
        if not ok:
            return DispatchResult.failure(self.fail_with, channel="inmemory")
        return DispatchResult.success(channel="inmemory")

    @property
    def delivered(self) -> List[SentNotification]:
        return [n for n in self.sent if n.ok]
