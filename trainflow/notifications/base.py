"""Base interface for notification delivery channels."""

from __future__ import annotations

import abc
from typing import Optional, Sequence

from pydantic import BaseModel


class DispatchResult(BaseModel):
    """Outcome of a delivery attempt; failures are reported, never raised."""

    ok: bool
    channel: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, channel: Optional[str] = None, detail: Optional[str] = None) -> "DispatchResult":
        return cls(ok=True, channel=channel, detail=detail)

    @classmethod
    def failure(cls, detail: str, channel: Optional[str] = None) -> "DispatchResult":
        return cls(ok=False, channel=channel, detail=detail)


class NotificationDispatcher(metaclass=abc.ABCMeta):
    """Abstract adapter that delivers an already rendered message."""

    async def aclose(self) -> None:
        """Release channel resources (no-op by default)."""
        pass

    @abc.abstractmethod
    async def dispatch(
        self, recipients: Sequence[str], subject: str, body: str
    ) -> DispatchResult:
        """Deliver ``subject``/``body`` to ``recipients``.

        Implementations must not raise for delivery problems; they return a
        failed :class:`DispatchResult` instead.
        """
        raise NotImplementedError
