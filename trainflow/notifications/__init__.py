"""Notification dispatcher factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TrainflowConfig, load_config
from .base import DispatchResult, NotificationDispatcher
from .composite import CompositeDispatcher
from .email import EmailDispatcher
from .inmemory import InMemoryDispatcher
from .webhook import WebhookDispatcher


def get_dispatcher(
    backend: Optional[str] = None, config: Optional[TrainflowConfig] = None
) -> NotificationDispatcher:
    """Factory function to get the configured notification dispatcher."""

    config = config or load_config()
    settings = config.notifications
    backend = (
        backend
        or os.getenv("TRAINFLOW_NOTIFICATIONS")
        or settings.backend
    ).lower()

    def _webhook() -> WebhookDispatcher:
        return WebhookDispatcher(
            slack_url=settings.webhook.slack_url,
            teams_url=settings.webhook.teams_url,
            timeout=settings.webhook.timeout,
        )

    def _email() -> EmailDispatcher:
        return EmailDispatcher(
            api_key=settings.email.api_key,
            from_email=settings.email.from_email,
            from_name=settings.email.from_name,
            api_url=settings.email.api_url,
            timeout=settings.email.timeout,
        )

    if backend == "inmemory":
        return InMemoryDispatcher()
    elif backend == "webhook":
        return _webhook()
    elif backend == "email":
        return _email()
    elif backend == "composite":
        return CompositeDispatcher(chat=_webhook(), email=_email())
    else:
        raise ValueError(f"Unsupported notification backend: {backend}")


__all__ = [
    "DispatchResult",
    "NotificationDispatcher",
    "InMemoryDispatcher",
    "WebhookDispatcher",
    "EmailDispatcher",
    "CompositeDispatcher",
    "get_dispatcher",
]
