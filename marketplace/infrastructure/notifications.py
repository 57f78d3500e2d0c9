"""Notification dispatch collaborator.

Notifications are fire-and-forget: callers log failures and never undo
the transition that triggered them.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog

logger = structlog.get_logger()


class NotificationDispatcher(ABC):
    """Delivers shopper and seller notifications."""

    @abstractmethod
    async def send(self, kind: str, recipient: str, payload: dict[str, Any]) -> None:
        """Send one notification."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that only writes notifications to the log."""

    async def send(self, kind: str, recipient: str, payload: dict[str, Any]) -> None:
        logger.info("Notification dispatched", kind=kind, recipient=recipient, payload=payload)


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = LoggingNotificationDispatcher()
    return _dispatcher
