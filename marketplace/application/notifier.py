"""Maps committed domain events to shopper notifications."""

import structlog

from marketplace.domain.base import DomainEvent
from marketplace.domain.events import (
    OrderItemStatusChanged,
    OrderPlaced,
    OrderStatusChanged,
    PaymentFailed,
)
from marketplace.infrastructure.notifications import NotificationDispatcher

logger = structlog.get_logger()

_ITEM_NOTIFICATIONS = {
    "shipped": "item_shipped",
    "delivered": "item_delivered",
    "return_requested": "return_requested",
    "refunded": "item_refunded",
}

_ORDER_NOTIFICATIONS = {
    "processing": "order_paid",
    "cancelled": "order_cancelled",
}


def notification_kind(event: DomainEvent) -> str | None:
    """Get the notification kind for an event, or None if it is silent."""
    if isinstance(event, OrderPlaced):
        return "order_placed"
    if isinstance(event, PaymentFailed):
        return "payment_failed"
    if isinstance(event, OrderItemStatusChanged):
        if event.from_status == "return_requested" and event.to_status == "delivered":
            return "return_rejected"
        return _ITEM_NOTIFICATIONS.get(event.to_status)
    if isinstance(event, OrderStatusChanged):
        return _ORDER_NOTIFICATIONS.get(event.to_status)
    return None


class OrderNotifier:
    """Sends notifications for events after their transaction committed."""

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self.dispatcher = dispatcher

    async def publish(self, events: list[DomainEvent], recipient: str) -> int:
        """Dispatch one notification per notifiable event.

        A failing dispatch is logged and skipped.

        Returns:
            Number of notifications delivered.
        """
        sent = 0
        for event in events:
            kind = notification_kind(event)
            if kind is None:
                continue
            try:
                await self.dispatcher.send(kind, recipient, event.to_dict())
                sent += 1
            except Exception as e:
                logger.warning(
                    "Notification dispatch failed",
                    kind=kind,
                    recipient=recipient,
                    aggregate_id=event.aggregate_id,
                    error=str(e),
                )
        return sent
