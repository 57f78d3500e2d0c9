"""Domain events for the order pipeline.

Events recorded by orders and payments feed the order status history
and the shopper notifications dispatched after commit.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from marketplace.domain.base import DomainEvent


# ============================================================================
# Order Events
# ============================================================================


@dataclass(frozen=True)
class OrderPlaced(DomainEvent):
    """Event raised when checkout commits a new order."""

    event_type: ClassVar[str] = "order.placed"

    order_id: str = ""
    user_id: str = ""
    total_cents: int = 0
    currency: str = ""
    item_count: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Event raised when the rolled-up order status changes."""

    event_type: ClassVar[str] = "order.status_changed"

    order_id: str = ""
    user_id: str = ""
    from_status: str | None = None
    to_status: str = ""
    actor: str = "system"
    reason: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class OrderItemStatusChanged(DomainEvent):
    """Event raised when one order item moves between states."""

    event_type: ClassVar[str] = "order_item.status_changed"

    order_id: str = ""
    user_id: str = ""
    item_id: str = ""
    seller_id: str = ""
    from_status: str = ""
    to_status: str = ""
    actor: str = "system"
    reason: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "item_id": self.item_id,
            "seller_id": self.seller_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "reason": self.reason,
        }


# ============================================================================
# Payment Events
# ============================================================================


@dataclass(frozen=True)
class PaymentIntentCreated(DomainEvent):
    """Event raised when a payment attempt is opened with the gateway."""

    event_type: ClassVar[str] = "payment.intent_created"

    payment_id: str = ""
    order_id: str = ""
    gateway_payment_id: str = ""
    amount_cents: int = 0
    currency: str = ""

    def _payload(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class PaymentSucceeded(DomainEvent):
    """Event raised when the gateway confirms a payment."""

    event_type: ClassVar[str] = "payment.succeeded"

    payment_id: str = ""
    order_id: str = ""
    gateway_transaction_id: str | None = None
    amount_cents: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "gateway_transaction_id": self.gateway_transaction_id,
            "amount_cents": self.amount_cents,
        }


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """Event raised when the gateway reports a failed payment."""

    event_type: ClassVar[str] = "payment.failed"

    payment_id: str = ""
    order_id: str = ""
    failure_code: str | None = None
    failure_message: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "failure_code": self.failure_code,
            "failure_message": self.failure_message,
        }


@dataclass(frozen=True)
class PaymentRefunded(DomainEvent):
    """Event raised for every refund issued against a payment."""

    event_type: ClassVar[str] = "payment.refunded"

    payment_id: str = ""
    order_id: str = ""
    amount_cents: int = 0
    refunded_total_cents: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "refunded_total_cents": self.refunded_total_cents,
        }
