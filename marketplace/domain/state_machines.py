"""State machines for offers, order items, orders and payments.

Statuses are string-backed enums persisted as plain strings, so new
variants need no schema change. Transition tables live outside the
enums to avoid Enum member restrictions.
"""

from collections.abc import Iterable
from enum import Enum

from marketplace.domain.exceptions import InvalidTransitionError


# ============================================================================
# Offer Status
# ============================================================================


class OfferStatus(str, Enum):
    """Offer listing status. Only active offers can be bought."""

    DRAFT = "draft"
    ACTIVE = "active"


# ============================================================================
# Order Item State Machine
# ============================================================================


class OrderItemStatus(str, Enum):
    """Per-seller line item lifecycle.

    State diagram:
        PENDING ──[payment success]──► PROCESSING ──[ship]──► SHIPPED
          │                              │                      │
          │ cancel                       │ cancel               │ deliver
          ▼                              ▼                      ▼
        CANCELLED ◄──────────────────────┘                  DELIVERED
                                                               │  ▲
                                              request return   │  │ reject
                                                               ▼  │
                                                         RETURN_REQUESTED
                                                               │
                                                               │ approve
                                                               ▼
                                                           REFUNDED
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "OrderItemStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ITEM_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderItemStatus"]:
        """Get list of valid target states, sorted for stable messages."""
        return sorted(_ITEM_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_cancellable(self) -> bool:
        return self in {OrderItemStatus.PENDING, OrderItemStatus.PROCESSING}

    def is_terminal(self) -> bool:
        """Check if no further transitions are possible.

        Delivered is terminal in practice but still allows a return request.
        """
        return self in {
            OrderItemStatus.CANCELLED,
            OrderItemStatus.DELIVERED,
            OrderItemStatus.REFUNDED,
        }


_ITEM_TRANSITIONS: dict[OrderItemStatus, set[OrderItemStatus]] = {
    OrderItemStatus.PENDING: {OrderItemStatus.PROCESSING, OrderItemStatus.CANCELLED},
    OrderItemStatus.PROCESSING: {OrderItemStatus.SHIPPED, OrderItemStatus.CANCELLED},
    OrderItemStatus.SHIPPED: {OrderItemStatus.DELIVERED},
    OrderItemStatus.DELIVERED: {OrderItemStatus.RETURN_REQUESTED},
    OrderItemStatus.RETURN_REQUESTED: {OrderItemStatus.REFUNDED, OrderItemStatus.DELIVERED},
    OrderItemStatus.CANCELLED: set(),
    OrderItemStatus.REFUNDED: set(),
}

# Transitions a seller may request directly; everything else is driven by
# payments, shoppers or return handling.
_SELLER_TRANSITIONS: dict[OrderItemStatus, set[OrderItemStatus]] = {
    OrderItemStatus.PROCESSING: {OrderItemStatus.SHIPPED},
    OrderItemStatus.SHIPPED: {OrderItemStatus.DELIVERED},
}


def is_seller_transition(current: OrderItemStatus, target: OrderItemStatus) -> bool:
    """Check whether a seller may move an item from current to target."""
    return target in _SELLER_TRANSITIONS.get(current, set())


def seller_transitions(current: OrderItemStatus) -> list[OrderItemStatus]:
    return sorted(_SELLER_TRANSITIONS.get(current, set()), key=lambda s: s.value)


# ============================================================================
# Order Status Roll-up
# ============================================================================


class OrderStatus(str, Enum):
    """Aggregate order status, always derived from the item statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    REFUNDED = "refunded"

    def is_terminal(self) -> bool:
        return self in {OrderStatus.CANCELLED, OrderStatus.DELIVERED, OrderStatus.REFUNDED}


_PROGRESS: dict[OrderItemStatus, int] = {
    OrderItemStatus.PENDING: 0,
    OrderItemStatus.PROCESSING: 1,
    OrderItemStatus.SHIPPED: 2,
    OrderItemStatus.DELIVERED: 3,
    OrderItemStatus.RETURN_REQUESTED: 4,
    OrderItemStatus.REFUNDED: 5,
}


def roll_up_order_status(statuses: Iterable[OrderItemStatus]) -> OrderStatus:
    """Derive the order status from its item statuses.

    Rules, in order:
        1. cancelled when every item is cancelled;
        2. cancelled items are otherwise ignored;
        3. delivered when every remaining item is delivered;
        4. return_requested, then refunded, when any item is in that state
           and no item is still pending;
        5. otherwise the least-progressed item status.

    Args:
        statuses: Statuses of all items of one order.

    Returns:
        The aggregate order status.

    Raises:
        ValueError: If the order has no items.
    """
    statuses = list(statuses)
    if not statuses:
        raise ValueError("An order needs at least one item to derive its status")

    active = [s for s in statuses if s != OrderItemStatus.CANCELLED]
    if not active:
        return OrderStatus.CANCELLED
    if all(s == OrderItemStatus.DELIVERED for s in active):
        return OrderStatus.DELIVERED

    has_pending = OrderItemStatus.PENDING in active
    if not has_pending:
        if OrderItemStatus.RETURN_REQUESTED in active:
            return OrderStatus.RETURN_REQUESTED
        if OrderItemStatus.REFUNDED in active:
            return OrderStatus.REFUNDED

    least = min(active, key=_PROGRESS.__getitem__)
    return OrderStatus(least.value)


# ============================================================================
# Payment State Machine
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment lifecycle.

    pending settles exactly once into succeeded or failed; succeeded may
    later become refunded.
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        return target in _PAYMENT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["PaymentStatus"]:
        return sorted(_PAYMENT_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_settled(self) -> bool:
        return self != PaymentStatus.PENDING

    def is_live(self) -> bool:
        """A live payment blocks creating another intent for its order."""
        return self != PaymentStatus.FAILED


_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED},
    PaymentStatus.SUCCEEDED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_item_transition(
    item_id: str,
    current_status: OrderItemStatus,
    target_status: OrderItemStatus,
) -> None:
    """Validate and raise if an order item transition is invalid.

    Args:
        item_id: Item identifier for error message.
        current_status: Current item status.
        target_status: Target item status.

    Raises:
        InvalidTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidTransitionError(
            entity_type="OrderItem",
            entity_id=item_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_payment_transition(
    payment_id: str,
    current_status: PaymentStatus,
    target_status: PaymentStatus,
) -> None:
    """Validate and raise if a payment transition is invalid.

    Raises:
        InvalidTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidTransitionError(
            entity_type="Payment",
            entity_id=payment_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
