"""Domain entities and aggregates.

Offers, carts, orders with their per-seller items, and payments.
Aggregates validate every state change against the state machines and
record domain events for history and notifications.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from marketplace.domain.base import AggregateRoot, Entity, new_id, utcnow
from marketplace.domain.events import (
    OrderItemStatusChanged,
    OrderPlaced,
    OrderStatusChanged,
    PaymentFailed,
    PaymentIntentCreated,
    PaymentRefunded,
    PaymentSucceeded,
)
from marketplace.domain.exceptions import (
    CartItemNotFoundError,
    InvalidOfferError,
    InvalidQuantityError,
    InvalidTransitionError,
    OrderItemNotFoundError,
    RefundExceedsCaptureError,
    ReturnWindowExpiredError,
    ShipmentDetailsRequiredError,
)
from marketplace.domain.state_machines import (
    OfferStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    roll_up_order_status,
    validate_item_transition,
    validate_payment_transition,
)
from marketplace.domain.value_objects import Address, Deal, Money, OfferCondition


# ============================================================================
# Offer
# ============================================================================


@dataclass(kw_only=True)
class Offer(AggregateRoot[str]):
    """One seller's listing of a catalog product.

    Stock is never mutated here: the order pipeline changes it only
    through conditional updates in the offer repository.

    Attributes:
        product_id: Catalog product being offered.
        seller_id: Owning seller.
        price: Regular price.
        stock_quantity: Units available, never negative.
        condition: Item condition.
        status: Listing status; only active offers are purchasable.
        deal: Optional time-boxed deal, always cheaper than ``price``.
    """

    product_id: str
    seller_id: str
    price: Money
    stock_quantity: int = 0
    condition: OfferCondition = OfferCondition.NEW
    status: OfferStatus = OfferStatus.ACTIVE
    deal: Deal | None = None

    def __post_init__(self) -> None:
        if self.stock_quantity < 0:
            raise InvalidOfferError(
                "Stock quantity cannot be negative",
                details={"stock_quantity": self.stock_quantity},
            )
        self._validate_deal(self.price, self.deal)

    @staticmethod
    def _validate_deal(price: Money, deal: Deal | None) -> None:
        if price.amount_cents == 0:
            raise InvalidOfferError("Offer price must be positive", details={"price": 0})
        if deal is None:
            return
        if deal.price.currency != price.currency or not deal.price < price:
            raise InvalidOfferError(
                "Deal price must be lower than the regular price",
                details={
                    "price": price.amount_cents,
                    "deal_price": deal.price.amount_cents,
                    "currency": price.currency,
                },
            )

    @property
    def is_active(self) -> bool:
        return self.status == OfferStatus.ACTIVE

    def is_deal_active(self, now: datetime) -> bool:
        return self.deal is not None and self.deal.is_active(now)

    def reprice(self, price: Money, deal: Deal | None, now: datetime | None = None) -> None:
        """Replace the regular price and deal together.

        Raises:
            InvalidOfferError: If the deal is not cheaper than the price.
        """
        self._validate_deal(price, deal)
        self.price = price
        self.deal = deal
        self._touch(now)

    def set_condition(self, condition: OfferCondition, now: datetime | None = None) -> None:
        self.condition = condition
        self._touch(now)

    def set_status(self, status: OfferStatus, now: datetime | None = None) -> None:
        self.status = status
        self._touch(now)


# ============================================================================
# Cart
# ============================================================================


@dataclass
class CartItem:
    """A cart line, unique per owner and offer.

    ``unit_price_at_add`` only keeps the displayed price stable; checkout
    always re-resolves the live price.
    """

    offer_id: str
    quantity: int
    unit_price_at_add: Money
    added_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise InvalidQuantityError(self.quantity)


@dataclass
class Cart:
    """Line items of one shopper keyed by offer."""

    owner_id: str
    lines: dict[str, CartItem] = field(default_factory=dict)

    @property
    def items(self) -> list[CartItem]:
        return list(self.lines.values())

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def get(self, offer_id: str) -> CartItem | None:
        return self.lines.get(offer_id)

    def add_item(
        self,
        offer_id: str,
        quantity: int,
        unit_price: Money,
        now: datetime | None = None,
    ) -> CartItem:
        """Add an offer, incrementing the quantity of an existing line.

        Args:
            offer_id: Offer to add.
            quantity: Units to add.
            unit_price: Price snapshot for display.
            now: Time of the add.

        Returns:
            The created or updated line.

        Raises:
            InvalidQuantityError: If quantity is not positive.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        existing = self.lines.get(offer_id)
        if existing is not None:
            existing.quantity += quantity
            existing.unit_price_at_add = unit_price
            return existing
        item = CartItem(
            offer_id=offer_id,
            quantity=quantity,
            unit_price_at_add=unit_price,
            added_at=now or utcnow(),
        )
        self.lines[offer_id] = item
        return item

    def update_quantity(self, offer_id: str, quantity: int) -> CartItem | None:
        """Set a line quantity; zero removes the line.

        Returns:
            The updated line, or None when it was removed.

        Raises:
            InvalidQuantityError: If quantity is negative.
            CartItemNotFoundError: If the offer is not in the cart.
        """
        if quantity < 0:
            raise InvalidQuantityError(quantity, "Quantity cannot be negative")
        if offer_id not in self.lines:
            raise CartItemNotFoundError(self.owner_id, offer_id)
        if quantity == 0:
            del self.lines[offer_id]
            return None
        self.lines[offer_id].quantity = quantity
        return self.lines[offer_id]

    def remove_item(self, offer_id: str) -> CartItem:
        if offer_id not in self.lines:
            raise CartItemNotFoundError(self.owner_id, offer_id)
        return self.lines.pop(offer_id)

    def clear(self) -> int:
        count = len(self.lines)
        self.lines.clear()
        return count


# ============================================================================
# Order
# ============================================================================


@dataclass(frozen=True)
class OrderLine:
    """A re-validated cart line ready to become an order item."""

    offer: Offer
    quantity: int
    unit_price: Money


@dataclass
class OrderItem(Entity[str]):
    """One seller's line within an order.

    Keeps its own copy of price and seller so that later offer edits or
    deletion never change the order.
    """

    order_id: str
    offer_id: str
    product_id: str
    seller_id: str
    quantity: int
    price_at_purchase: Money
    status: OrderItemStatus = OrderItemStatus.PENDING
    tracking_number: str | None = None
    shipping_carrier: str | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    return_reason: str | None = None
    refunded_at: datetime | None = None

    @property
    def line_total(self) -> Money:
        return self.price_at_purchase * self.quantity


@dataclass(kw_only=True)
class Order(AggregateRoot[str]):
    """Order aggregate root.

    The total is fixed when the order is placed. The order status is a
    roll-up of the item statuses and is refreshed after every item change.

    Attributes:
        user_id: Shopper who placed the order.
        shipping_address: Address snapshot taken at checkout.
        total: Sum of item price times quantity at checkout.
        items: Per-seller line items.
        status: Rolled-up status.
        stock_reserved: Whether item quantities are currently held
            out of offer stock.
        cancel_reason: Reason given on cancellation.
    """

    user_id: str
    shipping_address: Address
    total: Money
    items: list[OrderItem] = field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    stock_reserved: bool = True
    cancel_reason: str | None = None

    @classmethod
    def place(
        cls,
        user_id: str,
        shipping_address: Address,
        lines: list[OrderLine],
        now: datetime | None = None,
        order_id: str | None = None,
    ) -> "Order":
        """Create a pending order from re-validated cart lines.

        Args:
            user_id: Shopper placing the order.
            shipping_address: Address snapshot.
            lines: Lines with their resolved unit prices.
            now: Placement time.
            order_id: Optional pre-generated order ID.

        Returns:
            New Order with one pending item per line.

        Raises:
            ValueError: If no lines are given.
            CurrencyMismatchError: If lines are priced in different currencies.
        """
        if not lines:
            raise ValueError("Cannot place an order without lines")
        now = now or utcnow()
        order_id = order_id or new_id()
        items = [
            OrderItem(
                id=new_id(),
                order_id=order_id,
                offer_id=line.offer.id,
                product_id=line.offer.product_id,
                seller_id=line.offer.seller_id,
                quantity=line.quantity,
                price_at_purchase=line.unit_price,
            )
            for line in lines
        ]
        total = Money.zero(items[0].price_at_purchase.currency)
        for item in items:
            total = total + item.line_total

        order = cls(
            id=order_id,
            user_id=user_id,
            shipping_address=shipping_address,
            total=total,
            items=items,
            created_at=now,
            updated_at=now,
        )
        order._record_event(
            OrderPlaced(
                aggregate_id=order.id,
                aggregate_type="Order",
                occurred_at=now,
                order_id=order.id,
                user_id=user_id,
                total_cents=total.amount_cents,
                currency=total.currency,
                item_count=len(items),
            )
        )
        return order

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    def item(self, item_id: str) -> OrderItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise OrderItemNotFoundError(item_id)

    def items_for_seller(self, seller_id: str) -> list[OrderItem]:
        return [item for item in self.items if item.seller_id == seller_id]

    def seller_view(self, seller_id: str) -> "Order":
        """Copy of the order holding only one seller's items.

        The total is the sum of those items. The shipping address is kept
        for fulfilment.
        """
        items = self.items_for_seller(seller_id)
        total = Money.zero(self.total.currency)
        for item in items:
            total = total + item.line_total
        return replace(self, items=items, total=total)

    def reserved_quantities(self) -> list[tuple[str, int]]:
        """Offer quantities held by items that are not cancelled."""
        return [
            (item.offer_id, item.quantity)
            for item in self.items
            if item.status != OrderItemStatus.CANCELLED
        ]

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def mark_paid(self, actor: str = "payment", now: datetime | None = None) -> int:
        """Move every pending item to processing after a successful payment.

        Items already past pending are left untouched, so replays are no-ops.

        Returns:
            Number of items transitioned.
        """
        pending = [i for i in self.items if i.status == OrderItemStatus.PENDING]
        for item in pending:
            self._transition_item(item, OrderItemStatus.PROCESSING, actor, None, now)
        self._refresh_status(actor, None, now)
        return len(pending)

    def cancel(self, reason: str, actor: str, now: datetime | None = None) -> list[OrderItem]:
        """Cancel every item that is not already cancelled.

        Returns:
            The items that were cancelled.

        Raises:
            InvalidTransitionError: If any remaining item is past processing.
        """
        remaining = [i for i in self.items if i.status != OrderItemStatus.CANCELLED]
        if not remaining or not all(i.status.is_cancellable() for i in remaining):
            raise InvalidTransitionError(
                entity_type="Order",
                entity_id=self.id,
                current_state=self.status.value,
                target_state=OrderStatus.CANCELLED.value,
            )
        for item in remaining:
            self._transition_item(item, OrderItemStatus.CANCELLED, actor, reason, now)
        self.cancel_reason = reason
        self._refresh_status(actor, reason, now)
        return remaining

    def ship_item(
        self,
        item_id: str,
        tracking_number: str | None,
        carrier: str | None,
        actor: str,
        now: datetime | None = None,
    ) -> OrderItem:
        """Mark an item shipped with its tracking details.

        Raises:
            ShipmentDetailsRequiredError: If tracking number or carrier is missing.
            InvalidTransitionError: If the item is not processing.
        """
        item = self.item(item_id)
        if not tracking_number or not carrier:
            raise ShipmentDetailsRequiredError(item_id)
        now = now or utcnow()
        self._transition_item(item, OrderItemStatus.SHIPPED, actor, None, now)
        item.tracking_number = tracking_number
        item.shipping_carrier = carrier
        item.shipped_at = now
        self._refresh_status(actor, None, now)
        return item

    def deliver_item(self, item_id: str, actor: str, now: datetime | None = None) -> OrderItem:
        item = self.item(item_id)
        now = now or utcnow()
        self._transition_item(item, OrderItemStatus.DELIVERED, actor, None, now)
        item.delivered_at = now
        self._refresh_status(actor, None, now)
        return item

    def request_return(
        self,
        reason: str,
        window: timedelta,
        item_ids: list[str] | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> list[OrderItem]:
        """Request a return for delivered items inside the return window.

        Args:
            reason: Shopper's reason.
            window: Return window measured from delivery.
            item_ids: Items to return; all delivered items when omitted.
            actor: Requesting actor, defaults to the order owner.
            now: Request time.

        Returns:
            Items moved to return_requested.

        Raises:
            InvalidTransitionError: If an item is not delivered, or the
                order has no delivered item.
            ReturnWindowExpiredError: If an item's window has closed.
        """
        now = now or utcnow()
        actor = actor or self.user_id
        if item_ids:
            targets = [self.item(item_id) for item_id in item_ids]
        else:
            targets = [i for i in self.items if i.status == OrderItemStatus.DELIVERED]
            if not targets:
                raise InvalidTransitionError(
                    entity_type="Order",
                    entity_id=self.id,
                    current_state=self.status.value,
                    target_state=OrderStatus.RETURN_REQUESTED.value,
                )

        for item in targets:
            validate_item_transition(item.id, item.status, OrderItemStatus.RETURN_REQUESTED)
            if item.delivered_at is None or now - item.delivered_at > window:
                raise ReturnWindowExpiredError(
                    item.id,
                    item.delivered_at.isoformat() if item.delivered_at else "",
                    window.days,
                )
        for item in targets:
            self._transition_item(item, OrderItemStatus.RETURN_REQUESTED, actor, reason, now)
            item.return_reason = reason
        self._refresh_status(actor, reason, now)
        return targets

    def refund_item(self, item_id: str, actor: str, now: datetime | None = None) -> OrderItem:
        """Approve a requested return. No stock is put back."""
        item = self.item(item_id)
        now = now or utcnow()
        self._transition_item(item, OrderItemStatus.REFUNDED, actor, None, now)
        item.refunded_at = now
        self._refresh_status(actor, None, now)
        return item

    def reject_return(
        self, item_id: str, actor: str, reason: str | None = None, now: datetime | None = None
    ) -> OrderItem:
        item = self.item(item_id)
        if item.status != OrderItemStatus.RETURN_REQUESTED:
            raise InvalidTransitionError(
                entity_type="OrderItem",
                entity_id=item.id,
                current_state=item.status.value,
                target_state=OrderItemStatus.DELIVERED.value,
                allowed_transitions=[s.value for s in item.status.allowed_transitions()],
            )
        self._transition_item(item, OrderItemStatus.DELIVERED, actor, reason, now)
        self._refresh_status(actor, reason, now)
        return item

    def _transition_item(
        self,
        item: OrderItem,
        target: OrderItemStatus,
        actor: str,
        reason: str | None,
        now: datetime | None,
    ) -> None:
        validate_item_transition(item.id, item.status, target)
        previous = item.status
        item.status = target
        self._touch(now)
        self._record_event(
            OrderItemStatusChanged(
                aggregate_id=self.id,
                aggregate_type="Order",
                occurred_at=self.updated_at,
                order_id=self.id,
                user_id=self.user_id,
                item_id=item.id,
                seller_id=item.seller_id,
                from_status=previous.value,
                to_status=target.value,
                actor=actor,
                reason=reason,
            )
        )

    def _refresh_status(self, actor: str, reason: str | None, now: datetime | None) -> None:
        status = roll_up_order_status(item.status for item in self.items)
        if status == self.status:
            return
        previous = self.status
        self.status = status
        self._touch(now)
        self._record_event(
            OrderStatusChanged(
                aggregate_id=self.id,
                aggregate_type="Order",
                occurred_at=self.updated_at,
                order_id=self.id,
                user_id=self.user_id,
                from_status=previous.value,
                to_status=status.value,
                actor=actor,
                reason=reason,
            )
        )


# ============================================================================
# Payment
# ============================================================================


@dataclass(kw_only=True)
class Payment(AggregateRoot[str]):
    """One payment attempt for an order.

    An order has at most one live (non-failed) payment; a failed attempt
    can be followed by a new one.

    Attributes:
        order_id: Order being paid.
        amount: Order total at intent creation.
        status: Payment status.
        gateway_payment_id: Gateway intent identifier.
        client_secret: Secret handed to the shopper's payment page.
        gateway_transaction_id: Gateway charge identifier once paid.
        gateway_response: Last raw gateway payload, kept for disputes.
        refunded_amount: Sum of refunds issued so far.
    """

    order_id: str
    amount: Money
    gateway_payment_id: str
    client_secret: str | None = None
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_transaction_id: str | None = None
    gateway_response: dict[str, Any] | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    refunded_amount: Money | None = None

    @classmethod
    def create(
        cls,
        order_id: str,
        amount: Money,
        gateway_payment_id: str,
        client_secret: str | None,
        now: datetime | None = None,
    ) -> "Payment":
        now = now or utcnow()
        payment = cls(
            id=new_id(),
            order_id=order_id,
            amount=amount,
            gateway_payment_id=gateway_payment_id,
            client_secret=client_secret,
            refunded_amount=Money.zero(amount.currency),
            created_at=now,
            updated_at=now,
        )
        payment._record_event(
            PaymentIntentCreated(
                aggregate_id=payment.id,
                aggregate_type="Payment",
                occurred_at=now,
                payment_id=payment.id,
                order_id=order_id,
                gateway_payment_id=gateway_payment_id,
                amount_cents=amount.amount_cents,
                currency=amount.currency,
            )
        )
        return payment

    @property
    def refundable(self) -> Money:
        refunded = self.refunded_amount or Money.zero(self.amount.currency)
        return self.amount - refunded

    def succeed(
        self,
        transaction_id: str | None,
        response: dict[str, Any],
        now: datetime | None = None,
    ) -> None:
        """Settle the payment as succeeded.

        Raises:
            InvalidTransitionError: If the payment is already settled.
        """
        validate_payment_transition(self.id, self.status, PaymentStatus.SUCCEEDED)
        self.status = PaymentStatus.SUCCEEDED
        self.gateway_transaction_id = transaction_id
        self.gateway_response = response
        self._touch(now)
        self._record_event(
            PaymentSucceeded(
                aggregate_id=self.id,
                aggregate_type="Payment",
                occurred_at=self.updated_at,
                payment_id=self.id,
                order_id=self.order_id,
                gateway_transaction_id=transaction_id,
                amount_cents=self.amount.amount_cents,
            )
        )

    def fail(
        self,
        failure_code: str | None,
        failure_message: str | None,
        response: dict[str, Any],
        now: datetime | None = None,
    ) -> None:
        """Settle the payment as failed.

        Raises:
            InvalidTransitionError: If the payment is already settled.
        """
        validate_payment_transition(self.id, self.status, PaymentStatus.FAILED)
        self.status = PaymentStatus.FAILED
        self.failure_code = failure_code
        self.failure_message = failure_message
        self.gateway_response = response
        self._touch(now)
        self._record_event(
            PaymentFailed(
                aggregate_id=self.id,
                aggregate_type="Payment",
                occurred_at=self.updated_at,
                payment_id=self.id,
                order_id=self.order_id,
                failure_code=failure_code,
                failure_message=failure_message,
            )
        )

    def refund(self, amount: Money, now: datetime | None = None) -> None:
        """Record a full or partial refund.

        The first refund moves the payment to refunded; later partial
        refunds only accumulate.

        Raises:
            InvalidTransitionError: If the payment never succeeded.
            RefundExceedsCaptureError: If the refund exceeds what is left.
        """
        if self.status != PaymentStatus.REFUNDED:
            validate_payment_transition(self.id, self.status, PaymentStatus.REFUNDED)
        refundable = self.refundable
        if amount.amount_cents == 0 or refundable < amount:
            raise RefundExceedsCaptureError(
                self.id, amount.amount_cents, refundable.amount_cents
            )
        self.refunded_amount = (self.refunded_amount or Money.zero(amount.currency)) + amount
        self.status = PaymentStatus.REFUNDED
        self._touch(now)
        self._record_event(
            PaymentRefunded(
                aggregate_id=self.id,
                aggregate_type="Payment",
                occurred_at=self.updated_at,
                payment_id=self.id,
                order_id=self.order_id,
                amount_cents=amount.amount_cents,
                refunded_total_cents=self.refunded_amount.amount_cents,
            )
        )
