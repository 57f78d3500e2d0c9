"""Order service.

Handles the order lifecycle after checkout:
- Order lookup and listing per actor
- Shopper cancellation with stock release and refund
- Returns: request, approve (refund) and reject
- Seller shipping and delivery updates
- Expiry of stale pending orders
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.application.notifier import OrderNotifier
from marketplace.domain.base import DomainEvent, utcnow
from marketplace.domain.entities import Order, OrderItem, Payment
from marketplace.domain.exceptions import (
    InvalidTransitionError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PermissionDeniedError,
)
from marketplace.domain.state_machines import (
    OrderItemStatus,
    PaymentStatus,
    is_seller_transition,
    seller_transitions,
)
from marketplace.domain.value_objects import Actor, Money
from marketplace.infrastructure.config import settings
from marketplace.infrastructure.database import get_session_factory
from marketplace.infrastructure.notifications import get_notification_dispatcher
from marketplace.infrastructure.payment_gateway import (
    PaymentGateway,
    PaymentGatewayError,
    get_payment_gateway,
)
from marketplace.infrastructure.repositories import (
    CatalogRepository,
    OrderRepository,
    PaymentRepository,
)

logger = structlog.get_logger()


class OrderScope(str, Enum):
    """Which side of an order a listing is for."""

    PURCHASES = "purchases"
    SALES = "sales"


@dataclass
class OrderView:
    """An order with its payment and status history."""

    order: Order
    payment: Payment | None = None
    history: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class OrderPage:
    orders: list[Order]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


class OrderService:
    """Application service for orders and their items."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        gateway: PaymentGateway | None = None,
        notifier: OrderNotifier | None = None,
        clock: Callable[[], datetime] | None = None,
        return_window: timedelta | None = None,
    ) -> None:
        """Initialize service.

        Args:
            session_factory: Factory for database sessions.
            gateway: Payment gateway used for refunds.
            notifier: Notification publisher.
            clock: Source of the current time.
            return_window: How long after delivery a return may be requested.
        """
        self.session_factory = session_factory or get_session_factory()
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier or OrderNotifier(get_notification_dispatcher())
        self.clock = clock or utcnow
        self.return_window = return_window or timedelta(days=settings.return_window_days)

    # -------------------------------------------------------------------------
    # Access Rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _can_view(order: Order, actor: Actor) -> bool:
        if actor.is_admin or order.user_id == actor.id:
            return True
        return actor.is_seller and bool(order.items_for_seller(actor.id))

    @staticmethod
    def _ensure_owner(order: Order, actor: Actor, action: str) -> None:
        if not (actor.is_admin or order.user_id == actor.id):
            raise PermissionDeniedError(actor.id, action, order.id)

    @staticmethod
    def _ensure_item_seller(item: OrderItem, actor: Actor, action: str) -> None:
        if not (actor.is_admin or (actor.is_seller and item.seller_id == actor.id)):
            raise PermissionDeniedError(actor.id, action, item.id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: str, actor: Actor) -> OrderView:
        """Get an order visible to the actor.

        A seller who did not place the order sees only their own items,
        the history of those items and no payment.

        Raises:
            OrderNotFoundError: If missing or not visible to the actor.
        """
        async with self.session_factory() as session:
            orders = OrderRepository(session)
            order = await orders.get(order_id)
            if order is None or not self._can_view(order, actor):
                raise OrderNotFoundError(order_id)
            payment = await PaymentRepository(session).get_live_for_order(order_id)
            history = await orders.get_history(order_id)

        if actor.is_admin or order.user_id == actor.id:
            return OrderView(order=order, payment=payment, history=history)
        order = order.seller_view(actor.id)
        item_ids = {item.id for item in order.items}
        history = [
            entry for entry in history if entry["item_id"] is None or entry["item_id"] in item_ids
        ]
        return OrderView(order=order, history=history)

    async def list_orders(
        self,
        actor: Actor,
        page: int = 1,
        page_size: int = 20,
        scope: OrderScope | None = None,
    ) -> OrderPage:
        """List the actor's orders, newest first.

        ``purchases`` lists orders the actor placed. ``sales`` lists orders
        holding a seller's items, each narrowed to those items. Sellers
        default to sales, everyone else to purchases.

        Raises:
            PermissionDeniedError: If a non-seller asks for sales.
        """
        scope = scope or (OrderScope.SALES if actor.is_seller else OrderScope.PURCHASES)
        if scope == OrderScope.SALES and not actor.is_seller:
            raise PermissionDeniedError(actor.id, "list sales of", actor.id)

        offset = (page - 1) * page_size
        async with self.session_factory() as session:
            orders = OrderRepository(session)
            if scope == OrderScope.SALES:
                items, total = await orders.list_for_seller(actor.id, offset, page_size)
                items = [order.seller_view(actor.id) for order in items]
            else:
                items, total = await orders.list_for_user(actor.id, offset, page_size)
        return OrderPage(orders=items, total=total, page=page, page_size=page_size)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def _refund(self, payment: Payment, amount: Money, key: str, now: datetime) -> None:
        await self.gateway.refund(payment.gateway_payment_id, amount, idempotency_key=key)
        payment.refund(amount, now=now)

    async def cancel_order(self, order_id: str, actor: Actor, reason: str) -> Order:
        """Cancel an order whose items have not shipped.

        Reserved stock goes back to the offers. A captured payment is
        refunded for the cancelled items; an open intent is voided so it
        can no longer be paid.

        Raises:
            OrderNotFoundError: If the order does not exist.
            PermissionDeniedError: If the actor is not the owner or an admin.
            InvalidTransitionError: If any item has shipped.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            payments = PaymentRepository(session)
            order = await orders.get(order_id, for_update=True)
            if order is None or not self._can_view(order, actor):
                raise OrderNotFoundError(order_id)
            self._ensure_owner(order, actor, "cancel")

            cancelled = order.cancel(reason, actor.id, now=now)
            if order.stock_reserved:
                catalog = CatalogRepository(session)
                for item in cancelled:
                    await catalog.release_stock(item.offer_id, item.quantity)
                order.stock_reserved = False

            events: list[DomainEvent] = order.collect_events()
            payment = await payments.get_live_for_order(order_id)
            if payment is not None and payment.status == PaymentStatus.SUCCEEDED:
                amount = Money.zero(order.total.currency)
                for item in cancelled:
                    amount = amount + item.line_total
                await self._refund(payment, amount, f"refund-{payment.id}-cancel", now)
                await payments.save(payment)
                events.extend(payment.collect_events())
            elif payment is not None and payment.status == PaymentStatus.PENDING:
                await self.gateway.cancel_intent(payment.gateway_payment_id)
                payment.fail("cancelled", "Order cancelled before payment", {}, now=now)
                payment.collect_events()
                await payments.save(payment)

            await orders.save(order, events)

        logger.info(
            "Order cancelled",
            order_id=order_id,
            actor=actor.id,
            reason=reason,
            items=len(cancelled),
            refunded=payment is not None and payment.status == PaymentStatus.REFUNDED,
        )
        await self.notifier.publish(events, order.user_id)
        return order

    async def request_return(
        self,
        order_id: str,
        actor: Actor,
        reason: str,
        item_ids: list[str] | None = None,
    ) -> Order:
        """Request a return for delivered items inside the return window.

        Raises:
            OrderNotFoundError: If the order does not exist.
            PermissionDeniedError: If the actor is not the owner.
            InvalidTransitionError: If an item is not delivered.
            ReturnWindowExpiredError: If the return window has closed.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            order = await orders.get(order_id, for_update=True)
            if order is None or not self._can_view(order, actor):
                raise OrderNotFoundError(order_id)
            self._ensure_owner(order, actor, "return")
            returned = order.request_return(
                reason, self.return_window, item_ids=item_ids, actor=actor.id, now=now
            )
            events = order.collect_events()
            await orders.save(order, events)

        logger.info(
            "Return requested",
            order_id=order_id,
            item_ids=[item.id for item in returned],
            reason=reason,
        )
        await self.notifier.publish(events, order.user_id)
        return order

    async def approve_return(self, item_id: str, actor: Actor) -> Order:
        """Approve a return: refund the item's price times quantity.

        Returned units are not put back into stock.

        Raises:
            OrderItemNotFoundError: If the item does not exist.
            PermissionDeniedError: If the actor is not the item's seller or an admin.
            InvalidTransitionError: If no return was requested.
            PaymentNotFoundError: If the order has no captured payment.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            payments = PaymentRepository(session)
            order = await orders.get_by_item(item_id, for_update=True)
            if order is None:
                raise OrderItemNotFoundError(item_id)
            item = order.item(item_id)
            self._ensure_item_seller(item, actor, "approve return of")

            order.refund_item(item_id, actor.id, now=now)
            payment = await payments.get_live_for_order(order.id)
            if payment is None:
                raise PaymentNotFoundError(order.id)
            await self._refund(payment, item.line_total, f"refund-{payment.id}-item-{item.id}", now)
            await payments.save(payment)

            events: list[DomainEvent] = order.collect_events()
            await orders.save(order, events)
            events.extend(payment.collect_events())

        logger.info(
            "Return approved",
            order_id=order.id,
            item_id=item_id,
            refund_cents=item.line_total.amount_cents,
            actor=actor.id,
        )
        await self.notifier.publish(events, order.user_id)
        return order

    async def reject_return(self, item_id: str, actor: Actor, reason: str | None = None) -> Order:
        """Reject a return; the item goes back to delivered.

        Raises:
            OrderItemNotFoundError: If the item does not exist.
            PermissionDeniedError: If the actor is not the item's seller or an admin.
            InvalidTransitionError: If no return was requested.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            order = await orders.get_by_item(item_id, for_update=True)
            if order is None:
                raise OrderItemNotFoundError(item_id)
            self._ensure_item_seller(order.item(item_id), actor, "reject return of")
            order.reject_return(item_id, actor.id, reason=reason, now=now)
            events = order.collect_events()
            await orders.save(order, events)

        logger.info("Return rejected", order_id=order.id, item_id=item_id, actor=actor.id)
        await self.notifier.publish(events, order.user_id)
        return order

    async def update_order_item_status(
        self,
        item_id: str,
        status: OrderItemStatus,
        actor: Actor,
        tracking_number: str | None = None,
        carrier: str | None = None,
    ) -> Order:
        """Move a seller's item forward: processing to shipped, shipped to delivered.

        Raises:
            OrderItemNotFoundError: If the item does not exist.
            PermissionDeniedError: If the actor does not sell the item.
            InvalidTransitionError: If the move is not a forward seller move.
            ShipmentDetailsRequiredError: If shipping without tracking details.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            order = await orders.get_by_item(item_id, for_update=True)
            if order is None:
                raise OrderItemNotFoundError(item_id)
            item = order.item(item_id)
            self._ensure_item_seller(item, actor, "update")

            if not is_seller_transition(item.status, status):
                raise InvalidTransitionError(
                    entity_type="OrderItem",
                    entity_id=item.id,
                    current_state=item.status.value,
                    target_state=status.value,
                    allowed_transitions=[s.value for s in seller_transitions(item.status)],
                )
            if status == OrderItemStatus.SHIPPED:
                order.ship_item(item_id, tracking_number, carrier, actor.id, now=now)
            else:
                order.deliver_item(item_id, actor.id, now=now)

            events = order.collect_events()
            await orders.save(order, events)

        logger.info(
            "Order item status updated",
            order_id=order.id,
            item_id=item_id,
            status=status.value,
            order_status=order.status.value,
            actor=actor.id,
        )
        await self.notifier.publish(events, order.user_id)
        return order

    async def expire_pending_orders(self, older_than: timedelta | None = None) -> list[str]:
        """Cancel orders left pending too long and release their stock.

        Each order is cancelled in its own transaction and its open intent
        is voided. An order whose intent the gateway refuses to void is
        left pending for the next run.

        Args:
            older_than: Age after which a pending order expires; defaults
                to the configured pending-order TTL.

        Returns:
            IDs of the expired orders.
        """
        older_than = older_than or timedelta(minutes=settings.pending_order_ttl_minutes)
        cutoff = self.clock() - older_than
        async with self.session_factory() as session:
            candidates = await OrderRepository(session).list_stale_pending(cutoff)

        expired = []
        for order_id in candidates:
            try:
                await self.cancel_order(order_id, Actor.system(), "expired: payment not completed")
            except InvalidTransitionError as e:
                logger.info("Skipping order that changed state", order_id=order_id, error=e.message)
                continue
            except PaymentGatewayError as e:
                logger.warning("Could not void payment intent", order_id=order_id, error=e.message)
                continue
            expired.append(order_id)

        logger.info("Expired pending orders", count=len(expired), cutoff=cutoff.isoformat())
        return expired


def get_order_service() -> OrderService:
    """Get order service instance."""
    return OrderService()
