"""Repositories over the relational store.

Each repository works inside the caller's session and transaction and
maps rows to domain entities. Offer stock is only ever changed through
conditional UPDATE statements whose affected row count is checked.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.domain.base import DomainEvent, utcnow
from marketplace.domain.entities import Offer, Order, OrderItem, Payment
from marketplace.domain.events import OrderItemStatusChanged, OrderStatusChanged
from marketplace.domain.exceptions import ConcurrentUpdateError
from marketplace.domain.state_machines import (
    OfferStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
)
from marketplace.domain.value_objects import (
    Address,
    Deal,
    Money,
    OfferCondition,
    ProductRef,
)
from marketplace.infrastructure.models import (
    CartMergeModel,
    OfferModel,
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
    PaymentEventModel,
    PaymentModel,
    ProductModel,
)

logger = structlog.get_logger()


# ============================================================================
# Catalog
# ============================================================================


def _offer_from_row(row: OfferModel) -> Offer:
    deal_price = (
        Money(row.deal_price_cents, row.currency) if row.deal_price_cents is not None else None
    )
    return Offer(
        id=row.id,
        product_id=row.product_id,
        seller_id=row.seller_id,
        price=Money(row.price_cents, row.currency),
        stock_quantity=row.stock_quantity,
        condition=OfferCondition(row.condition),
        status=OfferStatus(row.status),
        deal=Deal.from_fields(deal_price, row.deal_starts_at, row.deal_ends_at),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_offer(row: OfferModel, offer: Offer) -> None:
    """Copy writable offer fields onto a row; stock is never copied."""
    row.product_id = offer.product_id
    row.seller_id = offer.seller_id
    row.price_cents = offer.price.amount_cents
    row.currency = offer.price.currency
    row.condition = offer.condition.value
    row.status = offer.status.value
    row.deal_price_cents = offer.deal.price.amount_cents if offer.deal else None
    row.deal_starts_at = offer.deal.starts_at if offer.deal else None
    row.deal_ends_at = offer.deal.ends_at if offer.deal else None
    row.version = offer.version
    row.updated_at = offer.updated_at


class CatalogRepository:
    """Catalog lookups, offer writes and conditional stock mutations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_product(self, product_id: str) -> ProductRef | None:
        row = await self.session.get(ProductModel, product_id)
        if row is None:
            return None
        return ProductRef(
            id=row.id,
            title=row.title,
            base_price=Money(row.base_price_cents, row.currency),
            category=row.category,
            brand=row.brand,
        )

    async def add_product(self, product: ProductRef) -> None:
        self.session.add(
            ProductModel(
                id=product.id,
                title=product.title,
                base_price_cents=product.base_price.amount_cents,
                currency=product.base_price.currency,
                category=product.category,
                brand=product.brand,
            )
        )
        await self.session.flush()

    async def get_offers_for_product(self, product_id: str) -> list[Offer]:
        """Get the active offers of a product, in insertion order."""
        result = await self.session.execute(
            select(OfferModel)
            .where(
                OfferModel.product_id == product_id,
                OfferModel.status == OfferStatus.ACTIVE.value,
            )
            .order_by(OfferModel.created_at, OfferModel.id)
        )
        return [_offer_from_row(row) for row in result.scalars()]

    async def get_offer(self, offer_id: str) -> Offer | None:
        """Get an offer in any status, or None if it was deleted."""
        result = await self.session.execute(
            select(OfferModel)
            .where(OfferModel.id == offer_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _offer_from_row(row) if row else None

    async def add_offer(self, offer: Offer) -> None:
        row = OfferModel(
            id=offer.id,
            stock_quantity=offer.stock_quantity,
            created_at=offer.created_at,
        )
        _apply_offer(row, offer)
        self.session.add(row)
        await self.session.flush()

    async def save_offer(self, offer: Offer) -> None:
        row = await self.session.get(OfferModel, offer.id)
        _apply_offer(row, offer)
        await self.session.flush()

    async def get_stock(self, offer_id: str) -> int:
        result = await self.session.execute(
            select(OfferModel.stock_quantity).where(OfferModel.id == offer_id)
        )
        return result.scalar_one_or_none() or 0

    async def reserve_stock(self, offer_id: str, quantity: int) -> bool:
        """Decrement stock only if enough units remain on an active offer.

        Returns:
            True if the units were reserved.
        """
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.stock_quantity >= quantity,
                OfferModel.status == OfferStatus.ACTIVE.value,
            )
            .values(stock_quantity=OfferModel.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        reserved = result.rowcount == 1
        logger.debug("Stock reservation", offer_id=offer_id, quantity=quantity, reserved=reserved)
        return reserved

    async def release_stock(self, offer_id: str, quantity: int) -> bool:
        """Return units to an offer. A deleted offer has nothing to restock.

        Returns:
            True if the offer still exists and was incremented.
        """
        result = await self.session.execute(
            update(OfferModel)
            .where(OfferModel.id == offer_id)
            .values(stock_quantity=OfferModel.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        if not released:
            logger.warning("Stock release skipped for missing offer", offer_id=offer_id)
        return released

    async def adjust_stock(self, offer_id: str, delta: int) -> bool:
        """Apply a seller stock correction without going below zero.

        Returns:
            True if the adjustment was applied.
        """
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.stock_quantity + delta >= 0,
            )
            .values(stock_quantity=OfferModel.stock_quantity + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# ============================================================================
# Orders
# ============================================================================


def _item_from_row(row: OrderItemModel) -> OrderItem:
    return OrderItem(
        id=row.id,
        order_id=row.order_id,
        offer_id=row.offer_id,
        product_id=row.product_id,
        seller_id=row.seller_id,
        quantity=row.quantity,
        price_at_purchase=Money(row.price_at_purchase_cents, row.currency),
        status=OrderItemStatus(row.status),
        tracking_number=row.tracking_number,
        shipping_carrier=row.shipping_carrier,
        shipped_at=row.shipped_at,
        delivered_at=row.delivered_at,
        return_reason=row.return_reason,
        refunded_at=row.refunded_at,
    )


def _order_from_row(row: OrderModel) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        shipping_address=Address.from_dict(row.shipping_address),
        total=Money(row.total_cents, row.currency),
        items=[_item_from_row(item) for item in row.items],
        status=OrderStatus(row.status),
        stock_reserved=row.stock_reserved,
        cancel_reason=row.cancel_reason,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_item(row: OrderItemModel, item: OrderItem) -> None:
    row.status = item.status.value
    row.tracking_number = item.tracking_number
    row.shipping_carrier = item.shipping_carrier
    row.return_reason = item.return_reason
    row.shipped_at = item.shipped_at
    row.delivered_at = item.delivered_at
    row.refunded_at = item.refunded_at


class OrderRepository:
    """Orders with their items and status history.

    Saves are checked against the version each order had when this
    repository loaded it; a mismatch raises ConcurrentUpdateError.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._loaded_versions: dict[str, int] = {}

    def _select(self, for_update: bool):
        stmt = select(OrderModel).options(selectinload(OrderModel.items))
        if for_update:
            stmt = stmt.with_for_update()
        return stmt.execution_options(populate_existing=True)

    async def get(self, order_id: str, for_update: bool = False) -> Order | None:
        """Get an order, optionally locking its row for the transaction."""
        result = await self.session.execute(
            self._select(for_update).where(OrderModel.id == order_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        self._loaded_versions[row.id] = row.version
        return _order_from_row(row)

    async def get_by_item(self, item_id: str, for_update: bool = False) -> Order | None:
        order_id = await self.session.scalar(
            select(OrderItemModel.order_id).where(OrderItemModel.id == item_id)
        )
        if order_id is None:
            return None
        return await self.get(order_id, for_update=for_update)

    async def list_for_user(
        self, user_id: str, offset: int = 0, limit: int = 20
    ) -> tuple[list[Order], int]:
        """List a shopper's orders, newest first.

        Returns:
            The page of orders and the total count.
        """
        total = await self.session.scalar(
            select(func.count()).select_from(OrderModel).where(OrderModel.user_id == user_id)
        )
        result = await self.session.execute(
            self._select(False)
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id)
            .offset(offset)
            .limit(limit)
        )
        return [_order_from_row(row) for row in result.scalars()], total or 0

    async def list_for_seller(
        self, seller_id: str, offset: int = 0, limit: int = 20
    ) -> tuple[list[Order], int]:
        """List orders containing at least one item of a seller, newest first."""
        seller_orders = select(OrderItemModel.order_id).where(
            OrderItemModel.seller_id == seller_id
        )
        total = await self.session.scalar(
            select(func.count())
            .select_from(OrderModel)
            .where(OrderModel.id.in_(seller_orders))
        )
        result = await self.session.execute(
            self._select(False)
            .where(OrderModel.id.in_(seller_orders))
            .order_by(OrderModel.created_at.desc(), OrderModel.id)
            .offset(offset)
            .limit(limit)
        )
        return [_order_from_row(row) for row in result.scalars()], total or 0

    async def list_stale_pending(self, placed_before: datetime, limit: int = 100) -> list[str]:
        result = await self.session.execute(
            select(OrderModel.id)
            .where(
                OrderModel.status == OrderStatus.PENDING.value,
                OrderModel.created_at < placed_before,
            )
            .order_by(OrderModel.created_at)
            .limit(limit)
        )
        return list(result.scalars())

    async def add(self, order: Order, events: list[DomainEvent]) -> None:
        """Persist a newly placed order, its items and history."""
        row = OrderModel(
            id=order.id,
            user_id=order.user_id,
            status=order.status.value,
            total_cents=order.total.amount_cents,
            currency=order.total.currency,
            shipping_address=order.shipping_address.to_dict(),
            stock_reserved=order.stock_reserved,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
        for position, item in enumerate(order.items):
            item_row = OrderItemModel(
                id=item.id,
                order_id=order.id,
                position=position,
                offer_id=item.offer_id,
                product_id=item.product_id,
                seller_id=item.seller_id,
                quantity=item.quantity,
                price_at_purchase_cents=item.price_at_purchase.amount_cents,
                currency=item.price_at_purchase.currency,
            )
            _apply_item(item_row, item)
            row.items.append(item_row)
        self.session.add(row)
        self.session.add(
            OrderStatusHistoryModel(
                order_id=order.id,
                sequence=0,
                from_status=None,
                to_status=order.status.value,
                reason="order placed",
                actor=order.user_id,
                created_at=order.created_at,
            )
        )
        await self._append_history(order.id, events)
        await self.session.flush()
        self._loaded_versions[order.id] = order.version

    async def save(self, order: Order, events: list[DomainEvent]) -> None:
        """Write back mutable order and item state plus new history rows."""
        row = await self.session.get(
            OrderModel,
            order.id,
            options=[selectinload(OrderModel.items)],
            populate_existing=True,
            with_for_update=True,
        )
        expected = self._loaded_versions[order.id]
        if row.version != expected:
            raise ConcurrentUpdateError("Order", order.id, expected, row.version)
        row.status = order.status.value
        row.stock_reserved = order.stock_reserved
        row.cancel_reason = order.cancel_reason
        row.version = order.version
        row.updated_at = order.updated_at
        items = {item.id: item for item in order.items}
        for item_row in row.items:
            _apply_item(item_row, items[item_row.id])
        await self._append_history(order.id, events)
        await self.session.flush()
        self._loaded_versions[order.id] = order.version

    async def _append_history(self, order_id: str, events: list[DomainEvent]) -> None:
        sequence = await self.session.scalar(
            select(func.coalesce(func.max(OrderStatusHistoryModel.sequence), 0)).where(
                OrderStatusHistoryModel.order_id == order_id
            )
        )
        for event in events:
            if not isinstance(event, (OrderStatusChanged, OrderItemStatusChanged)):
                continue
            sequence += 1
            self.session.add(
                OrderStatusHistoryModel(
                    order_id=order_id,
                    sequence=sequence,
                    item_id=getattr(event, "item_id", None),
                    from_status=event.from_status,
                    to_status=event.to_status,
                    reason=event.reason,
                    actor=event.actor,
                    created_at=event.occurred_at,
                )
            )

    async def get_history(self, order_id: str) -> list[dict[str, Any]]:
        result = await self.session.execute(
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == order_id)
            .order_by(OrderStatusHistoryModel.sequence)
        )
        return [entry.to_dict() for entry in result.scalars()]


# ============================================================================
# Payments
# ============================================================================


def _payment_from_row(row: PaymentModel) -> Payment:
    return Payment(
        id=row.id,
        order_id=row.order_id,
        amount=Money(row.amount_cents, row.currency),
        gateway_payment_id=row.gateway_payment_id,
        client_secret=row.client_secret,
        status=PaymentStatus(row.status),
        gateway_transaction_id=row.gateway_transaction_id,
        gateway_response=row.gateway_response,
        failure_code=row.failure_code,
        failure_message=row.failure_message,
        refunded_amount=Money(row.refunded_amount_cents, row.currency),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_payment(row: PaymentModel, payment: Payment) -> None:
    row.status = payment.status.value
    row.live_order_id = payment.order_id if payment.status.is_live() else None
    row.gateway_transaction_id = payment.gateway_transaction_id
    row.gateway_response = payment.gateway_response
    row.failure_code = payment.failure_code
    row.failure_message = payment.failure_message
    row.refunded_amount_cents = (
        payment.refunded_amount.amount_cents if payment.refunded_amount else 0
    )
    row.version = payment.version
    row.updated_at = payment.updated_at


class PaymentRepository:
    """Payment attempts, at most one live attempt per order.

    Saves are version-checked like orders.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._loaded_versions: dict[str, int] = {}

    def _loaded(self, row: PaymentModel | None) -> Payment | None:
        if row is None:
            return None
        self._loaded_versions[row.id] = row.version
        return _payment_from_row(row)

    async def get_live_for_order(self, order_id: str) -> Payment | None:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.live_order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return self._loaded(result.scalar_one_or_none())

    async def get_by_gateway_id(self, gateway_payment_id: str) -> Payment | None:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.gateway_payment_id == gateway_payment_id)
            .execution_options(populate_existing=True)
        )
        return self._loaded(result.scalar_one_or_none())

    async def count_for_order(self, order_id: str) -> int:
        count = await self.session.scalar(
            select(func.count()).select_from(PaymentModel).where(PaymentModel.order_id == order_id)
        )
        return count or 0

    async def add(self, payment: Payment) -> None:
        row = PaymentModel(
            id=payment.id,
            order_id=payment.order_id,
            amount_cents=payment.amount.amount_cents,
            currency=payment.amount.currency,
            gateway_payment_id=payment.gateway_payment_id,
            client_secret=payment.client_secret,
            created_at=payment.created_at,
        )
        _apply_payment(row, payment)
        self.session.add(row)
        await self.session.flush()
        self._loaded_versions[payment.id] = payment.version

    async def save(self, payment: Payment) -> None:
        row = await self.session.get(
            PaymentModel, payment.id, populate_existing=True, with_for_update=True
        )
        expected = self._loaded_versions[payment.id]
        if row.version != expected:
            raise ConcurrentUpdateError("Payment", payment.id, expected, row.version)
        _apply_payment(row, payment)
        await self.session.flush()
        self._loaded_versions[payment.id] = payment.version


class PaymentEventLog:
    """Log of applied payment webhook events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, event_id: str) -> bool:
        return await self.session.get(PaymentEventModel, event_id) is not None

    async def record(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        order_id: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> None:
        self.session.add(
            PaymentEventModel(
                event_id=event_id,
                event_type=event_type,
                outcome=outcome,
                order_id=order_id,
                gateway_payment_id=gateway_payment_id,
                received_at=utcnow(),
            )
        )
        await self.session.flush()


# ============================================================================
# Cart Merges
# ============================================================================


class CartMergeLog:
    """Merge keys already applied."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def claim(self, merge_key: str, user_id: str) -> bool:
        """Record a merge key.

        Returns:
            False if the key was already recorded.
        """
        try:
            async with self.session.begin_nested():
                self.session.add(CartMergeModel(merge_key=merge_key, user_id=user_id))
        except IntegrityError:
            return False
        return True
