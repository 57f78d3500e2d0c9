"""Checkout orchestration.

Turns a shopper's server cart and a chosen address into a pending order
in a single transaction: prices are re-resolved, stock is reserved with
conditional decrements, the order is written and the cart is cleared.
Any failure rolls everything back, so no partial order is ever stored.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.application.notifier import OrderNotifier
from marketplace.domain.base import utcnow
from marketplace.domain.entities import Order, OrderLine
from marketplace.domain.exceptions import (
    AddressNotFoundError,
    EmptyCartError,
    InsufficientStockError,
    OfferUnavailableError,
)
from marketplace.domain.pricing import resolve_best_offer
from marketplace.infrastructure.address_book import AddressBook, get_address_book
from marketplace.infrastructure.cart_store import SqlCartRepository
from marketplace.infrastructure.database import get_session_factory
from marketplace.infrastructure.notifications import get_notification_dispatcher
from marketplace.infrastructure.repositories import CatalogRepository, OrderRepository

logger = structlog.get_logger()


async def reserve_lines(
    catalog: CatalogRepository,
    quantities: list[tuple[str, int]],
    product_ids: dict[str, str] | None = None,
) -> None:
    """Reserve stock for every line or raise on the first shortfall.

    Offers are locked in id order so concurrent checkouts cannot deadlock.
    The caller's transaction rolls back reservations already made.

    Raises:
        InsufficientStockError: Naming the first offer that is short.
    """
    for offer_id, quantity in sorted(quantities):
        if not await catalog.reserve_stock(offer_id, quantity):
            available = await catalog.get_stock(offer_id)
            raise InsufficientStockError(
                offer_id,
                quantity,
                available,
                (product_ids or {}).get(offer_id),
            )


class CheckoutService:
    """Application service that places orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        address_book: AddressBook | None = None,
        notifier: OrderNotifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize service.

        Args:
            session_factory: Factory for database sessions.
            address_book: Address collaborator.
            notifier: Notification publisher.
            clock: Source of the current time.
        """
        self.session_factory = session_factory or get_session_factory()
        self.address_book = address_book or get_address_book()
        self.notifier = notifier or OrderNotifier(get_notification_dispatcher())
        self.clock = clock or utcnow

    async def place_order(self, user_id: str, address_id: str) -> Order:
        """Place an order for the shopper's whole cart.

        Args:
            user_id: Signed-in shopper.
            address_id: Saved address to ship to.

        Returns:
            The pending order. Payment is a separate step.

        Raises:
            AddressNotFoundError: If the address is missing or not the shopper's.
            EmptyCartError: If the cart has no lines.
            OfferUnavailableError: If a line's offer was deleted or deactivated.
            InsufficientStockError: If a line's offer cannot cover its quantity.
        """
        address = await self.address_book.get_address(address_id, user_id)
        if address is None:
            raise AddressNotFoundError(address_id, user_id)

        now = self.clock()
        async with self.session_factory() as session, session.begin():
            carts = SqlCartRepository(session)
            catalog = CatalogRepository(session)

            cart = await carts.load(user_id)
            if cart.is_empty:
                raise EmptyCartError(user_id)

            lines: list[OrderLine] = []
            for item in cart.items:
                offer = await catalog.get_offer(item.offer_id)
                if offer is None:
                    raise OfferUnavailableError(item.offer_id, None, "deleted")
                if not offer.is_active:
                    raise OfferUnavailableError(item.offer_id, offer.product_id, "inactive")
                resolution = resolve_best_offer(offer.product_id, [offer], now)
                lines.append(
                    OrderLine(
                        offer=offer,
                        quantity=item.quantity,
                        unit_price=resolution.effective_price,
                    )
                )

            await reserve_lines(
                catalog,
                [(line.offer.id, line.quantity) for line in lines],
                {line.offer.id: line.offer.product_id for line in lines},
            )

            order = Order.place(user_id, address, lines, now=now)
            events = order.collect_events()
            await OrderRepository(session).add(order, events)
            await carts.clear(user_id)

        logger.info(
            "Order placed",
            order_id=order.id,
            user_id=user_id,
            total_cents=order.total.amount_cents,
            currency=order.total.currency,
            item_count=len(order.items),
        )
        await self.notifier.publish(events, user_id)
        return order


def get_checkout_service() -> CheckoutService:
    """Get checkout service instance."""
    return CheckoutService()
