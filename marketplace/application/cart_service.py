"""Cart service.

Add, update, remove and view cart lines for guests and authenticated
shoppers. Prices snapshotted on add come from the offer resolver; they
are for display only and are re-resolved at checkout.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.domain.base import utcnow
from marketplace.domain.entities import Cart, CartItem, Offer
from marketplace.domain.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    OfferUnavailableError,
)
from marketplace.domain.pricing import resolve_best_offer
from marketplace.domain.value_objects import Money
from marketplace.infrastructure.cart_store import (
    CartRepository,
    GuestCartRepository,
    SqlCartRepository,
)
from marketplace.infrastructure.database import get_session_factory
from marketplace.infrastructure.repositories import CatalogRepository

logger = structlog.get_logger()


# ============================================================================
# DTOs
# ============================================================================


@dataclass(frozen=True)
class CartOwner:
    """Owner of a cart: a signed-in user or a guest device token."""

    id: str
    is_guest: bool = False

    @classmethod
    def user(cls, user_id: str) -> "CartOwner":
        return cls(id=user_id, is_guest=False)

    @classmethod
    def guest(cls, token: str) -> "CartOwner":
        return cls(id=token, is_guest=True)


@dataclass
class CartLineView:
    """A cart line with its snapshot and the live offer state."""

    offer_id: str
    quantity: int
    unit_price_at_add: Money
    product_id: str | None = None
    seller_id: str | None = None
    current_price: Money | None = None
    is_deal_active: bool = False
    available_stock: int = 0
    available: bool = False

    @property
    def line_total(self) -> Money:
        return (self.current_price or self.unit_price_at_add) * self.quantity


@dataclass
class CartView:
    """Cart contents for display."""

    owner_id: str
    is_guest: bool
    lines: list[CartLineView]

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def subtotal(self) -> Money | None:
        if not self.lines:
            return None
        total = Money.zero(self.lines[0].line_total.currency)
        for line in self.lines:
            total = total + line.line_total
        return total


# ============================================================================
# Guest Cart Store
# ============================================================================


_guest_carts: GuestCartRepository | None = None


def get_guest_cart_repository() -> GuestCartRepository:
    """Get the process-wide guest cart store."""
    global _guest_carts
    if _guest_carts is None:
        _guest_carts = GuestCartRepository()
    return _guest_carts


def reset_guest_cart_repository() -> None:
    """Reset the guest cart store (for testing)."""
    global _guest_carts
    _guest_carts = None


# ============================================================================
# Cart Service
# ============================================================================


class CartService:
    """Application service for shopper carts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        guest_carts: GuestCartRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize service.

        Args:
            session_factory: Factory for database sessions.
            guest_carts: Store for guest carts.
            clock: Source of the current time.
        """
        self.session_factory = session_factory or get_session_factory()
        self.guest_carts = guest_carts or get_guest_cart_repository()
        self.clock = clock or utcnow

    def _repository(self, owner: CartOwner, session: AsyncSession) -> CartRepository:
        if owner.is_guest:
            return self.guest_carts
        return SqlCartRepository(session)

    async def _purchasable_offer(self, catalog: CatalogRepository, offer_id: str) -> Offer:
        offer = await catalog.get_offer(offer_id)
        if offer is None:
            raise OfferUnavailableError(offer_id, None, "deleted")
        if not offer.is_active:
            raise OfferUnavailableError(offer_id, offer.product_id, "inactive")
        return offer

    async def add_to_cart(self, owner: CartOwner, offer_id: str, quantity: int = 1) -> CartItem:
        """Add an offer to a cart, incrementing an existing line.

        Authenticated carts require the offer to have stock.

        Args:
            owner: Cart owner.
            offer_id: Offer to add.
            quantity: Units to add.

        Returns:
            The created or updated line.

        Raises:
            InvalidQuantityError: If quantity is not positive.
            OfferUnavailableError: If the offer was deleted or deactivated.
            InsufficientStockError: If an authenticated add finds no stock.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        now = self.clock()

        async with self.session_factory() as session, session.begin():
            catalog = CatalogRepository(session)
            offer = await self._purchasable_offer(catalog, offer_id)
            price = resolve_best_offer(offer.product_id, [offer], now).effective_price
            if not owner.is_guest:
                if offer.stock_quantity <= 0:
                    raise InsufficientStockError(
                        offer_id, quantity, offer.stock_quantity, offer.product_id
                    )
                item = await SqlCartRepository(session).add(owner.id, offer_id, quantity, price)

        if owner.is_guest:
            item = await self.guest_carts.add(owner.id, offer_id, quantity, price)

        logger.info(
            "Cart item added",
            owner_id=owner.id,
            guest=owner.is_guest,
            offer_id=offer_id,
            quantity=quantity,
            line_quantity=item.quantity,
        )
        return item

    async def update_cart_item(
        self, owner: CartOwner, offer_id: str, quantity: int
    ) -> CartItem | None:
        """Set a line quantity; zero removes the line.

        Returns:
            The updated line, or None when it was removed.

        Raises:
            InvalidQuantityError: If quantity is negative.
            CartItemNotFoundError: If the offer is not in the cart.
        """
        async with self.session_factory() as session, session.begin():
            item = await self._repository(owner, session).set_quantity(owner.id, offer_id, quantity)
        logger.info("Cart item updated", owner_id=owner.id, offer_id=offer_id, quantity=quantity)
        return item

    async def remove_from_cart(self, owner: CartOwner, offer_id: str) -> None:
        """Remove a line.

        Raises:
            CartItemNotFoundError: If the offer is not in the cart.
        """
        async with self.session_factory() as session, session.begin():
            await self._repository(owner, session).remove(owner.id, offer_id)
        logger.info("Cart item removed", owner_id=owner.id, offer_id=offer_id)

    async def clear_cart(self, owner: CartOwner) -> int:
        async with self.session_factory() as session, session.begin():
            removed = await self._repository(owner, session).clear(owner.id)
        logger.info("Cart cleared", owner_id=owner.id, removed=removed)
        return removed

    async def load_cart(self, owner: CartOwner) -> Cart:
        async with self.session_factory() as session:
            return await self._repository(owner, session).load(owner.id)

    async def get_cart(self, owner: CartOwner) -> CartView:
        """Get the cart with current prices and stock for each line."""
        now = self.clock()
        async with self.session_factory() as session:
            cart = await self._repository(owner, session).load(owner.id)
            catalog = CatalogRepository(session)
            lines = []
            for item in cart.items:
                line = CartLineView(
                    offer_id=item.offer_id,
                    quantity=item.quantity,
                    unit_price_at_add=item.unit_price_at_add,
                )
                offer = await catalog.get_offer(item.offer_id)
                if offer is not None:
                    resolution = resolve_best_offer(offer.product_id, [offer], now)
                    line.product_id = offer.product_id
                    line.seller_id = offer.seller_id
                    line.current_price = resolution.effective_price
                    line.is_deal_active = resolution.is_deal_active
                    line.available_stock = offer.stock_quantity
                    line.available = offer.is_active and offer.stock_quantity >= item.quantity
                lines.append(line)
        return CartView(owner_id=owner.id, is_guest=owner.is_guest, lines=lines)


# ============================================================================
# Service Factory
# ============================================================================


def get_cart_service() -> CartService:
    """Get cart service instance."""
    return CartService()
