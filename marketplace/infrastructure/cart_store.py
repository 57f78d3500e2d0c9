"""Cart storage.

Two stores with the same shape: guest carts held per device token in
process memory, and authenticated carts persisted per user. Only the
cart merge touches both.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.base import utcnow
from marketplace.domain.entities import Cart, CartItem
from marketplace.domain.exceptions import CartItemNotFoundError, InvalidQuantityError
from marketplace.domain.value_objects import Money
from marketplace.infrastructure.config import settings
from marketplace.infrastructure.models import CartItemModel

logger = structlog.get_logger()


class CartRepository(ABC):
    """Cart lines keyed by owner and offer."""

    @abstractmethod
    async def load(self, owner_id: str) -> Cart:
        """Load the owner's cart, empty when nothing is stored."""

    @abstractmethod
    async def add(
        self, owner_id: str, offer_id: str, quantity: int, unit_price: Money
    ) -> CartItem:
        """Add quantity to a line, creating it when missing."""

    @abstractmethod
    async def set_quantity(self, owner_id: str, offer_id: str, quantity: int) -> CartItem | None:
        """Set a line quantity; zero removes the line."""

    @abstractmethod
    async def remove(self, owner_id: str, offer_id: str) -> None:
        """Remove a line."""

    @abstractmethod
    async def clear(self, owner_id: str) -> int:
        """Remove every line and return how many were removed."""


# ============================================================================
# Guest Carts
# ============================================================================


class GuestCartRepository(CartRepository):
    """Device-local guest carts keyed by guest token.

    Carts untouched for longer than ``ttl`` are dropped, and the least
    recently touched carts are evicted once ``max_entries`` is reached.
    Updates and removals never create a cart.
    """

    def __init__(
        self,
        ttl: timedelta | None = None,
        max_entries: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl = ttl if ttl is not None else timedelta(minutes=settings.guest_cart_ttl_minutes)
        self.max_entries = max_entries if max_entries is not None else settings.guest_cart_max_entries
        self.clock = clock
        self._carts: OrderedDict[str, Cart] = OrderedDict()
        self._touched: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._carts)

    def _evict(self, now: datetime) -> None:
        cutoff = now - self.ttl
        while self._carts:
            owner_id = next(iter(self._carts))
            if self._touched[owner_id] >= cutoff and len(self._carts) < self.max_entries:
                break
            self._drop(owner_id)
            logger.info("Guest cart evicted", owner_id=owner_id)

    def _drop(self, owner_id: str) -> None:
        self._carts.pop(owner_id, None)
        self._touched.pop(owner_id, None)

    def _live(self, owner_id: str) -> Cart | None:
        cart = self._carts.get(owner_id)
        if cart is not None and self._touched[owner_id] < self.clock() - self.ttl:
            self._drop(owner_id)
            return None
        return cart

    def _touch(self, owner_id: str, cart: Cart) -> None:
        if cart.is_empty:
            self._drop(owner_id)
            return
        self._touched[owner_id] = self.clock()
        self._carts.move_to_end(owner_id)

    def _existing(self, owner_id: str, offer_id: str) -> Cart:
        cart = self._live(owner_id)
        if cart is None:
            raise CartItemNotFoundError(owner_id, offer_id)
        return cart

    async def load(self, owner_id: str) -> Cart:
        cart = self._live(owner_id)
        if cart is None:
            return Cart(owner_id=owner_id)
        return Cart(owner_id=owner_id, lines=dict(cart.lines))

    async def add(
        self, owner_id: str, offer_id: str, quantity: int, unit_price: Money
    ) -> CartItem:
        cart = self._live(owner_id)
        if cart is None:
            cart = Cart(owner_id=owner_id)
            item = cart.add_item(offer_id, quantity, unit_price)
            self._evict(self.clock())
            self._carts[owner_id] = cart
        else:
            item = cart.add_item(offer_id, quantity, unit_price)
        self._touch(owner_id, cart)
        return item

    async def set_quantity(self, owner_id: str, offer_id: str, quantity: int) -> CartItem | None:
        cart = self._existing(owner_id, offer_id)
        item = cart.update_quantity(offer_id, quantity)
        self._touch(owner_id, cart)
        return item

    async def remove(self, owner_id: str, offer_id: str) -> None:
        cart = self._existing(owner_id, offer_id)
        cart.remove_item(offer_id)
        self._touch(owner_id, cart)

    async def clear(self, owner_id: str) -> int:
        cart = self._live(owner_id)
        self._drop(owner_id)
        return cart.clear() if cart else 0


# ============================================================================
# Authenticated Carts
# ============================================================================


def _to_item(row: CartItemModel) -> CartItem:
    return CartItem(
        offer_id=row.offer_id,
        quantity=row.quantity,
        unit_price_at_add=Money(row.unit_price_cents, row.currency),
        added_at=row.added_at,
    )


class SqlCartRepository(CartRepository):
    """Persisted carts of authenticated shoppers.

    Works inside the caller's transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load(self, owner_id: str) -> Cart:
        result = await self.session.execute(
            select(CartItemModel)
            .where(CartItemModel.owner_id == owner_id)
            .order_by(CartItemModel.added_at, CartItemModel.offer_id)
        )
        cart = Cart(owner_id=owner_id)
        for row in result.scalars():
            cart.lines[row.offer_id] = _to_item(row)
        return cart

    async def _get(self, owner_id: str, offer_id: str) -> CartItemModel | None:
        result = await self.session.execute(
            select(CartItemModel).where(
                CartItemModel.owner_id == owner_id,
                CartItemModel.offer_id == offer_id,
            )
        )
        return result.scalar_one_or_none()

    async def _increment(
        self, owner_id: str, offer_id: str, quantity: int, unit_price: Money, now: datetime
    ) -> bool:
        result = await self.session.execute(
            update(CartItemModel)
            .where(
                CartItemModel.owner_id == owner_id,
                CartItemModel.offer_id == offer_id,
            )
            .values(
                quantity=CartItemModel.quantity + quantity,
                unit_price_cents=unit_price.amount_cents,
                currency=unit_price.currency,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def add(
        self, owner_id: str, offer_id: str, quantity: int, unit_price: Money
    ) -> CartItem:
        """Upsert a line keyed by (owner, offer).

        A concurrent insert of the same line turns into an increment, so
        duplicate adds never create a second row.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        now = utcnow()
        if not await self._increment(owner_id, offer_id, quantity, unit_price, now):
            try:
                async with self.session.begin_nested():
                    self.session.add(
                        CartItemModel(
                            owner_id=owner_id,
                            offer_id=offer_id,
                            quantity=quantity,
                            unit_price_cents=unit_price.amount_cents,
                            currency=unit_price.currency,
                            added_at=now,
                            updated_at=now,
                        )
                    )
            except IntegrityError:
                logger.info("Concurrent cart insert, incrementing", owner_id=owner_id, offer_id=offer_id)
                await self._increment(owner_id, offer_id, quantity, unit_price, now)

        row = await self._get(owner_id, offer_id)
        await self.session.refresh(row)
        return _to_item(row)

    async def set_quantity(self, owner_id: str, offer_id: str, quantity: int) -> CartItem | None:
        if quantity < 0:
            raise InvalidQuantityError(quantity, "Quantity cannot be negative")
        row = await self._get(owner_id, offer_id)
        if row is None:
            raise CartItemNotFoundError(owner_id, offer_id)
        if quantity == 0:
            await self.session.delete(row)
            await self.session.flush()
            return None
        row.quantity = quantity
        await self.session.flush()
        return _to_item(row)

    async def remove(self, owner_id: str, offer_id: str) -> None:
        result = await self.session.execute(
            delete(CartItemModel)
            .where(
                CartItemModel.owner_id == owner_id,
                CartItemModel.offer_id == offer_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise CartItemNotFoundError(owner_id, offer_id)

    async def clear(self, owner_id: str) -> int:
        result = await self.session.execute(
            delete(CartItemModel)
            .where(CartItemModel.owner_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
