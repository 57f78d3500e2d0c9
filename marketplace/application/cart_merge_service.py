"""Guest cart merge.

Folds a guest cart into the signed-in shopper's cart once per login.
Each guest line is replayed as an authenticated add; a line that fails
is dropped and logged without stopping the others. Guest storage is
cleared afterwards, even when lines were dropped.
"""

from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.application.cart_service import CartOwner, CartService
from marketplace.domain.entities import CartItem
from marketplace.domain.exceptions import DomainError
from marketplace.infrastructure.cart_store import GuestCartRepository
from marketplace.infrastructure.repositories import CartMergeLog

logger = structlog.get_logger()


@dataclass(frozen=True)
class GuestLine:
    """A guest cart line to replay into the user's cart."""

    offer_id: str
    quantity: int


@dataclass
class DroppedLine:
    """A guest line that could not be merged."""

    offer_id: str
    quantity: int
    error_code: str
    message: str


@dataclass
class MergeReport:
    """Outcome of a guest cart merge.

    Attributes:
        user_id: Shopper whose cart received the lines.
        merged: Guest lines added to the shopper's cart.
        dropped: Guest lines that were skipped.
        already_merged: True when the merge key was seen before and
            nothing was replayed.
    """

    user_id: str
    merged: list[CartItem] = field(default_factory=list)
    dropped: list[DroppedLine] = field(default_factory=list)
    already_merged: bool = False


class CartMergeService:
    """Application service for the guest-to-user cart merge."""

    def __init__(
        self,
        cart_service: CartService | None = None,
        guest_carts: GuestCartRepository | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.cart_service = cart_service or CartService()
        self.guest_carts = guest_carts or self.cart_service.guest_carts
        self.session_factory = session_factory or self.cart_service.session_factory

    async def _claim(self, merge_key: str, user_id: str) -> bool:
        async with self.session_factory() as session, session.begin():
            return await CartMergeLog(session).claim(merge_key, user_id)

    async def merge_guest_cart(
        self,
        user_id: str,
        guest_items: list[GuestLine] | None = None,
        guest_token: str | None = None,
        merge_key: str | None = None,
    ) -> MergeReport:
        """Merge guest lines into the user's cart by adding guest quantities.

        Args:
            user_id: Signed-in shopper.
            guest_items: Guest lines held by the client; read from the
                guest store for ``guest_token`` when omitted.
            guest_token: Guest cart to clear once the merge completes.
            merge_key: Identifies the login transition; a repeated key
                replays nothing.

        Returns:
            MergeReport describing merged and dropped lines.
        """
        report = MergeReport(user_id=user_id)
        if guest_items is None and guest_token:
            guest_cart = await self.guest_carts.load(guest_token)
            guest_items = [GuestLine(item.offer_id, item.quantity) for item in guest_cart.items]

        try:
            if merge_key is not None and not await self._claim(merge_key, user_id):
                logger.info("Cart merge already applied", user_id=user_id, merge_key=merge_key)
                report.already_merged = True
                return report

            owner = CartOwner.user(user_id)
            for guest_item in guest_items or []:
                try:
                    merged = await self.cart_service.add_to_cart(
                        owner, guest_item.offer_id, guest_item.quantity
                    )
                except DomainError as e:
                    logger.warning(
                        "Dropped guest cart line during merge",
                        user_id=user_id,
                        offer_id=guest_item.offer_id,
                        quantity=guest_item.quantity,
                        error_code=e.error_code,
                        error=e.message,
                    )
                    report.dropped.append(
                        DroppedLine(
                            offer_id=guest_item.offer_id,
                            quantity=guest_item.quantity,
                            error_code=e.error_code,
                            message=e.message,
                        )
                    )
                    continue
                report.merged.append(merged)
        finally:
            if guest_token:
                await self.guest_carts.clear(guest_token)

        logger.info(
            "Guest cart merged",
            user_id=user_id,
            merged=len(report.merged),
            dropped=len(report.dropped),
        )
        return report


def get_cart_merge_service() -> CartMergeService:
    """Get cart merge service instance."""
    return CartMergeService()
