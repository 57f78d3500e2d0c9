"""Offer service.

Seller write path for offers (create, reprice, activate, stock
corrections) and the best-offer lookup used for product display.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.domain.base import new_id, utcnow
from marketplace.domain.entities import Offer
from marketplace.domain.exceptions import (
    InvalidOfferError,
    OfferNotFoundError,
    PermissionDeniedError,
    ProductNotFoundError,
)
from marketplace.domain.pricing import OfferResolution, resolve_best_offer
from marketplace.domain.state_machines import OfferStatus
from marketplace.domain.value_objects import Actor, Deal, Money, OfferCondition
from marketplace.infrastructure.database import get_session_factory
from marketplace.infrastructure.repositories import CatalogRepository

logger = structlog.get_logger()

# Marks an update field that was not supplied, as opposed to an explicit None.
UNSET: Any = object()


class OfferService:
    """Application service for seller offers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory or get_session_factory()
        self.clock = clock or utcnow

    @staticmethod
    def _ensure_seller(actor: Actor, action: str, resource_id: str) -> None:
        if not (actor.is_seller or actor.is_admin):
            raise PermissionDeniedError(actor.id, action, resource_id)

    async def _owned_offer(self, catalog: CatalogRepository, offer_id: str, actor: Actor) -> Offer:
        offer = await catalog.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        if not actor.is_admin and offer.seller_id != actor.id:
            raise PermissionDeniedError(actor.id, "update", offer_id)
        return offer

    async def create_offer(
        self,
        actor: Actor,
        product_id: str,
        price: Money,
        stock_quantity: int = 0,
        condition: OfferCondition = OfferCondition.NEW,
        deal: Deal | None = None,
        status: OfferStatus = OfferStatus.ACTIVE,
    ) -> Offer:
        """Create an offer for a catalog product.

        Args:
            actor: Seller creating the offer.
            product_id: Catalog product.
            price: Regular price.
            stock_quantity: Initial stock.
            condition: Item condition.
            deal: Optional deal; must be cheaper than ``price``.
            status: Initial listing status.

        Returns:
            The created offer.

        Raises:
            PermissionDeniedError: If the actor is not a seller.
            ProductNotFoundError: If the product is not in the catalog.
            InvalidOfferError: If price, stock or deal are invalid.
        """
        self._ensure_seller(actor, "create offer for", product_id)
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            catalog = CatalogRepository(session)
            if await catalog.get_product(product_id) is None:
                raise ProductNotFoundError(product_id)
            offer = Offer(
                id=new_id(),
                product_id=product_id,
                seller_id=actor.id,
                price=price,
                stock_quantity=stock_quantity,
                condition=condition,
                status=status,
                deal=deal,
                created_at=now,
                updated_at=now,
            )
            await catalog.add_offer(offer)

        logger.info(
            "Offer created",
            offer_id=offer.id,
            product_id=product_id,
            seller_id=actor.id,
            price_cents=price.amount_cents,
            stock=stock_quantity,
            has_deal=deal is not None,
        )
        return offer

    async def update_offer(
        self,
        offer_id: str,
        actor: Actor,
        price: Money | None = None,
        deal: Deal | None = UNSET,
        condition: OfferCondition | None = None,
        status: OfferStatus | None = None,
    ) -> Offer:
        """Update an offer's price, deal, condition or status.

        Price and deal are validated together, so lowering the price
        below a standing deal is rejected.

        Args:
            offer_id: Offer to update.
            actor: Owning seller or admin.
            price: New regular price.
            deal: New deal; None removes the deal, UNSET keeps it.
            condition: New condition.
            status: New listing status.

        Raises:
            OfferNotFoundError: If the offer does not exist.
            PermissionDeniedError: If the actor does not own the offer.
            InvalidOfferError: If the resulting price and deal are invalid.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            catalog = CatalogRepository(session)
            offer = await self._owned_offer(catalog, offer_id, actor)
            if price is not None or deal is not UNSET:
                offer.reprice(
                    price if price is not None else offer.price,
                    offer.deal if deal is UNSET else deal,
                    now=now,
                )
            if condition is not None and condition != offer.condition:
                offer.set_condition(condition, now=now)
            if status is not None and status != offer.status:
                offer.set_status(status, now=now)
            await catalog.save_offer(offer)

        logger.info(
            "Offer updated",
            offer_id=offer_id,
            seller_id=offer.seller_id,
            price_cents=offer.price.amount_cents,
            deal_price_cents=offer.deal.price.amount_cents if offer.deal else None,
            status=offer.status.value,
        )
        return offer

    async def adjust_stock(self, offer_id: str, actor: Actor, delta: int) -> int:
        """Apply a stock correction.

        Returns:
            Stock after the adjustment.

        Raises:
            OfferNotFoundError: If the offer does not exist.
            PermissionDeniedError: If the actor does not own the offer.
            InvalidOfferError: If the correction would make stock negative.
        """
        async with self.session_factory() as session, session.begin():
            catalog = CatalogRepository(session)
            await self._owned_offer(catalog, offer_id, actor)
            if not await catalog.adjust_stock(offer_id, delta):
                raise InvalidOfferError(
                    "Stock cannot go below zero",
                    details={
                        "offer_id": offer_id,
                        "delta": delta,
                        "stock_quantity": await catalog.get_stock(offer_id),
                    },
                )
            stock = await catalog.get_stock(offer_id)

        logger.info("Offer stock adjusted", offer_id=offer_id, delta=delta, stock=stock)
        return stock

    async def get_best_offer(self, product_id: str) -> OfferResolution:
        """Resolve the offer and price to show for a product.

        Raises:
            ProductNotFoundError: If the product is not in the catalog.
        """
        async with self.session_factory() as session:
            catalog = CatalogRepository(session)
            product = await catalog.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            offers = await catalog.get_offers_for_product(product_id)
        return resolve_best_offer(product_id, offers, self.clock(), product.base_price)


def get_offer_service() -> OfferService:
    """Get offer service instance."""
    return OfferService()
