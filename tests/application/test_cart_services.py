"""Tests for guest and authenticated carts and the guest cart merge."""

from datetime import timedelta

import pytest

from marketplace.application.cart_merge_service import GuestLine
from marketplace.application.cart_service import CartOwner
from marketplace.domain import Deal, Money
from marketplace.domain.exceptions import (
    CartItemNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    OfferUnavailableError,
)
from marketplace.domain.state_machines import OfferStatus
from marketplace.domain.value_objects import Actor, ActorRole

USER = CartOwner.user("user-1")
GUEST = CartOwner.guest("guest-token-1")


class TestCartService:
    """Tests for CartService."""

    async def test_add_increments_existing_line(self, cart_service, catalog) -> None:
        """Adding the same offer twice keeps a single line."""
        offer = await catalog.offer(price=1000)
        await cart_service.add_to_cart(USER, offer.id, 1)
        item = await cart_service.add_to_cart(USER, offer.id, 2)

        assert item.quantity == 3
        cart = await cart_service.load_cart(USER)
        assert len(cart.items) == 1
        assert cart.get(offer.id).unit_price_at_add == Money(1000)

    async def test_add_snapshots_deal_price(self, cart_service, catalog, clock) -> None:
        deal = Deal(Money(700), clock.now - timedelta(hours=1), clock.now + timedelta(hours=1))
        offer = await catalog.offer(price=1000, deal=deal)
        item = await cart_service.add_to_cart(USER, offer.id, 1)
        assert item.unit_price_at_add == Money(700)

    async def test_authenticated_add_requires_stock(self, cart_service, catalog) -> None:
        offer = await catalog.offer(stock=0)
        with pytest.raises(InsufficientStockError):
            await cart_service.add_to_cart(USER, offer.id, 1)

    async def test_guest_add_does_not_check_stock(self, cart_service, catalog, guest_carts) -> None:
        offer = await catalog.offer(stock=0)
        await cart_service.add_to_cart(GUEST, offer.id, 2)
        cart = await guest_carts.load(GUEST.id)
        assert cart.get(offer.id).quantity == 2

    async def test_add_unknown_offer(self, cart_service) -> None:
        with pytest.raises(OfferUnavailableError) as exc_info:
            await cart_service.add_to_cart(USER, "missing-offer", 1)
        assert exc_info.value.details["reason"] == "deleted"

    async def test_add_inactive_offer(self, cart_service, catalog, offer_service) -> None:
        offer = await catalog.offer()
        await offer_service.update_offer(
            offer.id, Actor("seller-1", ActorRole.SELLER), status=OfferStatus.DRAFT
        )
        with pytest.raises(OfferUnavailableError) as exc_info:
            await cart_service.add_to_cart(USER, offer.id, 1)
        assert exc_info.value.details["reason"] == "inactive"

    async def test_add_zero_quantity(self, cart_service, catalog) -> None:
        offer = await catalog.offer()
        with pytest.raises(InvalidQuantityError):
            await cart_service.add_to_cart(USER, offer.id, 0)

    async def test_update_and_remove(self, cart_service, catalog) -> None:
        first = await catalog.offer(seller_id="seller-1")
        second = await catalog.offer(seller_id="seller-2")
        await cart_service.add_to_cart(USER, first.id, 1)
        await cart_service.add_to_cart(USER, second.id, 1)

        updated = await cart_service.update_cart_item(USER, first.id, 4)
        assert updated.quantity == 4
        assert await cart_service.update_cart_item(USER, second.id, 0) is None

        await cart_service.remove_from_cart(USER, first.id)
        assert (await cart_service.load_cart(USER)).is_empty
        with pytest.raises(CartItemNotFoundError):
            await cart_service.remove_from_cart(USER, first.id)

    async def test_get_cart_shows_live_state(self, cart_service, catalog, offer_service) -> None:
        """The view carries the snapshot price and the current price side by side."""
        offer = await catalog.offer(price=1000, stock=2)
        await cart_service.add_to_cart(USER, offer.id, 3)
        await offer_service.update_offer(
            offer.id, Actor("seller-1", ActorRole.SELLER), price=Money(1200)
        )

        view = await cart_service.get_cart(USER)
        line = view.lines[0]
        assert line.unit_price_at_add == Money(1000)
        assert line.current_price == Money(1200)
        assert line.available_stock == 2
        assert not line.available
        assert view.item_count == 3
        assert view.subtotal == Money(3600)

    async def test_clear_cart(self, cart_service, catalog) -> None:
        offer = await catalog.offer()
        await cart_service.add_to_cart(USER, offer.id, 1)
        assert await cart_service.clear_cart(USER) == 1
        assert (await cart_service.get_cart(USER)).subtotal is None


class TestCartMerge:
    """Tests for merging a guest cart on login."""

    async def test_merge_adds_quantities(
        self, cart_service, merge_service, catalog, guest_carts
    ) -> None:
        """Guest quantity 1 plus user quantity 2 gives 3; the guest cart is emptied."""
        offer = await catalog.offer(stock=10)
        await cart_service.add_to_cart(USER, offer.id, 2)
        await cart_service.add_to_cart(GUEST, offer.id, 1)

        report = await merge_service.merge_guest_cart("user-1", guest_token=GUEST.id)

        assert not report.dropped
        assert report.merged[0].quantity == 3
        cart = await cart_service.load_cart(USER)
        assert cart.get(offer.id).quantity == 3
        assert (await guest_carts.load(GUEST.id)).is_empty

    async def test_merge_drops_failing_lines(
        self, cart_service, merge_service, catalog, guest_carts
    ) -> None:
        """A sold-out line is dropped without stopping the others."""
        sold_out = await catalog.offer(seller_id="seller-1", stock=0)
        available = await catalog.offer(seller_id="seller-2", stock=5)
        await cart_service.add_to_cart(GUEST, sold_out.id, 1)
        await cart_service.add_to_cart(GUEST, available.id, 2)

        report = await merge_service.merge_guest_cart("user-1", guest_token=GUEST.id)

        assert [line.offer_id for line in report.dropped] == [sold_out.id]
        assert report.dropped[0].error_code == "INSUFFICIENT_STOCK"
        cart = await cart_service.load_cart(USER)
        assert [item.offer_id for item in cart.items] == [available.id]
        assert (await guest_carts.load(GUEST.id)).is_empty

    async def test_merge_client_held_lines(self, cart_service, merge_service, catalog) -> None:
        offer = await catalog.offer()
        report = await merge_service.merge_guest_cart(
            "user-1", guest_items=[GuestLine(offer.id, 2), GuestLine("missing-offer", 1)]
        )
        assert len(report.merged) == 1
        assert report.dropped[0].error_code == "OFFER_UNAVAILABLE"
        assert (await cart_service.load_cart(USER)).get(offer.id).quantity == 2

    async def test_merge_key_applies_once(self, cart_service, merge_service, catalog) -> None:
        """Replaying the same login transition does not double quantities."""
        offer = await catalog.offer()
        lines = [GuestLine(offer.id, 1)]

        first = await merge_service.merge_guest_cart("user-1", lines, merge_key="login-1")
        second = await merge_service.merge_guest_cart("user-1", lines, merge_key="login-1")

        assert not first.already_merged
        assert second.already_merged
        assert second.merged == []
        assert (await cart_service.load_cart(USER)).get(offer.id).quantity == 1

    async def test_merge_empty_guest_cart(self, merge_service) -> None:
        report = await merge_service.merge_guest_cart("user-1", guest_token="unknown-token")
        assert report.merged == []
        assert report.dropped == []
