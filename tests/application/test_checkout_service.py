"""Tests for checkout: price re-validation, atomic stock reservation, no partial orders."""

import asyncio
from datetime import timedelta

import pytest

from marketplace.application.cart_service import CartOwner
from marketplace.application.checkout_service import CheckoutService
from marketplace.domain import Deal, Money, OrderItemStatus, OrderStatus
from marketplace.domain.exceptions import (
    AddressNotFoundError,
    EmptyCartError,
    InsufficientStockError,
    OfferUnavailableError,
)
from marketplace.domain.state_machines import OfferStatus
from marketplace.domain.value_objects import Actor, ActorRole

SELLER = Actor("seller-1", ActorRole.SELLER)


class TestPlaceOrder:
    """Tests for CheckoutService.place_order."""

    async def test_places_pending_order_and_reserves_stock(
        self, place_order, catalog, cart_service, shipping_address
    ) -> None:
        first = await catalog.offer(seller_id="seller-1", price=1000, stock=5)
        second = await catalog.offer(seller_id="seller-2", price=250, stock=3)

        order = await place_order([(first, 2), (second, 3)])

        assert order.status == OrderStatus.PENDING
        assert order.total == Money(2750)
        assert order.shipping_address == shipping_address
        assert {item.seller_id for item in order.items} == {"seller-1", "seller-2"}
        assert all(item.status == OrderItemStatus.PENDING for item in order.items)
        assert await catalog.stock(first.id) == 3
        assert await catalog.stock(second.id) == 0
        assert (await cart_service.load_cart(CartOwner.user("user-1"))).is_empty

    async def test_charges_live_price_not_snapshot(
        self, cart_service, checkout_service, catalog, offer_service, clock
    ) -> None:
        """A deal that starts after add-to-cart applies at checkout."""
        offer = await catalog.offer(price=1000)
        item = await cart_service.add_to_cart(CartOwner.user("user-1"), offer.id, 2)
        deal = Deal(Money(800), clock.now - timedelta(minutes=1), clock.now + timedelta(days=1))
        await offer_service.update_offer(offer.id, SELLER, deal=deal)

        order = await checkout_service.place_order("user-1", "addr-1")

        assert item.unit_price_at_add == Money(1000)
        assert order.items[0].price_at_purchase == Money(800)
        assert order.total == Money(1600)

    async def test_price_frozen_after_checkout(
        self, place_order, catalog, offer_service, order_service
    ) -> None:
        offer = await catalog.offer(price=1000)
        order = await place_order([(offer, 1)])
        await offer_service.update_offer(offer.id, SELLER, price=Money(5000))

        view = await order_service.get_order(order.id, Actor("user-1"))
        assert view.order.total == Money(1000)
        assert view.order.items[0].price_at_purchase == Money(1000)

    async def test_empty_cart(self, checkout_service) -> None:
        with pytest.raises(EmptyCartError):
            await checkout_service.place_order("user-1", "addr-1")

    async def test_foreign_address_rejected(self, place_order, catalog) -> None:
        offer = await catalog.offer()
        with pytest.raises(AddressNotFoundError):
            await place_order([(offer, 1)], address_id="addr-2")
        assert await catalog.stock(offer.id) == 10

    async def test_deactivated_offer(self, place_order, catalog, offer_service) -> None:
        offer = await catalog.offer()
        await offer_service.update_offer(offer.id, SELLER, status=OfferStatus.DRAFT)
        with pytest.raises(OfferUnavailableError) as exc_info:
            await place_order([(offer, 1)])
        assert exc_info.value.details["reason"] == "inactive"

    async def test_no_partial_order(
        self, place_order, catalog, offer_service, order_service, cart_service
    ) -> None:
        """One short line fails the whole checkout and leaves every stock untouched."""
        plenty = await catalog.offer(seller_id="seller-1", stock=5)
        scarce = await catalog.offer(seller_id="seller-2", stock=1)
        await cart_service.add_to_cart(CartOwner.user("user-1"), scarce.id, 1)
        await offer_service.adjust_stock(scarce.id, Actor("seller-2", ActorRole.SELLER), -1)

        with pytest.raises(InsufficientStockError) as exc_info:
            await place_order([(plenty, 2)])

        assert exc_info.value.details["offer_id"] == scarce.id
        assert exc_info.value.details["available"] == 0
        assert await catalog.stock(plenty.id) == 5
        assert await catalog.stock(scarce.id) == 0
        page = await order_service.list_orders(Actor("user-1"))
        assert page.total == 0
        assert len((await cart_service.load_cart(CartOwner.user("user-1"))).items) == 2

    async def test_stock_race(self, cart_service, checkout_service, catalog) -> None:
        """Two shoppers race for the last unit: exactly one order is placed."""
        offer = await catalog.offer(stock=1)
        await cart_service.add_to_cart(CartOwner.user("user-1"), offer.id, 1)
        await cart_service.add_to_cart(CartOwner.user("user-2"), offer.id, 1)

        results = await asyncio.gather(
            checkout_service.place_order("user-1", "addr-1"),
            checkout_service.place_order("user-2", "addr-2"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        orders = [r for r in results if not isinstance(r, Exception)]
        assert len(orders) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStockError)
        assert await catalog.stock(offer.id) == 0

    async def test_notifies_order_placed(self, place_order, catalog, dispatcher) -> None:
        offer = await catalog.offer()
        order = await place_order([(offer, 1)])
        assert dispatcher.kinds == ["order_placed"]
        kind, recipient, payload = dispatcher.sent[0]
        assert recipient == "user-1"
        assert payload["aggregate_id"] == order.id

    async def test_failing_notifier_keeps_order(
        self, session_factory, address_book, clock, failing_notifier, cart_service, catalog,
        order_service,
    ) -> None:
        """A notification failure never undoes the checkout."""
        service = CheckoutService(session_factory, address_book, failing_notifier, clock)
        offer = await catalog.offer(stock=3)
        await cart_service.add_to_cart(CartOwner.user("user-1"), offer.id, 1)

        order = await service.place_order("user-1", "addr-1")

        view = await order_service.get_order(order.id, Actor("user-1"))
        assert view.order.status == OrderStatus.PENDING
        assert await catalog.stock(offer.id) == 2
