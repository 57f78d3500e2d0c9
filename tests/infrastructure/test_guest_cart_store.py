"""Tests for the in-memory guest cart store."""

from datetime import timedelta

import pytest

from marketplace.domain import Money
from marketplace.domain.exceptions import CartItemNotFoundError
from marketplace.infrastructure.cart_store import GuestCartRepository


class TestGuestCartRepository:
    """Tests for GuestCartRepository."""

    async def test_update_unknown_token_creates_nothing(self, guest_carts) -> None:
        """Updating a line of a token that has no cart leaves the store empty."""
        with pytest.raises(CartItemNotFoundError):
            await guest_carts.set_quantity("unknown-token", "offer-1", 2)
        with pytest.raises(CartItemNotFoundError):
            await guest_carts.remove("unknown-token", "offer-1")

        assert len(guest_carts) == 0

    async def test_removing_last_line_drops_cart(self, guest_carts) -> None:
        await guest_carts.add("token-1", "offer-1", 1, Money(500))
        await guest_carts.set_quantity("token-1", "offer-1", 0)

        assert len(guest_carts) == 0
        assert (await guest_carts.load("token-1")).is_empty

    async def test_stale_cart_expires(self, guest_carts, clock) -> None:
        """A cart untouched for longer than the TTL is gone."""
        await guest_carts.add("token-1", "offer-1", 1, Money(500))
        clock.advance(minutes=guest_carts.ttl.total_seconds() / 60 + 1)

        assert (await guest_carts.load("token-1")).is_empty
        assert len(guest_carts) == 0

    async def test_touch_extends_lifetime(self, guest_carts, clock) -> None:
        await guest_carts.add("token-1", "offer-1", 1, Money(500))
        clock.advance(minutes=guest_carts.ttl.total_seconds() / 60 - 1)
        await guest_carts.set_quantity("token-1", "offer-1", 3)
        clock.advance(minutes=2)

        cart = await guest_carts.load("token-1")
        assert cart.get("offer-1").quantity == 3

    async def test_least_recently_touched_cart_evicted_at_capacity(self, clock) -> None:
        carts = GuestCartRepository(ttl=timedelta(hours=1), max_entries=2, clock=clock)
        await carts.add("token-1", "offer-1", 1, Money(500))
        clock.advance(seconds=1)
        await carts.add("token-2", "offer-1", 1, Money(500))
        clock.advance(seconds=1)
        await carts.add("token-1", "offer-2", 1, Money(500))
        clock.advance(seconds=1)
        await carts.add("token-3", "offer-1", 1, Money(500))

        assert len(carts) == 2
        assert (await carts.load("token-2")).is_empty
        assert len((await carts.load("token-1")).items) == 2
        assert not (await carts.load("token-3")).is_empty
