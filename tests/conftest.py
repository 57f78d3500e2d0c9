"""Shared fixtures: a temporary SQLite database, fake collaborators and
services wired to them."""

import hashlib
import hmac
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.application.cart_merge_service import CartMergeService
from marketplace.application.cart_service import CartOwner, CartService
from marketplace.application.checkout_service import CheckoutService
from marketplace.application.notifier import OrderNotifier
from marketplace.application.offer_service import OfferService
from marketplace.application.order_service import OrderService
from marketplace.application.payment_service import PaymentOutcome, PaymentService
from marketplace.domain.base import new_id
from marketplace.domain.entities import Offer, Order
from marketplace.domain.value_objects import Address, Deal, Money, OfferCondition, ProductRef
from marketplace.infrastructure import models  # noqa: F401
from marketplace.infrastructure.address_book import InMemoryAddressBook
from marketplace.infrastructure.cart_store import GuestCartRepository
from marketplace.infrastructure.database import Base, create_engine
from marketplace.infrastructure.notifications import NotificationDispatcher
from marketplace.infrastructure.payment_gateway import SandboxPaymentGateway
from marketplace.infrastructure.repositories import CatalogRepository

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
WEBHOOK_SECRET = "whsec_test_secret"


# ============================================================================
# Fakes
# ============================================================================


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that keeps every notification it is asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, kind: str, recipient: str, payload: dict[str, Any]) -> None:
        self.sent.append((kind, recipient, payload))

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.sent]


class FailingDispatcher(NotificationDispatcher):
    """Dispatcher whose every send fails."""

    async def send(self, kind: str, recipient: str, payload: dict[str, Any]) -> None:
        raise ConnectionError("notification service unreachable")


# ============================================================================
# Infrastructure Fixtures
# ============================================================================


@pytest.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to a fresh SQLite database file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def gateway() -> SandboxPaymentGateway:
    return SandboxPaymentGateway()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def notifier(dispatcher) -> OrderNotifier:
    return OrderNotifier(dispatcher)


@pytest.fixture
def failing_notifier() -> OrderNotifier:
    return OrderNotifier(FailingDispatcher())


@pytest.fixture
def shipping_address() -> Address:
    return Address(
        id="addr-1",
        recipient_name="Asha Rao",
        line1="12 MG Road",
        city="Bengaluru",
        state="KA",
        postal_code="560001",
        country="IN",
    )


@pytest.fixture
def address_book(shipping_address) -> InMemoryAddressBook:
    book = InMemoryAddressBook()
    book.add("user-1", shipping_address)
    book.add("user-2", Address(
        id="addr-2",
        recipient_name="Ravi Kumar",
        line1="4 Park Street",
        city="Kolkata",
        postal_code="700016",
        country="IN",
    ))
    return book


@pytest.fixture
def guest_carts(clock) -> GuestCartRepository:
    return GuestCartRepository(clock=clock)


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def cart_service(session_factory, guest_carts, clock) -> CartService:
    return CartService(session_factory, guest_carts, clock)


@pytest.fixture
def merge_service(cart_service, guest_carts, session_factory) -> CartMergeService:
    return CartMergeService(cart_service, guest_carts, session_factory)


@pytest.fixture
def checkout_service(session_factory, address_book, notifier, clock) -> CheckoutService:
    return CheckoutService(session_factory, address_book, notifier, clock)


@pytest.fixture
def payment_service(session_factory, gateway, notifier, clock) -> PaymentService:
    return PaymentService(session_factory, gateway, notifier, clock)


@pytest.fixture
def order_service(session_factory, gateway, notifier, clock) -> OrderService:
    return OrderService(session_factory, gateway, notifier, clock, return_window=timedelta(days=7))


@pytest.fixture
def offer_service(session_factory, clock) -> OfferService:
    return OfferService(session_factory, clock)


# ============================================================================
# Data Helpers
# ============================================================================


class Catalog:
    """Seeds products and offers and reads stock back."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def product(self, product_id: str = "prod-1", base_price: int = 150000) -> ProductRef:
        product = ProductRef(
            id=product_id,
            title=f"Product {product_id}",
            base_price=Money(base_price),
            category="Electronics",
            brand="Acme",
        )
        async with self.session_factory() as session, session.begin():
            catalog = CatalogRepository(session)
            if await catalog.get_product(product_id) is None:
                await catalog.add_product(product)
        return product

    async def offer(
        self,
        product_id: str = "prod-1",
        seller_id: str = "seller-1",
        price: int = 100000,
        stock: int = 10,
        deal: Deal | None = None,
        offer_id: str | None = None,
    ) -> Offer:
        await self.product(product_id)
        offer = Offer(
            id=offer_id or new_id(),
            product_id=product_id,
            seller_id=seller_id,
            price=Money(price),
            stock_quantity=stock,
            condition=OfferCondition.NEW,
            deal=deal,
            created_at=NOW,
            updated_at=NOW,
        )
        async with self.session_factory() as session, session.begin():
            await CatalogRepository(session).add_offer(offer)
        return offer

    async def stock(self, offer_id: str) -> int:
        async with self.session_factory() as session:
            return await CatalogRepository(session).get_stock(offer_id)


@pytest.fixture
def catalog(session_factory) -> Catalog:
    return Catalog(session_factory)


@pytest.fixture
def place_order(cart_service, checkout_service):
    """Fill a user's cart with (offer, quantity) pairs and check out."""

    async def _place(
        lines: list[tuple[Offer, int]],
        user_id: str = "user-1",
        address_id: str = "addr-1",
    ) -> Order:
        owner = CartOwner.user(user_id)
        for offer, quantity in lines:
            await cart_service.add_to_cart(owner, offer.id, quantity)
        return await checkout_service.place_order(user_id, address_id)

    return _place


@pytest.fixture
def pay(payment_service):
    """Open an intent for an order and report a gateway outcome."""

    async def _pay(order: Order, outcome: PaymentOutcome = PaymentOutcome.SUCCEEDED, **kwargs):
        intent = await payment_service.create_payment_intent(order.id, order.user_id)
        return await payment_service.handle_payment_result(
            order.id,
            outcome,
            {"id": intent.gateway_payment_id, "latest_charge": f"ch_{intent.payment_id}"},
            gateway_payment_id=intent.gateway_payment_id,
            **kwargs,
        )

    return _pay


@pytest.fixture
def sign_webhook():
    """Build a gateway ``t=...,v1=...`` signature header for a raw body."""

    def _sign(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed_payload = f"{timestamp}.".encode() + body
        digest = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
