"""Tests for version-checked order and payment saves."""

import pytest
from sqlalchemy import update

from marketplace.domain.exceptions import ConcurrentUpdateError
from marketplace.infrastructure.models import OrderModel, PaymentModel
from marketplace.infrastructure.repositories import OrderRepository, PaymentRepository


class TestOrderRepositoryVersioning:
    """Tests for OrderRepository.save version checks."""

    async def test_stale_order_save_rejected(self, session_factory, place_order, catalog) -> None:
        """An order changed by another writer after loading cannot be saved."""
        offer = await catalog.offer()
        placed = await place_order([(offer, 1)])

        async with session_factory() as session, session.begin():
            orders = OrderRepository(session)
            order = await orders.get(placed.id)
            await session.execute(
                update(OrderModel)
                .where(OrderModel.id == placed.id)
                .values(version=OrderModel.version + 1)
            )

            with pytest.raises(ConcurrentUpdateError) as exc_info:
                await orders.save(order, [])

        assert exc_info.value.details["expected_version"] == order.version
        assert exc_info.value.details["actual_version"] == order.version + 1

    async def test_repeated_saves_track_version(
        self, session_factory, place_order, catalog
    ) -> None:
        offer = await catalog.offer()
        placed = await place_order([(offer, 1)])

        async with session_factory() as session, session.begin():
            orders = OrderRepository(session)
            order = await orders.get(placed.id, for_update=True)
            order.mark_paid(actor="payment")
            await orders.save(order, order.collect_events())
            order.stock_reserved = False
            await orders.save(order, [])

        async with session_factory() as session:
            stored = await OrderRepository(session).get(placed.id)
        assert stored.version == order.version
        assert not stored.stock_reserved


class TestPaymentRepositoryVersioning:
    """Tests for PaymentRepository.save version checks."""

    async def test_stale_payment_save_rejected(
        self, session_factory, place_order, catalog, payment_service
    ) -> None:
        offer = await catalog.offer()
        order = await place_order([(offer, 1)])
        intent = await payment_service.create_payment_intent(order.id, "user-1")

        async with session_factory() as session, session.begin():
            payments = PaymentRepository(session)
            payment = await payments.get_by_gateway_id(intent.gateway_payment_id)
            await session.execute(
                update(PaymentModel)
                .where(PaymentModel.id == payment.id)
                .values(version=PaymentModel.version + 1)
            )
            payment.fail("card_declined", "Declined", {})

            with pytest.raises(ConcurrentUpdateError):
                await payments.save(payment)
