"""Payment intents and payment result reconciliation.

Creates gateway payment intents for pending orders and applies the
gateway's asynchronous results. Applying a result is idempotent:
replayed webhook deliveries and results for already-settled payments
are detected and treated as no-ops.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.application.checkout_service import reserve_lines
from marketplace.application.notifier import OrderNotifier
from marketplace.domain.base import utcnow
from marketplace.domain.entities import Order, Payment
from marketplace.domain.exceptions import (
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentIntentConflictError,
    PaymentNotFoundError,
)
from marketplace.domain.state_machines import OrderStatus, PaymentStatus
from marketplace.domain.value_objects import Money
from marketplace.infrastructure.database import get_session_factory
from marketplace.infrastructure.notifications import get_notification_dispatcher
from marketplace.infrastructure.payment_gateway import PaymentGateway, get_payment_gateway
from marketplace.infrastructure.repositories import (
    CatalogRepository,
    OrderRepository,
    PaymentEventLog,
    PaymentRepository,
)

logger = structlog.get_logger()


class PaymentOutcome(str, Enum):
    """Result reported by the gateway."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PaymentIntentResult:
    """Payment intent handed to the shopper's payment page.

    Attributes:
        created: False when an existing pending intent was returned.
    """

    payment_id: str
    order_id: str
    gateway_payment_id: str
    client_secret: str | None
    amount: Money
    status: PaymentStatus
    created: bool = True

    @classmethod
    def from_payment(cls, payment: Payment, created: bool) -> "PaymentIntentResult":
        return cls(
            payment_id=payment.id,
            order_id=payment.order_id,
            gateway_payment_id=payment.gateway_payment_id,
            client_secret=payment.client_secret,
            amount=payment.amount,
            status=payment.status,
            created=created,
        )


@dataclass
class PaymentResult:
    """Outcome of applying a gateway result.

    Attributes:
        status: "processed" when state changed, "duplicate" for replays.
    """

    success: bool
    status: str
    order_id: str
    payment_id: str | None = None
    payment_status: PaymentStatus | None = None
    order_status: OrderStatus | None = None
    message: str = ""


def _transaction_id(payload: dict[str, Any]) -> str | None:
    charge = payload.get("latest_charge")
    if isinstance(charge, dict):
        charge = charge.get("id")
    return charge or payload.get("id")


class PaymentService:
    """Application service for payments."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        gateway: PaymentGateway | None = None,
        notifier: OrderNotifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize service.

        Args:
            session_factory: Factory for database sessions.
            gateway: Payment gateway.
            notifier: Notification publisher.
            clock: Source of the current time.
        """
        self.session_factory = session_factory or get_session_factory()
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier or OrderNotifier(get_notification_dispatcher())
        self.clock = clock or utcnow

    async def _payable_order(
        self,
        orders: OrderRepository,
        payments: PaymentRepository,
        order_id: str,
        user_id: str | None,
    ) -> tuple[Order, Payment | None]:
        """Lock a pending order and return it with its open intent, if any."""
        order = await orders.get(order_id, for_update=True)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise OrderNotFoundError(order_id)

        existing = await payments.get_live_for_order(order_id)
        if existing is not None and existing.status != PaymentStatus.PENDING:
            raise PaymentIntentConflictError(order_id, existing.id, existing.status.value)

        if order.status != OrderStatus.PENDING:
            raise InvalidTransitionError(
                entity_type="Order",
                entity_id=order.id,
                current_state=order.status.value,
                target_state=OrderStatus.PROCESSING.value,
            )
        return order, existing

    async def create_payment_intent(
        self, order_id: str, user_id: str | None = None
    ) -> PaymentIntentResult:
        """Open a payment intent for a pending order.

        A pending intent that already exists is returned instead of
        creating a second one. After a failed attempt the order's stock
        is reserved again before the new intent is opened.

        The gateway is called between two transactions so no row lock is
        held while it answers. The intent is keyed by order and attempt
        number, so a concurrent request for the same attempt gets the same
        intent back; an intent that can no longer be recorded is voided.

        Args:
            order_id: Order to pay.
            user_id: Shopper paying; when given, must own the order.

        Returns:
            PaymentIntentResult with the client secret.

        Raises:
            OrderNotFoundError: If the order is missing or not the shopper's.
            PaymentIntentConflictError: If the order was already paid.
            InvalidTransitionError: If the order is no longer pending.
            InsufficientStockError: If stock released by a failed attempt is gone.
            PaymentGatewayError: If the gateway rejects the intent.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            payments = PaymentRepository(session)
            order, existing = await self._payable_order(orders, payments, order_id, user_id)
            if existing is not None:
                logger.info(
                    "Returning existing payment intent",
                    order_id=order_id,
                    payment_id=existing.id,
                )
                return PaymentIntentResult.from_payment(existing, created=False)

            if not order.stock_reserved:
                await reserve_lines(
                    CatalogRepository(session),
                    order.reserved_quantities(),
                    {item.offer_id: item.product_id for item in order.items},
                )
                order.stock_reserved = True
                await orders.save(order, [])
                logger.info("Stock reserved again for payment retry", order_id=order_id)

            attempt = await payments.count_for_order(order_id) + 1

        intent = await self.gateway.create_intent(
            order.total,
            metadata={"order_id": order.id, "user_id": order.user_id},
            idempotency_key=f"order-{order.id}-attempt-{attempt}",
        )

        try:
            async with self.session_factory() as session, session.begin():
                payments = PaymentRepository(session)
                order, existing = await self._payable_order(
                    OrderRepository(session), payments, order_id, user_id
                )
                if existing is None:
                    payment = Payment.create(
                        order.id, order.total, intent.id, intent.client_secret, now=now
                    )
                    payment.collect_events()
                    await payments.add(payment)
        except (InvalidTransitionError, PaymentIntentConflictError):
            await self.gateway.cancel_intent(intent.id)
            logger.info(
                "Unrecorded payment intent voided",
                order_id=order_id,
                gateway_payment_id=intent.id,
            )
            raise

        if existing is not None:
            if existing.gateway_payment_id != intent.id:
                await self.gateway.cancel_intent(intent.id)
            logger.info(
                "Concurrent payment intent returned",
                order_id=order_id,
                payment_id=existing.id,
            )
            return PaymentIntentResult.from_payment(existing, created=False)

        logger.info(
            "Payment intent created",
            order_id=order_id,
            payment_id=payment.id,
            gateway_payment_id=payment.gateway_payment_id,
            amount_cents=payment.amount.amount_cents,
            attempt=attempt,
        )
        return PaymentIntentResult.from_payment(payment, created=True)

    async def handle_payment_result(
        self,
        order_id: str | None,
        outcome: PaymentOutcome,
        gateway_payload: dict[str, Any],
        gateway_payment_id: str | None = None,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> PaymentResult:
        """Apply a gateway payment result to the payment and its order.

        On success every pending item moves to processing; if the order
        was cancelled meanwhile the payment is refunded instead. On
        failure the reserved stock is released and items stay pending
        for a retry or cancellation.

        Args:
            order_id: Order the payment belongs to; looked up from
                ``gateway_payment_id`` when omitted.
            outcome: Reported outcome.
            gateway_payload: Raw gateway object, kept on the payment.
            gateway_payment_id: Gateway intent id; the order's live
                payment is used when omitted.
            event_id: Webhook event id for replay detection.
            event_type: Webhook event type, recorded with the event id.

        Returns:
            PaymentResult, with status "duplicate" for replays.

        Raises:
            OrderNotFoundError: If the order does not exist.
            PaymentNotFoundError: If no payment matches.
        """
        now = self.clock()
        async with self.session_factory() as session, session.begin():
            orders = OrderRepository(session)
            payments = PaymentRepository(session)
            event_log = PaymentEventLog(session)

            if order_id is None:
                found = (
                    await payments.get_by_gateway_id(gateway_payment_id)
                    if gateway_payment_id
                    else None
                )
                if found is None:
                    raise PaymentNotFoundError(gateway_payment_id or "unknown")
                order_id = found.order_id

            order = await orders.get(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundError(order_id)

            if event_id and await event_log.exists(event_id):
                logger.info("Duplicate payment event ignored", event_id=event_id, order_id=order_id)
                return PaymentResult(
                    success=True,
                    status="duplicate",
                    order_id=order_id,
                    order_status=order.status,
                    message=f"Event {event_id} already processed",
                )

            if gateway_payment_id:
                payment = await payments.get_by_gateway_id(gateway_payment_id)
            else:
                payment = await payments.get_live_for_order(order_id)
            if payment is None or payment.order_id != order_id:
                raise PaymentNotFoundError(gateway_payment_id or order_id)

            if payment.status.is_settled():
                logger.info(
                    "Payment already settled, result ignored",
                    order_id=order_id,
                    payment_id=payment.id,
                    payment_status=payment.status.value,
                    outcome=outcome.value,
                )
                if event_id:
                    await event_log.record(
                        event_id,
                        event_type or outcome.value,
                        "duplicate",
                        order_id,
                        payment.gateway_payment_id,
                    )
                return PaymentResult(
                    success=True,
                    status="duplicate",
                    order_id=order_id,
                    payment_id=payment.id,
                    payment_status=payment.status,
                    order_status=order.status,
                    message="Payment already settled",
                )

            if outcome == PaymentOutcome.SUCCEEDED:
                payment.succeed(_transaction_id(gateway_payload), gateway_payload, now=now)
                if order.status == OrderStatus.CANCELLED:
                    await self.gateway.refund(
                        payment.gateway_payment_id,
                        payment.amount,
                        idempotency_key=f"refund-{payment.id}-cancelled-order",
                    )
                    payment.refund(payment.amount, now=now)
                    logger.warning(
                        "Payment succeeded for cancelled order, refunded",
                        order_id=order_id,
                        payment_id=payment.id,
                    )
                else:
                    order.mark_paid(actor="payment", now=now)
            else:
                error = gateway_payload.get("last_payment_error") or {}
                payment.fail(error.get("code"), error.get("message"), gateway_payload, now=now)
                if order.stock_reserved and order.status != OrderStatus.CANCELLED:
                    catalog = CatalogRepository(session)
                    for offer_id, quantity in order.reserved_quantities():
                        await catalog.release_stock(offer_id, quantity)
                    order.stock_reserved = False
                    logger.info("Stock released after failed payment", order_id=order_id)

            events = order.collect_events()
            await payments.save(payment)
            await orders.save(order, events)
            if event_id:
                await event_log.record(
                    event_id,
                    event_type or outcome.value,
                    outcome.value,
                    order_id,
                    payment.gateway_payment_id,
                )
            events.extend(payment.collect_events())

        logger.info(
            "Payment result applied",
            order_id=order_id,
            payment_id=payment.id,
            outcome=outcome.value,
            payment_status=payment.status.value,
            order_status=order.status.value,
        )
        await self.notifier.publish(events, order.user_id)
        return PaymentResult(
            success=True,
            status="processed",
            order_id=order_id,
            payment_id=payment.id,
            payment_status=payment.status,
            order_status=order.status,
        )


def get_payment_service() -> PaymentService:
    """Get payment service instance."""
    return PaymentService()
