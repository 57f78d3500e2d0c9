"""Tests for the cart, order and payment aggregates."""

from datetime import datetime, timedelta, timezone

import pytest

from marketplace.domain import (
    Address,
    Cart,
    Money,
    Offer,
    Order,
    OrderItemStatus,
    OrderLine,
    OrderStatus,
    Payment,
    PaymentStatus,
)
from marketplace.domain.events import OrderItemStatusChanged, OrderPlaced, OrderStatusChanged
from marketplace.domain.exceptions import (
    CartItemNotFoundError,
    InvalidQuantityError,
    InvalidTransitionError,
    OrderItemNotFoundError,
    RefundExceedsCaptureError,
    ReturnWindowExpiredError,
    ShipmentDetailsRequiredError,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(days=7)

ADDRESS = Address(
    id="addr-1",
    recipient_name="Asha Rao",
    line1="12 MG Road",
    city="Bengaluru",
    postal_code="560001",
    country="IN",
)


# ============================================================================
# Fixtures
# ============================================================================


def make_offer(seller_id: str, price: int) -> Offer:
    return Offer(
        id=f"offer-{seller_id}",
        product_id=f"prod-{seller_id}",
        seller_id=seller_id,
        price=Money(price),
        stock_quantity=10,
    )


@pytest.fixture
def order() -> Order:
    """Pending order with one item from each of two sellers."""
    lines = [
        OrderLine(offer=make_offer("seller-a", 1000), quantity=2, unit_price=Money(1000)),
        OrderLine(offer=make_offer("seller-b", 500), quantity=1, unit_price=Money(450)),
    ]
    return Order.place("user-1", ADDRESS, lines, now=NOW, order_id="order-1")


def ship(order: Order, item_id: str, now: datetime = NOW) -> None:
    order.ship_item(item_id, "TRK-1", "BlueDart", "seller", now=now)


def deliver_all(order: Order, now: datetime = NOW) -> None:
    order.mark_paid(now=now)
    for item in order.items:
        ship(order, item.id, now)
        order.deliver_item(item.id, "seller", now=now)


# ============================================================================
# Cart
# ============================================================================


class TestCart:
    """Tests for Cart line handling."""

    def test_add_same_offer_increments(self) -> None:
        cart = Cart(owner_id="user-1")
        cart.add_item("offer-1", 1, Money(100))
        line = cart.add_item("offer-1", 2, Money(90))
        assert line.quantity == 3
        assert line.unit_price_at_add == Money(90)
        assert len(cart.items) == 1

    def test_add_rejects_non_positive_quantity(self) -> None:
        cart = Cart(owner_id="user-1")
        with pytest.raises(InvalidQuantityError):
            cart.add_item("offer-1", 0, Money(100))

    def test_update_to_zero_removes_line(self) -> None:
        cart = Cart(owner_id="user-1")
        cart.add_item("offer-1", 2, Money(100))
        assert cart.update_quantity("offer-1", 0) is None
        assert cart.is_empty

    def test_update_negative_rejected(self) -> None:
        cart = Cart(owner_id="user-1")
        cart.add_item("offer-1", 2, Money(100))
        with pytest.raises(InvalidQuantityError):
            cart.update_quantity("offer-1", -1)

    def test_update_unknown_line(self) -> None:
        with pytest.raises(CartItemNotFoundError):
            Cart(owner_id="user-1").update_quantity("offer-1", 1)

    def test_remove_and_clear(self) -> None:
        cart = Cart(owner_id="user-1")
        cart.add_item("offer-1", 1, Money(100))
        cart.add_item("offer-2", 1, Money(100))
        cart.remove_item("offer-1")
        assert [item.offer_id for item in cart.items] == ["offer-2"]
        assert cart.clear() == 1
        with pytest.raises(CartItemNotFoundError):
            cart.remove_item("offer-1")


# ============================================================================
# Order Placement and Payment
# ============================================================================


class TestOrderPlacement:
    """Tests for Order.place and payment."""

    def test_total_uses_prices_at_purchase(self, order: Order) -> None:
        assert order.total == Money(2450)
        assert order.status == OrderStatus.PENDING
        assert all(item.status == OrderItemStatus.PENDING for item in order.items)
        assert {item.seller_id for item in order.items} == {"seller-a", "seller-b"}

    def test_place_records_event(self, order: Order) -> None:
        events = order.collect_events()
        assert len(events) == 1
        assert isinstance(events[0], OrderPlaced)
        assert events[0].total_cents == 2450
        assert order.collect_events() == []

    def test_place_without_lines_rejected(self) -> None:
        with pytest.raises(ValueError):
            Order.place("user-1", ADDRESS, [], now=NOW)

    def test_mark_paid_moves_items_to_processing(self, order: Order) -> None:
        assert order.mark_paid(now=NOW) == 2
        assert order.status == OrderStatus.PROCESSING
        assert all(item.status == OrderItemStatus.PROCESSING for item in order.items)

    def test_mark_paid_twice_is_noop(self, order: Order) -> None:
        order.mark_paid(now=NOW)
        order.collect_events()
        assert order.mark_paid(now=NOW) == 0
        assert order.collect_events() == []

    def test_unknown_item(self, order: Order) -> None:
        with pytest.raises(OrderItemNotFoundError):
            order.item("missing")


# ============================================================================
# Fulfillment
# ============================================================================


class TestFulfillment:
    """Tests for shipping, delivery and the rolled-up status."""

    def test_ship_requires_tracking_details(self, order: Order) -> None:
        order.mark_paid(now=NOW)
        with pytest.raises(ShipmentDetailsRequiredError):
            order.ship_item(order.items[0].id, None, "BlueDart", "seller", now=NOW)
        with pytest.raises(ShipmentDetailsRequiredError):
            order.ship_item(order.items[0].id, "TRK-1", "", "seller", now=NOW)

    def test_ship_unpaid_item_rejected(self, order: Order) -> None:
        with pytest.raises(InvalidTransitionError):
            ship(order, order.items[0].id)

    def test_partial_shipment_keeps_order_processing(self, order: Order) -> None:
        order.mark_paid(now=NOW)
        ship(order, order.items[0].id)
        assert order.items[0].tracking_number == "TRK-1"
        assert order.items[0].shipped_at == NOW
        assert order.status == OrderStatus.PROCESSING

    def test_delivered_and_shipped_rolls_up_to_shipped(self, order: Order) -> None:
        order.mark_paid(now=NOW)
        for item in order.items:
            ship(order, item.id)
        order.deliver_item(order.items[0].id, "seller", now=NOW)
        assert order.status == OrderStatus.SHIPPED

    def test_all_delivered(self, order: Order) -> None:
        deliver_all(order)
        assert order.status == OrderStatus.DELIVERED
        assert all(item.delivered_at == NOW for item in order.items)

    def test_events_carry_actor_and_transition(self, order: Order) -> None:
        order.collect_events()
        order.mark_paid(actor="payment", now=NOW)
        events = order.collect_events()
        item_events = [e for e in events if isinstance(e, OrderItemStatusChanged)]
        order_events = [e for e in events if isinstance(e, OrderStatusChanged)]
        assert len(item_events) == 2
        assert {(e.from_status, e.to_status, e.actor) for e in item_events} == {
            ("pending", "processing", "payment")
        }
        assert [(e.from_status, e.to_status) for e in order_events] == [
            ("pending", "processing")
        ]


# ============================================================================
# Cancellation
# ============================================================================


class TestCancellation:
    """Tests for Order.cancel."""

    def test_cancel_pending_order(self, order: Order) -> None:
        cancelled = order.cancel("changed my mind", "user-1", now=NOW)
        assert len(cancelled) == 2
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "changed my mind"

    def test_cancel_paid_order(self, order: Order) -> None:
        order.mark_paid(now=NOW)
        order.cancel("changed my mind", "user-1", now=NOW)
        assert order.status == OrderStatus.CANCELLED

    def test_cancel_after_shipping_rejected(self, order: Order) -> None:
        """One shipped item blocks the cancellation and nothing changes."""
        order.mark_paid(now=NOW)
        ship(order, order.items[0].id)
        with pytest.raises(InvalidTransitionError):
            order.cancel("too late", "user-1", now=NOW)
        assert order.items[1].status == OrderItemStatus.PROCESSING

    def test_cancel_twice_rejected(self, order: Order) -> None:
        order.cancel("first", "user-1", now=NOW)
        with pytest.raises(InvalidTransitionError):
            order.cancel("second", "user-1", now=NOW)

    def test_cancelled_items_hold_no_stock(self, order: Order) -> None:
        assert len(order.reserved_quantities()) == 2
        order.cancel("changed my mind", "user-1", now=NOW)
        assert order.reserved_quantities() == []


# ============================================================================
# Returns
# ============================================================================


class TestReturns:
    """Tests for return requests, approval and rejection."""

    def test_return_inside_window(self, order: Order) -> None:
        deliver_all(order)
        returned = order.request_return("damaged", WINDOW, now=NOW + timedelta(days=3))
        assert len(returned) == 2
        assert order.status == OrderStatus.RETURN_REQUESTED
        assert returned[0].return_reason == "damaged"

    def test_return_on_last_day_allowed(self, order: Order) -> None:
        deliver_all(order)
        order.request_return("damaged", WINDOW, now=NOW + WINDOW)
        assert order.status == OrderStatus.RETURN_REQUESTED

    def test_return_after_window_rejected(self, order: Order) -> None:
        deliver_all(order)
        with pytest.raises(ReturnWindowExpiredError) as exc_info:
            order.request_return("damaged", WINDOW, now=NOW + timedelta(days=8))
        assert exc_info.value.details["window_days"] == 7
        assert order.status == OrderStatus.DELIVERED

    def test_return_before_delivery_rejected(self, order: Order) -> None:
        order.mark_paid(now=NOW)
        with pytest.raises(InvalidTransitionError):
            order.request_return("damaged", WINDOW, now=NOW)

    def test_return_of_selected_item(self, order: Order) -> None:
        deliver_all(order)
        item = order.items[1]
        order.request_return("wrong size", WINDOW, item_ids=[item.id], now=NOW)
        assert item.status == OrderItemStatus.RETURN_REQUESTED
        assert order.items[0].status == OrderItemStatus.DELIVERED

    def test_approve_refunds_item(self, order: Order) -> None:
        deliver_all(order)
        item = order.items[0]
        order.request_return("damaged", WINDOW, item_ids=[item.id], now=NOW)
        order.refund_item(item.id, "seller-a", now=NOW)
        assert item.status == OrderItemStatus.REFUNDED
        assert item.refunded_at == NOW
        assert order.status == OrderStatus.REFUNDED

    def test_reject_returns_item_to_delivered(self, order: Order) -> None:
        deliver_all(order)
        item = order.items[0]
        order.request_return("damaged", WINDOW, item_ids=[item.id], now=NOW)
        order.reject_return(item.id, "seller-a", reason="no damage found", now=NOW)
        assert item.status == OrderItemStatus.DELIVERED
        assert order.status == OrderStatus.DELIVERED

    def test_approve_without_request_rejected(self, order: Order) -> None:
        deliver_all(order)
        with pytest.raises(InvalidTransitionError):
            order.refund_item(order.items[0].id, "seller-a", now=NOW)
        with pytest.raises(InvalidTransitionError):
            order.reject_return(order.items[0].id, "seller-a", now=NOW)


# ============================================================================
# Payment
# ============================================================================


class TestPayment:
    """Tests for the Payment aggregate."""

    @pytest.fixture
    def payment(self) -> Payment:
        return Payment.create("order-1", Money(2000), "pi_1", "secret", now=NOW)

    def test_create(self, payment: Payment) -> None:
        assert payment.status == PaymentStatus.PENDING
        assert payment.refundable == Money(2000)
        assert payment.refunded_amount == Money(0)

    def test_settles_once(self, payment: Payment) -> None:
        payment.succeed("ch_1", {"id": "pi_1"}, now=NOW)
        assert payment.gateway_transaction_id == "ch_1"
        with pytest.raises(InvalidTransitionError):
            payment.fail("card_declined", "Declined", {}, now=NOW)
        with pytest.raises(InvalidTransitionError):
            payment.succeed("ch_1", {}, now=NOW)

    def test_fail_records_reason(self, payment: Payment) -> None:
        payment.fail("card_declined", "Your card was declined", {"id": "pi_1"}, now=NOW)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_code == "card_declined"

    def test_refund_requires_success(self, payment: Payment) -> None:
        with pytest.raises(InvalidTransitionError):
            payment.refund(Money(100), now=NOW)

    def test_partial_refunds_accumulate(self, payment: Payment) -> None:
        payment.succeed("ch_1", {}, now=NOW)
        payment.refund(Money(500), now=NOW)
        assert payment.status == PaymentStatus.REFUNDED
        payment.refund(Money(1500), now=NOW)
        assert payment.refunded_amount == Money(2000)
        assert payment.refundable == Money(0)

    def test_refund_beyond_capture_rejected(self, payment: Payment) -> None:
        payment.succeed("ch_1", {}, now=NOW)
        payment.refund(Money(1500), now=NOW)
        with pytest.raises(RefundExceedsCaptureError):
            payment.refund(Money(501), now=NOW)
        assert payment.refunded_amount == Money(1500)

    def test_zero_refund_rejected(self, payment: Payment) -> None:
        payment.succeed("ch_1", {}, now=NOW)
        with pytest.raises(RefundExceedsCaptureError):
            payment.refund(Money(0), now=NOW)
