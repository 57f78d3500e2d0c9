"""Domain exceptions.

All domain-level errors that represent business rule violations.
Each error carries a machine-readable ``error_code`` and the HTTP status
the API surfaces it with.
"""

from typing import Any, ClassVar


class DomainError(Exception):
    """Base class for all domain exceptions."""

    error_code: ClassVar[str] = "DOMAIN_ERROR"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PermissionDeniedError(DomainError):
    """Raised when an actor is not allowed to perform an action."""

    error_code = "PERMISSION_DENIED"
    status_code = 403

    def __init__(self, actor_id: str, action: str, resource_id: str) -> None:
        super().__init__(
            f"Actor {actor_id} is not allowed to {action} {resource_id}",
            details={"actor_id": actor_id, "action": action, "resource_id": resource_id},
        )


class ConcurrentUpdateError(DomainError):
    """Raised when an aggregate was changed by someone else after it was loaded."""

    error_code = "CONCURRENT_UPDATE"
    status_code = 409

    def __init__(
        self, entity_type: str, entity_id: str, expected_version: int, actual_version: int
    ) -> None:
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(loaded version {expected_version}, stored version {actual_version})",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidTransitionError(DomainError):
    """Raised when an out-of-order status change is requested.

    The request is rejected, never silently ignored.
    """

    error_code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid transition error.

        Args:
            entity_type: Type of entity (e.g., "OrderItem", "Payment").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: Allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class ReturnWindowExpiredError(DomainError):
    """Raised when a return is requested after the return window closed."""

    error_code = "RETURN_WINDOW_EXPIRED"
    status_code = 409

    def __init__(self, item_id: str, delivered_at: str, window_days: int) -> None:
        super().__init__(
            f"Return window of {window_days} days for item {item_id} has expired",
            details={
                "item_id": item_id,
                "delivered_at": delivered_at,
                "window_days": window_days,
            },
        )


class ShipmentDetailsRequiredError(DomainError):
    """Raised when an item is shipped without tracking details."""

    error_code = "SHIPMENT_DETAILS_REQUIRED"
    status_code = 422

    def __init__(self, item_id: str) -> None:
        super().__init__(
            f"Tracking number and shipping carrier are required to ship item {item_id}",
            details={"item_id": item_id},
        )


# ============================================================================
# Offer Errors
# ============================================================================


class OfferError(DomainError):
    """Base class for offer-related errors."""

    pass


class InvalidOfferError(OfferError):
    """Raised when an offer write would violate a price or deal invariant."""

    error_code = "INVALID_OFFER"
    status_code = 422


class OfferNotFoundError(OfferError):
    """Raised when an offer does not exist."""

    error_code = "OFFER_NOT_FOUND"
    status_code = 404

    def __init__(self, offer_id: str) -> None:
        super().__init__(f"Offer {offer_id} not found", details={"offer_id": offer_id})


class ProductNotFoundError(OfferError):
    """Raised when a catalog product does not exist."""

    error_code = "PRODUCT_NOT_FOUND"
    status_code = 404

    def __init__(self, product_id: str) -> None:
        super().__init__(
            f"Product {product_id} not found", details={"product_id": product_id}
        )


# ============================================================================
# Cart Errors
# ============================================================================


class CartError(DomainError):
    """Base class for cart-related errors."""

    pass


class InvalidQuantityError(CartError):
    """Raised when an invalid quantity is provided."""

    error_code = "INVALID_QUANTITY"
    status_code = 422

    def __init__(self, quantity: int, reason: str = "Quantity must be positive") -> None:
        super().__init__(
            f"Invalid quantity {quantity}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


class CartItemNotFoundError(CartError):
    """Raised when a cart has no line for the given offer."""

    error_code = "CART_ITEM_NOT_FOUND"
    status_code = 404

    def __init__(self, owner_id: str, offer_id: str) -> None:
        super().__init__(
            f"Offer {offer_id} is not in the cart of {owner_id}",
            details={"owner_id": owner_id, "offer_id": offer_id},
        )


# ============================================================================
# Checkout Errors
# ============================================================================


class CheckoutError(DomainError):
    """Base class for checkout-time errors.

    Surfaced directly to the shopper, who must change the cart or
    address and resubmit.
    """

    status_code = 409


class EmptyCartError(CheckoutError):
    """Raised when checking out an empty cart."""

    error_code = "EMPTY_CART"
    status_code = 422

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"Cart of user {user_id} is empty", details={"user_id": user_id}
        )


class AddressNotFoundError(CheckoutError):
    """Raised when an address is missing or not owned by the shopper."""

    error_code = "ADDRESS_NOT_FOUND"
    status_code = 404

    def __init__(self, address_id: str, user_id: str) -> None:
        super().__init__(
            f"Address {address_id} not found for user {user_id}",
            details={"address_id": address_id, "user_id": user_id},
        )


class OfferUnavailableError(CheckoutError):
    """Raised when an offer was deleted or deactivated."""

    error_code = "OFFER_UNAVAILABLE"

    def __init__(self, offer_id: str, product_id: str | None, reason: str) -> None:
        """Initialize offer unavailable error.

        Args:
            offer_id: Offer referenced by the cart line.
            product_id: Product of the offer, when still known.
            reason: Either "deleted" or "inactive".
        """
        super().__init__(
            f"Offer {offer_id} is no longer available ({reason})",
            details={"offer_id": offer_id, "product_id": product_id, "reason": reason},
        )
        self.offer_id = offer_id


class InsufficientStockError(CheckoutError):
    """Raised when an offer cannot cover the requested quantity."""

    error_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        offer_id: str,
        requested: int,
        available: int,
        product_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Offer {offer_id} has {available} in stock, {requested} requested",
            details={
                "offer_id": offer_id,
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.offer_id = offer_id


# ============================================================================
# Order Errors
# ============================================================================


class OrderNotFoundError(DomainError):
    """Raised when an order does not exist or is not visible to the actor."""

    error_code = "ORDER_NOT_FOUND"
    status_code = 404

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found", details={"order_id": order_id})


class OrderItemNotFoundError(DomainError):
    """Raised when an order item does not exist."""

    error_code = "ORDER_ITEM_NOT_FOUND"
    status_code = 404

    def __init__(self, item_id: str) -> None:
        super().__init__(
            f"Order item {item_id} not found", details={"item_id": item_id}
        )


# ============================================================================
# Payment Errors
# ============================================================================


class PaymentError(DomainError):
    """Base class for payment-related errors."""

    status_code = 409


class PaymentIntentConflictError(PaymentError):
    """Raised when an order already has a payment that is not retryable."""

    error_code = "PAYMENT_INTENT_CONFLICT"

    def __init__(self, order_id: str, payment_id: str, current_status: str) -> None:
        super().__init__(
            f"Order {order_id} already has payment {payment_id} in status '{current_status}'",
            details={
                "order_id": order_id,
                "payment_id": payment_id,
                "current_status": current_status,
            },
        )


class PaymentNotFoundError(PaymentError):
    """Raised when no payment matches an order or gateway reference."""

    error_code = "PAYMENT_NOT_FOUND"
    status_code = 404

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"No payment found for {reference}", details={"reference": reference}
        )


class RefundExceedsCaptureError(PaymentError):
    """Raised when a refund would exceed the captured amount."""

    error_code = "REFUND_EXCEEDS_CAPTURE"

    def __init__(self, payment_id: str, requested: int, refundable: int) -> None:
        super().__init__(
            f"Cannot refund {requested} on payment {payment_id}, only {refundable} refundable",
            details={
                "payment_id": payment_id,
                "requested": requested,
                "refundable": refundable,
            },
        )


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    error_code = "INVALID_AMOUNT"
    status_code = 422


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    error_code = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str) -> None:
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )
