"""Domain layer: offers, carts, orders, payments and their state machines."""

from marketplace.domain.entities import (
    Cart,
    CartItem,
    Offer,
    Order,
    OrderItem,
    OrderLine,
    Payment,
)
from marketplace.domain.exceptions import DomainError
from marketplace.domain.pricing import OfferResolution, effective_price, resolve_best_offer
from marketplace.domain.state_machines import (
    OfferStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    roll_up_order_status,
)
from marketplace.domain.value_objects import (
    Actor,
    ActorRole,
    Address,
    Deal,
    Money,
    OfferCondition,
    ProductRef,
)

__all__ = [
    "Actor",
    "ActorRole",
    "Address",
    "Cart",
    "CartItem",
    "Deal",
    "DomainError",
    "Money",
    "Offer",
    "OfferCondition",
    "OfferResolution",
    "OfferStatus",
    "Order",
    "OrderItem",
    "OrderLine",
    "OrderStatus",
    "OrderItemStatus",
    "Payment",
    "PaymentStatus",
    "ProductRef",
    "effective_price",
    "resolve_best_offer",
    "roll_up_order_status",
]
