"""API schemas.

Pydantic models for request/response validation and serialization.
Money is always an integer amount in minor units plus a currency code.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from marketplace.domain.state_machines import (
    OfferStatus,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
)
from marketplace.domain.value_objects import Money, OfferCondition
from marketplace.infrastructure.config import settings


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., ge=0, description="Amount in minor currency units")
    currency: str = Field(
        default_factory=lambda: settings.default_currency,
        min_length=3,
        max_length=3,
        description="ISO currency code",
    )

    @classmethod
    def from_money(cls, money: Money) -> "PriceSchema":
        return cls(amount=money.amount_cents, currency=money.currency)

    def to_money(self) -> Money:
        return Money(self.amount, self.currency.upper())


class ErrorResponse(BaseModel):
    """Standard error response."""

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Error context")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Offer Schemas
# ============================================================================


class OfferCreateRequest(BaseModel):
    """Request to list a product."""

    product_id: str = Field(..., min_length=1)
    price: PriceSchema
    stock_quantity: int = Field(default=0, ge=0)
    condition: OfferCondition = OfferCondition.NEW
    status: OfferStatus = OfferStatus.ACTIVE
    deal_price: PriceSchema | None = None
    deal_starts_at: datetime | None = None
    deal_ends_at: datetime | None = None


class OfferUpdateRequest(BaseModel):
    """Partial offer update.

    Deal fields are replaced together: sending any of them sets the
    deal from all three, and sending all three as null removes it.
    """

    price: PriceSchema | None = None
    condition: OfferCondition | None = None
    status: OfferStatus | None = None
    deal_price: PriceSchema | None = None
    deal_starts_at: datetime | None = None
    deal_ends_at: datetime | None = None

    @property
    def touches_deal(self) -> bool:
        return bool({"deal_price", "deal_starts_at", "deal_ends_at"} & self.model_fields_set)


class StockAdjustRequest(BaseModel):
    """Relative stock correction."""

    delta: int = Field(..., description="Units to add (positive) or remove (negative)")


class StockResponse(BaseModel):
    offer_id: str
    stock_quantity: int


class DealSchema(BaseModel):
    price: PriceSchema
    starts_at: datetime
    ends_at: datetime


class OfferResponse(BaseModel):
    """Offer details."""

    id: str
    product_id: str
    seller_id: str
    price: PriceSchema
    stock_quantity: int
    condition: OfferCondition
    status: OfferStatus
    deal: DealSchema | None = None
    created_at: datetime
    updated_at: datetime


class BestOfferResponse(BaseModel):
    """Offer and price shown for a product."""

    product_id: str
    offer: OfferResponse | None = None
    effective_price: PriceSchema | None = None
    is_deal_active: bool = False
    purchasable: bool = False


# ============================================================================
# Cart Schemas
# ============================================================================


class CartItemAddRequest(BaseModel):
    offer_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, description="Units to add")


class CartItemUpdateRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; 0 removes the line")


class CartLineSchema(BaseModel):
    """Cart line with its add-time price and the current offer state."""

    offer_id: str
    product_id: str | None = None
    seller_id: str | None = None
    quantity: int
    unit_price_at_add: PriceSchema
    current_price: PriceSchema | None = None
    is_deal_active: bool = False
    available_stock: int = 0
    available: bool = False
    line_total: PriceSchema


class CartResponse(BaseModel):
    owner_id: str
    is_guest: bool
    items: list[CartLineSchema]
    item_count: int
    subtotal: PriceSchema | None = None


class CartItemResponse(BaseModel):
    offer_id: str
    quantity: int
    unit_price_at_add: PriceSchema
    added_at: datetime


class GuestCartLine(BaseModel):
    """A guest line held on the client device."""

    offer_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class CartMergeRequest(BaseModel):
    """Merge a guest cart into the signed-in user's cart.

    Lines come either from the request body or from the guest store
    for ``guest_token``.
    """

    guest_token: str | None = None
    items: list[GuestCartLine] | None = None
    merge_key: str | None = Field(default=None, description="Login transition identifier")


class DroppedLineSchema(BaseModel):
    offer_id: str
    quantity: int
    error_code: str
    message: str


class CartMergeResponse(BaseModel):
    user_id: str
    already_merged: bool
    merged: list[CartItemResponse]
    dropped: list[DroppedLineSchema]


# ============================================================================
# Order Schemas
# ============================================================================


class CheckoutRequest(BaseModel):
    address_id: str = Field(..., min_length=1, description="Saved address to ship to")


class AddressSchema(BaseModel):
    id: str
    recipient_name: str
    line1: str
    line2: str | None = None
    city: str
    state: str | None = None
    postal_code: str
    country: str
    phone: str | None = None


class OrderItemSchema(BaseModel):
    id: str
    offer_id: str
    product_id: str
    seller_id: str
    quantity: int
    price_at_purchase: PriceSchema
    line_total: PriceSchema
    status: OrderItemStatus
    tracking_number: str | None = None
    shipping_carrier: str | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    return_reason: str | None = None
    refunded_at: datetime | None = None


class StatusHistorySchema(BaseModel):
    item_id: str | None = None
    from_status: str | None = None
    to_status: str
    reason: str | None = None
    actor: str | None = None
    created_at: str | None = None


class PaymentSchema(BaseModel):
    id: str
    status: PaymentStatus
    amount: PriceSchema
    refunded_amount: PriceSchema | None = None
    gateway_payment_id: str


class OrderResponse(BaseModel):
    """Order details."""

    id: str
    user_id: str
    status: OrderStatus
    total: PriceSchema
    shipping_address: AddressSchema
    items: list[OrderItemSchema]
    cancel_reason: str | None = None
    payment: PaymentSchema | None = None
    status_history: list[StatusHistorySchema] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class OrderSummarySchema(BaseModel):
    id: str
    status: OrderStatus
    total: PriceSchema
    item_count: int
    created_at: datetime


class OrdersListResponse(PaginatedResponse):
    items: list[OrderSummarySchema]


class OrderCancelRequest(BaseModel):
    reason: str = Field(default="cancelled by customer", max_length=500)


class ReturnRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    item_ids: list[str] | None = Field(
        default=None, description="Items to return; all delivered items when omitted"
    )


class ReturnRejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ItemStatusUpdateRequest(BaseModel):
    """Seller fulfillment update."""

    status: OrderItemStatus
    tracking_number: str | None = None
    carrier: str | None = None


# ============================================================================
# Payment Schemas
# ============================================================================


class PaymentIntentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)


class PaymentIntentResponse(BaseModel):
    payment_id: str
    order_id: str
    gateway_payment_id: str
    client_secret: str | None
    amount: PriceSchema
    status: PaymentStatus
    created: bool


class WebhookResponse(BaseModel):
    """Response to a webhook delivery."""

    success: bool
    event_id: str | None = None
    status: str = Field(..., description="processed, duplicate or ignored")
    message: str = ""
