"""SQLAlchemy models for database tables.

Products, offers, carts, orders with items and status history,
payments and the payment webhook event log.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from marketplace.infrastructure.database import Base

JsonType = JSON().with_variant(JSONB(), "postgresql")


class UtcDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops the offset on storage; values are re-tagged on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


# ============================================================================
# Catalog Models
# ============================================================================


class ProductModel(Base):
    """Read-only projection of a catalog product."""

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(500), nullable=False)
    base_price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    category = Column(String(100), nullable=True, index=True)
    brand = Column(String(100), nullable=True, index=True)
    created_at = Column(UtcDateTime, nullable=False, default=_now)


class OfferModel(Base):
    """One seller's listing of a product.

    ``stock_quantity`` is only changed through conditional updates.
    """

    __tablename__ = "offers"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_offers_stock_non_negative"),
        CheckConstraint(
            "(deal_price_cents IS NULL AND deal_starts_at IS NULL AND deal_ends_at IS NULL)"
            " OR (deal_price_cents IS NOT NULL AND deal_starts_at IS NOT NULL"
            " AND deal_ends_at IS NOT NULL AND deal_price_cents < price_cents)",
            name="ck_offers_deal_complete",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(
        String(36),
        ForeignKey("products.id"),
        nullable=False,
        index=True,
    )
    seller_id = Column(String(100), nullable=False, index=True)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    stock_quantity = Column(Integer, nullable=False, default=0)
    condition = Column(String(20), nullable=False, default="New")
    status = Column(String(20), nullable=False, default="active", index=True)
    deal_price_cents = Column(Integer, nullable=True)
    deal_starts_at = Column(UtcDateTime, nullable=True)
    deal_ends_at = Column(UtcDateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UtcDateTime, nullable=False, default=_now)
    updated_at = Column(UtcDateTime, nullable=False, default=_now, onupdate=_now)


# ============================================================================
# Cart Models
# ============================================================================


class CartItemModel(Base):
    """Server-held cart line of an authenticated shopper."""

    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("owner_id", "offer_id", name="uq_cart_items_owner_offer"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    owner_id = Column(String(100), nullable=False, index=True)
    offer_id = Column(String(36), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    added_at = Column(UtcDateTime, nullable=False, default=_now)
    updated_at = Column(UtcDateTime, nullable=False, default=_now, onupdate=_now)


class CartMergeModel(Base):
    """Merge keys already applied, so a retried login merges once."""

    __tablename__ = "cart_merges"

    merge_key = Column(String(200), primary_key=True)
    user_id = Column(String(100), nullable=False, index=True)
    merged_at = Column(UtcDateTime, nullable=False, default=_now)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order placed at checkout.

    The total and the shipping address are snapshots and never change.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    shipping_address = Column(JsonType, nullable=False)
    stock_reserved = Column(Boolean, nullable=False, default=True)
    cancel_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UtcDateTime, nullable=False, default=_now, index=True)
    updated_at = Column(UtcDateTime, nullable=False, default=_now)

    # Relationships
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
    )
    status_history = relationship(
        "OrderStatusHistoryModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistoryModel.sequence",
    )


class OrderItemModel(Base):
    """Per-seller line of an order.

    ``offer_id`` is a weak reference: the offer may later disappear.
    """

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    offer_id = Column(String(36), nullable=False)
    product_id = Column(String(36), nullable=False)
    seller_id = Column(String(100), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    price_at_purchase_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default="pending", index=True)
    tracking_number = Column(String(100), nullable=True)
    shipping_carrier = Column(String(100), nullable=True)
    return_reason = Column(Text, nullable=True)
    shipped_at = Column(UtcDateTime, nullable=True)
    delivered_at = Column(UtcDateTime, nullable=True)
    refunded_at = Column(UtcDateTime, nullable=True)

    # Relationships
    order = relationship("OrderModel", back_populates="items")


class OrderStatusHistoryModel(Base):
    """Audit trail of order and item status transitions."""

    __tablename__ = "order_status_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False, default=0)
    item_id = Column(String(36), nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    actor = Column(String(100), nullable=True)
    created_at = Column(UtcDateTime, nullable=False, default=_now)

    # Relationships
    order = relationship("OrderModel", back_populates="status_history")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "item_id": self.item_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
            "actor": self.actor,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ============================================================================
# Payment Models
# ============================================================================


class PaymentModel(Base):
    """One payment attempt for an order.

    ``live_order_id`` mirrors ``order_id`` until the attempt fails and is
    unique, so an order never has two live payments.
    """

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(
        String(36),
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
    )
    live_order_id = Column(String(36), nullable=True, unique=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default="pending", index=True)
    gateway_payment_id = Column(String(255), nullable=False, unique=True)
    client_secret = Column(String(255), nullable=True)
    gateway_transaction_id = Column(String(255), nullable=True, unique=True)
    gateway_response = Column(JsonType, nullable=True)
    failure_code = Column(String(100), nullable=True)
    failure_message = Column(Text, nullable=True)
    refunded_amount_cents = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UtcDateTime, nullable=False, default=_now)
    updated_at = Column(UtcDateTime, nullable=False, default=_now)


class PaymentEventModel(Base):
    """Payment webhook events already applied, for replay detection."""

    __tablename__ = "payment_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    order_id = Column(String(36), nullable=True, index=True)
    gateway_payment_id = Column(String(255), nullable=True)
    outcome = Column(String(20), nullable=False)
    received_at = Column(UtcDateTime, nullable=False, default=_now)
