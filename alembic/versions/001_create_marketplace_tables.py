"""Create catalog, cart, order and payment tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    """Create all marketplace tables."""
    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("base_price_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("category", sa.String(100), nullable=True, index=True),
        sa.Column("brand", sa.String(100), nullable=True, index=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "offers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "product_id",
            sa.String(36),
            sa.ForeignKey("products.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("seller_id", sa.String(100), nullable=False, index=True),
        sa.Column("price_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("stock_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("condition", sa.String(20), nullable=False, server_default="New"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active", index=True),
        # Deal: all three set or none
        sa.Column("deal_price_cents", sa.Integer, nullable=True),
        _timestamp("deal_starts_at", nullable=True),
        _timestamp("deal_ends_at", nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_offers_stock_non_negative"),
        sa.CheckConstraint(
            "(deal_price_cents IS NULL AND deal_starts_at IS NULL AND deal_ends_at IS NULL)"
            " OR (deal_price_cents IS NOT NULL AND deal_starts_at IS NOT NULL"
            " AND deal_ends_at IS NOT NULL AND deal_price_cents < price_cents)",
            name="ck_offers_deal_complete",
        ),
    )

    op.create_table(
        "cart_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(100), nullable=False, index=True),
        sa.Column("offer_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        _timestamp("added_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("owner_id", "offer_id", name="uq_cart_items_owner_offer"),
        sa.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    op.create_table(
        "cart_merges",
        sa.Column("merge_key", sa.String(200), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False, index=True),
        _timestamp("merged_at"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("total_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("shipping_address", postgresql.JSONB, nullable=False),
        sa.Column("stock_reserved", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("cancel_reason", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        _timestamp("updated_at"),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("offer_id", sa.String(36), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("seller_id", sa.String(100), nullable=False, index=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("price_at_purchase_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("shipping_carrier", sa.String(100), nullable=True),
        sa.Column("return_reason", sa.Text, nullable=True),
        _timestamp("shipped_at", nullable=True),
        _timestamp("delivered_at", nullable=True),
        _timestamp("refunded_at", nullable=True),
    )

    # Audit trail of order and item transitions
    op.create_table(
        "order_status_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("item_id", sa.String(36), nullable=True),
        sa.Column("from_status", sa.String(20), nullable=True),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("actor", sa.String(100), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id"),
            nullable=False,
            index=True,
        ),
        # Equals order_id while the attempt is live; NULL once it fails
        sa.Column("live_order_id", sa.String(36), nullable=True, unique=True),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("gateway_payment_id", sa.String(255), nullable=False, unique=True),
        sa.Column("client_secret", sa.String(255), nullable=True),
        sa.Column("gateway_transaction_id", sa.String(255), nullable=True, unique=True),
        sa.Column("gateway_response", postgresql.JSONB, nullable=True),
        sa.Column("failure_code", sa.String(100), nullable=True),
        sa.Column("failure_message", sa.Text, nullable=True),
        sa.Column("refunded_amount_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "payment_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=True, index=True),
        sa.Column("gateway_payment_id", sa.String(255), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        _timestamp("received_at"),
    )


def downgrade() -> None:
    """Drop all marketplace tables."""
    op.drop_table("payment_events")
    op.drop_table("payments")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("cart_merges")
    op.drop_table("cart_items")
    op.drop_table("offers")
    op.drop_table("products")
