"""create products, orders, order items, stock reservations and payment events

Revision ID: 3b1f0c2a9d47
Revises:
Create Date: 2026-10-19 10:12:31.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1f0c2a9d47'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default="10"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_product_sku", "product", ["sku"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("payment_status", sa.String(32), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("payment_id", sa.String(128), nullable=True),
        _ts("reservation_expires_at"),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax", sa.Numeric(10, 2), nullable=False),
        sa.Column("total", sa.Numeric(10, 2), nullable=False),
        sa.Column("customer_email", sa.String(320), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("shipping_method", sa.String(32), nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("review_reason", sa.String(64), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        _ts("paid_at"),
        _ts("shipped_at"),
        _ts("delivered_at"),
        _ts("cancelled_at"),
    )
    op.create_index("ix_orders_public_id", "orders", ["public_id"], unique=True)
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_payment_status", "orders", ["payment_status"])
    op.create_index("ix_orders_customer_email", "orders", ["customer_email"])
    op.create_index("ix_orders_review_reason", "orders", ["review_reason"])

    op.create_table(
        "orderitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sku", sa.String(128), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.UniqueConstraint("order_id", "product_id", name="uq_order_product"),
    )
    op.create_index("ix_orderitem_order_id", "orderitem", ["order_id"])

    op.create_table(
        "stockreservation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        _ts("expires_at", nullable=False),
        _ts("released_at"),
        sa.Column("release_reason", sa.String(32), nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_stockreservation_order_id", "stockreservation", ["order_id"])
    op.create_index("ix_stockreservation_product_id", "stockreservation", ["product_id"])
    op.create_index("ix_stockreservation_status", "stockreservation", ["status"])
    op.create_index("ix_stockreservation_expires_at", "stockreservation", ["expires_at"])
    op.create_index(
        "uq_reservation_active_order_product",
        "stockreservation",
        ["order_id", "product_id"],
        unique=True,
        postgresql_where=sa.text("status = 'reserved'"),
        sqlite_where=sa.text("status = 'reserved'"),
    )

    op.create_table(
        "paymentevent",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=True),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("provider_event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("processed_at"),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("provider_event_id", name="paymentevent_provider_event_id_key"),
    )
    op.create_index("ix_paymentevent_order_id", "paymentevent", ["order_id"])
    op.create_index("ix_paymentevent_provider", "paymentevent", ["provider"])
    op.create_index("ix_paymentevent_processed_at", "paymentevent", ["processed_at"])


def downgrade():
    op.drop_table("paymentevent")
    op.drop_index("uq_reservation_active_order_product", table_name="stockreservation")
    op.drop_table("stockreservation")
    op.drop_table("orderitem")
    op.drop_table("orders")
    op.drop_table("product")
