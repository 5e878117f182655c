"""shop orders, one wallet voucher per template per user

Revision ID: 0002_shop_orders
Revises: 0001_initial
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0002_shop_orders"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "shop_orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=30), nullable=False),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("subtotal", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="placed"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_shop_orders_order_number", "shop_orders", ["order_number"], unique=True)
    op.create_index("ix_shop_orders_booking_id", "shop_orders", ["booking_id"], unique=True)
    op.create_index("ix_shop_orders_user_id", "shop_orders", ["user_id"])

    op.create_table(
        "shop_order_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("title_snapshot", sa.String(length=300), nullable=False, server_default=""),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("line_total", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_shop_order_items_order_id", "shop_order_items", ["order_id"])

    with op.batch_alter_table("user_vouchers") as batch:
        batch.create_unique_constraint("uq_user_voucher_owner", ["user_id", "voucher_id"])


def downgrade():
    with op.batch_alter_table("user_vouchers") as batch:
        batch.drop_constraint("uq_user_voucher_owner", type_="unique")
    op.drop_table("shop_order_items")
    op.drop_table("shop_orders")
