"""Create return, refund and exchange reconciliation tables

Revision ID: b7e3a91c4d20
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b7e3a91c4d20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


order_status = sa.Enum("PENDING", "COMPLETED", "CANCELLED", name="orderstatus")
return_type = sa.Enum("DEFECTIVE", "DAMAGED", "WRONG_ITEM", "UNWANTED", "OTHER", name="returntype")
return_status = sa.Enum(
    "PENDING", "APPROVED", "REJECTED", "PROCESSED", "COMPLETED", "REFUNDED", name="returnstatus"
)
refund_method = sa.Enum("CASH", "CARD", "BKASH", "NAGAD", "EXCHANGE_CREDIT", name="refundmethod")
refund_status = sa.Enum("PENDING", "PROCESSED", "COMPLETED", name="refundstatus")
exchange_status = sa.Enum(
    "STARTED", "RETURN_COMPLETED", "REFUNDED", "ORDER_CREATED", "COMPLETED", "INCOMPLETE",
    name="exchangestatus",
)


def upgrade() -> None:
    op.create_table(
        "stock_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_stock_batches_id"), "stock_batches", ["id"], unique=False)
    op.create_index(op.f("ix_stock_batches_product_id"), "stock_batches", ["product_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(length=50), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("paid_amount", sa.Integer(), nullable=False),
        sa.Column("status", order_status, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_orders_id"), "orders", ["id"], unique=False)
    op.create_index(op.f("ix_orders_order_number"), "orders", ["order_number"], unique=True)
    op.create_index(op.f("ix_orders_customer_id"), "orders", ["customer_id"], unique=False)
    op.create_index(op.f("ix_orders_status"), "orders", ["status"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["stock_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_order_items_id"), "order_items", ["id"], unique=False)
    op.create_index(op.f("ix_order_items_order_id"), "order_items", ["order_id"], unique=False)

    op.create_table(
        "return_cases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_number", sa.String(length=50), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("return_type", return_type, nullable=False),
        sa.Column("return_reason", sa.Text(), nullable=False),
        sa.Column("status", return_status, nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("total_return_value", sa.Integer(), nullable=False),
        sa.Column("total_refund_amount", sa.Integer(), nullable=False),
        sa.Column("processing_fee", sa.Integer(), nullable=False),
        sa.Column("quality_check_passed", sa.Boolean(), nullable=True),
        sa.Column("quality_check_notes", sa.Text(), nullable=True),
        sa.Column("customer_notes", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("degraded_barcodes", sa.Boolean(), nullable=False),
        sa.Column("inventory_restored_at", sa.DateTime(), nullable=True),
        sa.Column("inventory_warnings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_return_cases_id"), "return_cases", ["id"], unique=False)
    op.create_index(op.f("ix_return_cases_return_number"), "return_cases", ["return_number"], unique=True)
    op.create_index(op.f("ix_return_cases_order_id"), "return_cases", ["order_id"], unique=False)
    op.create_index(op.f("ix_return_cases_status"), "return_cases", ["status"], unique=False)
    op.create_index(op.f("ix_return_cases_created_at"), "return_cases", ["created_at"], unique=False)

    op.create_table(
        "unit_barcodes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=120), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=False),
        sa.Column("synthetic", sa.Boolean(), nullable=False),
        sa.Column("returned", sa.Boolean(), nullable=False),
        sa.Column("returned_at", sa.DateTime(), nullable=True),
        sa.Column("return_case_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.ForeignKeyConstraint(["return_case_id"], ["return_cases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_unit_barcodes_id"), "unit_barcodes", ["id"], unique=False)
    op.create_index(op.f("ix_unit_barcodes_code"), "unit_barcodes", ["code"], unique=True)
    op.create_index(op.f("ix_unit_barcodes_order_item_id"), "unit_barcodes", ["order_item_id"], unique=False)
    op.create_index(op.f("ix_unit_barcodes_return_case_id"), "unit_barcodes", ["return_case_id"], unique=False)

    op.create_table(
        "return_case_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_case_id", sa.Integer(), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=False),
        sa.Column("quantity_returned", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["return_case_id"], ["return_cases.id"]),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_return_case_items_id"), "return_case_items", ["id"], unique=False)
    op.create_index(op.f("ix_return_case_items_return_case_id"), "return_case_items", ["return_case_id"], unique=False)
    op.create_index(op.f("ix_return_case_items_order_item_id"), "return_case_items", ["order_item_id"], unique=False)

    op.create_table(
        "return_status_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_case_id", sa.Integer(), nullable=False),
        sa.Column("old_status", sa.String(length=50), nullable=True),
        sa.Column("new_status", sa.String(length=50), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["return_case_id"], ["return_cases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_return_status_history_id"), "return_status_history", ["id"], unique=False)
    op.create_index(
        op.f("ix_return_status_history_return_case_id"), "return_status_history", ["return_case_id"], unique=False
    )

    op.create_table(
        "exchange_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("status", exchange_status, nullable=False),
        sa.Column("return_case_id", sa.Integer(), nullable=True),
        sa.Column("refund_id", sa.Integer(), nullable=True),
        sa.Column("new_order_id", sa.Integer(), nullable=True),
        sa.Column("replacement_items", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["return_case_id"], ["return_cases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_exchange_attempts_id"), "exchange_attempts", ["id"], unique=False)
    op.create_index(op.f("ix_exchange_attempts_order_id"), "exchange_attempts", ["order_id"], unique=False)
    op.create_index(op.f("ix_exchange_attempts_status"), "exchange_attempts", ["status"], unique=False)

    op.create_table(
        "exchange_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("attempt_id", sa.Integer(), nullable=False),
        sa.Column("return_case_id", sa.Integer(), nullable=False),
        sa.Column("new_order_id", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("refund_amount", sa.Integer(), nullable=False),
        sa.Column("new_order_total", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["attempt_id"], ["exchange_attempts.id"]),
        sa.ForeignKeyConstraint(["return_case_id"], ["return_cases.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("attempt_id"),
        sa.UniqueConstraint("return_case_id"),
    )
    op.create_index(op.f("ix_exchange_records_id"), "exchange_records", ["id"], unique=False)

    op.create_table(
        "refund_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_case_id", sa.Integer(), nullable=False),
        sa.Column("exchange_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("method", refund_method, nullable=False),
        sa.Column("status", refund_status, nullable=False),
        sa.Column("transaction_reference", sa.String(length=120), nullable=True),
        sa.Column("denominations", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["return_case_id"], ["return_cases.id"]),
        sa.ForeignKeyConstraint(["exchange_id"], ["exchange_records.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_refund_records_id"), "refund_records", ["id"], unique=False)
    op.create_index(op.f("ix_refund_records_return_case_id"), "refund_records", ["return_case_id"], unique=False)
    op.create_index(op.f("ix_refund_records_exchange_id"), "refund_records", ["exchange_id"], unique=False)
    op.create_index(op.f("ix_refund_records_status"), "refund_records", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("refund_records")
    op.drop_table("exchange_records")
    op.drop_table("exchange_attempts")
    op.drop_table("return_status_history")
    op.drop_table("return_case_items")
    op.drop_table("unit_barcodes")
    op.drop_table("return_cases")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("stock_batches")

    bind = op.get_bind()
    for enum_type in (exchange_status, refund_status, refund_method, return_status, return_type, order_status):
        enum_type.drop(bind, checkfirst=True)
