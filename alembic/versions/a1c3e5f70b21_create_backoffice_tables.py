"""create back office tables

Revision ID: a1c3e5f70b21
Revises:
Create Date: 2026-10-17 09:12:04.318552
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f70b21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists enum member names
creator_status = sa.Enum("ACTIVE", "INACTIVE", name="creator_status")
order_status = sa.Enum("PENDING", "CONFIRMED", "REFUNDED", "CANCELED", name="order_status")
commission_status = sa.Enum("PENDING", "LOCKED", "PAYABLE", "PAID", "CANCELED", name="commission_status")
ledger_transaction_type = sa.Enum(
    "COMMISSION_EARNED",
    "COMMISSION_CANCELED",
    "PAYOUT_SENT",
    "PAYOUT_FEE",
    "ADJUSTMENT",
    name="ledger_transaction_type",
)
idempotency_status = sa.Enum("PROCESSING", "COMPLETED", "FAILED", name="idempotency_status")
payout_batch_phase = sa.Enum("DRAFT", "APPROVED", "EXECUTING", name="payout_batch_phase")
payout_item_status = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", "SKIPPED", name="payout_item_status")


def upgrade() -> None:
    op.create_table(
        "admins",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_superadmin", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_admins_id"), "admins", ["id"], unique=False)
    op.create_index(op.f("ix_admins_email"), "admins", ["email"], unique=True)

    op.create_table(
        "creators",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("commission_rate", sa.Numeric(precision=5, scale=4), nullable=False),
        sa.Column("discount_code", sa.String(length=100), nullable=True, unique=True),
        sa.Column("status", creator_status, nullable=False),
        sa.Column("payout_destination", sa.String(length=100), nullable=True),
        sa.Column("bank_verified", sa.Boolean(), nullable=False),
        sa.Column("ledger_frozen", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_creators_id"), "creators", ["id"], unique=False)

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("cart_token", sa.String(length=255), nullable=False, unique=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id"), nullable=True),
        sa.Column("routine_id", sa.String(length=100), nullable=True),
        sa.Column("variant", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_checkout_sessions_id"), "checkout_sessions", ["id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_order_id", sa.String(length=100), nullable=False, unique=True),
        sa.Column("order_number", sa.String(length=50), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("subtotal_amount", sa.Numeric(precision=12, scale=2), server_default=sa.text("0"), nullable=False),
        sa.Column("total_amount", sa.Numeric(precision=12, scale=2), server_default=sa.text("0"), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("discount_code", sa.String(length=100), nullable=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id"), nullable=True),
        sa.Column("routine_id", sa.String(length=100), nullable=True),
        sa.Column("routine_variant", sa.String(length=100), nullable=True),
        sa.Column("attribution_source", sa.String(length=30), nullable=True),
        sa.Column("attribution_priority", sa.Integer(), nullable=False),
        sa.Column("status", order_status, nullable=False),
        sa.Column("order_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_orders_id"), "orders", ["id"], unique=False)
    op.create_index(op.f("ix_orders_creator_id"), "orders", ["creator_id"], unique=False)

    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, unique=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id"), nullable=False),
        sa.Column("order_total", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(precision=5, scale=4), nullable=False),
        sa.Column("commission_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("status", commission_status, nullable=False),
        sa.Column("lock_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("routine_id", sa.String(length=100), nullable=True),
        sa.Column("routine_variant", sa.String(length=100), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_commissions_id"), "commissions", ["id"], unique=False)
    op.create_index(op.f("ix_commissions_creator_id"), "commissions", ["creator_id"], unique=False)
    op.create_index(op.f("ix_commissions_status"), "commissions", ["status"], unique=False)

    op.create_table(
        "financial_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id"), nullable=False),
        sa.Column("entry_number", sa.Integer(), nullable=False),
        sa.Column("transaction_type", ledger_transaction_type, nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("balance_after", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("reference_type", sa.String(length=50), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint("creator_id", "entry_number", name="uq_financial_ledger_creator_entry"),
    )
    op.create_index(op.f("ix_financial_ledger_id"), "financial_ledger", ["id"], unique=False)
    op.create_index(op.f("ix_financial_ledger_creator_id"), "financial_ledger", ["creator_id"], unique=False)

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False, unique=True),
        sa.Column("operation_type", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=True),
        sa.Column("status", idempotency_status, nullable=False),
        sa.Column("response_data", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_idempotency_keys_id"), "idempotency_keys", ["id"], unique=False)

    op.create_table(
        "payout_batches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("phase", payout_batch_phase, nullable=False),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_by", sa.String(length=255), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_payout_batches_id"), "payout_batches", ["id"], unique=False)

    op.create_table(
        "payout_batch_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("batch_id", sa.Integer(), sa.ForeignKey("payout_batches.id", ondelete="CASCADE"), nullable=False),
        sa.Column("commission_id", sa.Integer(), sa.ForeignKey("commissions.id"), nullable=False),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id"), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("fee", sa.Numeric(precision=12, scale=2), server_default=sa.text("0"), nullable=False),
        sa.Column("net_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("status", payout_item_status, nullable=False),
        sa.Column("transfer_id", sa.String(length=255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint("batch_id", "commission_id", name="uq_payout_batch_items_batch_commission"),
    )
    op.create_index(op.f("ix_payout_batch_items_id"), "payout_batch_items", ["id"], unique=False)
    op.create_index(op.f("ix_payout_batch_items_batch_id"), "payout_batch_items", ["batch_id"], unique=False)
    op.create_index(op.f("ix_payout_batch_items_commission_id"), "payout_batch_items", ["commission_id"], unique=False)
    op.create_index(op.f("ix_payout_batch_items_creator_id"), "payout_batch_items", ["creator_id"], unique=False)

    op.create_table(
        "creator_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("creators.id"), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("ledger_entry_id", sa.Integer(), sa.ForeignKey("financial_ledger.id"), nullable=True, unique=True),
        sa.Column("read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_creator_notifications_id"), "creator_notifications", ["id"], unique=False)
    op.create_index(op.f("ix_creator_notifications_creator_id"), "creator_notifications", ["creator_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("resource_type", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(op.f("ix_audit_logs_id"), "audit_logs", ["id"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("creator_notifications")
    op.drop_table("payout_batch_items")
    op.drop_table("payout_batches")
    op.drop_table("idempotency_keys")
    op.drop_table("financial_ledger")
    op.drop_table("commissions")
    op.drop_table("orders")
    op.drop_table("checkout_sessions")
    op.drop_table("creators")
    op.drop_table("admins")

    bind = op.get_bind()
    for enum_type in (
        payout_item_status,
        payout_batch_phase,
        idempotency_status,
        ledger_transaction_type,
        commission_status,
        order_status,
        creator_status,
    ):
        enum_type.drop(bind, checkfirst=True)
