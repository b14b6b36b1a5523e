"""create accounts, credit ledger, creations and payment schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(), server_default="user", nullable=False),
        sa.Column("plan", sa.String(), server_default="FREE", nullable=False),
        sa.Column("credits", sa.Integer(), server_default="0", nullable=False),
        sa.Column("pro_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pro_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("daily_usage_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_reset_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        sa.CheckConstraint("plan IN ('FREE', 'PAY_PER_USE', 'PRO')", name="ck_users_plan"),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_plan"), "users", ["plan"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("change", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.CheckConstraint(
            "reason IN ('INITIAL_FREE', 'DOWNLOAD', 'ONE_OFF_PURCHASE', 'SUBSCRIPTION_MONTHLY')",
            name="ck_credit_transactions_reason",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_credit_transactions_user_id"), "credit_transactions", ["user_id"], unique=False)
    op.create_index(op.f("ix_credit_transactions_created_at"), "credit_transactions", ["created_at"], unique=False)

    op.create_table(
        "creations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("html", sa.Text(), nullable=False),
        sa.Column("original_image", sa.Text(), nullable=True),
        sa.Column("mode", sa.String(), server_default="web", nullable=False),
        sa.Column("purchased", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("mode IN ('web', 'mobile', 'social', 'logo')", name="ck_creations_mode"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_creations_user_id"), "creations", ["user_id"], unique=False)
    op.create_index(op.f("ix_creations_created_at"), "creations", ["created_at"], unique=False)

    op.create_table(
        "payment_sessions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("gateway", sa.String(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("provider_reference", sa.String(), nullable=True),
        sa.Column("purchase_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payment_sessions_user_id"), "payment_sessions", ["user_id"], unique=False)
    op.create_index(op.f("ix_payment_sessions_gateway"), "payment_sessions", ["gateway"], unique=False)
    op.create_index(op.f("ix_payment_sessions_order_id"), "payment_sessions", ["order_id"], unique=True)
    op.create_index(
        op.f("ix_payment_sessions_provider_reference"), "payment_sessions", ["provider_reference"], unique=False
    )
    op.create_index(op.f("ix_payment_sessions_status"), "payment_sessions", ["status"], unique=False)
    op.create_index(op.f("ix_payment_sessions_created_at"), "payment_sessions", ["created_at"], unique=False)

    op.create_table(
        "processed_events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index(op.f("ix_processed_events_user_id"), "processed_events", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_processed_events_user_id"), table_name="processed_events")
    op.drop_table("processed_events")
    op.drop_index(op.f("ix_payment_sessions_created_at"), table_name="payment_sessions")
    op.drop_index(op.f("ix_payment_sessions_status"), table_name="payment_sessions")
    op.drop_index(op.f("ix_payment_sessions_provider_reference"), table_name="payment_sessions")
    op.drop_index(op.f("ix_payment_sessions_order_id"), table_name="payment_sessions")
    op.drop_index(op.f("ix_payment_sessions_gateway"), table_name="payment_sessions")
    op.drop_index(op.f("ix_payment_sessions_user_id"), table_name="payment_sessions")
    op.drop_table("payment_sessions")
    op.drop_index(op.f("ix_creations_created_at"), table_name="creations")
    op.drop_index(op.f("ix_creations_user_id"), table_name="creations")
    op.drop_table("creations")
    op.drop_index(op.f("ix_credit_transactions_created_at"), table_name="credit_transactions")
    op.drop_index(op.f("ix_credit_transactions_user_id"), table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index(op.f("ix_users_plan"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
