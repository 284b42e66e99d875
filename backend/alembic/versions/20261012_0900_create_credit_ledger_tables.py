"""Create credit ledger tables.

Revision ID: 20261012_0900
Revises: None
Create Date: 2026-10-12 09:00:00.000000

Tables: credit_accounts, credit_transactions, promo_codes,
promo_redemptions, checkout_sessions, processed_webhook_events
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers
revision: str = "20261012_0900"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_TYPES = ("purchase", "usage", "free_grant", "bonus", "adjustment", "refund")
CHECKOUT_STATUSES = ("created", "awaiting_payment", "completed", "failed", "expired")


def upgrade() -> None:
    transaction_type = postgresql.ENUM(*TRANSACTION_TYPES, name="credit_transaction_type")
    checkout_status = postgresql.ENUM(*CHECKOUT_STATUSES, name="checkout_status")
    transaction_type.create(op.get_bind(), checkfirst=True)
    checkout_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "credit_accounts",
        sa.Column("tenant_id", sa.String(64), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lifetime_spent", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        # Integrity freeze
        sa.Column("frozen", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("frozen_reason", sa.Text(), nullable=True),
        sa.Column("frozen_at", sa.DateTime(timezone=True), nullable=True),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        sa.CheckConstraint("lifetime_earned >= 0", name="ck_credit_accounts_earned_non_negative"),
        sa.CheckConstraint("lifetime_spent >= 0", name="ck_credit_accounts_spent_non_negative"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(64),
            sa.ForeignKey("credit_accounts.tenant_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column(
            "transaction_type",
            postgresql.ENUM(name="credit_transaction_type", create_type=False),
            nullable=False,
        ),
        sa.Column("action_type", sa.String(64), nullable=True),
        sa.Column("reference_id", sa.String(255), nullable=True),
        sa.Column("reference_type", sa.String(64), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("tenant_id", "sequence", name="uq_credit_transactions_tenant_sequence"),
        sa.CheckConstraint("amount <> 0", name="ck_credit_transactions_amount_non_zero"),
        sa.CheckConstraint(
            "balance_after >= 0", name="ck_credit_transactions_balance_after_non_negative"
        ),
    )
    op.create_index("ix_credit_transactions_tenant_id", "credit_transactions", ["tenant_id"])
    op.create_index(
        "ix_credit_transactions_idempotency_key",
        "credit_transactions",
        ["idempotency_key"],
        unique=True,
    )
    op.create_index(
        "ix_credit_transactions_transaction_type", "credit_transactions", ["transaction_type"]
    )
    op.create_index("ix_credit_transactions_created_at", "credit_transactions", ["created_at"])
    op.create_index(
        "ix_credit_transactions_tenant_created",
        "credit_transactions",
        ["tenant_id", "created_at"],
    )

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("credits_amount", sa.Integer(), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("credits_amount > 0", name="ck_promo_codes_credits_positive"),
        sa.CheckConstraint("max_uses > 0", name="ck_promo_codes_max_uses_positive"),
        sa.CheckConstraint("used_count <= max_uses", name="ck_promo_codes_used_within_max"),
        sa.CheckConstraint("used_count >= 0", name="ck_promo_codes_used_non_negative"),
    )
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)

    op.create_table(
        "promo_redemptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "promo_code_id",
            sa.Uuid(),
            sa.ForeignKey("promo_codes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("checkout_session_id", sa.Uuid(), nullable=True),
        sa.Column("transaction_id", sa.Uuid(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_promo_redemptions_promo_code_id", "promo_redemptions", ["promo_code_id"])
    op.create_index("ix_promo_redemptions_tenant_id", "promo_redemptions", ["tenant_id"])

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("package_id", sa.String(64), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("promo_code_applied", sa.String(64), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM(name="checkout_status", create_type=False),
            nullable=False,
            server_default="created",
        ),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("provider_session_id", sa.String(255), nullable=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column("amount_paid", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_checkout_sessions_tenant_id", "checkout_sessions", ["tenant_id"])
    op.create_index("ix_checkout_sessions_status", "checkout_sessions", ["status"])
    op.create_index("ix_checkout_sessions_expires_at", "checkout_sessions", ["expires_at"])
    op.create_index(
        "ix_checkout_sessions_provider_session_id",
        "checkout_sessions",
        ["provider_session_id"],
        unique=True,
    )

    op.create_table(
        "processed_webhook_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("outcome", sa.String(64), nullable=False),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_processed_webhook_events_processed_at",
        "processed_webhook_events",
        ["processed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_processed_webhook_events_processed_at", table_name="processed_webhook_events")
    op.drop_table("processed_webhook_events")

    op.drop_index("ix_checkout_sessions_provider_session_id", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_expires_at", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_status", table_name="checkout_sessions")
    op.drop_index("ix_checkout_sessions_tenant_id", table_name="checkout_sessions")
    op.drop_table("checkout_sessions")

    op.drop_index("ix_promo_redemptions_tenant_id", table_name="promo_redemptions")
    op.drop_index("ix_promo_redemptions_promo_code_id", table_name="promo_redemptions")
    op.drop_table("promo_redemptions")

    op.drop_index("ix_promo_codes_code", table_name="promo_codes")
    op.drop_table("promo_codes")

    op.drop_index("ix_credit_transactions_tenant_created", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_created_at", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_transaction_type", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_idempotency_key", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_tenant_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_table("credit_accounts")

    sa.Enum(name="checkout_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="credit_transaction_type").drop(op.get_bind(), checkfirst=True)
