"""Credit transaction model: the append-only ledger."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from credit_ledger.core.database import Base, JSONType
from credit_ledger.utils.timeutils import utcnow


class TransactionType(str, enum.Enum):
    """Transaction types for credit operations."""

    PURCHASE = "purchase"  # Credit package bought via Stripe
    USAGE = "usage"  # Feature consumed credits
    FREE_GRANT = "free_grant"  # Monthly free credits
    BONUS = "bonus"  # Promo code or promotional grant
    ADJUSTMENT = "adjustment"  # Manual super-admin correction
    REFUND = "refund"  # Refund of a usage debit


class ActionType(str, enum.Enum):
    """Sub-categories written by the ledger core itself.

    Usage debits may carry a feature key instead (e.g. ``menu_create``).
    """

    CREDIT_PURCHASE = "credit_purchase"
    PROMO_BONUS = "promo_bonus"
    MONTHLY_FREE_GRANT = "monthly_free_grant"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    BULK_GRANT = "bulk_grant"
    USAGE_REFUND = "usage_refund"


# Types that can only ever add credits
CREDIT_ONLY_TYPES = frozenset(
    {
        TransactionType.PURCHASE,
        TransactionType.FREE_GRANT,
        TransactionType.BONUS,
        TransactionType.REFUND,
    }
)


class CreditTransaction(Base):
    """
    Immutable audit log for all credit operations.

    This table is append-only. Never UPDATE or DELETE records.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sequence", name="uq_credit_transactions_tenant_sequence"),
        CheckConstraint("amount <> 0", name="ck_credit_transactions_amount_non_zero"),
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_after_non_negative"),
        Index("ix_credit_transactions_tenant_created", "tenant_id", "created_at"),
    )

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Owning account
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("credit_accounts.tenant_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # Transaction details
    amount: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive for credit, negative for debit
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(
            TransactionType,
            name="credit_transaction_type",
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        index=True,
    )
    action_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # External references
    reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Additional context (JSON) - Note: 'metadata' is reserved by SQLAlchemy
    tx_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Relationships
    account: Mapped["CreditAccount"] = relationship(
        "CreditAccount", viewonly=True
    )

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, type={self.transaction_type.value}, "
            f"amount={self.amount}, balance_after={self.balance_after})>"
        )
