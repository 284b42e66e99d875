"""Credit account model: the per-tenant balance projection."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credit_ledger.core.database import Base
from credit_ledger.utils.timeutils import utcnow


class CreditAccount(Base):
    """
    Current credit balance for each tenant.

    Only the ledger writer mutates this row. ``version`` counts the
    transactions applied so far and doubles as the optimistic-concurrency
    token for the compare-and-swap update.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        CheckConstraint("lifetime_earned >= 0", name="ck_credit_accounts_earned_non_negative"),
        CheckConstraint("lifetime_spent >= 0", name="ck_credit_accounts_spent_non_negative"),
    )

    # Primary key (one row per tenant)
    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Balance projection
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Integrity freeze (set by the auditor)
    frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frozen_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    frozen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<CreditAccount(tenant_id={self.tenant_id}, balance={self.balance}, "
            f"version={self.version})>"
        )
