"""Promo code models for bonus-credit codes and their redemptions."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from credit_ledger.core.database import Base
from credit_ledger.utils.timeutils import ensure_utc, utcnow


class PromoCode(Base):
    """
    Bonus-credit promo code.

    ``used_count`` is only ever changed by the registry's conditional
    increment, never by assigning to the attribute.
    """

    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint("credits_amount > 0", name="ck_promo_codes_credits_positive"),
        CheckConstraint("max_uses > 0", name="ck_promo_codes_max_uses_positive"),
        CheckConstraint("used_count <= max_uses", name="ck_promo_codes_used_within_max"),
        CheckConstraint("used_count >= 0", name="ck_promo_codes_used_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Stored upper-case; lookups normalize the same way
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    credits_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    max_uses: Mapped[int] = mapped_column(Integer, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) <= (ensure_utc(now) or utcnow())

    @property
    def remaining_uses(self) -> int:
        return max(self.max_uses - self.used_count, 0)

    def __repr__(self) -> str:
        return f"<PromoCode(code={self.code}, used={self.used_count}/{self.max_uses})>"


class PromoRedemption(Base):
    """One consumed use of a promo code, tied to the bonus transaction."""

    __tablename__ = "promo_redemptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    promo_code_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("promo_codes.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    checkout_session_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    promo_code: Mapped["PromoCode"] = relationship(
        "PromoCode", viewonly=True
    )

    def __repr__(self) -> str:
        return f"<PromoRedemption(promo_code_id={self.promo_code_id}, tenant_id={self.tenant_id})>"
