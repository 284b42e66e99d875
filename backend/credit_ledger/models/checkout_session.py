"""Checkout session model tracking in-flight credit purchases."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credit_ledger.core.database import Base
from credit_ledger.utils.timeutils import utcnow


class CheckoutStatus(str, enum.Enum):
    """Lifecycle of a checkout session."""

    CREATED = "created"  # Local row only, no provider session yet
    AWAITING_PAYMENT = "awaiting_payment"  # Provider session open
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {CheckoutStatus.COMPLETED, CheckoutStatus.FAILED, CheckoutStatus.EXPIRED}
)

ALLOWED_TRANSITIONS: dict[CheckoutStatus, frozenset[CheckoutStatus]] = {
    CheckoutStatus.CREATED: frozenset(
        {CheckoutStatus.AWAITING_PAYMENT, CheckoutStatus.FAILED, CheckoutStatus.EXPIRED}
    ),
    CheckoutStatus.AWAITING_PAYMENT: frozenset(TERMINAL_STATUSES),
    CheckoutStatus.COMPLETED: frozenset(),
    CheckoutStatus.FAILED: frozenset(),
    CheckoutStatus.EXPIRED: frozenset(),
}


class InvalidSessionTransitionError(ValueError):
    """Raised when a checkout session would move backwards or out of a terminal state."""

    def __init__(self, current: CheckoutStatus, target: CheckoutStatus):
        self.current = current
        self.target = target
        super().__init__(
            f"Checkout session cannot move from {current.value} to {target.value}"
        )


def can_transition(current: CheckoutStatus, target: CheckoutStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class CheckoutSession(Base):
    """
    Local record of a purchase correlated with a Stripe checkout session.

    Status only moves forward; terminal states are final.
    """

    __tablename__ = "checkout_sessions"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # What is being bought
    package_id: Mapped[str] = mapped_column(String(64), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    promo_code_applied: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Lifecycle
    status: Mapped[CheckoutStatus] = mapped_column(
        Enum(
            CheckoutStatus,
            name="checkout_status",
            values_callable=lambda members: [m.value for m in members],
        ),
        default=CheckoutStatus.CREATED,
        nullable=False,
        index=True,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provider correlation
    provider_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )
    checkout_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_paid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, target: CheckoutStatus) -> None:
        """Move to ``target`` or raise InvalidSessionTransitionError."""
        if not can_transition(self.status, target):
            raise InvalidSessionTransitionError(self.status, target)
        self.status = target
        if target in TERMINAL_STATUSES:
            self.completed_at = utcnow()

    def __repr__(self) -> str:
        return f"<CheckoutSession(id={self.id}, status={self.status.value})>"
