"""Processed webhook event model used for delivery deduplication."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from credit_ledger.core.database import Base
from credit_ledger.utils.timeutils import utcnow


class ProcessedWebhookEvent(Base):
    """
    One row per provider event id that has been fully handled.

    The row is inserted in the same database transaction as the event's
    effects, so its presence means the effects committed.
    """

    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    outcome: Mapped[str] = mapped_column(String(64), nullable=False)

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(event_id={self.event_id}, outcome={self.outcome})>"
