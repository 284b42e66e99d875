"""Pydantic schemas for payment provider webhooks."""

from typing import Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider."""

    received: bool = Field(default=True)
    event_id: Optional[str] = Field(default=None, description="Provider event ID")
    outcome: str = Field(description="How the event was handled")
    duplicate: bool = Field(default=False, description="True if already processed")
