"""Pydantic schemas for credit package checkout.

This module defines request and response models for:
- Credit package definitions
- Checkout session creation
- Checkout session status polling
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from credit_ledger.models.checkout_session import CheckoutStatus


class CreditPackage(BaseModel):
    """Credit package available for purchase."""

    id: str = Field(description="Package identifier")
    name: str = Field(description="Human-readable package name")
    credits: int = Field(ge=1, description="Number of credits included")
    price_cents: int = Field(description="Price in cents (USD)")
    currency: str = Field(default="usd", description="ISO currency code")
    popular: bool = Field(default=False, description="Mark as popular/recommended")

    @property
    def price_display(self) -> str:
        """Format price for display (e.g., $9.99)."""
        return f"${self.price_cents / 100:.2f}"

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "starter-pack",
                "name": "Starter Pack",
                "credits": 5000,
                "price_cents": 999,
                "currency": "usd",
                "popular": False,
            }
        }
    }


class CreditPackagesResponse(BaseModel):
    """Response containing all available credit packages."""

    packages: list[CreditPackage] = Field(description="Available credit packages")
    currency: str = Field(default="usd", description="Currency for all packages")


class CheckoutRequest(BaseModel):
    """Request to start a credit purchase."""

    package_id: str = Field(description="Credit package ID to purchase")
    promo_code: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Optional promo code for bonus credits",
    )

    model_config = {
        "json_schema_extra": {
            "example": {"package_id": "growth-pack", "promo_code": "WELCOME500"}
        }
    }


class CheckoutResponse(BaseModel):
    """Response containing the hosted checkout details."""

    session_id: uuid.UUID = Field(description="Local checkout session ID")
    checkout_url: str = Field(description="URL to redirect the user to Stripe checkout")
    expires_at: datetime = Field(description="When the checkout session expires")


class CheckoutSessionResponse(BaseModel):
    """Status of a checkout session."""

    id: uuid.UUID = Field(description="Local checkout session ID")
    package_id: str = Field(description="Purchased package")
    credits: int = Field(description="Credits granted on completion")
    price_cents: int = Field(description="Price in cents")
    promo_code_applied: Optional[str] = Field(default=None, description="Promo code, if any")
    status: CheckoutStatus = Field(description="Current session status")
    failure_reason: Optional[str] = Field(default=None, description="Why the session failed")
    created_at: datetime = Field(description="Creation timestamp")
    expires_at: Optional[datetime] = Field(default=None, description="Expiry timestamp")
    completed_at: Optional[datetime] = Field(
        default=None, description="When the session reached a terminal state"
    )

    model_config = {"from_attributes": True}
