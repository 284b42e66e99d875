"""Pydantic schemas for promo code endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PromoValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64, description="Promo code (case-insensitive)")


class PromoValidateResponse(BaseModel):
    valid: bool = Field(description="Whether the code could be redeemed now")
    code: str = Field(description="Normalized code")
    credits_amount: Optional[int] = Field(default=None, description="Bonus credits if valid")
    reason: Optional[str] = Field(
        default=None, description="not_found, expired, exhausted or inactive"
    )


class PromoCodeCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    credits_amount: int = Field(gt=0, description="Bonus credits per redemption")
    max_uses: int = Field(gt=0, description="Total redemptions allowed")
    expires_at: Optional[datetime] = Field(default=None)
    description: Optional[str] = Field(default=None)


class PromoCodeUpdate(BaseModel):
    active: Optional[bool] = Field(default=None)
    max_uses: Optional[int] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = Field(default=None)
    description: Optional[str] = Field(default=None)


class PromoCodeResponse(BaseModel):
    id: uuid.UUID
    code: str
    credits_amount: int
    max_uses: int
    used_count: int
    expires_at: Optional[datetime] = None
    active: bool
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PromoRedemptionResponse(BaseModel):
    id: uuid.UUID
    tenant_id: str
    checkout_session_id: Optional[uuid.UUID] = None
    transaction_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}
