"""Pydantic schemas for super-admin credit operations."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class AdjustCreditsRequest(BaseModel):
    """Manual balance correction."""

    tenant_id: str = Field(min_length=1, max_length=64)
    amount: int = Field(description="Signed credit change; must not be zero")
    reason: str = Field(min_length=1, description="Why the adjustment was made")
    notes: Optional[str] = Field(default=None)
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class BulkGrantRequest(BaseModel):
    """Grant the same number of credits to many tenants."""

    tenant_ids: list[str] = Field(min_length=1, description="Recipients")
    amount: int = Field(gt=0, description="Credits per tenant")
    transaction_type: Literal["bonus", "free_grant"] = Field(default="bonus")
    notes: Optional[str] = Field(default=None)
    batch_id: Optional[str] = Field(
        default=None, max_length=64, description="Reuse to retry a batch safely"
    )


class BulkGrantResponse(BaseModel):
    batch_id: str = Field(description="Idempotency key for retrying this batch")
    granted: int = Field(description="Tenants that received a new grant")
    requested: int = Field(description="Distinct tenants in the request")


class FreeGrantRequest(BaseModel):
    amount: Optional[int] = Field(default=None, gt=0)
    period: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")


class RefundRequest(BaseModel):
    reason: str = Field(min_length=1)


class AuditReportResponse(BaseModel):
    tenant_id: str
    ok: bool
    expected_balance: int
    recorded_balance: int
    discrepancies: list[str]


class UnfreezeResponse(BaseModel):
    tenant_id: str
    frozen: bool
