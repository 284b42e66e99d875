"""Pydantic schemas for credit API endpoints.

This module defines request and response models for:
- Credit balance queries
- Transaction history
- Credit consumption
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from credit_ledger.models.credit_transaction import CreditTransaction, TransactionType


class CreditBalanceResponse(BaseModel):
    """Response model for credit balance queries."""

    balance: int = Field(description="Credits currently available")
    lifetime_earned: int = Field(description="Total credits ever added")
    lifetime_spent: int = Field(description="Total credits ever removed")
    is_low_balance: bool = Field(description="True if balance is at or below the warning threshold")
    frozen: bool = Field(description="True if writes are blocked pending reconciliation")

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    """Response model for a single transaction."""

    id: uuid.UUID = Field(description="Transaction ID")
    sequence: int = Field(description="Per-tenant ordering number")
    type: TransactionType = Field(description="Transaction type")
    amount: int = Field(description="Credit change (positive=add, negative=deduct)")
    balance_after: int = Field(description="Balance after this transaction")
    action_type: Optional[str] = Field(default=None, description="Sub-category key")
    reference_id: Optional[str] = Field(default=None, description="Originating object ID")
    reference_type: Optional[str] = Field(default=None, description="Originating object kind")
    description: Optional[str] = Field(default=None, description="Human-readable description")
    metadata: Optional[dict] = Field(default=None, description="Additional transaction context")
    created_at: datetime = Field(description="Transaction timestamp")

    @classmethod
    def from_transaction(cls, transaction: CreditTransaction) -> "TransactionResponse":
        return cls(
            id=transaction.id,
            sequence=transaction.sequence,
            type=transaction.transaction_type,
            amount=transaction.amount,
            balance_after=transaction.balance_after,
            action_type=transaction.action_type,
            reference_id=transaction.reference_id,
            reference_type=transaction.reference_type,
            description=transaction.description,
            metadata=transaction.tx_metadata,
            created_at=transaction.created_at,
        )


class TransactionHistoryResponse(BaseModel):
    """Response model for transaction history queries (newest first)."""

    transactions: list[TransactionResponse] = Field(description="List of transactions")
    has_more: bool = Field(description="Whether another page exists")
    next_cursor: Optional[str] = Field(
        default=None, description="Cursor to pass for the next page"
    )


class ConsumeCreditsRequest(BaseModel):
    """Request model for consuming credits."""

    amount: int = Field(gt=0, description="Credits to consume")
    action_type: str = Field(
        pattern=r"^[a-z][a-z0-9_]{0,63}$",
        description="Feature key that consumed the credits",
    )
    reference_id: Optional[str] = Field(default=None, max_length=255)
    reference_type: Optional[str] = Field(default=None, max_length=64)
    idempotency_key: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Client key making retries safe",
    )
    metadata: Optional[dict] = Field(default=None)


class LedgerWriteResponse(BaseModel):
    """Result of a ledger write."""

    transaction: TransactionResponse = Field(description="The applied (or replayed) transaction")
    new_balance: int = Field(description="Balance after the write")
    replayed: bool = Field(default=False, description="True if this was an idempotent replay")
