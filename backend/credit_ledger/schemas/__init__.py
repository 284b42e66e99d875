"""Pydantic schemas for API requests and responses."""

from credit_ledger.schemas.checkout import (
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSessionResponse,
    CreditPackage,
    CreditPackagesResponse,
)
from credit_ledger.schemas.credits import (
    ConsumeCreditsRequest,
    CreditBalanceResponse,
    LedgerWriteResponse,
    TransactionHistoryResponse,
    TransactionResponse,
)
from credit_ledger.schemas.promo import (
    PromoCodeCreate,
    PromoCodeResponse,
    PromoCodeUpdate,
    PromoValidateRequest,
    PromoValidateResponse,
)
from credit_ledger.schemas.webhook import WebhookResponse

__all__ = [
    # Checkout schemas
    "CreditPackage",
    "CreditPackagesResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "CheckoutSessionResponse",
    # Credit schemas
    "CreditBalanceResponse",
    "TransactionResponse",
    "TransactionHistoryResponse",
    "ConsumeCreditsRequest",
    "LedgerWriteResponse",
    # Promo schemas
    "PromoValidateRequest",
    "PromoValidateResponse",
    "PromoCodeCreate",
    "PromoCodeUpdate",
    "PromoCodeResponse",
    # Webhook schemas
    "WebhookResponse",
]
