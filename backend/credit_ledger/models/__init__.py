"""SQLAlchemy models for the credit ledger."""

from credit_ledger.models.checkout_session import CheckoutSession, CheckoutStatus
from credit_ledger.models.credit_account import CreditAccount
from credit_ledger.models.credit_transaction import (
    ActionType,
    CreditTransaction,
    TransactionType,
)
from credit_ledger.models.promo_code import PromoCode, PromoRedemption
from credit_ledger.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "CreditAccount",
    "CreditTransaction",
    "TransactionType",
    "ActionType",
    "PromoCode",
    "PromoRedemption",
    "CheckoutSession",
    "CheckoutStatus",
    "ProcessedWebhookEvent",
]
