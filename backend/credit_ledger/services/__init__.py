"""Services for ledger business logic and payment provider integration."""

from credit_ledger.services.checkout_service import CheckoutService, get_checkout_service
from credit_ledger.services.ledger_auditor import LedgerAuditor, get_ledger_auditor
from credit_ledger.services.ledger_store import LedgerStore, get_ledger_store
from credit_ledger.services.ledger_writer import (
    AccountFrozenError,
    InsufficientCreditsError,
    LedgerWriter,
    get_ledger_writer,
)
from credit_ledger.services.payment_provider import (
    PaymentProvider,
    StripePaymentProvider,
    get_payment_provider,
)
from credit_ledger.services.promo_registry import PromoRegistry, get_promo_registry
from credit_ledger.services.webhook_reconciler import WebhookReconciler, get_webhook_reconciler

__all__ = [
    "LedgerStore",
    "get_ledger_store",
    "LedgerWriter",
    "InsufficientCreditsError",
    "AccountFrozenError",
    "get_ledger_writer",
    "LedgerAuditor",
    "get_ledger_auditor",
    "PromoRegistry",
    "get_promo_registry",
    "PaymentProvider",
    "StripePaymentProvider",
    "get_payment_provider",
    "CheckoutService",
    "get_checkout_service",
    "WebhookReconciler",
    "get_webhook_reconciler",
]
