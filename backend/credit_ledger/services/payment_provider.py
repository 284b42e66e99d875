"""Payment provider integration.

This module provides:
- The PaymentProvider interface used by checkout and webhook reconciliation
- The Stripe implementation: hosted checkout sessions and webhook signature
  verification
- ProviderEvent, the parsed form of a verified webhook payload
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from credit_ledger.core.config import settings
from credit_ledger.core.exceptions import CreditLedgerError

logger = logging.getLogger(__name__)

# Initialize Stripe with API key from settings
stripe.api_key = settings.STRIPE_SECRET_KEY


class PaymentProviderError(CreditLedgerError):
    """Raised when the provider could not start a payment. Safe to retry."""

    pass


class WebhookVerificationError(CreditLedgerError):
    """Raised when a webhook payload fails signature verification."""

    pass


@dataclass
class ProviderSession:
    """Hosted checkout session returned by the provider."""

    provider_session_id: str
    checkout_url: str
    expires_at: datetime


@dataclass
class ProviderEvent:
    """Verified webhook event, reduced to the fields reconciliation needs."""

    event_id: str
    event_type: str
    created: datetime
    provider_session_id: Optional[str] = None
    amount_paid: Optional[int] = None
    payment_status: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    """Interface to the external payment provider."""

    @abstractmethod
    def create_session(
        self,
        *,
        checkout_session_id: str,
        tenant_id: str,
        package_id: str,
        package_name: str,
        credits: int,
        price_cents: int,
        currency: str,
        expires_at: datetime,
        promo_code: Optional[str] = None,
    ) -> ProviderSession:
        """Create a hosted checkout session.

        Raises:
            PaymentProviderError: provider unavailable or request rejected
        """

    @abstractmethod
    def verify_and_parse(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        """Authenticate a raw webhook body and parse it.

        Raises:
            WebhookVerificationError: bad, missing or stale signature, or
                an unparseable body
        """


class StripePaymentProvider(PaymentProvider):
    """Stripe Checkout implementation."""

    def __init__(
        self,
        webhook_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ):
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.tolerance_seconds = tolerance_seconds or settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        self.success_url = success_url or settings.CHECKOUT_SUCCESS_URL
        self.cancel_url = cancel_url or settings.CHECKOUT_CANCEL_URL

    def create_session(
        self,
        *,
        checkout_session_id: str,
        tenant_id: str,
        package_id: str,
        package_name: str,
        credits: int,
        price_cents: int,
        currency: str,
        expires_at: datetime,
        promo_code: Optional[str] = None,
    ) -> ProviderSession:
        metadata = {
            "type": "credit_purchase",
            "tenant_id": tenant_id,
            "package_id": package_id,
            "credits": str(credits),
            "checkout_session_id": checkout_session_id,
        }
        if promo_code:
            metadata["promo_code"] = promo_code

        logger.info(
            f"Creating Stripe checkout session for tenant {tenant_id}, "
            f"package {package_id} ({credits} credits, {price_cents} cents)"
        )

        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {
                                "name": package_name,
                                "description": f"{credits:,} platform credits",
                            },
                            "unit_amount": price_cents,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=f"{self.success_url}?session_id={checkout_session_id}",
                cancel_url=self.cancel_url,
                metadata=metadata,
                client_reference_id=tenant_id,
                expires_at=int(expires_at.timestamp()),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe API error creating checkout session: {e}")
            raise PaymentProviderError(f"Failed to create checkout session: {e}")

        logger.info(f"Stripe checkout session created: {session.id} for tenant {tenant_id}")

        provider_expiry = getattr(session, "expires_at", None)
        return ProviderSession(
            provider_session_id=session.id,
            checkout_url=session.url,
            expires_at=(
                datetime.fromtimestamp(provider_expiry, tz=timezone.utc)
                if provider_expiry
                else expires_at
            ),
        )

    def verify_and_parse(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if not self.webhook_secret:
            raise WebhookVerificationError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.tolerance_seconds
            )
        except UnicodeDecodeError:
            raise WebhookVerificationError("Invalid webhook payload")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise WebhookVerificationError("Invalid webhook signature")

        try:
            event = parse_stripe_event(json.loads(body))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise WebhookVerificationError("Invalid webhook payload")

        logger.info(f"Webhook verified: {event.event_type} ({event.event_id})")
        return event


def parse_stripe_event(data: dict) -> ProviderEvent:
    """Reduce a Stripe event body to a ProviderEvent."""
    obj = data.get("data", {}).get("object", {}) or {}
    is_checkout = obj.get("object") in (None, "checkout.session")

    return ProviderEvent(
        event_id=data["id"],
        event_type=data["type"],
        created=datetime.fromtimestamp(int(data["created"]), tz=timezone.utc),
        provider_session_id=obj.get("id") if is_checkout else None,
        amount_paid=obj.get("amount_total"),
        payment_status=obj.get("payment_status"),
        metadata=dict(obj.get("metadata") or {}),
    )


_provider: Optional[PaymentProvider] = None


def get_payment_provider() -> PaymentProvider:
    """Get the process-wide payment provider."""
    global _provider
    if _provider is None:
        _provider = StripePaymentProvider()
    return _provider
