"""Checkout orchestration for credit package purchases.

This service provides:
- Credit package definitions
- Checkout session creation through the payment provider
- Status lookups for polling clients
- Expiry of abandoned sessions

Credits are never granted here; the webhook reconciler does that once
the provider confirms payment.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.core.exceptions import CreditLedgerError
from credit_ledger.models.checkout_session import CheckoutSession, CheckoutStatus
from credit_ledger.schemas.checkout import CreditPackage
from credit_ledger.services.payment_provider import PaymentProvider
from credit_ledger.services.promo_registry import (
    InvalidPromoCodeError,
    PromoRegistry,
    normalize_code,
)
from credit_ledger.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CREDIT_PACKAGES: list[CreditPackage] = [
    CreditPackage(
        id="starter-pack",
        name="Starter Pack",
        credits=5000,
        price_cents=999,  # $9.99
    ),
    CreditPackage(
        id="growth-pack",
        name="Growth Pack",
        credits=15000,
        price_cents=2499,  # $24.99
        popular=True,
    ),
    CreditPackage(
        id="power-pack",
        name="Power Pack",
        credits=50000,
        price_cents=4999,  # $49.99
    ),
    CreditPackage(
        id="enterprise-pack",
        name="Enterprise Pack",
        credits=150000,
        price_cents=17999,  # $179.99
    ),
]

# Create a lookup dictionary for fast access
PACKAGE_LOOKUP: dict[str, CreditPackage] = {pkg.id: pkg for pkg in CREDIT_PACKAGES}


class PackageNotFoundError(CreditLedgerError):
    """Raised when an unknown package ID is requested."""

    pass


class CheckoutValidationError(CreditLedgerError):
    """Raised when a checkout cannot be priced."""

    pass


class CheckoutSessionNotFoundError(CreditLedgerError):
    """Raised when a session does not exist or belongs to another tenant."""

    pass


@dataclass
class CheckoutResult:
    checkout_url: str
    session_id: uuid.UUID
    provider_session_id: str
    expires_at: datetime


class CheckoutService:
    """Starts purchases and tracks their sessions."""

    def __init__(self, db: AsyncSession, provider: PaymentProvider):
        """Initialize checkout service.

        Args:
            db: Database session
            provider: Payment provider used to open hosted checkouts
        """
        self.db = db
        self.provider = provider
        self.promo_registry = PromoRegistry(db)

    @staticmethod
    def get_packages() -> list[CreditPackage]:
        """Get all available credit packages."""
        return CREDIT_PACKAGES.copy()

    @staticmethod
    def get_package(package_id: str) -> CreditPackage:
        """Get a specific credit package by ID.

        Raises:
            PackageNotFoundError: If package ID is not found
        """
        package = PACKAGE_LOOKUP.get(package_id)
        if not package:
            raise PackageNotFoundError(
                f"Invalid package ID: {package_id}. "
                f"Valid packages: {', '.join(PACKAGE_LOOKUP.keys())}"
            )
        return package

    async def create_checkout(
        self,
        tenant_id: str,
        package_id: str,
        promo_code: Optional[str] = None,
    ) -> CheckoutResult:
        """Create a checkout session for a credit package.

        The promo code is validated but not redeemed; redemption happens
        when payment is confirmed. Promo codes add bonus credits and never
        change the price.

        Args:
            tenant_id: Tenant making the purchase
            package_id: Credit package ID to purchase
            promo_code: Optional bonus code

        Returns:
            CheckoutResult with the hosted checkout URL

        Raises:
            PackageNotFoundError: unknown package
            CheckoutValidationError: package cannot be charged
            InvalidPromoCodeError: promo code is not redeemable
            PaymentProviderError: provider failed; nothing was persisted
        """
        package = self.get_package(package_id)
        if package.price_cents <= 0:
            raise CheckoutValidationError(
                f"Package {package_id} has non-positive price {package.price_cents}"
            )

        normalized_promo = None
        if promo_code and promo_code.strip():
            validation = await self.promo_registry.validate(promo_code)
            if not validation.valid:
                logger.warning(
                    f"Rejected promo code {validation.code} for tenant {tenant_id}: "
                    f"{validation.reason}"
                )
                raise InvalidPromoCodeError(validation.code, validation.reason)
            normalized_promo = normalize_code(promo_code)

        now = utcnow()
        session = CheckoutSession(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            package_id=package.id,
            credits=package.credits,
            price_cents=package.price_cents,
            promo_code_applied=normalized_promo,
            status=CheckoutStatus.CREATED,
            created_at=now,
        )

        # Provider first: a failure here must leave no local row behind
        provider_session = self.provider.create_session(
            checkout_session_id=str(session.id),
            tenant_id=tenant_id,
            package_id=package.id,
            package_name=package.name,
            credits=package.credits,
            price_cents=package.price_cents,
            currency=package.currency,
            expires_at=now + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
            promo_code=normalized_promo,
        )

        session.transition_to(CheckoutStatus.AWAITING_PAYMENT)
        session.provider_session_id = provider_session.provider_session_id
        session.checkout_url = provider_session.checkout_url
        session.expires_at = ensure_utc(provider_session.expires_at)

        self.db.add(session)
        await self.db.commit()

        logger.info(
            f"Checkout session {session.id} awaiting payment for tenant {tenant_id} "
            f"(package {package.id}, provider session {session.provider_session_id})"
        )

        return CheckoutResult(
            checkout_url=session.checkout_url,
            session_id=session.id,
            provider_session_id=session.provider_session_id,
            expires_at=session.expires_at,
        )

    async def get_session(self, session_id: uuid.UUID, tenant_id: str) -> CheckoutSession:
        """Get a tenant's checkout session for status polling.

        Raises:
            CheckoutSessionNotFoundError: unknown session or another tenant's
        """
        result = await self.db.execute(
            select(CheckoutSession).where(
                CheckoutSession.id == session_id,
                CheckoutSession.tenant_id == tenant_id,
            )
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise CheckoutSessionNotFoundError(f"Checkout session {session_id} not found")
        return session

    async def expire_stale_sessions(self, now: Optional[datetime] = None) -> int:
        """Expire open sessions past their expiry plus the grace period.

        A single conditional UPDATE, so a session completed concurrently is
        never overwritten.

        Returns:
            Number of sessions expired
        """
        now = ensure_utc(now) or utcnow()
        cutoff = now - timedelta(minutes=settings.CHECKOUT_EXPIRY_GRACE_MINUTES)

        result = await self.db.execute(
            update(CheckoutSession)
            .where(
                CheckoutSession.status.in_(
                    [CheckoutStatus.CREATED, CheckoutStatus.AWAITING_PAYMENT]
                ),
                CheckoutSession.expires_at.is_not(None),
                CheckoutSession.expires_at < cutoff,
            )
            .values(
                status=CheckoutStatus.EXPIRED,
                failure_reason="expired",
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        expired = result.rowcount or 0
        if expired:
            logger.info(f"Expired {expired} stale checkout sessions")
        return expired


def get_checkout_service(db: AsyncSession, provider: PaymentProvider) -> CheckoutService:
    """Factory function to create CheckoutService.

    Args:
        db: Database session
        provider: Payment provider

    Returns:
        Configured CheckoutService instance
    """
    return CheckoutService(db, provider)
