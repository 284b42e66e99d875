"""Tests for checkout orchestration.

Tests cover:
- Credit package catalog
- Checkout session creation through Stripe (mocked)
- Promo code handling at checkout
- Provider failures leaving no local state
- Status lookups and expiry sweeps
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe
from sqlalchemy import func, select

from credit_ledger.models import CheckoutSession, CheckoutStatus
from credit_ledger.models.checkout_session import InvalidSessionTransitionError
from credit_ledger.services.checkout_service import (
    CREDIT_PACKAGES,
    PACKAGE_LOOKUP,
    CheckoutService,
    CheckoutSessionNotFoundError,
    PackageNotFoundError,
)
from credit_ledger.services.payment_provider import PaymentProviderError
from credit_ledger.services.promo_registry import InvalidPromoCodeError, PromoRegistry
from credit_ledger.utils.timeutils import ensure_utc, utcnow


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_stripe_session():
    """Mock Stripe checkout session object."""
    session = MagicMock()
    session.id = "cs_test_123456789"
    session.url = "https://checkout.stripe.com/c/pay/cs_test_123456789"
    session.expires_at = int(datetime.now(timezone.utc).timestamp()) + 3600
    return session


async def count_sessions(session_factory) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(CheckoutSession))


# ============================================================================
# Package Tests
# ============================================================================


class TestCreditPackages:
    """Tests for the credit package catalog."""

    def test_package_definitions(self):
        assert [p.id for p in CREDIT_PACKAGES] == [
            "starter-pack",
            "growth-pack",
            "power-pack",
            "enterprise-pack",
        ]
        assert len(CREDIT_PACKAGES) == len(PACKAGE_LOOKUP)

        for package in CREDIT_PACKAGES:
            assert package.credits > 0
            assert package.price_cents > 0
            assert package.currency == "usd"

    def test_growth_pack_is_popular(self):
        package = CheckoutService.get_package("growth-pack")

        assert package.credits == 15000
        assert package.price_cents == 2499
        assert package.popular is True
        assert package.price_display == "$24.99"

    def test_unknown_package(self):
        with pytest.raises(PackageNotFoundError):
            CheckoutService.get_package("mega-pack")


# ============================================================================
# Checkout Creation Tests
# ============================================================================


class TestCreateCheckout:
    """Tests for CheckoutService.create_checkout."""

    @pytest.mark.asyncio
    @patch("stripe.checkout.Session.create")
    async def test_creates_awaiting_session(
        self, mock_create, db_session, session_factory, provider, mock_stripe_session
    ):
        mock_create.return_value = mock_stripe_session

        result = await CheckoutService(db_session, provider).create_checkout(
            "tenant-a", "growth-pack"
        )

        assert result.checkout_url == mock_stripe_session.url
        assert result.provider_session_id == "cs_test_123456789"

        call_kwargs = mock_create.call_args.kwargs
        assert call_kwargs["mode"] == "payment"
        assert call_kwargs["line_items"][0]["price_data"]["unit_amount"] == 2499
        assert call_kwargs["metadata"]["type"] == "credit_purchase"
        assert call_kwargs["metadata"]["tenant_id"] == "tenant-a"
        assert call_kwargs["metadata"]["checkout_session_id"] == str(result.session_id)
        assert "promo_code" not in call_kwargs["metadata"]

        async with session_factory() as db:
            session = await db.get(CheckoutSession, result.session_id)
        assert session.status == CheckoutStatus.AWAITING_PAYMENT
        assert session.credits == 15000
        assert session.price_cents == 2499
        assert session.provider_session_id == "cs_test_123456789"
        assert ensure_utc(session.expires_at) > utcnow()

    @pytest.mark.asyncio
    @patch("stripe.checkout.Session.create")
    async def test_promo_does_not_change_price(
        self, mock_create, db_session, provider, create_promo, mock_stripe_session
    ):
        await create_promo("WELCOME500", credits_amount=500, max_uses=100, used_count=40)
        mock_create.return_value = mock_stripe_session

        result = await CheckoutService(db_session, provider).create_checkout(
            "tenant-a", "growth-pack", promo_code="welcome500"
        )

        call_kwargs = mock_create.call_args.kwargs
        assert call_kwargs["line_items"][0]["price_data"]["unit_amount"] == 2499
        assert call_kwargs["metadata"]["promo_code"] == "WELCOME500"

        session = await CheckoutService(db_session, provider).get_session(
            result.session_id, "tenant-a"
        )
        assert session.promo_code_applied == "WELCOME500"

        # Validation only; the use is consumed when payment is confirmed
        promo = await PromoRegistry(db_session).get_promo_code("WELCOME500")
        assert promo.used_count == 40

    @pytest.mark.asyncio
    @patch("stripe.checkout.Session.create")
    async def test_expired_promo_rejected_then_checkout_without_it(
        self, mock_create, db_session, session_factory, provider, create_promo, mock_stripe_session
    ):
        await create_promo("EXPIRED10", expires_at=utcnow() - timedelta(days=1))
        mock_create.return_value = mock_stripe_session
        service = CheckoutService(db_session, provider)

        with pytest.raises(InvalidPromoCodeError) as exc_info:
            await service.create_checkout("tenant-a", "starter-pack", promo_code="EXPIRED10")
        assert exc_info.value.reason == "expired"
        mock_create.assert_not_called()
        assert await count_sessions(session_factory) == 0

        result = await service.create_checkout("tenant-a", "starter-pack")
        session = await service.get_session(result.session_id, "tenant-a")
        assert session.promo_code_applied is None

    @pytest.mark.asyncio
    @patch("stripe.checkout.Session.create")
    async def test_provider_failure_leaves_no_row(
        self, mock_create, db_session, session_factory, provider
    ):
        mock_create.side_effect = stripe.APIConnectionError("network down")

        with pytest.raises(PaymentProviderError):
            await CheckoutService(db_session, provider).create_checkout("tenant-a", "power-pack")

        assert await count_sessions(session_factory) == 0

    @pytest.mark.asyncio
    async def test_unknown_package(self, db_session, provider):
        with pytest.raises(PackageNotFoundError):
            await CheckoutService(db_session, provider).create_checkout("tenant-a", "nope")


# ============================================================================
# Session Lookup and Expiry Tests
# ============================================================================


class TestSessionLifecycle:
    """Tests for status lookups, transitions and expiry."""

    @pytest.mark.asyncio
    async def test_get_session_is_tenant_scoped(self, db_session, provider, create_session):
        session = await create_session(tenant_id="tenant-a")
        service = CheckoutService(db_session, provider)

        assert (await service.get_session(session.id, "tenant-a")).id == session.id
        with pytest.raises(CheckoutSessionNotFoundError):
            await service.get_session(session.id, "tenant-b")
        with pytest.raises(CheckoutSessionNotFoundError):
            await service.get_session(uuid.uuid4(), "tenant-a")

    def test_terminal_states_are_final(self):
        session = CheckoutSession(status=CheckoutStatus.CREATED)

        session.transition_to(CheckoutStatus.AWAITING_PAYMENT)
        session.transition_to(CheckoutStatus.COMPLETED)
        assert session.completed_at is not None

        with pytest.raises(InvalidSessionTransitionError):
            session.transition_to(CheckoutStatus.EXPIRED)
        with pytest.raises(InvalidSessionTransitionError):
            session.transition_to(CheckoutStatus.AWAITING_PAYMENT)

    def test_cannot_complete_without_awaiting_payment(self):
        session = CheckoutSession(status=CheckoutStatus.CREATED)

        with pytest.raises(InvalidSessionTransitionError):
            session.transition_to(CheckoutStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_expire_stale_sessions(self, db_session, session_factory, provider, create_session):
        stale = await create_session(provider_session_id="cs_stale", expires_in=timedelta(hours=-3))
        fresh = await create_session(provider_session_id="cs_fresh", expires_in=timedelta(hours=1))
        in_grace = await create_session(
            provider_session_id="cs_grace", expires_in=timedelta(minutes=-10)
        )
        completed = await create_session(
            provider_session_id="cs_done",
            status=CheckoutStatus.COMPLETED,
            expires_in=timedelta(hours=-3),
        )

        expired = await CheckoutService(db_session, provider).expire_stale_sessions()

        assert expired == 1
        async with session_factory() as db:
            statuses = {
                s.provider_session_id: s.status
                for s in (await db.execute(select(CheckoutSession))).scalars()
            }
        assert statuses[stale.provider_session_id] == CheckoutStatus.EXPIRED
        assert statuses[fresh.provider_session_id] == CheckoutStatus.AWAITING_PAYMENT
        assert statuses[in_grace.provider_session_id] == CheckoutStatus.AWAITING_PAYMENT
        assert statuses[completed.provider_session_id] == CheckoutStatus.COMPLETED
