"""Pytest configuration and shared fixtures for backend tests."""

import hashlib
import hmac
import json
import os
import sys
import time
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

# Add parent directory to path for credit_ledger module discovery
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment BEFORE importing credit_ledger modules
os.environ.setdefault("ENVIRONMENT", "test")

from credit_ledger.core.database import Base
from credit_ledger.models import CheckoutSession, CheckoutStatus, PromoCode
from credit_ledger.services.payment_provider import StripePaymentProvider
from credit_ledger.utils.timeutils import utcnow

TEST_WEBHOOK_SECRET = "whsec_test_secret"


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database, fresh per test.

    A file (rather than :memory:) lets every session open its own
    connection, so concurrency tests exercise real contention.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider():
    """Stripe provider configured with a known webhook secret."""
    return StripePaymentProvider(webhook_secret=TEST_WEBHOOK_SECRET, tolerance_seconds=300)


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header for a payload."""

    def _sign(payload: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp=None) -> str:
        timestamp = int(timestamp if timestamp is not None else time.time())
        signed = f"{timestamp}.".encode("utf-8") + payload
        digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


@pytest.fixture
def make_event():
    """Build a raw Stripe checkout event body."""

    def _make(
        event_type: str = "checkout.session.completed",
        provider_session_id: str = "cs_test_growth",
        amount_total: int = 2499,
        payment_status: str = "paid",
        tenant_id: str = "tenant-a",
        event_id=None,
        created=None,
        metadata=None,
    ) -> bytes:
        body = {
            "id": event_id or f"evt_{uuid.uuid4().hex}",
            "object": "event",
            "type": event_type,
            "created": int(created if created is not None else time.time()),
            "data": {
                "object": {
                    "id": provider_session_id,
                    "object": "checkout.session",
                    "amount_total": amount_total,
                    "currency": "usd",
                    "payment_status": payment_status,
                    "metadata": metadata
                    if metadata is not None
                    else {
                        "type": "credit_purchase",
                        "tenant_id": tenant_id,
                        "package_id": "growth-pack",
                        "credits": "15000",
                    },
                }
            },
        }
        return json.dumps(body).encode("utf-8")

    return _make


@pytest_asyncio.fixture
async def create_promo(db_session):
    """Insert a promo code directly."""

    async def _create(
        code: str = "WELCOME500",
        credits_amount: int = 500,
        max_uses: int = 10,
        used_count: int = 0,
        expires_at=None,
        active: bool = True,
    ) -> PromoCode:
        promo = PromoCode(
            id=uuid.uuid4(),
            code=code,
            credits_amount=credits_amount,
            max_uses=max_uses,
            used_count=used_count,
            expires_at=expires_at,
            active=active,
        )
        db_session.add(promo)
        await db_session.commit()
        return promo

    return _create


@pytest_asyncio.fixture
async def create_session(db_session):
    """Insert a checkout session awaiting payment."""

    async def _create(
        tenant_id: str = "tenant-a",
        provider_session_id: str = "cs_test_growth",
        package_id: str = "growth-pack",
        credits: int = 15000,
        price_cents: int = 2499,
        promo_code: str = None,
        status: CheckoutStatus = CheckoutStatus.AWAITING_PAYMENT,
        expires_in: timedelta = timedelta(hours=1),
    ) -> CheckoutSession:
        now = utcnow()
        session = CheckoutSession(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            package_id=package_id,
            credits=credits,
            price_cents=price_cents,
            promo_code_applied=promo_code,
            status=status,
            provider_session_id=provider_session_id,
            checkout_url=f"https://checkout.stripe.com/c/pay/{provider_session_id}",
            created_at=now,
            expires_at=now + expires_in,
        )
        db_session.add(session)
        await db_session.commit()
        return session

    return _create
