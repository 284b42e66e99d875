"""Database helper and model tests."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import insert_if_absent
from credit_ledger.models import (
    CreditAccount,
    CreditTransaction,
    PromoCode,
    TransactionType,
)
from credit_ledger.utils.timeutils import ensure_utc, period_key, utcnow


@pytest.mark.asyncio
async def test_database_connection(db_session: AsyncSession):
    """Test basic database connectivity."""
    result = await db_session.execute(select(1))
    assert result.scalar() == 1


@pytest.mark.asyncio
async def test_insert_if_absent(db_session: AsyncSession):
    values = {
        "tenant_id": "tenant-a",
        "balance": 0,
        "lifetime_earned": 0,
        "lifetime_spent": 0,
        "version": 0,
        "frozen": False,
    }

    first = await insert_if_absent(
        db_session, CreditAccount.__table__, values, index_elements=["tenant_id"]
    )
    second = await insert_if_absent(
        db_session, CreditAccount.__table__, values, index_elements=["tenant_id"]
    )
    await db_session.commit()

    assert first is True
    assert second is False
    accounts = (await db_session.execute(select(CreditAccount))).scalars().all()
    assert len(accounts) == 1


@pytest.mark.asyncio
async def test_json_metadata_and_enum_storage(db_session: AsyncSession):
    """Test JSON metadata column and enum round trip."""
    db_session.add(CreditAccount(tenant_id="tenant-a", balance=500, version=1))
    transaction = CreditTransaction(
        id=uuid.uuid4(),
        tenant_id="tenant-a",
        sequence=1,
        amount=500,
        balance_after=500,
        transaction_type=TransactionType.BONUS,
        tx_metadata={"batch_id": "launch", "tenants": ["a", "b"]},
        created_at=utcnow(),
    )
    db_session.add(transaction)
    await db_session.commit()

    result = await db_session.execute(
        select(CreditTransaction).execution_options(populate_existing=True)
    )
    stored = result.scalar_one()
    assert stored.transaction_type == TransactionType.BONUS
    assert stored.tx_metadata["tenants"] == ["a", "b"]


@pytest.mark.asyncio
async def test_promo_code_expiry(db_session: AsyncSession):
    promo = PromoCode(
        id=uuid.uuid4(),
        code="SPRING",
        credits_amount=100,
        max_uses=5,
        used_count=0,
        expires_at=utcnow() - timedelta(minutes=1),
        active=True,
    )
    db_session.add(promo)
    await db_session.commit()

    assert promo.is_expired() is True
    assert promo.is_expired(utcnow() - timedelta(hours=1)) is False


def test_time_helpers():
    naive = datetime(2026, 10, 1, 12, 0)
    assert ensure_utc(naive).tzinfo is not None
    assert ensure_utc(None) is None
    assert period_key(naive) == "2026-10"
