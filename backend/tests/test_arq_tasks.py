"""Tests for the ledger maintenance worker tasks."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import update

from credit_ledger.core.arq_config import QUEUE_NAME, parse_redis_url
from credit_ledger.models import (
    CheckoutSession,
    CheckoutStatus,
    CreditAccount,
    ProcessedWebhookEvent,
    TransactionType,
)
from credit_ledger.services.ledger_writer import LedgerWriter
from credit_ledger.utils.timeutils import utcnow
from credit_ledger.workers.arq_tasks import (
    WorkerSettings,
    audit_all_credit_accounts,
    expire_stale_checkout_sessions,
    purge_processed_webhook_events,
)


@pytest.fixture
def worker_db(session_factory):
    """Point the worker tasks at the test database."""
    with patch(
        "credit_ledger.workers.arq_tasks.get_session_factory",
        return_value=session_factory,
    ):
        yield session_factory


class TestRedisSettings:
    def test_parse_url_with_password(self):
        redis_settings = parse_redis_url("redis://:secret@redis:6380/2")

        assert redis_settings.host == "redis"
        assert redis_settings.port == 6380
        assert redis_settings.password == "secret"
        assert redis_settings.database == 2

    def test_parse_url_without_password(self):
        redis_settings = parse_redis_url("redis://localhost:6379")

        assert redis_settings.password is None
        assert redis_settings.database == 0

    def test_invalid_url(self):
        with pytest.raises(ValueError):
            parse_redis_url("http://localhost")

    def test_worker_registers_maintenance_tasks(self):
        names = {f.__name__ for f in WorkerSettings.functions}

        assert WorkerSettings.queue_name == QUEUE_NAME
        assert names == {
            "expire_stale_checkout_sessions",
            "purge_processed_webhook_events",
            "audit_all_credit_accounts",
        }
        assert len(WorkerSettings.cron_jobs) == 3


class TestExpireStaleCheckoutSessions:
    @pytest.mark.asyncio
    async def test_expires_only_past_grace(self, worker_db, create_session):
        stale = await create_session(
            provider_session_id="cs_stale", expires_in=timedelta(hours=-3)
        )
        fresh = await create_session(provider_session_id="cs_fresh")

        result = await expire_stale_checkout_sessions({})

        assert result == {"status": "completed", "expired_count": 1}
        async with worker_db() as db:
            assert (await db.get(CheckoutSession, stale.id)).status == CheckoutStatus.EXPIRED
            assert (await db.get(CheckoutSession, fresh.id)).status == (
                CheckoutStatus.AWAITING_PAYMENT
            )


class TestPurgeProcessedWebhookEvents:
    @pytest.mark.asyncio
    async def test_purges_old_rows(self, worker_db, db_session):
        db_session.add_all(
            [
                ProcessedWebhookEvent(
                    event_id="evt_old",
                    event_type="checkout.session.completed",
                    outcome="credited",
                    processed_at=utcnow() - timedelta(days=45),
                ),
                ProcessedWebhookEvent(
                    event_id="evt_recent",
                    event_type="checkout.session.completed",
                    outcome="credited",
                    processed_at=utcnow() - timedelta(days=1),
                ),
            ]
        )
        await db_session.commit()

        result = await purge_processed_webhook_events({})

        assert result["purged_count"] == 1
        async with worker_db() as db:
            assert await db.get(ProcessedWebhookEvent, "evt_old") is None
            assert await db.get(ProcessedWebhookEvent, "evt_recent") is not None


class TestAuditAllCreditAccounts:
    @pytest.mark.asyncio
    async def test_reports_and_freezes_failures(self, worker_db, db_session):
        writer = LedgerWriter(db_session)
        await writer.apply_transaction("tenant-a", 100, TransactionType.BONUS)
        await writer.apply_transaction("tenant-b", 100, TransactionType.BONUS)
        await db_session.execute(
            update(CreditAccount)
            .where(CreditAccount.tenant_id == "tenant-b")
            .values(balance=5)
        )
        await db_session.commit()

        result = await audit_all_credit_accounts({})

        assert result == {"status": "completed", "failed_tenants": ["tenant-b"]}
        async with worker_db() as db:
            assert (await db.get(CreditAccount, "tenant-b")).frozen is True
            assert (await db.get(CreditAccount, "tenant-a")).frozen is False
