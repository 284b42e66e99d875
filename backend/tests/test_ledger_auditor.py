"""Tests for ledger integrity audits."""

from unittest.mock import patch

import pytest
from sqlalchemy import update

from credit_ledger.models import CreditAccount, CreditTransaction, TransactionType
from credit_ledger.services.ledger_auditor import (
    AccountNotFoundError,
    LedgerAuditor,
    get_ledger_auditor,
)
from credit_ledger.services.ledger_store import LedgerStore
from credit_ledger.services.ledger_writer import AccountFrozenError, LedgerWriter


async def seed_ledger(db_session, tenant_id: str = "tenant-a") -> None:
    writer = LedgerWriter(db_session)
    await writer.apply_transaction(
        tenant_id, 5000, TransactionType.PURCHASE, idempotency_key=f"seed-{tenant_id}"
    )
    await writer.apply_transaction(tenant_id, 500, TransactionType.BONUS)
    await writer.consume_credits(tenant_id, 1200, action_type="chat_message")


class TestAuditAccount:
    @pytest.mark.asyncio
    async def test_clean_ledger_passes(self, db_session):
        await seed_ledger(db_session)

        report = await get_ledger_auditor(db_session).audit_account("tenant-a")

        assert report.ok is True
        assert report.expected_balance == 4300
        assert report.recorded_balance == 4300
        assert report.discrepancies == []

    @pytest.mark.asyncio
    async def test_tampered_balance_freezes_account(self, db_session, session_factory):
        await seed_ledger(db_session)
        await db_session.execute(
            update(CreditAccount)
            .where(CreditAccount.tenant_id == "tenant-a")
            .values(balance=999999)
        )
        await db_session.commit()

        report = await LedgerAuditor(db_session).audit_account("tenant-a")

        assert report.ok is False
        assert report.expected_balance == 4300
        assert report.recorded_balance == 999999
        assert any("sum of transactions" in d for d in report.discrepancies)

        async with session_factory() as db:
            account = await LedgerStore(db).get_account("tenant-a")
        assert account.frozen is True
        assert account.frozen_reason.startswith("audit failed")

        with pytest.raises(AccountFrozenError):
            await LedgerWriter(db_session).consume_credits(
                "tenant-a", 10, action_type="chat_message"
            )

    @pytest.mark.asyncio
    async def test_write_during_audit_does_not_freeze(self, db_session, session_factory):
        await seed_ledger(db_session)
        replay = LedgerStore.replay_transactions

        async def replay_after_concurrent_write(store, tenant_id, max_sequence=None):
            # Another request commits a debit after the account row was read
            async with session_factory() as other:
                await LedgerWriter(other).consume_credits(
                    tenant_id, 10, action_type="chat_message"
                )
            return await replay(store, tenant_id, max_sequence=max_sequence)

        with patch.object(LedgerStore, "replay_transactions", replay_after_concurrent_write):
            report = await LedgerAuditor(db_session).audit_account("tenant-a")

        assert report.ok is True
        assert report.discrepancies == []
        assert report.recorded_balance == 4300

        async with session_factory() as db:
            account = await LedgerStore(db).get_account("tenant-a")
        assert account.frozen is False
        assert account.balance == 4290

        # The next audit sees the debit and still passes
        assert (await LedgerAuditor(db_session).audit_account("tenant-a")).ok is True

    @pytest.mark.asyncio
    async def test_broken_chain_detected(self, db_session):
        await seed_ledger(db_session)
        await db_session.execute(
            update(CreditTransaction)
            .where(CreditTransaction.tenant_id == "tenant-a", CreditTransaction.sequence == 2)
            .values(balance_after=1)
        )
        await db_session.commit()

        report = await LedgerAuditor(db_session).audit_account("tenant-a", freeze=False)

        assert report.ok is False
        assert any("sequence 2" in d for d in report.discrepancies)
        account = await LedgerStore(db_session).get_account("tenant-a")
        assert account.frozen is False

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, db_session):
        with pytest.raises(AccountNotFoundError):
            await LedgerAuditor(db_session).audit_account("nobody")


class TestAuditAll:
    @pytest.mark.asyncio
    async def test_reports_only_failures(self, db_session):
        await seed_ledger(db_session, "tenant-a")
        await seed_ledger(db_session, "tenant-b")
        await db_session.execute(
            update(CreditAccount)
            .where(CreditAccount.tenant_id == "tenant-b")
            .values(lifetime_spent=0)
        )
        await db_session.commit()

        failures = await LedgerAuditor(db_session).audit_all_accounts()

        assert [r.tenant_id for r in failures] == ["tenant-b"]


class TestUnfreeze:
    @pytest.mark.asyncio
    async def test_unfreeze_restores_writes(self, db_session):
        await seed_ledger(db_session)
        await LedgerStore(db_session).set_frozen("tenant-a", True, reason="manual hold")
        await db_session.commit()

        auditor = LedgerAuditor(db_session)
        await auditor.unfreeze_account("tenant-a", admin_id="admin-1")

        result = await LedgerWriter(db_session).consume_credits("tenant-a", 300, action_type="chat_message")
        assert result.new_balance == 4000

    @pytest.mark.asyncio
    async def test_unfreeze_unknown_tenant(self, db_session):
        with pytest.raises(AccountNotFoundError):
            await LedgerAuditor(db_session).unfreeze_account("nobody")
