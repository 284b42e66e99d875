"""Ledger auditor: checks that each account agrees with its transaction log.

A mismatch is an integrity failure. The account is frozen so no further
writes land on a corrupted ledger, and the failure is logged at critical
level for manual reconciliation.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.exceptions import CreditLedgerError
from credit_ledger.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class AccountNotFoundError(CreditLedgerError):
    """Raised when auditing or unfreezing a tenant without an account."""

    pass


@dataclass
class AuditReport:
    tenant_id: str
    ok: bool
    expected_balance: int
    recorded_balance: int
    discrepancies: list[str] = field(default_factory=list)


class LedgerAuditor:
    """Replays transaction logs against account balances."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = LedgerStore(db)

    async def audit_account(self, tenant_id: str, freeze: bool = True) -> AuditReport:
        """Replay the tenant's transactions and compare with the account.

        The replay stops at the account's version, so the report compares
        one consistent point of the ledger even while writes continue.

        Args:
            tenant_id: Tenant to audit
            freeze: Freeze the account when a discrepancy is found

        Raises:
            AccountNotFoundError: tenant has no credit account
        """
        account = await self.store.get_account(tenant_id)
        if account is None:
            raise AccountNotFoundError(f"No credit account for tenant {tenant_id}")

        # Writes committed after the account read carry higher sequences
        transactions = await self.store.replay_transactions(
            tenant_id, max_sequence=account.version
        )
        discrepancies: list[str] = []

        running = 0
        earned = 0
        spent = 0
        for expected_sequence, tx in enumerate(transactions, start=1):
            if tx.sequence != expected_sequence:
                discrepancies.append(
                    f"sequence gap: expected {expected_sequence}, found {tx.sequence}"
                )
            running += tx.amount
            if tx.amount > 0:
                earned += tx.amount
            else:
                spent -= tx.amount
            if tx.balance_after != running:
                discrepancies.append(
                    f"transaction {tx.id} (sequence {tx.sequence}) records balance_after "
                    f"{tx.balance_after}, replay gives {running}"
                )
            if running < 0:
                discrepancies.append(
                    f"balance negative ({running}) after sequence {tx.sequence}"
                )

        if account.balance != running:
            discrepancies.append(
                f"account balance {account.balance} != sum of transactions {running}"
            )
        if account.lifetime_earned != earned:
            discrepancies.append(
                f"lifetime_earned {account.lifetime_earned} != replayed {earned}"
            )
        if account.lifetime_spent != spent:
            discrepancies.append(
                f"lifetime_spent {account.lifetime_spent} != replayed {spent}"
            )
        if account.version != len(transactions):
            discrepancies.append(
                f"account version {account.version} != transaction count {len(transactions)}"
            )

        report = AuditReport(
            tenant_id=tenant_id,
            ok=not discrepancies,
            expected_balance=running,
            recorded_balance=account.balance,
            discrepancies=discrepancies,
        )

        if not report.ok:
            logger.critical(
                f"Ledger integrity failure for tenant {tenant_id}: "
                + "; ".join(discrepancies)
            )
            if freeze and not account.frozen:
                await self.store.set_frozen(
                    tenant_id, True, reason=f"audit failed: {discrepancies[0]}"
                )
                await self.db.commit()
                logger.critical(f"Froze credit account for tenant {tenant_id}")

        return report

    async def audit_all_accounts(self) -> list[AuditReport]:
        """Audit every account. Returns only the failing reports."""
        failures = []
        for tenant_id in await self.store.list_tenant_ids():
            report = await self.audit_account(tenant_id)
            if not report.ok:
                failures.append(report)
        logger.info(f"Ledger audit finished: {len(failures)} failing accounts")
        return failures

    async def unfreeze_account(self, tenant_id: str, admin_id: Optional[str] = None) -> None:
        """Lift a freeze after manual reconciliation."""
        if not await self.store.set_frozen(tenant_id, False):
            raise AccountNotFoundError(f"No credit account for tenant {tenant_id}")
        await self.db.commit()
        logger.warning(f"Credit account for tenant {tenant_id} unfrozen by {admin_id}")


def get_ledger_auditor(db: AsyncSession) -> LedgerAuditor:
    """Factory function to create LedgerAuditor."""
    return LedgerAuditor(db)
