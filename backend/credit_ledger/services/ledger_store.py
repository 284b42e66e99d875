"""Ledger store: persistence for credit accounts and the transaction log.

This module provides:
- Account lookups (optionally under a row lock)
- Race-free account creation
- The version compare-and-swap used by the ledger writer
- Append-only transaction inserts
- Balance and paginated history reads for the API

Nothing outside the ledger writer should call the mutating methods here.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.core.database import insert_if_absent
from credit_ledger.core.exceptions import LedgerValidationError
from credit_ledger.models.credit_account import CreditAccount
from credit_ledger.models.credit_transaction import CreditTransaction, TransactionType
from credit_ledger.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


@dataclass
class BalanceSummary:
    """Read-only projection of a tenant's account."""

    tenant_id: str
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    is_low_balance: bool
    frozen: bool


@dataclass
class TransactionPage:
    """One page of transaction history, newest first."""

    transactions: list[CreditTransaction]
    has_more: bool
    next_cursor: Optional[str]


class LedgerStore:
    """Data access for the credit ledger tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_account(
        self, tenant_id: str, lock: bool = False
    ) -> Optional[CreditAccount]:
        """Load the account row, always refreshing any cached instance.

        With ``lock=True`` the row is read ``FOR UPDATE`` so concurrent
        writers for the same tenant queue behind this transaction.
        """
        stmt = (
            select(CreditAccount)
            .where(CreditAccount.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(self, tenant_id: str) -> CreditAccount:
        """Get the account, creating an empty one if it does not exist yet."""
        account = await self.get_account(tenant_id, lock=True)
        if account is not None:
            return account

        created = await insert_if_absent(
            self.db,
            CreditAccount.__table__,
            {
                "tenant_id": tenant_id,
                "balance": 0,
                "lifetime_earned": 0,
                "lifetime_spent": 0,
                "version": 0,
                "frozen": False,
            },
            index_elements=["tenant_id"],
        )
        if created:
            logger.info(f"Created credit account for tenant {tenant_id}")

        account = await self.get_account(tenant_id, lock=True)
        if account is None:
            raise RuntimeError(f"Credit account for tenant {tenant_id} vanished after insert")
        return account

    async def compare_and_swap_balance(
        self,
        tenant_id: str,
        expected_version: int,
        new_balance: int,
        earned_delta: int = 0,
        spent_delta: int = 0,
    ) -> bool:
        """Write the new balance only if nobody else wrote since we read.

        Returns False when the version moved (a concurrent write won).
        """
        stmt = (
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == tenant_id,
                CreditAccount.version == expected_version,
                CreditAccount.frozen.is_(False),
            )
            .values(
                balance=new_balance,
                lifetime_earned=CreditAccount.lifetime_earned + earned_delta,
                lifetime_spent=CreditAccount.lifetime_spent + spent_delta,
                version=expected_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def set_frozen(
        self, tenant_id: str, frozen: bool, reason: Optional[str] = None
    ) -> bool:
        """Freeze or unfreeze an account. Returns False if it does not exist."""
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.tenant_id == tenant_id)
            .values(
                frozen=frozen,
                frozen_reason=reason if frozen else None,
                frozen_at=utcnow() if frozen else None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def list_tenant_ids(self) -> list[str]:
        result = await self.db.execute(
            select(CreditAccount.tenant_id).order_by(CreditAccount.tenant_id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def append_transaction(
        self,
        tenant_id: str,
        sequence: int,
        amount: int,
        balance_after: int,
        transaction_type: TransactionType,
        action_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> CreditTransaction:
        """Insert a new immutable transaction row and flush it."""
        transaction = CreditTransaction(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            sequence=sequence,
            amount=amount,
            balance_after=balance_after,
            transaction_type=transaction_type,
            action_type=action_type,
            reference_id=reference_id,
            reference_type=reference_type,
            idempotency_key=idempotency_key,
            description=description,
            tx_metadata=metadata,
            created_at=utcnow(),
        )
        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def get_transaction(
        self, transaction_id: uuid.UUID
    ) -> Optional[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction).where(CreditTransaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def find_by_idempotency_key(self, key: str) -> Optional[CreditTransaction]:
        result = await self.db.execute(
            select(CreditTransaction).where(CreditTransaction.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def replay_transactions(
        self, tenant_id: str, max_sequence: Optional[int] = None
    ) -> list[CreditTransaction]:
        """All transactions for a tenant in chain order (oldest first).

        ``max_sequence`` stops the replay at a known account version, so
        writes committed after the account was read are left out.
        """
        query = select(CreditTransaction).where(CreditTransaction.tenant_id == tenant_id)
        if max_sequence is not None:
            query = query.where(CreditTransaction.sequence <= max_sequence)
        result = await self.db.execute(query.order_by(CreditTransaction.sequence.asc()))
        return list(result.scalars().all())

    async def sum_transactions(self, tenant_id: str) -> int:
        total = await self.db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.tenant_id == tenant_id
            )
        )
        return int(total or 0)

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    async def get_balance_summary(self, tenant_id: str) -> BalanceSummary:
        """Balance query. A tenant without an account simply has zero credits."""
        account = await self.get_account(tenant_id)
        if account is None:
            return BalanceSummary(
                tenant_id=tenant_id,
                balance=0,
                lifetime_earned=0,
                lifetime_spent=0,
                is_low_balance=True,
                frozen=False,
            )
        return BalanceSummary(
            tenant_id=tenant_id,
            balance=account.balance,
            lifetime_earned=account.lifetime_earned,
            lifetime_spent=account.lifetime_spent,
            is_low_balance=account.balance <= settings.LOW_BALANCE_THRESHOLD,
            frozen=account.frozen,
        )

    async def get_transaction_page(
        self,
        tenant_id: str,
        transaction_type: Union[TransactionType, str, None] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        cursor: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        """Transaction history, newest first, keyset-paginated on sequence.

        Args:
            tenant_id: Tenant whose ledger to read
            transaction_type: A TransactionType, its value, "all" or None
            date_from: Inclusive lower bound on created_at
            date_to: Inclusive upper bound on created_at
            cursor: ``next_cursor`` from the previous page
            page_size: 1..100

        Raises:
            LedgerValidationError: bad page size, cursor or type
        """
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise LedgerValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}"
            )

        query = select(CreditTransaction).where(CreditTransaction.tenant_id == tenant_id)

        if transaction_type is not None and transaction_type != "all":
            try:
                tx_type = TransactionType(transaction_type)
            except ValueError:
                raise LedgerValidationError(f"Unknown transaction type: {transaction_type}")
            query = query.where(CreditTransaction.transaction_type == tx_type)

        if date_from is not None:
            query = query.where(CreditTransaction.created_at >= ensure_utc(date_from))
        if date_to is not None:
            query = query.where(CreditTransaction.created_at <= ensure_utc(date_to))

        if cursor:
            try:
                before_sequence = int(cursor)
            except ValueError:
                raise LedgerValidationError(f"Invalid cursor: {cursor}")
            query = query.where(CreditTransaction.sequence < before_sequence)

        # Fetch one extra row to learn whether another page exists
        query = query.order_by(CreditTransaction.sequence.desc()).limit(page_size + 1)
        result = await self.db.execute(query)
        rows = list(result.scalars().all())

        has_more = len(rows) > page_size
        transactions = rows[:page_size]
        next_cursor = str(transactions[-1].sequence) if has_more else None

        return TransactionPage(
            transactions=transactions,
            has_more=has_more,
            next_cursor=next_cursor,
        )


def get_ledger_store(db: AsyncSession) -> LedgerStore:
    """Factory function to create LedgerStore.

    Args:
        db: Database session

    Returns:
        Configured LedgerStore instance
    """
    return LedgerStore(db)
