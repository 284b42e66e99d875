"""Ledger writer: the single writer for credit balances.

This service provides business logic for:
- Applying credit/debit transactions atomically with the balance update
- Idempotent replays keyed by idempotency key
- Usage debits, monthly free grants, admin adjustments and bulk grants
- Refunding usage transactions exactly once

Concurrency: the account row is read FOR UPDATE and written with a
version compare-and-swap; on conflict the whole attempt is rolled back
and retried. No in-process locks are used.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.core.exceptions import CreditLedgerError, LedgerValidationError
from credit_ledger.models.credit_transaction import (
    CREDIT_ONLY_TYPES,
    ActionType,
    CreditTransaction,
    TransactionType,
)
from credit_ledger.services.ledger_store import LedgerStore
from credit_ledger.utils.timeutils import period_key

logger = logging.getLogger(__name__)

ACTION_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


class InsufficientCreditsError(CreditLedgerError):
    """Raised when a debit would drive the balance below zero."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient credits: required {required}, available {available}, "
            f"short by {self.shortfall}"
        )


class AccountFrozenError(CreditLedgerError):
    """Raised when writing to an account frozen by a failed audit."""

    def __init__(self, tenant_id: str, reason: Optional[str] = None):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(
            f"Credit account for tenant {tenant_id} is frozen pending reconciliation"
            + (f": {reason}" if reason else "")
        )


class LedgerConflictError(CreditLedgerError):
    """Raised when a concurrent write invalidated this attempt."""

    pass


class TransactionNotFoundError(CreditLedgerError):
    """Raised when a referenced transaction does not exist."""

    pass


class RefundNotAllowedError(LedgerValidationError):
    """Raised when a transaction cannot be refunded."""

    pass


@dataclass
class LedgerResult:
    """Outcome of a ledger write."""

    transaction: CreditTransaction
    new_balance: int
    replayed: bool = False


class LedgerWriter:
    """The only component allowed to change a credit balance."""

    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None):
        """Initialize the ledger writer.

        Args:
            db: Database session for ledger operations
            max_retries: Compare-and-swap attempts before giving up
        """
        self.db = db
        self.store = LedgerStore(db)
        self.max_retries = (
            settings.LEDGER_MAX_RETRIES if max_retries is None else max_retries
        )

    async def apply_transaction(
        self,
        tenant_id: str,
        amount: int,
        transaction_type: TransactionType,
        *,
        idempotency_key: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        action_type: Union[ActionType, str, None] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        autocommit: bool = True,
    ) -> LedgerResult:
        """Apply one balance-affecting transaction.

        Args:
            tenant_id: Tenant whose balance changes
            amount: Signed, non-zero credit delta
            transaction_type: Kind of transaction
            idempotency_key: Unique key for the logical event (required for purchases)
            reference_id: Originating business object id
            reference_type: Originating business object kind
            action_type: Sub-category key
            description: Human readable description
            metadata: Opaque audit detail
            autocommit: When False, make a single attempt, flush without
                committing and let the caller own the unit of work

        Returns:
            LedgerResult; ``replayed`` is True when the idempotency key had
            already been applied and nothing new was written

        Raises:
            LedgerValidationError: malformed input
            InsufficientCreditsError: debit exceeds the balance
            AccountFrozenError: account failed an integrity audit
            LedgerConflictError: retries exhausted (or, with
                autocommit=False, the single attempt lost a race)
        """
        transaction_type = self._validate(
            tenant_id, amount, transaction_type, idempotency_key, action_type, metadata
        )
        action_value = action_type.value if isinstance(action_type, ActionType) else action_type

        kwargs = dict(
            idempotency_key=idempotency_key,
            reference_id=reference_id,
            reference_type=reference_type,
            action_type=action_value,
            description=description,
            metadata=metadata,
        )

        if not autocommit:
            try:
                return await self._apply_once(tenant_id, amount, transaction_type, **kwargs)
            except IntegrityError as e:
                raise LedgerConflictError(
                    f"Concurrent write for tenant {tenant_id}: {e.orig}"
                ) from e

        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self._apply_once(tenant_id, amount, transaction_type, **kwargs)
                await self.db.commit()
            except (LedgerConflictError, IntegrityError) as e:
                await self.db.rollback()
                logger.info(
                    f"Ledger write conflict for tenant {tenant_id} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )
                continue
            except Exception:
                await self.db.rollback()
                raise

            if result.replayed:
                logger.info(
                    f"Idempotent replay for tenant {tenant_id} "
                    f"(key={idempotency_key}); balance {result.new_balance}"
                )
            else:
                logger.info(
                    f"Applied {transaction_type.value} of {amount} credits to tenant "
                    f"{tenant_id}. New balance: {result.new_balance}"
                )
            return result

        raise LedgerConflictError(
            f"Could not apply transaction for tenant {tenant_id} after "
            f"{self.max_retries} attempts"
        )

    async def consume_credits(
        self,
        tenant_id: str,
        amount: int,
        action_type: Union[ActionType, str],
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> LedgerResult:
        """Debit credits for a feature action.

        Args:
            tenant_id: Tenant being charged
            amount: Positive number of credits to consume
            action_type: Feature key that consumed the credits

        Raises:
            LedgerValidationError: If amount is not positive
            InsufficientCreditsError: If the tenant cannot afford it
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise LedgerValidationError("Amount must be positive")

        return await self.apply_transaction(
            tenant_id,
            -amount,
            TransactionType.USAGE,
            action_type=action_type,
            reference_id=reference_id,
            reference_type=reference_type,
            idempotency_key=idempotency_key,
            description=f"Credits used for {action_type.value if isinstance(action_type, ActionType) else action_type}",
            metadata=metadata,
        )

    async def grant_free_credits(
        self,
        tenant_id: str,
        amount: Optional[int] = None,
        period: Optional[str] = None,
    ) -> LedgerResult:
        """Grant the monthly free credits, at most once per tenant per period."""
        grant = settings.FREE_GRANT_CREDITS if amount is None else amount
        period = period or period_key()

        return await self.apply_transaction(
            tenant_id,
            grant,
            TransactionType.FREE_GRANT,
            idempotency_key=f"free_grant:{tenant_id}:{period}",
            action_type=ActionType.MONTHLY_FREE_GRANT,
            description="Monthly free credit grant",
            metadata={"period": period},
        )

    async def adjust_credits(
        self,
        tenant_id: str,
        amount: int,
        reason: str,
        notes: Optional[str] = None,
        admin_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerResult:
        """Manual super-admin adjustment. Negative adjustments cannot overdraw."""
        if not reason or not reason.strip():
            raise LedgerValidationError("Adjustment reason is required")

        return await self.apply_transaction(
            tenant_id,
            amount,
            TransactionType.ADJUSTMENT,
            idempotency_key=idempotency_key,
            action_type=ActionType.ADMIN_ADJUSTMENT,
            description=reason.strip(),
            metadata={"reason": reason.strip(), "notes": notes, "admin_id": admin_id},
        )

    async def grant_bulk_credits(
        self,
        tenant_ids: Iterable[str],
        amount: int,
        transaction_type: TransactionType = TransactionType.BONUS,
        notes: Optional[str] = None,
        admin_id: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> int:
        """Grant the same amount to many tenants.

        The whole batch commits as one unit: if any tenant's grant fails
        (frozen account, validation, contention past the retry limit) no
        tenant is credited. Grants are keyed by ``batch_id`` so that
        re-running a committed batch does not double-grant.

        Returns:
            Number of tenants that received a new grant

        Raises:
            AccountFrozenError: a recipient's account is frozen
            LedgerValidationError: bad type, amount or tenant id
            LedgerConflictError: retries exhausted
        """
        if transaction_type not in (TransactionType.BONUS, TransactionType.FREE_GRANT):
            raise LedgerValidationError("Bulk grants must be bonus or free_grant transactions")

        batch_id = batch_id or uuid.uuid4().hex
        recipients = list(dict.fromkeys(tenant_ids))

        for attempt in range(1, self.max_retries + 1):
            try:
                granted = 0
                for tenant_id in recipients:
                    result = await self.apply_transaction(
                        tenant_id,
                        amount,
                        transaction_type,
                        idempotency_key=f"bulk:{batch_id}:{tenant_id}",
                        action_type=ActionType.BULK_GRANT,
                        reference_id=batch_id,
                        reference_type="bulk_grant",
                        description=notes or "Bulk credit grant",
                        metadata={"batch_id": batch_id, "admin_id": admin_id},
                        autocommit=False,
                    )
                    if not result.replayed:
                        granted += 1
                await self.db.commit()
            except (LedgerConflictError, IntegrityError) as e:
                await self.db.rollback()
                logger.info(
                    f"Bulk grant {batch_id} conflict "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )
                continue
            except Exception:
                await self.db.rollback()
                logger.warning(f"Bulk grant {batch_id} rolled back; no tenant was credited")
                raise

            logger.info(
                f"Bulk grant {batch_id}: {granted} tenants received {amount} credits"
            )
            return granted

        raise LedgerConflictError(
            f"Could not apply bulk grant {batch_id} after {self.max_retries} attempts"
        )

    async def refund_transaction(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        admin_id: Optional[str] = None,
    ) -> LedgerResult:
        """Refund a usage transaction.

        The refund is keyed on the original transaction id, so refunding the
        same transaction twice returns the first refund. The original row is
        left untouched.

        Raises:
            TransactionNotFoundError: unknown transaction id
            RefundNotAllowedError: the transaction is not a usage debit
        """
        original = await self.store.get_transaction(transaction_id)
        if original is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        if original.transaction_type != TransactionType.USAGE:
            raise RefundNotAllowedError("Can only refund usage transactions")

        return await self.apply_transaction(
            original.tenant_id,
            abs(original.amount),
            TransactionType.REFUND,
            idempotency_key=f"refund:{original.id}",
            action_type=ActionType.USAGE_REFUND,
            reference_id=str(original.id),
            reference_type="credit_transaction",
            description=f"Refund for transaction {original.id}: {reason}",
            metadata={"refund_reason": reason, "refunded_by": admin_id},
        )

    async def _apply_once(
        self,
        tenant_id: str,
        amount: int,
        transaction_type: TransactionType,
        *,
        idempotency_key: Optional[str],
        reference_id: Optional[str],
        reference_type: Optional[str],
        action_type: Optional[str],
        description: Optional[str],
        metadata: Optional[dict],
    ) -> LedgerResult:
        account = await self.store.ensure_account(tenant_id)

        # Checked after the lock so a concurrent writer's commit is visible
        if idempotency_key:
            existing = await self.store.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                if existing.tenant_id != tenant_id:
                    raise LedgerValidationError(
                        f"Idempotency key {idempotency_key} belongs to another tenant"
                    )
                return LedgerResult(
                    transaction=existing,
                    new_balance=account.balance,
                    replayed=True,
                )

        if account.frozen:
            raise AccountFrozenError(tenant_id, account.frozen_reason)

        new_balance = account.balance + amount
        if new_balance < 0:
            raise InsufficientCreditsError(required=-amount, available=account.balance)

        swapped = await self.store.compare_and_swap_balance(
            tenant_id,
            expected_version=account.version,
            new_balance=new_balance,
            earned_delta=amount if amount > 0 else 0,
            spent_delta=-amount if amount < 0 else 0,
        )
        if not swapped:
            raise LedgerConflictError(
                f"Account version for tenant {tenant_id} moved past {account.version}"
            )

        transaction = await self.store.append_transaction(
            tenant_id=tenant_id,
            sequence=account.version + 1,
            amount=amount,
            balance_after=new_balance,
            transaction_type=transaction_type,
            action_type=action_type,
            reference_id=reference_id,
            reference_type=reference_type,
            idempotency_key=idempotency_key,
            description=description,
            metadata=metadata,
        )
        return LedgerResult(transaction=transaction, new_balance=new_balance)

    @staticmethod
    def _validate(
        tenant_id: str,
        amount: int,
        transaction_type: Union[TransactionType, str],
        idempotency_key: Optional[str],
        action_type: Union[ActionType, str, None],
        metadata: Optional[dict],
    ) -> TransactionType:
        if not tenant_id or not str(tenant_id).strip():
            raise LedgerValidationError("tenant_id is required")

        if isinstance(amount, bool) or not isinstance(amount, int):
            raise LedgerValidationError("Amount must be an integer")
        if amount == 0:
            raise LedgerValidationError("Amount must be non-zero")

        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise LedgerValidationError(f"Unknown transaction type: {transaction_type}")

        if transaction_type in CREDIT_ONLY_TYPES and amount < 0:
            raise LedgerValidationError(
                f"{transaction_type.value} transactions must add credits"
            )
        if transaction_type == TransactionType.USAGE and amount > 0:
            raise LedgerValidationError("usage transactions must debit credits")
        if transaction_type == TransactionType.PURCHASE and not idempotency_key:
            raise LedgerValidationError("Purchases require an idempotency key")

        if idempotency_key is not None and not idempotency_key.strip():
            raise LedgerValidationError("Idempotency key must not be blank")

        if action_type is not None:
            value = action_type.value if isinstance(action_type, ActionType) else action_type
            if not isinstance(value, str) or not ACTION_TYPE_PATTERN.match(value):
                raise LedgerValidationError(f"Invalid action type: {action_type!r}")

        if metadata is not None and not isinstance(metadata, dict):
            raise LedgerValidationError("Metadata must be a mapping")

        return transaction_type


def get_ledger_writer(db: AsyncSession) -> LedgerWriter:
    """Factory function to create LedgerWriter.

    Args:
        db: Database session

    Returns:
        Configured LedgerWriter instance
    """
    return LedgerWriter(db)
