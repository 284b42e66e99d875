"""API routes for tenant credit balances.

This module provides REST endpoints for:
- GET /api/v1/credits/balance - Get current balance
- GET /api/v1/credits/transactions - Get transaction history
- POST /api/v1/credits/consume - Debit credits for a feature action
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.api.deps import get_current_tenant, get_db
from credit_ledger.core.exceptions import LedgerValidationError
from credit_ledger.schemas.credits import (
    ConsumeCreditsRequest,
    CreditBalanceResponse,
    LedgerWriteResponse,
    TransactionHistoryResponse,
    TransactionResponse,
)
from credit_ledger.services.auth_service import TenantContext
from credit_ledger.services.ledger_store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, get_ledger_store
from credit_ledger.services.ledger_writer import (
    AccountFrozenError,
    InsufficientCreditsError,
    LedgerConflictError,
    LedgerResult,
    get_ledger_writer,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


def ledger_write_response(result: LedgerResult) -> LedgerWriteResponse:
    return LedgerWriteResponse(
        transaction=TransactionResponse.from_transaction(result.transaction),
        new_balance=result.new_balance,
        replayed=result.replayed,
    )


def insufficient_credits_exception(e: InsufficientCreditsError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        detail={
            "message": "Insufficient credits",
            "required": e.required,
            "available": e.available,
            "shortfall": e.shortfall,
        },
    )


def frozen_account_exception(e: AccountFrozenError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_423_LOCKED,
        detail="Credit account is frozen pending reconciliation",
    )


@router.get(
    "/balance",
    response_model=CreditBalanceResponse,
    summary="Get credit balance",
    description="Get the current credit balance for the caller's tenant",
)
async def get_balance(
    tenant: TenantContext = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> CreditBalanceResponse:
    """Get the tenant's credit balance.

    A tenant that has never had a transaction reads as zero; this
    endpoint never creates an account.
    """
    summary = await get_ledger_store(db).get_balance_summary(tenant.tenant_id)
    return CreditBalanceResponse.model_validate(summary)


@router.get(
    "/transactions",
    response_model=TransactionHistoryResponse,
    summary="Get transaction history",
    description="Get the tenant's credit transactions, newest first",
)
async def get_transactions(
    type: Optional[str] = Query(
        default=None,
        description="Filter by transaction type (purchase, usage, free_grant, bonus, adjustment, refund, all)",
    ),
    date_from: Optional[datetime] = Query(default=None, description="Inclusive lower bound"),
    date_to: Optional[datetime] = Query(default=None, description="Inclusive upper bound"),
    cursor: Optional[str] = Query(default=None, description="next_cursor from the previous page"),
    page_size: int = Query(
        default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Transactions per page"
    ),
    tenant: TenantContext = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> TransactionHistoryResponse:
    """Get paginated transaction history.

    Raises:
        HTTPException(400): If the type filter or cursor is invalid
    """
    try:
        page = await get_ledger_store(db).get_transaction_page(
            tenant.tenant_id,
            transaction_type=type,
            date_from=date_from,
            date_to=date_to,
            cursor=cursor,
            page_size=page_size,
        )
    except LedgerValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return TransactionHistoryResponse(
        transactions=[TransactionResponse.from_transaction(tx) for tx in page.transactions],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


@router.post(
    "/consume",
    response_model=LedgerWriteResponse,
    summary="Consume credits",
    description="Debit credits for a feature action",
)
async def consume_credits(
    request: ConsumeCreditsRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> LedgerWriteResponse:
    """Debit credits from the caller's tenant.

    Raises:
        HTTPException(402): Not enough credits, with required/available/shortfall
        HTTPException(423): Account frozen
        HTTPException(409): Could not apply under contention
    """
    writer = get_ledger_writer(db)

    try:
        result = await writer.consume_credits(
            tenant.tenant_id,
            request.amount,
            action_type=request.action_type,
            reference_id=request.reference_id,
            reference_type=request.reference_type,
            idempotency_key=request.idempotency_key,
            metadata=request.metadata,
        )
    except InsufficientCreditsError as e:
        logger.warning(f"Tenant {tenant.tenant_id} cannot afford {request.action_type}: {e}")
        raise insufficient_credits_exception(e)
    except AccountFrozenError as e:
        logger.warning(str(e))
        raise frozen_account_exception(e)
    except LedgerValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except LedgerConflictError as e:
        logger.error(f"Ledger contention for tenant {tenant.tenant_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Credit balance is busy, try again",
        )

    return ledger_write_response(result)
