"""Super-admin API routes for credit operations.

This module provides REST endpoints for:
- POST /api/v1/admin/credits/adjust - Manual balance adjustment
- POST /api/v1/admin/credits/bulk-grant - Grant credits to many tenants
- POST /api/v1/admin/credits/free-grant/{tenant_id} - Monthly free grant
- POST /api/v1/admin/transactions/{transaction_id}/refund - Refund a usage debit
- POST /api/v1/admin/audit/{tenant_id} - Audit a tenant's ledger
- POST /api/v1/admin/accounts/{tenant_id}/unfreeze - Lift an audit freeze
- GET/POST /api/v1/admin/promo-codes - List and create promo codes
- PATCH /api/v1/admin/promo-codes/{code} - Update a promo code
- GET /api/v1/admin/promo-codes/{code}/redemptions - Redemption history
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.api.deps import get_db, require_super_admin
from credit_ledger.api.v1.routers.credits import (
    frozen_account_exception,
    insufficient_credits_exception,
    ledger_write_response,
)
from credit_ledger.core.exceptions import LedgerValidationError
from credit_ledger.models.credit_transaction import TransactionType
from credit_ledger.schemas.admin import (
    AdjustCreditsRequest,
    AuditReportResponse,
    BulkGrantRequest,
    BulkGrantResponse,
    FreeGrantRequest,
    RefundRequest,
    UnfreezeResponse,
)
from credit_ledger.schemas.credits import LedgerWriteResponse
from credit_ledger.schemas.promo import (
    PromoCodeCreate,
    PromoCodeResponse,
    PromoCodeUpdate,
    PromoRedemptionResponse,
)
from credit_ledger.services.auth_service import TenantContext
from credit_ledger.services.ledger_auditor import AccountNotFoundError, get_ledger_auditor
from credit_ledger.services.ledger_writer import (
    AccountFrozenError,
    InsufficientCreditsError,
    LedgerConflictError,
    TransactionNotFoundError,
    get_ledger_writer,
)
from credit_ledger.services.promo_registry import (
    PromoCodeExistsError,
    PromoCodeNotFoundError,
    get_promo_registry,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def ledger_error_exception(e: Exception) -> HTTPException:
    """Map ledger writer errors onto HTTP responses."""
    if isinstance(e, InsufficientCreditsError):
        return insufficient_credits_exception(e)
    if isinstance(e, AccountFrozenError):
        return frozen_account_exception(e)
    if isinstance(e, TransactionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, LedgerConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Credit balance is busy, try again",
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


LEDGER_ERRORS = (
    InsufficientCreditsError,
    AccountFrozenError,
    TransactionNotFoundError,
    LedgerConflictError,
    LedgerValidationError,
)


@router.post(
    "/credits/adjust",
    response_model=LedgerWriteResponse,
    summary="Adjust credits",
    description="Apply a signed manual adjustment to a tenant's balance",
)
async def adjust_credits(
    request: AdjustCreditsRequest,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> LedgerWriteResponse:
    try:
        result = await get_ledger_writer(db).adjust_credits(
            request.tenant_id,
            request.amount,
            reason=request.reason,
            notes=request.notes,
            admin_id=admin.user_id,
            idempotency_key=request.idempotency_key,
        )
    except LEDGER_ERRORS as e:
        logger.warning(f"Adjustment for tenant {request.tenant_id} rejected: {e}")
        raise ledger_error_exception(e)

    logger.info(
        f"Admin {admin.user_id} adjusted tenant {request.tenant_id} by {request.amount}"
    )
    return ledger_write_response(result)


@router.post(
    "/credits/bulk-grant",
    response_model=BulkGrantResponse,
    summary="Bulk grant credits",
    description="Grant the same number of credits to many tenants",
)
async def bulk_grant_credits(
    request: BulkGrantRequest,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> BulkGrantResponse:
    tenant_ids = list(dict.fromkeys(request.tenant_ids))
    # Returned so a failed or timed-out batch can be retried under the same key
    batch_id = request.batch_id or uuid.uuid4().hex
    try:
        granted = await get_ledger_writer(db).grant_bulk_credits(
            tenant_ids,
            request.amount,
            transaction_type=TransactionType(request.transaction_type),
            notes=request.notes,
            admin_id=admin.user_id,
            batch_id=batch_id,
        )
    except LEDGER_ERRORS as e:
        logger.warning(f"Bulk grant rejected: {e}")
        raise ledger_error_exception(e)

    return BulkGrantResponse(
        batch_id=batch_id, granted=granted, requested=len(tenant_ids)
    )


@router.post(
    "/credits/free-grant/{tenant_id}",
    response_model=LedgerWriteResponse,
    summary="Monthly free grant",
    description="Grant the monthly free credits; repeated calls in a period are no-ops",
)
async def grant_free_credits(
    tenant_id: str,
    request: Optional[FreeGrantRequest] = None,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> LedgerWriteResponse:
    request = request or FreeGrantRequest()
    try:
        result = await get_ledger_writer(db).grant_free_credits(
            tenant_id, amount=request.amount, period=request.period
        )
    except LEDGER_ERRORS as e:
        raise ledger_error_exception(e)
    return ledger_write_response(result)


@router.post(
    "/transactions/{transaction_id}/refund",
    response_model=LedgerWriteResponse,
    summary="Refund usage transaction",
    description="Return the credits of a usage debit; a second refund is a replay",
)
async def refund_transaction(
    transaction_id: uuid.UUID,
    request: RefundRequest,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> LedgerWriteResponse:
    try:
        result = await get_ledger_writer(db).refund_transaction(
            transaction_id, reason=request.reason, admin_id=admin.user_id
        )
    except LEDGER_ERRORS as e:
        logger.warning(f"Refund of transaction {transaction_id} rejected: {e}")
        raise ledger_error_exception(e)
    return ledger_write_response(result)


@router.post(
    "/audit/{tenant_id}",
    response_model=AuditReportResponse,
    summary="Audit tenant ledger",
    description="Replay the ledger; a failing audit freezes the account",
)
async def audit_tenant(
    tenant_id: str,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> AuditReportResponse:
    try:
        report = await get_ledger_auditor(db).audit_account(tenant_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return AuditReportResponse(
        tenant_id=report.tenant_id,
        ok=report.ok,
        expected_balance=report.expected_balance,
        recorded_balance=report.recorded_balance,
        discrepancies=report.discrepancies,
    )


@router.post(
    "/accounts/{tenant_id}/unfreeze",
    response_model=UnfreezeResponse,
    summary="Unfreeze account",
    description="Lift an audit freeze after manual reconciliation",
)
async def unfreeze_account(
    tenant_id: str,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> UnfreezeResponse:
    try:
        await get_ledger_auditor(db).unfreeze_account(tenant_id, admin_id=admin.user_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return UnfreezeResponse(tenant_id=tenant_id, frozen=False)


@router.get(
    "/promo-codes",
    response_model=list[PromoCodeResponse],
    summary="List promo codes",
)
async def list_promo_codes(
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> list[PromoCodeResponse]:
    promos = await get_promo_registry(db).list_promo_codes()
    return [PromoCodeResponse.model_validate(promo) for promo in promos]


@router.post(
    "/promo-codes",
    response_model=PromoCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create promo code",
)
async def create_promo_code(
    request: PromoCodeCreate,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> PromoCodeResponse:
    try:
        promo = await get_promo_registry(db).create_promo_code(
            code=request.code,
            credits_amount=request.credits_amount,
            max_uses=request.max_uses,
            expires_at=request.expires_at,
            description=request.description,
            created_by=admin.user_id,
        )
    except PromoCodeExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PromoCodeResponse.model_validate(promo)


@router.patch(
    "/promo-codes/{code}",
    response_model=PromoCodeResponse,
    summary="Update promo code",
)
async def update_promo_code(
    code: str,
    request: PromoCodeUpdate,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> PromoCodeResponse:
    try:
        promo = await get_promo_registry(db).update_promo_code(
            code,
            active=request.active,
            max_uses=request.max_uses,
            expires_at=request.expires_at,
            description=request.description,
        )
    except PromoCodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PromoCodeResponse.model_validate(promo)


@router.get(
    "/promo-codes/{code}/redemptions",
    response_model=list[PromoRedemptionResponse],
    summary="List promo code redemptions",
)
async def list_promo_redemptions(
    code: str,
    admin: TenantContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> list[PromoRedemptionResponse]:
    try:
        redemptions = await get_promo_registry(db).list_redemptions(code)
    except PromoCodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return [PromoRedemptionResponse.model_validate(r) for r in redemptions]
