"""API routes for promo codes.

- POST /api/v1/promo-codes/validate - Check a promo code before checkout
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.api.deps import get_current_tenant, get_db
from credit_ledger.schemas.promo import PromoValidateRequest, PromoValidateResponse
from credit_ledger.services.auth_service import TenantContext
from credit_ledger.services.promo_registry import get_promo_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])


@router.post(
    "/validate",
    response_model=PromoValidateResponse,
    summary="Validate promo code",
    description="Check whether a promo code can currently be applied. Does not consume a use.",
)
async def validate_promo_code(
    request: PromoValidateRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> PromoValidateResponse:
    validation = await get_promo_registry(db).validate(request.code)
    if not validation.valid:
        logger.info(
            f"Promo code {validation.code} rejected for tenant {tenant.tenant_id}: "
            f"{validation.reason}"
        )
    return PromoValidateResponse(
        valid=validation.valid,
        code=validation.code,
        credits_amount=validation.credits_amount,
        reason=validation.reason,
    )
