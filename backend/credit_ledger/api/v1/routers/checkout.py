"""API routes for credit package checkout.

This module provides REST endpoints for:
- GET /api/v1/checkout/packages - List available credit packages
- GET /api/v1/checkout/packages/{package_id} - Get package details
- POST /api/v1/checkout - Create checkout session
- GET /api/v1/checkout/sessions/{session_id} - Poll checkout status
- GET /api/v1/checkout/config - Get public Stripe configuration
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.api.deps import get_current_tenant, get_db, get_payment_provider
from credit_ledger.core.config import settings
from credit_ledger.schemas.checkout import (
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSessionResponse,
    CreditPackage,
    CreditPackagesResponse,
)
from credit_ledger.services.auth_service import TenantContext
from credit_ledger.services.checkout_service import (
    CheckoutService,
    CheckoutSessionNotFoundError,
    CheckoutValidationError,
    PackageNotFoundError,
    get_checkout_service,
)
from credit_ledger.services.payment_provider import PaymentProvider, PaymentProviderError
from credit_ledger.services.promo_registry import InvalidPromoCodeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout", "payments"])


@router.get(
    "/packages",
    response_model=CreditPackagesResponse,
    summary="List credit packages",
    description="Get all available credit packages for purchase",
)
async def list_packages() -> CreditPackagesResponse:
    """List all available credit packages.

    No authentication required - packages are public information.
    """
    return CreditPackagesResponse(packages=CheckoutService.get_packages(), currency="usd")


@router.get(
    "/packages/{package_id}",
    response_model=CreditPackage,
    summary="Get package details",
    description="Get details for a specific credit package",
)
async def get_package(package_id: str) -> CreditPackage:
    """Get details for a specific credit package.

    Raises:
        HTTPException(404): If package_id is not found
    """
    try:
        return CheckoutService.get_package(package_id)
    except PackageNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )


@router.get(
    "/config",
    response_model=dict,
    summary="Get Stripe configuration",
    description="Get public Stripe configuration (publishable key)",
)
async def get_stripe_config() -> dict:
    """Get the publishable key needed for Stripe.js on the frontend."""
    if not settings.STRIPE_PUBLISHABLE_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe is not configured",
        )

    return {"publishable_key": settings.STRIPE_PUBLISHABLE_KEY}


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create checkout session",
    description="Create a Stripe checkout session for a credit package",
)
async def create_checkout(
    request: CheckoutRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutResponse:
    """Create a checkout session for a credit package purchase.

    Credits are granted only when Stripe confirms payment via webhook.

    Raises:
        HTTPException(404): If package_id is unknown
        HTTPException(422): If the promo code is not redeemable
        HTTPException(503): If Stripe could not start the payment
    """
    checkout_service = get_checkout_service(db, provider)

    try:
        result = await checkout_service.create_checkout(
            tenant_id=tenant.tenant_id,
            package_id=request.package_id,
            promo_code=request.promo_code,
        )
    except PackageNotFoundError as e:
        logger.warning(f"Invalid package request: {e}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    except InvalidPromoCodeError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Invalid promo code", "reason": e.reason},
        )
    except CheckoutValidationError as e:
        logger.error(f"Checkout validation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except PaymentProviderError as e:
        logger.error(f"Payment provider error: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="payment could not be started, try again",
        )

    return CheckoutResponse(
        session_id=result.session_id,
        checkout_url=result.checkout_url,
        expires_at=result.expires_at,
    )


@router.get(
    "/sessions/{session_id}",
    response_model=CheckoutSessionResponse,
    summary="Get checkout status",
    description="Poll the status of one of the tenant's checkout sessions",
)
async def get_checkout_session(
    session_id: uuid.UUID,
    tenant: TenantContext = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutSessionResponse:
    try:
        session = await get_checkout_service(db, provider).get_session(
            session_id, tenant.tenant_id
        )
    except CheckoutSessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    return CheckoutSessionResponse.model_validate(session)
