"""API route for payment provider webhooks.

- POST /api/v1/webhooks/stripe - Handle Stripe webhooks
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.api.deps import get_db, get_payment_provider
from credit_ledger.schemas.webhook import WebhookResponse
from credit_ledger.services.payment_provider import PaymentProvider, WebhookVerificationError
from credit_ledger.services.webhook_reconciler import (
    WebhookProcessingError,
    get_webhook_reconciler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks", "payments"])


@router.post(
    "/stripe",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Stripe webhook handler",
    description="Handle Stripe webhook events (signature verified)",
    include_in_schema=False,  # Hide from public API docs
)
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookResponse:
    """Handle Stripe webhook events.

    Called by Stripe's servers without authentication; security is provided
    by signature verification. Duplicate deliveries are acknowledged with
    200 and have no effect.

    Raises:
        HTTPException(400): If signature verification fails
        HTTPException(500): If processing fails (Stripe retries)
    """
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    reconciler = get_webhook_reconciler(db, provider)

    try:
        outcome = await reconciler.handle_event(payload, signature)
    except WebhookVerificationError as e:
        logger.error(f"Webhook verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )
    except WebhookProcessingError as e:
        logger.error(f"Webhook processing error: {e}")
        # Return 500 so Stripe retries the webhook
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process webhook",
        )

    return WebhookResponse(
        event_id=outcome.event_id,
        outcome=outcome.outcome,
        duplicate=outcome.duplicate,
    )
