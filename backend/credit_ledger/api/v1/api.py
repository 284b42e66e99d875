"""API v1 router aggregation."""

from fastapi import APIRouter

from credit_ledger.api.v1.routers import admin, checkout, credits, promo_codes, webhooks

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(credits.router)  # Balance, history and consumption
api_router.include_router(checkout.router)  # Credit package purchases
api_router.include_router(webhooks.router)  # Stripe webhook reconciliation
api_router.include_router(promo_codes.router)  # Promo code validation
api_router.include_router(admin.router)  # Super-admin operations
