"""FastAPI application entry point.

This module configures the FastAPI application with:
- CORS middleware for the admin frontend
- API v1 router with all endpoints
- Database engine lifecycle management
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from credit_ledger.api.v1.api import api_router
from credit_ledger.core.config import settings
from credit_ledger.core.database import close_db, get_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    logger.info(f"Starting {settings.PROJECT_NAME} API ({settings.ENVIRONMENT})...")

    yield  # Application is running

    # Shutdown
    logger.info(f"Shutting down {settings.PROJECT_NAME} API...")

    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Multi-tenant credit ledger with Stripe checkout and promo codes",
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost",
        "http://localhost:5173",
        "http://localhost:8001",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API v1 router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/api/health")
async def health_check():
    """Health check endpoint.

    Returns basic health status. For database connectivity, use
    /api/v1/status.
    """
    return {"status": "ok", "service": "credit-ledger"}


@app.get("/api/v1/status")
async def status_check():
    """API status endpoint with service health details."""
    database_status = "unknown"
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        database_status = "connected"
    except Exception as e:
        database_status = f"error: {str(e)}"

    return {
        "status": "running",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "services": {
            "database": database_status,
            "job_queue": "arq",
        },
    }
