"""API dependencies for FastAPI route handlers.

This module provides dependency injection functions for:
- Database sessions
- Authentication (JWT-based tenant context)
- Super-admin authorization
- The payment provider
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import get_db as get_db_session
from credit_ledger.services.auth_service import (
    AuthService,
    InvalidTokenError,
    TenantContext,
)
from credit_ledger.services.payment_provider import (
    PaymentProvider,
    get_payment_provider as get_default_payment_provider,
)


# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    Yields:
        AsyncSession for database operations
    """
    async for session in get_db_session():
        yield session


def get_payment_provider() -> PaymentProvider:
    """Dependency to get the payment provider (overridden in tests)."""
    return get_default_payment_provider()


async def get_current_tenant(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TenantContext:
    """Dependency to get the caller's tenant context from the JWT.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return AuthService.decode_token(credentials.credentials)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_super_admin(
    tenant: TenantContext = Depends(get_current_tenant),
) -> TenantContext:
    """Dependency to restrict an endpoint to super admins.

    Raises:
        HTTPException: 403 if the caller lacks the super-admin role
    """
    if not tenant.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin role required",
        )
    return tenant
