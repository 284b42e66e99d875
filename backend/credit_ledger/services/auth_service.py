"""Tenant authentication from platform-issued JWTs.

Tokens are issued by the platform's auth service; this module only
validates them and extracts the caller's identity:
- ``sub``: the acting user
- ``tenant_id``: the tenant whose credits the caller may use
- ``role``: platform role (``super_admin`` unlocks admin endpoints)
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

from credit_ledger.core.config import settings

logger = logging.getLogger(__name__)


class AuthServiceError(Exception):
    """Base exception for authentication errors."""

    pass


class InvalidTokenError(AuthServiceError):
    """Raised when a token is invalid, expired or missing claims."""

    pass


@dataclass(frozen=True)
class TenantContext:
    """Identity of the caller for one request."""

    user_id: str
    tenant_id: str
    role: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == settings.SUPER_ADMIN_ROLE


class AuthService:
    """JWT encoding and validation."""

    @staticmethod
    def create_access_token(
        user_id: str,
        tenant_id: str,
        role: Optional[str] = None,
        expires_minutes: int = 30,
    ) -> str:
        """Create a signed access token. Used by tooling and tests."""
        now = datetime.now(UTC)
        payload = {
            "sub": str(user_id),
            "tenant_id": tenant_id,
            "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
            "iat": int(now.timestamp()),
        }
        if role:
            payload["role"] = role

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

    @staticmethod
    def decode_token(token: str) -> TenantContext:
        """Decode and validate a JWT token.

        Raises:
            InvalidTokenError: If token is invalid, expired or lacks a tenant
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
            )
        except JWTError as e:
            logger.warning(f"Token decode error: {e}")
            raise InvalidTokenError("Invalid or expired token")

        sub = payload.get("sub")
        tenant_id = payload.get("tenant_id")
        if not sub or not tenant_id:
            raise InvalidTokenError("Token is missing sub or tenant_id claims")

        return TenantContext(
            user_id=str(sub),
            tenant_id=str(tenant_id),
            role=payload.get("role"),
        )
