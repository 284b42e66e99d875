"""Tests for JWT tenant authentication."""

import pytest
from jose import jwt

from credit_ledger.core.config import settings
from credit_ledger.services.auth_service import AuthService, InvalidTokenError


class TestAccessTokens:
    def test_round_trip(self):
        token = AuthService.create_access_token("user-1", "tenant-a", role="super_admin")

        context = AuthService.decode_token(token)

        assert context.user_id == "user-1"
        assert context.tenant_id == "tenant-a"
        assert context.is_super_admin is True

    def test_member_is_not_super_admin(self):
        context = AuthService.decode_token(AuthService.create_access_token("user-2", "tenant-b"))

        assert context.role is None
        assert context.is_super_admin is False

    def test_expired_token(self):
        token = AuthService.create_access_token("user-1", "tenant-a", expires_minutes=-1)

        with pytest.raises(InvalidTokenError):
            AuthService.decode_token(token)

    def test_wrong_secret(self):
        token = jwt.encode(
            {"sub": "user-1", "tenant_id": "tenant-a"},
            "some-other-secret",
            algorithm=settings.JWT_ALGORITHM,
        )

        with pytest.raises(InvalidTokenError):
            AuthService.decode_token(token)

    def test_token_without_tenant(self):
        token = jwt.encode(
            {"sub": "user-1"}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
        )

        with pytest.raises(InvalidTokenError):
            AuthService.decode_token(token)
