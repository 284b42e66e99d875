"""Tests for the promo code registry.

Tests cover:
- Validation reasons (not_found, expired, exhausted, inactive)
- Case-insensitive lookup
- Conditional redemption, including concurrent redemption of a single-use code
- Administration (create, update, list, redemptions)
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import update

from credit_ledger.core.exceptions import LedgerValidationError
from credit_ledger.models import PromoCode
from credit_ledger.services.promo_registry import (
    PromoCodeExistsError,
    PromoCodeNotFoundError,
    PromoReason,
    PromoRedemptionFailedError,
    PromoRegistry,
    get_promo_registry,
)
from credit_ledger.utils.timeutils import utcnow


# ============================================================================
# Validation
# ============================================================================


class TestValidate:
    """Tests for PromoRegistry.validate."""

    @pytest.mark.asyncio
    async def test_valid_code(self, db_session, create_promo):
        await create_promo("WELCOME500", credits_amount=500, max_uses=100, used_count=40)

        validation = await get_promo_registry(db_session).validate("WELCOME500")

        assert validation.valid is True
        assert validation.credits_amount == 500
        assert validation.reason is None

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, db_session, create_promo):
        await create_promo("WELCOME500")

        validation = await PromoRegistry(db_session).validate("  welcome500 ")

        assert validation.valid is True
        assert validation.code == "WELCOME500"

    @pytest.mark.asyncio
    async def test_unknown_code(self, db_session):
        validation = await PromoRegistry(db_session).validate("NOPE")

        assert validation.valid is False
        assert validation.reason == PromoReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_expired_yesterday(self, db_session, create_promo):
        await create_promo("EXPIRED10", expires_at=utcnow() - timedelta(days=1))

        validation = await PromoRegistry(db_session).validate("EXPIRED10")

        assert validation.valid is False
        assert validation.reason == "expired"

    @pytest.mark.asyncio
    async def test_exhausted(self, db_session, create_promo):
        await create_promo("USEDUP", max_uses=5, used_count=5)

        validation = await PromoRegistry(db_session).validate("USEDUP")

        assert validation.valid is False
        assert validation.reason == PromoReason.EXHAUSTED

    @pytest.mark.asyncio
    async def test_inactive(self, db_session, create_promo):
        await create_promo("PAUSED", active=False)

        validation = await PromoRegistry(db_session).validate("PAUSED")

        assert validation.valid is False
        assert validation.reason == PromoReason.INACTIVE

    @pytest.mark.asyncio
    async def test_validate_does_not_consume(self, db_session, create_promo):
        await create_promo("ONCE", max_uses=1)
        registry = PromoRegistry(db_session)

        for _ in range(3):
            assert (await registry.validate("ONCE")).valid is True

        promo = await registry.get_promo_code("ONCE")
        assert promo.used_count == 0


# ============================================================================
# Redemption
# ============================================================================


class TestRedeem:
    """Tests for PromoRegistry.redeem."""

    @pytest.mark.asyncio
    async def test_redeem_increments_used_count(self, db_session, create_promo):
        await create_promo("WELCOME500", credits_amount=500, max_uses=100, used_count=40)
        registry = PromoRegistry(db_session)

        credits = await registry.redeem("welcome500", tenant_id="tenant-a")
        await db_session.commit()

        assert credits == 500
        promo = await registry.get_promo_code("WELCOME500")
        assert promo.used_count == 41

    @pytest.mark.asyncio
    async def test_redeem_rolled_back_with_caller(self, db_session, create_promo):
        await create_promo("WELCOME500", used_count=3)
        registry = PromoRegistry(db_session)

        await registry.redeem("WELCOME500")
        await db_session.rollback()

        promo = await registry.get_promo_code("WELCOME500")
        assert promo.used_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "promo_kwargs,reason",
        [
            ({"max_uses": 2, "used_count": 2}, PromoReason.EXHAUSTED),
            ({"active": False}, PromoReason.INACTIVE),
            ({"expires_at": utcnow() - timedelta(minutes=1)}, PromoReason.EXPIRED),
        ],
    )
    async def test_redeem_failure_reasons(self, db_session, create_promo, promo_kwargs, reason):
        await create_promo("BLOCKED", **promo_kwargs)

        with pytest.raises(PromoRedemptionFailedError) as exc_info:
            await PromoRegistry(db_session).redeem("BLOCKED")

        assert exc_info.value.reason == reason

    @pytest.mark.asyncio
    async def test_redeem_unknown(self, db_session):
        with pytest.raises(PromoRedemptionFailedError) as exc_info:
            await PromoRegistry(db_session).redeem("GHOST")

        assert exc_info.value.reason == PromoReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_concurrent_single_use_code(self, session_factory, create_promo):
        """Two concurrent redeemers of a max_uses=1 code: exactly one wins."""
        await create_promo("SINGLE", credits_amount=100, max_uses=1)

        async def redeem(tenant_id):
            async with session_factory() as db:
                try:
                    credits = await PromoRegistry(db).redeem("SINGLE", tenant_id=tenant_id)
                    await db.commit()
                    return credits
                except PromoRedemptionFailedError as e:
                    await db.rollback()
                    return e

        results = await asyncio.gather(redeem("tenant-a"), redeem("tenant-b"))

        successes = [r for r in results if r == 100]
        failures = [r for r in results if isinstance(r, PromoRedemptionFailedError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert failures[0].reason == PromoReason.EXHAUSTED

        async with session_factory() as db:
            promo = await PromoRegistry(db).get_promo_code("SINGLE")
        assert promo.used_count == 1

    @pytest.mark.asyncio
    async def test_many_concurrent_redeemers_never_exceed_max(self, session_factory, create_promo):
        await create_promo("LIMITED", max_uses=3)

        async def redeem():
            async with session_factory() as db:
                try:
                    await PromoRegistry(db).redeem("LIMITED")
                    await db.commit()
                    return True
                except PromoRedemptionFailedError:
                    await db.rollback()
                    return False

        results = await asyncio.gather(*[redeem() for _ in range(8)])

        assert results.count(True) == 3
        async with session_factory() as db:
            promo = await PromoRegistry(db).get_promo_code("LIMITED")
        assert promo.used_count == 3


# ============================================================================
# Administration
# ============================================================================


class TestAdministration:
    """Tests for promo code management."""

    @pytest.mark.asyncio
    async def test_create_normalizes_code(self, db_session):
        promo = await PromoRegistry(db_session).create_promo_code(
            " summer25 ", credits_amount=250, max_uses=50, created_by="admin-1"
        )

        assert promo.code == "SUMMER25"
        assert promo.used_count == 0
        assert promo.active is True

    @pytest.mark.asyncio
    async def test_create_duplicate(self, db_session, create_promo):
        await create_promo("WELCOME500")

        with pytest.raises(PromoCodeExistsError):
            await PromoRegistry(db_session).create_promo_code(
                "welcome500", credits_amount=10, max_uses=1
            )

    @pytest.mark.asyncio
    async def test_create_rejects_non_positive_values(self, db_session):
        registry = PromoRegistry(db_session)

        with pytest.raises(LedgerValidationError):
            await registry.create_promo_code("ZERO", credits_amount=0, max_uses=1)
        with pytest.raises(LedgerValidationError):
            await registry.create_promo_code("ZERO", credits_amount=10, max_uses=0)

    @pytest.mark.asyncio
    async def test_update_cannot_drop_below_used_count(self, db_session, create_promo):
        await create_promo("WELCOME500", max_uses=100, used_count=40)
        registry = PromoRegistry(db_session)

        with pytest.raises(LedgerValidationError):
            await registry.update_promo_code("WELCOME500", max_uses=39)

        promo = await registry.update_promo_code("WELCOME500", max_uses=40, active=False)
        assert promo.max_uses == 40
        assert promo.active is False

    @pytest.mark.asyncio
    async def test_update_races_with_redemption(
        self, db_session, session_factory, create_promo
    ):
        await create_promo("LASTSEATS", max_uses=5, used_count=4)
        original_get = PromoRegistry.get_promo_code

        async def get_then_redeem_elsewhere(self, code):
            promo = await original_get(self, code)
            async with session_factory() as db:
                await db.execute(
                    update(PromoCode)
                    .where(PromoCode.code == "LASTSEATS")
                    .values(used_count=PromoCode.used_count + 1)
                )
                await db.commit()
            return promo

        with patch.object(PromoRegistry, "get_promo_code", get_then_redeem_elsewhere):
            with pytest.raises(LedgerValidationError):
                await PromoRegistry(db_session).update_promo_code("LASTSEATS", max_uses=4)

        async with session_factory() as db:
            stored = await PromoRegistry(db).get_promo_code("LASTSEATS")
        assert stored.max_uses == 5
        assert stored.used_count == 5

    @pytest.mark.asyncio
    async def test_update_unknown(self, db_session):
        with pytest.raises(PromoCodeNotFoundError):
            await PromoRegistry(db_session).update_promo_code("GHOST", active=False)

    @pytest.mark.asyncio
    async def test_list_and_redemptions(self, db_session, create_promo):
        await create_promo("FIRST")
        await create_promo("SECOND", active=False)
        registry = PromoRegistry(db_session)

        await registry.redeem("FIRST", tenant_id="tenant-a")
        await registry.record_redemption("FIRST", tenant_id="tenant-a")
        await db_session.commit()

        assert {p.code for p in await registry.list_promo_codes()} == {"FIRST", "SECOND"}
        assert {p.code for p in await registry.list_promo_codes(include_inactive=False)} == {"FIRST"}

        redemptions = await registry.list_redemptions("first")
        assert len(redemptions) == 1
        assert redemptions[0].tenant_id == "tenant-a"
