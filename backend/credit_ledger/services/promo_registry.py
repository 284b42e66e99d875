"""Promo code registry: validation and race-free redemption of bonus codes."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.exceptions import CreditLedgerError, LedgerValidationError
from credit_ledger.models.promo_code import PromoCode, PromoRedemption
from credit_ledger.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class PromoReason:
    """Reasons a promo code cannot be used."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    INACTIVE = "inactive"


class InvalidPromoCodeError(CreditLedgerError):
    """Raised when a promo code fails validation."""

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Promo code {code} is not valid: {reason}")


class PromoRedemptionFailedError(CreditLedgerError):
    """Raised when the conditional redemption matched no row."""

    def __init__(self, code: str, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"Promo code {code} could not be redeemed: {reason}")


class PromoCodeExistsError(CreditLedgerError):
    """Raised when creating a code that already exists."""

    pass


class PromoCodeNotFoundError(CreditLedgerError):
    """Raised when administering a code that does not exist."""

    pass


@dataclass
class PromoValidation:
    valid: bool
    code: str
    credits_amount: Optional[int] = None
    reason: Optional[str] = None


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class PromoRegistry:
    """Lookup, validation and redemption of promo codes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_promo_code(self, code: str) -> Optional[PromoCode]:
        result = await self.db.execute(
            select(PromoCode)
            .where(PromoCode.code == normalize_code(code))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def validate(self, code: str, now: Optional[datetime] = None) -> PromoValidation:
        """Check whether a code could be redeemed right now.

        Validation never consumes a use; the webhook reconciler redeems.
        """
        normalized = normalize_code(code)
        promo = await self.get_promo_code(normalized) if normalized else None
        reason = self._rejection_reason(promo, now)
        if reason:
            return PromoValidation(valid=False, code=normalized, reason=reason)
        return PromoValidation(
            valid=True, code=normalized, credits_amount=promo.credits_amount
        )

    async def redeem(
        self,
        code: str,
        tenant_id: Optional[str] = None,
        checkout_session_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Consume one use of ``code`` and return its bonus credits.

        The increment is a single conditional UPDATE, so concurrent
        redemptions can never push ``used_count`` past ``max_uses``. Only
        flushes: the caller commits it with the matching bonus transaction.

        Raises:
            PromoRedemptionFailedError: the code is unknown, inactive,
                expired or exhausted at the moment of redemption
        """
        normalized = normalize_code(code)
        now = utcnow()

        result = await self.db.execute(
            update(PromoCode)
            .where(
                PromoCode.code == normalized,
                PromoCode.active.is_(True),
                PromoCode.used_count < PromoCode.max_uses,
                or_(PromoCode.expires_at.is_(None), PromoCode.expires_at > now),
            )
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            promo = await self.get_promo_code(normalized)
            reason = self._rejection_reason(promo, now) or PromoReason.EXHAUSTED
            logger.warning(
                f"Promo code {normalized} redemption failed for tenant {tenant_id}: {reason}"
            )
            raise PromoRedemptionFailedError(normalized, reason)

        promo = await self.get_promo_code(normalized)
        logger.info(
            f"Redeemed promo code {normalized} for tenant {tenant_id} "
            f"(session {checkout_session_id}), uses {promo.used_count}/{promo.max_uses}"
        )
        return promo.credits_amount

    async def record_redemption(
        self,
        code: str,
        tenant_id: str,
        checkout_session_id: Optional[uuid.UUID] = None,
        transaction_id: Optional[uuid.UUID] = None,
    ) -> PromoRedemption:
        """Audit row linking a redemption to its bonus transaction. Flushes only."""
        promo = await self.get_promo_code(code)
        if promo is None:
            raise PromoCodeNotFoundError(f"Promo code {normalize_code(code)} not found")

        redemption = PromoRedemption(
            id=uuid.uuid4(),
            promo_code_id=promo.id,
            tenant_id=tenant_id,
            checkout_session_id=checkout_session_id,
            transaction_id=transaction_id,
            created_at=utcnow(),
        )
        self.db.add(redemption)
        await self.db.flush()
        return redemption

    async def create_promo_code(
        self,
        code: str,
        credits_amount: int,
        max_uses: int,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PromoCode:
        """Create and commit a new promo code.

        Raises:
            LedgerValidationError: non-positive amount or use limit, blank code
            PromoCodeExistsError: the normalized code is taken
        """
        normalized = normalize_code(code)
        if not normalized:
            raise LedgerValidationError("Promo code is required")
        if credits_amount <= 0:
            raise LedgerValidationError("credits_amount must be positive")
        if max_uses <= 0:
            raise LedgerValidationError("max_uses must be positive")

        promo = PromoCode(
            id=uuid.uuid4(),
            code=normalized,
            credits_amount=credits_amount,
            max_uses=max_uses,
            used_count=0,
            expires_at=ensure_utc(expires_at),
            active=True,
            description=description,
            created_by=created_by,
            created_at=utcnow(),
        )
        self.db.add(promo)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise PromoCodeExistsError(f"Promo code {normalized} already exists")

        logger.info(
            f"Created promo code {normalized}: {credits_amount} credits, {max_uses} uses"
        )
        return promo

    async def update_promo_code(
        self,
        code: str,
        active: Optional[bool] = None,
        max_uses: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> PromoCode:
        """Change a code's availability. ``used_count`` is never edited here."""
        promo = await self.get_promo_code(code)
        if promo is None:
            raise PromoCodeNotFoundError(f"Promo code {normalize_code(code)} not found")

        if max_uses is not None:
            if max_uses < promo.used_count or max_uses <= 0:
                raise LedgerValidationError(
                    f"max_uses cannot be lower than used_count ({promo.used_count})"
                )
            promo.max_uses = max_uses
        if active is not None:
            promo.active = active
        if expires_at is not None:
            promo.expires_at = ensure_utc(expires_at)
        if description is not None:
            promo.description = description

        promo_code = promo.code
        try:
            await self.db.commit()
        except IntegrityError as e:
            # A redemption committed after the read pushed used_count past max_uses
            await self.db.rollback()
            raise LedgerValidationError(
                f"max_uses cannot be lower than used_count for {promo_code}"
            ) from e
        logger.info(f"Updated promo code {promo_code}")
        return promo

    async def list_promo_codes(self, include_inactive: bool = True) -> list[PromoCode]:
        query = select(PromoCode).order_by(PromoCode.created_at.desc())
        if not include_inactive:
            query = query.where(PromoCode.active.is_(True))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_redemptions(self, code: str) -> list[PromoRedemption]:
        promo = await self.get_promo_code(code)
        if promo is None:
            raise PromoCodeNotFoundError(f"Promo code {normalize_code(code)} not found")

        result = await self.db.execute(
            select(PromoRedemption)
            .where(PromoRedemption.promo_code_id == promo.id)
            .order_by(PromoRedemption.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    def _rejection_reason(
        promo: Optional[PromoCode], now: Optional[datetime] = None
    ) -> Optional[str]:
        if promo is None:
            return PromoReason.NOT_FOUND
        if not promo.active:
            return PromoReason.INACTIVE
        if promo.is_expired(now):
            return PromoReason.EXPIRED
        if promo.used_count >= promo.max_uses:
            return PromoReason.EXHAUSTED
        return None


def get_promo_registry(db: AsyncSession) -> PromoRegistry:
    """Factory function to create PromoRegistry."""
    return PromoRegistry(db)
