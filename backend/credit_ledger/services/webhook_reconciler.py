"""Webhook reconciliation: turns verified payment events into ledger entries.

Each event is handled as one unit of work. The processed-event claim, the
promo redemption, the purchase and bonus transactions, the redemption
record and the session transition commit together or not at all.
Re-deliveries of an event are recognized by the processed-event table and
answered as duplicates without side effects.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.core.database import insert_if_absent
from credit_ledger.core.exceptions import CreditLedgerError
from credit_ledger.models.checkout_session import CheckoutSession, CheckoutStatus
from credit_ledger.models.credit_transaction import ActionType, TransactionType
from credit_ledger.models.webhook_event import ProcessedWebhookEvent
from credit_ledger.services.ledger_writer import LedgerConflictError, LedgerWriter
from credit_ledger.services.payment_provider import PaymentProvider, ProviderEvent
from credit_ledger.services.promo_registry import PromoRedemptionFailedError, PromoRegistry
from credit_ledger.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CREDIT_PURCHASE_TYPE = "credit_purchase"

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
CHECKOUT_EXPIRED = "checkout.session.expired"


class Outcome:
    """Values stored in ``processed_webhook_events.outcome``."""

    CREDITED = "credited"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    PAYMENT_PENDING = "payment_pending"
    ALREADY_COMPLETED = "already_completed"
    LATE_PAYMENT = "late_payment"
    AMOUNT_MISMATCH = "amount_mismatch"
    FAILED = "failed"
    EXPIRED = "expired"
    ALREADY_CLOSED = "already_closed"


class WebhookProcessingError(CreditLedgerError):
    """Raised when an authentic event could not be applied. The provider should retry."""

    pass


@dataclass
class ReconcileOutcome:
    event_id: str
    event_type: str
    outcome: str
    duplicate: bool = False
    credits_granted: int = 0
    bonus_credits: int = 0
    checkout_session_id: Optional[str] = None


class WebhookReconciler:
    """Applies payment provider events to checkout sessions and the ledger."""

    def __init__(
        self,
        db: AsyncSession,
        provider: PaymentProvider,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.provider = provider
        self.ledger = LedgerWriter(db)
        self.promo_registry = PromoRegistry(db)
        self.max_retries = (
            settings.LEDGER_MAX_RETRIES if max_retries is None else max_retries
        )

    async def handle_event(
        self, raw_payload: bytes, signature: Optional[str]
    ) -> ReconcileOutcome:
        """Verify and reconcile one webhook delivery.

        Raises:
            WebhookVerificationError: the payload is not authentic; nothing
                was read or written
            WebhookProcessingError: the event could not be applied and
                every change was rolled back
        """
        event = self.provider.verify_and_parse(raw_payload, signature)

        for attempt in range(1, self.max_retries + 1):
            try:
                outcome = await self._process(event)
                await self.db.commit()
            except (LedgerConflictError, IntegrityError) as e:
                await self.db.rollback()
                logger.info(
                    f"Conflict reconciling event {event.event_id} "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )
                continue
            except WebhookProcessingError:
                await self.db.rollback()
                raise
            except CreditLedgerError as e:
                await self.db.rollback()
                logger.error(f"Failed to reconcile event {event.event_id}: {e}")
                raise WebhookProcessingError(
                    f"Failed to reconcile event {event.event_id}: {e}"
                ) from e
            except Exception:
                await self.db.rollback()
                raise

            logger.info(
                f"Webhook event {event.event_id} ({event.event_type}) -> {outcome.outcome}"
            )
            return outcome

        raise WebhookProcessingError(
            f"Could not reconcile event {event.event_id} after {self.max_retries} attempts"
        )

    async def _process(self, event: ProviderEvent) -> ReconcileOutcome:
        existing = await self.db.get(
            ProcessedWebhookEvent, event.event_id, populate_existing=True
        )
        if existing is not None:
            return self._duplicate(event)

        claimed = await insert_if_absent(
            self.db,
            ProcessedWebhookEvent.__table__,
            {
                "event_id": event.event_id,
                "event_type": event.event_type,
                "outcome": "pending",
                "processed_at": utcnow(),
            },
            index_elements=["event_id"],
        )
        if not claimed:
            # A concurrent delivery of the same event got there first
            return self._duplicate(event)

        outcome = await self._dispatch(event)

        await self.db.execute(
            update(ProcessedWebhookEvent)
            .where(ProcessedWebhookEvent.event_id == event.event_id)
            .values(outcome=outcome.outcome)
            .execution_options(synchronize_session=False)
        )
        return outcome

    async def _dispatch(self, event: ProviderEvent) -> ReconcileOutcome:
        if event.metadata.get("type") != CREDIT_PURCHASE_TYPE:
            logger.info(f"Ignoring non-credit webhook event {event.event_id} ({event.event_type})")
            return self._outcome(event, Outcome.IGNORED)

        if event.event_type == CHECKOUT_COMPLETED:
            if event.payment_status != "paid":
                logger.info(
                    f"Checkout {event.provider_session_id} completed with payment status "
                    f"{event.payment_status}; waiting for async payment result"
                )
                return self._outcome(event, Outcome.PAYMENT_PENDING)
            return await self._complete_purchase(event)

        if event.event_type == ASYNC_PAYMENT_SUCCEEDED:
            return await self._complete_purchase(event)

        if event.event_type == ASYNC_PAYMENT_FAILED:
            return await self._close_session(
                event, CheckoutStatus.FAILED, "payment_failed"
            )

        if event.event_type == CHECKOUT_EXPIRED:
            return await self._close_session(event, CheckoutStatus.EXPIRED, "expired")

        logger.info(f"Ignoring unhandled webhook event type: {event.event_type}")
        return self._outcome(event, Outcome.IGNORED)

    async def _complete_purchase(self, event: ProviderEvent) -> ReconcileOutcome:
        session = await self._load_session(event)

        if session.status == CheckoutStatus.COMPLETED:
            logger.info(f"Checkout session {session.id} already completed; nothing to do")
            return self._outcome(event, Outcome.ALREADY_COMPLETED, session)

        expires_at = ensure_utc(session.expires_at)
        is_late = expires_at is not None and ensure_utc(event.created) > expires_at
        if session.is_terminal or is_late:
            # Money was taken for a session we no longer honour; needs a manual refund
            logger.error(
                f"Late payment for checkout session {session.id} (status "
                f"{session.status.value}, tenant {session.tenant_id}, event "
                f"{event.event_id}); no credits granted, refund required"
            )
            if not session.is_terminal:
                await self._transition(
                    session,
                    (CheckoutStatus.AWAITING_PAYMENT,),
                    CheckoutStatus.EXPIRED,
                    failure_reason="late_payment",
                    amount_paid=event.amount_paid,
                )
            return self._outcome(event, Outcome.LATE_PAYMENT, session)

        if session.status != CheckoutStatus.AWAITING_PAYMENT:
            raise WebhookProcessingError(
                f"Checkout session {session.id} is {session.status.value}, "
                f"not awaiting payment"
            )

        if event.amount_paid != session.price_cents:
            logger.error(
                f"Amount mismatch for checkout session {session.id}: paid "
                f"{event.amount_paid}, expected {session.price_cents}"
            )
            await self._transition(
                session,
                (CheckoutStatus.AWAITING_PAYMENT,),
                CheckoutStatus.FAILED,
                failure_reason="amount_mismatch",
                amount_paid=event.amount_paid,
            )
            return self._outcome(event, Outcome.AMOUNT_MISMATCH, session)

        metadata_tenant = event.metadata.get("tenant_id")
        if metadata_tenant and metadata_tenant != session.tenant_id:
            logger.warning(
                f"Event {event.event_id} names tenant {metadata_tenant} but session "
                f"{session.id} belongs to {session.tenant_id}; crediting the session owner"
            )

        bonus_credits = 0
        bonus_skipped_reason = None
        if session.promo_code_applied:
            try:
                bonus_credits = await self.promo_registry.redeem(
                    session.promo_code_applied,
                    tenant_id=session.tenant_id,
                    checkout_session_id=session.id,
                )
            except PromoRedemptionFailedError as e:
                # The customer paid full price; the purchase stands without the bonus
                bonus_skipped_reason = e.reason

        purchase_metadata = {
            "package_id": session.package_id,
            "price_cents": session.price_cents,
            "checkout_session_id": str(session.id),
            "provider_session_id": session.provider_session_id,
        }
        if session.promo_code_applied:
            purchase_metadata["promo_code"] = session.promo_code_applied
        if bonus_skipped_reason:
            purchase_metadata["promo_bonus_skipped"] = bonus_skipped_reason

        await self.ledger.apply_transaction(
            session.tenant_id,
            session.credits,
            TransactionType.PURCHASE,
            idempotency_key=event.event_id,
            reference_id=str(session.id),
            reference_type="checkout_session",
            action_type=ActionType.CREDIT_PURCHASE,
            description=f"Purchased {session.package_id}",
            metadata=purchase_metadata,
            autocommit=False,
        )

        if bonus_credits:
            bonus = await self.ledger.apply_transaction(
                session.tenant_id,
                bonus_credits,
                TransactionType.BONUS,
                idempotency_key=f"{event.event_id}:bonus",
                reference_id=session.promo_code_applied,
                reference_type="promo_code",
                action_type=ActionType.PROMO_BONUS,
                description=f"Promo code {session.promo_code_applied} bonus",
                metadata={"checkout_session_id": str(session.id)},
                autocommit=False,
            )
            await self.promo_registry.record_redemption(
                session.promo_code_applied,
                tenant_id=session.tenant_id,
                checkout_session_id=session.id,
                transaction_id=bonus.transaction.id,
            )

        await self._transition(
            session,
            (CheckoutStatus.AWAITING_PAYMENT,),
            CheckoutStatus.COMPLETED,
            amount_paid=event.amount_paid,
        )

        logger.info(
            f"Credited {session.credits} credits (+{bonus_credits} bonus) to tenant "
            f"{session.tenant_id} for checkout session {session.id}"
        )
        return self._outcome(
            event,
            Outcome.CREDITED,
            session,
            credits_granted=session.credits,
            bonus_credits=bonus_credits,
        )

    async def _close_session(
        self, event: ProviderEvent, target: CheckoutStatus, reason: str
    ) -> ReconcileOutcome:
        session = await self._load_session(event)
        if session.is_terminal:
            logger.info(
                f"Checkout session {session.id} already {session.status.value}; "
                f"ignoring {event.event_type}"
            )
            return self._outcome(event, Outcome.ALREADY_CLOSED, session)

        await self._transition(
            session,
            (CheckoutStatus.CREATED, CheckoutStatus.AWAITING_PAYMENT),
            target,
            failure_reason=reason,
        )
        logger.warning(f"Checkout session {session.id} marked {target.value} ({reason})")
        outcome = Outcome.FAILED if target == CheckoutStatus.FAILED else Outcome.EXPIRED
        return self._outcome(event, outcome, session)

    async def _load_session(self, event: ProviderEvent) -> CheckoutSession:
        if not event.provider_session_id:
            raise WebhookProcessingError(
                f"Event {event.event_id} carries no checkout session id"
            )

        result = await self.db.execute(
            select(CheckoutSession)
            .where(CheckoutSession.provider_session_id == event.provider_session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            logger.error(
                f"No checkout session for provider session {event.provider_session_id} "
                f"(event {event.event_id})"
            )
            raise WebhookProcessingError(
                f"Unknown checkout session {event.provider_session_id}"
            )
        return session

    async def _transition(
        self,
        session: CheckoutSession,
        from_statuses: Iterable[CheckoutStatus],
        target: CheckoutStatus,
        **values,
    ) -> None:
        """Conditionally move ``session`` forward; a lost race retries the unit."""
        now = utcnow()
        result = await self.db.execute(
            update(CheckoutSession)
            .where(
                CheckoutSession.id == session.id,
                CheckoutSession.status.in_(list(from_statuses)),
            )
            .values(status=target, completed_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LedgerConflictError(
                f"Checkout session {session.id} changed status concurrently"
            )

    @staticmethod
    def _outcome(
        event: ProviderEvent,
        outcome: str,
        session: Optional[CheckoutSession] = None,
        **kwargs,
    ) -> ReconcileOutcome:
        return ReconcileOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
            checkout_session_id=str(session.id) if session is not None else None,
            **kwargs,
        )

    @staticmethod
    def _duplicate(event: ProviderEvent) -> ReconcileOutcome:
        logger.info(f"Duplicate webhook event {event.event_id}; already processed")
        return ReconcileOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=Outcome.DUPLICATE,
            duplicate=True,
        )


def get_webhook_reconciler(db: AsyncSession, provider: PaymentProvider) -> WebhookReconciler:
    """Factory function to create WebhookReconciler."""
    return WebhookReconciler(db, provider)
