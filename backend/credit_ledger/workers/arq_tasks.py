"""ARQ worker tasks for ledger maintenance.

Tasks include:
- expire_stale_checkout_sessions: expire abandoned checkouts
- purge_processed_webhook_events: drop old webhook dedup rows
- audit_all_credit_accounts: replay every ledger and freeze mismatches

Usage:
    Start worker with: arq credit_ledger.workers.arq_tasks.WorkerSettings
"""

import logging
from datetime import timedelta

from arq import cron
from sqlalchemy import delete

from credit_ledger.core.arq_config import QUEUE_NAME, get_redis_settings
from credit_ledger.core.config import settings
from credit_ledger.core.database import close_db, get_session_factory
from credit_ledger.models.webhook_event import ProcessedWebhookEvent
from credit_ledger.services.checkout_service import CheckoutService
from credit_ledger.services.ledger_auditor import LedgerAuditor
from credit_ledger.services.payment_provider import get_payment_provider
from credit_ledger.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


async def expire_stale_checkout_sessions(ctx: dict) -> dict:
    """Expire checkout sessions past their expiry plus grace period.

    Args:
        ctx: ARQ context

    Returns:
        Dict with the number of sessions expired
    """
    session_factory = get_session_factory()

    async with session_factory() as db:
        checkout_service = CheckoutService(db, get_payment_provider())
        expired = await checkout_service.expire_stale_sessions()

    logger.info(f"Checkout expiry sweep completed: {expired} sessions expired")
    return {"status": "completed", "expired_count": expired}


async def purge_processed_webhook_events(ctx: dict) -> dict:
    """Delete processed-event rows older than the retention window.

    Redelivery of a purged event is still caught by the ledger's
    idempotency key and the completed session status.
    """
    cutoff = utcnow() - timedelta(days=settings.WEBHOOK_EVENT_RETENTION_DAYS)
    session_factory = get_session_factory()

    async with session_factory() as db:
        result = await db.execute(
            delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < cutoff)
        )
        await db.commit()

    purged = result.rowcount or 0
    logger.info(f"Purged {purged} processed webhook events older than {cutoff.isoformat()}")
    return {"status": "completed", "purged_count": purged}


async def audit_all_credit_accounts(ctx: dict) -> dict:
    """Audit every credit account; failing accounts are frozen."""
    session_factory = get_session_factory()

    async with session_factory() as db:
        failures = await LedgerAuditor(db).audit_all_accounts()

    if failures:
        logger.critical(
            f"Ledger audit found {len(failures)} failing accounts: "
            f"{', '.join(report.tenant_id for report in failures)}"
        )
    return {
        "status": "completed",
        "failed_tenants": [report.tenant_id for report in failures],
    }


# Worker settings for ARQ
class WorkerSettings:
    """ARQ Worker configuration.

    Usage: arq credit_ledger.workers.arq_tasks.WorkerSettings
    """

    redis_settings = get_redis_settings()
    queue_name = QUEUE_NAME

    # Worker behavior
    max_jobs = 4
    job_timeout = 600  # 10 minutes
    max_tries = 1  # Cron tasks run again on the next tick
    poll_delay = 0.5

    # Health check
    health_check_interval = 30

    # Registered task functions
    functions = [
        expire_stale_checkout_sessions,
        purge_processed_webhook_events,
        audit_all_credit_accounts,
    ]

    cron_jobs = [
        cron(expire_stale_checkout_sessions, minute={0, 15, 30, 45}),
        cron(purge_processed_webhook_events, hour={3}, minute={0}),
        cron(audit_all_credit_accounts, hour={4}, minute={0}),
    ]

    # Startup hook
    @staticmethod
    async def on_startup(ctx: dict) -> None:
        """Called when worker starts."""
        logger.info("ARQ Worker starting up...")
        logger.info("ARQ Worker ready to process jobs")

    # Shutdown hook
    @staticmethod
    async def on_shutdown(ctx: dict) -> None:
        """Called when worker shuts down."""
        logger.info("ARQ Worker shutting down...")
        await close_db()
        logger.info("ARQ Worker shutdown complete")
