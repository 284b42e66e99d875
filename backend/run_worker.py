#!/usr/bin/env python3
"""
Entrypoint for the credit ledger maintenance worker.

This script starts the ARQ worker that runs checkout expiry, webhook
event retention and ledger audits on a schedule.
"""

import logging
import sys

from arq import run_worker

from credit_ledger.workers.arq_tasks import WorkerSettings


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point for worker service."""
    logger.info("Starting credit ledger worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
