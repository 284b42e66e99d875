"""ARQ (Async Redis Queue) configuration for the ledger maintenance worker."""

import logging
import re

from arq.connections import RedisSettings

from credit_ledger.core.config import settings

logger = logging.getLogger(__name__)

QUEUE_NAME = "credit_ledger:jobs"


def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings.

    Args:
        url: Redis URL in format redis://:password@host:port/db

    Returns:
        RedisSettings configured for ARQ
    """
    # Handle URL with password format: redis://:password@host:port/db
    # or without password: redis://host:port/db
    pattern = r'redis://(?::([^@]+)@)?([^:/]+):(\d+)(?:/(\d+))?'
    match = re.match(pattern, url)

    if not match:
        raise ValueError(f"Invalid Redis URL format: {url}")

    password = match.group(1)
    host = match.group(2)
    port = int(match.group(3))
    database = int(match.group(4)) if match.group(4) else 0

    return RedisSettings(
        host=host,
        port=port,
        password=password,
        database=database,
    )


def get_redis_settings() -> RedisSettings:
    """Get ARQ Redis settings from application config."""
    return parse_redis_url(settings.REDIS_URL)
