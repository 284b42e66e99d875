"""Timezone helpers.

SQLite (used in tests) hands back naive datetimes for timezone-aware
columns, so everything that compares timestamps normalizes through here.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    Naive values are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def period_key(now: Optional[datetime] = None) -> str:
    """Billing period key (``YYYY-MM``) for monthly grants."""
    current = ensure_utc(now) or utcnow()
    return current.strftime("%Y-%m")
