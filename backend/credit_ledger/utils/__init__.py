"""Utility functions for the credit ledger backend."""

from credit_ledger.utils.timeutils import ensure_utc, period_key, utcnow

__all__ = [
    "utcnow",
    "ensure_utc",
    "period_key",
]
