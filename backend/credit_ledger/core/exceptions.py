"""Base exception for the credit ledger core.

Each service module defines its own subclasses next to the code that
raises them.
"""


class CreditLedgerError(Exception):
    """Base exception for all credit ledger errors."""

    pass


class LedgerValidationError(CreditLedgerError, ValueError):
    """Raised when input to a ledger operation is malformed."""

    pass
