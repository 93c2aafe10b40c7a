"""
Exceptions for the ledger transports.
"""
from typing import Optional

from ..exceptions import SplitSafeError


class LedgerError(SplitSafeError):
    """Base exception for ledger-related errors."""
    pass


class LedgerConnectionError(LedgerError):
    """Raised when the ledger cannot be reached."""
    pass


class LedgerResponseError(LedgerError):
    """Raised when the ledger rejects a call or returns an unusable response."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.error_code = error_code
        super().__init__(message)


class LedgerTimeoutError(LedgerError):
    """Raised when a ledger call times out."""
    pass
