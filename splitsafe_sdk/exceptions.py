"""
Exceptions for the SplitSafe SDK.
"""
from typing import Optional


class SplitSafeError(Exception):
    """Base exception for all SplitSafe SDK errors"""
    pass


class DecodeError(SplitSafeError):
    """Raised when a wire value cannot be decoded into its canonical form."""

    def __init__(self, message: str, raw: object = None):
        self.raw = raw
        super().__init__(message)


class InvariantError(SplitSafeError):
    """Raised when a normalized transaction violates a model invariant."""
    pass


class IdentityMismatchError(SplitSafeError):
    """Raised when the acting identity is not among a transaction's recipients."""

    def __init__(self, message: str, identity: Optional[str] = None):
        self.identity = identity
        super().__init__(message)


class EscrowNotFoundError(SplitSafeError):
    """Raised when a transaction cannot be located on the ledger."""
    pass


class ActionInProgressError(SplitSafeError):
    """Raised when an action is already running for the same transaction."""
    pass


class ActionTimeoutError(SplitSafeError):
    """Raised when an action exceeds its overall time budget."""
    pass


class NotificationError(SplitSafeError):
    """Raised when a counterparty notification cannot be delivered."""
    pass
