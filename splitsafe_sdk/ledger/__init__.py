"""
Ledger module for the SplitSafe SDK.

This module provides the transports used to read and mutate escrow records
on the backend ledger.
"""
from .exceptions import (
    LedgerError,
    LedgerConnectionError,
    LedgerResponseError,
    LedgerTimeoutError,
)
from .transport import LedgerTransport, Page
from .http_transport import HttpLedgerTransport
from .memory_transport import InMemoryLedgerTransport

__all__ = [
    'LedgerError',
    'LedgerConnectionError',
    'LedgerResponseError',
    'LedgerTimeoutError',
    'LedgerTransport',
    'Page',
    'HttpLedgerTransport',
    'InMemoryLedgerTransport',
]
