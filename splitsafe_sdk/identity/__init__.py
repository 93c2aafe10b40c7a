"""
Identity module for the SplitSafe SDK.

This module reconstructs canonical principal text from the different
encodings the ledger uses for identities.
"""
from .principal import Principal, MAX_PRINCIPAL_BYTES
from .resolver import (
    IdentityResult,
    decode_identity,
    resolve,
    clean_identity,
    same_identity,
)

__all__ = [
    'Principal',
    'MAX_PRINCIPAL_BYTES',
    'IdentityResult',
    'decode_identity',
    'resolve',
    'clean_identity',
    'same_identity',
]
