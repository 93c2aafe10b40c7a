"""
Role and control derivation for an acting identity.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .identity import clean_identity
from .lifecycle import can_cancel
from .models import RecipientStatus, ToEntry, Transaction, TransactionStatus

logger = logging.getLogger(__name__)

WAITING_MESSAGE = "Waiting for the sender to release or refund the escrow"


@dataclass(frozen=True)
class Controls:
    """Which action controls an actor is offered for a transaction."""
    approve: bool = False
    decline: bool = False
    release: bool = False
    refund: bool = False
    edit: bool = False
    cancel: bool = False
    waiting_message: Optional[str] = None

    @property
    def any(self) -> bool:
        return any((self.approve, self.decline, self.release, self.refund, self.edit, self.cancel))


def is_sender(tx: Transaction, identity: Any, legacy_prefixes: Iterable[str] = ()) -> bool:
    """
    Whether ``identity`` created the transaction.

    Args:
        tx: Normalized transaction
        identity: Actor identity in any wire encoding
        legacy_prefixes: Transaction id prefixes whose recipient-less
            records are treated as sender-owned (migration workaround)

    Returns:
        True if the actor is the sender
    """
    if identity is None:
        return False
    sender = clean_identity(tx.from_)
    if sender and sender == clean_identity(identity):
        return True

    for prefix in legacy_prefixes:
        if prefix and tx.id.startswith(prefix) and not tx.to:
            logger.debug(f"Treating legacy transaction {tx.id} as sender-owned")
            return True
    return False


def _entry(tx: Transaction, identity: Any) -> Optional[ToEntry]:
    if identity is None:
        return None
    return tx.recipient_entry(identity)


def has_acted(tx: Transaction, identity: Any) -> bool:
    """True if the actor's recipient entry shows an approval, a decline or a non-pending status."""
    entry = _entry(tx, identity)
    if entry is None:
        return False
    return (
        entry.approved_at is not None
        or entry.declined_at is not None
        or entry.status != RecipientStatus.PENDING
    )


def is_pending_approval(tx: Transaction, identity: Any) -> bool:
    """True if the actor is a recipient who has not yet acted."""
    return _entry(tx, identity) is not None and not has_acted(tx, identity)


def has_approved(tx: Transaction, identity: Any) -> bool:
    entry = _entry(tx, identity)
    return entry is not None and (entry.status == RecipientStatus.APPROVED or entry.approved_at is not None)


def has_declined(tx: Transaction, identity: Any) -> bool:
    entry = _entry(tx, identity)
    return entry is not None and (entry.status == RecipientStatus.DECLINED or entry.declined_at is not None)


def resolve_controls(tx: Transaction, identity: Any, legacy_prefixes: Iterable[str] = ()) -> Controls:
    """
    Derive the controls offered to an actor.

    Approve and decline are offered to anyone who is not the sender and has
    not acted yet. Release and refund go to the sender of a confirmed
    escrow; edit and cancel to the sender of a cancellable pending one.

    Args:
        tx: Normalized transaction
        identity: Actor identity in any wire encoding
        legacy_prefixes: See :func:`is_sender`

    Returns:
        Controls for the actor
    """
    sender = is_sender(tx, identity, legacy_prefixes)
    if sender:
        confirmed = tx.status == TransactionStatus.CONFIRMED
        editable = tx.status == TransactionStatus.PENDING and can_cancel(tx)
        return Controls(release=confirmed, refund=confirmed, edit=editable, cancel=editable)

    if not has_acted(tx, identity):
        return Controls(approve=True, decline=True)

    if _entry(tx, identity) is not None:
        return Controls(waiting_message=WAITING_MESSAGE)
    return Controls()
