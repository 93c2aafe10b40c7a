"""
Lifecycle state derivation for escrow transactions.

Derives the UI-visible lifecycle step, cancellation eligibility and status
subtitle from a normalized transaction. Everything here is pure; the only
input besides the transaction is the clock, which callers may pin by passing
``now_ns``.
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .exceptions import InvariantError
from .models import (
    MilestoneEscrowRecipient,
    RecipientStatus,
    Transaction,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

# Basic escrow steps
BASIC_STEP_CREATED = 0
BASIC_STEP_CONFIRMED = 2
BASIC_STEP_RELEASED = 3

# Milestone escrow steps
MILESTONE_STEP_CREATED = 0
MILESTONE_STEP_SIGNED = 1
MILESTONE_STEP_APPROVED = 2
MILESTONE_STEP_ACTIVE = 3
MILESTONE_STEP_COMPLETED = 6

_ACTIONED_STATUSES = (RecipientStatus.APPROVED, RecipientStatus.DECLINED)

_SUBTITLES = {
    TransactionStatus.PENDING: "Review and approve or decline this escrow",
    TransactionStatus.CONFIRMED: "Waiting for sender to release or refund",
    TransactionStatus.RELEASED: "Escrow completed successfully",
    TransactionStatus.REFUND: "Escrow has been refunded",
    TransactionStatus.CANCELLED: "Escrow has been cancelled",
    TransactionStatus.DECLINED: "Escrow has been cancelled",
}


def now_ns() -> int:
    """Current wall-clock time in nanoseconds, the ledger's time unit."""
    return time.time_ns()


@dataclass(frozen=True)
class LifecycleState:
    """Everything the lifecycle derives for one transaction at one instant."""
    step: int
    can_cancel: bool
    all_signed: bool = False
    client_approved: bool = False
    started: bool = False
    released_count: int = 0


def signing_recipients(tx: Transaction) -> Tuple[MilestoneEscrowRecipient, ...]:
    """
    Return the contract-signing ledger of a milestone escrow.

    When the ledger is empty the distinct milestone payment recipients are
    used instead (first seen wins), all of them unsigned.
    """
    data = tx.milestone_data
    if data is None:
        return ()
    if data.recipients:
        return data.recipients

    seen = set()
    derived = []
    for milestone in data.milestones:
        for recipient in milestone.recipients:
            if recipient.principal in seen:
                continue
            seen.add(recipient.principal)
            derived.append(MilestoneEscrowRecipient(
                id=recipient.id,
                name=recipient.name,
                principal=recipient.principal,
            ))
    return tuple(derived)


def all_signed(tx: Transaction) -> bool:
    """True when every contract-signing recipient has signed. False when there are none."""
    recipients = signing_recipients(tx)
    return bool(recipients) and all(r.signed for r in recipients)


def client_approved(tx: Transaction) -> bool:
    """True when the client approved every signed contract."""
    return all_signed(tx) and all(r.client_approved for r in signing_recipients(tx))


def has_started(tx: Transaction, now: Optional[int] = None) -> bool:
    """True once the first milestone's start date has been reached."""
    first = tx.first_milestone
    if first is None:
        return False
    current = now_ns() if now is None else now
    return current >= first.start_date


def released_count(tx: Transaction) -> int:
    """Number of released payments in the first milestone."""
    first = tx.first_milestone
    return first.released_count if first is not None else 0


def _basic_step(status: TransactionStatus) -> int:
    if status == TransactionStatus.RELEASED:
        return BASIC_STEP_RELEASED
    if status == TransactionStatus.CONFIRMED:
        return BASIC_STEP_CONFIRMED
    return BASIC_STEP_CREATED


def _milestone_step(tx: Transaction, now: Optional[int]) -> int:
    if tx.status == TransactionStatus.RELEASED:
        return MILESTONE_STEP_COMPLETED

    # Pending and confirmed deliberately share one mapping
    if tx.status not in (TransactionStatus.PENDING, TransactionStatus.CONFIRMED):
        return MILESTONE_STEP_CREATED

    if client_approved(tx):
        if has_started(tx, now):
            return min(MILESTONE_STEP_ACTIVE + released_count(tx), MILESTONE_STEP_COMPLETED)
        return MILESTONE_STEP_APPROVED
    if all_signed(tx):
        return MILESTONE_STEP_SIGNED
    return MILESTONE_STEP_CREATED


def step(tx: Transaction, now: Optional[int] = None) -> int:
    """
    Derive the lifecycle step of a transaction.

    Args:
        tx: Normalized transaction
        now: Current time in nanoseconds (defaults to the wall clock)

    Returns:
        Step index: 0-3 for basic escrows, 0-6 for milestone escrows
    """
    if tx.is_milestone and tx.first_milestone is not None:
        return _milestone_step(tx, now)
    return _basic_step(tx.status)


def has_first_milestone_approvals(tx: Transaction) -> bool:
    """True if any recipient of the first milestone has approved."""
    first = tx.first_milestone
    if first is None:
        return False
    return any(recipient.approved_at is not None for recipient in first.recipients)


def can_cancel(tx: Transaction) -> bool:
    """
    Whether the sender may still cancel (or edit) the escrow.

    Only while pending and before any release. For milestone escrows, the
    first approval on the first milestone disables cancellation for good,
    even if that recipient later declines.
    """
    if tx.status != TransactionStatus.PENDING or tx.released_at is not None:
        return False
    if tx.is_milestone and has_first_milestone_approvals(tx):
        return False
    return True


def derive(tx: Transaction, now: Optional[int] = None) -> LifecycleState:
    """Derive the full lifecycle state of a transaction at one instant."""
    current = now_ns() if now is None else now
    if not tx.is_milestone:
        return LifecycleState(step=step(tx, current), can_cancel=can_cancel(tx))
    return LifecycleState(
        step=step(tx, current),
        can_cancel=can_cancel(tx),
        all_signed=all_signed(tx),
        client_approved=client_approved(tx),
        started=has_started(tx, current),
        released_count=released_count(tx),
    )


def subtitle(status: TransactionStatus) -> str:
    """Human-readable subtitle for a transaction status."""
    return _SUBTITLES.get(status, "")


def is_regression(previous: Transaction, current: Transaction) -> bool:
    """
    Detect a read that moves a transaction backwards.

    A transaction never returns to pending once it has left it, and a
    recipient never returns to pending after approving or declining. An
    unrecognised status is not a departure from pending. For milestone
    escrows, signatures and client approvals are never withdrawn and the
    released payment count never drops.

    Args:
        previous: Last known state
        current: Newly read state of the same transaction

    Returns:
        True if ``current`` is older than ``previous``
    """
    if (
        previous.status not in (TransactionStatus.PENDING, TransactionStatus.UNKNOWN)
        and current.status == TransactionStatus.PENDING
    ):
        return True

    for entry in previous.to:
        if entry.status not in _ACTIONED_STATUSES:
            continue
        newer = current.recipient_entry(entry.principal)
        if newer is not None and newer.status == RecipientStatus.PENDING:
            return True

    signers = {r.principal: r for r in signing_recipients(current)}
    for signer in signing_recipients(previous):
        newer = signers.get(signer.principal)
        if newer is None:
            continue
        if (signer.signed and not newer.signed) or (signer.client_approved and not newer.client_approved):
            return True
    return released_count(current) < released_count(previous)


def invariant_violations(tx: Transaction) -> List[str]:
    """
    List the model invariants a transaction violates.

    Checks that release payments are 1-indexed and ordered, that released
    payments form a prefix, and that the client only approved signed
    contracts.
    """
    violations = []
    data = tx.milestone_data
    if data is None:
        return violations

    for milestone in data.milestones:
        ids = [payment.id for payment in milestone.release_payments]
        if ids != list(range(1, len(ids) + 1)):
            violations.append(f"milestone {milestone.id} release payments are not 1-indexed in order: {ids}")

        gap_seen = False
        for payment in milestone.release_payments:
            if not payment.released:
                gap_seen = True
            elif gap_seen:
                violations.append(
                    f"milestone {milestone.id} payment {payment.id} released after an unreleased payment"
                )
                break

    for recipient in data.recipients:
        if recipient.client_approved and not recipient.signed:
            violations.append(
                f"recipient {recipient.principal[:10]} approved by client before signing"
            )
    return violations


def assert_invariants(tx: Transaction) -> None:
    """
    Raise if the transaction violates any model invariant.

    Raises:
        InvariantError: Listing every violation found
    """
    violations = invariant_violations(tx)
    if violations:
        raise InvariantError("; ".join(violations))
