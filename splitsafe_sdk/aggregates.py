"""
Read-only aggregates over a normalized transaction.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Tuple

from .identity import same_identity
from .models import RecipientStatus, Transaction

# Smallest units per display unit (satoshis per BTC)
DISPLAY_UNIT = 10 ** 8


@dataclass(frozen=True)
class Share:
    """An actor's share of a transaction, in display units."""
    amount: Decimal = Decimal(0)
    percentage: int = 0


def to_display(amount: int, unit: int = DISPLAY_UNIT) -> Decimal:
    """Convert a smallest-unit integer amount to display units exactly."""
    return Decimal(amount) / Decimal(unit)


def total_allocated(tx: Transaction, unit: int = DISPLAY_UNIT) -> Decimal:
    """
    Total amount held by the escrow, in display units.

    This is the transaction's own amount, not a sum of recipient shares.
    """
    return to_display(tx.amount, unit)


def unique_recipient_count(tx: Transaction) -> int:
    """Number of distinct recipients."""
    if not tx.is_milestone:
        return len(tx.to)
    if tx.milestone_data is None:
        return 0
    return len({
        recipient.principal
        for milestone in tx.milestone_data.milestones
        for recipient in milestone.recipients
    })


def user_share(tx: Transaction, identity: Any, unit: int = DISPLAY_UNIT) -> Share:
    """
    Look up an actor's share of a transaction.

    Args:
        tx: Normalized transaction
        identity: Actor identity in any wire encoding
        unit: Smallest units per display unit

    Returns:
        The actor's Share, or a zero Share when the actor is not a recipient
    """
    entry = tx.recipient_entry(identity)
    if entry is None:
        return Share()
    return Share(amount=to_display(entry.amount, unit), percentage=entry.percentage)


def approval_progress(tx: Transaction) -> Tuple[int, int]:
    """Return ``(approved, total)`` recipient counts."""
    approved = sum(1 for entry in tx.to if entry.status == RecipientStatus.APPROVED)
    return approved, len(tx.to)


def released_total(tx: Transaction) -> int:
    """Sum of released payment totals across all milestones, in smallest units."""
    if tx.milestone_data is None:
        return 0
    return sum(
        payment.total
        for milestone in tx.milestone_data.milestones
        for payment in milestone.release_payments
        if payment.released
    )


def transaction_category(tx: Transaction, identity: Any) -> str:
    """Classify a transaction as ``sent`` or ``received`` from an actor's point of view."""
    return "sent" if same_identity(tx.from_, identity) else "received"


def truncate_hash(value: str, head: int = 6, tail: int = 4) -> str:
    """Shorten a long hash or identity for display, e.g. ``abcdef...7890``."""
    if not value or len(value) <= head + tail + 3:
        return value
    return f"{value[:head]}...{value[-tail:]}"


def format_amount(amount: int, unit: int = DISPLAY_UNIT, places: int = 8) -> str:
    """Format a smallest-unit amount in display units with fixed precision."""
    quantum = Decimal(1).scaleb(-places)
    return format(to_display(amount, unit).quantize(quantum), "f")
