"""
Transaction normalization.

Turns raw ledger records (in any of the wire encodings the ledger produces)
into the canonical :class:`~splitsafe_sdk.models.Transaction`. Normalization
is pure and total: a malformed field decodes to a safe default and the rest of
the record is still normalized. It also accepts its own ``to_wire()`` output,
so normalizing twice gives the same value.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .identity import resolve
from .lifecycle import invariant_violations
from .models import (
    BASIC_LABEL,
    MILESTONE_LABEL,
    ConstellationHash,
    EscrowKind,
    Milestone,
    MilestoneData,
    MilestoneEscrowRecipient,
    MilestoneRecipient,
    RecipientPayment,
    RecipientStatus,
    ReleasePayment,
    StoryTx,
    ToEntry,
    Transaction,
    TransactionStatus,
)
from .wire import (
    as_list,
    field,
    to_int,
    to_optional_text,
    to_text,
    to_timestamp,
    unwrap_optional,
    unwrap_status,
)

logger = logging.getLogger(__name__)


def _kind_text(raw_kind: Any) -> str:
    raw_kind = unwrap_optional(raw_kind)
    if isinstance(raw_kind, EscrowKind):
        return raw_kind.value
    if isinstance(raw_kind, Mapping):
        return " ".join(str(key) for key in raw_kind).lower()
    if raw_kind is None:
        return ""
    return str(raw_kind).lower()


def _milestone_source(raw: Any) -> Optional[Any]:
    """Return the raw milestone payload: ``milestoneData`` or legacy ``milestones``."""
    data = unwrap_optional(field(raw, "milestoneData", "milestone_data"))
    if data is not None and not isinstance(data, (list, tuple)):
        return data
    legacy = field(raw, "milestones")
    if isinstance(legacy, (list, tuple)):
        return {"milestones": legacy}
    return None


def _resolve_kind(raw: Any) -> EscrowKind:
    text = _kind_text(field(raw, "kind"))
    if "milestone" in text:
        return EscrowKind.MILESTONE
    if "basic" in text:
        return EscrowKind.BASIC

    source = _milestone_source(raw)
    if source is not None and as_list(field(source, "milestones")):
        return EscrowKind.MILESTONE
    return EscrowKind.BASIC


def _resolve_title(raw: Any, kind: EscrowKind) -> str:
    title = to_text(field(raw, "title"))
    # Legacy basic records were stored with the milestone product title
    if kind == EscrowKind.BASIC and MILESTONE_LABEL in title:
        return BASIC_LABEL
    return title


def _basic_payload(raw: Any) -> Optional[Any]:
    payload = unwrap_optional(field(raw, "basicData", "basic_data"))
    if payload is None or isinstance(payload, (list, tuple)):
        return None
    return payload


def _recipient_status(raw_status: Any, approved_at: Optional[int], declined_at: Optional[int]) -> RecipientStatus:
    status = unwrap_status(raw_status, RecipientStatus)
    if status != RecipientStatus.UNKNOWN:
        return status
    if approved_at is not None:
        return RecipientStatus.APPROVED
    if declined_at is not None:
        return RecipientStatus.DECLINED
    return RecipientStatus.PENDING


def _to_entry(entry: Any) -> ToEntry:
    approved_at = to_timestamp(field(entry, "approvedAt", "approved_at"))
    declined_at = to_timestamp(field(entry, "declinedAt", "declined_at"))
    amount = field(entry, "amount", "funds_allocated", "share")
    return ToEntry(
        principal=resolve(field(entry, "principal")),
        name=to_text(field(entry, "name", "nickname")),
        amount=to_int(amount),
        percentage=to_int(field(entry, "percentage")),
        status=_recipient_status(field(entry, "status"), approved_at, declined_at),
        approved_at=approved_at,
        declined_at=declined_at,
        read_at=to_timestamp(field(entry, "readAt", "read_at")),
    )


def _milestone_recipient(entry: Any) -> MilestoneRecipient:
    return MilestoneRecipient(
        id=to_text(field(entry, "id")),
        name=to_text(field(entry, "name", "nickname")),
        principal=resolve(field(entry, "principal")),
        share=to_int(field(entry, "share", "amount")),
        approved_at=to_timestamp(field(entry, "approvedAt", "approved_at")),
        declined_at=to_timestamp(field(entry, "declinedAt", "declined_at")),
        recipient_signed_at=to_timestamp(field(entry, "recipientSignedAt", "recipient_signed_at")),
        signed_contract_at=to_timestamp(field(entry, "signedContractAt", "signed_contract_at")),
        signed_contract_file=to_optional_text(field(entry, "signedContractFile", "signed_contract_file")),
    )


def _release_payment(entry: Any, position: int) -> ReleasePayment:
    payment_id = to_int(field(entry, "id")) or position
    return ReleasePayment(
        id=payment_id,
        month_number=to_int(field(entry, "monthNumber", "month_number")),
        total=to_int(field(entry, "total")),
        released_at=to_timestamp(field(entry, "releasedAt", "released_at")),
        recipient_payments=tuple(
            RecipientPayment(
                recipient_id=to_text(field(rp, "recipientId", "recipient_id")),
                recipient_name=to_text(field(rp, "recipientName", "recipient_name")),
                amount=to_int(field(rp, "amount")),
            )
            for rp in as_list(field(entry, "recipientPayments", "recipient_payments"))
        ),
    )


def _milestone(entry: Any) -> Milestone:
    return Milestone(
        id=to_text(field(entry, "id")),
        title=to_text(field(entry, "title")),
        allocation=to_int(field(entry, "allocation")),
        coin=to_text(field(entry, "coin")),
        frequency=to_text(field(entry, "frequency")),
        duration=to_int(field(entry, "duration")),
        start_date=to_int(field(entry, "startDate", "start_date")),
        end_date=to_int(field(entry, "endDate", "end_date")),
        created_at=to_int(field(entry, "createdAt", "created_at")),
        completed_at=to_timestamp(field(entry, "completedAt", "completed_at")),
        contract_file=to_optional_text(field(entry, "contractFile", "contract_file")),
        recipients=tuple(_milestone_recipient(r) for r in as_list(field(entry, "recipients"))),
        release_payments=tuple(
            _release_payment(p, position)
            for position, p in enumerate(as_list(field(entry, "releasePayments", "release_payments")), start=1)
        ),
    )


def _escrow_recipient(entry: Any) -> MilestoneEscrowRecipient:
    return MilestoneEscrowRecipient(
        id=to_text(field(entry, "id")),
        name=to_text(field(entry, "name")),
        principal=resolve(field(entry, "principal")),
        signed_contract_file=to_optional_text(field(entry, "signedContractFile", "signed_contract_file")),
        signed_contract_at=to_timestamp(field(entry, "signedContractAt", "signed_contract_at")),
        client_approved_signed_contract_at=to_timestamp(
            field(entry, "clientApprovedSignedContractAt", "client_approved_signed_contract_at")
        ),
    )


def _milestone_data(raw: Any) -> Optional[MilestoneData]:
    source = _milestone_source(raw)
    if source is None:
        return None
    return MilestoneData(
        milestones=tuple(_milestone(m) for m in as_list(field(source, "milestones"))),
        recipients=tuple(_escrow_recipient(r) for r in as_list(field(source, "recipients"))),
        contract_file_id=to_optional_text(field(source, "contractFileId", "contract_file_id")),
        contract_signing_date_before=to_timestamp(
            field(source, "contractSigningDateBefore", "contract_signing_date_before")
        ),
        client_approved_signed_at=to_timestamp(field(source, "clientApprovedSignedAt", "client_approved_signed_at")),
    )


def _basic_recipients(raw: Any) -> List[ToEntry]:
    payload = _basic_payload(raw)
    entries = as_list(field(payload, "to")) if payload is not None else []
    if not entries:
        entries = as_list(field(raw, "to"))
    return [_to_entry(entry) for entry in entries]


def _milestone_recipients(milestone_data: Optional[MilestoneData]) -> List[ToEntry]:
    """Flatten milestone payment recipients for display, first-seen wins."""
    if milestone_data is None:
        return []
    seen = set()
    entries = []
    for milestone in milestone_data.milestones:
        for recipient in milestone.recipients:
            if recipient.principal in seen:
                continue
            seen.add(recipient.principal)
            entries.append(ToEntry(
                principal=recipient.principal,
                name=recipient.name,
                amount=recipient.share,
                status=_recipient_status(None, recipient.approved_at, recipient.declined_at),
                approved_at=recipient.approved_at,
                declined_at=recipient.declined_at,
            ))
    return entries


def _amount(raw: Any) -> int:
    payload = _basic_payload(raw)
    if payload is not None:
        funds = field(payload, "funds_allocated", "fundsAllocated")
        if funds is not None:
            return to_int(funds)
    funds = field(raw, "funds_allocated", "fundsAllocated")
    if funds is not None:
        return to_int(funds)
    return to_int(field(raw, "amount"))


def _constellation_hashes(raw: Any) -> Tuple[ConstellationHash, ...]:
    return tuple(
        ConstellationHash(
            action=to_text(field(entry, "action")),
            hash=to_text(field(entry, "hash")),
            timestamp=to_text(field(entry, "timestamp")),
        )
        for entry in as_list(field(raw, "constellationHashes", "constellation_hashes"))
    )


def _story_txs(raw: Any) -> Tuple[StoryTx, ...]:
    return tuple(
        StoryTx(
            action=to_text(field(entry, "action")),
            tx_hash=to_text(field(entry, "txHash", "tx_hash")),
            timestamp=to_text(field(entry, "timestamp")),
        )
        for entry in as_list(field(raw, "storyTxs", "story_txs"))
    )


def normalize(raw: Any) -> Transaction:
    """
    Build a canonical Transaction from a raw ledger record.

    Args:
        raw: Ledger record as a mapping or attribute object, or the
            ``to_wire()`` output of a previously normalized Transaction

    Returns:
        A fresh Transaction; never raises for malformed field values
    """
    if isinstance(raw, Transaction):
        raw = raw.to_wire()

    kind = _resolve_kind(raw)
    milestone_data = _milestone_data(raw)

    if kind == EscrowKind.MILESTONE:
        recipients = _milestone_recipients(milestone_data)
    else:
        recipients = _basic_recipients(raw)

    tx = Transaction(
        id=to_text(field(raw, "id")),
        kind=kind,
        status=unwrap_status(field(raw, "status"), TransactionStatus),
        title=_resolve_title(raw, kind),
        from_=resolve(field(raw, "from", "from_")),
        to=tuple(recipients),
        amount=_amount(raw),
        created_at=to_int(field(raw, "createdAt", "created_at")),
        confirmed_at=to_timestamp(field(raw, "confirmedAt", "confirmed_at")),
        cancelled_at=to_timestamp(field(raw, "cancelledAt", "cancelled_at")),
        refunded_at=to_timestamp(field(raw, "refundedAt", "refunded_at")),
        released_at=to_timestamp(field(raw, "releasedAt", "released_at")),
        read_at=to_timestamp(field(raw, "readAt", "read_at")),
        chat_id=to_optional_text(field(raw, "chatId", "chat_id")),
        constellation_hashes=_constellation_hashes(raw),
        story_ip_asset_id=to_optional_text(field(raw, "storyIpAssetId", "story_ip_asset_id")),
        story_txs=_story_txs(raw),
        milestone_data=milestone_data,
    )

    for violation in invariant_violations(tx):
        logger.warning(f"Transaction {tx.id}: {violation}")

    return tx


def normalize_batch(raws: Iterable[Any]) -> List[Transaction]:
    """
    Normalize a batch of records, collapsing duplicates.

    Records sharing an id are collapsed to the one with the numerically
    larger ``created_at``; on a tie the first one seen is kept. Output order
    follows the first appearance of each id.

    Args:
        raws: Raw ledger records

    Returns:
        List of unique normalized transactions
    """
    unique: Dict[str, Transaction] = {}
    for raw in raws:
        tx = normalize(raw)
        existing = unique.get(tx.id)
        if existing is None or tx.created_at > existing.created_at:
            unique[tx.id] = tx
    return list(unique.values())
