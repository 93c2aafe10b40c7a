"""
In-memory ledger transport.

A dictionary-backed ledger for development and tests. Records are kept and
returned in the ledger's wire encoding (optionals as zero-or-one-element
lists, statuses as single-key objects), so everything above the transport
runs exactly as it would against the real ledger. Failures and lagging reads
can be injected per method.
"""
import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..identity import same_identity
from ..wire import unwrap_optional
from .exceptions import LedgerResponseError
from .transport import LedgerTransport, Page

logger = logging.getLogger(__name__)


def _tag(status: str) -> Dict[str, None]:
    return {status: None}


def _status_of(record: Dict[str, Any]) -> str:
    status = unwrap_optional(record.get("status"))
    if isinstance(status, dict) and status:
        return str(next(iter(status)))
    return str(status or "")


class InMemoryLedgerTransport(LedgerTransport):
    """
    Ledger transport backed by a dictionary of raw records.

    Args:
        records: Initial raw records, in insertion order
        clock: Nanosecond clock used for mutation timestamps
    """

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, clock: Optional[Callable[[], int]] = None):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, Tuple[Exception, Optional[int]]] = {}
        self._stale_reads = 0
        self._lock = threading.RLock()
        self.clock = clock or time.time_ns
        self.calls: List[Tuple[str, tuple]] = []
        self.closed = False
        for record in records or []:
            self.add(record)

    # Test and development hooks

    def add(self, record: Dict[str, Any]) -> None:
        """Insert or replace a raw record."""
        with self._lock:
            self._records[str(record["id"])] = copy.deepcopy(record)

    def record(self, tx_id: str) -> Optional[Dict[str, Any]]:
        """A copy of the raw record as currently stored."""
        with self._lock:
            stored = self._records.get(tx_id)
            return copy.deepcopy(stored) if stored is not None else None

    def fail(self, method: str, error: Exception, times: Optional[int] = 1) -> None:
        """
        Make ``method`` raise ``error``.

        Args:
            method: Transport method name, e.g. ``"release"``
            error: Exception to raise
            times: Number of calls to fail, None for every call
        """
        with self._lock:
            self._failures[method] = (error, times)

    def lag_reads(self, count: int) -> None:
        """Make the next ``count`` reads of a single record return nothing."""
        with self._lock:
            self._stale_reads = count

    def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        failure = self._failures.get(method)
        if failure is None:
            return
        error, remaining = failure
        if remaining is not None:
            if remaining <= 1:
                del self._failures[method]
            else:
                self._failures[method] = (error, remaining - 1)
        logger.debug(f"Injected failure for {method}: {error}")
        raise error

    def _require(self, tx_id: str) -> Dict[str, Any]:
        record = self._records.get(tx_id)
        if record is None:
            raise LedgerResponseError(f"Transaction {tx_id} not found", error_code="NotFound")
        return record

    def _require_sender(self, record: Dict[str, Any], sender: str) -> None:
        if not same_identity(record.get("from"), sender):
            raise LedgerResponseError("Caller is not the sender", error_code="Unauthorized")

    @staticmethod
    def _participants(record: Dict[str, Any]) -> List[Any]:
        people = [record.get("from")]
        people.extend(entry.get("principal") for entry in record.get("to") or [])
        data = unwrap_optional(record.get("milestoneData"))
        if isinstance(data, dict):
            for milestone in data.get("milestones") or []:
                people.extend(r.get("principal") for r in milestone.get("recipients") or [])
        return people

    def _recipient(self, record: Dict[str, Any], recipient: str) -> Dict[str, Any]:
        for entry in record.get("to") or []:
            if same_identity(entry.get("principal"), recipient):
                return entry
        raise LedgerResponseError("Caller is not a recipient", error_code="NotRecipient")

    def _set_status(self, record: Dict[str, Any], status: str, stamp_field: str) -> None:
        record["status"] = _tag(status)
        record[stamp_field] = [self.clock()]

    def _mark_recipient(self, record: Dict[str, Any], recipient: str, status: str, stamp_field: str) -> None:
        """Stamp a recipient's action on every entry that names them."""
        now = self.clock()
        found = False
        for entry in record.get("to") or []:
            if same_identity(entry.get("principal"), recipient):
                entry["status"] = _tag(status)
                entry[stamp_field] = [now]
                found = True

        data = unwrap_optional(record.get("milestoneData"))
        if isinstance(data, dict):
            for milestone in data.get("milestones") or []:
                for entry in milestone.get("recipients") or []:
                    if same_identity(entry.get("principal"), recipient):
                        entry[stamp_field] = [now]
                        found = True

        if not found:
            raise LedgerResponseError("Caller is not a recipient", error_code="NotRecipient")

    def _listing(self, actor: str) -> List[Dict[str, Any]]:
        return [
            record for record in self._records.values()
            if any(same_identity(person, actor) for person in self._participants(record))
        ]

    def _milestone_data(self, record: Dict[str, Any]) -> Dict[str, Any]:
        data = unwrap_optional(record.get("milestoneData"))
        if not isinstance(data, dict) or not data.get("milestones"):
            raise LedgerResponseError("Not a milestone escrow", error_code="InvalidKind")
        return data

    def _milestone(self, data: Dict[str, Any], milestone_id: str) -> Dict[str, Any]:
        for milestone in data["milestones"]:
            if str(milestone.get("id")) == milestone_id:
                return milestone
        raise LedgerResponseError(f"Milestone {milestone_id} not found", error_code="NotFound")

    @staticmethod
    def _signers(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """The contract-signing ledger, seeded from the milestone recipients on first use."""
        signers = data.get("recipients")
        if signers:
            return signers

        signers = []
        seen = []
        for milestone in data["milestones"]:
            for recipient in milestone.get("recipients") or []:
                principal = recipient.get("principal")
                if any(same_identity(principal, other) for other in seen):
                    continue
                seen.append(principal)
                signers.append({
                    "id": recipient.get("id", ""),
                    "name": recipient.get("name", ""),
                    "principal": principal,
                    "signedContractFile": [],
                    "signedContractAt": [],
                    "clientApprovedSignedContractAt": [],
                })
        data["recipients"] = signers
        return signers

    def _signer(self, data: Dict[str, Any], recipient_id: str) -> Dict[str, Any]:
        for signer in self._signers(data):
            if str(signer.get("id")) == recipient_id:
                return signer
        raise LedgerResponseError(f"Recipient {recipient_id} not found", error_code="NotRecipient")

    # LedgerTransport

    def list_transactions(self, actor: str, offset: int = 0, limit: int = 100) -> Page:
        with self._lock:
            self._enter("list_transactions", actor, offset, limit)
            mine = self._listing(actor)
            start = offset * limit
            page = mine[start:start + limit]
            total_pages = (len(mine) + limit - 1) // limit if limit > 0 else 0
            return Page(
                transactions=copy.deepcopy(page),
                total_count=len(mine),
                total_pages=total_pages,
            )

    def get_transaction(self, actor: str, tx_id: str) -> Optional[Any]:
        with self._lock:
            self._enter("get_transaction", actor, tx_id)
            if self._stale_reads > 0:
                self._stale_reads -= 1
                return None
            record = self._records.get(tx_id)
            return copy.deepcopy(record) if record is not None else None

    def release(self, tx_id: str) -> Any:
        with self._lock:
            self._enter("release", tx_id)
            self._set_status(self._require(tx_id), "released", "releasedAt")

    def cancel(self, sender: str, tx_id: str) -> Any:
        with self._lock:
            self._enter("cancel", sender, tx_id)
            record = self._require(tx_id)
            self._require_sender(record, sender)
            if _status_of(record) != "pending":
                raise LedgerResponseError("Only pending escrows can be cancelled", error_code="InvalidStatus")
            self._set_status(record, "cancelled", "cancelledAt")

    def refund(self, sender: str, tx_id: str) -> Any:
        with self._lock:
            self._enter("refund", sender, tx_id)
            record = self._require(tx_id)
            self._require_sender(record, sender)
            self._set_status(record, "refund", "refundedAt")

    def approve(self, sender: str, tx_id: str, recipient: str) -> Any:
        with self._lock:
            self._enter("approve", sender, tx_id, recipient)
            record = self._require(tx_id)
            self._require_sender(record, sender)
            self._mark_recipient(record, recipient, "approved", "approvedAt")

            # The ledger confirms a basic escrow once every recipient approved
            entries = record.get("to") or []
            if entries and all(_status_of(e) == "approved" for e in entries):
                self._set_status(record, "confirmed", "confirmedAt")

    def decline(self, sender: str, tx_index: int, recipient: str) -> Any:
        with self._lock:
            self._enter("decline", sender, tx_index, recipient)
            listing = self._listing(sender)
            if not 0 <= tx_index < len(listing):
                raise LedgerResponseError(f"No transaction at index {tx_index}", error_code="NotFound")
            record = listing[tx_index]
            self._mark_recipient(record, recipient, "declined", "declinedAt")
            record["status"] = _tag("declined")

    def sign_contract(self, tx_id: str, milestone_id: str, recipient_id: str, caller: str,
                      signed_contract_file: str) -> Any:
        with self._lock:
            self._enter("sign_contract", tx_id, milestone_id, recipient_id, caller, signed_contract_file)
            data = self._milestone_data(self._require(tx_id))
            milestone = self._milestone(data, milestone_id)
            signer = self._signer(data, recipient_id)
            if not same_identity(signer.get("principal"), caller):
                raise LedgerResponseError("Caller is not the signing recipient", error_code="Unauthorized")

            now = self.clock()
            signer["signedContractFile"] = [signed_contract_file]
            signer["signedContractAt"] = [now]
            for entry in milestone.get("recipients") or []:
                if same_identity(entry.get("principal"), caller):
                    entry["recipientSignedAt"] = [now]
                    entry["signedContractAt"] = [now]
                    entry["signedContractFile"] = [signed_contract_file]

    def approve_signed_contract(self, tx_id: str, milestone_id: str, recipient_id: str, caller: str) -> Any:
        with self._lock:
            self._enter("approve_signed_contract", tx_id, milestone_id, recipient_id, caller)
            record = self._require(tx_id)
            self._require_sender(record, caller)
            data = self._milestone_data(record)
            self._milestone(data, milestone_id)
            signer = self._signer(data, recipient_id)
            if not unwrap_optional(signer.get("signedContractAt")):
                raise LedgerResponseError("Contract has not been signed", error_code="InvalidStatus")

            now = self.clock()
            signer["clientApprovedSignedContractAt"] = [now]
            if all(unwrap_optional(s.get("clientApprovedSignedContractAt")) for s in self._signers(data)):
                data["clientApprovedSignedAt"] = [now]

    def release_milestone_payment(self, tx_id: str, month_number: int, caller: str) -> Any:
        with self._lock:
            self._enter("release_milestone_payment", tx_id, month_number, caller)
            record = self._require(tx_id)
            self._require_sender(record, caller)
            data = self._milestone_data(record)

            now = self.clock()
            released = 0
            for milestone in data["milestones"]:
                for payment in milestone.get("releasePayments") or []:
                    if payment.get("monthNumber") == month_number and not payment.get("releasedAt"):
                        payment["releasedAt"] = [now]
                        released += 1
            if not released:
                raise LedgerResponseError(f"No unreleased payment for month {month_number}", error_code="NotFound")

            # The escrow completes with its last scheduled payment
            payments = [p for m in data["milestones"] for p in m.get("releasePayments") or []]
            if all(p.get("releasedAt") for p in payments):
                self._set_status(record, "released", "releasedAt")

    def mark_as_read(self, actor: str, tx_id: str) -> Any:
        with self._lock:
            self._enter("mark_as_read", actor, tx_id)
            record = self._require(tx_id)
            if same_identity(record.get("from"), actor):
                record["readAt"] = [self.clock()]
                return
            entry = self._recipient(record, actor)
            entry["readAt"] = [self.clock()]

    def close(self) -> None:
        self.closed = True
