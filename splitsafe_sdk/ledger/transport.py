"""
Transport layer for the escrow ledger.

This module defines the interface every ledger transport implements, so the
orchestrator and the client work the same against the HTTP gateway and the
in-memory ledger used in development and tests.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..wire import field as wire_field, to_text

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """
    One page of raw ledger records.

    Records are returned exactly as the ledger encodes them; normalization
    happens above the transport.
    """
    transactions: List[Any] = field(default_factory=list)
    total_count: int = 0
    total_pages: int = 0

    def index_of(self, tx_id: str) -> int:
        """
        Position of a transaction within this page.

        Returns:
            The index, or -1 when the id is not on the page
        """
        for index, record in enumerate(self.transactions):
            if to_text(wire_field(record, "id")) == tx_id:
                return index
        return -1


class LedgerTransport(ABC):
    """
    Abstract base class for ledger transport implementations.

    Identities are passed as canonical principal text. Mutations return
    whatever the ledger answers (usually nothing useful); callers re-read
    the record to learn the outcome.
    """

    @abstractmethod
    def list_transactions(self, actor: str, offset: int = 0, limit: int = 100) -> Page:
        """
        List the transactions an actor takes part in.

        Args:
            actor: Identity whose transactions to list
            offset: Page number to start from
            limit: Page size

        Returns:
            Page of raw records
        """
        pass

    @abstractmethod
    def get_transaction(self, actor: str, tx_id: str) -> Optional[Any]:
        """
        Read one raw transaction record.

        Returns:
            The raw record, or None if the ledger does not know it
        """
        pass

    @abstractmethod
    def release(self, tx_id: str) -> Any:
        """Release an escrow's funds to its recipients."""
        pass

    @abstractmethod
    def cancel(self, sender: str, tx_id: str) -> Any:
        """Cancel a pending escrow on behalf of its sender."""
        pass

    @abstractmethod
    def refund(self, sender: str, tx_id: str) -> Any:
        """Refund an escrow to its sender."""
        pass

    @abstractmethod
    def approve(self, sender: str, tx_id: str, recipient: str) -> Any:
        """Record a recipient's approval."""
        pass

    @abstractmethod
    def decline(self, sender: str, tx_index: int, recipient: str) -> Any:
        """
        Record a recipient's decline.

        The ledger addresses declines by the transaction's position in the
        sender's listing rather than by id.
        """
        pass

    @abstractmethod
    def sign_contract(self, tx_id: str, milestone_id: str, recipient_id: str, caller: str,
                      signed_contract_file: str) -> Any:
        """
        Upload a recipient's signed contract for a milestone escrow.

        Args:
            tx_id: Transaction id
            milestone_id: Milestone the contract belongs to
            recipient_id: Signing-ledger id of the recipient
            caller: The signing recipient
            signed_contract_file: Reference to the uploaded signed contract
        """
        pass

    @abstractmethod
    def approve_signed_contract(self, tx_id: str, milestone_id: str, recipient_id: str, caller: str) -> Any:
        """Record the client's approval of a recipient's signed contract."""
        pass

    @abstractmethod
    def release_milestone_payment(self, tx_id: str, month_number: int, caller: str) -> Any:
        """Release the scheduled payment for ``month_number`` of a milestone escrow."""
        pass

    @abstractmethod
    def mark_as_read(self, actor: str, tx_id: str) -> Any:
        """Mark a transaction as read by an actor."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections or resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
