"""
Transaction state store and its single writer, the Reconciler.

The store is injected into the orchestrator and the client instead of being
ambient global state. Every write publishes exactly one read to subscribers.
Values carry a confidence flag so consumers can tell a ledger-confirmed read
from an optimistic patch.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from .lifecycle import is_regression
from .models import Transaction

logger = logging.getLogger(__name__)


class Confidence(str, Enum):
    """How much a stored value can be trusted"""
    CONFIRMED = "confirmed"  # read back from the ledger
    PRESUMED = "presumed"  # optimistic patch after a failed confirmation


@dataclass(frozen=True)
class ReconciledTransaction:
    """A stored transaction with its confidence flag."""
    transaction: Transaction
    confidence: Confidence

    @property
    def presumed(self) -> bool:
        return self.confidence == Confidence.PRESUMED


Subscriber = Callable[[ReconciledTransaction], None]


class TransactionStore:
    """
    Write-serialized store of normalized transactions keyed by id.

    Only :class:`Reconciler` should call :meth:`set`.
    """

    def __init__(self):
        self._entries: Dict[str, ReconciledTransaction] = {}
        self._subscribers: List[Subscriber] = []
        self._lock = threading.RLock()

    def get(self, tx_id: str) -> Optional[Transaction]:
        entry = self.entry(tx_id)
        return entry.transaction if entry is not None else None

    def entry(self, tx_id: str) -> Optional[ReconciledTransaction]:
        with self._lock:
            return self._entries.get(tx_id)

    def all(self) -> List[Transaction]:
        """All stored transactions, newest first."""
        with self._lock:
            entries = list(self._entries.values())
        return sorted(
            (entry.transaction for entry in entries),
            key=lambda tx: tx.created_at,
            reverse=True,
        )

    def set(self, tx: Transaction, confidence: Confidence = Confidence.CONFIRMED) -> ReconciledTransaction:
        """
        Store a transaction and notify subscribers.

        Args:
            tx: Normalized transaction
            confidence: Whether the value was confirmed by the ledger

        Returns:
            The stored entry
        """
        entry = ReconciledTransaction(transaction=tx, confidence=confidence)
        with self._lock:
            self._entries[tx.id] = entry
            subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(entry)
                except Exception as e:
                    logger.warning(f"Store subscriber failed for {tx.id}: {e}")
        return entry

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback invoked once per write.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @contextmanager
    def locked(self) -> Iterator["TransactionStore"]:
        """
        Hold the write lock across a read-then-write sequence.

        The lock is re-entrant, so :meth:`entry` and :meth:`set` may be
        called inside the block.
        """
        with self._lock:
            yield self


class Reconciler:
    """
    The only writer of transaction state.

    Confirmed reads replace whatever is stored unless they would move a
    previously confirmed value backwards, which marks them as stale. A
    presumed value is stored unless it would move a confirmed value
    backwards, and is superseded by the next confirmed read.
    """

    def __init__(self, store: TransactionStore):
        self.store = store

    def _regresses(self, tx: Transaction) -> Optional[ReconciledTransaction]:
        """The stored confirmed entry ``tx`` would move backwards, if any."""
        previous = self.store.entry(tx.id)
        if (
            previous is not None
            and previous.confidence == Confidence.CONFIRMED
            and is_regression(previous.transaction, tx)
        ):
            return previous
        return None

    def confirm(self, tx: Transaction) -> ReconciledTransaction:
        """
        Store a value read back from the ledger.

        Args:
            tx: Freshly normalized transaction

        Returns:
            The entry now in the store; the previous entry when ``tx`` is stale
        """
        with self.store.locked():
            previous = self._regresses(tx)
            if previous is not None:
                logger.warning(
                    f"Ignoring stale read of {tx.id}: {previous.transaction.status.value} -> {tx.status.value}"
                )
                return previous
            return self.store.set(tx, Confidence.CONFIRMED)

    def presume(self, tx: Transaction) -> ReconciledTransaction:
        """
        Store an optimistic value that has not been confirmed by the ledger.

        Returns:
            The entry now in the store; the confirmed entry when ``tx`` would
            move it backwards
        """
        with self.store.locked():
            previous = self._regresses(tx)
            if previous is not None:
                logger.warning(
                    f"Ignoring presumed state of {tx.id}: "
                    f"{previous.transaction.status.value} -> {tx.status.value} would regress confirmed state"
                )
                return previous
            logger.info(f"Storing presumed state for {tx.id}: {tx.status.value}")
            return self.store.set(tx, Confidence.PRESUMED)
