"""
High-level client for the SplitSafe escrow ledger.

:class:`EscrowClient` wires a ledger transport, the transaction store, the
notifier and the action orchestrator together, and derives the view state
(lifecycle step, controls, aggregates) for an acting identity.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Set, Tuple, Union

from . import aggregates, lifecycle, permissions
from .config import SplitSafeConfig
from .exceptions import EscrowNotFoundError
from .identity import resolve
from .ledger.http_transport import HttpLedgerTransport
from .ledger.transport import LedgerTransport
from .models import Transaction
from .normalizer import normalize, normalize_batch
from .notifications import HttpNotifier, Notifier, NullNotifier
from .orchestrator import ActionOrchestrator, ActionOutcome, ErrorReporter
from .retry import invoke
from .store import Confidence, Reconciler, TransactionStore
from .wire import field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscrowView:
    """Everything a presentation layer needs to render one escrow for one actor."""
    transaction: Transaction
    confidence: Confidence
    lifecycle_state: lifecycle.LifecycleState
    subtitle: str
    controls: permissions.Controls
    is_sender: bool
    total_allocated: Decimal
    recipient_count: int
    share: aggregates.Share
    approval_progress: Tuple[int, int]
    category: str

    @property
    def step(self) -> int:
        return self.lifecycle_state.step


def _is_listable(record: Any) -> bool:
    """Listing records need a string id, a status and a string title."""
    if record is None:
        return False
    return (
        isinstance(field(record, "id"), str)
        and field(record, "status") is not None
        and isinstance(field(record, "title"), str)
    )


class EscrowClient:
    """
    Client for reading escrows and running escrow actions.

    Args:
        ledger: Ledger transport
        store: Transaction store (a fresh one by default)
        notifier: Counterparty notifier
        config: SDK configuration
        error_reporter: Called once per failed action
        clock: Nanosecond clock, mainly for tests
    """

    def __init__(
        self,
        ledger: LedgerTransport,
        store: Optional[TransactionStore] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[SplitSafeConfig] = None,
        error_reporter: Optional[ErrorReporter] = None,
        clock=None,
    ):
        self.ledger = ledger
        self.store = store or TransactionStore()
        self.config = config or SplitSafeConfig()
        self.clock = clock or lifecycle.now_ns
        self.reconciler = Reconciler(self.store)
        self.orchestrator = ActionOrchestrator(
            ledger,
            self.store,
            notifier=notifier or NullNotifier(),
            config=self.config,
            error_reporter=error_reporter,
            clock=self.clock,
        )
        self._fetching: Set[str] = set()

    @classmethod
    def from_config(cls, config: Optional[SplitSafeConfig] = None, **kwargs) -> "EscrowClient":
        """
        Build a client talking to the HTTP ledger described by ``config``.

        Raises:
            ValueError: If no ledger URL is configured or a URL is not https
        """
        config = config or SplitSafeConfig.from_env()
        if not config.ledger_url:
            raise ValueError("ledger_url is required (set SPLITSAFE_LEDGER_URL)")
        ledger = HttpLedgerTransport(
            config.ledger_url,
            api_key=config.api_key,
            timeout=config.request_timeout,
            retry_count=config.http_retry_count,
        )
        notifier = None
        if config.notification_url:
            notifier = HttpNotifier(config.notification_url, api_key=config.api_key, timeout=config.request_timeout)
        return cls(ledger, notifier=notifier, config=config, **kwargs)

    # Reads

    async def list_transactions(self, actor: Any, page: int = 0, page_size: Optional[int] = None) -> List[Transaction]:
        """
        List an actor's transactions, normalized and deduplicated.

        Records missing an id, status or title are dropped. Every listed
        transaction is reconciled into the store as confirmed state.

        Args:
            actor: Identity in any wire encoding
            page: Page number
            page_size: Page size (defaults to the configured page size)

        Returns:
            The stored transactions for this page, in listing order
        """
        size = page_size or self.config.page_size
        result = await invoke(self.ledger.list_transactions, resolve(actor), page, size)

        records = [record for record in result.transactions if _is_listable(record)]
        dropped = len(result.transactions) - len(records)
        if dropped:
            logger.warning(f"Dropped {dropped} malformed transaction record(s) from listing")

        return [self.reconciler.confirm(tx).transaction for tx in normalize_batch(records)]

    async def fetch_transaction(self, tx_id: str, actor: Any) -> Optional[Transaction]:
        """
        Read one transaction from the ledger and reconcile it.

        While a fetch of the same id is outstanding, further calls return
        the stored value instead of issuing another read.

        Returns:
            The stored transaction, or None if neither the ledger nor the
            store knows it
        """
        if tx_id in self._fetching:
            logger.debug(f"Fetch of {tx_id} already in progress")
            return self.store.get(tx_id)

        self._fetching.add(tx_id)
        try:
            raw = await invoke(self.ledger.get_transaction, resolve(actor), tx_id)
        finally:
            self._fetching.discard(tx_id)

        if raw is None:
            return self.store.get(tx_id)
        return self.reconciler.confirm(normalize(raw)).transaction

    async def mark_as_read(self, tx_id: str, actor: Any) -> Optional[Transaction]:
        """Mark a transaction read for ``actor`` and refresh it."""
        await invoke(self.ledger.mark_as_read, resolve(actor), tx_id)
        return await self.fetch_transaction(tx_id, actor)

    def get(self, tx_id: str) -> Optional[Transaction]:
        return self.store.get(tx_id)

    # View state

    def view(self, tx: Union[str, Transaction], actor: Any, now: Optional[int] = None) -> EscrowView:
        """
        Derive the view state of a transaction for an actor.

        Args:
            tx: Stored transaction id, or a transaction
            actor: Identity in any wire encoding
            now: Clock override in nanoseconds

        Raises:
            EscrowNotFoundError: If ``tx`` is an id the store does not know
        """
        if isinstance(tx, Transaction):
            entry = self.store.entry(tx.id)
            confidence = entry.confidence if entry is not None else Confidence.CONFIRMED
        else:
            entry = self.store.entry(tx)
            if entry is None:
                raise EscrowNotFoundError(f"Transaction {tx} is not loaded")
            tx, confidence = entry.transaction, entry.confidence

        prefixes = self.config.legacy_sender_prefixes
        unit = self.config.display_unit
        return EscrowView(
            transaction=tx,
            confidence=confidence,
            lifecycle_state=lifecycle.derive(tx, self.clock() if now is None else now),
            subtitle=lifecycle.subtitle(tx.status),
            controls=permissions.resolve_controls(tx, actor, prefixes),
            is_sender=permissions.is_sender(tx, actor, prefixes),
            total_allocated=aggregates.total_allocated(tx, unit),
            recipient_count=aggregates.unique_recipient_count(tx),
            share=aggregates.user_share(tx, actor, unit),
            approval_progress=aggregates.approval_progress(tx),
            category=aggregates.transaction_category(tx, actor),
        )

    # Actions

    def _require(self, tx_id: str) -> Transaction:
        tx = self.store.get(tx_id)
        if tx is None:
            raise EscrowNotFoundError(f"Transaction {tx_id} is not loaded")
        return tx

    async def release(self, tx_id: str) -> ActionOutcome:
        return await self.orchestrator.release(self._require(tx_id))

    async def cancel(self, tx_id: str) -> ActionOutcome:
        return await self.orchestrator.cancel(self._require(tx_id))

    async def refund(self, tx_id: str) -> ActionOutcome:
        return await self.orchestrator.refund(self._require(tx_id))

    async def approve(self, tx_id: str, actor: Any) -> ActionOutcome:
        return await self.orchestrator.approve(self._require(tx_id), actor)

    async def decline(self, tx_id: str, actor: Any) -> ActionOutcome:
        return await self.orchestrator.decline(self._require(tx_id), actor)

    async def sign_contract(self, tx_id: str, actor: Any, signed_contract_file: str,
                            milestone_id: Optional[str] = None) -> ActionOutcome:
        return await self.orchestrator.sign_contract(
            self._require(tx_id), actor, signed_contract_file, milestone_id
        )

    async def approve_signed_contract(self, tx_id: str, recipient: Any,
                                      milestone_id: Optional[str] = None) -> ActionOutcome:
        return await self.orchestrator.approve_signed_contract(self._require(tx_id), recipient, milestone_id)

    async def release_milestone_payment(self, tx_id: str, month_number: int) -> ActionOutcome:
        return await self.orchestrator.release_milestone_payment(self._require(tx_id), month_number)

    def close(self) -> None:
        self.ledger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
