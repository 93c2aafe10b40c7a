"""
Action orchestration for escrow mutations.

Every action (release, cancel, refund, approve, decline, and the milestone
contract and payment actions) runs the same sequence: backend mutation,
best-effort counterparty notifications, a bounded re-fetch, and
reconciliation into the store. When the re-fetch never succeeds, or the
mutation itself fails, a deterministic optimistic patch is stored as
*presumed* state so callers are never left on a stale pending value.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from cachetools import LRUCache

from ._rate_limited_log import rate_limited_log
from .config import SplitSafeConfig
from .exceptions import (
    ActionInProgressError,
    ActionTimeoutError,
    EscrowNotFoundError,
    IdentityMismatchError,
    InvariantError,
)
from .identity import resolve, same_identity
from .ledger.transport import LedgerTransport
from .lifecycle import now_ns, signing_recipients
from .models import (
    MilestoneData,
    MilestoneEscrowRecipient,
    RecipientStatus,
    ToEntry,
    Transaction,
    TransactionStatus,
)
from .normalizer import normalize
from .notifications import NotificationAction, NotificationEvent, Notifier, NullNotifier
from .retry import invoke, retry_fetch
from .store import Confidence, Reconciler, TransactionStore

logger = logging.getLogger(__name__)

# Most recent action states kept for state() lookups
_TRACKED_STATES = 1024


class ActionKind(str, Enum):
    """The mutating escrow actions"""
    RELEASE = "release"
    CANCEL = "cancel"
    REFUND = "refund"
    APPROVE = "approve"
    DECLINE = "decline"
    SIGN_CONTRACT = "sign_contract"
    APPROVE_CONTRACT = "approve_contract"
    RELEASE_PAYMENT = "release_payment"


class ActionState(str, Enum):
    """Lifecycle of one action"""
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"
    FAILED_OPTIMISTIC = "failed_optimistic"
    ABORTED = "aborted"


_NOTIFICATION_ACTIONS = {
    ActionKind.RELEASE: NotificationAction.RELEASED,
    ActionKind.CANCEL: NotificationAction.CANCELLED,
    ActionKind.REFUND: NotificationAction.REFUNDED,
    ActionKind.APPROVE: NotificationAction.APPROVED,
    ActionKind.DECLINE: NotificationAction.DECLINED,
    ActionKind.SIGN_CONTRACT: NotificationAction.CONTRACT_SIGNED,
    ActionKind.APPROVE_CONTRACT: NotificationAction.CONTRACT_APPROVED,
    ActionKind.RELEASE_PAYMENT: NotificationAction.PAYMENT_RELEASED,
}


@dataclass
class ActionOutcome:
    """
    Result of one orchestrated action.

    Attributes:
        action: Which action ran
        tx_id: Transaction the action targeted
        state: Final state (settled, failed_optimistic or aborted)
        transaction: Value now in the store, None when aborted
        confidence: Confidence of the stored value, None when aborted
        error: The reported error, if any
    """
    action: ActionKind
    tx_id: str
    state: ActionState
    transaction: Optional[Transaction] = None
    confidence: Optional[Confidence] = None
    error: Optional[BaseException] = None

    @property
    def settled(self) -> bool:
        return self.state == ActionState.SETTLED


ErrorReporter = Callable[[ActionKind, str, BaseException], None]


def log_error_reporter(action: ActionKind, tx_id: str, error: BaseException) -> None:
    """Default error reporter: one error-level log line per failed action."""
    logger.error(f"{action.value} failed for transaction {tx_id}: {error}")


class _Run:
    """Per-invocation bookkeeping for one action."""

    def __init__(
        self,
        kind: ActionKind,
        tx: Transaction,
        actor: str,
        counterparties: List[str],
        patch: Callable[[Transaction, int], Transaction],
        prepare: Callable[[], Awaitable[Callable[[], Any]]],
    ):
        self.kind = kind
        self.tx = tx
        self.actor = actor
        self.counterparties = counterparties
        self.patch = patch
        self.prepare = prepare
        self.reported = False


def _patch_entry(tx: Transaction, actor: str, status: RecipientStatus, stamp_field: str, now: int) -> List[ToEntry]:
    target = tx.recipient_entry(actor)
    return [
        entry.model_copy(update={"status": status, stamp_field: now}) if entry is target else entry
        for entry in tx.to
    ]


def _patch_signer(tx: Transaction, identity: str, update: Dict[str, Any]) -> Optional[MilestoneData]:
    """Copy of the signing ledger with ``update`` applied to one recipient."""
    data = tx.milestone_data
    if data is None:
        return None
    signers = tuple(
        signer.model_copy(update=update) if same_identity(signer.principal, identity) else signer
        for signer in signing_recipients(tx)
    )
    return data.model_copy(update={"recipients": signers})


def _patch_payments(tx: Transaction, month_number: int, now: int) -> Transaction:
    """Mark every unreleased payment of ``month_number`` released; the last one releases the escrow."""
    data = tx.milestone_data
    if data is None:
        return tx
    milestones = tuple(
        milestone.model_copy(update={"release_payments": tuple(
            payment.model_copy(update={"released_at": now})
            if payment.month_number == month_number and not payment.released else payment
            for payment in milestone.release_payments
        )})
        for milestone in data.milestones
    )
    update: Dict[str, Any] = {"milestone_data": data.model_copy(update={"milestones": milestones})}
    if all(payment.released for milestone in milestones for payment in milestone.release_payments):
        update["status"] = TransactionStatus.RELEASED
        update["released_at"] = now
    return tx.model_copy(update=update)


class ActionOrchestrator:
    """
    Runs escrow actions against the ledger and reconciles the outcome.

    Args:
        ledger: Ledger transport (synchronous calls run in a worker thread)
        store: Store receiving reconciled transactions
        notifier: Counterparty notifier (defaults to dropping notifications)
        config: Retry, timeout and paging settings
        error_reporter: Called exactly once per failed action
        clock: Nanosecond clock used for optimistic timestamps
    """

    def __init__(
        self,
        ledger: LedgerTransport,
        store: TransactionStore,
        notifier: Optional[Notifier] = None,
        config: Optional[SplitSafeConfig] = None,
        error_reporter: Optional[ErrorReporter] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.ledger = ledger
        self.store = store
        self.reconciler = Reconciler(store)
        self.notifier = notifier or NullNotifier()
        self.config = config or SplitSafeConfig()
        self.error_reporter = error_reporter or log_error_reporter
        self.clock = clock or now_ns
        self._in_flight: Set[str] = set()
        self._states: LRUCache = LRUCache(maxsize=_TRACKED_STATES)

    def state(self, tx_id: str) -> ActionState:
        """State of the most recent action on a transaction."""
        if tx_id in self._in_flight:
            return ActionState.IN_FLIGHT
        return self._states.get(tx_id, ActionState.IDLE)

    def in_flight(self, tx_id: str) -> bool:
        return tx_id in self._in_flight

    # Public actions

    async def release(self, tx: Transaction) -> ActionOutcome:
        """Release the escrow's funds. Notifies every recipient."""
        async def prepare():
            return functools.partial(self.ledger.release, tx.id)

        def patch(base: Transaction, now: int) -> Transaction:
            return base.model_copy(update={"status": TransactionStatus.RELEASED, "released_at": now})

        return await self._run(_Run(ActionKind.RELEASE, tx, tx.from_, self._recipients(tx), patch, prepare))

    async def cancel(self, tx: Transaction) -> ActionOutcome:
        """Cancel a pending escrow on behalf of its sender. Notifies every recipient."""
        async def prepare():
            return functools.partial(self.ledger.cancel, tx.from_, tx.id)

        def patch(base: Transaction, now: int) -> Transaction:
            return base.model_copy(update={"status": TransactionStatus.CANCELLED, "cancelled_at": now})

        return await self._run(_Run(ActionKind.CANCEL, tx, tx.from_, self._recipients(tx), patch, prepare))

    async def refund(self, tx: Transaction) -> ActionOutcome:
        """Refund the escrow to its sender. Notifies every recipient."""
        async def prepare():
            return functools.partial(self.ledger.refund, tx.from_, tx.id)

        def patch(base: Transaction, now: int) -> Transaction:
            return base.model_copy(update={"status": TransactionStatus.REFUND, "refunded_at": now})

        return await self._run(_Run(ActionKind.REFUND, tx, tx.from_, self._recipients(tx), patch, prepare))

    async def approve(self, tx: Transaction, actor: Any) -> ActionOutcome:
        """
        Approve the escrow as one of its recipients.

        The actor must match a recipient entry; otherwise the action is
        aborted with an :class:`IdentityMismatchError` before any backend
        call. Notifies the sender.
        """
        identity = resolve(actor)

        async def prepare():
            entry = self._require_recipient(tx, identity)
            return functools.partial(self.ledger.approve, tx.from_, tx.id, entry.principal)

        def patch(base: Transaction, now: int) -> Transaction:
            entries = _patch_entry(base, identity, RecipientStatus.APPROVED, "approved_at", now)
            return base.model_copy(update={"to": tuple(entries)})

        return await self._run(_Run(ActionKind.APPROVE, tx, identity, [tx.from_], patch, prepare))

    async def decline(self, tx: Transaction, actor: Any) -> ActionOutcome:
        """
        Decline the escrow as one of its recipients.

        The ledger addresses declines by position in the sender's listing,
        so the transaction is located there first; a missing recipient entry
        or listing position aborts the action. Notifies the sender.
        """
        identity = resolve(actor)

        async def prepare():
            entry = self._require_recipient(tx, identity)
            page = await invoke(self.ledger.list_transactions, tx.from_, 0, self.config.page_size)
            index = page.index_of(tx.id)
            if index < 0:
                raise EscrowNotFoundError(f"Transaction {tx.id} not found in the sender's listing")
            return functools.partial(self.ledger.decline, tx.from_, index, entry.principal)

        def patch(base: Transaction, now: int) -> Transaction:
            entries = _patch_entry(base, identity, RecipientStatus.DECLINED, "declined_at", now)
            return base.model_copy(update={
                "to": tuple(entries),
                "status": TransactionStatus.DECLINED,
            })

        return await self._run(_Run(ActionKind.DECLINE, tx, identity, [tx.from_], patch, prepare))

    async def sign_contract(self, tx: Transaction, actor: Any, signed_contract_file: str,
                            milestone_id: Optional[str] = None) -> ActionOutcome:
        """
        Sign a milestone escrow's contract as one of its recipients.

        Args:
            tx: Milestone escrow
            actor: Signing recipient, in any identity encoding
            signed_contract_file: Reference to the uploaded signed contract
            milestone_id: Milestone the contract belongs to (defaults to the first)

        Aborts with :class:`IdentityMismatchError` when the actor is not in
        the signing ledger. Notifies the sender.
        """
        identity = resolve(actor)

        async def prepare():
            target = self._require_milestone(tx, milestone_id)
            signer = self._require_signer(tx, identity)
            return functools.partial(
                self.ledger.sign_contract, tx.id, target, signer.id, signer.principal, signed_contract_file
            )

        def patch(base: Transaction, now: int) -> Transaction:
            data = _patch_signer(base, identity, {
                "signed_contract_at": now,
                "signed_contract_file": signed_contract_file,
            })
            return base.model_copy(update={"milestone_data": data})

        return await self._run(_Run(ActionKind.SIGN_CONTRACT, tx, identity, [tx.from_], patch, prepare))

    async def approve_signed_contract(self, tx: Transaction, recipient: Any,
                                      milestone_id: Optional[str] = None) -> ActionOutcome:
        """
        Approve a recipient's signed contract on behalf of the sender.

        The recipient must have signed; approving an unsigned contract aborts
        with :class:`InvariantError`. Notifies the recipient.
        """
        identity = resolve(recipient)

        async def prepare():
            target = self._require_milestone(tx, milestone_id)
            signer = self._require_signer(tx, identity)
            if not signer.signed:
                raise InvariantError(f"{identity[:10]} has not signed the contract of transaction {tx.id}")
            return functools.partial(self.ledger.approve_signed_contract, tx.id, target, signer.id, tx.from_)

        def patch(base: Transaction, now: int) -> Transaction:
            data = _patch_signer(base, identity, {"client_approved_signed_contract_at": now})
            if data is not None and all(signer.client_approved for signer in data.recipients):
                data = data.model_copy(update={"client_approved_signed_at": now})
            return base.model_copy(update={"milestone_data": data})

        return await self._run(_Run(ActionKind.APPROVE_CONTRACT, tx, tx.from_, [identity], patch, prepare))

    async def release_milestone_payment(self, tx: Transaction, month_number: int) -> ActionOutcome:
        """
        Release the scheduled payment for one month on behalf of the sender.

        Payments are released in order: releasing a month while an earlier
        one is still unpaid aborts with :class:`InvariantError`, and a month
        with nothing left to release aborts with
        :class:`EscrowNotFoundError`. The last payment releases the escrow.
        Notifies every recipient.
        """
        async def prepare():
            self._require_milestone(tx, None)
            self._require_releasable(tx, month_number)
            return functools.partial(self.ledger.release_milestone_payment, tx.id, month_number, tx.from_)

        def patch(base: Transaction, now: int) -> Transaction:
            return _patch_payments(base, month_number, now)

        return await self._run(
            _Run(ActionKind.RELEASE_PAYMENT, tx, tx.from_, self._recipients(tx), patch, prepare)
        )

    # Machinery

    @staticmethod
    def _recipients(tx: Transaction) -> List[str]:
        return [entry.principal for entry in tx.to if entry.principal]

    @staticmethod
    def _require_recipient(tx: Transaction, identity: str) -> ToEntry:
        entry = tx.recipient_entry(identity)
        if entry is None:
            raise IdentityMismatchError(
                f"{identity[:10]} is not a recipient of transaction {tx.id}", identity=identity
            )
        return entry

    @staticmethod
    def _require_milestone(tx: Transaction, milestone_id: Optional[str]) -> str:
        """Id of the targeted milestone, the first one by default."""
        first = tx.first_milestone
        if not tx.is_milestone or first is None:
            raise InvariantError(f"Transaction {tx.id} is not a milestone escrow")
        if milestone_id is None:
            return first.id
        if not any(milestone.id == milestone_id for milestone in tx.milestone_data.milestones):
            raise EscrowNotFoundError(f"Milestone {milestone_id} not found in transaction {tx.id}")
        return milestone_id

    @staticmethod
    def _require_signer(tx: Transaction, identity: str) -> MilestoneEscrowRecipient:
        for signer in signing_recipients(tx):
            if same_identity(signer.principal, identity):
                return signer
        raise IdentityMismatchError(
            f"{identity[:10]} is not a contract signer of transaction {tx.id}", identity=identity
        )

    @staticmethod
    def _require_releasable(tx: Transaction, month_number: int) -> None:
        found = False
        for milestone in tx.milestone_data.milestones:
            payments = milestone.release_payments
            for position, payment in enumerate(payments):
                if payment.month_number != month_number or payment.released:
                    continue
                if any(not earlier.released for earlier in payments[:position]):
                    raise InvariantError(
                        f"Month {month_number} of milestone {milestone.id} precedes an unreleased payment"
                    )
                found = True
        if not found:
            raise EscrowNotFoundError(f"No unreleased payment for month {month_number} in transaction {tx.id}")

    def _report(self, run: _Run, error: BaseException) -> None:
        if run.reported:
            return
        run.reported = True
        try:
            self.error_reporter(run.kind, run.tx.id, error)
        except Exception as e:
            logger.warning(f"Error reporter failed: {e}")

    def _finish(self, run: _Run, state: ActionState, error: Optional[BaseException] = None,
                transaction: Optional[Transaction] = None, confidence: Optional[Confidence] = None) -> ActionOutcome:
        self._states[run.tx.id] = state
        return ActionOutcome(
            action=run.kind,
            tx_id=run.tx.id,
            state=state,
            transaction=transaction,
            confidence=confidence,
            error=error,
        )

    def _presume(self, run: _Run, error: Optional[BaseException] = None) -> ActionOutcome:
        # Patch the newest known value, not the snapshot the action started from
        base = self.store.get(run.tx.id) or run.tx
        entry = self.reconciler.presume(run.patch(base, self.clock()))
        return self._finish(run, ActionState.FAILED_OPTIMISTIC, error, entry.transaction, entry.confidence)

    async def _fetch(self, actor: str, tx_id: str) -> Optional[Transaction]:
        raw = await invoke(self.ledger.get_transaction, actor, tx_id)
        if raw is None:
            return None
        tx = normalize(raw)
        return tx if tx.id == tx_id else None

    async def _notify(self, run: _Run) -> None:
        action = _NOTIFICATION_ACTIONS[run.kind]
        for recipient in run.counterparties:
            event = NotificationEvent(
                action=action,
                tx_id=run.tx.id,
                recipient=recipient,
                actor=run.actor,
                title=run.tx.title,
            )
            try:
                await invoke(self.notifier.notify, event)
            except Exception as e:
                rate_limited_log(
                    f"Could not notify {recipient[:10]} about {run.kind.value} of {run.tx.id}: {e}",
                    logger_instance=logger,
                )

    async def _execute(self, run: _Run) -> ActionOutcome:
        try:
            mutation = await run.prepare()
        except Exception as e:
            self._report(run, e)
            return self._finish(run, ActionState.ABORTED, e)

        try:
            await invoke(mutation)
        except Exception as e:
            self._report(run, e)
            return self._presume(run, e)

        await self._notify(run)

        fresh = await retry_fetch(
            functools.partial(self._fetch, run.actor, run.tx.id),
            attempts=self.config.retry_attempts,
            delay_ms=self.config.retry_delay_ms,
        )
        if fresh is None:
            logger.warning(f"Could not confirm {run.kind.value} of {run.tx.id}; storing presumed state")
            return self._presume(run)

        entry = self.reconciler.confirm(fresh)
        return self._finish(run, ActionState.SETTLED, None, entry.transaction, entry.confidence)

    async def _run(self, run: _Run) -> ActionOutcome:
        tx_id = run.tx.id
        if tx_id in self._in_flight:
            raise ActionInProgressError(f"An action is already running for transaction {tx_id}")

        self._in_flight.add(tx_id)
        logger.debug(f"Starting {run.kind.value} of {tx_id}")
        try:
            return await asyncio.wait_for(self._execute(run), timeout=self.config.action_timeout)
        except asyncio.TimeoutError:
            error = ActionTimeoutError(
                f"{run.kind.value} of {tx_id} did not finish within {self.config.action_timeout}s"
            )
            self._report(run, error)
            return self._presume(run, error)
        finally:
            self._in_flight.discard(tx_id)
