"""
SplitSafe SDK: escrow transaction normalization, lifecycle derivation and
action orchestration.
"""
from .version import __version__
from .exceptions import (
    SplitSafeError,
    DecodeError,
    InvariantError,
    IdentityMismatchError,
    EscrowNotFoundError,
    ActionInProgressError,
    ActionTimeoutError,
    NotificationError,
)
from .models import (
    EscrowKind,
    TransactionStatus,
    RecipientStatus,
    Transaction,
    ToEntry,
    Milestone,
    MilestoneData,
    MilestoneRecipient,
    MilestoneEscrowRecipient,
    ReleasePayment,
    RecipientPayment,
)
from .identity import Principal, resolve, decode_identity, same_identity
from .normalizer import normalize, normalize_batch
from .config import SplitSafeConfig
from .store import TransactionStore, Reconciler, Confidence, ReconciledTransaction
from .orchestrator import ActionOrchestrator, ActionOutcome, ActionState, ActionKind
from .client import EscrowClient, EscrowView

__all__ = [
    "__version__",
    "SplitSafeError",
    "DecodeError",
    "InvariantError",
    "IdentityMismatchError",
    "EscrowNotFoundError",
    "ActionInProgressError",
    "ActionTimeoutError",
    "NotificationError",
    "EscrowKind",
    "TransactionStatus",
    "RecipientStatus",
    "Transaction",
    "ToEntry",
    "Milestone",
    "MilestoneData",
    "MilestoneRecipient",
    "MilestoneEscrowRecipient",
    "ReleasePayment",
    "RecipientPayment",
    "Principal",
    "resolve",
    "decode_identity",
    "same_identity",
    "normalize",
    "normalize_batch",
    "SplitSafeConfig",
    "TransactionStore",
    "Reconciler",
    "Confidence",
    "ReconciledTransaction",
    "ActionOrchestrator",
    "ActionOutcome",
    "ActionState",
    "ActionKind",
    "EscrowClient",
    "EscrowView",
]
