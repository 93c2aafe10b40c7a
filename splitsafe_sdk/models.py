"""
Data models for the SplitSafe SDK.

Every model is immutable; normalization and reconciliation always produce a
fresh value. Integers are kept as Python ints (no precision loss) and are
serialized as decimal strings in JSON mode, which is how the ledger and the
application state exchange nanosecond timestamps and satoshi amounts.
"""
from enum import Enum
from typing import Annotated, Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from .identity import same_identity

# Integer that crosses the serialization boundary as a decimal string
WireInt = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]

BASIC_LABEL = "Basic Escrow"
MILESTONE_LABEL = "Milestone"


class EscrowKind(str, Enum):
    """Product variant of an escrow"""
    BASIC = "basic"
    MILESTONE = "milestone"


class TransactionStatus(str, Enum):
    """Transaction-wide status as reported by the ledger"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    REFUND = "refund"
    UNKNOWN = "unknown"


class RecipientStatus(str, Enum):
    """Per-recipient approval status"""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    NOACTION = "noaction"
    UNKNOWN = "unknown"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=False,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the JSON-safe, camelCase wire shape."""
        return self.model_dump(mode="json", by_alias=True)


class ToEntry(_WireModel):
    """A recipient's share of a basic escrow"""
    principal: str
    name: str = ""
    amount: WireInt = 0
    percentage: WireInt = 0
    status: RecipientStatus = RecipientStatus.PENDING
    approved_at: Optional[WireInt] = None
    declined_at: Optional[WireInt] = None
    read_at: Optional[WireInt] = None


class RecipientPayment(_WireModel):
    """One recipient's cut of a release payment"""
    recipient_id: str = ""
    recipient_name: str = ""
    amount: WireInt = 0


class ReleasePayment(_WireModel):
    """A scheduled payout within a milestone, 1-indexed"""
    id: int
    month_number: int = 0
    total: WireInt = 0
    released_at: Optional[WireInt] = None
    recipient_payments: Tuple[RecipientPayment, ...] = ()

    @property
    def released(self) -> bool:
        return self.released_at is not None


class MilestoneRecipient(_WireModel):
    """A recipient's payment share within one milestone"""
    id: str = ""
    name: str = ""
    principal: str
    share: WireInt = 0
    approved_at: Optional[WireInt] = None
    declined_at: Optional[WireInt] = None
    recipient_signed_at: Optional[WireInt] = None
    signed_contract_at: Optional[WireInt] = None
    signed_contract_file: Optional[str] = None


class Milestone(_WireModel):
    """A scheduled sequence of partial releases"""
    id: str = ""
    title: str = ""
    allocation: WireInt = 0
    coin: str = ""
    frequency: str = ""
    duration: WireInt = 0
    start_date: WireInt = 0
    end_date: WireInt = 0
    created_at: WireInt = 0
    completed_at: Optional[WireInt] = None
    contract_file: Optional[str] = None
    recipients: Tuple[MilestoneRecipient, ...] = ()
    release_payments: Tuple[ReleasePayment, ...] = ()

    @property
    def released_count(self) -> int:
        """Number of release payments that have been paid out."""
        return sum(1 for payment in self.release_payments if payment.released)


class MilestoneEscrowRecipient(_WireModel):
    """Contract-signing state of one party to a milestone escrow"""
    id: str = ""
    name: str = ""
    principal: str
    signed_contract_file: Optional[str] = None
    signed_contract_at: Optional[WireInt] = None
    client_approved_signed_contract_at: Optional[WireInt] = None

    @property
    def signed(self) -> bool:
        return self.signed_contract_at is not None

    @property
    def client_approved(self) -> bool:
        return self.client_approved_signed_contract_at is not None


class MilestoneData(_WireModel):
    """Milestone schedule plus the contract-signing ledger"""
    milestones: Tuple[Milestone, ...] = ()
    recipients: Tuple[MilestoneEscrowRecipient, ...] = ()
    contract_file_id: Optional[str] = None
    contract_signing_date_before: Optional[WireInt] = None
    client_approved_signed_at: Optional[WireInt] = None

    @property
    def first_milestone(self) -> Optional[Milestone]:
        return self.milestones[0] if self.milestones else None


class ConstellationHash(_WireModel):
    """Tamper-evidence hash recorded for a transaction action"""
    action: str = ""
    hash: str = ""
    timestamp: str = ""


class StoryTx(_WireModel):
    """IP registry transaction recorded for an escrow"""
    action: str = ""
    tx_hash: str = ""
    timestamp: str = ""


class Transaction(_WireModel):
    """Canonical escrow transaction, valid for both product variants"""
    id: str
    kind: EscrowKind = EscrowKind.BASIC
    status: TransactionStatus = TransactionStatus.UNKNOWN
    title: str = ""
    from_: str = Field("", alias="from")
    to: Tuple[ToEntry, ...] = ()
    amount: WireInt = 0
    created_at: WireInt = 0
    confirmed_at: Optional[WireInt] = None
    cancelled_at: Optional[WireInt] = None
    refunded_at: Optional[WireInt] = None
    released_at: Optional[WireInt] = None
    read_at: Optional[WireInt] = None
    chat_id: Optional[str] = None
    constellation_hashes: Tuple[ConstellationHash, ...] = ()
    story_ip_asset_id: Optional[str] = None
    story_txs: Tuple[StoryTx, ...] = ()
    milestone_data: Optional[MilestoneData] = None

    @property
    def is_milestone(self) -> bool:
        return self.kind == EscrowKind.MILESTONE

    @property
    def first_milestone(self) -> Optional[Milestone]:
        if self.milestone_data is None:
            return None
        return self.milestone_data.first_milestone

    def recipient_entry(self, identity: Any) -> Optional[ToEntry]:
        """
        Find the recipient entry matching an identity.

        Args:
            identity: Identity in any wire encoding

        Returns:
            The matching ToEntry, or None
        """
        for entry in self.to:
            if same_identity(entry.principal, identity):
                return entry
        return None
