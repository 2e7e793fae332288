"""Core entities for the contest-ledger service."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .enums import EntryStatus, PlayerRole, TransactionKind, TransactionReason


@dataclass
class Account:
    """A user account and its token balance.

    The balance is only ever changed through the ledger store; this entity
    is a point-in-time snapshot of it.
    """

    id: str
    balance: int
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class CatalogPlayer:
    """A player as listed by the catalog provider for a match."""

    id: str
    name: str
    role: PlayerRole
    cost: int


@dataclass(frozen=True)
class Slot:
    """A roster slot, priced at the moment the player was selected.

    The cost is copied from the catalog snapshot and never re-priced.
    """

    player_id: str
    role: PlayerRole
    cost: int
    player_name: str = ""

    def __post_init__(self):
        if not self.player_id:
            raise ValueError("Slot player_id cannot be empty")
        if self.cost < 0:
            raise ValueError(f"Slot cost cannot be negative: {self.cost}")

    @classmethod
    def from_catalog(cls, player: CatalogPlayer) -> "Slot":
        """Snapshot a catalog player into a slot."""
        return cls(
            player_id=player.id,
            role=player.role,
            cost=player.cost,
            player_name=player.name,
        )


@dataclass
class Roster:
    """A named team of slots for one (account, match) pair."""

    account_id: str
    match_ref: str
    team_name: str
    slots: List[Slot]

    # Database ID
    id: Optional[int] = None

    @property
    def total_cost(self) -> int:
        """Sum of slot costs."""
        return sum(slot.cost for slot in self.slots)

    @property
    def player_ids(self) -> List[str]:
        """Player identities in slot order."""
        return [slot.player_id for slot in self.slots]


@dataclass
class Entry:
    """Durable proof that a deduction and roster persistence both committed."""

    id: str
    account_id: str
    match_ref: str
    roster_id: int
    amount_charged: int
    idempotency_key: str
    debit_reference: str
    status: EntryStatus = EntryStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.utcnow)
    refunded_at: Optional[datetime] = None

    # Loaded on lookups that join the roster
    roster: Optional[Roster] = None

    def is_active(self) -> bool:
        """Check if the entry still counts for its match."""
        return self.status == EntryStatus.ACTIVE

    def __str__(self) -> str:
        return f"Entry(id={self.id}, account={self.account_id}, match={self.match_ref}, status={self.status.value})"


@dataclass
class LedgerTransaction:
    """A single journal row recording a balance change."""

    account_id: str
    kind: TransactionKind
    amount: int
    reason: TransactionReason
    reference: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    # Database ID
    id: Optional[int] = None

    @property
    def signed_amount(self) -> int:
        """Amount as applied to the balance (negative for debits)."""
        return -self.amount if self.kind == TransactionKind.DEBIT else self.amount


@dataclass
class Redemption:
    """A reward redeemed with tokens."""

    id: str
    account_id: str
    reward_id: str
    cost: int
    debit_reference: str
    created_at: datetime = field(default_factory=datetime.utcnow)
