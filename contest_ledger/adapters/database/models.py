"""SQLAlchemy models for the Contest Ledger service."""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, Mapped, mapped_column, relationship

Base = declarative_base()


class Account(Base):
    """Model for token-holding user accounts."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    transactions: Mapped[List["LedgerTransaction"]] = relationship(
        "LedgerTransaction", back_populates="account"
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Account(id='{self.id}', balance={self.balance})>"


class LedgerTransaction(Base):
    """Journal row for every balance change.

    `reference` is unique so a credit or debit tagged with a reference can
    only ever be applied once.
    """

    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_transactions_amount_positive"),
        UniqueConstraint("reference", name="uq_ledger_transactions_reference"),
        Index("idx_ledger_transactions_account_created", "account_id", "created_at"),
        Index("idx_ledger_transactions_kind_reason", "kind", "reason"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction(id={self.id}, account_id='{self.account_id}', "
            f"kind='{self.kind}', amount={self.amount}, reference='{self.reference}')>"
        )


class Roster(Base):
    """A submitted team for one account and match."""

    __tablename__ = "rosters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    match_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    team_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    slots: Mapped[List["RosterSlot"]] = relationship(
        "RosterSlot",
        back_populates="roster",
        cascade="all, delete-orphan",
        order_by="RosterSlot.position",
    )

    __table_args__ = (
        Index("idx_rosters_account_match", "account_id", "match_ref"),
    )

    def __repr__(self) -> str:
        return f"<Roster(id={self.id}, account_id='{self.account_id}', match_ref='{self.match_ref}')>"


class RosterSlot(Base):
    """A player slot in a roster, priced at selection time."""

    __tablename__ = "roster_slots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    roster_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rosters.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)
    player_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)

    roster: Mapped["Roster"] = relationship("Roster", back_populates="slots")

    __table_args__ = (
        UniqueConstraint("roster_id", "player_id", name="uq_roster_slots_roster_player"),
        UniqueConstraint("roster_id", "position", name="uq_roster_slots_roster_position"),
        CheckConstraint("cost >= 0", name="ck_roster_slots_cost_non_negative"),
    )


class Entry(Base):
    """A committed contest entry linking a deduction to a roster."""

    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    match_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    roster_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rosters.id"), nullable=False, unique=True
    )
    amount_charged: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    debit_reference: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    roster: Mapped["Roster"] = relationship("Roster")

    __table_args__ = (
        # At most one active entry per account and match
        Index(
            "uq_entries_active_account_match",
            "account_id",
            "match_ref",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("idx_entries_account_created", "account_id", "created_at"),
        Index("idx_entries_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Entry(id='{self.id}', account_id='{self.account_id}', "
            f"match_ref='{self.match_ref}', status='{self.status}')>"
        )


class Redemption(Base):
    """A reward redeemed with tokens."""

    __tablename__ = "redemptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False
    )
    reward_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    debit_reference: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_redemptions_account_created", "account_id", "created_at"),
    )
