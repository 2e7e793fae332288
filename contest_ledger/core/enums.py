"""Core enums for the contest-ledger service."""

from enum import Enum


class PlayerRole(Enum):
    """Roles a cricket player can fill in a roster."""

    BATSMAN = "Batsman"
    BOWLER = "Bowler"
    ALL_ROUNDER = "All-rounder"
    WICKET_KEEPER = "Wicket-keeper"

    @classmethod
    def from_string(cls, value: str) -> "PlayerRole":
        """Convert a catalog role label to a PlayerRole.

        Matching is case-insensitive and tolerates spaces or underscores in
        place of the hyphen.

        Raises:
            ValueError: If the label is not a known role
        """
        normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
        for role in cls:
            if role.value.lower() == normalized:
                return role
        raise ValueError(f"Unknown player role: {value}")


class EntryStatus(Enum):
    """Lifecycle of a committed contest entry."""

    ACTIVE = "ACTIVE"
    REFUNDED = "REFUNDED"


class TransactionKind(Enum):
    """Direction of a ledger journal row."""

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class TransactionReason(Enum):
    """Why a ledger journal row was written."""

    PROVISIONING = "PROVISIONING"
    ENTRY_FEE = "ENTRY_FEE"
    COMPENSATION = "COMPENSATION"
    CANCELLATION = "CANCELLATION"
    REWARD = "REWARD"
    ADJUSTMENT = "ADJUSTMENT"


class OutcomeStatus(Enum):
    """Terminal status of an entry or redemption request."""

    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


class RejectionReason(Enum):
    """User-facing reasons a request was rejected without side effects."""

    WRONG_SLOT_COUNT = "WRONG_SLOT_COUNT"
    DUPLICATE_PLAYER = "DUPLICATE_PLAYER"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    EMPTY_TEAM_NAME = "EMPTY_TEAM_NAME"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DUPLICATE_ENTRY_FOR_MATCH = "DUPLICATE_ENTRY_FOR_MATCH"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    @property
    def is_validation_error(self) -> bool:
        """Check if this is a roster/team-name validation error."""
        return self in (
            RejectionReason.WRONG_SLOT_COUNT,
            RejectionReason.DUPLICATE_PLAYER,
            RejectionReason.BUDGET_EXCEEDED,
            RejectionReason.EMPTY_TEAM_NAME,
        )


class FailureKind(Enum):
    """Infrastructure failures surfaced after a ledger deduction."""

    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    COMPENSATION_PENDING = "COMPENSATION_PENDING"
    CANCELLATION_PENDING = "CANCELLATION_PENDING"
