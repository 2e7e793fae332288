"""Result types returned by the validator, ledger store and orchestrator."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .enums import FailureKind, OutcomeStatus, RejectionReason


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of roster validation."""

    ok: bool
    reason: Optional[RejectionReason] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def accepted(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def rejected(cls, reason: RejectionReason, **details: Any) -> "ValidationResult":
        return cls(ok=False, reason=reason, details=details)


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of a compare-and-deduct on the ledger.

    `balance` is the balance after a committed deduction, or the balance
    observed when the deduction was refused.
    """

    committed: bool
    balance: int
    amount: int
    reference: Optional[str] = None

    @property
    def shortfall(self) -> int:
        """Tokens missing for a refused deduction."""
        return 0 if self.committed else max(self.amount - self.balance, 0)


@dataclass
class EntryOutcome:
    """Terminal outcome of an entry submission or cancellation.

    Exactly one of `entry_id` (accepted), `reason` (rejected) or `failure`
    (failed) is meaningful, as given by `status`.
    """

    status: OutcomeStatus
    account_id: str
    match_ref: Optional[str] = None
    entry_id: Optional[str] = None
    reason: Optional[RejectionReason] = None
    failure: Optional[FailureKind] = None
    details: Dict[str, Any] = field(default_factory=dict)
    replayed: bool = False
    balance: Optional[int] = None

    @classmethod
    def accepted(
        cls, account_id: str, match_ref: str, entry_id: str, replayed: bool = False
    ) -> "EntryOutcome":
        return cls(
            status=OutcomeStatus.ACCEPTED,
            account_id=account_id,
            match_ref=match_ref,
            entry_id=entry_id,
            replayed=replayed,
        )

    @classmethod
    def rejected(
        cls, account_id: str, match_ref: Optional[str], reason: RejectionReason, **details: Any
    ) -> "EntryOutcome":
        return cls(
            status=OutcomeStatus.REJECTED,
            account_id=account_id,
            match_ref=match_ref,
            reason=reason,
            details=details,
        )

    @classmethod
    def failed(
        cls, account_id: str, match_ref: Optional[str], failure: FailureKind, **details: Any
    ) -> "EntryOutcome":
        return cls(
            status=OutcomeStatus.FAILED,
            account_id=account_id,
            match_ref=match_ref,
            failure=failure,
            details=details,
        )

    @property
    def is_accepted(self) -> bool:
        return self.status == OutcomeStatus.ACCEPTED

    @property
    def is_rejected(self) -> bool:
        return self.status == OutcomeStatus.REJECTED

    @property
    def is_failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @property
    def message(self) -> str:
        """User-facing message; never implies a charge for failures."""
        if self.is_accepted:
            return f"Entry {self.entry_id} confirmed"
        if self.is_rejected:
            return _REJECTION_MESSAGES[self.reason].format(**self.details)
        if self.failure == FailureKind.COMPENSATION_PENDING:
            return "Entry could not be confirmed. If it was not saved, your tokens are being returned."
        if self.failure == FailureKind.CANCELLATION_PENDING:
            return "Your tokens were returned. The entry will be closed shortly."
        return "Entry could not be saved. No tokens were spent, please try again."


@dataclass
class RedemptionOutcome:
    """Terminal outcome of a reward redemption."""

    status: OutcomeStatus
    account_id: str
    reward_id: str
    redemption_id: Optional[str] = None
    reason: Optional[RejectionReason] = None
    failure: Optional[FailureKind] = None
    details: Dict[str, Any] = field(default_factory=dict)
    balance: Optional[int] = None

    @property
    def is_accepted(self) -> bool:
        return self.status == OutcomeStatus.ACCEPTED


_REJECTION_MESSAGES = {
    RejectionReason.WRONG_SLOT_COUNT: "You must select exactly {expected} players (got {actual})",
    RejectionReason.DUPLICATE_PLAYER: "Player {player_id} was selected more than once",
    RejectionReason.BUDGET_EXCEEDED: "Team costs {total} but the budget is {cap}",
    RejectionReason.EMPTY_TEAM_NAME: "Please enter a team name",
    RejectionReason.INSUFFICIENT_BALANCE: "You need {required} tokens but only have {balance}",
    RejectionReason.DUPLICATE_ENTRY_FOR_MATCH: "You already have a team for match {match_ref}",
    RejectionReason.ENTRY_NOT_FOUND: "Entry {entry_id} not found",
    RejectionReason.INVALID_AMOUNT: "Amount must be greater than zero",
}
