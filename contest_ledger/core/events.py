"""Domain events emitted after terminal entry outcomes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .results import EntryOutcome, RedemptionOutcome


@dataclass
class EntryOutcomeEvent:
    """Notification payload for the outcome of an entry request.

    Carries either the entry id (accepted) or the rejection/failure reason,
    together with the account and match it concerns.
    """

    event_type: str
    account_id: str
    status: str
    match_ref: Optional[str] = None
    entry_id: Optional[str] = None
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_outcome(cls, event_type: str, outcome: EntryOutcome) -> "EntryOutcomeEvent":
        reason = None
        if outcome.reason is not None:
            reason = outcome.reason.value
        elif outcome.failure is not None:
            reason = outcome.failure.value

        return cls(
            event_type=event_type,
            account_id=outcome.account_id,
            status=outcome.status.value,
            match_ref=outcome.match_ref,
            entry_id=outcome.entry_id,
            reason=reason,
            details=dict(outcome.details),
        )

    @classmethod
    def from_redemption(cls, outcome: RedemptionOutcome) -> "EntryOutcomeEvent":
        reason = None
        if outcome.reason is not None:
            reason = outcome.reason.value
        elif outcome.failure is not None:
            reason = outcome.failure.value

        details = dict(outcome.details)
        details["reward_id"] = outcome.reward_id
        return cls(
            event_type="reward.redeemed",
            account_id=outcome.account_id,
            status=outcome.status.value,
            entry_id=outcome.redemption_id,
            reason=reason,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable representation."""
        return {
            "event_type": self.event_type,
            "account_id": self.account_id,
            "status": self.status,
            "match_ref": self.match_ref,
            "entry_id": self.entry_id,
            "reason": self.reason,
            "details": self.details,
            "occurred_at": self.occurred_at.isoformat(),
        }
