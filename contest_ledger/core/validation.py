"""Roster composition rules."""

from typing import Sequence

from .entities import Slot
from .enums import RejectionReason
from .results import ValidationResult

ROSTER_SIZE = 11
DEFAULT_BUDGET_CAP = 100


def validate_roster(
    slots: Sequence[Slot],
    budget_cap: int = DEFAULT_BUDGET_CAP,
    roster_size: int = ROSTER_SIZE,
) -> ValidationResult:
    """Check a candidate roster against the composition rules.

    Rules are checked in a fixed order and the first failure wins, so the
    same roster always produces the same message:

    1. exactly `roster_size` slots
    2. no player selected twice
    3. total cost within `budget_cap`

    Args:
        slots: Candidate slots in selection order
        budget_cap: Maximum allowed sum of slot costs
        roster_size: Required number of slots

    Returns:
        ValidationResult, accepted or carrying the first failing reason
    """
    if len(slots) != roster_size:
        return ValidationResult.rejected(
            RejectionReason.WRONG_SLOT_COUNT, expected=roster_size, actual=len(slots)
        )

    seen = set()
    for slot in slots:
        if slot.player_id in seen:
            return ValidationResult.rejected(
                RejectionReason.DUPLICATE_PLAYER, player_id=slot.player_id
            )
        seen.add(slot.player_id)

    total = sum(slot.cost for slot in slots)
    if total > budget_cap:
        return ValidationResult.rejected(
            RejectionReason.BUDGET_EXCEEDED, total=total, cap=budget_cap
        )

    return ValidationResult.accepted()


def is_blank_team_name(team_name: str) -> bool:
    """Check if a team name is empty once surrounding whitespace is removed."""
    return not (team_name or "").strip()
