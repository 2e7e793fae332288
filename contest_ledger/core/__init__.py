"""Core layer for the contest-ledger service.

This module provides the domain entities, enums, result types and the
roster validation rules.
"""

from .entities import Account, CatalogPlayer, Entry, LedgerTransaction, Redemption, Roster, Slot
from .enums import (
    EntryStatus,
    FailureKind,
    OutcomeStatus,
    PlayerRole,
    RejectionReason,
    TransactionKind,
    TransactionReason,
)
from .results import DeductionResult, EntryOutcome, RedemptionOutcome, ValidationResult
from .validation import validate_roster

__all__ = [
    "Account",
    "CatalogPlayer",
    "Entry",
    "LedgerTransaction",
    "Redemption",
    "Roster",
    "Slot",
    "EntryStatus",
    "FailureKind",
    "OutcomeStatus",
    "PlayerRole",
    "RejectionReason",
    "TransactionKind",
    "TransactionReason",
    "DeductionResult",
    "EntryOutcome",
    "RedemptionOutcome",
    "ValidationResult",
    "validate_roster",
]
