"""Exception hierarchy for the contest-ledger service."""


class ContestLedgerError(Exception):
    """Base exception for contest-ledger errors."""

    pass


class LedgerError(ContestLedgerError):
    """Ledger store operation failed."""

    pass


class AccountNotFoundError(LedgerError):
    """Account does not exist in the ledger."""

    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class PersistenceError(ContestLedgerError):
    """Roster/entry persistence failed or timed out."""

    pass


class DuplicateEntryError(PersistenceError):
    """An active entry already exists for the (account, match) pair."""

    def __init__(self, account_id: str, match_ref: str):
        super().__init__(f"Active entry already exists for {account_id} in {match_ref}")
        self.account_id = account_id
        self.match_ref = match_ref


class CompensationError(ContestLedgerError):
    """A compensating credit could not be confirmed.

    This is the only fatal failure mode: the user has been charged and the
    refund is not yet durable.
    """

    def __init__(self, account_id: str, amount: int, reference: str, attempts: int):
        super().__init__(
            f"Compensation of {amount} for {account_id} ({reference}) "
            f"not confirmed after {attempts} attempts"
        )
        self.account_id = account_id
        self.amount = amount
        self.reference = reference
        self.attempts = attempts


class CatalogError(ContestLedgerError):
    """Catalog provider could not be queried."""

    pass


class UnknownPlayerError(CatalogError):
    """A selected player is not in the catalog for the match."""

    def __init__(self, match_ref: str, player_ids):
        ids = ", ".join(sorted(player_ids))
        super().__init__(f"Unknown players for {match_ref}: {ids}")
        self.match_ref = match_ref
        self.player_ids = set(player_ids)


class SettlementError(ContestLedgerError):
    """A ledger or entry state check could not be completed after retries.

    The outcome of an earlier step is unknown; the recovery loop settles it.
    """

    def __init__(self, action: str, attempts: int):
        super().__init__(f"{action} did not succeed after {attempts} attempts")
        self.action = action
        self.attempts = attempts


class NotificationError(ContestLedgerError):
    """An outcome event could not be handed to the notification sink."""

    pass
