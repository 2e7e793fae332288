"""Contest entry orchestration.

Coordinates roster validation, the ledger deduction, roster/entry
persistence and the compensating credit that undoes a deduction whose
entry could not be saved.
"""

import asyncio
import hashlib
import time
import uuid
from typing import Awaitable, List, Optional, Sequence, Set

import structlog

from ..adapters.database.ledger import LedgerStore
from ..adapters.database.manager import DatabaseManager
from ..adapters.messaging.notifications import NotificationSink
from ..adapters.observability import get_metrics_provider
from ..config import Config
from ..core.entities import Entry, Roster, Slot
from ..core.enums import FailureKind, RejectionReason, TransactionReason
from ..core.errors import (
    AccountNotFoundError,
    CompensationError,
    DuplicateEntryError,
    LedgerError,
    SettlementError,
)
from ..core.events import EntryOutcomeEvent
from ..core.results import EntryOutcome
from ..core.validation import is_blank_team_name, validate_roster
from .compensation import Compensator, cancellation_reference, refund_reference

logger = structlog.get_logger()


def entry_fingerprint(account_id: str, match_ref: str, team_name: str, slots: Sequence[Slot]) -> str:
    """Default idempotency key: identical submissions share a key."""
    material = "|".join(
        [account_id, match_ref, team_name.strip(), ",".join(slot.player_id for slot in slots)]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class EntryService:
    """Submits, cancels and looks up contest entries.

    Once tokens have been deducted, the rest of a submission runs in its own
    task shielded from the caller, so a cancelled request still ends either
    with a saved entry or with the tokens credited back.
    """

    def __init__(
        self,
        database: DatabaseManager,
        ledger: LedgerStore,
        notifier: NotificationSink,
        config: Config,
        compensator: Optional[Compensator] = None,
    ):
        """Initialize the entry service.

        Args:
            database: Database manager for rosters and entries
            ledger: Ledger store holding token balances
            notifier: Sink receiving every terminal outcome
            config: Application configuration
            compensator: Optional compensator; built from config if not provided
        """
        self.database = database
        self.ledger = ledger
        self.notifier = notifier
        self.config = config
        self.compensator = compensator or Compensator(
            ledger,
            max_attempts=config.compensation_max_attempts,
            initial_backoff_seconds=config.compensation_initial_backoff_seconds,
            max_backoff_seconds=config.compensation_max_backoff_seconds,
        )

        self.entry_fee = config.entry_fee
        self.budget_cap = config.budget_cap
        self.roster_size = config.roster_size

        self._inflight: Set[asyncio.Task] = set()

    # Public API

    async def submit_entry(
        self,
        account_id: str,
        match_ref: str,
        team_name: str,
        slots: Sequence[Slot],
        idempotency_key: Optional[str] = None,
    ) -> EntryOutcome:
        """Register a roster for a match, charging the entry fee.

        Args:
            account_id: Account paying the fee
            match_ref: Match the roster is entered into
            team_name: Display name of the team
            slots: Candidate slots, priced from the catalog snapshot
            idempotency_key: Caller token for safe retries; defaults to a
                fingerprint of the submission

        Returns:
            EntryOutcome: accepted with the entry id, rejected with a reason
            (no tokens spent), or failed after the fee was credited back

        Raises:
            AccountNotFoundError: If the account has not been provisioned
        """
        started = time.monotonic()
        slots = list(slots)
        key = idempotency_key or entry_fingerprint(account_id, match_ref, team_name, slots)
        log = logger.bind(account_id=account_id, match_ref=match_ref)

        existing = await self.database.get_active_entry_for_match(account_id, match_ref)
        if existing is not None:
            if existing.idempotency_key == key:
                log.info("Replaying existing entry", entry_id=existing.id)
                outcome = EntryOutcome.accepted(account_id, match_ref, existing.id, replayed=True)
            else:
                log.info("Duplicate entry for match", existing_entry_id=existing.id)
                outcome = EntryOutcome.rejected(
                    account_id,
                    match_ref,
                    RejectionReason.DUPLICATE_ENTRY_FOR_MATCH,
                    match_ref=match_ref,
                    entry_id=existing.id,
                )
            return await self._finish(outcome, started=started)

        if is_blank_team_name(team_name):
            return await self._finish(
                EntryOutcome.rejected(account_id, match_ref, RejectionReason.EMPTY_TEAM_NAME),
                started=started,
            )

        validation = validate_roster(slots, budget_cap=self.budget_cap, roster_size=self.roster_size)
        if not validation.ok:
            log.info("Roster rejected", reason=validation.reason.value, **validation.details)
            return await self._finish(
                EntryOutcome.rejected(account_id, match_ref, validation.reason, **validation.details),
                started=started,
            )

        entry_id = str(uuid.uuid4())
        debit_reference = f"entry:{entry_id}"

        try:
            deduction = await self.ledger.try_deduct(
                account_id,
                self.entry_fee,
                reference=debit_reference,
                reason=TransactionReason.ENTRY_FEE,
            )
        except AccountNotFoundError:
            raise
        except LedgerError as e:
            log.error("Entry fee deduction failed", error=str(e))
            return await self._run_shielded(
                self._resolve_failed_deduction(account_id, match_ref, debit_reference, started)
            )

        if not deduction.committed:
            return await self._finish(
                EntryOutcome.rejected(
                    account_id,
                    match_ref,
                    RejectionReason.INSUFFICIENT_BALANCE,
                    required=self.entry_fee,
                    balance=deduction.balance,
                    shortfall=deduction.shortfall,
                ),
                started=started,
            )

        roster = Roster(
            account_id=account_id,
            match_ref=match_ref,
            team_name=team_name,
            slots=slots,
        )
        return await self._run_shielded(
            self._complete_entry(roster, entry_id, key, debit_reference, started)
        )

    async def cancel_entry(self, account_id: str, entry_id: str) -> EntryOutcome:
        """Cancel an active entry and credit its fee back.

        Cancelling an already refunded entry is a no-op that reports success.
        """
        entry = await self.database.get_entry(entry_id)
        if entry is None or entry.account_id != account_id:
            return await self._finish(
                EntryOutcome.rejected(
                    account_id, None, RejectionReason.ENTRY_NOT_FOUND, entry_id=entry_id
                ),
                event_type="entry.cancelled",
            )

        if not entry.is_active():
            outcome = EntryOutcome.accepted(account_id, entry.match_ref, entry.id, replayed=True)
            return await self._finish(outcome, event_type="entry.cancelled")

        return await self._run_shielded(self._refund_entry(entry))

    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        return await self.database.get_entry(entry_id)

    async def get_entry_for_match(self, account_id: str, match_ref: str) -> Optional[Entry]:
        return await self.database.get_active_entry_for_match(account_id, match_ref)

    async def list_entries(self, account_id: str, include_refunded: bool = True) -> List[Entry]:
        return await self.database.list_entries(account_id, include_refunded=include_refunded)

    async def balance_of(self, account_id: str) -> int:
        return await self.ledger.balance_of(account_id)

    async def drain(self) -> None:
        """Wait for every in-flight completion task to reach a terminal state."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # Shielded completion

    async def _run_shielded(self, coro: Awaitable[EntryOutcome]) -> EntryOutcome:
        """Run `coro` in a task that survives cancellation of the caller."""
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _complete_entry(
        self,
        roster: Roster,
        entry_id: str,
        idempotency_key: str,
        debit_reference: str,
        started: Optional[float] = None,
    ) -> EntryOutcome:
        """Persist the roster and entry after a committed deduction, or compensate."""
        account_id = roster.account_id
        match_ref = roster.match_ref
        log = logger.bind(account_id=account_id, match_ref=match_ref, entry_id=entry_id)

        try:
            entry = await asyncio.wait_for(
                self.database.persist_entry(
                    entry_id=entry_id,
                    roster=roster,
                    amount_charged=self.entry_fee,
                    idempotency_key=idempotency_key,
                    debit_reference=debit_reference,
                ),
                timeout=self.config.persistence_timeout_seconds,
            )
            log.info("Entry committed", roster_id=entry.roster_id, amount=self.entry_fee)
            return await self._finish(
                EntryOutcome.accepted(account_id, match_ref, entry.id), started=started
            )

        except DuplicateEntryError:
            log.info("Entry lost a race for the match, compensating")
            if not await self._compensate_fee(account_id, debit_reference):
                return await self._finish(
                    self._pending(account_id, match_ref, debit_reference), started=started
                )

            existing = await self.database.get_active_entry_for_match(account_id, match_ref)
            if existing is not None and existing.idempotency_key == idempotency_key:
                return await self._finish(
                    EntryOutcome.accepted(account_id, match_ref, existing.id, replayed=True),
                    started=started,
                )
            return await self._finish(
                EntryOutcome.rejected(
                    account_id,
                    match_ref,
                    RejectionReason.DUPLICATE_ENTRY_FOR_MATCH,
                    match_ref=match_ref,
                    entry_id=existing.id if existing else None,
                ),
                started=started,
            )

        except Exception as e:
            # Timeouts, storage faults and anything else take the same path
            error = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e)
            log.error("Entry persistence failed", error=error)

            try:
                committed = await self._entry_was_committed(debit_reference)
            except SettlementError:
                # Refunding an entry that did commit would leave it free
                return await self._finish(
                    self._pending(account_id, match_ref, debit_reference), started=started
                )

            if committed:
                log.info("Entry found after ambiguous failure")
                return await self._finish(
                    EntryOutcome.accepted(account_id, match_ref, entry_id), started=started
                )

            if not await self._compensate_fee(account_id, debit_reference):
                return await self._finish(
                    self._pending(account_id, match_ref, debit_reference), started=started
                )
            return await self._finish(
                EntryOutcome.failed(account_id, match_ref, FailureKind.PERSISTENCE_ERROR, error=error),
                started=started,
            )

    async def _resolve_failed_deduction(
        self,
        account_id: str,
        match_ref: str,
        debit_reference: str,
        started: Optional[float] = None,
    ) -> EntryOutcome:
        """Settle a deduction whose outcome is unknown.

        If the debit did land, it is credited back before reporting the
        failure. If the journal cannot be read either, the outcome stays
        pending and the recovery loop picks the debit up later.
        """
        try:
            applied = await self.compensator.retry(
                lambda: self.ledger.has_reference(debit_reference),
                "Deduction check",
                account_id=account_id,
                reference=debit_reference,
            )
        except SettlementError:
            return await self._finish(
                self._pending(account_id, match_ref, debit_reference), started=started
            )

        if applied and not await self._compensate_fee(account_id, debit_reference):
            return await self._finish(
                self._pending(account_id, match_ref, debit_reference), started=started
            )

        return await self._finish(
            EntryOutcome.failed(account_id, match_ref, FailureKind.PERSISTENCE_ERROR, error="ledger unavailable"),
            started=started,
        )

    async def _refund_entry(self, entry: Entry) -> EntryOutcome:
        log = logger.bind(account_id=entry.account_id, match_ref=entry.match_ref, entry_id=entry.id)
        try:
            await self.compensator.compensate(
                entry.account_id,
                entry.amount_charged,
                reference=cancellation_reference(entry.id),
                reason=TransactionReason.CANCELLATION,
                source="cancellation",
            )
        except CompensationError:
            return await self._finish(
                EntryOutcome.failed(
                    entry.account_id, entry.match_ref, FailureKind.COMPENSATION_PENDING, entry_id=entry.id
                ),
                event_type="entry.cancelled",
            )

        try:
            await self.compensator.retry(
                lambda: self.database.mark_entry_refunded(entry.id),
                "Marking entry refunded",
                account_id=entry.account_id,
                entry_id=entry.id,
            )
        except SettlementError:
            # The credit is durable; recovery or a repeated cancel closes the entry
            return await self._finish(
                EntryOutcome.failed(
                    entry.account_id, entry.match_ref, FailureKind.CANCELLATION_PENDING, entry_id=entry.id
                ),
                event_type="entry.cancelled",
            )

        log.info("Entry cancelled", amount=entry.amount_charged)
        metrics = get_metrics_provider()
        if metrics:
            metrics.record_entry_cancelled()
        return await self._finish(
            EntryOutcome.accepted(entry.account_id, entry.match_ref, entry.id),
            event_type="entry.cancelled",
        )

    async def _compensate_fee(self, account_id: str, debit_reference: str) -> bool:
        """Credit the entry fee back; False if the credit is still unconfirmed."""
        try:
            await self.compensator.compensate(
                account_id,
                self.entry_fee,
                reference=refund_reference(debit_reference),
                reason=TransactionReason.COMPENSATION,
                source="entry",
            )
            return True
        except CompensationError:
            return False

    async def _entry_was_committed(self, debit_reference: str) -> bool:
        """Look the entry up by its debit; raises SettlementError if that never succeeds."""
        entry = await self.compensator.retry(
            lambda: self.database.get_entry_by_debit_reference(debit_reference),
            "Committed entry check",
            reference=debit_reference,
        )
        return entry is not None

    @staticmethod
    def _pending(account_id: str, match_ref: str, debit_reference: str) -> EntryOutcome:
        return EntryOutcome.failed(
            account_id, match_ref, FailureKind.COMPENSATION_PENDING, reference=debit_reference
        )

    # Outcome delivery

    async def _finish(
        self,
        outcome: EntryOutcome,
        event_type: str = "entry.submitted",
        started: Optional[float] = None,
    ) -> EntryOutcome:
        """Attach the current balance, record metrics and notify the sink."""
        try:
            outcome.balance = await self.ledger.balance_of(outcome.account_id)
        except Exception as e:
            logger.warning("Could not read balance", account_id=outcome.account_id, error=str(e))

        reason = None
        if outcome.reason is not None:
            reason = outcome.reason.value
        elif outcome.failure is not None:
            reason = outcome.failure.value

        metrics = get_metrics_provider()
        if metrics and event_type == "entry.submitted":
            duration = time.monotonic() - started if started is not None else None
            metrics.record_entry_outcome(outcome.status.value, reason, duration=duration)

        event = EntryOutcomeEvent.from_outcome(event_type, outcome)
        try:
            await self.notifier.publish(event)
            if metrics:
                metrics.record_notification(event_type, success=True)
        except Exception as e:
            logger.error(
                "Failed to publish outcome",
                account_id=outcome.account_id,
                status=outcome.status.value,
                error=str(e),
            )
            if metrics:
                metrics.record_notification(event_type, success=False)

        return outcome
