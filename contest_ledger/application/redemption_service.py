"""Reward redemption: spend tokens on a reward from the store."""

import asyncio
import uuid
from typing import Awaitable, Set

import structlog

from ..adapters.database.ledger import LedgerStore
from ..adapters.database.manager import DatabaseManager
from ..adapters.messaging.notifications import NotificationSink
from ..adapters.observability import get_metrics_provider
from ..config import Config
from ..core.enums import FailureKind, OutcomeStatus, RejectionReason, TransactionReason
from ..core.errors import AccountNotFoundError, CompensationError, LedgerError, SettlementError
from ..core.events import EntryOutcomeEvent
from ..core.results import RedemptionOutcome
from .compensation import Compensator, refund_reference

logger = structlog.get_logger()


class RedemptionService:
    """Deducts a reward's cost and records the redemption.

    Follows the same deduct / persist / compensate sequence as entries.
    """

    def __init__(
        self,
        database: DatabaseManager,
        ledger: LedgerStore,
        notifier: NotificationSink,
        config: Config,
        compensator: Compensator,
    ):
        self.database = database
        self.ledger = ledger
        self.notifier = notifier
        self.config = config
        self.compensator = compensator

        self._inflight: Set[asyncio.Task] = set()

    async def redeem_reward(self, account_id: str, reward_id: str, cost: int) -> RedemptionOutcome:
        """Redeem a reward for `cost` tokens.

        Raises:
            AccountNotFoundError: If the account has not been provisioned
        """
        log = logger.bind(account_id=account_id, reward_id=reward_id)

        if not isinstance(cost, int) or isinstance(cost, bool) or cost <= 0:
            return await self._finish(
                self._outcome(
                    OutcomeStatus.REJECTED,
                    account_id,
                    reward_id,
                    reason=RejectionReason.INVALID_AMOUNT,
                    details={"cost": cost},
                )
            )

        redemption_id = str(uuid.uuid4())
        debit_reference = f"reward:{redemption_id}"

        try:
            deduction = await self.ledger.try_deduct(
                account_id, cost, reference=debit_reference, reason=TransactionReason.REWARD
            )
        except AccountNotFoundError:
            raise
        except LedgerError as e:
            log.error("Reward deduction failed", error=str(e))
            return await self._run_shielded(
                self._resolve_failed_deduction(account_id, reward_id, cost, debit_reference)
            )

        if not deduction.committed:
            return await self._finish(
                self._outcome(
                    OutcomeStatus.REJECTED,
                    account_id,
                    reward_id,
                    reason=RejectionReason.INSUFFICIENT_BALANCE,
                    details={
                        "required": cost,
                        "balance": deduction.balance,
                        "shortfall": deduction.shortfall,
                    },
                )
            )

        return await self._run_shielded(
            self._complete_redemption(account_id, reward_id, cost, redemption_id, debit_reference)
        )

    async def drain(self) -> None:
        """Wait for every in-flight redemption to reach a terminal state."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_shielded(self, coro: Awaitable[RedemptionOutcome]) -> RedemptionOutcome:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _complete_redemption(
        self,
        account_id: str,
        reward_id: str,
        cost: int,
        redemption_id: str,
        debit_reference: str,
    ) -> RedemptionOutcome:
        log = logger.bind(account_id=account_id, reward_id=reward_id, redemption_id=redemption_id)
        try:
            await asyncio.wait_for(
                self.database.persist_redemption(
                    redemption_id=redemption_id,
                    account_id=account_id,
                    reward_id=reward_id,
                    cost=cost,
                    debit_reference=debit_reference,
                ),
                timeout=self.config.persistence_timeout_seconds,
            )
            log.info("Reward redeemed", cost=cost)
            return await self._finish(
                self._outcome(OutcomeStatus.ACCEPTED, account_id, reward_id, redemption_id=redemption_id)
            )
        except Exception as e:
            error = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e)
            log.error("Redemption persistence failed", error=error)

            try:
                saved = await self.compensator.retry(
                    lambda: self.database.get_redemption_by_debit_reference(debit_reference),
                    "Committed redemption check",
                    reference=debit_reference,
                )
            except SettlementError:
                return await self._finish(self._pending(account_id, reward_id, debit_reference))

            if saved is not None:
                return await self._finish(
                    self._outcome(OutcomeStatus.ACCEPTED, account_id, reward_id, redemption_id=redemption_id)
                )

            if not await self._refund(account_id, cost, debit_reference):
                return await self._finish(self._pending(account_id, reward_id, debit_reference))

            return await self._finish(
                self._outcome(
                    OutcomeStatus.FAILED,
                    account_id,
                    reward_id,
                    failure=FailureKind.PERSISTENCE_ERROR,
                    details={"error": error},
                )
            )

    async def _resolve_failed_deduction(
        self, account_id: str, reward_id: str, cost: int, debit_reference: str
    ) -> RedemptionOutcome:
        """Check the journal for a deduction that raised, refunding it if it landed."""
        try:
            applied = await self.compensator.retry(
                lambda: self.ledger.has_reference(debit_reference),
                "Deduction check",
                account_id=account_id,
                reference=debit_reference,
            )
        except SettlementError:
            return await self._finish(self._pending(account_id, reward_id, debit_reference))

        if applied and not await self._refund(account_id, cost, debit_reference):
            return await self._finish(self._pending(account_id, reward_id, debit_reference))

        return await self._finish(
            self._outcome(
                OutcomeStatus.FAILED,
                account_id,
                reward_id,
                failure=FailureKind.PERSISTENCE_ERROR,
                details={"error": "ledger unavailable"},
            )
        )

    async def _refund(self, account_id: str, cost: int, debit_reference: str) -> bool:
        try:
            await self.compensator.compensate(
                account_id,
                cost,
                reference=refund_reference(debit_reference),
                reason=TransactionReason.COMPENSATION,
                source="redemption",
            )
            return True
        except CompensationError:
            return False

    @staticmethod
    def _outcome(status: OutcomeStatus, account_id: str, reward_id: str, **fields) -> RedemptionOutcome:
        return RedemptionOutcome(status=status, account_id=account_id, reward_id=reward_id, **fields)

    def _pending(self, account_id: str, reward_id: str, debit_reference: str) -> RedemptionOutcome:
        return self._outcome(
            OutcomeStatus.FAILED,
            account_id,
            reward_id,
            failure=FailureKind.COMPENSATION_PENDING,
            details={"reference": debit_reference},
        )

    async def _finish(self, outcome: RedemptionOutcome) -> RedemptionOutcome:
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
        if metrics:
            metrics.record_redemption(outcome.status.value, reason)

        try:
            await self.notifier.publish(EntryOutcomeEvent.from_redemption(outcome))
            if metrics:
                metrics.record_notification("reward.redeemed", success=True)
        except Exception as e:
            logger.error("Failed to publish redemption outcome", account_id=outcome.account_id, error=str(e))
            if metrics:
                metrics.record_notification("reward.redeemed", success=False)

        return outcome
