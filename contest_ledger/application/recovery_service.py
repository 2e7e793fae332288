"""Background recovery of debits whose compensation was never confirmed."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..adapters.database.manager import DatabaseManager
from ..adapters.observability import get_metrics_provider
from ..config import Config
from ..core.entities import Entry, LedgerTransaction
from ..core.enums import TransactionReason
from ..core.errors import CompensationError
from .compensation import Compensator, refund_reference

logger = logging.getLogger(__name__)


class CompensationRecoveryService:
    """Periodically refunds orphaned debits and closes refunded entries.

    An orphaned debit is an entry fee or reward debit older than the grace
    period that has neither a record referencing it nor a refund credit.
    The refund carries the same `refund:` reference the in-line
    compensation uses, so the two can never both apply.
    """

    def __init__(self, database: DatabaseManager, compensator: Compensator, config: Config):
        """Initialize the recovery service.

        Args:
            database: Database manager used to find orphaned debits
            compensator: Compensator issuing the refunds
            config: Application configuration
        """
        self.database = database
        self.compensator = compensator
        self.config = config

        self.interval_seconds = config.recovery_interval_seconds
        self.grace_seconds = config.recovery_grace_seconds

        self._is_running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the recovery loop."""
        if self._is_running:
            logger.warning("Recovery loop is already running")
            return

        self._is_running = True
        self._task = asyncio.create_task(self._recovery_loop())

        logger.info(f"Started compensation recovery with {self.interval_seconds}s intervals")

    async def stop(self) -> None:
        """Stop the recovery loop."""
        if not self._is_running:
            return

        self._is_running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Stopped compensation recovery")

    async def run_once(self, now: Optional[datetime] = None) -> List[LedgerTransaction]:
        """Close settled cancellations, then refund every orphaned debit older than the grace period.

        Returns:
            The debits refunded in this pass
        """
        await self.settle_cancellations()

        cutoff = (now or datetime.utcnow()) - timedelta(seconds=self.grace_seconds)
        orphans = await self.database.find_orphaned_debits(older_than=cutoff)

        if not orphans:
            logger.debug("No orphaned debits found")
            return []

        logger.warning(f"Found {len(orphans)} orphaned debits, refunding")

        recovered = []
        for debit in orphans:
            source = "recovery_entry" if debit.reason == TransactionReason.ENTRY_FEE else "recovery_reward"
            try:
                await self.compensator.compensate(
                    debit.account_id,
                    debit.amount,
                    reference=refund_reference(debit.reference),
                    reason=TransactionReason.COMPENSATION,
                    source=source,
                )
                recovered.append(debit)
                logger.info(
                    f"Refunded orphaned debit {debit.reference} of {debit.amount} to {debit.account_id}"
                )
            except CompensationError as e:
                logger.error(f"Could not refund orphaned debit {debit.reference}: {e}")
                continue

        metrics = get_metrics_provider()
        if metrics:
            metrics.record_recovered_debits(len(recovered))

        return recovered

    async def settle_cancellations(self) -> List[Entry]:
        """Mark entries REFUNDED whose cancellation credit already landed.

        Returns:
            The entries closed in this pass
        """
        pending = await self.database.find_unsettled_cancellations()

        settled = []
        for entry in pending:
            if await self.database.mark_entry_refunded(entry.id):
                settled.append(entry)
                logger.info(f"Closed cancelled entry {entry.id} for {entry.account_id}")

        return settled

    async def _recovery_loop(self) -> None:
        logger.info("Compensation recovery loop started")

        while self._is_running:
            metrics = get_metrics_provider()
            try:
                await self.run_once()
                if metrics:
                    metrics.record_recovery_iteration()

                await asyncio.sleep(self.interval_seconds)

            except asyncio.CancelledError:
                logger.info("Recovery loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in recovery loop: {e}")
                if metrics:
                    metrics.record_recovery_error(type(e).__name__)
                await asyncio.sleep(min(self.interval_seconds, 30))

        logger.info("Compensation recovery loop stopped")
