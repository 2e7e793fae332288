"""Retried compensating credits."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from ..adapters.database.ledger import LedgerStore
from ..adapters.observability import get_metrics_provider
from ..core.enums import TransactionReason
from ..core.errors import CompensationError, SettlementError

logger = structlog.get_logger()

T = TypeVar("T")


def refund_reference(debit_reference: str) -> str:
    """Reference of the credit that undoes a given debit."""
    return f"refund:{debit_reference}"


def cancellation_reference(entry_id: str) -> str:
    """Reference of the credit that refunds a cancelled entry."""
    return f"cancel:{entry_id}"


class Compensator:
    """Issues credits that must eventually succeed.

    Credits are tagged with a reference, so every retry is safe even when
    an earlier attempt committed but its acknowledgement was lost.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        max_attempts: int = 10,
        initial_backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 30.0,
    ):
        """Initialize the compensator.

        Args:
            ledger: Ledger store to credit
            max_attempts: Attempts before giving up; 0 retries forever
            initial_backoff_seconds: Delay after the first failed attempt
            max_backoff_seconds: Upper bound for the exponential delay
        """
        self.ledger = ledger
        self.max_attempts = max_attempts
        self.initial_backoff_seconds = initial_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds

    def _backoff(self, attempt: int) -> float:
        return min(self.initial_backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)

    async def compensate(
        self,
        account_id: str,
        amount: int,
        reference: str,
        reason: TransactionReason = TransactionReason.COMPENSATION,
        source: str = "entry",
    ) -> bool:
        """Credit `amount` back, retrying with exponential backoff until acknowledged.

        Returns:
            True if this call applied the credit, False if it was already applied

        Raises:
            CompensationError: If the credit is still unconfirmed after
                `max_attempts` attempts
        """
        attempt = 0
        last_error: Optional[Exception] = None
        metrics = get_metrics_provider()

        while self.max_attempts == 0 or attempt < self.max_attempts:
            attempt += 1
            try:
                applied = await self.ledger.credit(
                    account_id, amount, reference=reference, reason=reason
                )
                logger.info(
                    "Compensation confirmed",
                    account_id=account_id,
                    amount=amount,
                    reference=reference,
                    attempt=attempt,
                    applied=applied,
                )
                if metrics:
                    metrics.record_compensation(source=source, success=True)
                return applied
            except ValueError:
                raise
            except Exception as e:
                last_error = e
                delay = self._backoff(attempt)
                logger.warning(
                    "Compensation attempt failed",
                    account_id=account_id,
                    amount=amount,
                    reference=reference,
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e),
                )
                if self.max_attempts and attempt >= self.max_attempts:
                    break
                await asyncio.sleep(delay)

        logger.critical(
            "Compensation not confirmed, manual reconciliation required",
            account_id=account_id,
            amount=amount,
            reference=reference,
            attempts=attempt,
            error=str(last_error),
        )
        if metrics:
            metrics.record_compensation(source=source, success=False)
        raise CompensationError(account_id, amount, reference, attempt) from last_error

    async def retry(self, operation: Callable[[], Awaitable[T]], action: str, **context: Any) -> T:
        """Run `operation` with the same backoff used for credits.

        Used for the reads and state changes that decide whether a debit
        still needs settling, where guessing on failure is not allowed.

        Raises:
            SettlementError: If every attempt failed
        """
        attempt = 0
        last_error: Optional[Exception] = None

        while self.max_attempts == 0 or attempt < self.max_attempts:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                last_error = e
                delay = self._backoff(attempt)
                logger.warning(
                    f"{action} failed",
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e),
                    **context,
                )
                if self.max_attempts and attempt >= self.max_attempts:
                    break
                await asyncio.sleep(delay)

        logger.error(f"{action} gave up, leaving it to recovery", attempts=attempt, **context)
        raise SettlementError(action, attempt) from last_error
