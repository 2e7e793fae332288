"""Integration tests for orphaned debit recovery."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from contest_ledger.application.compensation import Compensator, cancellation_reference, refund_reference
from contest_ledger.application.recovery_service import CompensationRecoveryService
from contest_ledger.core.enums import EntryStatus, FailureKind, TransactionReason
from contest_ledger.core.errors import CompensationError, LedgerError, PersistenceError, SettlementError
from tests.factories import SlotFactory


def later() -> datetime:
    return datetime.utcnow() + timedelta(seconds=1)


@pytest.mark.integration
class TestCompensationRecovery:
    """Test suite for CompensationRecoveryService.run_once."""

    @pytest.mark.asyncio
    async def test_pending_compensation_is_recovered_once(
        self, entry_service, recovery_service: CompensationRecoveryService, db_manager, ledger, funded_account
    ):
        """A debit left behind by an unconfirmed refund is credited back exactly once."""
        with patch.object(db_manager, "persist_entry", side_effect=PersistenceError("down")), \
                patch.object(ledger, "credit", side_effect=LedgerError("down")):
            outcome = await entry_service.submit_entry(
                funded_account, "match-1", "Team", SlotFactory.create_roster()
            )

        assert outcome.failure == FailureKind.COMPENSATION_PENDING
        assert await ledger.balance_of(funded_account) == 99

        recovered = await recovery_service.run_once(now=later())

        assert len(recovered) == 1
        assert recovered[0].reason == TransactionReason.ENTRY_FEE
        assert await ledger.balance_of(funded_account) == 100
        assert await ledger.has_reference(refund_reference(recovered[0].reference))

        assert await recovery_service.run_once(now=later()) == []
        assert await ledger.balance_of(funded_account) == 100

    @pytest.mark.asyncio
    async def test_committed_entries_are_not_refunded(
        self, entry_service, recovery_service: CompensationRecoveryService, ledger, funded_account
    ):
        await entry_service.submit_entry(funded_account, "match-1", "Team", SlotFactory.create_roster())

        assert await recovery_service.run_once(now=later()) == []
        assert await ledger.balance_of(funded_account) == 99

    @pytest.mark.asyncio
    async def test_compensated_debits_are_not_refunded_again(
        self, entry_service, recovery_service: CompensationRecoveryService, db_manager, ledger, funded_account
    ):
        with patch.object(db_manager, "persist_entry", side_effect=PersistenceError("down")):
            await entry_service.submit_entry(funded_account, "match-1", "Team", SlotFactory.create_roster())

        assert await recovery_service.run_once(now=later()) == []
        assert await ledger.balance_of(funded_account) == 100

    @pytest.mark.asyncio
    async def test_debits_within_grace_period_are_left_alone(
        self, recovery_service: CompensationRecoveryService, ledger, funded_account
    ):
        await ledger.try_deduct(funded_account, 1, reference="entry:in-flight")

        recovered = await recovery_service.run_once(now=datetime.utcnow() - timedelta(minutes=5))

        assert recovered == []
        assert await ledger.balance_of(funded_account) == 99

    @pytest.mark.asyncio
    async def test_orphaned_reward_debit_is_recovered(
        self, recovery_service: CompensationRecoveryService, ledger, funded_account
    ):
        await ledger.try_deduct(funded_account, 10, reference="reward:lost", reason=TransactionReason.REWARD)

        recovered = await recovery_service.run_once(now=later())

        assert [d.reference for d in recovered] == ["reward:lost"]
        assert await ledger.balance_of(funded_account) == 100

    @pytest.mark.asyncio
    async def test_refund_failure_is_retried_next_pass(
        self, recovery_service: CompensationRecoveryService, ledger, funded_account
    ):
        await ledger.try_deduct(funded_account, 1, reference="entry:orphan")

        with patch.object(ledger, "credit", side_effect=LedgerError("down")):
            assert await recovery_service.run_once(now=later()) == []

        recovered = await recovery_service.run_once(now=later())
        assert len(recovered) == 1
        assert await ledger.balance_of(funded_account) == 100

    @pytest.mark.asyncio
    async def test_loop_start_and_stop(self, recovery_service: CompensationRecoveryService, ledger, funded_account):
        await ledger.try_deduct(funded_account, 1, reference="entry:orphan")
        recovery_service.grace_seconds = -5

        await recovery_service.start()
        for _ in range(50):
            if await ledger.balance_of(funded_account) == 100:
                break
            await asyncio.sleep(0.05)
        await recovery_service.stop()

        assert await ledger.balance_of(funded_account) == 100


class TestCompensator:
    """Test suite for the retried credit."""

    @pytest.mark.asyncio
    async def test_retries_until_credit_succeeds(self, ledger, funded_account):
        compensator = Compensator(ledger, max_attempts=5, initial_backoff_seconds=0.001)
        real_credit = ledger.credit
        calls = []

        async def flaky_credit(*args, **kwargs):
            calls.append(1)
            if len(calls) < 3:
                raise LedgerError("transient")
            return await real_credit(*args, **kwargs)

        with patch.object(ledger, "credit", side_effect=flaky_credit):
            applied = await compensator.compensate(funded_account, 1, reference="refund:entry:1")

        assert applied is True
        assert len(calls) == 3
        assert await ledger.balance_of(funded_account) == 101

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, ledger, funded_account):
        compensator = Compensator(ledger, max_attempts=3, initial_backoff_seconds=0.001)

        with patch.object(ledger, "credit", side_effect=LedgerError("down")) as credit:
            with pytest.raises(CompensationError) as exc_info:
                await compensator.compensate(funded_account, 1, reference="refund:entry:1")

        assert credit.await_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.reference == "refund:entry:1"

    def test_backoff_is_exponential_and_capped(self, ledger):
        compensator = Compensator(ledger, initial_backoff_seconds=0.5, max_backoff_seconds=3.0)

        assert [compensator._backoff(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_retry_returns_first_success(self, ledger):
        compensator = Compensator(ledger, max_attempts=4, initial_backoff_seconds=0.001)
        results = iter([PersistenceError("blip"), PersistenceError("blip"), "found"])

        async def lookup():
            result = next(results)
            if isinstance(result, Exception):
                raise result
            return result

        assert await compensator.retry(lookup, "Lookup") == "found"

    @pytest.mark.asyncio
    async def test_retry_gives_up_with_settlement_error(self, ledger):
        compensator = Compensator(ledger, max_attempts=2, initial_backoff_seconds=0.001)
        attempts = []

        async def lookup():
            attempts.append(1)
            raise PersistenceError("down")

        with pytest.raises(SettlementError) as exc_info:
            await compensator.retry(lookup, "Committed entry check", reference="entry:1")

        assert len(attempts) == 2
        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.__cause__, PersistenceError)


@pytest.mark.integration
class TestCancellationSettlement:
    """Test suite for closing entries whose cancellation credit already landed."""

    @pytest.mark.asyncio
    async def test_only_credited_active_entries_are_closed(
        self, recovery_service: CompensationRecoveryService, entry_service, db_manager, ledger, funded_account
    ):
        credited = await entry_service.submit_entry(funded_account, "match-1", "Team", SlotFactory.create_roster())
        untouched = await entry_service.submit_entry(funded_account, "match-2", "Team", SlotFactory.create_roster())
        await ledger.credit(
            funded_account, 1, reference=cancellation_reference(credited.entry_id), reason=TransactionReason.CANCELLATION
        )

        [settled] = await recovery_service.settle_cancellations()

        assert settled.id == credited.entry_id
        assert (await db_manager.get_entry(credited.entry_id)).status == EntryStatus.REFUNDED
        assert (await db_manager.get_entry(untouched.entry_id)).status == EntryStatus.ACTIVE
        assert await recovery_service.settle_cancellations() == []
