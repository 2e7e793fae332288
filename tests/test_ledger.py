"""Integration tests for the ledger store."""

import asyncio

import pytest

from contest_ledger.adapters.database.ledger import LedgerStore
from contest_ledger.core.enums import TransactionKind, TransactionReason
from contest_ledger.core.errors import AccountNotFoundError, LedgerError


@pytest.mark.integration
class TestAccountProvisioning:
    """Test suite for opening accounts."""

    @pytest.mark.asyncio
    async def test_open_account_with_default_balance(self, ledger: LedgerStore):
        """New accounts start with the default 100 tokens."""
        account = await ledger.open_account("acct-1")

        assert account.id == "acct-1"
        assert account.balance == 100
        assert await ledger.balance_of("acct-1") == 100

    @pytest.mark.asyncio
    async def test_open_account_is_idempotent(self, ledger: LedgerStore):
        await ledger.open_account("acct-1", initial_balance=40)
        again = await ledger.open_account("acct-1", initial_balance=999)

        assert again.balance == 40
        history = await ledger.history("acct-1")
        assert len(history) == 1
        assert history[0].reason == TransactionReason.PROVISIONING
        assert history[0].reference == "provision:acct-1"

    @pytest.mark.asyncio
    async def test_open_account_with_zero_balance_writes_no_journal(self, ledger: LedgerStore):
        await ledger.open_account("broke", initial_balance=0)

        assert await ledger.balance_of("broke") == 0
        assert await ledger.history("broke") == []

    @pytest.mark.asyncio
    async def test_negative_initial_balance_rejected(self, ledger: LedgerStore):
        with pytest.raises(ValueError):
            await ledger.open_account("acct-1", initial_balance=-5)

    @pytest.mark.asyncio
    async def test_balance_of_unknown_account(self, ledger: LedgerStore):
        with pytest.raises(AccountNotFoundError):
            await ledger.balance_of("nobody")


@pytest.mark.integration
class TestTryDeduct:
    """Test suite for compare-and-deduct."""

    @pytest.mark.asyncio
    async def test_deduct_commits_when_balance_covers(self, ledger: LedgerStore, funded_account):
        result = await ledger.try_deduct(funded_account, 1, reference="entry:abc")

        assert result.committed
        assert result.balance == 99
        assert result.shortfall == 0
        assert await ledger.balance_of(funded_account) == 99
        assert await ledger.has_reference("entry:abc")

    @pytest.mark.asyncio
    async def test_deduct_whole_balance(self, ledger: LedgerStore, funded_account):
        result = await ledger.try_deduct(funded_account, 100)

        assert result.committed
        assert result.balance == 0

    @pytest.mark.asyncio
    async def test_deduct_refused_when_insufficient(self, ledger: LedgerStore):
        await ledger.open_account("low", initial_balance=3)

        result = await ledger.try_deduct("low", 5, reference="entry:refused")

        assert not result.committed
        assert result.balance == 3
        assert result.shortfall == 2
        assert await ledger.balance_of("low") == 3
        assert not await ledger.has_reference("entry:refused")

    @pytest.mark.asyncio
    async def test_deduct_from_unknown_account(self, ledger: LedgerStore):
        with pytest.raises(AccountNotFoundError):
            await ledger.try_deduct("nobody", 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    async def test_invalid_amounts(self, ledger: LedgerStore, funded_account, amount):
        with pytest.raises(ValueError):
            await ledger.try_deduct(funded_account, amount)

    @pytest.mark.asyncio
    async def test_reused_reference_rolls_back_deduction(self, ledger: LedgerStore, funded_account):
        """A debit whose journal row conflicts leaves the balance untouched."""
        await ledger.try_deduct(funded_account, 1, reference="entry:same")

        with pytest.raises(LedgerError):
            await ledger.try_deduct(funded_account, 1, reference="entry:same")

        assert await ledger.balance_of(funded_account) == 99

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_concurrent_deductions_never_overdraw(self, ledger: LedgerStore):
        """Twenty concurrent deductions against five tokens: exactly five commit."""
        await ledger.open_account("contended", initial_balance=5)

        results = await asyncio.gather(
            *[ledger.try_deduct("contended", 1, reference=f"entry:{i}") for i in range(20)]
        )

        committed = [r for r in results if r.committed]
        assert len(committed) == 5
        assert all(r.balance >= 0 for r in results)
        assert await ledger.balance_of("contended") == 0


@pytest.mark.integration
class TestCredit:
    """Test suite for credits."""

    @pytest.mark.asyncio
    async def test_credit_increases_balance(self, ledger: LedgerStore, funded_account):
        applied = await ledger.credit(funded_account, 7, reason=TransactionReason.ADJUSTMENT)

        assert applied is True
        assert await ledger.balance_of(funded_account) == 107

    @pytest.mark.asyncio
    async def test_credit_with_reference_applies_once(self, ledger: LedgerStore, funded_account):
        first = await ledger.credit(funded_account, 1, reference="refund:entry:x")
        second = await ledger.credit(funded_account, 1, reference="refund:entry:x")

        assert first is True
        assert second is False
        assert await ledger.balance_of(funded_account) == 101

    @pytest.mark.asyncio
    async def test_credit_unknown_account(self, ledger: LedgerStore):
        with pytest.raises(AccountNotFoundError):
            await ledger.credit("nobody", 1)

    @pytest.mark.asyncio
    async def test_history_records_every_change(self, ledger: LedgerStore, funded_account):
        await ledger.try_deduct(funded_account, 1, reference="entry:1")
        await ledger.credit(funded_account, 1, reference="refund:entry:1")

        history = await ledger.history(funded_account)

        assert [(t.kind, t.reason) for t in history] == [
            (TransactionKind.CREDIT, TransactionReason.PROVISIONING),
            (TransactionKind.DEBIT, TransactionReason.ENTRY_FEE),
            (TransactionKind.CREDIT, TransactionReason.COMPENSATION),
        ]
        assert sum(t.signed_amount for t in history) == await ledger.balance_of(funded_account)
