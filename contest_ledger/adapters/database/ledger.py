"""Ledger store: per-account token balances with compare-and-deduct."""

from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ...core.entities import Account, LedgerTransaction
from ...core.enums import TransactionKind, TransactionReason
from ...core.errors import AccountNotFoundError, LedgerError
from ...core.results import DeductionResult
from .manager import DatabaseManager
from .models import Account as AccountModel, LedgerTransaction as LedgerTransactionModel

logger = structlog.get_logger()


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError(f"Amount must be a positive integer, got {amount!r}")


class LedgerStore:
    """Durable token balances backed by the accounts table.

    Every mutation is a single conditional UPDATE plus a journal row in the
    same transaction, so a balance is never read and written back across
    two statements and can never be observed below zero.
    """

    def __init__(self, database: DatabaseManager, default_initial_balance: int = 100):
        """Initialize the ledger store.

        Args:
            database: Database manager providing sessions
            default_initial_balance: Balance granted by open_account when none is given
        """
        self.database = database
        self.default_initial_balance = default_initial_balance

    async def open_account(self, account_id: str, initial_balance: Optional[int] = None) -> Account:
        """Provision an account with its starting balance.

        Opening an account that already exists returns it unchanged.
        """
        balance = self.default_initial_balance if initial_balance is None else initial_balance
        if balance < 0:
            raise ValueError(f"Initial balance cannot be negative: {balance}")

        existing = await self.get_account(account_id)
        if existing is not None:
            return existing

        try:
            async with self.database.get_session() as session:
                record = AccountModel(id=account_id, balance=balance)
                session.add(record)
                if balance > 0:
                    session.add(
                        LedgerTransactionModel(
                            account_id=account_id,
                            kind=TransactionKind.CREDIT.value,
                            amount=balance,
                            reason=TransactionReason.PROVISIONING.value,
                            reference=f"provision:{account_id}",
                        )
                    )
                await session.commit()
                logger.info("Account opened", account_id=account_id, balance=balance)
                return Account(
                    id=record.id,
                    balance=record.balance,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
        except IntegrityError:
            # Lost a race with a concurrent open for the same account
            account = await self.get_account(account_id)
            if account is None:
                raise
            return account

    async def get_account(self, account_id: str) -> Optional[Account]:
        async with self.database.get_session() as session:
            result = await session.execute(
                select(AccountModel).where(AccountModel.id == account_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return Account(
                id=record.id,
                balance=record.balance,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )

    async def balance_of(self, account_id: str) -> int:
        """Point-in-time balance read.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = await self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account.balance

    async def try_deduct(
        self,
        account_id: str,
        amount: int,
        reference: Optional[str] = None,
        reason: TransactionReason = TransactionReason.ENTRY_FEE,
    ) -> DeductionResult:
        """Deduct `amount` if and only if the balance covers it.

        Returns:
            DeductionResult, committed with the new balance, or refused with
            the balance observed at the time

        Raises:
            AccountNotFoundError: If the account does not exist
            LedgerError: If the storage layer fails; the deduction may or
                may not have been applied, check `has_reference`
        """
        _require_positive(amount)

        try:
            async with self.database.get_session() as session:
                result = await session.execute(
                    update(AccountModel)
                    .where(
                        AccountModel.id == account_id,
                        AccountModel.balance >= amount,
                    )
                    .values(balance=AccountModel.balance - amount)
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    await session.rollback()
                    balance = await self._read_balance(session, account_id)
                    logger.info(
                        "Deduction refused",
                        account_id=account_id,
                        amount=amount,
                        balance=balance,
                    )
                    return DeductionResult(
                        committed=False, balance=balance, amount=amount, reference=reference
                    )

                session.add(
                    LedgerTransactionModel(
                        account_id=account_id,
                        kind=TransactionKind.DEBIT.value,
                        amount=amount,
                        reason=reason.value,
                        reference=reference,
                    )
                )
                await session.flush()
                balance = await self._read_balance(session, account_id)
                await session.commit()

        except AccountNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "Deduction failed", account_id=account_id, amount=amount, reference=reference, error=str(e)
            )
            raise LedgerError(f"Deduction of {amount} from {account_id} failed: {e}") from e

        logger.info(
            "Deduction committed",
            account_id=account_id,
            amount=amount,
            reference=reference,
            balance=balance,
        )
        return DeductionResult(committed=True, balance=balance, amount=amount, reference=reference)

    async def credit(
        self,
        account_id: str,
        amount: int,
        reference: Optional[str] = None,
        reason: TransactionReason = TransactionReason.COMPENSATION,
    ) -> bool:
        """Add `amount` to the balance.

        A credit carrying a reference that was already journaled is not
        applied again, so retrying a credit after a lost acknowledgement is
        safe.

        Returns:
            True if the credit was applied now, False if it had been applied before

        Raises:
            AccountNotFoundError: If the account does not exist
            LedgerError: If the storage layer fails
        """
        _require_positive(amount)

        try:
            async with self.database.get_session() as session:
                result = await session.execute(
                    update(AccountModel)
                    .where(AccountModel.id == account_id)
                    .values(balance=AccountModel.balance + amount)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    await session.rollback()
                    raise AccountNotFoundError(account_id)

                session.add(
                    LedgerTransactionModel(
                        account_id=account_id,
                        kind=TransactionKind.CREDIT.value,
                        amount=amount,
                        reason=reason.value,
                        reference=reference,
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    if reference is not None and await self.has_reference(reference):
                        logger.info(
                            "Credit already applied",
                            account_id=account_id,
                            amount=amount,
                            reference=reference,
                        )
                        return False
                    raise

        except AccountNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "Credit failed", account_id=account_id, amount=amount, reference=reference, error=str(e)
            )
            raise LedgerError(f"Credit of {amount} to {account_id} failed: {e}") from e

        logger.info("Credit applied", account_id=account_id, amount=amount, reference=reference)
        return True

    async def has_reference(self, reference: str) -> bool:
        """Check if a journal row with this reference exists."""
        async with self.database.get_session() as session:
            result = await session.execute(
                select(LedgerTransactionModel.id).where(
                    LedgerTransactionModel.reference == reference
                )
            )
            return result.first() is not None

    async def history(self, account_id: str) -> List[LedgerTransaction]:
        """Journal rows for an account, oldest first."""
        async with self.database.get_session() as session:
            result = await session.execute(
                select(LedgerTransactionModel)
                .where(LedgerTransactionModel.account_id == account_id)
                .order_by(LedgerTransactionModel.created_at, LedgerTransactionModel.id)
            )
            return [
                LedgerTransaction(
                    account_id=t.account_id,
                    kind=TransactionKind(t.kind),
                    amount=t.amount,
                    reason=TransactionReason(t.reason),
                    reference=t.reference,
                    created_at=t.created_at,
                    id=t.id,
                )
                for t in result.scalars().all()
            ]

    async def _read_balance(self, session, account_id: str) -> int:
        result = await session.execute(
            select(AccountModel.balance).where(AccountModel.id == account_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError(account_id)
        return balance
