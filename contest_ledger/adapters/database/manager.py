"""Database infrastructure layer for entries, rosters and redemptions."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, List
from datetime import datetime

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlalchemy import select, update, exists, and_, or_, literal
from sqlalchemy.orm import selectinload, aliased

from ...config import Config
from .models import (
    Base,
    Entry as EntryModel,
    LedgerTransaction as LedgerTransactionModel,
    Redemption as RedemptionModel,
    Roster as RosterModel,
    RosterSlot as RosterSlotModel,
)
from ...core.entities import Entry, LedgerTransaction, Redemption, Roster, Slot
from ...core.enums import EntryStatus, PlayerRole, TransactionKind, TransactionReason
from ...core.errors import DuplicateEntryError, PersistenceError

logger = logging.getLogger(__name__)

REFUND_PREFIX = "refund:"
CANCEL_PREFIX = "cancel:"


class DatabaseManager:
    """Manages database connection and provides direct repository methods."""

    def __init__(self, config: Config):
        self.config = config
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return self.config.get_database_url().startswith("sqlite")

    async def initialize(self) -> None:
        """Initialize database engine and session factory."""
        if self._engine is not None:
            logger.warning("Database manager already initialized")
            return

        connect_args = {}
        if self.is_sqlite:
            # Writers queue on the database lock instead of failing fast
            connect_args["timeout"] = 30

        self._engine = create_async_engine(
            self.config.get_database_url(),
            echo=self.config.log_level == "DEBUG",
            poolclass=NullPool,  # Use NullPool for better connection management in async context
            pool_pre_ping=True,  # Verify connections before use
            connect_args=connect_args,
        )

        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        logger.info("Database manager initialized successfully")

    async def close(self) -> None:
        """Close database engine and clean up resources."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database manager closed")

    async def create_tables(self) -> None:
        """Create all tables from the ORM metadata (tests and local runs)."""
        if self._engine is None:
            raise RuntimeError(
                "Database manager not initialized. Call initialize() first."
            )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        """Drop all tables from the ORM metadata."""
        if self._engine is None:
            raise RuntimeError(
                "Database manager not initialized. Call initialize() first."
            )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session with automatic cleanup."""
        if self._session_factory is None:
            raise RuntimeError(
                "Database manager not initialized. Call initialize() first."
            )

        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # Conversion methods
    def _convert_db_roster_to_core_entity(self, roster_record: RosterModel) -> Roster:
        """Convert database Roster model (with slots loaded) to core Roster entity."""
        return Roster(
            account_id=roster_record.account_id,
            match_ref=roster_record.match_ref,
            team_name=roster_record.team_name,
            slots=[
                Slot(
                    player_id=slot.player_id,
                    role=PlayerRole(slot.role),
                    cost=slot.cost,
                    player_name=slot.player_name,
                )
                for slot in roster_record.slots
            ],
            id=roster_record.id,
        )

    def _convert_db_entry_to_core_entity(
        self, entry_record: EntryModel, with_roster: bool = False
    ) -> Entry:
        """Convert database Entry model to core Entry entity.

        Args:
            entry_record: SQLAlchemy Entry instance
            with_roster: Whether the roster relationship was eagerly loaded

        Returns:
            Core Entry entity
        """
        return Entry(
            id=entry_record.id,
            account_id=entry_record.account_id,
            match_ref=entry_record.match_ref,
            roster_id=entry_record.roster_id,
            amount_charged=entry_record.amount_charged,
            idempotency_key=entry_record.idempotency_key,
            debit_reference=entry_record.debit_reference,
            status=EntryStatus(entry_record.status),
            created_at=entry_record.created_at,
            refunded_at=entry_record.refunded_at,
            roster=(
                self._convert_db_roster_to_core_entity(entry_record.roster)
                if with_roster
                else None
            ),
        )

    def _convert_db_transaction_to_core_entity(
        self, record: LedgerTransactionModel
    ) -> LedgerTransaction:
        return LedgerTransaction(
            account_id=record.account_id,
            kind=TransactionKind(record.kind),
            amount=record.amount,
            reason=TransactionReason(record.reason),
            reference=record.reference,
            created_at=record.created_at,
            id=record.id,
        )

    # Entry repository methods
    async def persist_entry(
        self,
        entry_id: str,
        roster: Roster,
        amount_charged: int,
        idempotency_key: str,
        debit_reference: str,
    ) -> Entry:
        """Persist a roster, its slots and the entry referencing it.

        All three writes share one transaction: either the entry and its
        roster are both visible afterwards or neither is.

        Raises:
            DuplicateEntryError: If another active entry exists for the match
            PersistenceError: For any other storage failure
        """
        try:
            async with self.get_session() as session:
                roster_record = RosterModel(
                    account_id=roster.account_id,
                    match_ref=roster.match_ref,
                    team_name=roster.team_name.strip(),
                    slots=[
                        RosterSlotModel(
                            position=position,
                            player_id=slot.player_id,
                            player_name=slot.player_name,
                            role=slot.role.value,
                            cost=slot.cost,
                        )
                        for position, slot in enumerate(roster.slots)
                    ],
                )
                session.add(roster_record)
                await session.flush()

                entry_record = EntryModel(
                    id=entry_id,
                    account_id=roster.account_id,
                    match_ref=roster.match_ref,
                    roster_id=roster_record.id,
                    amount_charged=amount_charged,
                    idempotency_key=idempotency_key,
                    debit_reference=debit_reference,
                    status=EntryStatus.ACTIVE.value,
                )
                session.add(entry_record)
                await session.commit()

                entry = self._convert_db_entry_to_core_entity(entry_record)
                entry.roster = self._convert_db_roster_to_core_entity(roster_record)
                return entry

        except IntegrityError as e:
            existing = await self.get_active_entry_for_match(roster.account_id, roster.match_ref)
            if existing is not None and existing.debit_reference != debit_reference:
                raise DuplicateEntryError(roster.account_id, roster.match_ref) from e
            raise PersistenceError(f"Integrity error persisting entry {entry_id}: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist entry {entry_id}: {e}") from e

    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        """Get an entry and its roster by entry ID."""
        async with self.get_session() as session:
            result = await session.execute(
                select(EntryModel)
                .options(selectinload(EntryModel.roster).selectinload(RosterModel.slots))
                .where(EntryModel.id == entry_id)
            )
            entry_record = result.scalar_one_or_none()
            return (
                self._convert_db_entry_to_core_entity(entry_record, with_roster=True)
                if entry_record
                else None
            )

    async def get_active_entry_for_match(self, account_id: str, match_ref: str) -> Optional[Entry]:
        """Get the active entry an account holds for a match, if any."""
        async with self.get_session() as session:
            result = await session.execute(
                select(EntryModel).where(
                    EntryModel.account_id == account_id,
                    EntryModel.match_ref == match_ref,
                    EntryModel.status == EntryStatus.ACTIVE.value,
                )
            )
            entry_record = result.scalar_one_or_none()
            return self._convert_db_entry_to_core_entity(entry_record) if entry_record else None

    async def get_entry_by_debit_reference(self, debit_reference: str) -> Optional[Entry]:
        """Get the entry created for a specific ledger debit."""
        async with self.get_session() as session:
            result = await session.execute(
                select(EntryModel).where(EntryModel.debit_reference == debit_reference)
            )
            entry_record = result.scalar_one_or_none()
            return self._convert_db_entry_to_core_entity(entry_record) if entry_record else None

    async def list_entries(self, account_id: str, include_refunded: bool = True) -> List[Entry]:
        """List an account's entries, oldest first."""
        async with self.get_session() as session:
            query = select(EntryModel).where(EntryModel.account_id == account_id)
            if not include_refunded:
                query = query.where(EntryModel.status == EntryStatus.ACTIVE.value)
            result = await session.execute(
                query.order_by(EntryModel.created_at, EntryModel.id)
            )
            return [self._convert_db_entry_to_core_entity(e) for e in result.scalars().all()]

    async def mark_entry_refunded(self, entry_id: str, refunded_at: Optional[datetime] = None) -> bool:
        """Mark an active entry as refunded.

        Returns:
            True if the entry moved from ACTIVE to REFUNDED
        """
        async with self.get_session() as session:
            result = await session.execute(
                update(EntryModel)
                .where(
                    EntryModel.id == entry_id,
                    EntryModel.status == EntryStatus.ACTIVE.value,
                )
                .values(
                    status=EntryStatus.REFUNDED.value,
                    refunded_at=refunded_at or datetime.utcnow(),
                )
            )
            await session.commit()
            return result.rowcount > 0

    # Redemption repository methods
    async def persist_redemption(
        self,
        redemption_id: str,
        account_id: str,
        reward_id: str,
        cost: int,
        debit_reference: str,
    ) -> Redemption:
        """Persist a reward redemption record.

        Raises:
            PersistenceError: For any storage failure
        """
        try:
            async with self.get_session() as session:
                record = RedemptionModel(
                    id=redemption_id,
                    account_id=account_id,
                    reward_id=reward_id,
                    cost=cost,
                    debit_reference=debit_reference,
                )
                session.add(record)
                await session.commit()
                return Redemption(
                    id=record.id,
                    account_id=record.account_id,
                    reward_id=record.reward_id,
                    cost=record.cost,
                    debit_reference=record.debit_reference,
                    created_at=record.created_at,
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist redemption {redemption_id}: {e}") from e

    async def get_redemption_by_debit_reference(self, debit_reference: str) -> Optional[Redemption]:
        async with self.get_session() as session:
            result = await session.execute(
                select(RedemptionModel).where(RedemptionModel.debit_reference == debit_reference)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return Redemption(
                id=record.id,
                account_id=record.account_id,
                reward_id=record.reward_id,
                cost=record.cost,
                debit_reference=record.debit_reference,
                created_at=record.created_at,
            )

    # Reconciliation queries
    async def find_orphaned_debits(self, older_than: datetime, limit: int = 100) -> List[LedgerTransaction]:
        """Find spend debits that never produced a record and were never refunded.

        A debit is orphaned when it is older than `older_than`, has no entry
        (entry fees) or redemption (rewards) carrying its reference, and no
        refund credit carrying `refund:<reference>` exists.
        """
        refund = aliased(LedgerTransactionModel)
        debit = LedgerTransactionModel

        has_entry = exists().where(EntryModel.debit_reference == debit.reference)
        has_redemption = exists().where(RedemptionModel.debit_reference == debit.reference)
        has_refund = exists().where(
            refund.reference == literal(REFUND_PREFIX).concat(debit.reference)
        )

        async with self.get_session() as session:
            result = await session.execute(
                select(debit)
                .where(
                    debit.kind == TransactionKind.DEBIT.value,
                    debit.reference.is_not(None),
                    debit.created_at < older_than,
                    or_(
                        and_(debit.reason == TransactionReason.ENTRY_FEE.value, ~has_entry),
                        and_(debit.reason == TransactionReason.REWARD.value, ~has_redemption),
                    ),
                    ~has_refund,
                )
                .order_by(debit.created_at, debit.id)
                .limit(limit)
            )
            return [self._convert_db_transaction_to_core_entity(t) for t in result.scalars().all()]

    async def find_unsettled_cancellations(self, limit: int = 100) -> List[Entry]:
        """Find active entries whose cancellation credit is already in the journal.

        These were refunded but never moved to REFUNDED.
        """
        cancel_credit = exists().where(
            LedgerTransactionModel.kind == TransactionKind.CREDIT.value,
            LedgerTransactionModel.reference == literal(CANCEL_PREFIX).concat(EntryModel.id),
        )

        async with self.get_session() as session:
            result = await session.execute(
                select(EntryModel)
                .where(EntryModel.status == EntryStatus.ACTIVE.value, cancel_credit)
                .order_by(EntryModel.created_at, EntryModel.id)
                .limit(limit)
            )
            return [self._convert_db_entry_to_core_entity(e) for e in result.scalars().all()]
