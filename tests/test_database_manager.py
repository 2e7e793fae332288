"""Integration tests for DatabaseManager."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from contest_ledger.adapters.database.manager import DatabaseManager
from contest_ledger.core.entities import Roster
from contest_ledger.core.enums import EntryStatus
from contest_ledger.core.errors import DuplicateEntryError, PersistenceError
from tests.factories import SlotFactory


def make_roster(account_id: str, match_ref: str = "match-1") -> Roster:
    return Roster(
        account_id=account_id,
        match_ref=match_ref,
        team_name="Team",
        slots=SlotFactory.create_roster(),
    )


@pytest.mark.integration
class TestDatabaseManager:
    """Test suite for DatabaseManager integration tests."""

    @pytest.mark.asyncio
    async def test_database_manager_initialization(self, test_config):
        """Test database manager initialization and cleanup."""
        manager = DatabaseManager(test_config)

        with pytest.raises(RuntimeError, match="not initialized"):
            async with manager.get_session():
                pass

        await manager.initialize()

        async with manager.get_session() as session:
            assert isinstance(session, AsyncSession)

        await manager.close()

        with pytest.raises(RuntimeError, match="not initialized"):
            async with manager.get_session():
                pass

    @pytest.mark.asyncio
    async def test_double_initialization_warning(self, test_config, caplog):
        """Test that double initialization logs a warning."""
        manager = DatabaseManager(test_config)

        await manager.initialize()
        await manager.initialize()

        assert "already initialized" in caplog.text

        await manager.close()

    @pytest.mark.asyncio
    async def test_session_context_manager(self, db_manager: DatabaseManager):
        async with db_manager.get_session() as session:
            result = await session.execute(text("SELECT 1"))
            assert result.scalar() == 1

    @pytest.mark.asyncio
    async def test_session_rollback_on_exception(self, db_manager: DatabaseManager, ledger):
        """Test that session rolls back on exception."""
        with pytest.raises(ValueError):
            async with db_manager.get_session() as session:
                await session.execute(
                    text("INSERT INTO accounts (id, balance, created_at, updated_at) "
                         "VALUES ('rolled-back', 5, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)")
                )
                raise ValueError("Test exception")

        assert await ledger.get_account("rolled-back") is None


@pytest.mark.integration
class TestEntryPersistence:
    """Test suite for entry and roster persistence."""

    @pytest.mark.asyncio
    async def test_persist_entry_with_roster(self, db_manager: DatabaseManager, funded_account):
        entry = await db_manager.persist_entry(
            entry_id="entry-1",
            roster=make_roster(funded_account),
            amount_charged=1,
            idempotency_key="key-1",
            debit_reference="entry:entry-1",
        )

        assert entry.id == "entry-1"
        assert entry.status == EntryStatus.ACTIVE
        assert entry.roster.id is not None

        loaded = await db_manager.get_entry("entry-1")
        assert len(loaded.roster.slots) == 11
        assert loaded.roster.player_ids == [f"player-{i}" for i in range(1, 12)]
        assert (await db_manager.get_entry_by_debit_reference("entry:entry-1")).id == "entry-1"

    @pytest.mark.asyncio
    async def test_second_active_entry_for_match_is_duplicate(self, db_manager: DatabaseManager, funded_account):
        await db_manager.persist_entry("entry-1", make_roster(funded_account), 1, "key-1", "entry:entry-1")

        with pytest.raises(DuplicateEntryError):
            await db_manager.persist_entry("entry-2", make_roster(funded_account), 1, "key-2", "entry:entry-2")

        # Nothing from the failed transaction remains
        async with db_manager.get_session() as session:
            rosters = (await session.execute(text("SELECT COUNT(*) FROM rosters"))).scalar()
        assert rosters == 1

    @pytest.mark.asyncio
    async def test_reused_debit_reference_is_persistence_error(self, db_manager: DatabaseManager, funded_account):
        await db_manager.persist_entry("entry-1", make_roster(funded_account), 1, "key-1", "entry:same")

        with pytest.raises(PersistenceError) as exc_info:
            await db_manager.persist_entry(
                "entry-2", make_roster(funded_account, "match-2"), 1, "key-2", "entry:same"
            )
        assert not isinstance(exc_info.value, DuplicateEntryError)

    @pytest.mark.asyncio
    async def test_refunded_entry_frees_the_match(self, db_manager: DatabaseManager, funded_account):
        await db_manager.persist_entry("entry-1", make_roster(funded_account), 1, "key-1", "entry:entry-1")

        assert await db_manager.mark_entry_refunded("entry-1") is True
        assert await db_manager.mark_entry_refunded("entry-1") is False
        assert await db_manager.get_active_entry_for_match(funded_account, "match-1") is None

        await db_manager.persist_entry("entry-2", make_roster(funded_account), 1, "key-1", "entry:entry-2")
        entries = await db_manager.list_entries(funded_account)
        assert [e.status for e in entries] == [EntryStatus.REFUNDED, EntryStatus.ACTIVE]
        assert len(await db_manager.list_entries(funded_account, include_refunded=False)) == 1


@pytest.mark.integration
class TestOrphanedDebits:
    """Test suite for find_orphaned_debits."""

    @pytest.mark.asyncio
    async def test_only_unmatched_unrefunded_spend_debits(self, db_manager: DatabaseManager, ledger, funded_account):
        await ledger.try_deduct(funded_account, 1, reference="entry:orphan")
        await ledger.try_deduct(funded_account, 1, reference="entry:kept")
        await ledger.try_deduct(funded_account, 1, reference="entry:refunded")
        await ledger.credit(funded_account, 1, reference="refund:entry:refunded")
        await db_manager.persist_entry("kept", make_roster(funded_account), 1, "key", "entry:kept")

        orphans = await db_manager.find_orphaned_debits(older_than=datetime.utcnow() + timedelta(seconds=1))

        assert [o.reference for o in orphans] == ["entry:orphan"]

    @pytest.mark.asyncio
    async def test_respects_cutoff(self, db_manager: DatabaseManager, ledger, funded_account):
        await ledger.try_deduct(funded_account, 1, reference="entry:orphan")

        assert await db_manager.find_orphaned_debits(older_than=datetime.utcnow() - timedelta(minutes=1)) == []
