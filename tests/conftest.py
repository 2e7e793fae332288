"""Pytest fixtures for Contest Ledger tests.

Every test gets its own SQLite database file, created from the ORM metadata.
"""

import dataclasses

import pytest
import pytest_asyncio

from contest_ledger.config import Config
from contest_ledger.adapters.database.manager import DatabaseManager
from contest_ledger.adapters.database.ledger import LedgerStore
from contest_ledger.adapters.messaging import InMemoryNotificationSink
from contest_ledger.application.compensation import Compensator
from contest_ledger.application.entry_service import EntryService
from contest_ledger.application.recovery_service import CompensationRecoveryService
from contest_ledger.application.redemption_service import RedemptionService


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Create test configuration backed by a temporary SQLite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'ledger.db'}")
    monkeypatch.setenv("ENVIRONMENT", "CI")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")
    monkeypatch.setenv("OTEL_ENABLED", "false")
    monkeypatch.setenv("ENTRY_FEE", "1")
    monkeypatch.setenv("BUDGET_CAP", "100")
    monkeypatch.setenv("DEFAULT_INITIAL_BALANCE", "100")
    monkeypatch.setenv("PERSISTENCE_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("COMPENSATION_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("COMPENSATION_INITIAL_BACKOFF_SECONDS", "0.01")
    monkeypatch.setenv("COMPENSATION_MAX_BACKOFF_SECONDS", "0.05")
    monkeypatch.setenv("RECOVERY_INTERVAL_SECONDS", "1")
    monkeypatch.setenv("RECOVERY_GRACE_SECONDS", "0")
    monkeypatch.delenv("CATALOG_API_URL", raising=False)

    return Config.from_env()


@pytest_asyncio.fixture
async def db_manager(test_config):
    """Initialized database manager with all tables created."""
    manager = DatabaseManager(test_config)
    await manager.initialize()
    await manager.create_tables()

    yield manager

    await manager.close()


@pytest.fixture
def ledger(db_manager, test_config):
    return LedgerStore(db_manager, default_initial_balance=test_config.default_initial_balance)


@pytest.fixture
def notification_sink():
    return InMemoryNotificationSink()


@pytest.fixture
def compensator(ledger, test_config):
    return Compensator(
        ledger,
        max_attempts=test_config.compensation_max_attempts,
        initial_backoff_seconds=test_config.compensation_initial_backoff_seconds,
        max_backoff_seconds=test_config.compensation_max_backoff_seconds,
    )


@pytest_asyncio.fixture
async def entry_service(db_manager, ledger, notification_sink, test_config, compensator):
    service = EntryService(db_manager, ledger, notification_sink, test_config, compensator=compensator)
    yield service
    await service.drain()


@pytest_asyncio.fixture
async def redemption_service(db_manager, ledger, notification_sink, test_config, compensator):
    service = RedemptionService(db_manager, ledger, notification_sink, test_config, compensator)
    yield service
    await service.drain()


@pytest.fixture
def recovery_service(db_manager, compensator, test_config):
    return CompensationRecoveryService(db_manager, compensator, test_config)


@pytest_asyncio.fixture
async def funded_account(ledger):
    """An account provisioned with the default 100 tokens."""
    account = await ledger.open_account("acct-funded")
    return account.id


def with_overrides(config: Config, **overrides) -> Config:
    """Copy of a config with some fields replaced."""
    return dataclasses.replace(config, **overrides)
