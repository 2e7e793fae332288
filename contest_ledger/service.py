"""Main service class for Contest Ledger."""

import asyncio
import logging
from typing import List, Optional, Sequence

from contest_ledger.config import Config
from contest_ledger.adapters.catalog import (
    CatalogProvider,
    HttpCatalogProvider,
    StaticCatalogProvider,
    snapshot_slots,
)
from contest_ledger.adapters.database.manager import DatabaseManager
from contest_ledger.adapters.database.ledger import LedgerStore
from contest_ledger.adapters.messaging import NotificationSink, create_notification_sink
from contest_ledger.adapters.observability import initialize_metrics, shutdown_metrics
from contest_ledger.application.compensation import Compensator
from contest_ledger.application.entry_service import EntryService
from contest_ledger.application.recovery_service import CompensationRecoveryService
from contest_ledger.application.redemption_service import RedemptionService
from contest_ledger.core.entities import CatalogPlayer
from contest_ledger.core.results import EntryOutcome


logger = logging.getLogger(__name__)


class ContestLedgerService:
    """Owns the infrastructure components and the application services.

    Components are wired directly; sink and catalog may be injected for tests.
    """

    def __init__(
        self,
        config: Config,
        notifier: Optional[NotificationSink] = None,
        catalog: Optional[CatalogProvider] = None,
    ):
        """Initialize the Contest Ledger service.

        Args:
            config: Service configuration
            notifier: Optional notification sink. If not provided, one is
                created from config.
            catalog: Optional catalog provider. If not provided, the HTTP
                catalog is used when CATALOG_API_URL is set, else the static pool.
        """
        self.config = config
        self._running = False
        self._initialized = False

        self._provided_notifier = notifier
        self._provided_catalog = catalog

        # Infrastructure components
        self.database: Optional[DatabaseManager] = None
        self.ledger: Optional[LedgerStore] = None
        self.notifier: Optional[NotificationSink] = None
        self.catalog: Optional[CatalogProvider] = None
        self._metrics_provider = None

        # Application services
        self.entries: Optional[EntryService] = None
        self.redemptions: Optional[RedemptionService] = None
        self.recovery: Optional[CompensationRecoveryService] = None

    async def initialize(self) -> None:
        """Initialize all infrastructure components and services."""
        if self._initialized:
            return

        logger.info("Initializing infrastructure components")

        self._metrics_provider = initialize_metrics(self.config)

        self.database = DatabaseManager(self.config)
        await self.database.initialize()
        if self.database.is_sqlite:
            # SQLite databases are local; Postgres schemas come from alembic
            await self.database.create_tables()

        self.ledger = LedgerStore(
            self.database, default_initial_balance=self.config.default_initial_balance
        )

        self.notifier = self._provided_notifier or create_notification_sink(self.config)
        await self.notifier.initialize()

        if self._provided_catalog is not None:
            self.catalog = self._provided_catalog
        elif self.config.catalog_api_url:
            self.catalog = HttpCatalogProvider(
                self.config.catalog_api_url,
                request_timeout=self.config.catalog_api_timeout_seconds,
            )
            logger.info(f"Using catalog API at: {self.config.catalog_api_url}")
        else:
            self.catalog = StaticCatalogProvider()
            logger.info("Using static player catalog")

        compensator = Compensator(
            self.ledger,
            max_attempts=self.config.compensation_max_attempts,
            initial_backoff_seconds=self.config.compensation_initial_backoff_seconds,
            max_backoff_seconds=self.config.compensation_max_backoff_seconds,
        )
        self.entries = EntryService(
            self.database, self.ledger, self.notifier, self.config, compensator=compensator
        )
        self.redemptions = RedemptionService(
            self.database, self.ledger, self.notifier, self.config, compensator
        )
        self.recovery = CompensationRecoveryService(self.database, compensator, self.config)

        self._initialized = True
        logger.info("Infrastructure initialization completed")

    async def start(self) -> None:
        """Start the service and block until stopped."""
        logger.info("Starting Contest Ledger service")
        self._running = True

        try:
            await self.initialize()

            if self.config.recovery_enabled:
                await self.recovery.start()

            # Health check loop for the notification sink
            while self._running:
                is_healthy = getattr(self.notifier, "is_healthy", None)
                if is_healthy is not None and not await is_healthy():
                    logger.warning("Notification sink unhealthy, attempting to reconnect...")
                    try:
                        await self.notifier.close()
                        await self.notifier.initialize()
                        logger.info("Notification sink reconnection successful")
                    except Exception as e:
                        logger.error(f"Failed to reconnect notification sink: {e}")

                await asyncio.sleep(min(self.config.recovery_interval_seconds, 30))

        except Exception:
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop the service, letting in-flight entries reach a terminal state."""
        logger.info("Stopping Contest Ledger service")
        self._running = False

        if self.recovery:
            try:
                await self.recovery.stop()
            except Exception as e:
                logger.error(f"Error stopping recovery loop: {e}")

        if self.entries:
            await self.entries.drain()
        if self.redemptions:
            await self.redemptions.drain()

        await self._cleanup_infrastructure()
        self._initialized = False

        logger.info("Contest Ledger service stopped")

    async def list_players(self, match_ref: str) -> List[CatalogPlayer]:
        """Players selectable for a match, from the catalog provider."""
        return await self.catalog.list_players(match_ref)

    async def submit_selection(
        self,
        account_id: str,
        match_ref: str,
        team_name: str,
        player_ids: Sequence[str],
        idempotency_key: Optional[str] = None,
    ) -> EntryOutcome:
        """Submit an entry from selected player ids, priced from the catalog.

        Raises:
            CatalogError: If the catalog cannot be read
            UnknownPlayerError: If a selected id is not in the match's catalog
        """
        players = await self.catalog.list_players(match_ref)
        slots = snapshot_slots(players, player_ids, match_ref=match_ref)
        return await self.entries.submit_entry(
            account_id, match_ref, team_name, slots, idempotency_key=idempotency_key
        )

    async def _cleanup_infrastructure(self) -> None:
        """Clean up all infrastructure components."""
        logger.info("Cleaning up infrastructure components")

        close_catalog = getattr(self.catalog, "close", None)
        if close_catalog is not None and self._provided_catalog is None:
            try:
                await close_catalog()
            except Exception as e:
                logger.error(f"Error closing catalog client: {e}")

        if self.notifier:
            try:
                await self.notifier.close()
            except Exception as e:
                logger.error(f"Error closing notification sink: {e}")

        if self.database:
            try:
                await self.database.close()
            except Exception as e:
                logger.error(f"Error during database disconnect: {e}")

        shutdown_metrics()

        logger.info("Infrastructure cleanup completed")
