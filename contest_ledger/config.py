"""Configuration management for the Contest Ledger service."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from decouple import Choices
from decouple import config


class Environment(Enum):
    """Supported deployment environments."""

    DEVELOPMENT = "development"
    CI = "CI"
    PRODUCTION = "production"


@dataclass
class Config:
    """Configuration for the Contest Ledger service."""

    # Required fields
    database_url: str
    database_name: str

    # Environment configuration
    environment: Environment = Environment.DEVELOPMENT

    # Contest rules
    entry_fee: int = 1
    budget_cap: int = 100
    roster_size: int = 11
    default_initial_balance: int = 100

    # Entry persistence and compensation
    persistence_timeout_seconds: float = 10.0
    compensation_max_attempts: int = 10
    compensation_initial_backoff_seconds: float = 0.5
    compensation_max_backoff_seconds: float = 30.0

    # Compensation recovery loop
    recovery_enabled: bool = True
    recovery_interval_seconds: int = 60
    recovery_grace_seconds: int = 300

    # Catalog provider
    catalog_api_url: Optional[str] = None
    catalog_api_timeout_seconds: int = 10

    # Message bus configuration (NATS)
    notifications_enabled: bool = True
    message_bus_url: str = "nats://localhost:4222"
    message_bus_timeout_seconds: int = 10
    message_bus_max_reconnect_attempts: int = 10
    message_bus_reconnect_delay_seconds: int = 2
    entry_events_subject: str = "contest.entries"
    entry_events_stream: str = "contest_entries"
    jetstream_max_age_hours: int = 24
    jetstream_max_msgs: int = 1000000
    jetstream_storage: str = "file"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"

    # OpenTelemetry configuration
    otel_enabled: bool = False
    otel_service_name: str = "contest-ledger"
    otel_exporter_type: str = "none"
    otel_otlp_endpoint: str = "http://localhost:4317"
    otel_export_interval_millis: int = 60000
    otel_export_timeout_millis: int = 30000

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        # Helper function to simplify config calls
        def get_config(key: str, default=None, cast=None):
            if default is not None:
                if cast is not None:
                    return config(key, default=default, cast=cast)
                else:
                    return config(key, default=default)
            else:
                return config(key)

        env = Environment(
            get_config("ENVIRONMENT", "development", Choices(["development", "CI", "production"]))
        )

        # Environment-specific defaults
        default_message_bus = "nats://nats:4222" if env == Environment.PRODUCTION else "nats://localhost:4222"

        return cls(
            # Required
            database_url=get_config("DATABASE_URL"),
            database_name=get_config("DATABASE_NAME", "contest_ledger_db"),
            # Environment
            environment=env,
            # Contest rules
            entry_fee=get_config("ENTRY_FEE", 1, int),
            budget_cap=get_config("BUDGET_CAP", 100, int),
            roster_size=get_config("ROSTER_SIZE", 11, int),
            default_initial_balance=get_config("DEFAULT_INITIAL_BALANCE", 100, int),
            # Entry persistence and compensation
            persistence_timeout_seconds=get_config("PERSISTENCE_TIMEOUT_SECONDS", 10.0, float),
            compensation_max_attempts=get_config("COMPENSATION_MAX_ATTEMPTS", 10, int),
            compensation_initial_backoff_seconds=get_config(
                "COMPENSATION_INITIAL_BACKOFF_SECONDS", 0.5, float
            ),
            compensation_max_backoff_seconds=get_config("COMPENSATION_MAX_BACKOFF_SECONDS", 30.0, float),
            # Recovery loop
            recovery_enabled=get_config("RECOVERY_ENABLED", True, bool),
            recovery_interval_seconds=get_config("RECOVERY_INTERVAL_SECONDS", 60, int),
            recovery_grace_seconds=get_config("RECOVERY_GRACE_SECONDS", 300, int),
            # Catalog
            catalog_api_url=get_config("CATALOG_API_URL", "") or None,
            catalog_api_timeout_seconds=get_config("CATALOG_API_TIMEOUT_SECONDS", 10, int),
            # Message bus
            notifications_enabled=get_config("NOTIFICATIONS_ENABLED", True, bool),
            message_bus_url=get_config("MESSAGE_BUS_URL", default_message_bus),
            message_bus_timeout_seconds=get_config("MESSAGE_BUS_TIMEOUT_SECONDS", 10, int),
            message_bus_max_reconnect_attempts=get_config("MESSAGE_BUS_MAX_RECONNECT_ATTEMPTS", 10, int),
            message_bus_reconnect_delay_seconds=get_config("MESSAGE_BUS_RECONNECT_DELAY_SECONDS", 2, int),
            entry_events_subject=get_config("ENTRY_EVENTS_SUBJECT", "contest.entries"),
            entry_events_stream=get_config("ENTRY_EVENTS_STREAM", "contest_entries"),
            jetstream_max_age_hours=get_config("JETSTREAM_MAX_AGE_HOURS", 24, int),
            jetstream_max_msgs=get_config("JETSTREAM_MAX_MSGS", 1000000, int),
            jetstream_storage=get_config("JETSTREAM_STORAGE", "file"),
            # Logging
            log_level=get_config(
                "LOG_LEVEL", "INFO", Choices(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
            ),
            log_format=get_config("LOG_FORMAT", "json", Choices(["json", "text"])),
            # OpenTelemetry
            otel_enabled=get_config("OTEL_ENABLED", False, bool),
            otel_service_name=get_config("OTEL_SERVICE_NAME", "contest-ledger"),
            otel_exporter_type=get_config(
                "OTEL_EXPORTER_TYPE", "none", Choices(["console", "otlp", "none"])
            ),
            otel_otlp_endpoint=get_config("OTEL_OTLP_ENDPOINT", "http://localhost:4317"),
            otel_export_interval_millis=get_config("OTEL_EXPORT_INTERVAL_MILLIS", 60000, int),
            otel_export_timeout_millis=get_config("OTEL_EXPORT_TIMEOUT_MILLIS", 30000, int),
        )

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    def is_test(self) -> bool:
        """Check if running in test environment."""
        return self.environment == Environment.CI

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def get_database_url(self) -> str:
        """Construct the SQLAlchemy async URL for the configured database.

        PostgreSQL URLs get the asyncpg driver and the configured database
        name. SQLite URLs get the aiosqlite driver and keep their file path.
        """
        from urllib.parse import urlparse, urlunparse

        parsed = urlparse(self.database_url)
        scheme = parsed.scheme

        if scheme.startswith("sqlite"):
            if scheme == "sqlite":
                return "sqlite+aiosqlite" + self.database_url[len("sqlite"):]
            return self.database_url

        # Ensure we have the asyncpg driver specified
        if scheme in ("postgres", "postgresql"):
            scheme = "postgresql+asyncpg"

        # The path includes the leading '/', so we prepend it to database_name
        path = f"/{self.database_name}"

        return urlunparse(
            (scheme, parsed.netloc, path, parsed.params, parsed.query, parsed.fragment)
        )
