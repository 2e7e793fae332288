"""OpenTelemetry metrics provider for contest-ledger."""

import logging
from typing import Optional

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

from ...config import Config
from .constants import *

logger = logging.getLogger(__name__)


class MetricsProvider:
    """Manages OpenTelemetry metrics for the contest-ledger service."""

    def __init__(self, config: Config):
        """Initialize the metrics provider.

        Args:
            config: Application configuration
        """
        self.config = config
        self._meter_provider: Optional[MeterProvider] = None
        self._meter: Optional[metrics.Meter] = None
        self._initialized = False

        # Metric instruments - initialized in setup()
        self._entries_counter = None
        self._entry_duration_histogram = None
        self._entries_cancelled_counter = None

        self._compensations_counter = None
        self._compensation_failures_counter = None
        self._recovered_debits_counter = None

        self._redemptions_counter = None

        self._notifications_published_counter = None
        self._notification_failures_counter = None

        self._recovery_iterations_counter = None
        self._recovery_errors_counter = None

    def initialize(self) -> None:
        """Initialize the OpenTelemetry metrics provider."""
        if self._initialized:
            logger.warning("Metrics provider already initialized")
            return

        if not self.config.otel_enabled:
            logger.info("Entry metrics disabled by configuration")
            self._initialized = True
            return

        try:
            exporter = self._build_exporter()
            if exporter is None:
                self._initialized = True
                return

            self._meter_provider = MeterProvider(
                resource=Resource.create({
                    SERVICE_NAME: self.config.otel_service_name,
                    "deployment.environment": self.config.environment.value,
                }),
                metric_readers=[
                    PeriodicExportingMetricReader(
                        exporter=exporter,
                        export_interval_millis=self.config.otel_export_interval_millis,
                        export_timeout_millis=self.config.otel_export_timeout_millis,
                    )
                ],
            )
            metrics.set_meter_provider(self._meter_provider)
            self._meter = self._meter_provider.get_meter("contest_ledger")

            self._create_instruments()
            self._initialized = True
            logger.info(f"Entry metrics exporting via {self.config.otel_exporter_type}")

        except Exception as e:
            logger.error(f"Could not set up entry metrics: {e}")
            self._initialized = False
            raise

    def _build_exporter(self):
        """Pick the metric exporter named by OTEL_EXPORTER_TYPE, or None for no export."""
        exporter_type = self.config.otel_exporter_type
        if exporter_type == "console":
            return ConsoleMetricExporter()
        if exporter_type == "otlp":
            logger.info(f"OTLP collector endpoint: {self.config.otel_otlp_endpoint}")
            # Collector runs beside the service without TLS
            return OTLPMetricExporter(endpoint=self.config.otel_otlp_endpoint, insecure=True)
        logger.info("Metric export turned off (exporter_type='none')")
        return None

    def _create_instruments(self) -> None:
        """Create all metric instruments."""
        if not self._meter:
            return

        # Entry metrics
        self._entries_counter = self._meter.create_counter(
            name=ENTRIES_TOTAL,
            description="Total number of entry submissions by terminal outcome",
            unit="1",
        )

        self._entry_duration_histogram = self._meter.create_histogram(
            name=ENTRY_DURATION,
            description="Duration of entry submissions in seconds",
            unit="s",
        )

        self._entries_cancelled_counter = self._meter.create_counter(
            name=ENTRIES_CANCELLED,
            description="Total number of cancelled and refunded entries",
            unit="1",
        )

        # Ledger metrics
        self._compensations_counter = self._meter.create_counter(
            name=COMPENSATIONS_TOTAL,
            description="Total number of confirmed compensating credits",
            unit="1",
        )

        self._compensation_failures_counter = self._meter.create_counter(
            name=COMPENSATION_FAILURES,
            description="Total number of compensations that exhausted their retries",
            unit="1",
        )

        self._recovered_debits_counter = self._meter.create_counter(
            name=RECOVERED_DEBITS,
            description="Total number of orphaned debits refunded by the recovery loop",
            unit="1",
        )

        # Redemption metrics
        self._redemptions_counter = self._meter.create_counter(
            name=REDEMPTIONS_TOTAL,
            description="Total number of reward redemptions by terminal outcome",
            unit="1",
        )

        # Notification metrics
        self._notifications_published_counter = self._meter.create_counter(
            name=NOTIFICATIONS_PUBLISHED,
            description="Total number of outcome notifications published",
            unit="1",
        )

        self._notification_failures_counter = self._meter.create_counter(
            name=NOTIFICATION_FAILURES,
            description="Total number of failed outcome notifications",
            unit="1",
        )

        # Recovery loop metrics
        self._recovery_iterations_counter = self._meter.create_counter(
            name=RECOVERY_ITERATIONS,
            description="Total number of recovery loop iterations",
            unit="1",
        )

        self._recovery_errors_counter = self._meter.create_counter(
            name=RECOVERY_ERRORS,
            description="Total number of recovery loop errors",
            unit="1",
        )

    def shutdown(self) -> None:
        """Shutdown the metrics provider and flush any pending metrics."""
        if self._meter_provider:
            try:
                self._meter_provider.shutdown()
                logger.info("Metrics provider shut down")
            except Exception as e:
                logger.error(f"Error shutting down metrics provider: {e}")

    @property
    def _active(self) -> bool:
        return self._initialized and self.config.otel_enabled

    # Entry metrics

    def record_entry_outcome(self, status: str, reason: Optional[str] = None, duration: Optional[float] = None) -> None:
        """Record the terminal outcome of an entry submission."""
        if not self._active:
            return

        labels = {LABEL_STATUS: status}
        if reason:
            labels[LABEL_REASON] = reason

        if self._entries_counter:
            self._entries_counter.add(1, labels)

        if duration is not None and self._entry_duration_histogram:
            self._entry_duration_histogram.record(duration, {LABEL_STATUS: status})

    def record_entry_cancelled(self) -> None:
        if not self._active:
            return

        if self._entries_cancelled_counter:
            self._entries_cancelled_counter.add(1)

    # Ledger metrics

    def record_compensation(self, source: str, success: bool = True) -> None:
        """Record a compensation that was confirmed or given up on."""
        if not self._active:
            return

        labels = {LABEL_SOURCE: source}

        if success and self._compensations_counter:
            self._compensations_counter.add(1, labels)
        elif not success and self._compensation_failures_counter:
            self._compensation_failures_counter.add(1, labels)

    def record_recovered_debits(self, count: int) -> None:
        if not self._active or count <= 0:
            return

        if self._recovered_debits_counter:
            self._recovered_debits_counter.add(count)

    # Redemption metrics

    def record_redemption(self, status: str, reason: Optional[str] = None) -> None:
        if not self._active:
            return

        labels = {LABEL_STATUS: status}
        if reason:
            labels[LABEL_REASON] = reason

        if self._redemptions_counter:
            self._redemptions_counter.add(1, labels)

    # Notification metrics

    def record_notification(self, event_type: str, success: bool = True) -> None:
        """Record a notification publish attempt."""
        if not self._active:
            return

        labels = {LABEL_EVENT_TYPE: event_type}

        if success and self._notifications_published_counter:
            self._notifications_published_counter.add(1, labels)
        elif not success and self._notification_failures_counter:
            self._notification_failures_counter.add(1, labels)

    # Recovery loop metrics

    def record_recovery_iteration(self) -> None:
        if not self._active:
            return

        if self._recovery_iterations_counter:
            self._recovery_iterations_counter.add(1)

    def record_recovery_error(self, error_type: str) -> None:
        if not self._active:
            return

        if self._recovery_errors_counter:
            self._recovery_errors_counter.add(1, {LABEL_ERROR_TYPE: error_type})


# Global metrics provider instance
_metrics_provider: Optional[MetricsProvider] = None


def get_metrics_provider() -> Optional[MetricsProvider]:
    """Get the global metrics provider instance."""
    return _metrics_provider


def initialize_metrics(config: Config) -> MetricsProvider:
    """Initialize the global metrics provider.

    Args:
        config: Application configuration

    Returns:
        The initialized MetricsProvider instance
    """
    global _metrics_provider

    if _metrics_provider is not None:
        logger.warning("Metrics provider already initialized")
        return _metrics_provider

    _metrics_provider = MetricsProvider(config)
    _metrics_provider.initialize()

    return _metrics_provider


def shutdown_metrics() -> None:
    """Shutdown the global metrics provider."""
    global _metrics_provider

    if _metrics_provider:
        _metrics_provider.shutdown()
        _metrics_provider = None
