"""Notification sinks for terminal entry outcomes."""

import json
import logging
from typing import List, Optional, Protocol

import nats
from nats.aio.client import Client as NATSClient
from nats.js import JetStreamContext
import nats.js.errors

from ...config import Config
from ...core.errors import NotificationError
from ...core.events import EntryOutcomeEvent

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Receives the outcome of every entry and redemption request."""

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def publish(self, event: EntryOutcomeEvent) -> None:
        """Deliver an outcome event."""
        ...


class LoggingNotificationSink:
    """Sink that only writes outcomes to the log."""

    async def initialize(self) -> None:
        logger.info("Logging notification sink initialized")

    async def close(self) -> None:
        pass

    async def publish(self, event: EntryOutcomeEvent) -> None:
        logger.info(
            f"Outcome {event.event_type} - Account: {event.account_id}, "
            f"Match: {event.match_ref or 'N/A'}, Status: {event.status}, "
            f"Entry: {event.entry_id or 'N/A'}, Reason: {event.reason or 'N/A'}"
        )


class InMemoryNotificationSink:
    """Sink that keeps every event in memory, for tests and local runs."""

    def __init__(self):
        self.events: List[EntryOutcomeEvent] = []

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def publish(self, event: EntryOutcomeEvent) -> None:
        self.events.append(event)
        logger.debug(f"Captured {event.event_type} event for {event.account_id}")

    def events_for(self, account_id: str) -> List[EntryOutcomeEvent]:
        return [e for e in self.events if e.account_id == account_id]


class NatsNotificationSink:
    """Publishes outcome events as JSON to a NATS JetStream stream."""

    def __init__(self, config: Config):
        """Initialize the sink.

        Args:
            config: Application configuration
        """
        self.config = config
        self._client: Optional[NATSClient] = None
        self._js: Optional[JetStreamContext] = None
        self._connected = False

    async def initialize(self) -> None:
        """Initialize connection to NATS."""
        if self._connected:
            logger.warning("Notification sink already initialized")
            return

        try:
            logger.info(f"Connecting to NATS at {self.config.message_bus_url}")

            self._client = await nats.connect(
                servers=self.config.message_bus_url,
                connect_timeout=self.config.message_bus_timeout_seconds,
                max_reconnect_attempts=self.config.message_bus_max_reconnect_attempts,
                reconnect_time_wait=self.config.message_bus_reconnect_delay_seconds,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
            )

            self._js = self._client.jetstream()
            self._connected = True

            await self._create_stream()

            logger.info("Notification sink initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize notification sink: {e}")
            self._connected = False
            raise

    async def close(self) -> None:
        """Close connection to NATS."""
        if not self._connected or not self._client:
            return

        try:
            logger.info("Closing notification sink")
            await self._client.close()
            self._connected = False
            self._client = None
            self._js = None
            logger.info("Notification sink closed")
        except Exception as e:
            logger.error(f"Error closing notification sink: {e}")

    async def _create_stream(self) -> None:
        """Create the entry events stream if it doesn't exist."""
        if not self._js:
            raise RuntimeError("Not connected to NATS JetStream")

        stream_name = self.config.entry_events_stream
        try:
            await self._js.stream_info(stream_name)
            logger.info(f"JetStream stream '{stream_name}' already exists")
        except nats.js.errors.NotFoundError:
            logger.info(f"Creating JetStream stream '{stream_name}'")
            await self._js.add_stream(
                name=stream_name,
                subjects=[f"{self.config.entry_events_subject}.*"],
                description="Contest entry and redemption outcomes",
                retention="limits",
                max_age=self.config.jetstream_max_age_hours * 60 * 60,  # Convert to seconds
                max_msgs=self.config.jetstream_max_msgs,
                storage=self.config.jetstream_storage,
            )
            logger.info(f"Successfully created JetStream stream '{stream_name}'")

    async def is_healthy(self) -> bool:
        """Check if the sink is connected and can publish."""
        return (
            self._connected and self._client is not None and self._client.is_connected
        )

    def subject_for(self, event: EntryOutcomeEvent) -> str:
        return f"{self.config.entry_events_subject}.{event.status.lower()}"

    async def publish(self, event: EntryOutcomeEvent) -> None:
        """Publish an outcome event as JSON.

        Raises:
            NotificationError: If the sink is not connected to NATS
        """
        if not self._connected or not self._js:
            logger.warning("Cannot publish event - not connected to NATS")
            raise NotificationError(f"Not connected to NATS, dropped {event.event_type} event")

        subject = self.subject_for(event)
        payload = json.dumps(event.to_dict()).encode("utf-8")
        try:
            ack = await self._js.publish(subject, payload)
            logger.info(
                f"Published outcome to NATS - Subject: {subject}, "
                f"Account: {event.account_id}, Size: {len(payload)} bytes, "
                f"Stream: {ack.stream}, Seq: {ack.seq}"
            )
        except Exception as e:
            logger.error(f"Failed to publish outcome to {subject}: {e}")
            raise

    # NATS callbacks

    async def _error_callback(self, error):
        logger.error(f"NATS error: {error}")

    async def _disconnected_callback(self):
        logger.warning("Disconnected from NATS")
        self._connected = False

    async def _reconnected_callback(self):
        logger.info("Reconnected to NATS")
        self._connected = True


def create_notification_sink(config: Config) -> NotificationSink:
    """Build the sink selected by configuration."""
    if config.notifications_enabled:
        return NatsNotificationSink(config)
    return LoggingNotificationSink()
