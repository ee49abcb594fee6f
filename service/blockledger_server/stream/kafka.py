"""
Kafka/Redpanda notification relay.

The relay forwards committed notifications from the ledger's own stream to a
Kafka topic so that external consumers (explorers, analytics) can follow the
ledger without polling the RPC surface. It works with:
- Apache Kafka
- Amazon MSK
- Redpanda
- Any Kafka API-compatible system

Invariants:
    - Producer uses acks=all for strongest durability
    - Idempotent producer prevents duplicate writes on retry
    - All notifications share one message key, so they land in one partition in order
    - The relay position only advances after the broker acknowledged the message

How to change safely:
    - Test with actual Kafka/Redpanda cluster before deploying
    - Keep the key constant; per-record keys break ordering across partitions
    - Consumers must tolerate a repeat after a relay restart (at-least-once)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError, KafkaError, KafkaTimeoutError

from ..ledger.records import Notification
from ..ledger.store import LedgerStore
from .base import StreamConnectionError, StreamError, StreamTimeoutError
from .store import StoreNotificationStream

logger = logging.getLogger(__name__)

MESSAGE_KEY = b"blockledger"
RELAY_NAME = "kafka"


def encode_notification(notification: Notification) -> bytes:
    """Serialize a notification as a Kafka message value."""
    return json.dumps(notification.to_dict(), separators=(",", ":")).encode("utf-8")


class KafkaNotificationRelay:
    """Relays ledger notifications to a Kafka topic.

    Durability configuration:
        - acks='all': Wait for all in-sync replicas
        - enable_idempotence=True: Prevent duplicates on retry
        - send_and_wait: One message in flight, so the topic order is the ledger order

    Example:
        >>> relay = KafkaNotificationRelay(config, store, stream)
        >>> await relay.connect()
        >>> task = asyncio.create_task(relay.run())
    """

    def __init__(
        self,
        config: Any,
        store: LedgerStore,
        stream: StoreNotificationStream,
        name: str = RELAY_NAME,
    ) -> None:
        """Initialize the relay.

        Args:
            config: KafkaConfig instance with connection settings
            store: Ledger store (holds the relay position)
            stream: Notification stream to forward
            name: Relay name used for the stored position
        """
        self.config = config
        self.store = store
        self.stream = stream
        self.name = name
        self._producer: AIOKafkaProducer | None = None
        self._connected = False
        self._running = False
        self._relayed = 0

    @property
    def is_connected(self) -> bool:
        """Whether connected to Kafka."""
        return self._connected and self._producer is not None

    @property
    def relayed_count(self) -> int:
        return self._relayed

    def _producer_config(self) -> dict[str, Any]:
        producer_config: dict[str, Any] = {
            "bootstrap_servers": self.config.brokers,
            "acks": self.config.acks,
            "enable_idempotence": self.config.enable_idempotence,
            "linger_ms": 0,
            "request_timeout_ms": 30000,
            "retry_backoff_ms": 100,
        }

        if self.config.security_protocol != "PLAINTEXT":
            producer_config["security_protocol"] = self.config.security_protocol

        if self.config.sasl_mechanism:
            producer_config["sasl_mechanism"] = self.config.sasl_mechanism
            producer_config["sasl_plain_username"] = self.config.sasl_username
            producer_config["sasl_plain_password"] = self.config.sasl_password

        if self.config.ssl_cafile:
            producer_config["ssl_cafile"] = self.config.ssl_cafile

        return producer_config

    async def connect(self) -> None:
        """Connect to the Kafka cluster.

        Raises:
            StreamConnectionError: If connection fails
        """
        if self._connected:
            return

        try:
            self._producer = AIOKafkaProducer(**self._producer_config())
            await self._producer.start()
            self._connected = True

            logger.info(
                "Connected to Kafka",
                extra={
                    "brokers": self.config.brokers,
                    "topic": self.config.topic,
                    "acks": self.config.acks,
                    "idempotent": self.config.enable_idempotence,
                },
            )

        except KafkaError as e:
            self._connected = False
            self._producer = None
            raise StreamConnectionError(f"Failed to connect to Kafka: {e}") from e

    async def close(self) -> None:
        """Stop relaying and flush the producer."""
        self._running = False

        if self._producer:
            try:
                await self._producer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing producer: {e}")
            self._producer = None

        self._connected = False
        logger.info("Kafka relay closed", extra={"relayed": self._relayed})

    async def publish(self, notification: Notification) -> None:
        """Send one notification and wait for the broker acknowledgment.

        Raises:
            StreamConnectionError: If not connected or the connection was lost
            StreamTimeoutError: If the send times out
            StreamError: For other Kafka errors
        """
        if not self._producer:
            raise StreamConnectionError("Not connected to Kafka")

        try:
            metadata = await self._producer.send_and_wait(
                self.config.topic,
                value=encode_notification(notification),
                key=MESSAGE_KEY,
                headers=[("tx_id", notification.tx_id.encode("utf-8"))],
            )
        except KafkaTimeoutError as e:
            raise StreamTimeoutError(f"Kafka send timed out: {e}") from e
        except KafkaConnectionError as e:
            self._connected = False
            raise StreamConnectionError(f"Kafka connection lost: {e}") from e
        except KafkaError as e:
            raise StreamError(f"Kafka send failed: {e}") from e

        logger.debug(
            "Notification relayed",
            extra={
                "seq": notification.seq,
                "id": notification.id,
                "partition": metadata.partition,
                "offset": metadata.offset,
            },
        )

    async def _publish_until_acked(self, notification: Notification) -> None:
        delay = self.config.retry_backoff_ms / 1000.0
        max_delay = self.config.max_backoff_ms / 1000.0

        while True:
            try:
                await self.publish(notification)
                return
            except StreamError as e:
                logger.warning(
                    f"Relay publish failed, retrying in {delay:.2f}s: {e}",
                    extra={"seq": notification.seq},
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)
                if not self.is_connected:
                    await self._reconnect()

    async def _reconnect(self) -> None:
        if self._producer:
            try:
                await self._producer.stop()
            except KafkaError as e:
                logger.debug(f"Error stopping stale producer: {e}")
            self._producer = None
        self._connected = False

        try:
            await self.connect()
        except StreamConnectionError as e:
            logger.warning(f"Kafka reconnect failed: {e}")

    async def run(self) -> None:
        """Forward notifications until the stream closes or the task is cancelled.

        Resumes from the stored relay position, so a restart re-sends at most
        the one notification that was in flight.
        """
        self._running = True
        position = await self.store.get_relay_position(self.name)

        logger.info("Kafka relay started", extra={"start": position, "topic": self.config.topic})

        try:
            async for notification in self.stream.subscribe(start=position):
                if not self._running:
                    break
                await self._publish_until_acked(notification)
                await self.store.set_relay_position(self.name, notification.seq + 1)
                self._relayed += 1
        finally:
            self._running = False
            logger.info("Kafka relay stopped", extra={"relayed": self._relayed})
