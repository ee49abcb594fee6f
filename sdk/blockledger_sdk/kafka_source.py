"""
Notification source backed by the ledger's Kafka relay topic.

Lets an indexer follow a ledger without holding a connection to the ledger
host's live endpoint. The relay writes every notification with one message
key, so the topic carries them in ledger order.

Invariants:
    - replay() stops at the end offsets read when it was called
    - Notifications before the requested start position are skipped
    - Kafka failures surface as UnavailableError
    - Messages that do not decode are logged and skipped

How to change safely:
    - The relay may repeat a notification after a restart; skip by seq
    - Never commit offsets; readers are stateless and always start from a seq
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from aiokafka.structs import TopicPartition

from .errors import UnavailableError
from .models import Notification

logger = logging.getLogger(__name__)


def decode_notification(value: bytes) -> Notification:
    """Decode a relay message value."""
    return Notification.from_dict(json.loads(value.decode("utf-8")))


class KafkaNotificationSource:
    """Replays and follows ledger notifications from Kafka.

    Example:
        >>> source = KafkaNotificationSource("localhost:9092", "blockledger-notifications")
        >>> indexer = ReconcilingIndexer(client, stream=source)
    """

    def __init__(
        self,
        brokers: str,
        topic: str,
        *,
        poll_timeout_ms: int = 1000,
        security_protocol: str = "PLAINTEXT",
        sasl_mechanism: str | None = None,
        sasl_username: str | None = None,
        sasl_password: str | None = None,
    ) -> None:
        self.brokers = brokers
        self.topic = topic
        self.poll_timeout_ms = poll_timeout_ms
        self.security_protocol = security_protocol
        self.sasl_mechanism = sasl_mechanism
        self.sasl_username = sasl_username
        self.sasl_password = sasl_password

    def _consumer_config(self) -> dict[str, Any]:
        consumer_config: dict[str, Any] = {
            "bootstrap_servers": self.brokers,
            "group_id": None,
            "enable_auto_commit": False,
            "auto_offset_reset": "earliest",
        }

        if self.security_protocol != "PLAINTEXT":
            consumer_config["security_protocol"] = self.security_protocol

        if self.sasl_mechanism:
            consumer_config["sasl_mechanism"] = self.sasl_mechanism
            consumer_config["sasl_plain_username"] = self.sasl_username
            consumer_config["sasl_plain_password"] = self.sasl_password

        return consumer_config

    def _decode(self, msg: Any) -> Notification | None:
        """Decode one message; an undecodable one is logged and skipped."""
        try:
            return decode_notification(msg.value)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(
                f"Skipping malformed notification message: {e!r}",
                extra={"topic": self.topic, "partition": msg.partition, "offset": msg.offset},
            )
            return None

    async def _open(self) -> tuple[AIOKafkaConsumer, list[TopicPartition]]:
        consumer = AIOKafkaConsumer(**self._consumer_config())
        try:
            await consumer.start()
            await consumer.topics()
            partitions = consumer.partitions_for_topic(self.topic) or set()
            if not partitions:
                raise UnavailableError(f"Kafka topic {self.topic} not found", address=self.brokers)

            tps = [TopicPartition(self.topic, p) for p in sorted(partitions)]
            consumer.assign(tps)
            await consumer.seek_to_beginning(*tps)
        except KafkaError as e:
            await consumer.stop()
            raise UnavailableError(f"Failed to open Kafka topic: {e}", address=self.brokers) from e
        except UnavailableError:
            await consumer.stop()
            raise

        return consumer, tps

    async def replay(self, start: int = 0) -> AsyncIterator[Notification]:
        """Yield notifications from start up to the topic end as of this call."""
        consumer, tps = await self._open()

        try:
            end_offsets = await consumer.end_offsets(tps)
            remaining = {tp for tp in tps if end_offsets[tp] > 0}

            while remaining:
                batch = await consumer.getmany(*remaining, timeout_ms=self.poll_timeout_ms)
                notifications: list[Notification] = []

                for tp, messages in batch.items():
                    for msg in messages:
                        if msg.offset < end_offsets[tp]:
                            notification = self._decode(msg)
                            if notification is not None:
                                notifications.append(notification)

                for notification in sorted(notifications, key=lambda n: n.seq):
                    if notification.seq >= start:
                        yield notification

                for tp in list(remaining):
                    if await consumer.position(tp) >= end_offsets[tp]:
                        remaining.discard(tp)

        except KafkaError as e:
            raise UnavailableError(f"Kafka replay failed: {e}", address=self.brokers) from e
        finally:
            await consumer.stop()

    async def subscribe(self, start: int | None = None) -> AsyncIterator[Notification]:
        """Yield notifications as the relay publishes them.

        Args:
            start: First stream position to yield (new notifications only if None)
        """
        consumer, tps = await self._open()
        next_seq = start

        try:
            if start is None:
                await consumer.seek_to_end(*tps)

            logger.info("Subscribed to Kafka notifications", extra={"topic": self.topic, "start": start})

            async for msg in consumer:
                notification = self._decode(msg)
                if notification is None:
                    continue
                if next_seq is not None and notification.seq < next_seq:
                    continue
                next_seq = notification.seq + 1
                yield notification

        except KafkaError as e:
            raise UnavailableError(f"Kafka subscription failed: {e}", address=self.brokers) from e
        finally:
            await consumer.stop()
