"""
Unit tests for the Kafka notification relay.

The aiokafka producer is replaced with a mock; no broker is needed.

Tests cover:
- Producer configuration
- Message shape (single key, JSON value, tx_id header)
- Relay loop resuming from and advancing the stored position
- Retry until the broker acknowledges
"""

import asyncio
import json
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka.errors import KafkaConnectionError, KafkaTimeoutError

from service.blockledger_server.config import KafkaConfig
from service.blockledger_server.ledger import Ledger, LedgerStore
from service.blockledger_server.stream import (
    KafkaNotificationRelay,
    StoreNotificationStream,
    StreamConnectionError,
)
from service.blockledger_server.stream.kafka import MESSAGE_KEY


def make_producer():
    producer = MagicMock()
    producer.start = AsyncMock()
    producer.stop = AsyncMock()
    producer.send_and_wait = AsyncMock(return_value=MagicMock(partition=0, offset=0))
    return producer


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestKafkaNotificationRelay:
    """Tests for KafkaNotificationRelay."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def store(self, data_dir):
        store = LedgerStore(data_dir, wal_mode=False)
        await store.initialize()
        return store

    @pytest.fixture
    def stream(self, store):
        return StoreNotificationStream(store, poll_interval=0.05)

    @pytest.fixture
    def ledger(self, store, stream):
        return Ledger(store, stream)

    @pytest.fixture
    def config(self):
        return KafkaConfig(enabled=True, topic="ledger-test", retry_backoff_ms=1, max_backoff_ms=5)

    @pytest.fixture
    def producer(self):
        producer = make_producer()
        with patch("service.blockledger_server.stream.kafka.AIOKafkaProducer", return_value=producer):
            yield producer

    @pytest.mark.asyncio
    async def test_connect_uses_durable_settings(self, config, store, stream):
        producer = make_producer()
        with patch(
            "service.blockledger_server.stream.kafka.AIOKafkaProducer", return_value=producer
        ) as factory:
            relay = KafkaNotificationRelay(config, store, stream)
            await relay.connect()

        kwargs = factory.call_args.kwargs
        assert kwargs["acks"] == "all"
        assert kwargs["enable_idempotence"] is True
        assert "sasl_mechanism" not in kwargs
        assert relay.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure(self, config, store, stream):
        producer = make_producer()
        producer.start.side_effect = KafkaConnectionError()
        with patch("service.blockledger_server.stream.kafka.AIOKafkaProducer", return_value=producer):
            relay = KafkaNotificationRelay(config, store, stream)
            with pytest.raises(StreamConnectionError):
                await relay.connect()

        assert not relay.is_connected

    @pytest.mark.asyncio
    async def test_publish_requires_connection(self, config, store, stream, ledger):
        relay = KafkaNotificationRelay(config, store, stream)
        await ledger.append("a", 1, creator="0xabc")
        [notification] = await store.list_notifications()

        with pytest.raises(StreamConnectionError):
            await relay.publish(notification)

    @pytest.mark.asyncio
    async def test_message_shape(self, config, store, stream, ledger, producer):
        """All messages share one key and carry the notification as JSON."""
        relay = KafkaNotificationRelay(config, store, stream)
        await relay.connect()
        receipt = await ledger.append("Test Name", 100, creator="0xabc")
        [notification] = await store.list_notifications()

        await relay.publish(notification)

        call = producer.send_and_wait.await_args
        assert call.args == ("ledger-test",)
        assert call.kwargs["key"] == MESSAGE_KEY
        assert json.loads(call.kwargs["value"]) == {
            "seq": 0,
            "id": 0,
            "name": "Test Name",
            "sum": 100,
            "creator": "0xabc",
            "tx_id": receipt.tx_id,
        }
        assert call.kwargs["headers"] == [("tx_id", receipt.tx_id.encode())]

    @pytest.mark.asyncio
    async def test_run_relays_and_tracks_position(self, config, store, stream, ledger, producer):
        """The relay forwards in order and stores the next position."""
        for i in range(3):
            await ledger.append(f"n{i}", i, creator="0xabc")

        relay = KafkaNotificationRelay(config, store, stream)
        await relay.connect()
        task = asyncio.create_task(relay.run())

        await wait_until(lambda: relay.relayed_count == 3)
        await ledger.append("live", 9, creator="0xabc")
        await wait_until(lambda: relay.relayed_count == 4)

        await stream.close()
        await asyncio.wait_for(task, timeout=2.0)

        sent = [json.loads(c.kwargs["value"])["id"] for c in producer.send_and_wait.await_args_list]
        assert sent == [0, 1, 2, 3]
        assert await store.get_relay_position("kafka") == 4

    @pytest.mark.asyncio
    async def test_run_resumes_from_stored_position(self, config, store, stream, ledger, producer):
        for i in range(3):
            await ledger.append(f"n{i}", i, creator="0xabc")
        await store.set_relay_position("kafka", 2)

        relay = KafkaNotificationRelay(config, store, stream)
        await relay.connect()
        task = asyncio.create_task(relay.run())
        await wait_until(lambda: relay.relayed_count == 1)
        await stream.close()
        await asyncio.wait_for(task, timeout=2.0)

        sent = [json.loads(c.kwargs["value"])["id"] for c in producer.send_and_wait.await_args_list]
        assert sent == [2]

    @pytest.mark.asyncio
    async def test_publish_retried_until_acked(self, config, store, stream, ledger, producer):
        """A failed send is retried; the position only moves after success."""
        producer.send_and_wait.side_effect = [
            KafkaTimeoutError(),
            KafkaTimeoutError(),
            MagicMock(partition=0, offset=0),
        ]
        await ledger.append("a", 1, creator="0xabc")

        relay = KafkaNotificationRelay(config, store, stream)
        await relay.connect()
        task = asyncio.create_task(relay.run())
        await wait_until(lambda: relay.relayed_count == 1)
        await stream.close()
        await asyncio.wait_for(task, timeout=2.0)

        assert producer.send_and_wait.await_count == 3
        assert await store.get_relay_position("kafka") == 1
