"""
End-to-end tests: SDK client and reconciling indexer against a served ledger.

Tests cover:
- Append variants and lookups through the SDK
- Out-of-range errors over HTTP
- Indexer refresh producing the enriched history
- Live subscription driving refreshes
"""

import asyncio
import tempfile

import pytest
from aiohttp.test_utils import TestServer

from sdk.blockledger_sdk import (
    LedgerClient,
    LocalSigner,
    OutOfRangeError,
    ReconcilingIndexer,
    RejectedError,
)
from service.blockledger_server.api import create_http_app
from service.blockledger_server.ledger import Ledger, LedgerStore
from service.blockledger_server.stream import StoreNotificationStream

ADDRESS = "0xabc"


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
async def server(data_dir):
    store = LedgerStore(data_dir, wal_mode=False)
    await store.initialize()
    stream = StoreNotificationStream(store, poll_interval=0.05)
    server = TestServer(create_http_app(Ledger(store, stream), stream))
    await server.start_server()
    yield server
    await stream.close()
    await server.close()


@pytest.fixture
async def ledger(server):
    base_url = str(server.make_url("")).rstrip("/")
    async with LedgerClient(base_url, signer=LocalSigner(ADDRESS), page_size=2) as client:
        yield client


class TestLedgerThroughSdk:
    """Ledger contract exercised through LedgerClient."""

    @pytest.mark.asyncio
    async def test_single_append(self, ledger):
        receipt = await ledger.append("Test Name", 100)
        record = await ledger.get(receipt.id)

        assert receipt.id == 0
        assert (record.name, record.sum, record.creator) == ("Test Name", 100, ADDRESS)
        assert await ledger.count() == 1

    @pytest.mark.asyncio
    async def test_out_of_range(self, ledger):
        with pytest.raises(OutOfRangeError) as exc_info:
            await ledger.get(0)

        assert exc_info.value.block_count == 0

    @pytest.mark.asyncio
    async def test_invalid_sum_rejected(self, ledger):
        with pytest.raises(RejectedError):
            await ledger.append("bad", -5)

        assert await ledger.count() == 0

    @pytest.mark.asyncio
    async def test_replay_and_commits(self, ledger):
        receipts = [await ledger.append(f"n{i}", i) for i in range(5)]

        replayed = [n async for n in ledger.replay()]
        commits = await ledger.get_commits([r.tx_id for r in receipts])

        assert [n.id for n in replayed] == [0, 1, 2, 3, 4]
        assert [n.tx_id for n in replayed] == [r.tx_id for r in receipts]
        assert all(commits[r.tx_id].commit_number == r.commit_number for r in receipts)
        assert await ledger.get_commit("0xdead") is None


class TestIndexerThroughSdk:
    """Reconciling indexer fed by a live ledger host."""

    @pytest.mark.asyncio
    async def test_refresh_builds_enriched_history(self, ledger):
        """Three appends produce three enriched entries, newest first."""
        await ledger.append_name_only("First")
        await ledger.append("Second", 100)
        await ledger.append_sum_of_two(50, 50)

        indexer = ReconcilingIndexer(ledger, call_timeout=5.0)
        report = await indexer.refresh()

        assert report.ok
        assert report.dropped == 0
        entries = indexer.entries("desc")
        assert [(e.id, e.name, e.sum) for e in entries] == [
            (2, "", 100),
            (1, "Second", 100),
            (0, "First", 0),
        ]
        assert all(e.creator == ADDRESS for e in entries)
        assert indexer.entry_by_commit(entries[0].commit_number).id == 2

    @pytest.mark.asyncio
    async def test_refresh_twice_is_stable(self, ledger):
        for i in range(4):
            await ledger.append(f"n{i}", i)

        indexer = ReconcilingIndexer(ledger)
        await indexer.refresh()
        first = indexer.view.to_dicts()
        await indexer.refresh()

        assert indexer.view.to_dicts() == first

    @pytest.mark.asyncio
    async def test_live_refresh(self, ledger):
        indexer = ReconcilingIndexer(ledger)
        await indexer.refresh()
        task = asyncio.create_task(indexer.run_live(retry_delay=0.05))
        await asyncio.sleep(0.1)

        await ledger.append("live", 42)

        for _ in range(200):
            if len(indexer.view) == 1:
                break
            await asyncio.sleep(0.02)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert indexer.entry(0).name == "live"

    @pytest.mark.asyncio
    async def test_live_delivers_appends_made_before_subscribing(self, ledger):
        indexer = ReconcilingIndexer(ledger)
        await indexer.refresh()
        await ledger.append("between", 7)

        task = asyncio.create_task(indexer.run_live(retry_delay=0.05))
        for _ in range(200):
            if len(indexer.view) == 1:
                break
            await asyncio.sleep(0.02)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert indexer.entry(0).name == "between"
        assert indexer.stats()["stream_position"] == 1
