"""
Integration tests for the Block Explorer API.

The FastAPI app is driven through httpx's ASGI transport with an indexer
over an in-memory ledger.

Tests cover:
- Listing in both orders
- Lookup by id and by commit number
- On-demand refresh, including a failing ledger keeping the view
- Startup lifespan
"""

import httpx
import pytest

from console.explorer import create_app
from console.explorer.config import Settings
from sdk.blockledger_sdk import (
    CommitMetadata,
    Notification,
    OutOfRangeError,
    ReconcilingIndexer,
    Record,
    UnavailableError,
)


class MemoryLedger:
    """Ledger, notification stream and metadata source held in memory."""

    def __init__(self):
        self.records = []
        self.notifications = []
        self.commits = {}
        self.down = False

    def append(self, name, sum_, commit_number):
        block_id = len(self.records)
        tx_id = f"0x{block_id:04x}"
        self.records.append(Record(block_id, name, sum_, "0xabc"))
        self.notifications.append(Notification(block_id, block_id, name, sum_, "0xabc", tx_id))
        self.commits[tx_id] = CommitMetadata(tx_id, commit_number, 1_700_000_000_000)

    async def count(self):
        if self.down:
            raise UnavailableError("ledger down")
        return len(self.records)

    async def get(self, block_id):
        if block_id >= len(self.records):
            raise OutOfRangeError("out of range", block_id, len(self.records))
        return self.records[block_id]

    async def replay(self, start=0):
        for notification in self.notifications[start:]:
            yield notification

    async def subscribe(self, start=None):
        return
        yield

    async def get_commits(self, tx_ids):
        return {t: self.commits[t] for t in tx_ids if t in self.commits}


@pytest.fixture
def memory():
    memory = MemoryLedger()
    memory.append("First", 0, commit_number=1)
    memory.append("Second", 100, commit_number=2)
    memory.append("", 100, commit_number=2)
    return memory


@pytest.fixture
def settings():
    return Settings(refresh_on_startup=True, live_refresh=False)


@pytest.fixture
def app(settings, memory):
    return create_app(settings, indexer=ReconcilingIndexer(memory))


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://explorer") as client:
        yield client


class TestExplorer:
    """Tests for the explorer routes."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")

        assert resp.json() == {"status": "healthy", "service": "block-explorer", "mode": "read-only"}

    @pytest.mark.asyncio
    async def test_empty_before_refresh(self, client):
        resp = await client.get("/api/v1/blocks")
        body = resp.json()

        assert body["items"] == []
        assert body["cycle"] == 0

    @pytest.mark.asyncio
    async def test_refresh_then_list(self, client):
        resp = await client.post("/api/v1/refresh")
        assert resp.json()["state"] == "idle"
        assert resp.json()["entries"] == 3

        body = (await client.get("/api/v1/blocks")).json()
        assert [item["id"] for item in body["items"]] == [2, 1, 0]
        assert body["order"] == "desc"
        assert body["total"] == 3
        assert body["block_count"] == 3

        body = (await client.get("/api/v1/blocks", params={"order": "asc"})).json()
        assert [item["name"] for item in body["items"]] == ["First", "Second", ""]

    @pytest.mark.asyncio
    async def test_invalid_order(self, client):
        resp = await client.get("/api/v1/blocks", params={"order": "random"})

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_block_lookup(self, client):
        await client.post("/api/v1/refresh")

        resp = await client.get("/api/v1/blocks/1")
        assert resp.json()["name"] == "Second"
        assert resp.json()["commit_number"] == 2

        resp = await client.get("/api/v1/blocks/9")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_commit_lookup_lowest_id(self, client):
        await client.post("/api/v1/refresh")

        resp = await client.get("/api/v1/commits/2")
        assert resp.json()["id"] == 1

        resp = await client.get("/api/v1/commits/7")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_view(self, client, memory):
        await client.post("/api/v1/refresh")
        memory.down = True

        resp = await client.post("/api/v1/refresh")
        assert resp.json()["state"] == "failed"
        assert resp.json()["published"] is False

        body = (await client.get("/api/v1/blocks")).json()
        assert body["total"] == 3
        assert body["cycle"] == 1

        status = (await client.get("/api/v1/status")).json()
        assert status["failed_cycles"] == 1
        assert status["last_report"]["state"] == "failed"

    @pytest.mark.asyncio
    async def test_default_order_from_settings(self, memory):
        app = create_app(Settings(default_order="asc", live_refresh=False), indexer=ReconcilingIndexer(memory))
        await app.state.indexer.refresh()
        transport = httpx.ASGITransport(app=app)

        async with httpx.AsyncClient(transport=transport, base_url="http://explorer") as client:
            body = (await client.get("/api/v1/blocks")).json()

        assert [item["id"] for item in body["items"]] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_lifespan_runs_initial_refresh(self, app):
        async with app.router.lifespan_context(app):
            assert len(app.state.indexer.view) == 3
