"""
Integration tests for the ledger HTTP API.

A real LedgerStore in a temporary directory is served by the aiohttp
application through aiohttp's test server.

Tests cover:
- Submission routes and the X-Creator header
- Point lookup, count and error bodies
- Notification pages and the live NDJSON subscription
- Commit metadata lookup
- Acceptance policy rejections
- Stats and health
"""

import asyncio
import json
import tempfile

import pytest
from aiohttp.test_utils import TestClient, TestServer

from service.blockledger_server.api import create_http_app
from service.blockledger_server.ledger import AcceptancePolicy, Ledger, LedgerStore
from service.blockledger_server.stream import StoreNotificationStream

CREATOR = {"X-Creator": "0xabc"}


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
async def store(data_dir):
    store = LedgerStore(data_dir, wal_mode=False)
    await store.initialize()
    return store


@pytest.fixture
def stream(store):
    return StoreNotificationStream(store, poll_interval=0.05)


async def serve(app):
    client = TestClient(TestServer(app))
    await client.start_server()
    return client


@pytest.fixture
async def client(store, stream):
    app = create_http_app(Ledger(store, stream), stream, max_page_size=3)
    client = await serve(app)
    yield client
    await stream.close()
    await client.close()


class TestSubmission:
    """Tests for the append routes."""

    @pytest.mark.asyncio
    async def test_append_returns_receipt(self, client):
        resp = await client.post("/v1/blocks", json={"name": "Test Name", "sum": 100}, headers=CREATOR)

        assert resp.status == 201
        receipt = await resp.json()
        assert receipt["id"] == 0
        assert receipt["tx_id"].startswith("0x")
        assert receipt["commit_number"] == 1

    @pytest.mark.asyncio
    async def test_scenario_three_variants(self, client):
        """Name-only, full and sum-of-two appends get ids 0, 1, 2."""
        r0 = await client.post("/v1/blocks/name", json={"name": "First"}, headers=CREATOR)
        r1 = await client.post("/v1/blocks", json={"name": "Second", "sum": 100}, headers=CREATOR)
        r2 = await client.post("/v1/blocks/sum", json={"a": 50, "b": 50}, headers=CREATOR)

        assert [(await r.json())["id"] for r in (r0, r1, r2)] == [0, 1, 2]

        blocks = [await (await client.get(f"/v1/blocks/{i}")).json() for i in range(3)]
        assert [(b["name"], b["sum"], b["creator"]) for b in blocks] == [
            ("First", 0, "0xabc"),
            ("Second", 100, "0xabc"),
            ("", 100, "0xabc"),
        ]

        resp = await client.get("/v1/blocks/count")
        assert await resp.json() == {"count": 3}

    @pytest.mark.asyncio
    async def test_creator_header_required(self, client):
        resp = await client.post("/v1/blocks", json={"name": "a", "sum": 1})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_ARGUMENT"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        resp = await client.post("/v1/blocks", data="{not json", headers=CREATOR)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_negative_sum_rejected(self, client):
        resp = await client.post("/v1/blocks", json={"name": "a", "sum": -1}, headers=CREATOR)

        assert resp.status == 400
        body = await resp.json()
        assert body["error_code"] == "REJECTED"

        count = await (await client.get("/v1/blocks/count")).json()
        assert count == {"count": 0}

    @pytest.mark.parametrize(
        "path,body",
        [
            ("/v1/blocks", {"name": "a"}),
            ("/v1/blocks", {"sum": 5}),
            ("/v1/blocks/name", {}),
        ],
    )
    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self, client, path, body):
        """An append without its required fields is refused and nothing is stored."""
        resp = await client.post(path, json=body, headers=CREATOR)

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_ARGUMENT"

        count = await (await client.get("/v1/blocks/count")).json()
        assert count == {"count": 0}

    @pytest.mark.asyncio
    async def test_sum_of_two_requires_both(self, client):
        resp = await client.post("/v1/blocks/sum", json={"a": 1}, headers=CREATOR)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_policy_rejection_is_forbidden(self, store, stream):
        ledger = Ledger(store, stream, AcceptancePolicy(frozenset({"0xdef"})))
        client = await serve(create_http_app(ledger, stream))
        try:
            resp = await client.post("/v1/blocks", json={"name": "a", "sum": 1}, headers=CREATOR)
            assert resp.status == 403
            body = await resp.json()
            assert body["error_code"] == "REJECTED"
            assert body["details"]["creator"] == "0xabc"

            resp = await client.post(
                "/v1/blocks", json={"name": "a", "sum": 1}, headers={"X-Creator": "0xdef"}
            )
            assert resp.status == 201
        finally:
            await client.close()


class TestLookup:
    """Tests for point lookup."""

    @pytest.mark.asyncio
    async def test_get_empty_ledger_out_of_range(self, client):
        resp = await client.get("/v1/blocks/0")

        assert resp.status == 404
        body = await resp.json()
        assert body["error_code"] == "OUT_OF_RANGE"
        assert body["details"] == {"id": 0, "block_count": 0}

    @pytest.mark.asyncio
    async def test_get_past_count_out_of_range(self, client):
        await client.post("/v1/blocks", json={"name": "a", "sum": 1}, headers=CREATOR)

        resp = await client.get("/v1/blocks/1")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_non_integer_id(self, client):
        resp = await client.get("/v1/blocks/abc")

        assert resp.status == 400


class TestNotifications:
    """Tests for notification replay and live subscription."""

    @pytest.mark.asyncio
    async def test_pages_are_capped(self, client):
        for i in range(5):
            await client.post("/v1/blocks", json={"name": f"n{i}", "sum": i}, headers=CREATOR)

        resp = await client.get("/v1/notifications", params={"start": 1, "limit": 100})
        page = await resp.json()

        assert [n["seq"] for n in page["notifications"]] == [1, 2, 3]
        assert page["next"] == 4
        assert page["end"] == 5

    @pytest.mark.asyncio
    async def test_page_past_end(self, client):
        resp = await client.get("/v1/notifications", params={"start": 10})
        page = await resp.json()

        assert page == {"notifications": [], "next": 10, "end": 0}

    @pytest.mark.asyncio
    async def test_bad_query(self, client):
        resp = await client.get("/v1/notifications", params={"start": "-1"})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_live_subscription_streams_ndjson(self, client):
        """Each append produces one line on the live subscription."""
        resp = await client.get("/v1/notifications/live", params={"start": 0})
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("application/x-ndjson")

        await client.post("/v1/blocks/name", json={"name": "First"}, headers=CREATOR)
        await client.post("/v1/blocks", json={"name": "Second", "sum": 100}, headers=CREATOR)

        lines = []
        while len(lines) < 2:
            line = await asyncio.wait_for(resp.content.readline(), timeout=2.0)
            if line.strip():
                lines.append(json.loads(line))
        resp.close()

        assert [(n["id"], n["name"], n["sum"]) for n in lines] == [(0, "First", 0), (1, "Second", 100)]


class TestCommits:
    """Tests for commit metadata routes."""

    @pytest.mark.asyncio
    async def test_commit_for_receipt(self, client):
        resp = await client.post("/v1/blocks", json={"name": "a", "sum": 1}, headers=CREATOR)
        receipt = await resp.json()

        resp = await client.get(f"/v1/commits/{receipt['tx_id']}")
        commit = await resp.json()

        assert commit["commit_number"] == receipt["commit_number"]
        assert commit["status"] == "committed"

    @pytest.mark.asyncio
    async def test_unknown_commit(self, client):
        resp = await client.get("/v1/commits/0xdead")

        assert resp.status == 404
        assert (await resp.json())["error_code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_batch_lookup(self, client):
        receipts = []
        for i in range(2):
            resp = await client.post("/v1/blocks", json={"name": "a", "sum": i}, headers=CREATOR)
            receipts.append(await resp.json())

        tx_ids = [r["tx_id"] for r in receipts] + ["0xdead"]
        resp = await client.post("/v1/commits/batch", json={"tx_ids": tx_ids})
        commits = (await resp.json())["commits"]

        assert set(commits) == {r["tx_id"] for r in receipts}

    @pytest.mark.asyncio
    async def test_batch_requires_list(self, client):
        resp = await client.post("/v1/commits/batch", json={"tx_ids": "0x01"})

        assert resp.status == 400


class TestOperational:
    """Tests for stats, health and CORS."""

    @pytest.mark.asyncio
    async def test_stats(self, client):
        await client.post("/v1/blocks", json={"name": "a", "sum": 1}, headers=CREATOR)

        stats = await (await client.get("/v1/stats")).json()

        assert stats["block_count"] == 1
        assert stats["notification_count"] == 1
        assert stats["latest_commit_number"] == 1

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/v1/health")
        body = await resp.json()

        assert resp.status == 200
        assert body["healthy"] is True
        assert body["block_count"] == 0

    @pytest.mark.asyncio
    async def test_cors_headers_on_errors(self, client):
        resp = await client.get("/v1/blocks/5", headers={"Origin": "http://explorer.local"})

        assert resp.status == 404
        assert resp.headers["Access-Control-Allow-Origin"] == "http://explorer.local"
