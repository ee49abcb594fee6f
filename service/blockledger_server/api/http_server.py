"""
HTTP RPC server for the Block Ledger.

This module exposes the ledger over a small JSON API:
- Submission (append, name-only, sum-of-two)
- Point lookup and count
- Notification replay pages and a live NDJSON subscription
- Commit metadata lookup (single and batch)
- Statistics and health

Invariants:
    - Mutations require the X-Creator header
    - Error bodies are {"error": message, "error_code": CODE}
    - The live subscription writes one JSON object per line, in stream order

How to change safely:
    - Keep endpoints in sync with sdk/blockledger_sdk/client.py
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from .._version import __version__
from ..ledger.errors import LedgerError, OutOfRangeError, RejectedError, UnavailableError
from ..ledger.service import Ledger
from ..stream.base import StreamError
from ..stream.store import StoreNotificationStream

logger = logging.getLogger(__name__)

LEDGER_KEY = web.AppKey("ledger", Ledger)
STREAM_KEY = web.AppKey("stream", StoreNotificationStream)
MAX_PAGE_KEY = web.AppKey("max_page_size", int)

DEFAULT_PAGE_SIZE = 100


def _error_response(
    message: str, code: str, status: int, details: dict[str, Any] | None = None
) -> web.Response:
    body: dict[str, Any] = {"error": message, "error_code": code}
    if details:
        body["details"] = details
    return web.json_response(body, status=status)


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "INVALID_ARGUMENT"}),
        content_type="application/json",
    )


def _status_for(error: LedgerError) -> int:
    if isinstance(error, OutOfRangeError):
        return 404
    if isinstance(error, RejectedError):
        return 403 if error.forbidden else 400
    if isinstance(error, UnavailableError):
        return 503
    return 500


def create_http_app(
    ledger: Ledger,
    stream: StoreNotificationStream,
    cors_origins: tuple[str, ...] = ("*",),
    max_page_size: int = 1000,
) -> web.Application:
    """Create the HTTP application for a ledger.

    Args:
        ledger: Ledger service
        stream: Notification stream used for replay and live subscriptions
        cors_origins: Allowed CORS origins
        max_page_size: Largest replay page a client may request

    Returns:
        aiohttp Application instance
    """
    app = web.Application()
    app[LEDGER_KEY] = ledger
    app[STREAM_KEY] = stream
    app[MAX_PAGE_KEY] = max_page_size

    # Static paths first so they are not captured by /v1/blocks/{block_id}
    app.router.add_post("/v1/blocks", handle_append)
    app.router.add_post("/v1/blocks/name", handle_append_name_only)
    app.router.add_post("/v1/blocks/sum", handle_append_sum_of_two)
    app.router.add_get("/v1/blocks/count", handle_count)
    app.router.add_get("/v1/blocks/{block_id}", handle_get_block)
    app.router.add_get("/v1/notifications", handle_notifications)
    app.router.add_get("/v1/notifications/live", handle_live_notifications)
    app.router.add_post("/v1/commits/batch", handle_commits_batch)
    app.router.add_get("/v1/commits/{tx_id}", handle_get_commit)
    app.router.add_get("/v1/stats", handle_stats)
    app.router.add_get("/v1/health", handle_health)

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        if response.prepared:
            return response

        origin = request.headers.get("Origin", "*")
        if "*" in cors_origins or origin in cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Creator"

        return response

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except LedgerError as e:
            status = _status_for(e)
            log = logger.warning if status >= 500 else logger.info
            log(
                f"Ledger error: {e.message}",
                extra={"error_code": e.code, "path": request.path, "status": status},
            )
            return _error_response(e.message, e.code, status, e.details)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return _error_response(str(e), "INTERNAL", 500)

    app.middlewares.append(cors_middleware)
    app.middlewares.append(error_middleware)

    return app


def extract_creator(request: web.Request) -> str:
    """Extract the submitting identity from the X-Creator header.

    Raises:
        web.HTTPBadRequest: If the header is missing
    """
    creator = request.headers.get("X-Creator")
    if not creator:
        raise _bad_request("X-Creator header is required")
    return creator


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise _bad_request("Invalid JSON body")

    if not isinstance(body, dict):
        raise _bad_request("JSON body must be an object")
    return body


def _int_query(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise _bad_request(f"{name} must be an integer")
    if value < 0:
        raise _bad_request(f"{name} must be non-negative")
    return value


async def handle_append(request: web.Request) -> web.Response:
    """Handle POST /v1/blocks - Append a record."""
    creator = extract_creator(request)
    body = await _json_body(request)

    if "name" not in body or "sum" not in body:
        raise _bad_request("name and sum are required")

    receipt = await request.app[LEDGER_KEY].append(body["name"], body["sum"], creator=creator)
    return web.json_response(receipt.to_dict(), status=201)


async def handle_append_name_only(request: web.Request) -> web.Response:
    """Handle POST /v1/blocks/name - Append a record with sum 0."""
    creator = extract_creator(request)
    body = await _json_body(request)

    if "name" not in body:
        raise _bad_request("name is required")

    receipt = await request.app[LEDGER_KEY].append_name_only(body["name"], creator=creator)
    return web.json_response(receipt.to_dict(), status=201)


async def handle_append_sum_of_two(request: web.Request) -> web.Response:
    """Handle POST /v1/blocks/sum - Append a record with sum a + b."""
    creator = extract_creator(request)
    body = await _json_body(request)

    if "a" not in body or "b" not in body:
        raise _bad_request("a and b are required")

    receipt = await request.app[LEDGER_KEY].append_sum_of_two(body["a"], body["b"], creator=creator)
    return web.json_response(receipt.to_dict(), status=201)


async def handle_get_block(request: web.Request) -> web.Response:
    """Handle GET /v1/blocks/{block_id} - Get a record by id."""
    try:
        block_id = int(request.match_info["block_id"])
    except ValueError:
        raise _bad_request("block id must be an integer")

    record = await request.app[LEDGER_KEY].get(block_id)
    return web.json_response(record.to_dict())


async def handle_count(request: web.Request) -> web.Response:
    """Handle GET /v1/blocks/count - Number of appended records."""
    count = await request.app[LEDGER_KEY].count()
    return web.json_response({"count": count})


async def handle_notifications(request: web.Request) -> web.Response:
    """Handle GET /v1/notifications - One page of the notification stream."""
    start = _int_query(request, "start", 0)
    limit = min(_int_query(request, "limit", DEFAULT_PAGE_SIZE), request.app[MAX_PAGE_KEY])

    ledger = request.app[LEDGER_KEY]
    notifications = await ledger.store.list_notifications(start, limit)
    total = await ledger.store.notification_count()

    next_start = notifications[-1].seq + 1 if notifications else start
    return web.json_response(
        {
            "notifications": [n.to_dict() for n in notifications],
            "next": next_start,
            "end": total,
        }
    )


async def handle_live_notifications(request: web.Request) -> web.StreamResponse:
    """Handle GET /v1/notifications/live - NDJSON live subscription."""
    start: int | None = None
    if "start" in request.query:
        start = _int_query(request, "start", 0)

    stream = request.app[STREAM_KEY]
    response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson"})
    await response.prepare(request)

    logger.info("Live subscriber connected", extra={"start": start, "remote": request.remote})

    try:
        async for notification in stream.subscribe(start=start):
            line = json.dumps(notification.to_dict(), separators=(",", ":")) + "\n"
            await response.write(line.encode("utf-8"))
    except ConnectionResetError:
        logger.info("Live subscriber disconnected", extra={"remote": request.remote})
    except StreamError as e:
        logger.info(f"Live subscription ended: {e}")

    return response


async def handle_get_commit(request: web.Request) -> web.Response:
    """Handle GET /v1/commits/{tx_id} - Commit metadata for one transaction."""
    tx_id = request.match_info["tx_id"]
    commit = await request.app[LEDGER_KEY].get_commit(tx_id)

    if commit is None:
        return _error_response(f"No commit metadata for {tx_id}", "NOT_FOUND", 404)
    return web.json_response(commit.to_dict())


async def handle_commits_batch(request: web.Request) -> web.Response:
    """Handle POST /v1/commits/batch - Commit metadata for many transactions."""
    body = await _json_body(request)
    tx_ids = body.get("tx_ids")

    if not isinstance(tx_ids, list) or not all(isinstance(t, str) for t in tx_ids):
        raise _bad_request("tx_ids must be a list of strings")

    commits = await request.app[LEDGER_KEY].get_commits(tx_ids)
    return web.json_response({"commits": {tx_id: c.to_dict() for tx_id, c in commits.items()}})


async def handle_stats(request: web.Request) -> web.Response:
    """Handle GET /v1/stats - Ledger statistics."""
    stats = await request.app[LEDGER_KEY].stats()
    return web.json_response(stats)


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health - Health check."""
    try:
        count = await request.app[LEDGER_KEY].count()
    except UnavailableError as e:
        return web.json_response({"healthy": False, "error": e.message}, status=503)

    return web.json_response({"healthy": True, "version": __version__, "block_count": count})


async def start_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving an application.

    Returns:
        The runner; call runner.cleanup() to stop serving
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
