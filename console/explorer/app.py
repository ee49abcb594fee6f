"""
FastAPI application factory for the Block Explorer.

This module creates the main FastAPI app with:
- CORS configuration for frontend
- Ledger client and reconciling indexer lifecycle management
- Live refresh task following the notification stream
- Read-only API routes
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sdk.blockledger_sdk import KafkaNotificationSource, LedgerClient, ReconcilingIndexer

from .config import Settings
from .routes import router

logger = logging.getLogger(__name__)


def build_indexer(settings: Settings, client: LedgerClient) -> ReconcilingIndexer:
    """Create the indexer for a connected ledger client."""
    stream = None
    if settings.kafka_brokers:
        stream = KafkaNotificationSource(settings.kafka_brokers, settings.kafka_topic)

    return ReconcilingIndexer(
        client,
        stream=stream,
        call_timeout=settings.call_timeout,
        max_concurrency=settings.max_concurrency,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage ledger client, indexer and live refresh lifecycle."""
    settings: Settings = app.state.settings
    client: LedgerClient | None = None

    if getattr(app.state, "indexer", None) is None:
        client = LedgerClient(settings.ledger_url, timeout=settings.call_timeout)
        await client.connect()
        app.state.indexer = build_indexer(settings, client)

    indexer: ReconcilingIndexer = app.state.indexer

    if settings.refresh_on_startup:
        report = await indexer.refresh()
        logger.info("Initial refresh finished", extra=report.to_dict())

    live_task: asyncio.Task | None = None
    if settings.live_refresh:
        live_task = asyncio.create_task(indexer.run_live(retry_delay=settings.live_retry_delay))

    yield

    if live_task is not None:
        live_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await live_task

    if client is not None:
        await client.close()


def create_app(
    settings: Settings | None = None,
    indexer: ReconcilingIndexer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explorer settings (loaded from environment if omitted)
        indexer: Pre-built indexer; the lifespan builds one from settings otherwise
    """
    settings = settings or Settings()

    app = FastAPI(
        title="Block Explorer",
        description=(
            "Read-only history of a block ledger, rebuilt from its notification "
            "stream and commit metadata. Submissions go through the SDK."
        ),
        version="0.3.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.indexer = indexer

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(router, prefix="/api/v1")

    # Health endpoint at root
    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "block-explorer", "mode": "read-only"}

    return app


# Default app instance
app = create_app()
