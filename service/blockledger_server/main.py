"""
Block Ledger Server - Main entry point.

This module starts the ledger host with all components:
- Ledger store (SQLite) and Ledger service
- Notification stream (replay + live subscriptions)
- HTTP RPC server
- Kafka notification relay (optional)

Usage:
    python -m service.blockledger_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store schema exists before the HTTP server accepts requests
    - Graceful shutdown closes live subscriptions before the HTTP runner
    - The relay never runs ahead of committed appends

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_http_app, start_http_server
from .config import ServerConfig
from .ledger import AcceptancePolicy, Ledger, LedgerStore
from .stream import KafkaNotificationRelay, StoreNotificationStream

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Block Ledger server orchestrator.

    Manages the lifecycle of all server components:
    - Ledger store and service
    - Notification stream
    - HTTP server
    - Kafka relay loop

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: LedgerStore | None = None
        self.stream: StoreNotificationStream | None = None
        self.ledger: Ledger | None = None
        self.relay: KafkaNotificationRelay | None = None
        self._runner: web.AppRunner | None = None

        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Block Ledger server")
        self.config.log_config()

        try:
            storage = self.config.storage
            policy = self.config.policy

            self.store = LedgerStore(
                data_dir=storage.data_dir,
                db_name=storage.db_name,
                wal_mode=storage.wal_mode,
                busy_timeout_ms=storage.busy_timeout_ms,
                commit_window_ms=policy.commit_window_ms,
            )
            await self.store.initialize()

            self.stream = StoreNotificationStream(
                self.store,
                page_size=policy.stream_page_size,
                poll_interval=policy.stream_poll_interval,
            )
            self.ledger = Ledger(
                self.store,
                self.stream,
                AcceptancePolicy(frozenset(policy.allowed_creators) or None),
            )

            app = create_http_app(
                self.ledger,
                self.stream,
                cors_origins=self.config.http.cors_origins,
                max_page_size=self.config.http.max_page_size,
            )
            host, port = self.config.http.bind_address.rsplit(":", 1)
            self._runner = await start_http_server(app, host, int(port))

            if self.config.kafka.enabled:
                self.relay = KafkaNotificationRelay(self.config.kafka, self.store, self.stream)
                await self.relay.connect()
                self._tasks.append(asyncio.create_task(self.relay.run()))

            self._running = True
            logger.info("Block Ledger server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping Block Ledger server")

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.relay:
            await self.relay.close()

        if self.stream:
            await self.stream.close()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        self._running = False
        logger.info("Block Ledger server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
