"""
Notification stream backed by the ledger store.

Notifications are rows written in the same transaction as the record they
announce, so the stream is durable and replayable by construction. Live
subscribers page through the table and park on a condition that the Ledger
signals after each committed append.

Invariants:
    - A subscriber wakes for every append made through this process
    - Appends made by other processes are picked up within poll_interval
    - close() releases every parked subscriber

How to change safely:
    - Keep reads paged; never load the whole table at once
    - Test subscribe() with appends racing the first page read
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from ..ledger.records import Notification
from ..ledger.store import LedgerStore
from .base import StreamConnectionError

logger = logging.getLogger(__name__)


class StoreNotificationStream:
    """NotificationStream over the ledger's notifications table.

    Example:
        >>> stream = StoreNotificationStream(store)
        >>> ledger = Ledger(store, stream)
        >>> async for notification in stream.subscribe(start=0):
        ...     print(notification)
    """

    def __init__(
        self,
        store: LedgerStore,
        page_size: int = 500,
        poll_interval: float = 1.0,
    ) -> None:
        """Initialize the stream.

        Args:
            store: Ledger store holding the notifications table
            page_size: Rows read per query
            poll_interval: Maximum wait before re-reading the table
        """
        self.store = store
        self.page_size = page_size
        self.poll_interval = poll_interval
        self._cond = asyncio.Condition()
        self._version = 0
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def notify(self, notification: Notification) -> None:
        """Wake live subscribers after a committed append."""
        async with self._cond:
            self._version += 1
            self._cond.notify_all()

        logger.debug("Notification signalled", extra={"seq": notification.seq, "id": notification.id})

    async def close(self) -> None:
        """Stop all live subscriptions."""
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    async def replay(self, start: int = 0) -> AsyncIterator[Notification]:
        """Yield notifications from start up to the end as of this call."""
        if self._closed:
            raise StreamConnectionError("Stream is closed")

        end = await self.store.notification_count()
        position = start

        while position < end:
            page = await self.store.list_notifications(position, min(self.page_size, end - position))
            if not page:
                break
            for notification in page:
                yield notification
            position = page[-1].seq + 1

    async def subscribe(self, start: int | None = None) -> AsyncIterator[Notification]:
        """Yield notifications as they are emitted, starting at start."""
        if self._closed:
            raise StreamConnectionError("Stream is closed")

        position = await self.store.notification_count() if start is None else start
        logger.debug("Live subscription started", extra={"start": position})

        while not self._closed:
            seen = self._version
            page = await self.store.list_notifications(position, self.page_size)

            if page:
                for notification in page:
                    yield notification
                position = page[-1].seq + 1
                continue

            async with self._cond:
                try:
                    await asyncio.wait_for(
                        self._cond.wait_for(lambda: self._version != seen or self._closed),
                        timeout=self.poll_interval,
                    )
                except asyncio.TimeoutError:
                    pass
