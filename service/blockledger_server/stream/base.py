"""
Base protocol and types for the notification stream.

This module defines the NotificationStream protocol that every stream
implementation provides, along with the stream error types.

Invariants:
    - Notifications are yielded in append order (ascending seq)
    - replay() is finite as of the moment it is called
    - subscribe() never skips a notification after its start position

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Protocol, runtime_checkable

from ..ledger.records import Notification

logger = logging.getLogger(__name__)


class StreamError(Exception):
    """Base exception for notification stream operations."""

    pass


class StreamConnectionError(StreamError):
    """Connection to the stream transport failed."""

    pass


class StreamTimeoutError(StreamError):
    """Stream operation timed out."""

    pass


@runtime_checkable
class NotificationStream(Protocol):
    """Protocol for notification streams.

    Ordering contract:
        - Notifications come out in the order the appends happened
        - Positions (seq) are dense, so a consumer can resume from seq + 1

    Example:
        >>> async for notification in stream.replay(start=0):
        ...     print(notification.id, notification.tx_id)
        >>> async for notification in stream.subscribe():
        ...     print("new block", notification.id)
    """

    def replay(self, start: int = 0) -> AsyncIterator[Notification]:
        """Yield every notification from start up to the current end.

        Args:
            start: First stream position to yield

        Yields:
            Notifications in stream order, then stops
        """
        ...

    def subscribe(self, start: int | None = None) -> AsyncIterator[Notification]:
        """Yield notifications as they are emitted.

        Args:
            start: Position to start from (current end if None)

        Yields:
            Notifications in stream order, never stops on its own
        """
        ...
