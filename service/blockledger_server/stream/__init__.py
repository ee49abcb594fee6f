"""
Notification stream module.

Notifications announce every appended block. The ledger store keeps them in
a durable table; this module provides:
- The NotificationStream protocol
- StoreNotificationStream: replay and live subscription over that table
- KafkaNotificationRelay: forwards notifications to a Kafka topic

Invariants:
    - Exactly one notification per appended block
    - Stream order equals append order
"""

from .base import NotificationStream, StreamConnectionError, StreamError, StreamTimeoutError
from .kafka import KafkaNotificationRelay
from .store import StoreNotificationStream

__all__ = [
    "NotificationStream",
    "StreamError",
    "StreamConnectionError",
    "StreamTimeoutError",
    "StoreNotificationStream",
    "KafkaNotificationRelay",
]
