"""
Ledger module - record storage and the mutation contract.

This module handles:
- The SQLite ledger store (records, notifications, commits)
- The Ledger service (append, point lookup, count)
- Record, notification and commit metadata types
- The ledger error taxonomy

Invariants:
    - Record ids are dense and assigned in append order
    - Record, notification and commit row are written in one transaction
    - Nothing is updated or deleted after it is appended

How to change safely:
    - Route new write paths through Ledger.append
    - Keep store writes inside a single transaction
"""

from .errors import LedgerError, OutOfRangeError, RejectedError, UnavailableError
from .records import CommitMetadata, CommitStatus, Notification, Receipt, Record
from .service import AcceptancePolicy, Ledger
from .store import LedgerStore

__all__ = [
    "Ledger",
    "AcceptancePolicy",
    "LedgerStore",
    "Record",
    "Notification",
    "CommitMetadata",
    "CommitStatus",
    "Receipt",
    "LedgerError",
    "OutOfRangeError",
    "RejectedError",
    "UnavailableError",
]
