"""
Block Ledger Python SDK - client library and read-side indexer.

This SDK provides:
- LedgerClient for submitting and looking up blocks over HTTP
- Signer / LocalSigner identity capability for submissions
- ReconcilingIndexer that rebuilds the enriched, ordered block history
- KafkaNotificationSource to follow the ledger through its Kafka relay

Example:
    >>> from sdk.blockledger_sdk import LedgerClient, LocalSigner, ReconcilingIndexer
    >>>
    >>> async with LedgerClient("http://localhost:8545", signer=LocalSigner("0xabc")) as ledger:
    ...     await ledger.append("Test Name", 100)
    ...     indexer = ReconcilingIndexer(ledger)
    ...     await indexer.refresh()
    ...     latest = indexer.entries("desc")[0]

Invariants:
    - Block ids are the only stable key
    - Submissions require a signer; reads do not

Version: 0.3.0
"""

__version__ = "0.3.0"

from .client import LedgerClient, LocalSigner, Signer
from .errors import (
    CorrelationMissError,
    LedgerError,
    OutOfRangeError,
    RejectedError,
    UnavailableError,
    ValidationError,
)
from .indexer import ReconcilingIndexer
from .kafka_source import KafkaNotificationSource
from .models import CommitMetadata, Notification, Receipt, Record
from .view import EnrichedEntry, HistoryView, Order, RefreshReport, RefreshState

__all__ = [
    # Version
    "__version__",
    # Client
    "LedgerClient",
    "Signer",
    "LocalSigner",
    # Models
    "Record",
    "Notification",
    "CommitMetadata",
    "Receipt",
    # Indexer
    "ReconcilingIndexer",
    "KafkaNotificationSource",
    "EnrichedEntry",
    "HistoryView",
    "Order",
    "RefreshReport",
    "RefreshState",
    # Errors
    "LedgerError",
    "OutOfRangeError",
    "UnavailableError",
    "CorrelationMissError",
    "RejectedError",
    "ValidationError",
]
