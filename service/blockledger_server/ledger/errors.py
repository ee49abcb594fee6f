"""
Error types for the ledger host.

Invariants:
    - All ledger errors inherit from LedgerError
    - Every error carries a stable code used by the HTTP layer
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for ledger operations.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class OutOfRangeError(LedgerError):
    """Point lookup for an id that was never assigned."""

    code = "OUT_OF_RANGE"

    def __init__(self, block_id: int, block_count: int) -> None:
        super().__init__(
            f"Invalid block ID: {block_id} (block count is {block_count})",
            details={"id": block_id, "block_count": block_count},
        )
        self.block_id = block_id
        self.block_count = block_count


class RejectedError(LedgerError):
    """Mutation declined by the acceptance policy."""

    code = "REJECTED"

    def __init__(self, message: str, creator: str | None = None, forbidden: bool = False) -> None:
        super().__init__(message, details={"creator": creator})
        self.creator = creator
        self.forbidden = forbidden


class UnavailableError(LedgerError):
    """The underlying store could not be reached or timed out."""

    code = "UNAVAILABLE"
