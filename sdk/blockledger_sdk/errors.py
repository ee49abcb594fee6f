"""
Error types for the Block Ledger SDK.

This module defines all exception types raised by the SDK:
- LedgerError: Base exception
- OutOfRangeError: Lookup beyond the current block count
- UnavailableError: Transport failure or timeout
- CorrelationMissError: Notification without committed metadata
- RejectedError: Mutation declined by the signer or the ledger
- ValidationError: Malformed request caught by the server

Invariants:
    - All errors inherit from LedgerError
    - Errors include context for debugging
    - Codes match the error_code values of the ledger HTTP API
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all Block Ledger SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LEDGER_ERROR"
        self.details = details or {}


class OutOfRangeError(LedgerError):
    """Point lookup for an id that was never assigned.

    Surfaced to the caller; retrying will not help until more blocks exist.
    """

    def __init__(
        self,
        message: str,
        block_id: Optional[int] = None,
        block_count: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="OUT_OF_RANGE",
            details={"id": block_id, "block_count": block_count},
        )
        self.block_id = block_id
        self.block_count = block_count


class UnavailableError(LedgerError):
    """The ledger, stream or metadata source could not be reached.

    Raised when:
    - Server is unreachable
    - A call times out
    - The server reports its store as unavailable
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="UNAVAILABLE",
            details={"address": address},
        )
        self.address = address


class CorrelationMissError(LedgerError):
    """A notification has no committed metadata.

    Used inside the indexer for a dropped entry; never escapes a refresh cycle.
    """

    def __init__(
        self,
        message: str,
        block_id: Optional[int] = None,
        tx_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CORRELATION_MISS",
            details={"id": block_id, "tx_id": tx_id},
        )
        self.block_id = block_id
        self.tx_id = tx_id


class RejectedError(LedgerError):
    """Mutation declined.

    Raised when:
    - The signer declines to authorize the action
    - The ledger's acceptance policy declines the submission
    """

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        creator: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="REJECTED",
            details={"action": action, "creator": creator},
        )
        self.action = action
        self.creator = creator


class ValidationError(LedgerError):
    """The server rejected a malformed request."""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details={"field": field_name},
        )
        self.field_name = field_name
