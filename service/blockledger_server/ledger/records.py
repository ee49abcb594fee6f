"""
Record types for the ledger host.

This module defines the immutable values that flow through the ledger:
- Record: one stored block
- Notification: the creation announcement emitted for every append
- CommitMetadata: commit-level facts about the transaction behind an append
- Receipt: what a writer gets back from an append

Invariants:
    - All types are frozen; a stored record is never modified
    - Notification carries the same four fields as the record it announces
    - Timestamps are Unix milliseconds (UTC)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class CommitStatus(Enum):
    """Status of the transaction behind an append."""

    COMMITTED = "committed"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class Record:
    """One stored block.

    Attributes:
        id: Sequence number assigned at append time (0-based, dense)
        name: Free text, may be empty
        sum: Non-negative integer
        creator: Identity of the submitting party
    """

    id: int
    name: str
    sum: int
    creator: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sum": self.sum,
            "creator": self.creator,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            sum=int(data.get("sum") or 0),
            creator=data["creator"],
        )


@dataclass(frozen=True)
class Notification:
    """Creation notification for an appended record.

    Attributes:
        seq: Position in the notification stream (0-based)
        id: Record id
        name: Record name at append time
        sum: Record sum at append time
        creator: Submitting party
        tx_id: Identity of the transaction that performed the append
    """

    seq: int
    id: int
    name: str
    sum: int
    creator: str
    tx_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "id": self.id,
            "name": self.name,
            "sum": self.sum,
            "creator": self.creator,
            "tx_id": self.tx_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Notification:
        return cls(
            seq=int(data["seq"]),
            id=int(data["id"]),
            name=data.get("name") or "",
            sum=int(data.get("sum") or 0),
            creator=data["creator"],
            tx_id=data["tx_id"],
        )


@dataclass(frozen=True)
class CommitMetadata:
    """Commit-level facts for one transaction.

    Attributes:
        tx_id: Transaction identity
        commit_number: Monotonic commit number
        committed_at_ms: Commit timestamp (Unix ms)
        status: Transaction status
    """

    tx_id: str
    commit_number: int
    committed_at_ms: int
    status: CommitStatus = CommitStatus.COMMITTED

    @property
    def committed_at(self) -> datetime:
        return datetime.fromtimestamp(self.committed_at_ms / 1000.0, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "commit_number": self.commit_number,
            "committed_at_ms": self.committed_at_ms,
            "committed_at": self.committed_at.isoformat(),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Receipt:
    """Result of a successful append.

    Attributes:
        id: Id assigned to the new record
        tx_id: Transaction identity recorded with the notification
        commit_number: Commit that contains the append
        committed_at_ms: Commit timestamp (Unix ms)
    """

    id: int
    tx_id: str
    commit_number: int
    committed_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tx_id": self.tx_id,
            "commit_number": self.commit_number,
            "committed_at_ms": self.committed_at_ms,
        }
