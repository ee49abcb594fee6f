"""
Data types returned by the Block Ledger SDK.

These mirror the JSON shapes of the ledger HTTP API:
- Record: one stored block
- Notification: creation announcement for one append
- CommitMetadata: commit-level facts for one transaction
- Receipt: result of an append
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

COMMITTED = "committed"


@dataclass(frozen=True)
class Record:
    """A block as stored by the ledger.

    Attributes:
        id: Sequence number (0-based, dense)
        name: Free text, may be empty
        sum: Non-negative integer
        creator: Submitting party
    """

    id: int
    name: str
    sum: int
    creator: str

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
    """Creation notification for an appended block.

    Attributes:
        seq: Position in the notification stream
        id: Block id
        name: Block name at append time
        sum: Block sum at append time
        creator: Submitting party
        tx_id: Transaction that performed the append
    """

    seq: int
    id: int
    name: str
    sum: int
    creator: str
    tx_id: str

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
        status: "committed", "pending" or "failed"
    """

    tx_id: str
    commit_number: int
    committed_at_ms: int
    status: str = COMMITTED

    @property
    def is_committed(self) -> bool:
        return self.status == COMMITTED

    @property
    def committed_at(self) -> datetime:
        return datetime.fromtimestamp(self.committed_at_ms / 1000.0, tz=timezone.utc)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommitMetadata:
        return cls(
            tx_id=data["tx_id"],
            commit_number=int(data["commit_number"]),
            committed_at_ms=int(data["committed_at_ms"]),
            status=data.get("status", COMMITTED),
        )


@dataclass(frozen=True)
class Receipt:
    """Result of a successful append.

    Attributes:
        id: Id assigned to the new block
        tx_id: Transaction identity
        commit_number: Commit that contains the append
        committed_at_ms: Commit timestamp (Unix ms)
    """

    id: int
    tx_id: str
    commit_number: int
    committed_at_ms: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Receipt:
        return cls(
            id=int(data["id"]),
            tx_id=data["tx_id"],
            commit_number=int(data["commit_number"]),
            committed_at_ms=int(data["committed_at_ms"]),
        )
