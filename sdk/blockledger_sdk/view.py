"""
Published history view of the reconciling indexer.

This module defines the values the indexer publishes:
- EnrichedEntry: a block merged with the commit metadata of its transaction
- HistoryView: the immutable, complete set of entries from one refresh
- RefreshState: the per-cycle state machine
- RefreshReport: the outcome of one refresh cycle

Invariants:
    - A HistoryView is never mutated; a refresh replaces it as a whole
    - Entries are unique by id
    - Ordering is applied on read, the stored order is ascending id
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .models import CommitMetadata, Record


class Order(str, Enum):
    """Presentation order of a view."""

    DESC = "desc"
    ASC = "asc"


class RefreshState(str, Enum):
    """State of the indexer's refresh cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    CORRELATING = "correlating"
    ENRICHING = "enriching"
    PUBLISHING = "publishing"
    FAILED = "failed"


@dataclass(frozen=True)
class EnrichedEntry:
    """A block enriched with commit context.

    Attributes:
        id: Block id (the only stable key)
        name: Block name, as returned by the ledger
        sum: Block sum, as returned by the ledger
        creator: Submitting party, as returned by the ledger
        tx_id: Transaction that appended the block
        commit_number: Commit containing the transaction
        committed_at_ms: Commit timestamp (Unix ms)
    """

    id: int
    name: str
    sum: int
    creator: str
    tx_id: str
    commit_number: int
    committed_at_ms: int

    @classmethod
    def merge(cls, record: Record, commit: CommitMetadata) -> EnrichedEntry:
        return cls(
            id=record.id,
            name=record.name,
            sum=record.sum,
            creator=record.creator,
            tx_id=commit.tx_id,
            commit_number=commit.commit_number,
            committed_at_ms=commit.committed_at_ms,
        )

    @property
    def committed_at(self) -> datetime:
        return datetime.fromtimestamp(self.committed_at_ms / 1000.0, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sum": self.sum,
            "creator": self.creator,
            "tx_id": self.tx_id,
            "commit_number": self.commit_number,
            "committed_at_ms": self.committed_at_ms,
            "committed_at": self.committed_at.isoformat(),
        }


@dataclass(frozen=True)
class HistoryView:
    """The complete, ordered history published by one refresh.

    Attributes:
        entries: Entries in ascending id order
        block_count: Ledger count observed by the cycle
        cycle: Refresh cycle that built the view (0 for the initial empty view)
        built_at_ms: When the view was built (Unix ms)
    """

    entries: tuple[EnrichedEntry, ...] = ()
    block_count: int = 0
    cycle: int = 0
    built_at_ms: int = 0
    _by_id: dict[int, EnrichedEntry] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.entries, key=lambda e: e.id))
        object.__setattr__(self, "entries", ordered)
        object.__setattr__(self, "_by_id", {e.id: e for e in ordered})

    def __len__(self) -> int:
        return len(self.entries)

    def ordered(self, order: Order | str = Order.DESC) -> list[EnrichedEntry]:
        """Entries sorted by id, most recent first unless order is asc."""
        if Order(order) is Order.ASC:
            return list(self.entries)
        return list(reversed(self.entries))

    def entry(self, block_id: int) -> EnrichedEntry | None:
        return self._by_id.get(block_id)

    def entry_by_commit(self, commit_number: int) -> EnrichedEntry | None:
        """Best-effort lookup by commit number.

        A commit may contain several blocks or none; the lowest id wins.
        """
        for entry in self.entries:
            if entry.commit_number == commit_number:
                return entry
        return None

    def to_dicts(self, order: Order | str = Order.DESC) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.ordered(order)]


@dataclass(frozen=True)
class RefreshReport:
    """Outcome of one refresh cycle.

    Attributes:
        cycle: Cycle number (1-based)
        state: IDLE when the view was published, FAILED otherwise
        published: Whether a new view was published
        reason: Failure reason for a FAILED cycle
        block_count: Ledger count observed by the cycle
        notifications: Notifications replayed
        entries: Entries in the published view
        duplicates: Notifications skipped as repeats of a tx_id or id
        correlation_misses: Notifications dropped for missing or uncommitted metadata
        not_visible: Notifications dropped because id >= block_count
        enrichment_failures: Entries dropped because the ledger lookup failed
        duration_ms: Wall time of the cycle
    """

    cycle: int
    state: RefreshState
    published: bool
    reason: str | None = None
    block_count: int = 0
    notifications: int = 0
    entries: int = 0
    duplicates: int = 0
    correlation_misses: int = 0
    not_visible: int = 0
    enrichment_failures: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.state is not RefreshState.FAILED

    @property
    def dropped(self) -> int:
        return self.duplicates + self.correlation_misses + self.not_visible + self.enrichment_failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "state": self.state.value,
            "published": self.published,
            "reason": self.reason,
            "block_count": self.block_count,
            "notifications": self.notifications,
            "entries": self.entries,
            "duplicates": self.duplicates,
            "correlation_misses": self.correlation_misses,
            "not_visible": self.not_visible,
            "enrichment_failures": self.enrichment_failures,
            "duration_ms": self.duration_ms,
        }
