"""
Ledger service: the mutation and lookup contract over the ledger store.

The Ledger is the only writer of the ledger database. It:
1. Validates a submission against the acceptance policy
2. Assigns the transaction identity of the submission
3. Appends record + notification + commit row in one store transaction
4. Wakes live notification subscribers

Invariants:
    - Every successful append returns id == previous count
    - get(id) fails with OutOfRangeError for every id >= count()
    - All three submission entry points share append()

How to change safely:
    - New entry points must route through append()
    - Keep validation in front of the store transaction
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import OutOfRangeError, RejectedError, UnavailableError
from .records import CommitMetadata, Record, Receipt
from .store import LedgerStore

if TYPE_CHECKING:
    from ..stream.store import StoreNotificationStream

logger = logging.getLogger(__name__)

# Largest value an SQLite INTEGER column holds
MAX_SUM = 2**63 - 1


@dataclass(frozen=True)
class AcceptancePolicy:
    """Which submissions the ledger accepts.

    Attributes:
        allowed_creators: If set, only these identities may append
    """

    allowed_creators: frozenset[str] | None = None

    def check(self, creator: str) -> None:
        """Raise RejectedError if the creator may not append."""
        if self.allowed_creators is not None and creator not in self.allowed_creators:
            raise RejectedError(
                f"Creator {creator} is not allowed to append", creator=creator, forbidden=True
            )


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise UnavailableError(f"Ledger store unavailable: {e}") from e


def _require_amount(value: Any, field_name: str, creator: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RejectedError(f"{field_name} must be an integer", creator=creator)
    if value < 0:
        raise RejectedError(f"{field_name} must be non-negative", creator=creator)
    if value > MAX_SUM:
        raise RejectedError(f"{field_name} exceeds the storable range", creator=creator)
    return value


def make_tx_id(creator: str, name: str, sum_: int) -> str:
    """Derive a transaction identity for one submission."""
    payload = json.dumps(
        {"creator": creator, "name": name, "sum": sum_, "nonce": uuid.uuid4().hex},
        sort_keys=True,
    )
    return "0x" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


class Ledger:
    """Append-only, sequence-indexed record ledger.

    Example:
        >>> ledger = Ledger(store, stream)
        >>> receipt = await ledger.append("Test Name", 100, creator="0xabc")
        >>> record = await ledger.get(receipt.id)
        >>> await ledger.count()
        1
    """

    def __init__(
        self,
        store: LedgerStore,
        stream: StoreNotificationStream | None = None,
        policy: AcceptancePolicy | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: Ledger store
            stream: Notification stream to wake after each append
            policy: Acceptance policy (accepts any creator if omitted)
        """
        self.store = store
        self.stream = stream
        self.policy = policy or AcceptancePolicy()

    async def append(self, name: str, sum: int, creator: str) -> Receipt:
        """Append a record.

        Args:
            name: Record name (may be empty)
            sum: Non-negative integer
            creator: Identity of the submitting party

        Returns:
            Receipt with the assigned id and transaction identity

        Raises:
            RejectedError: If the submission is declined
            UnavailableError: If the store cannot be written
        """
        if not isinstance(creator, str) or not creator:
            raise RejectedError("creator is required")
        if not isinstance(name, str):
            raise RejectedError("name must be a string", creator=creator)
        _require_amount(sum, "sum", creator)
        self.policy.check(creator)

        tx_id = make_tx_id(creator, name, sum)

        with _store_errors():
            record, notification, commit = await self.store.append_record(
                name=name,
                sum_=sum,
                creator=creator,
                tx_id=tx_id,
            )

        if self.stream is not None:
            await self.stream.notify(notification)

        logger.info(
            "Block appended",
            extra={
                "id": record.id,
                "creator": creator,
                "tx_id": tx_id,
                "commit_number": commit.commit_number,
            },
        )

        return Receipt(
            id=record.id,
            tx_id=tx_id,
            commit_number=commit.commit_number,
            committed_at_ms=commit.committed_at_ms,
        )

    async def append_name_only(self, name: str, creator: str) -> Receipt:
        """Append a record with sum 0."""
        return await self.append(name, 0, creator)

    async def append_sum_of_two(self, a: int, b: int, creator: str) -> Receipt:
        """Append a record with an empty name and sum a + b."""
        _require_amount(a, "a", creator)
        _require_amount(b, "b", creator)
        return await self.append("", a + b, creator)

    async def get(self, block_id: int) -> Record:
        """Get a record by id.

        Raises:
            OutOfRangeError: If id >= count() or id < 0
        """
        with _store_errors():
            block_count = await self.store.count()
            if block_id < 0 or block_id >= block_count:
                raise OutOfRangeError(block_id, block_count)
            record = await self.store.get_record(block_id)

        if record is None:
            raise OutOfRangeError(block_id, block_count)
        return record

    async def count(self) -> int:
        """Return the number of appended records."""
        with _store_errors():
            return await self.store.count()

    async def get_commit(self, tx_id: str) -> CommitMetadata | None:
        """Commit metadata for a transaction; None means not (yet) committed."""
        with _store_errors():
            return await self.store.get_commit(tx_id)

    async def get_commits(self, tx_ids: Iterable[str]) -> dict[str, CommitMetadata]:
        with _store_errors():
            return await self.store.get_commits(tx_ids)

    async def stats(self) -> dict[str, Any]:
        with _store_errors():
            return await self.store.get_stats()
