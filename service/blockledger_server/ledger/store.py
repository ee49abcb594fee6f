"""
SQLite store for the block ledger.

This module manages the ledger database that stores:
- Records (the authoritative block bodies)
- Notifications (the replayable creation stream)
- Commits (commit metadata keyed by transaction identity)
- Ledger state (block counter, relay positions)

An append writes the record, its notification, its commit row and the
incremented counter in a single transaction, so a reader never sees the
counter move without the matching notification and vice versa.

Invariants:
    - records.id is dense: 0..block_count-1
    - notifications.seq is dense and follows append order
    - exactly one notification per record (UNIQUE record_id)
    - rows are never updated or deleted, except ledger_state counters

How to change safely:
    - Schema migrations must be additive
    - Keep every write inside BEGIN IMMEDIATE ... COMMIT
    - Run `blockledger-admin verify` against a copy before deploying

Table schema:
    records:
        - id INTEGER PRIMARY KEY
        - name TEXT
        - sum INTEGER
        - creator TEXT
        - created_at INTEGER (Unix ms)

    notifications:
        - seq INTEGER PRIMARY KEY
        - record_id INTEGER UNIQUE
        - name TEXT, sum INTEGER, creator TEXT
        - tx_id TEXT
        - emitted_at INTEGER (Unix ms)

    commits:
        - tx_id TEXT PRIMARY KEY
        - commit_number INTEGER
        - committed_at INTEGER (Unix ms)
        - status TEXT

    ledger_state:
        - key TEXT PRIMARY KEY
        - value INTEGER
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .errors import UnavailableError
from .records import CommitMetadata, CommitStatus, Notification, Record

logger = logging.getLogger(__name__)

BLOCK_COUNT_KEY = "block_count"
RELAY_KEY_PREFIX = "relay:"


class LedgerStore:
    """SQLite store for records, notifications and commit metadata.

    Thread safety:
        Each operation opens its own connection. Appends are serialised
        with an asyncio lock and SQLite's write lock (BEGIN IMMEDIATE).

    Example:
        >>> store = LedgerStore("/var/lib/blockledger")
        >>> await store.initialize()
        >>> record, notification, commit = await store.append_record(
        ...     name="Test Name", sum_=100, creator="0xabc", tx_id="0x01",
        ... )
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "ledger.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        commit_window_ms: int = 0,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
            commit_window_ms: Appends within this window share a commit number
                (0 gives every append its own commit)
        """
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.commit_window_ms = commit_window_ms
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the ledger database.

        Raises:
            UnavailableError: If the database cannot be opened
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise UnavailableError(f"Cannot open ledger database: {e}") from e

        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                sum INTEGER NOT NULL DEFAULT 0,
                creator TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_creator ON records(creator);

            CREATE TABLE IF NOT EXISTS notifications (
                seq INTEGER PRIMARY KEY,
                record_id INTEGER NOT NULL UNIQUE,
                name TEXT NOT NULL DEFAULT '',
                sum INTEGER NOT NULL DEFAULT 0,
                creator TEXT NOT NULL,
                tx_id TEXT NOT NULL,
                emitted_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_tx ON notifications(tx_id);

            CREATE TABLE IF NOT EXISTS commits (
                tx_id TEXT PRIMARY KEY,
                commit_number INTEGER NOT NULL,
                committed_at INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'committed'
            );

            CREATE INDEX IF NOT EXISTS idx_commits_number ON commits(commit_number);

            CREATE TABLE IF NOT EXISTS ledger_state (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO ledger_state (key, value) VALUES ('block_count', 0);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info("Initialized ledger database", extra={"db_path": str(self.db_path)})

    def _read_state(self, conn: sqlite3.Connection, key: str) -> int | None:
        row = conn.execute("SELECT value FROM ledger_state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    async def count(self) -> int:
        """Return the number of appended records."""
        with self._get_connection() as conn:
            return self._read_state(conn, BLOCK_COUNT_KEY) or 0

    async def get_record(self, record_id: int) -> Record | None:
        """Get a record by id, or None if it was never appended."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT id, name, sum, creator FROM records WHERE id = ?",
                (record_id,),
            ).fetchone()

        if not row:
            return None
        return Record(id=row["id"], name=row["name"], sum=row["sum"], creator=row["creator"])

    async def append_record(
        self,
        name: str,
        sum_: int,
        creator: str,
        tx_id: str,
        now_ms: int | None = None,
    ) -> tuple[Record, Notification, CommitMetadata]:
        """Append a record together with its notification and commit row.

        Args:
            name: Record name
            sum_: Record sum
            creator: Submitting party
            tx_id: Transaction identity of the submission
            now_ms: Optional timestamp override (Unix ms)

        Returns:
            Tuple of (stored record, emitted notification, commit metadata)
        """
        now = now_ms if now_ms is not None else int(time.time() * 1000)

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    record_id = self._read_state(conn, BLOCK_COUNT_KEY) or 0

                    conn.execute(
                        """
                        INSERT INTO records (id, name, sum, creator, created_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (record_id, name, sum_, creator, now),
                    )

                    seq_row = conn.execute(
                        "SELECT COALESCE(MAX(seq) + 1, 0) AS next_seq FROM notifications"
                    ).fetchone()
                    seq = seq_row["next_seq"]
                    conn.execute(
                        """
                        INSERT INTO notifications (seq, record_id, name, sum, creator, tx_id, emitted_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (seq, record_id, name, sum_, creator, tx_id, now),
                    )

                    commit = self._assign_commit(conn, tx_id, now)

                    conn.execute(
                        "UPDATE ledger_state SET value = ? WHERE key = ?",
                        (record_id + 1, BLOCK_COUNT_KEY),
                    )

                    conn.execute("COMMIT")

                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        logger.debug(
            "Appended record",
            extra={"id": record_id, "seq": seq, "tx_id": tx_id, "commit": commit.commit_number},
        )

        record = Record(id=record_id, name=name, sum=sum_, creator=creator)
        notification = Notification(
            seq=seq,
            id=record_id,
            name=name,
            sum=sum_,
            creator=creator,
            tx_id=tx_id,
        )
        return record, notification, commit

    def _assign_commit(self, conn: sqlite3.Connection, tx_id: str, now: int) -> CommitMetadata:
        """Place a transaction into the open commit or start a new one."""
        last = conn.execute(
            "SELECT commit_number, committed_at FROM commits ORDER BY commit_number DESC LIMIT 1"
        ).fetchone()

        if last and self.commit_window_ms > 0 and now - last["committed_at"] < self.commit_window_ms:
            commit_number = last["commit_number"]
            committed_at = last["committed_at"]
        else:
            commit_number = (last["commit_number"] if last else 0) + 1
            committed_at = now

        conn.execute(
            "INSERT INTO commits (tx_id, commit_number, committed_at, status) VALUES (?, ?, ?, ?)",
            (tx_id, commit_number, committed_at, CommitStatus.COMMITTED.value),
        )
        return CommitMetadata(
            tx_id=tx_id,
            commit_number=commit_number,
            committed_at_ms=committed_at,
            status=CommitStatus.COMMITTED,
        )

    async def list_notifications(self, start: int = 0, limit: int = 500) -> list[Notification]:
        """Read one page of notifications in stream order.

        Args:
            start: First stream position to return
            limit: Maximum number of notifications

        Returns:
            Notifications with seq >= start, ascending
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT seq, record_id, name, sum, creator, tx_id FROM notifications
                WHERE seq >= ? ORDER BY seq ASC LIMIT ?
                """,
                (start, limit),
            ).fetchall()

        return [
            Notification(
                seq=row["seq"],
                id=row["record_id"],
                name=row["name"],
                sum=row["sum"],
                creator=row["creator"],
                tx_id=row["tx_id"],
            )
            for row in rows
        ]

    async def notification_count(self) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM notifications").fetchone()
            return row["n"]

    async def get_commit(self, tx_id: str) -> CommitMetadata | None:
        """Get commit metadata for a transaction, or None if unknown."""
        commits = await self.get_commits([tx_id])
        return commits.get(tx_id)

    async def get_commits(self, tx_ids: Iterable[str]) -> dict[str, CommitMetadata]:
        """Get commit metadata for many transactions.

        Unknown transactions are absent from the result.
        """
        wanted = list(dict.fromkeys(tx_ids))
        if not wanted:
            return {}

        result: dict[str, CommitMetadata] = {}
        with self._get_connection() as conn:
            # Stay well below SQLite's host parameter limit
            for i in range(0, len(wanted), 500):
                chunk = wanted[i : i + 500]
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT tx_id, commit_number, committed_at, status FROM commits "
                    f"WHERE tx_id IN ({placeholders})",
                    chunk,
                ).fetchall()
                for row in rows:
                    result[row["tx_id"]] = CommitMetadata(
                        tx_id=row["tx_id"],
                        commit_number=row["commit_number"],
                        committed_at_ms=row["committed_at"],
                        status=CommitStatus(row["status"]),
                    )
        return result

    async def get_stats(self) -> dict[str, Any]:
        """Get ledger statistics."""
        with self._get_connection() as conn:
            block_count = self._read_state(conn, BLOCK_COUNT_KEY) or 0
            notifications = conn.execute("SELECT COUNT(*) AS n FROM notifications").fetchone()["n"]
            latest = conn.execute(
                "SELECT commit_number, committed_at FROM commits "
                "ORDER BY commit_number DESC LIMIT 1"
            ).fetchone()

        return {
            "block_count": block_count,
            "notification_count": notifications,
            "latest_commit_number": latest["commit_number"] if latest else None,
            "latest_commit_at_ms": latest["committed_at"] if latest else None,
        }

    async def get_relay_position(self, name: str) -> int:
        """Next stream position a relay has not yet forwarded."""
        with self._get_connection() as conn:
            return self._read_state(conn, RELAY_KEY_PREFIX + name) or 0

    async def set_relay_position(self, name: str, seq: int) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO ledger_state (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (RELAY_KEY_PREFIX + name, seq),
            )

    async def verify(self) -> list[str]:
        """Check the ledger invariants.

        Returns:
            List of problems found (empty when the ledger is consistent)
        """
        problems: list[str] = []

        with self._get_connection() as conn:
            block_count = self._read_state(conn, BLOCK_COUNT_KEY) or 0
            ids = [row["id"] for row in conn.execute("SELECT id FROM records ORDER BY id")]
            if ids != list(range(block_count)):
                problems.append(
                    f"record ids are not dense: expected 0..{block_count - 1}, found {len(ids)} rows"
                )

            seqs = [row["seq"] for row in conn.execute("SELECT seq FROM notifications ORDER BY seq")]
            if seqs != list(range(len(seqs))):
                problems.append("notification positions are not dense")

            mismatched = conn.execute(
                """
                SELECT n.seq FROM notifications n LEFT JOIN records r ON r.id = n.record_id
                WHERE r.id IS NULL OR r.name != n.name OR r.sum != n.sum OR r.creator != n.creator
                """
            ).fetchall()
            for row in mismatched:
                problems.append(f"notification {row['seq']} does not match its record")

            silent = conn.execute(
                """
                SELECT r.id FROM records r LEFT JOIN notifications n ON n.record_id = r.id
                WHERE n.seq IS NULL
                """
            ).fetchall()
            for row in silent:
                problems.append(f"record {row['id']} has no notification")

            uncommitted = conn.execute(
                """
                SELECT n.seq FROM notifications n LEFT JOIN commits c ON c.tx_id = n.tx_id
                WHERE c.tx_id IS NULL
                """
            ).fetchall()
            for row in uncommitted:
                problems.append(f"notification {row['seq']} has no commit metadata")

        return problems
