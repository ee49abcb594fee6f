"""
Reconciling indexer: the read-side history projection of a ledger.

The ledger only supports point lookups by id. The indexer rebuilds the full
history by replaying creation notifications, correlating each one with the
commit metadata of its transaction, and fetching the authoritative block
body from the ledger.

Refresh cycle:
    IDLE -> FETCHING -> CORRELATING -> ENRICHING -> PUBLISHING -> IDLE
                  \\            (count or replay failed)
                   ----------------------------------------> FAILED -> IDLE

Invariants:
    - The published view is replaced by one reference swap, never mutated
    - A failed or cancelled cycle leaves the previous view in place
    - At most one cycle runs at a time; triggers that arrive meanwhile
      collapse into a single follow-up cycle
    - Replaying unchanged inputs yields an identical set of entries
    - One bad entry never removes any other entry

How to change safely:
    - Keep every external call behind _call() so it gets a timeout
    - Keep publish as the last step with no await after it
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol, TypeVar

from .errors import CorrelationMissError, LedgerError, UnavailableError
from .models import CommitMetadata, Notification, Record
from .view import EnrichedEntry, HistoryView, Order, RefreshReport, RefreshState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT = 10.0
DEFAULT_MAX_CONCURRENCY = 16
METADATA_BATCH_SIZE = 200


class LedgerReader(Protocol):
    async def count(self) -> int: ...

    async def get(self, block_id: int) -> Record: ...


class NotificationSource(Protocol):
    def replay(self, start: int = 0) -> AsyncIterator[Notification]: ...

    def subscribe(self, start: int | None = None) -> AsyncIterator[Notification]: ...


class CommitMetadataSource(Protocol):
    async def get_commits(self, tx_ids: Iterable[str]) -> dict[str, CommitMetadata]: ...


def _log_refresh_crash(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Live-triggered refresh failed", exc_info=task.exception())


@dataclass
class _Counters:
    notifications: int = 0
    duplicates: int = 0
    correlation_misses: int = 0
    not_visible: int = 0
    enrichment_failures: int = 0


class ReconcilingIndexer:
    """Builds and publishes the enriched history of a ledger.

    Attributes:
        ledger: Source of count() and authoritative get(id)
        stream: Notification source (replay and live subscription)
        metadata: Commit metadata source
        call_timeout: Seconds allowed for any single external call
        max_concurrency: Ledger lookups in flight during enrichment

    Example:
        >>> async with LedgerClient("http://localhost:8545") as client:
        ...     indexer = ReconcilingIndexer(client)
        ...     report = await indexer.refresh()
        ...     for entry in indexer.view.ordered("desc"):
        ...         print(entry.id, entry.commit_number)
    """

    def __init__(
        self,
        ledger: LedgerReader,
        stream: NotificationSource | None = None,
        metadata: CommitMetadataSource | None = None,
        *,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        """Initialize the indexer.

        Args:
            ledger: Ledger reader
            stream: Notification source (defaults to the ledger client)
            metadata: Commit metadata source (defaults to the ledger client)
            call_timeout: Timeout for each external call, in seconds
            max_concurrency: Upper bound on concurrent ledger lookups
        """
        self.ledger = ledger
        self.stream: NotificationSource = stream if stream is not None else ledger  # type: ignore[assignment]
        self.metadata: CommitMetadataSource = metadata if metadata is not None else ledger  # type: ignore[assignment]
        self.call_timeout = call_timeout
        self.max_concurrency = max_concurrency

        self._view = HistoryView()
        self._state = RefreshState.IDLE
        self._last_report: RefreshReport | None = None
        self._cycle = 0
        self._failures = 0
        # Stream position one past the last notification in the published view
        self._stream_position: int | None = None

        self._lock = asyncio.Lock()
        self._requested = 0
        self._covered = 0

    @property
    def view(self) -> HistoryView:
        """The last published view (empty until the first successful cycle)."""
        return self._view

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def last_report(self) -> RefreshReport | None:
        return self._last_report

    @property
    def is_refreshing(self) -> bool:
        return self._lock.locked()

    def entries(self, order: Order | str = Order.DESC) -> list[EnrichedEntry]:
        return self._view.ordered(order)

    def entry(self, block_id: int) -> EnrichedEntry | None:
        return self._view.entry(block_id)

    def entry_by_commit(self, commit_number: int) -> EnrichedEntry | None:
        return self._view.entry_by_commit(commit_number)

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "cycles": self._cycle,
            "failed_cycles": self._failures,
            "entries": len(self._view),
            "view_cycle": self._view.cycle,
            "view_block_count": self._view.block_count,
            "view_built_at_ms": self._view.built_at_ms,
            "stream_position": self._stream_position,
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }

    async def refresh(self) -> RefreshReport:
        """Run a refresh cycle, or join the one that will cover this request.

        A request made while a cycle is running is served by the next cycle.
        Every request made before that next cycle starts shares it.

        Returns:
            Report of the cycle that served this request
        """
        self._requested += 1
        ticket = self._requested

        async with self._lock:
            if self._covered >= ticket and self._last_report is not None:
                return self._last_report

            covering = self._requested
            report = await self._run_cycle()
            self._covered = covering
            return report

    async def run_live(self, start: int | None = None, retry_delay: float = 1.0) -> None:
        """Refresh after every live notification until cancelled.

        Each received notification requests a refresh. Requests arriving
        while a cycle runs coalesce into one follow-up cycle.

        Without an explicit start, the subscription resumes at the stream
        position covered by the published view (refreshing first if nothing
        was published yet), so appends made before subscribing are delivered.

        Args:
            start: Stream position to subscribe from
            retry_delay: Seconds to wait before re-subscribing after a failure
        """
        pending: set[asyncio.Task] = set()
        position = start

        logger.info("Live refresh started", extra={"start": start})

        try:
            while True:
                if position is None:
                    position = await self._live_start()
                try:
                    async for notification in self.stream.subscribe(start=position):
                        position = notification.seq + 1
                        if len(pending) < 2:
                            task = asyncio.create_task(self.refresh())
                            pending.add(task)
                            task.add_done_callback(pending.discard)
                            task.add_done_callback(_log_refresh_crash)
                except LedgerError as e:
                    logger.warning(
                        f"Live subscription failed, retrying in {retry_delay}s: {e.message}",
                        extra={"position": position},
                    )
                else:
                    logger.info("Live subscription ended, re-subscribing", extra={"position": position})
                await asyncio.sleep(retry_delay)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Live refresh stopped")

    async def _live_start(self) -> int:
        if self._stream_position is None:
            await self.refresh()
        if self._stream_position is None:
            # Nothing published yet; deliver the whole stream
            return 0
        return self._stream_position

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise UnavailableError(f"{what} timed out after {self.call_timeout}s") from e

    async def _replay_all(self) -> list[Notification]:
        return [n async for n in self.stream.replay(0)]

    async def _run_cycle(self) -> RefreshReport:
        self._cycle += 1
        cycle = self._cycle
        started = time.monotonic()
        counters = _Counters()
        block_count = 0

        logger.debug("Refresh cycle started", extra={"cycle": cycle})

        try:
            self._state = RefreshState.FETCHING
            try:
                block_count = await self._call(self.ledger.count(), "count")
                notifications = await self._call(self._replay_all(), "notification replay")
            except LedgerError as e:
                return self._fail(cycle, started, block_count, e)

            counters.notifications = len(notifications)
            stream_position = max((n.seq for n in notifications), default=-1) + 1

            self._state = RefreshState.CORRELATING
            correlated = await self._correlate(notifications, block_count, counters)

            self._state = RefreshState.ENRICHING
            entries = await self._enrich(correlated, counters)

            self._state = RefreshState.PUBLISHING
            view = HistoryView(
                entries=tuple(entries),
                block_count=block_count,
                cycle=cycle,
                built_at_ms=int(time.time() * 1000),
            )
            self._view = view
            self._stream_position = stream_position
            self._state = RefreshState.IDLE

        except asyncio.CancelledError:
            self._state = RefreshState.IDLE
            logger.info("Refresh cycle cancelled, view unchanged", extra={"cycle": cycle})
            raise
        except Exception:
            self._state = RefreshState.IDLE
            self._failures += 1
            logger.error("Refresh cycle crashed, view unchanged", extra={"cycle": cycle}, exc_info=True)
            raise

        report = RefreshReport(
            cycle=cycle,
            state=RefreshState.IDLE,
            published=True,
            block_count=block_count,
            notifications=counters.notifications,
            entries=len(view),
            duplicates=counters.duplicates,
            correlation_misses=counters.correlation_misses,
            not_visible=counters.not_visible,
            enrichment_failures=counters.enrichment_failures,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        self._last_report = report

        logger.info(
            "View published",
            extra={
                "cycle": cycle,
                "entries": report.entries,
                "block_count": block_count,
                "dropped": report.dropped,
                "duration_ms": report.duration_ms,
            },
        )
        return report

    def _fail(self, cycle: int, started: float, block_count: int, error: LedgerError) -> RefreshReport:
        self._state = RefreshState.IDLE
        self._failures += 1

        report = RefreshReport(
            cycle=cycle,
            state=RefreshState.FAILED,
            published=False,
            reason=f"{error.code}: {error.message}",
            block_count=block_count,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        self._last_report = report

        logger.warning(
            f"Refresh cycle failed, keeping previous view: {error.message}",
            extra={"cycle": cycle, "error_code": error.code, "view_cycle": self._view.cycle},
        )
        return report

    async def _fetch_commits(self, tx_ids: list[str]) -> dict[str, CommitMetadata]:
        """Batch metadata lookup; a failed batch leaves its transactions unmatched."""
        commits: dict[str, CommitMetadata] = {}

        for i in range(0, len(tx_ids), METADATA_BATCH_SIZE):
            batch = tx_ids[i : i + METADATA_BATCH_SIZE]
            try:
                commits.update(await self._call(self.metadata.get_commits(batch), "commit metadata"))
            except LedgerError as e:
                logger.warning(
                    f"Commit metadata batch failed: {e.message}",
                    extra={"batch_start": i, "batch_size": len(batch)},
                )
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(
                    f"Commit metadata batch malformed: {e!r}",
                    extra={"batch_start": i, "batch_size": len(batch)},
                )

        return commits

    async def _correlate(
        self,
        notifications: list[Notification],
        block_count: int,
        counters: _Counters,
    ) -> list[tuple[Notification, CommitMetadata]]:
        tx_ids = list(dict.fromkeys(n.tx_id for n in notifications))
        commits = await self._fetch_commits(tx_ids)

        seen_tx: set[str] = set()
        seen_ids: set[int] = set()
        correlated: list[tuple[Notification, CommitMetadata]] = []

        for notification in notifications:
            if notification.tx_id in seen_tx or notification.id in seen_ids:
                counters.duplicates += 1
                logger.warning(
                    "Skipping repeated notification",
                    extra={"id": notification.id, "tx_id": notification.tx_id, "seq": notification.seq},
                )
                continue
            seen_tx.add(notification.tx_id)
            seen_ids.add(notification.id)

            if notification.id >= block_count:
                counters.not_visible += 1
                logger.debug(
                    "Notification ahead of observed count",
                    extra={"id": notification.id, "block_count": block_count},
                )
                continue

            commit = commits.get(notification.tx_id)
            if commit is None or not commit.is_committed:
                miss = CorrelationMissError(
                    "No committed metadata for notification",
                    block_id=notification.id,
                    tx_id=notification.tx_id,
                )
                counters.correlation_misses += 1
                logger.warning(
                    f"Dropping entry: {miss.message}",
                    extra={
                        "error_code": miss.code,
                        "status": commit.status if commit else None,
                        **miss.details,
                    },
                )
                continue

            correlated.append((notification, commit))

        return correlated

    async def _enrich(
        self,
        correlated: list[tuple[Notification, CommitMetadata]],
        counters: _Counters,
    ) -> list[EnrichedEntry]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def lookup(notification: Notification, commit: CommitMetadata) -> EnrichedEntry | None:
            async with semaphore:
                try:
                    record = await self._call(self.ledger.get(notification.id), f"get({notification.id})")
                except LedgerError as e:
                    counters.enrichment_failures += 1
                    logger.warning(
                        f"Dropping entry: ledger lookup failed: {e.message}",
                        extra={"id": notification.id, "error_code": e.code},
                    )
                    return None
                except (KeyError, ValueError, TypeError) as e:
                    counters.enrichment_failures += 1
                    logger.warning(
                        f"Dropping entry: malformed ledger lookup result: {e!r}",
                        extra={"id": notification.id},
                    )
                    return None

            return EnrichedEntry.merge(record, commit)

        results = await asyncio.gather(*(lookup(n, c) for n, c in correlated))
        return [entry for entry in results if entry is not None]
