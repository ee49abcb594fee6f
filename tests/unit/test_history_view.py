"""
Unit tests for the published history view.

Tests cover:
- Ordering
- Lookup by id and best-effort lookup by commit number
- Refresh report helpers
"""

import pytest

from sdk.blockledger_sdk.models import CommitMetadata, Record
from sdk.blockledger_sdk.view import (
    EnrichedEntry,
    HistoryView,
    Order,
    RefreshReport,
    RefreshState,
)


def make_entry(block_id: int, commit_number: int) -> EnrichedEntry:
    return EnrichedEntry(
        id=block_id,
        name=f"block {block_id}",
        sum=block_id * 10,
        creator="0xabc",
        tx_id=f"0x{block_id:02x}",
        commit_number=commit_number,
        committed_at_ms=1_700_000_000_000 + commit_number,
    )


class TestHistoryView:
    """Tests for HistoryView."""

    @pytest.fixture
    def view(self):
        # Deliberately unsorted input
        return HistoryView(
            entries=(make_entry(2, 2), make_entry(0, 1), make_entry(1, 1), make_entry(3, 4)),
            block_count=4,
            cycle=1,
        )

    def test_default_order_is_most_recent_first(self, view):
        assert [e.id for e in view.ordered()] == [3, 2, 1, 0]

    def test_ascending_order(self, view):
        assert [e.id for e in view.ordered(Order.ASC)] == [0, 1, 2, 3]
        assert [e.id for e in view.ordered("asc")] == [0, 1, 2, 3]

    def test_unknown_order_rejected(self, view):
        with pytest.raises(ValueError):
            view.ordered("sideways")

    def test_entry_by_id(self, view):
        assert view.entry(2).name == "block 2"
        assert view.entry(9) is None

    def test_entry_by_commit_returns_lowest_id(self, view):
        """Several blocks may share a commit; lookup picks the lowest id."""
        assert view.entry_by_commit(1).id == 0
        assert view.entry_by_commit(4).id == 3

    def test_entry_by_commit_may_miss(self, view):
        assert view.entry_by_commit(3) is None

    def test_empty_view(self):
        view = HistoryView()

        assert len(view) == 0
        assert view.ordered() == []
        assert view.cycle == 0

    def test_equal_inputs_give_equal_views(self):
        a = HistoryView(entries=(make_entry(1, 1), make_entry(0, 1)), block_count=2, cycle=1)
        b = HistoryView(entries=(make_entry(0, 1), make_entry(1, 1)), block_count=2, cycle=1)

        assert a == b
        assert a.to_dicts() == b.to_dicts()

    def test_merge_takes_body_from_record(self):
        record = Record(id=5, name="authoritative", sum=1, creator="0xabc")
        commit = CommitMetadata(tx_id="0x05", commit_number=7, committed_at_ms=1000)

        entry = EnrichedEntry.merge(record, commit)

        assert entry.name == "authoritative"
        assert entry.commit_number == 7
        assert entry.to_dict()["committed_at"] == "1970-01-01T00:00:01+00:00"


class TestRefreshReport:
    """Tests for RefreshReport."""

    def test_dropped_sums_all_causes(self):
        report = RefreshReport(
            cycle=1,
            state=RefreshState.IDLE,
            published=True,
            duplicates=1,
            correlation_misses=2,
            not_visible=3,
            enrichment_failures=4,
        )

        assert report.ok
        assert report.dropped == 10

    def test_failed_report(self):
        report = RefreshReport(cycle=2, state=RefreshState.FAILED, published=False, reason="x")

        assert not report.ok
        assert report.to_dict()["state"] == "failed"
