"""
API routes for the Block Explorer.

Read-only endpoints over the indexer's published view, plus an on-demand
refresh. Every read serves the last published view, so a failing ledger
never empties the explorer.
"""

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from sdk.blockledger_sdk import EnrichedEntry, ReconcilingIndexer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Block Explorer"])


# --- Response Models ---


class EntryResponse(BaseModel):
    """One block enriched with commit context."""

    id: int
    name: str
    sum: int
    creator: str
    tx_id: str
    commit_number: int
    committed_at_ms: int
    committed_at: str


class BlockListResponse(BaseModel):
    """The published history."""

    items: list[EntryResponse]
    total: int
    order: str
    block_count: int = Field(..., description="Ledger count seen by the cycle that built the view")
    cycle: int = Field(..., description="Refresh cycle that built the view (0 = never refreshed)")
    built_at_ms: int


class RefreshResponse(BaseModel):
    """Outcome of one refresh cycle."""

    cycle: int
    state: str
    published: bool
    reason: str | None = None
    block_count: int
    notifications: int
    entries: int
    duplicates: int
    correlation_misses: int
    not_visible: int
    enrichment_failures: int
    duration_ms: int


# --- Dependencies ---


def get_indexer(request: Request) -> ReconcilingIndexer:
    """Get the indexer from app state."""
    return request.app.state.indexer


def _entry_to_dict(entry: EnrichedEntry) -> dict[str, Any]:
    return entry.to_dict()


# --- Block Routes ---


@router.get("/blocks", response_model=BlockListResponse)
async def list_blocks(
    request: Request,
    order: Literal["desc", "asc"] | None = Query(None, description="Sort by id"),
    indexer: ReconcilingIndexer = Depends(get_indexer),
):
    """
    List all blocks in the published view.

    Most recent first by default; order=asc gives chronological order.
    """
    order = order or request.app.state.settings.default_order
    view = indexer.view

    return BlockListResponse(
        items=[EntryResponse(**_entry_to_dict(e)) for e in view.ordered(order)],
        total=len(view),
        order=order,
        block_count=view.block_count,
        cycle=view.cycle,
        built_at_ms=view.built_at_ms,
    )


@router.get("/blocks/{block_id}", response_model=EntryResponse)
async def get_block(
    block_id: int,
    indexer: ReconcilingIndexer = Depends(get_indexer),
):
    """Get one block by id from the published view."""
    entry = indexer.entry(block_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Block {block_id} not found")
    return _entry_to_dict(entry)


@router.get("/commits/{commit_number}", response_model=EntryResponse)
async def get_block_by_commit(
    commit_number: int,
    indexer: ReconcilingIndexer = Depends(get_indexer),
):
    """
    Best-effort lookup by commit number.

    A commit may hold several blocks; the one with the lowest id is returned.
    """
    entry = indexer.entry_by_commit(commit_number)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No block found for commit {commit_number}")
    return _entry_to_dict(entry)


# --- Indexer Routes ---


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(indexer: ReconcilingIndexer = Depends(get_indexer)):
    """
    Rebuild the view now.

    A failed cycle keeps the previous view; the report says why.
    """
    report = await indexer.refresh()
    return report.to_dict()


@router.get("/status")
async def status(indexer: ReconcilingIndexer = Depends(get_indexer)) -> dict[str, Any]:
    """Indexer state, cycle counters and the last refresh report."""
    return indexer.stats()
