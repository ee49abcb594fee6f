"""
Block Explorer - read-only web API over the reconciled ledger history.

Runs a ReconcilingIndexer against a ledger host and serves its published
view. Start with:

    uvicorn console.explorer.app:app
"""

from .app import create_app

__all__ = ["create_app"]
