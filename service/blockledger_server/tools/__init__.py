"""
CLI tools for Block Ledger administration.

This module provides command-line tools for:
- admin: Inspect and verify a ledger database

Invariants:
    - Tools work offline (no running server required)
    - Tools never write to the ledger
"""

from .admin import LedgerAdmin

__all__ = ["LedgerAdmin"]
