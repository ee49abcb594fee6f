"""
Block Ledger Test Suite.

This package contains:
- unit/: Unit tests (no external services; SQLite in temp directories)
- integration/: Integration tests (in-process HTTP server, SDK, explorer, CLI)
"""
