"""
Block Ledger Server - append-only record ledger with a replayable notification stream.

This package implements the ledger host:
- Records ("blocks") holding a name, a non-negative sum and the submitter
- A dense, 0-based sequence number assigned to every appended record
- One creation notification and one commit metadata row per append
- An HTTP RPC surface for submission, point lookup and stream replay

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌───────────────────────────┐
    │   Client    │────▶│    HTTP     │────▶│          Ledger           │
    │   (SDK)     │     │   Server    │     │ append / get / count      │
    └─────────────┘     └─────────────┘     └─────────────┬─────────────┘
                                                          │ one transaction
                                                          ▼
                        ┌─────────────────────────────────────────────────┐
                        │   SQLite: records + notifications + commits     │
                        └─────────────────────────────────────────────────┘
                                             │
                        ┌────────────────────┴────────────────────┐
                        ▼                                         ▼
               ┌─────────────────┐                       ┌─────────────────┐
               │ Notification    │                       │  Kafka relay    │
               │ stream (replay, │                       │  (optional)     │
               │ live subscribe) │                       └─────────────────┘
               └─────────────────┘

Invariants:
    - Record ids are dense and strictly increasing, starting at 0
    - Records are never updated, deleted or reordered
    - Exactly one notification is recorded per append, in append order
    - A notification is never visible without its record, and vice versa

How to change safely:
    - Never renumber or rewrite existing rows
    - New record fields must be optional in notifications
    - Keep the HTTP surface and the SDK client in sync
"""

from ._version import __version__

__all__ = ["__version__"]
