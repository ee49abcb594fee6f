"""
API module for the Block Ledger server.

This module provides the external interface: an aiohttp JSON RPC surface
over the Ledger and its notification stream.

Invariants:
    - Mutations identify the submitter via X-Creator
    - Reads never mutate the ledger

How to change safely:
    - Add new endpoints, don't change existing response shapes
    - Mirror every endpoint in the SDK client
"""

from .http_server import create_http_app, start_http_server

__all__ = [
    "create_http_app",
    "start_http_server",
]
