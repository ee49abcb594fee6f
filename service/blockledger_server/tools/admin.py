"""
Admin CLI tool for the Block Ledger.

This tool inspects a ledger database offline:
- count: Number of appended blocks
- get: One block by id
- notifications: A page of the notification stream
- verify: Check the ledger invariants

Usage:
    blockledger-admin --data-dir /var/lib/blockledger count
    blockledger-admin --data-dir /var/lib/blockledger get 3
    blockledger-admin --data-dir /var/lib/blockledger notifications --start 0 --limit 20
    blockledger-admin --data-dir /var/lib/blockledger verify

Invariants:
    - Tools never write to the ledger
    - verify exits non-zero when any problem is found
    - Output is JSON where it is meant to be parsed

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..ledger import Ledger, LedgerError, LedgerStore

logger = logging.getLogger(__name__)


class LedgerAdmin:
    """Offline inspection of a ledger database.

    Example:
        >>> admin = LedgerAdmin("/var/lib/blockledger")
        >>> await admin.count()
        3
        >>> await admin.verify()
        []
    """

    def __init__(self, data_dir: str, db_name: str = "ledger.db") -> None:
        self.store = LedgerStore(data_dir, db_name=db_name)
        self.ledger = Ledger(self.store)

    async def count(self) -> int:
        return await self.ledger.count()

    async def get(self, block_id: int) -> dict[str, Any]:
        record = await self.ledger.get(block_id)
        return record.to_dict()

    async def notifications(self, start: int = 0, limit: int = 100) -> list[dict[str, Any]]:
        page = await self.store.list_notifications(start, limit)
        return [n.to_dict() for n in page]

    async def verify(self) -> list[str]:
        """Check the ledger invariants.

        Returns:
            List of problems (empty when consistent)
        """
        return await self.store.verify()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Block Ledger admin tool")
    parser.add_argument(
        "--data-dir",
        default="/var/lib/blockledger",
        help="Directory holding the ledger database",
    )
    parser.add_argument("--db-name", default="ledger.db", help="Ledger database file name")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("count", help="Print the number of appended blocks")

    get_parser = subparsers.add_parser("get", help="Print one block as JSON")
    get_parser.add_argument("id", type=int, help="Block id")

    notifications_parser = subparsers.add_parser(
        "notifications", help="Print a page of notifications as JSON lines"
    )
    notifications_parser.add_argument("--start", type=int, default=0, help="First stream position")
    notifications_parser.add_argument("--limit", type=int, default=100, help="Page size")

    subparsers.add_parser("verify", help="Check the ledger invariants")

    return parser


async def _run(args: argparse.Namespace) -> int:
    admin = LedgerAdmin(args.data_dir, db_name=args.db_name)

    if not admin.store.db_path.exists():
        print(f"Ledger database not found: {admin.store.db_path}", file=sys.stderr)
        return 2

    if args.command == "count":
        print(await admin.count())
        return 0

    if args.command == "get":
        try:
            print(json.dumps(await admin.get(args.id)))
        except LedgerError as e:
            print(f"{e.code}: {e.message}", file=sys.stderr)
            return 1
        return 0

    if args.command == "notifications":
        for notification in await admin.notifications(args.start, args.limit):
            print(json.dumps(notification))
        return 0

    if args.command == "verify":
        problems = await admin.verify()
        if not problems:
            print("Ledger is consistent")
            return 0
        print(f"Ledger verification FAILED with {len(problems)} problem(s):")
        for problem in problems:
            print(f"  - {problem}")
        return 1

    return 2


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.WARNING)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
