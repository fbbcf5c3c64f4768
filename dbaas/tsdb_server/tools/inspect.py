"""
Snapshot inspection CLI for the TSDB server.

Reads a snapshot tree offline and reports what a server would load from it:
1. Per collection: users, records, and the covered time span
2. For one user: every record, oldest first, as JSON lines

Usage:
    tsdb-inspect --storage-dir <path> [--collection <name>] [--uid <uid>]

Invariants:
    - The tree is never modified
    - Fragments are replayed exactly as Store.load does
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from ..snapshot import fragments
from ..store import Store

logger = logging.getLogger(__name__)


@dataclass
class CollectionSummary:
    """What one collection directory holds.

    Attributes:
        collection: Collection name
        users: Number of users with at least one record
        records: Distinct records after replay
        first_ts: Oldest record timestamp
        last_ts: Newest record timestamp
    """

    collection: str
    users: int
    records: int
    first_ts: int | None
    last_ts: int | None

    def to_dict(self) -> dict[str, object]:
        return {
            "collection": self.collection,
            "users": self.users,
            "records": self.records,
            "first_ts": self.first_ts,
            "last_ts": self.last_ts,
        }


class InspectTool:
    """Loads collections from a snapshot tree into throwaway stores."""

    def __init__(self, storage_dir: str | Path) -> None:
        self.storage_dir = Path(storage_dir)

    def load(self, collection: str) -> Store:
        # Retention is irrelevant offline; nothing is ever swept here.
        store = Store(collection, ttl_hours=0, storage_root=self.storage_dir)
        store.load()
        return store

    def summarize(self, collection: str) -> CollectionSummary:
        store = self.load(collection)
        first_ts = last_ts = None
        for uid in store.uids():
            earliest = store.get_earliest_for_user(uid, -(2**63))
            latest = store.get_latest_for_user(uid, 2**63 - 1)
            if earliest is not None and (first_ts is None or earliest.ts < first_ts):
                first_ts = earliest.ts
            if latest is not None and (last_ts is None or latest.ts > last_ts):
                last_ts = latest.ts
        return CollectionSummary(
            collection=collection,
            users=len(store),
            records=store.record_count(),
            first_ts=first_ts,
            last_ts=last_ts,
        )

    def collections(self) -> list[str]:
        return fragments.list_collections(self.storage_dir)

    def dump_user(self, collection: str, uid: str, out: TextIO) -> int:
        """Write a user's records as JSON lines.

        Returns:
            Number of records written
        """
        store = self.load(collection)
        records = store.get_range(uid, -(2**63), 2**63 - 1)
        for record in records:
            out.write(json.dumps(record.to_dict()) + "\n")
        return len(records)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for the inspect tool."""
    parser = argparse.ArgumentParser(description="Inspect a TSDB snapshot directory")
    parser.add_argument("--storage-dir", "-d", required=True, help="Snapshot root directory")
    parser.add_argument("--collection", "-c", help="Only this collection")
    parser.add_argument("--uid", "-u", help="Dump this user's records (requires --collection)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    if args.uid and not args.collection:
        parser.error("--uid requires --collection")

    tool = InspectTool(args.storage_dir)
    if not tool.storage_dir.is_dir():
        print(f"Storage directory not found: {tool.storage_dir}", file=sys.stderr)
        sys.exit(1)

    if args.uid:
        tool.dump_user(args.collection, args.uid, sys.stdout)
        sys.exit(0)

    names = [args.collection] if args.collection else tool.collections()
    for name in names:
        print(json.dumps(tool.summarize(name).to_dict()))
    sys.exit(0)


if __name__ == "__main__":
    main()
