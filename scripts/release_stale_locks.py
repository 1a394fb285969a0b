#!/usr/bin/env python3
import argparse
import asyncio

from summary_cadence.cadence_store import PostgresCadenceStore
from summary_cadence.cadence import CadenceTracker
from summary_cadence.db import Database
from summary_cadence.utils import now_ms


async def run(args: argparse.Namespace) -> int:
    db = Database()
    try:
        store = PostgresCadenceStore(db)
        tracker = CadenceTracker(store)

        # Expired locks already read as unlocked; clearing them only tidies state.
        expired = await store.list_expired_locks(now_ms(), limit=args.limit)
        cleared = 0
        for state in expired:
            if args.dry_run:
                continue
            if await tracker.clear_expired_lock(state.session_id):
                cleared += 1

        print(f"release_stale_locks: found={len(expired)} cleared={cleared} dry_run={args.dry_run}")
        return 0
    finally:
        await db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Clear summary locks whose TTL has already passed.")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
