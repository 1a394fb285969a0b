#!/usr/bin/env python3
import argparse
import asyncio

from summary_cadence.config import get_settings
from summary_cadence.db import Database
from summary_cadence import pipeline as pipeline_module


async def run(args: argparse.Namespace) -> int:
    db = Database()
    try:
        pipe = pipeline_module.init_pipeline(db)

        latest = await pipe.summaries.get_latest(args.session_id)
        state = await pipe.tracker.get_state(args.session_id)
        print(
            f"regenerate: session={args.session_id} "
            f"latest_version={latest.version if latest else 0} "
            f"assistant_since={state.assistantMsgSince} locked={state.locked}"
        )
        if args.dry_run:
            cutoff = (latest.lastMessageTs or 0) if latest else 0
            turns = await pipe.selector.select_window(args.session_id, cutoff)
            print(f"regenerate: dry_run window_turns={len(turns)} cutoff={cutoff}")
            return 0

        result = await pipeline_module.regenerate_now(args.session_id)
        if result is None:
            print("regenerate: lock held by another task; try again later")
            return 1
        print(
            f"regenerate: status={result.status} version={result.version} "
            f"len={result.textLength}"
        )
        return 0
    finally:
        pipeline_module.reset_pipeline()
        await db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Force a rolling summary regeneration for one session.")
    parser.add_argument("--session-id", required=True)
    parser.add_argument("--dry-run", action="store_true", help="Show the turn window without generating.")
    args = parser.parse_args()
    if get_settings().use_memory_backend:
        parser.error("regenerate_summary needs STORAGE_BACKEND=postgres")
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
