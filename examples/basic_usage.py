#!/usr/bin/env python3
"""Programmatic workflow run example.

This drives the orchestrator components directly:

* load settings from `.env` (``SYNC_DEDUP_CONFIDENCE`` must be set)
* run the tenant move-out workflow against the dry-run adapters
* check a property record for duplicates

The lease is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Sequence

from property_sync.core.config import SyncConfig
from property_sync.core.orchestrator import SyncOrchestrator


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the tenant move-out workflow (programmatic example).")
    parser.add_argument("--lease", required=True, help='Lease identifier, e.g. "L-200"')
    parser.add_argument("--move-out-date", default="2026-12-31", help="Move-out date (ISO 8601)")
    parser.add_argument(
        "--property",
        default="",
        help='Property name to check for duplicates, e.g. "Anderson Properties" (optional)',
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    orchestrator = SyncOrchestrator(SyncConfig(dry_run=True))
    await orchestrator.start()
    try:
        execution = await orchestrator.execute(
            "tenant-moveout", {"leaseId": args.lease, "moveOutDate": args.move_out_date}
        )
        print(f"Execution {execution.id}: {execution.status.value} in {execution.duration:.3f}s")
        print(json.dumps(execution.results, indent=2, default=str))

        if args.property:
            matches = await orchestrator.find_matches({"name": args.property})
            print(f"Duplicates for {args.property!r}: {[m.id for m in matches] or 'none'}")
    finally:
        await orchestrator.stop()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_run(_parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main())
