#!/usr/bin/env python3
"""Run the acquisition pipeline once, outside the API server.

Usage:
    python scripts/run_scan.py                      # all enabled sources
    python scripts/run_scan.py --source cagematch   # one source
    python scripts/run_scan.py --timeout 600
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cardgather.config import settings
from cardgather.database import init_db
from cardgather.log import setup_logging
from cardgather.services.scanner import RunControl, run_scan


async def main(sources: list[str] | None, timeout: float) -> int:
    await init_db()
    summary = await run_scan(sources, control=RunControl(timeout))

    print(f"\nScan {summary.scan_id}: {summary.status}")
    print(f"  Pages fetched: {summary.pages_fetched} ok, {summary.pages_failed} failed")
    print(f"  Candidates after normalisation: {summary.candidates}")
    if summary.persisted:
        p = summary.persisted
        print(f"  Events: {p.new} new, {p.updated} updated, {p.unchanged} unchanged, "
              f"{p.protected} protected, {p.failed} failed")
    return 0 if summary.status == "completed" else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one CardGather pipeline pass")
    parser.add_argument("--source", action="append", dest="sources",
                        help="source key to crawl (repeatable); default: all enabled")
    parser.add_argument("--timeout", type=float, default=settings.run_timeout_seconds,
                        help="run deadline in seconds")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    setup_logging(args.log_level)
    sys.exit(asyncio.run(main(args.sources, args.timeout)))
