#!/usr/bin/env python3
"""Audit stored special events: which have match cards, which are protected.

Read-only. Lists special events inside the configured date window, split
into events with matches, events without matches and protected events.
"""

import argparse
import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cardgather.config import settings
from cardgather.database import async_session
from cardgather.schemas import CanonicalEvent
from cardgather.services.normalizer import parse_date
from cardgather.services.persistence import load_canonical_events


def categorize(
    events: list[CanonicalEvent],
    today: date,
    lookback_days: int,
    lookahead_days: int,
) -> dict[str, list[CanonicalEvent]]:
    """Bucket in-window special events into with_matches / without_matches / protected."""
    start = today - timedelta(days=lookback_days)
    end = today + timedelta(days=lookahead_days)
    buckets: dict[str, list[CanonicalEvent]] = {
        "with_matches": [], "without_matches": [], "protected": [],
    }

    def sort_key(event: CanonicalEvent) -> date:
        return parse_date(event.date) or date.max

    for event in sorted(events, key=sort_key):
        if not event.is_special_event:
            continue
        d = parse_date(event.date)
        if d is None or not (start <= d <= end):
            continue
        if event.protected:
            buckets["protected"].append(event)
        elif event.matches:
            buckets["with_matches"].append(event)
        else:
            buckets["without_matches"].append(event)
    return buckets


async def audit(today: date) -> None:
    async with async_session() as session:
        events = await load_canonical_events(session)
    print(f"Found {len(events)} stored events")

    buckets = categorize(events, today, settings.lookback_days, settings.lookahead_days)
    total = sum(len(v) for v in buckets.values())
    print(f"{total} special events between -{settings.lookback_days}d and +{settings.lookahead_days}d")
    print("=" * 80)

    print(f"\nWith matches ({len(buckets['with_matches'])}):")
    for e in buckets["with_matches"]:
        print(f"  {e.name:<50} | {len(e.matches):>2} matches | {e.date} | {e.promotion_name} | {e.source_tag}")

    print(f"\nWithout matches ({len(buckets['without_matches'])}):")
    for e in buckets["without_matches"]:
        print(f"  {e.name:<50} | {e.date} | {e.promotion_name} | {e.source_tag}")
    if not buckets["without_matches"]:
        print("  (none)")

    print(f"\nProtected ({len(buckets['protected'])}):")
    for e in buckets["protected"]:
        editor = e.last_edited_by or "unknown"
        print(f"  {e.name:<50} | {len(e.matches):>2} matches | {e.date} | edited by {editor}")
    if not buckets["protected"]:
        print("  (none)")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Audit stored special events")
    parser.add_argument("--today", type=date.fromisoformat, default=None,
                        help="reference date (YYYY-MM-DD), default: today")
    args = parser.parse_args()
    asyncio.run(audit(args.today or date.today()))
