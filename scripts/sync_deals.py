#!/usr/bin/env python3
"""CLI script to refresh canonical deals from Pipedrive.

Usage:
    uv run python scripts/sync_deals.py              # incremental: only deals not stored yet
    uv run python scripts/sync_deals.py --force      # full resync of recently updated deals
    uv run python scripts/sync_deals.py --id 1234    # refresh (or remove) one deal

Reads PIPEDRIVE_API_TOKEN, DATABASE_URL and the other settings from the
environment or the project's .env file. Without DATABASE_URL the run only
touches the in-memory store, which is useful as a dry run.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.dealsync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(deal_id: int | None, force: bool) -> int:
    """Run one refresh and print a summary; returns the process exit code."""
    from src.dealsync.context import build_context
    from src.dealsync.core.logging import configure_structlog
    from src.dealsync.deals.errors import DealSyncError

    configure_structlog()
    ctx = build_context()

    try:
        if deal_id is not None:
            snapshot = await ctx.service.get_deal(deal_id, force_refresh=True)
            if snapshot.record is None:
                print(f"Deal {deal_id} not found in Pipedrive; removed from the store")
            else:
                record = snapshot.record
                print(f"Deal {record.deal_id}: {record.title}")
                print(f"  Client:    {record.client_name or '-'}")
                print(f"  Training:  {len(record.training_products)}")
                print(f"  Extras:    {len(record.extra_products)}")
                print(f"  Notes:     {len(record.notes)}")
                print(f"  Files:     {len(record.attachments)}")
                if snapshot.stale:
                    print("  (refresh failed; cached copy shown)")
                    return 1
            return 0

        result = await ctx.service.refresh_all(force=force)
        print(f"Sync complete (forced={result.forced}):")
        print(f"  Listed:   {result.listed}")
        print(f"  Written:  {result.written}")
        print(f"  Skipped:  {result.skipped}")
        print(f"  Removed:  {result.removed}")
        print(f"  Errors:   {len(result.errors)}")
        for error in result.errors:
            print(f"    - {error}")
        return 1 if result.errors else 0
    except DealSyncError as exc:
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await ctx.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Refresh canonical deals from Pipedrive")
    parser.add_argument("--id", type=int, default=None, dest="deal_id", help="Refresh a single deal by id")
    parser.add_argument("--force", action="store_true", help="Refresh every recently updated deal")
    args = parser.parse_args()

    if args.deal_id is not None and args.force:
        parser.error("--id and --force cannot be combined")
    if args.deal_id is not None and args.deal_id <= 0:
        parser.error("--id must be a positive integer")

    sys.exit(asyncio.run(run(args.deal_id, args.force)))


if __name__ == "__main__":
    main()
