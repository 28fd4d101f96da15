#!/usr/bin/env python3
"""
Orphaned Asset Reconciliation for NaviStream.

Walks the unresolved entries of the ``orphaned_assets`` ledger. For each one
old enough to be settled:

- if no video record references its public id, its remote objects (original
  and derivatives) are deleted and the entry is marked resolved
- if a record does reference it, the asset is live and the entry is marked
  resolved without touching storage

Entries whose remote delete fails stay unresolved for the next run.

Usage:
    python scripts/reconcile_orphans.py [--dry-run] [--min-age-minutes 60] [--limit 500]
"""

import argparse
import asyncio
import logging
import sys

from datetime import UTC, datetime, timedelta
from typing import Any

from pymongo.errors import PyMongoError

from app.config import get_settings
from app.core.database import close_db, init_db
from app.services.storage_service import StorageService, StorageServiceError
from app.utils.logger import setup_logging


logger = logging.getLogger("reconcile_orphans")

DEFAULT_MIN_AGE_MINUTES = 60
DEFAULT_LIMIT = 500


async def reconcile(
    orphans: Any,
    videos: Any,
    storage: StorageService,
    min_age: timedelta,
    limit: int,
    dry_run: bool = False,
) -> dict[str, int]:
    """
    Settle unresolved orphan ledger entries.

    Args:
        orphans: ``orphaned_assets`` collection
        videos: ``videos`` collection
        storage: StorageService for the media bucket
        min_age: Entries younger than this are left alone
        limit: Maximum entries handled in one run
        dry_run: Only report what would be done

    Returns:
        Counts of ``deleted``, ``live``, ``failed`` and ``pending`` entries
    """
    cutoff = datetime.now(UTC) - min_age
    counts = {"deleted": 0, "live": 0, "failed": 0, "pending": 0}

    cursor = orphans.find({"resolved": False, "created_at": {"$lte": cutoff}}).sort("created_at", 1).limit(limit)
    async for entry in cursor:
        public_id = entry["public_id"]
        object_keys = list(entry.get("object_keys") or [])

        if await videos.count_documents({"public_id": public_id}, limit=1):
            logger.info("Asset %s is referenced by a video record, marking resolved", public_id)
            if dry_run:
                counts["pending"] += 1
                continue
            await _mark_resolved(orphans, entry["_id"], "referenced")
            counts["live"] += 1
            continue

        if dry_run:
            logger.info("Would delete %d objects of %s: %s", len(object_keys), public_id, ", ".join(object_keys))
            counts["pending"] += 1
            continue

        try:
            if object_keys:
                await storage.delete_files(object_keys)
        except StorageServiceError as e:
            logger.error("Failed to delete objects of %s: %s", public_id, e)
            counts["failed"] += 1
            continue

        await _mark_resolved(orphans, entry["_id"], "deleted")
        logger.info("Deleted %d orphaned objects of %s", len(object_keys), public_id)
        counts["deleted"] += 1

    return counts


async def _mark_resolved(orphans: Any, entry_id: Any, resolution: str) -> None:
    await orphans.update_one(
        {"_id": entry_id},
        {"$set": {"resolved": True, "resolution": resolution, "resolved_at": datetime.now(UTC)}},
    )


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete remote assets that have no video record",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reconcile_orphans.py --dry-run
  python scripts/reconcile_orphans.py --min-age-minutes 1440
        """,
    )
    parser.add_argument("--dry-run", action="store_true", help="List orphans without deleting anything")
    parser.add_argument(
        "--min-age-minutes",
        type=int,
        default=DEFAULT_MIN_AGE_MINUTES,
        help=f"Only settle entries at least this old (default: {DEFAULT_MIN_AGE_MINUTES})",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIMIT,
        help=f"Maximum entries handled in one run (default: {DEFAULT_LIMIT})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Display detailed operation logs")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    setup_logging("debug" if args.verbose else "info", json_logs=False)

    db_client = await init_db(settings)
    try:
        counts = await reconcile(
            db_client.get_orphaned_assets_collection(),
            db_client.get_videos_collection(),
            StorageService.from_settings(settings),
            min_age=timedelta(minutes=args.min_age_minutes),
            limit=args.limit,
            dry_run=args.dry_run,
        )
    except PyMongoError:
        logger.exception("Reconciliation aborted by a database error")
        return 1
    finally:
        await close_db()

    logger.info(
        "Reconciliation finished: %d deleted, %d live, %d failed, %d pending",
        counts["deleted"],
        counts["live"],
        counts["failed"],
        counts["pending"],
    )
    return 1 if counts["failed"] else 0


def main() -> int:
    args = parse_arguments()
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n\nReconciliation interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
