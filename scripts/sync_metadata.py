#!/usr/bin/env python3
"""CLI script to sync, inspect, or clear the local metadata cache.

Usage:
    uv run python scripts/sync_metadata.py                      # warm core objects
    uv run python scripts/sync_metadata.py --objects Account Contact
    uv run python scripts/sync_metadata.py --objects Account --force
    uv run python scripts/sync_metadata.py --stats
    uv run python scripts/sync_metadata.py --clear

Reads DATABASE_URL and SF_* settings from environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import TYPE_CHECKING

# Ensure project root is on sys.path so we can import src.crmguard
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

if TYPE_CHECKING:
    from src.crmguard.metadata.schemas import CacheStats


def format_cache_stats(stats: CacheStats, core_total: int) -> str:
    return "\n".join(
        [
            "Metadata cache:",
            f"  Objects:          {stats.total_objects}",
            f"  Fields:           {stats.total_fields}",
            f"  Relationships:    {stats.total_relationships}",
            f"  Validation rules: {stats.total_validation_rules}",
            f"  Core cached:      {stats.core_objects_cached}/{core_total}",
            f"  TTL:              {stats.ttl}",
        ]
    )


async def run(objects: list[str] | None, force: bool, stats: bool, clear: bool) -> int:
    """Run the requested cache action. Returns the process exit code."""
    from src.crmguard.config import get_settings
    from src.crmguard.core.database import close_db, init_db
    from src.crmguard.core.errors import CRMError
    from src.crmguard.core.logging import configure_structlog
    from src.crmguard.main import create_cache_manager
    from src.crmguard.remote.salesforce import SalesforceRestService

    settings = get_settings()
    configure_structlog(settings)
    await init_db()

    try:
        if clear or stats:
            # Read-only manager: no remote credentials needed
            cache = create_cache_manager(settings, None)
            if clear:
                await cache.clear_cache()
                print("Metadata cache cleared.")
            else:
                print(format_cache_stats(await cache.get_cache_stats(), len(settings.CORE_SOBJECTS)))
            return 0

        cache = create_cache_manager(settings, SalesforceRestService.from_settings(settings))

        if objects and force:
            result = await cache.refresh_metadata(objects)
            if result is not None:
                print(
                    f"Synced {result.objects_synced} object(s): {result.fields_synced} fields, "
                    f"{result.relationships_synced} relationships, "
                    f"{result.validation_rules_synced} validation rules "
                    f"in {result.duration:.2f}s"
                )
        elif objects:
            missing = await cache.find_missing_or_stale(objects)
            await cache.ensure_metadata(objects)
            print(f"Synced {len(missing)} missing or stale object(s): {', '.join(missing) or 'none'}")
        else:
            await cache.initialize()
            print(f"Core objects ready: {', '.join(settings.CORE_SOBJECTS)}")
        return 0
    except CRMError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync or inspect the CRM metadata cache")
    parser.add_argument("--objects", nargs="+", default=None, help="Object names to sync (default: core objects)")
    parser.add_argument("--force", action="store_true", help="Re-sync even if cached metadata is fresh")
    parser.add_argument("--stats", action="store_true", help="Print cache statistics and exit")
    parser.add_argument("--clear", action="store_true", help="Delete all cached metadata and exit")
    args = parser.parse_args()

    if args.force and not args.objects:
        parser.error("--force requires --objects")
    if args.stats and args.clear:
        parser.error("--stats and --clear are mutually exclusive")

    sys.exit(asyncio.run(run(args.objects, args.force, args.stats, args.clear)))


if __name__ == "__main__":
    main()
