#!/usr/bin/env python3
"""
Remove every persisted form block option, the uninstall step of the service.
This removes:
- The vendor instance host
- The vendor tracking id
- The global custom CSS

Usage: python scripts/purge_settings.py [--dry-run]
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from formblock.core.database import db
from formblock.core.logging import configure_logging, log_audit_event, log_error, log_info
from formblock.repositories import options as options_repo
from formblock.services.form_settings import ALL_OPTIONS, FormSettingsStore


async def count_persisted_options() -> int:
    stored = await options_repo.get_options(ALL_OPTIONS)
    return len(stored)


async def purge(*, dry_run: bool = False) -> int:
    await db.ensure_schema()
    try:
        count = await count_persisted_options()
        log_info("Found persisted form block options", count=count)
        if dry_run or count == 0:
            return count
        deleted = await FormSettingsStore().purge()
        log_audit_event("settings", "purge", source="cli", deleted=deleted)
        return deleted
    finally:
        await db.disconnect()


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Purge all persisted form block settings")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without actually deleting",
    )
    args = parser.parse_args(argv)

    configure_logging()
    if args.dry_run:
        log_info("Dry run mode - no changes will be made")

    try:
        count = await purge(dry_run=args.dry_run)
    except Exception as exc:
        log_error("Failed to purge form block settings", error=str(exc))
        return 1

    verb = "Would remove" if args.dry_run else "Removed"
    log_info(f"{verb} form block options", count=count)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
