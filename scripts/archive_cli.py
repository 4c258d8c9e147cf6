#!/usr/bin/env python3
"""Export, import and inspect the watch history archive from the command line

Usage:
    python scripts/archive_cli.py export [output.jsonl]
    python scripts/archive_cli.py import <input.jsonl> [--skip-existing-notes]
    python scripts/archive_cli.py stats
    python scripts/archive_cli.py takeout <watch-history.json>
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from db.database import Database
from db.models import utc_now_iso
from history import ExportService, WatchHistoryRepository, SyncMetaStore
from history.normalize import parse_takeout_json

logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING").upper())
logger = logging.getLogger(__name__)

DEFAULT_EXPORT_FILE = "watch-history-export.jsonl"
MAX_PRINTED_ERRORS = 10
RULE = "-" * 40


def print_errors(errors: list, label: str = "Line") -> None:
    if not errors:
        return
    print("\nErrors:")
    for err in errors[:MAX_PRINTED_ERRORS]:
        index = err["index"]
        where = f"{label} {index + 1}" if index is not None and index >= 0 else "File"
        print(f"  {where}: {err['message']}")
    if len(errors) > MAX_PRINTED_ERRORS:
        print(f"  ... and {len(errors) - MAX_PRINTED_ERRORS} more")


async def show_stats(db: Database) -> int:
    print("Gathering statistics...\n")
    result = await ExportService(db).export_all()
    stats = result.stats

    print("Export Statistics:")
    print(RULE)
    print(f"Total entries:        {stats.total_entries}")
    print(f"Entries with notes:   {stats.entries_with_notes}")
    print(f"Entries with tags:    {stats.entries_with_tags}")
    print(f"Total notes:          {stats.total_notes}")
    print(f"Total tags:           {stats.total_tags}")
    return 0


async def export_to_file(db: Database, output_path: str) -> int:
    resolved = Path(output_path).resolve()
    print("Exporting watch history...\n")

    start = time.monotonic()
    stats = await ExportService(db).export_to_file(resolved)
    duration_ms = int((time.monotonic() - start) * 1000)
    size_kb = resolved.stat().st_size / 1024

    print("Export complete!")
    print(RULE)
    print(f"Output file:          {resolved}")
    print(f"File size:            {size_kb:.2f} KB")
    print(f"Total entries:        {stats.total_entries}")
    print(f"Entries with notes:   {stats.entries_with_notes}")
    print(f"Entries with tags:    {stats.entries_with_tags}")
    print(f"Duration:             {duration_ms}ms")
    return 0


async def import_from_file(db: Database, input_path: str, skip_existing_notes: bool) -> int:
    resolved = Path(input_path).resolve()
    if not resolved.exists():
        print(f"Error: File not found: {resolved}", file=sys.stderr)
        return 1

    print(f"Importing from {resolved}...\n")

    start = time.monotonic()
    result = await ExportService(db).import_from_file(resolved, skip_existing_notes=skip_existing_notes)
    duration_ms = int((time.monotonic() - start) * 1000)

    print("Import complete!")
    print(RULE)
    print(f"Entries imported:     {result.imported}")
    print(f"Duplicates skipped:   {result.duplicates}")
    print(f"Notes created:        {result.notes_created}")
    print(f"Tags created:         {result.tags_created}")
    print(f"Tag assignments:      {result.tag_assignments}")
    print(f"Errors:               {len(result.errors)}")
    print(f"Duration:             {duration_ms}ms")
    print_errors(result.errors)
    return 0


async def import_takeout(db: Database, input_path: str) -> int:
    """Ingest a Google Takeout watch-history.json"""
    resolved = Path(input_path).resolve()
    if not resolved.exists():
        print(f"Error: File not found: {resolved}", file=sys.stderr)
        return 1

    print(f"Reading Takeout history from {resolved}...\n")
    entries, errors, stats = parse_takeout_json(resolved.read_text(encoding="utf-8"))
    if errors and not entries:
        print(f"Error: {errors[0]['message']}", file=sys.stderr)
        return 1

    result = await WatchHistoryRepository(db).bulk_insert(entries)
    await SyncMetaStore(db).set_last_takeout_import(utc_now_iso())

    print("Takeout import complete!")
    print(RULE)
    print(f"Records in file:      {stats['total']}")
    print(f"Parsed:               {stats['parsed']}")
    print(f"Skipped:              {stats['skipped']}")
    print(f"Duplicates in file:   {stats['duplicates']}")
    print(f"Inserted:             {result.inserted}")
    print(f"Already in archive:   {result.duplicates}")
    print_errors(errors + result.errors, label="Record")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Watch history export/import",
    )
    parser.add_argument(
        "--database",
        help="SQLAlchemy URL of the store (default: DATABASE_URL / WATCH_HISTORY_DB_PATH)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    export_cmd = sub.add_parser("export", help="Export to a JSON Lines file")
    export_cmd.add_argument("output", nargs="?", default=DEFAULT_EXPORT_FILE)

    import_cmd = sub.add_parser("import", help="Import from a JSON Lines file")
    import_cmd.add_argument("input")
    import_cmd.add_argument(
        "--skip-existing-notes",
        action="store_true",
        help="Don't re-create notes whose exact text already exists on the entry",
    )

    sub.add_parser("stats", help="Show export statistics without writing")

    takeout_cmd = sub.add_parser("takeout", help="Ingest a Google Takeout watch-history.json")
    takeout_cmd.add_argument("input")

    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    async with Database(args.database) as db:
        if args.command == "stats":
            return await show_stats(db)
        if args.command == "export":
            return await export_to_file(db, args.output)
        if args.command == "import":
            return await import_from_file(db, args.input, args.skip_existing_notes)
        if args.command == "takeout":
            return await import_takeout(db, args.input)
    return 1


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main())
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        exit_code = 1
    sys.exit(exit_code)
