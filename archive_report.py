#!/usr/bin/env python3
"""
Review allocation archives stored in a JSON archive directory

Commands:
- list            : archives, newest first
- show <id>       : every (location, item, quantity) row of an archive
- totals <id>     : per-item totals of an archive
- delete <id>     : remove an archive
"""

import logging
import sys

from allocation import (
    ArchiveEngine,
    JsonDirectoryStore,
    allocation_views_to_frame,
    build_item_allocation_views,
    build_item_totals,
    item_totals_to_frame,
)
from config import ARCHIVE_DIR, TOTALS_SORT_MODE, LOG_LEVEL

logger = logging.getLogger("archive_report")


def list_archives(engine: ArchiveEngine):
    archives = engine.list_archives()
    if not archives:
        print("No archives found")
        return
    for manifest in archives:
        notes = f"  ({manifest.notes})" if manifest.notes else ""
        print(
            f"{manifest.archive_id}  {manifest.name}  "
            f"{manifest.archived_at:%Y-%m-%d %H:%M} UTC  {manifest.entry_count} rows{notes}"
        )
    print(f"\nTotal archives: {len(archives)}")


def show_archive(engine: ArchiveEngine, archive_id: str):
    pool = engine.restore_archive(archive_id)
    frame = allocation_views_to_frame(build_item_allocation_views(pool))
    print(frame.to_string(index=False))
    print(f"\nTotal units: {pool.total_allocated}")


def show_totals(engine: ArchiveEngine, archive_id: str):
    pool = engine.restore_archive(archive_id)
    frame = item_totals_to_frame(build_item_totals(pool, TOTALS_SORT_MODE))
    print(frame.to_string(index=False))


def main(argv: list[str]) -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not argv:
        print("Usage: python archive_report.py list")
        print("       python archive_report.py show|totals|delete <archive_id>")
        return 1

    command = argv[0]
    engine = ArchiveEngine(JsonDirectoryStore(ARCHIVE_DIR))

    if command == "list":
        list_archives(engine)
        return 0

    if command not in ("show", "totals", "delete") or len(argv) < 2:
        print(f"Error: unknown command or missing archive id: {' '.join(argv)}")
        return 1

    archive_id = argv[1]
    if command == "show":
        show_archive(engine, archive_id)
    elif command == "totals":
        show_totals(engine, archive_id)
    elif not engine.delete_archive(archive_id):
        print(f"Archive {archive_id} not found")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
