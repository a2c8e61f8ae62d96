"""Archive engine - freezes an allocation pool into an immutable payload and back."""

import logging
import re
from datetime import datetime
from typing import Callable, Optional

from .config import ARCHIVE_TIMESTAMP_FORMAT
from .errors import (
    ArchiveNotFoundError,
    AtomicFailure,
    EmptyPoolError,
    OperationCancelled,
    ValidationError,
)
from .models import (
    AllocationArchive,
    AllocationConfig,
    ArchiveData,
    ArchivedItem,
    ArchivedLocation,
    IngestEntry,
    utc_now,
)
from .persistence import AllocationStore
from .pool import AllocationPool

logger = logging.getLogger(__name__)


def make_archive_id(name: str, archived_at: datetime) -> str:
    """
    Build a file-safe archive id from the archive time and name.

    Example: ("Jan Batch", 2025-01-14 09:30:00) -> "20250114_093000_Jan_Batch"
    """
    safe_name = re.sub(r"[^\w\-]+", "_", name).strip("_") or "archive"
    return f"{archived_at.strftime(ARCHIVE_TIMESTAMP_FORMAT)}_{safe_name}"


def snapshot_pool(
    pool: AllocationPool,
    name: str,
    archived_at: datetime,
    notes: Optional[str] = None,
) -> ArchiveData:
    """Project every location (active or not) of a pool into an ArchiveData payload."""
    locations = []
    for loc in pool.locations():
        items = tuple(
            ArchivedItem(
                item_number=row.item_number,
                description=row.description,
                quantity=row.quantity,
                sku=row.sku,
            )
            for row in sorted(loc.items.values(), key=lambda r: r.item_number)
            if row.quantity > 0
        )
        locations.append(ArchivedLocation(
            location=loc.location,
            location_name=loc.location_name,
            items=items,
        ))

    return ArchiveData(
        name=name,
        notes=notes,
        archived_at=archived_at,
        total_items=sum(item.quantity for loc in locations for item in loc.items),
        location_count=sum(1 for loc in locations if loc.items),
        locations=tuple(locations),
    )


class ArchiveEngine:
    """
    Archives and restores allocation sessions through a persistence store.

    Archiving is destructive to the working set: once payload and manifest are
    stored, the pool's saved session is emptied and the pool is cleared
    (including pending undo records). If either write fails, the archive is
    withdrawn and the pool is left untouched.
    """

    def __init__(
        self,
        store: AllocationStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock

    def _unique_archive_id(self, name: str, archived_at: datetime) -> str:
        base_id = make_archive_id(name, archived_at)
        existing = {m.archive_id for m in self.store.list_archives()}
        archive_id = base_id
        suffix = 2
        while archive_id in existing:
            archive_id = f"{base_id}_{suffix}"
            suffix += 1
        return archive_id

    def archive(
        self,
        pool: AllocationPool,
        name: str,
        notes: Optional[str] = None,
        cancel_event=None,
    ) -> ArchiveData:
        """
        Freeze the pool into an archive, then clear it.

        Args:
            pool: Working pool to consume
            name: Display name for the archive (required)
            notes: Optional free-text notes
            cancel_event: Optional object with is_set(); checked up to the moment
                the archive is written. A cancelled archive leaves the pool untouched.

        Returns:
            The stored ArchiveData payload

        Raises:
            ValidationError: Blank name
            EmptyPoolError: No location holds anything
            OperationCancelled: Cancelled before the write
            AtomicFailure: The store failed to record the archive; pool unchanged
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Archive name cannot be blank")
        notes = notes.strip() if notes and notes.strip() else None
        if not pool.has_allocations:
            raise EmptyPoolError("Nothing is allocated, nothing to archive")
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Archive cancelled")

        archived_at = self.clock()
        payload = snapshot_pool(pool, name, archived_at, notes)

        try:
            manifest = AllocationArchive(
                archive_id=self._unique_archive_id(name, archived_at),
                name=name,
                archived_at=archived_at,
                entry_count=sum(len(loc.items) for loc in payload.locations),
                notes=notes,
            )
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("Archive cancelled")
            self.store.save_archive(manifest, payload)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.error("Failed to archive allocation data as '%s': %s", name, e)
            raise AtomicFailure("Archive", e) from e

        if pool.store is not None:
            try:
                pool.store.save_all([], [])
            except Exception as e:
                logger.error(
                    "Failed to clear saved session after archiving '%s': %s", name, e
                )
                self.store.delete_archive(manifest.archive_id)
                raise AtomicFailure("Archive", e) from e

        remainder = sum(row.quantity for row in pool.pool_items())
        if remainder:
            logger.warning(
                "Archive '%s' does not keep %d unallocated pool units; they are cleared",
                name, remainder,
            )
        pool.clear()
        logger.info(
            "Archived allocation data: %s (%d units, %d locations)",
            manifest.archive_id, payload.total_items, payload.location_count,
        )
        return payload

    def restore(
        self,
        archive_data: ArchiveData,
        config: Optional[AllocationConfig] = None,
    ) -> AllocationPool:
        """
        Build a new pool from an archive payload.

        Every archived location comes back active and every archived unit starts
        allocated to its original location. The payload carries no pool remainder,
        so none is reconstructed. The pool is only returned once fully built.
        """
        pool = AllocationPool(store=self.store, config=config)
        entries = []
        for loc in archive_data.locations:
            pool.add_location(loc.location, loc.location_name)
            for item in loc.items:
                entries.append(IngestEntry(
                    item_number=item.item_number,
                    description=item.description,
                    store_id=loc.location,
                    quantity=item.quantity,
                    sku=item.sku,
                ))
        pool.ingest(entries)
        logger.info(
            "Restored archive '%s' (%d units, %d locations)",
            archive_data.name, pool.total_allocated, len(archive_data.locations),
        )
        return pool

    def restore_archive(
        self,
        archive_id: str,
        config: Optional[AllocationConfig] = None,
    ) -> AllocationPool:
        """Load an archive from the store and restore it."""
        try:
            data = self.store.load_archive(archive_id)
        except Exception as e:
            logger.error("Failed to load archive %s: %s", archive_id, e)
            raise AtomicFailure("Restore", e) from e
        if data is None:
            raise ArchiveNotFoundError(archive_id)
        return self.restore(data, config)

    def list_archives(self) -> list[AllocationArchive]:
        """Archives, newest first."""
        return self.store.list_archives()

    def get_archive(self, archive_id: str) -> Optional[ArchiveData]:
        return self.store.load_archive(archive_id)

    def most_recent_archive(self) -> Optional[AllocationArchive]:
        archives = self.list_archives()
        return archives[0] if archives else None

    def delete_archive(self, archive_id: str) -> bool:
        deleted = self.store.delete_archive(archive_id)
        if deleted:
            logger.info("Deleted archive %s", archive_id)
        else:
            logger.warning("Archive %s not found, nothing deleted", archive_id)
        return deleted
