"""Core module for store allocation logic."""

from .models import (
    IngestEntry,
    ItemAllocation,
    LocationAllocation,
    ItemSnapshot,
    DeactivationRecord,
    AllocationArchive,
    ArchiveData,
    ArchivedLocation,
    ArchivedItem,
    ItemTotalSummary,
    ItemAllocationView,
    StoreAllocation,
    PoolCorrection,
    AllocationConfig,
    normalize_store_id,
)
from .errors import (
    AllocationError,
    ValidationError,
    ConflictError,
    InsufficientPoolQuantity,
    InsufficientLocationQuantity,
    UnknownLocation,
    StaleDeactivationRecord,
    InvariantViolation,
    EmptyPoolError,
    AtomicFailure,
    OperationCancelled,
    ArchiveNotFoundError,
)
from .undo import UndoLog
from .persistence import AllocationStore, InMemoryStore, JsonDirectoryStore
from .pool import AllocationPool
from .archive import ArchiveEngine, make_archive_id, snapshot_pool
from .reporting import build_item_totals, build_item_allocation_views, sort_item_totals
from .frames import entries_from_frame, item_totals_to_frame, allocation_views_to_frame
from .worker import BackgroundWorker, CancellationToken

__all__ = [
    # Models
    "IngestEntry",
    "ItemAllocation",
    "LocationAllocation",
    "ItemSnapshot",
    "DeactivationRecord",
    "AllocationArchive",
    "ArchiveData",
    "ArchivedLocation",
    "ArchivedItem",
    "ItemTotalSummary",
    "ItemAllocationView",
    "StoreAllocation",
    "PoolCorrection",
    "AllocationConfig",
    "normalize_store_id",
    # Errors
    "AllocationError",
    "ValidationError",
    "ConflictError",
    "InsufficientPoolQuantity",
    "InsufficientLocationQuantity",
    "UnknownLocation",
    "StaleDeactivationRecord",
    "InvariantViolation",
    "EmptyPoolError",
    "AtomicFailure",
    "OperationCancelled",
    "ArchiveNotFoundError",
    # Pool, undo and persistence
    "AllocationPool",
    "UndoLog",
    "AllocationStore",
    "InMemoryStore",
    "JsonDirectoryStore",
    # Archive
    "ArchiveEngine",
    "make_archive_id",
    "snapshot_pool",
    # Reporting
    "build_item_totals",
    "build_item_allocation_views",
    "sort_item_totals",
    "entries_from_frame",
    "item_totals_to_frame",
    "allocation_views_to_frame",
    # Background work
    "BackgroundWorker",
    "CancellationToken",
]
