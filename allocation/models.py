"""Data models for store allocation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from .config import (
    DEFAULT_UNDO_DEPTH,
    DEFAULT_AUTO_CREATE_LOCATIONS,
    DEFAULT_SORT_MODE,
)


def normalize_store_id(store_id) -> Optional[str]:
    """
    Normalize a store identifier from an import row.

    Blank or missing values mean "not assigned to a store" and return None,
    which sends the quantity to the pool.

    Example: " 101 " -> "101"
    Example: "" -> None
    """
    if store_id is None:
        return None
    value = str(store_id).strip()
    return value or None


class IngestEntry(NamedTuple):
    """One normalized import row (already parsed by the import collaborator)."""
    item_number: str
    description: str
    store_id: Optional[str]
    quantity: int
    sku: Optional[str] = None


@dataclass
class ItemAllocation:
    """A single item's quantity ledger entry, either in the pool or at a location."""
    item_number: str
    description: str = ""
    sku: Optional[str] = None
    quantity: int = 0
    total_in_locations: int = 0  # Only maintained on pool rows
    dirty: bool = False

    @property
    def grand_total(self) -> int:
        """Pool remainder plus everything allocated to locations."""
        return self.quantity + self.total_in_locations

    def copy(self) -> "ItemAllocation":
        """Independent copy of this row (never shares state with the original)."""
        return ItemAllocation(
            item_number=self.item_number,
            description=self.description,
            sku=self.sku,
            quantity=self.quantity,
            total_in_locations=self.total_in_locations,
            dirty=self.dirty,
        )

    def to_dict(self) -> dict:
        return {
            "item_number": self.item_number,
            "description": self.description,
            "sku": self.sku,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ItemAllocation":
        return cls(
            item_number=data["item_number"],
            description=data.get("description", ""),
            sku=data.get("sku"),
            quantity=data.get("quantity", 0),
        )


@dataclass
class LocationAllocation:
    """A store location with its own independent set of item rows."""
    location: str
    location_name: Optional[str] = None
    is_active: bool = True
    items: dict[str, ItemAllocation] = field(default_factory=dict)  # key = item_number

    @property
    def total_quantity(self) -> int:
        """Total units held by this location."""
        return sum(i.quantity for i in self.items.values())

    @property
    def has_items(self) -> bool:
        """Whether this location holds anything."""
        return any(i.quantity > 0 for i in self.items.values())

    def quantity_of(self, item_number: str) -> int:
        row = self.items.get(item_number)
        return row.quantity if row else 0

    def copy(self) -> "LocationAllocation":
        return LocationAllocation(
            location=self.location,
            location_name=self.location_name,
            is_active=self.is_active,
            items={k: v.copy() for k, v in self.items.items()},
        )

    def to_dict(self) -> dict:
        return {
            "location": self.location,
            "location_name": self.location_name,
            "is_active": self.is_active,
            "items": [i.to_dict() for i in self.items.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LocationAllocation":
        items = [ItemAllocation.from_dict(d) for d in data.get("items", [])]
        return cls(
            location=data["location"],
            location_name=data.get("location_name"),
            is_active=data.get("is_active", True),
            items={i.item_number: i for i in items},
        )


@dataclass(frozen=True)
class ItemSnapshot:
    """Immutable copy of a location row taken at deactivation time."""
    item_number: str
    description: str
    quantity: int
    sku: Optional[str] = None


@dataclass(frozen=True)
class DeactivationRecord:
    """Everything needed to reverse a deactivation without the live location."""
    location: str
    location_name: Optional[str]
    items: tuple[ItemSnapshot, ...]
    record_id: str
    deactivated_at: datetime

    @property
    def total_quantity(self) -> int:
        """Units returned to pool by the deactivation."""
        return sum(s.quantity for s in self.items)


@dataclass(frozen=True)
class AllocationArchive:
    """Lightweight manifest used for listing archives."""
    archive_id: str
    name: str
    archived_at: datetime
    entry_count: int
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "Id": self.archive_id,
            "Name": self.name,
            "ArchivedAt": self.archived_at.isoformat(),
            "EntryCount": self.entry_count,
            "Notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AllocationArchive":
        return cls(
            archive_id=data["Id"],
            name=data["Name"],
            archived_at=parse_timestamp(data["ArchivedAt"]),
            entry_count=data.get("EntryCount", 0),
            notes=data.get("Notes"),
        )


@dataclass(frozen=True)
class ArchivedItem:
    item_number: str
    description: str
    quantity: int
    sku: Optional[str] = None


@dataclass(frozen=True)
class ArchivedLocation:
    location: str
    location_name: Optional[str]
    items: tuple[ArchivedItem, ...] = ()


@dataclass(frozen=True)
class ArchiveData:
    """
    Immutable archive payload.

    The dict form (to_dict/from_dict) is the stable external schema:
    {Name, Notes, ArchivedAt, TotalItems, LocationCount,
     Locations: [{Location, LocationName, Items: [{ItemNumber, Description, Quantity, SKU}]}]}
    """
    name: str
    archived_at: datetime
    total_items: int
    location_count: int
    locations: tuple[ArchivedLocation, ...] = ()
    notes: Optional[str] = None

    def triples(self) -> set[tuple[str, str, int]]:
        """(location, item_number, quantity) for every archived row."""
        return {
            (loc.location, item.item_number, item.quantity)
            for loc in self.locations
            for item in loc.items
        }

    def to_dict(self) -> dict:
        return {
            "Name": self.name,
            "Notes": self.notes,
            "ArchivedAt": self.archived_at.isoformat(),
            "TotalItems": self.total_items,
            "LocationCount": self.location_count,
            "Locations": [
                {
                    "Location": loc.location,
                    "LocationName": loc.location_name,
                    "Items": [
                        {
                            "ItemNumber": item.item_number,
                            "Description": item.description,
                            "Quantity": item.quantity,
                            "SKU": item.sku,
                        }
                        for item in loc.items
                    ],
                }
                for loc in self.locations
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ArchiveData":
        locations = tuple(
            ArchivedLocation(
                location=loc["Location"],
                location_name=loc.get("LocationName"),
                items=tuple(
                    ArchivedItem(
                        item_number=item["ItemNumber"],
                        description=item.get("Description") or "",
                        quantity=int(item.get("Quantity", 0)),
                        sku=item.get("SKU"),
                    )
                    for item in loc.get("Items", [])
                ),
            )
            for loc in data.get("Locations", [])
        )
        return cls(
            name=data["Name"],
            notes=data.get("Notes"),
            archived_at=parse_timestamp(data["ArchivedAt"]),
            total_items=int(data.get("TotalItems", 0)),
            location_count=int(data.get("LocationCount", 0)),
            locations=locations,
        )


@dataclass
class ItemTotalSummary:
    """Per-item totals across the pool and all locations."""
    item_number: str
    description: str
    total_quantity: int
    location_count: int
    pool_quantity: int

    @property
    def allocated_quantity(self) -> int:
        """Total allocated quantity (total_quantity - pool_quantity)."""
        return self.total_quantity - self.pool_quantity

    @property
    def has_pool_items(self) -> bool:
        """Whether this item has any remaining in the pool."""
        return self.pool_quantity > 0


@dataclass
class StoreAllocation:
    location: str
    quantity: int
    location_name: Optional[str] = None


@dataclass
class ItemAllocationView:
    """An item with the stores that hold it."""
    item_number: str
    description: str
    store_allocations: list[StoreAllocation] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(s.quantity for s in self.store_allocations)


@dataclass
class AllocationConfig:
    """Configuration for an allocation session."""
    undo_depth: int = DEFAULT_UNDO_DEPTH
    auto_create_locations: bool = DEFAULT_AUTO_CREATE_LOCATIONS
    sort_mode: str = DEFAULT_SORT_MODE

    def to_dict(self) -> dict:
        """Convert config to dictionary for JSON export."""
        return {
            "undo_depth": self.undo_depth,
            "auto_create_locations": self.auto_create_locations,
            "sort_mode": self.sort_mode,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AllocationConfig":
        """Create config from dictionary (JSON import)."""
        return cls(
            undo_depth=data.get("undo_depth", DEFAULT_UNDO_DEPTH),
            auto_create_locations=data.get("auto_create_locations", DEFAULT_AUTO_CREATE_LOCATIONS),
            sort_mode=data.get("sort_mode", DEFAULT_SORT_MODE),
        )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class PoolCorrection:
    """Audit entry for an administrative rebase of an item's conservation baseline."""
    item_number: str
    old_quantity: int
    new_quantity: int
    old_baseline: int
    new_baseline: int
    reason: str
    corrected_at: datetime
