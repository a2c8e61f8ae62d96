"""Read-only reporting views over an allocation pool.

Views are recomputed from the pool on every call and never mutate it.
"""

from collections import defaultdict
from typing import Optional

from .config import (
    SORT_ITEM_ASC,
    SORT_MODES,
    SORT_QTY_ASC,
    SORT_QTY_DESC,
)
from .models import ItemAllocationView, ItemTotalSummary, StoreAllocation
from .pool import AllocationPool


def sort_item_totals(summaries: list[ItemTotalSummary], sort_mode: str) -> list[ItemTotalSummary]:
    """
    Sort item totals by one of the SORT_MODES.

    Quantity sorts break ties by item number so the order is stable across refreshes.
    """
    if sort_mode not in SORT_MODES:
        raise ValueError(f"Unknown sort mode {sort_mode!r}, expected one of {SORT_MODES}")
    if sort_mode == SORT_QTY_ASC:
        return sorted(summaries, key=lambda s: (s.total_quantity, s.item_number))
    if sort_mode == SORT_QTY_DESC:
        return sorted(summaries, key=lambda s: (-s.total_quantity, s.item_number))
    if sort_mode == SORT_ITEM_ASC:
        return sorted(summaries, key=lambda s: s.item_number)
    return sorted(summaries, key=lambda s: s.item_number, reverse=True)


def build_item_totals(
    pool: AllocationPool,
    sort_mode: Optional[str] = None,
) -> list[ItemTotalSummary]:
    """
    Per-item totals across pool and locations.

    Args:
        pool: Live allocation pool
        sort_mode: One of SORT_MODES (default: pool.config.sort_mode)

    Returns:
        One ItemTotalSummary per item number known to the pool
    """
    locations = pool.locations()
    summaries = []
    for item in pool.pool_items():
        held = [
            loc.quantity_of(item.item_number)
            for loc in locations
            if loc.quantity_of(item.item_number) > 0
        ]
        summaries.append(ItemTotalSummary(
            item_number=item.item_number,
            description=item.description,
            total_quantity=item.quantity + sum(held),
            location_count=len(held),
            pool_quantity=item.quantity,
        ))
    return sort_item_totals(summaries, sort_mode or pool.config.sort_mode)


def build_item_allocation_views(pool: AllocationPool) -> list[ItemAllocationView]:
    """
    Items with the stores that hold them.

    Each view lists (location, quantity > 0) pairs sorted by location code.
    Items held by no location are omitted. Views are ordered by total quantity
    descending, then item number.
    """
    descriptions = {item.item_number: item.description for item in pool.pool_items()}
    by_item: dict[str, list[StoreAllocation]] = defaultdict(list)

    for loc in pool.locations():
        for row in loc.items.values():
            if row.quantity > 0:
                by_item[row.item_number].append(StoreAllocation(
                    location=loc.location,
                    quantity=row.quantity,
                    location_name=loc.location_name,
                ))

    views = [
        ItemAllocationView(
            item_number=item_number,
            description=descriptions.get(item_number, ""),
            store_allocations=sorted(stores, key=lambda s: s.location),
        )
        for item_number, stores in by_item.items()
    ]
    return sorted(views, key=lambda v: (-v.total_quantity, v.item_number))
