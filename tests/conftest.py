"""Shared fixtures for allocation tests."""

from datetime import datetime, timezone

import pytest

from allocation.archive import ArchiveEngine
from allocation.models import AllocationConfig, IngestEntry
from allocation.persistence import InMemoryStore
from allocation.pool import AllocationPool

# Store codes used in tests
STORES = ["101", "102", "103", "104"]

FIXED_TIME = datetime(2025, 1, 14, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """Empty in-memory persistence store."""
    return InMemoryStore()


@pytest.fixture
def pool(store):
    """Empty pool with default config."""
    return AllocationPool(store=store)


@pytest.fixture
def strict_pool(store):
    """Pool that refuses to allocate to locations it has never seen."""
    return AllocationPool(store=store, config=AllocationConfig(auto_create_locations=False))


@pytest.fixture
def scenario_a(pool):
    """Scenario A: 100 x SKU1 ingested straight into the pool."""
    pool.ingest([("SKU1", "Widget", "", 100, None)])
    return pool


@pytest.fixture
def scenario_b(scenario_a):
    """Scenario B: 40 of the 100 x SKU1 allocated to location 101."""
    scenario_a.allocate_to_location("SKU1", "101", 40)
    return scenario_a


@pytest.fixture
def engine(store):
    """Archive engine with a fixed clock."""
    return ArchiveEngine(store, clock=lambda: FIXED_TIME)


def create_entry(
    item_number: str,
    quantity: int,
    store_id: str = "",
    description: str = "",
    sku: str = None,
) -> IngestEntry:
    """Helper to create a normalized import row."""
    return IngestEntry(
        item_number=item_number,
        description=description or f"Item {item_number}",
        store_id=store_id,
        quantity=quantity,
        sku=sku,
    )


def create_mixed_pool(pool: AllocationPool) -> AllocationPool:
    """Pool with two items spread over three stores plus some pool remainder.

    A100: pool 10, 101=5, 102=3   (total 18)
    B200: pool 0,  101=2, 103=7   (total 9)
    C300: pool 4                  (total 4)
    """
    pool.ingest([
        create_entry("A100", 10),
        create_entry("A100", 5, "101"),
        create_entry("A100", 3, "102"),
        create_entry("B200", 2, "101"),
        create_entry("B200", 7, "103"),
        create_entry("C300", 4),
    ])
    return pool


def assert_conserved(pool: AllocationPool, item_number: str, expected_total: int):
    """Pool remainder plus every location quantity equals the expected total."""
    total = pool.pool_quantity(item_number) + sum(
        loc.quantity_of(item_number) for loc in pool.locations()
    )
    assert total == expected_total
    assert pool.baseline(item_number) == expected_total
    assert pool.pool_quantity(item_number) >= 0
    for loc in pool.locations():
        assert loc.quantity_of(item_number) >= 0
