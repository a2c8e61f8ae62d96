"""Allocation pool - the single source of truth for item quantities.

Every unit of an item is either in the pool (unallocated) or at exactly one
location. For each item, pool quantity plus the sum of all location quantities
equals the item's baseline (its ingested total). Every mutating call checks that
law for the items it touched and aborts if it does not hold.
"""

import logging
import numbers
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .errors import (
    AllocationError,
    InsufficientLocationQuantity,
    InsufficientPoolQuantity,
    InvariantViolation,
    OperationCancelled,
    StaleDeactivationRecord,
    UnknownLocation,
    ValidationError,
)
from .models import (
    AllocationConfig,
    DeactivationRecord,
    IngestEntry,
    ItemAllocation,
    ItemSnapshot,
    LocationAllocation,
    PoolCorrection,
    normalize_store_id,
    utc_now,
)
from .persistence import AllocationStore
from .undo import UndoLog

logger = logging.getLogger(__name__)

ChangeListener = Callable[[frozenset[str]], None]


def _coerce_quantity(value, what: str = "Quantity") -> int:
    """Convert a whole-number value to int, rejecting bools, fractions and negatives."""
    if isinstance(value, bool):
        raise ValidationError(f"{what} must be a whole number, got {value!r}")
    if isinstance(value, numbers.Integral):
        quantity = int(value)
    elif isinstance(value, numbers.Real) and float(value).is_integer():
        quantity = int(value)
    else:
        raise ValidationError(f"{what} must be a whole number, got {value!r}")
    if quantity < 0:
        raise ValidationError(f"{what} cannot be negative, got {quantity}")
    return quantity


def _require_item_number(item_number) -> str:
    value = "" if item_number is None else str(item_number).strip()
    if not value:
        raise ValidationError("Item number cannot be blank")
    return value


def _clean_text(value) -> str:
    return "" if value is None else str(value).strip()


def _clean_sku(value) -> Optional[str]:
    text = _clean_text(value)
    return text or None


@dataclass
class _PoolState:
    """Pre-mutation copy of the rows an operation may touch."""
    item_numbers: frozenset[str]
    pool: dict[str, ItemAllocation] = field(default_factory=dict)
    baselines: dict[str, int] = field(default_factory=dict)
    # location -> (location_name, is_active, rows for the touched items)
    locations: dict[str, tuple[Optional[str], bool, dict[str, ItemAllocation]]] = field(
        default_factory=dict
    )

    def describe(self, item_number: str) -> dict:
        pool_row = self.pool.get(item_number)
        return {
            "baseline": self.baselines.get(item_number, 0),
            "pool": pool_row.quantity if pool_row else 0,
            "locations": {
                code: rows[item_number].quantity
                for code, (_, _, rows) in self.locations.items()
                if item_number in rows
            },
        }


class AllocationPool:
    """
    Aggregate root owning the pool ledger and every location.

    Pool rows and location rows are independent ItemAllocation objects keyed by
    item number; they are reconciled by summing, never by identity.

    Read methods return copies. Mutations go through the methods below, which
    validate first (ValidationError / ConflictError leave state unchanged),
    then mutate, then verify conservation and notify subscribers with the set
    of changed item numbers.
    """

    def __init__(
        self,
        store: Optional[AllocationStore] = None,
        config: Optional[AllocationConfig] = None,
    ):
        self.store = store
        self.config = config or AllocationConfig()
        self.undo_log = UndoLog(self.config.undo_depth)
        self.corrections: list[PoolCorrection] = []
        self._pool: dict[str, ItemAllocation] = {}
        self._locations: dict[str, LocationAllocation] = {}
        self._baselines: dict[str, int] = {}
        self._listeners: list[ChangeListener] = []

    # ==================== CHANGE NOTIFICATION ====================

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callback receiving the changed item numbers after each mutation."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, item_numbers: Iterable[str]) -> None:
        changed = frozenset(item_numbers)
        for listener in list(self._listeners):
            listener(changed)

    # ==================== READS ====================

    @property
    def item_numbers(self) -> list[str]:
        return sorted(self._pool)

    @property
    def is_empty(self) -> bool:
        """True when the pool holds no items and no locations."""
        return not self._pool and not self._locations

    @property
    def has_allocations(self) -> bool:
        """Whether any location holds anything."""
        return any(loc.has_items for loc in self._locations.values())

    @property
    def total_allocated(self) -> int:
        return sum(loc.total_quantity for loc in self._locations.values())

    def pool_quantity(self, item_number: str) -> int:
        row = self._pool.get(item_number)
        return row.quantity if row else 0

    def location_quantity(self, location: str, item_number: str) -> int:
        loc = self._locations.get(location)
        return loc.quantity_of(item_number) if loc else 0

    def total_in_locations(self, item_number: str) -> int:
        return sum(loc.quantity_of(item_number) for loc in self._locations.values())

    def baseline(self, item_number: str) -> int:
        return self._baselines.get(item_number, 0)

    def get_item(self, item_number: str) -> Optional[ItemAllocation]:
        row = self._pool.get(item_number)
        return row.copy() if row else None

    def pool_items(self) -> list[ItemAllocation]:
        return [self._pool[n].copy() for n in sorted(self._pool)]

    def get_location(self, location: str) -> Optional[LocationAllocation]:
        loc = self._locations.get(location)
        return loc.copy() if loc else None

    def has_location(self, location: str) -> bool:
        return location in self._locations

    def locations(self) -> list[LocationAllocation]:
        return [loc.copy() for loc in self._locations.values()]

    def active_locations(self) -> list[LocationAllocation]:
        return [loc.copy() for loc in self._locations.values() if loc.is_active]

    # ==================== CONSERVATION ====================

    def _actual_total(self, item_number: str) -> int:
        return self.pool_quantity(item_number) + self.total_in_locations(item_number)

    def _has_negative(self, item_number: str) -> bool:
        if self.pool_quantity(item_number) < 0:
            return True
        return any(loc.quantity_of(item_number) < 0 for loc in self._locations.values())

    def _describe(self, item_number: str) -> dict:
        return {
            "baseline": self.baseline(item_number),
            "pool": self.pool_quantity(item_number),
            "locations": {
                code: loc.items[item_number].quantity
                for code, loc in self._locations.items()
                if item_number in loc.items
            },
        }

    def _capture(self, item_numbers: frozenset[str]) -> _PoolState:
        state = _PoolState(item_numbers=item_numbers)
        for n in item_numbers:
            if n in self._pool:
                state.pool[n] = self._pool[n].copy()
            if n in self._baselines:
                state.baselines[n] = self._baselines[n]
        for code, loc in self._locations.items():
            rows = {n: loc.items[n].copy() for n in item_numbers if n in loc.items}
            state.locations[code] = (loc.location_name, loc.is_active, rows)
        return state

    def _restore(self, state: _PoolState) -> None:
        for n in state.item_numbers:
            if n in state.pool:
                self._pool[n] = state.pool[n]
            else:
                self._pool.pop(n, None)
            if n in state.baselines:
                self._baselines[n] = state.baselines[n]
            else:
                self._baselines.pop(n, None)
        for code in list(self._locations):
            if code not in state.locations:
                del self._locations[code]
        for code, (name, is_active, rows) in state.locations.items():
            loc = self._locations.get(code)
            if loc is None:
                loc = LocationAllocation(location=code)
                self._locations[code] = loc
            loc.location_name = name
            loc.is_active = is_active
            for n in state.item_numbers:
                if n in rows:
                    loc.items[n] = rows[n]
                else:
                    loc.items.pop(n, None)

    def _verify(self, state: _PoolState) -> None:
        for n in sorted(state.item_numbers):
            expected = self.baseline(n)
            actual = self._actual_total(n)
            if actual != expected or self._has_negative(n):
                logger.error(
                    "Conservation violated for %s: before=%s after=%s",
                    n, state.describe(n), self._describe(n),
                )
                self._restore(state)
                raise InvariantViolation(n, expected, actual)

    def _refresh_totals(self, item_numbers: Iterable[str]) -> None:
        for n in item_numbers:
            row = self._pool.get(n)
            if row is not None:
                row.total_in_locations = self.total_in_locations(n)

    @contextmanager
    def _mutation(self, item_numbers: Iterable[str]):
        """Run a block of changes as one unit: roll back on error, verify on success."""
        state = self._capture(frozenset(item_numbers))
        try:
            yield
        except BaseException:
            self._restore(state)
            raise
        self._verify(state)
        self._refresh_totals(state.item_numbers)

    # ==================== ROW PRIMITIVES ====================

    def _ensure_pool_row(self, item_number: str, description: str = "", sku: Optional[str] = None) -> ItemAllocation:
        row = self._pool.get(item_number)
        if row is None:
            row = ItemAllocation(item_number=item_number, description=description, sku=sku)
            self._pool[item_number] = row
            self._baselines.setdefault(item_number, 0)
        else:
            if description and not row.description:
                row.description = description
            if sku and not row.sku:
                row.sku = sku
        return row

    def _ensure_location(self, location: str) -> LocationAllocation:
        loc = self._locations.get(location)
        if loc is None:
            loc = LocationAllocation(location=location)
            self._locations[location] = loc
        return loc

    def _to_location(self, item_number: str, loc: LocationAllocation, quantity: int) -> None:
        pool_row = self._pool[item_number]
        pool_row.quantity -= quantity
        pool_row.dirty = True
        row = loc.items.get(item_number)
        if row is None:
            # A fresh object: the location never shares the pool's row
            row = ItemAllocation(
                item_number=item_number,
                description=pool_row.description,
                sku=pool_row.sku,
            )
            loc.items[item_number] = row
        row.quantity += quantity
        row.dirty = True

    def _to_pool(self, item_number: str, loc: LocationAllocation, quantity: int) -> None:
        row = loc.items[item_number]
        pool_row = self._ensure_pool_row(item_number, row.description, row.sku)
        row.quantity -= quantity
        row.dirty = True
        if row.quantity == 0:
            del loc.items[item_number]
        pool_row.quantity += quantity
        pool_row.dirty = True

    def _allocation_target(self, location) -> str:
        """Check a location can receive stock and return its code.

        A location that was never seen is created on allocation when
        config.auto_create_locations is set; an inactive one always refuses.
        """
        code = normalize_store_id(location)
        if code is None:
            raise ValidationError("Location code cannot be blank")
        loc = self._locations.get(code)
        if loc is None:
            if not self.config.auto_create_locations:
                raise UnknownLocation(code)
        elif not loc.is_active:
            raise UnknownLocation(code, inactive=True)
        return code

    # ==================== INGEST ====================

    def _validate_entry(self, entry) -> IngestEntry:
        if not isinstance(entry, IngestEntry):
            try:
                entry = IngestEntry(*entry)
            except TypeError as e:
                raise ValidationError(f"Malformed import row {entry!r}: {e}") from e
        return IngestEntry(
            item_number=_require_item_number(entry.item_number),
            description=_clean_text(entry.description),
            store_id=normalize_store_id(entry.store_id),
            quantity=_coerce_quantity(entry.quantity),
            sku=_clean_sku(entry.sku),
        )

    def ingest(self, entries: Iterable, cancel_event=None) -> frozenset[str]:
        """
        Build or merge rows from normalized import tuples.

        Args:
            entries: IngestEntry values or (item_number, description, store_id,
                quantity[, sku]) tuples. A blank store sends the quantity to the pool.
            cancel_event: Optional object with is_set(); when set, the ingest stops
                and the pool is left exactly as it was.

        Returns:
            The item numbers that were touched

        Raises:
            ValidationError: A row has a blank item number or a negative quantity.
                Nothing is ingested.
            OperationCancelled: The cancel signal was observed.
        """
        validated = [self._validate_entry(e) for e in entries]
        affected = frozenset(e.item_number for e in validated)

        with self._mutation(affected):
            for entry in validated:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled("Ingest cancelled")
                self._apply_entry(entry)
                self._baselines[entry.item_number] += entry.quantity

        logger.info(
            "Ingested %d rows (%d items, %d units)",
            len(validated), len(affected), sum(e.quantity for e in validated),
        )
        if affected:
            self._notify(affected)
        return affected

    def _apply_entry(self, entry: IngestEntry) -> None:
        pool_row = self._ensure_pool_row(entry.item_number, entry.description, entry.sku)
        if entry.store_id is None:
            pool_row.quantity += entry.quantity
            pool_row.dirty = True
            return

        loc = self._ensure_location(entry.store_id)
        if not loc.is_active:
            logger.info("Import addressed inactive location %s, reactivating", loc.location)
            loc.is_active = True
        if entry.quantity == 0:
            return
        row = loc.items.get(entry.item_number)
        if row is None:
            row = ItemAllocation(
                item_number=entry.item_number,
                description=entry.description or pool_row.description,
                sku=entry.sku or pool_row.sku,
            )
            loc.items[entry.item_number] = row
        elif entry.description and not row.description:
            row.description = entry.description
        row.quantity += entry.quantity
        row.dirty = True

    # ==================== ALLOCATION ====================

    def add_location(self, location, location_name: Optional[str] = None) -> LocationAllocation:
        """Register an empty active location, or reactivate an existing one."""
        code = normalize_store_id(location)
        if code is None:
            raise ValidationError("Location code cannot be blank")
        loc = self._ensure_location(code)
        loc.is_active = True
        if location_name:
            loc.location_name = location_name
        self._notify(())
        return loc.copy()

    def allocate_to_location(self, item_number: str, location: str, quantity: int) -> None:
        """Move quantity from the pool remainder into a location."""
        item_number = _require_item_number(item_number)
        quantity = _coerce_quantity(quantity)
        if quantity == 0:
            raise ValidationError("Quantity to allocate must be positive")
        code = self._allocation_target(location)
        available = self.pool_quantity(item_number)
        if available < quantity:
            raise InsufficientPoolQuantity(item_number, available, quantity)

        with self._mutation({item_number}):
            self._to_location(item_number, self._ensure_location(code), quantity)

        logger.debug("Allocated %d x %s to %s", quantity, item_number, code)
        self._notify({item_number})

    def return_from_location(self, item_number: str, location: str, quantity: int) -> None:
        """Move quantity from a location back into the pool."""
        item_number = _require_item_number(item_number)
        quantity = _coerce_quantity(quantity)
        if quantity == 0:
            raise ValidationError("Quantity to return must be positive")
        code = normalize_store_id(location)
        loc = self._locations.get(code) if code else None
        if loc is None:
            raise UnknownLocation(str(location))
        held = loc.quantity_of(item_number)
        if held < quantity:
            raise InsufficientLocationQuantity(item_number, loc.location, held, quantity)

        with self._mutation({item_number}):
            self._to_pool(item_number, loc, quantity)

        logger.debug("Returned %d x %s from %s", quantity, item_number, loc.location)
        self._notify({item_number})

    def move_all_to_location(self, item_number: str, location: str) -> int:
        """Move the whole pool remainder of an item into a location. Returns the moved quantity."""
        item_number = _require_item_number(item_number)
        quantity = self.pool_quantity(item_number)
        if quantity == 0:
            return 0
        self.allocate_to_location(item_number, location, quantity)
        return quantity

    def correct_pool_quantity(self, item_number: str, new_quantity: int, reason: str) -> PoolCorrection:
        """
        Set an item's pool quantity and rebase its baseline by the same delta.

        This is an administrative correction (e.g. a recount) and cannot be undone
        through the undo log. A reason is required; the before/after baselines are
        logged and kept in self.corrections.
        """
        item_number = _require_item_number(item_number)
        new_quantity = _coerce_quantity(new_quantity)
        reason = _clean_text(reason)
        if not reason:
            raise ValidationError("A reason is required to correct a pool quantity")
        if item_number not in self._pool:
            raise ValidationError(f"Unknown item {item_number}")

        row = self._pool[item_number]
        old_quantity = row.quantity
        old_baseline = self.baseline(item_number)
        new_baseline = old_baseline + (new_quantity - old_quantity)

        with self._mutation({item_number}):
            row.quantity = new_quantity
            row.dirty = True
            self._baselines[item_number] = new_baseline

        correction = PoolCorrection(
            item_number=item_number,
            old_quantity=old_quantity,
            new_quantity=new_quantity,
            old_baseline=old_baseline,
            new_baseline=new_baseline,
            reason=reason,
            corrected_at=utc_now(),
        )
        self.corrections.append(correction)
        logger.warning(
            "Pool quantity for %s corrected %d -> %d, baseline %d -> %d (%s)",
            item_number, old_quantity, new_quantity, old_baseline, new_baseline, reason,
        )
        self._notify({item_number})
        return correction

    # ==================== DEACTIVATION / UNDO ====================

    def deactivate_location(self, location: str) -> Optional[DeactivationRecord]:
        """
        Take a location out of active allocation, returning everything it holds to the pool.

        Returns:
            The DeactivationRecord pushed onto the undo log, or None when the
            location held nothing (it is still marked inactive)

        Raises:
            UnknownLocation: The location does not exist
        """
        code = normalize_store_id(location)
        loc = self._locations.get(code) if code else None
        if loc is None:
            raise UnknownLocation(str(location))

        held = sorted(
            (row for row in loc.items.values() if row.quantity > 0),
            key=lambda r: r.item_number,
        )
        if not held:
            loc.is_active = False
            logger.info("Deactivated empty location %s", loc.location)
            self._notify(())
            return None

        snapshot = tuple(
            ItemSnapshot(
                item_number=row.item_number,
                description=row.description,
                quantity=row.quantity,
                sku=row.sku,
            )
            for row in held
        )
        affected = {s.item_number for s in snapshot}

        with self._mutation(affected):
            for snap in snapshot:
                self._to_pool(snap.item_number, loc, snap.quantity)
            loc.is_active = False

        record = DeactivationRecord(
            location=loc.location,
            location_name=loc.location_name,
            items=snapshot,
            record_id=uuid.uuid4().hex,
            deactivated_at=utc_now(),
        )
        self.undo_log.push(record)
        logger.info(
            "Deactivated %s, returned %d units of %d items to pool",
            loc.location, record.total_quantity, len(snapshot),
        )
        self._notify(affected)
        return record

    def undo_deactivation(self, record: DeactivationRecord) -> None:
        """
        Reverse a deactivation exactly: reallocate every snapshot and reactivate.

        Raises:
            StaleDeactivationRecord: The record was already undone, evicted, or
                cleared by an archive
            InsufficientPoolQuantity: Pool stock was spent elsewhere since the
                deactivation. Nothing is restored; the record stays pending.
        """
        if record not in self.undo_log:
            raise StaleDeactivationRecord(record.location, record.record_id)
        loc = self._locations.get(record.location)
        if loc is None:
            raise UnknownLocation(record.location)
        for snap in record.items:
            available = self.pool_quantity(snap.item_number)
            if available < snap.quantity:
                raise InsufficientPoolQuantity(snap.item_number, available, snap.quantity)

        affected = {s.item_number for s in record.items}
        with self._mutation(affected):
            for snap in record.items:
                self._to_location(snap.item_number, loc, snap.quantity)
            loc.is_active = True
            if record.location_name and not loc.location_name:
                loc.location_name = record.location_name

        self.undo_log.remove(record)
        logger.info("Undid deactivation of %s (%d units)", loc.location, record.total_quantity)
        self._notify(affected)

    def undo_last_deactivation(self) -> Optional[DeactivationRecord]:
        """Undo the most recent deactivation. Returns the record, or None if nothing to undo."""
        record = self.undo_log.peek()
        if record is None:
            return None
        self.undo_deactivation(record)
        return record

    # ==================== LIFECYCLE ====================

    def clear(self) -> None:
        """Drop every row, baseline and pending undo record."""
        changed = set(self._pool)
        for loc in self._locations.values():
            changed.update(loc.items)
        self._pool.clear()
        self._locations.clear()
        self._baselines.clear()
        self.undo_log.clear()
        logger.info("Cleared allocation pool (%d items)", len(changed))
        self._notify(changed)

    def save(self) -> None:
        """Write pool and location rows through the store and mark them clean."""
        if self.store is None:
            raise AllocationError("No store configured for this pool")
        self.store.save_all(self.pool_items(), self.locations())
        for row in self._pool.values():
            row.dirty = False
        for loc in self._locations.values():
            for row in loc.items.values():
                row.dirty = False
        logger.info("Saved %d items and %d locations", len(self._pool), len(self._locations))

    @classmethod
    def load(cls, store: AllocationStore, config: Optional[AllocationConfig] = None) -> "AllocationPool":
        """Rebuild a pool from persisted rows. Baselines are the loaded totals."""
        pool = cls(store=store, config=config)
        for item in store.load_items():
            number = _require_item_number(item.item_number)
            row = item.copy()
            row.item_number = number
            row.quantity = _coerce_quantity(row.quantity)
            row.dirty = False
            pool._pool[number] = row
        for saved in store.load_locations():
            code = normalize_store_id(saved.location)
            if code is None:
                raise ValidationError("Stored location has a blank code")
            loc = LocationAllocation(
                location=code,
                location_name=saved.location_name,
                is_active=saved.is_active,
            )
            for item in saved.items.values():
                quantity = _coerce_quantity(item.quantity)
                if quantity == 0:
                    continue
                pool._ensure_pool_row(item.item_number, item.description, item.sku)
                row = item.copy()
                row.quantity = quantity
                row.dirty = False
                loc.items[row.item_number] = row
            pool._locations[code] = loc
        for number in pool._pool:
            pool._baselines[number] = pool._actual_total(number)
        pool._refresh_totals(pool._pool)
        logger.info(
            "Loaded %d items and %d locations", len(pool._pool), len(pool._locations)
        )
        return pool
