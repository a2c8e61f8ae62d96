"""Tests for archiving and restoring allocation sessions."""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from allocation.archive import ArchiveEngine, make_archive_id, snapshot_pool
from allocation.errors import (
    ArchiveNotFoundError,
    AtomicFailure,
    EmptyPoolError,
    OperationCancelled,
    ValidationError,
)
from allocation.models import AllocationArchive, ArchiveData
from allocation import persistence
from allocation.persistence import InMemoryStore, JsonDirectoryStore
from allocation.pool import AllocationPool
from allocation.worker import CancellationToken
from tests.conftest import FIXED_TIME, create_mixed_pool


class FailingStore(InMemoryStore):
    """In-memory store whose archive writes and reads always fail."""

    def save_archive(self, manifest, payload):
        raise OSError("disk full")

    def load_archive(self, archive_id):
        raise OSError("disk unreadable")


class SessionFailingStore(InMemoryStore):
    """In-memory store that records archives but cannot write the session."""

    def save_all(self, items, locations):
        raise OSError("session file locked")


def ticking_clock(start: datetime = FIXED_TIME):
    """Clock that advances one minute per call."""
    calls = []

    def clock():
        calls.append(None)
        return start + timedelta(minutes=len(calls) - 1)

    return clock


class TestMakeArchiveId:
    """Archive ids: "<yyyymmdd_hhmmss>_<safe name>"."""

    def test_timestamp_and_safe_name(self):
        assert make_archive_id("Jan Batch", FIXED_TIME) == "20250114_093000_Jan_Batch"

    def test_unsafe_characters_replaced(self):
        assert make_archive_id("Jan/Batch #1", FIXED_TIME) == "20250114_093000_Jan_Batch_1"

    def test_name_with_no_safe_characters(self):
        assert make_archive_id("!!!", FIXED_TIME) == "20250114_093000_archive"


class TestArchive:
    """Freezing a pool and clearing the working set."""

    def test_archive_clears_pool(self, scenario_b, engine):
        """Scenario E: archiving 40 allocated units, then the pool is empty."""
        data = engine.archive(scenario_b, "Jan Batch")

        assert data.total_items == 40
        assert data.location_count == 1
        assert data.triples() == {("101", "SKU1", 40)}
        assert data.archived_at == FIXED_TIME
        assert scenario_b.is_empty

        manifest = engine.most_recent_archive()
        assert manifest.archive_id == "20250114_093000_Jan_Batch"
        assert manifest.name == "Jan Batch"
        assert manifest.entry_count == 1

    def test_notes_are_kept(self, scenario_b, engine):
        data = engine.archive(scenario_b, "Jan Batch", notes="  first run  ")

        assert data.notes == "first run"
        assert engine.most_recent_archive().notes == "first run"

    def test_blank_name_rejected(self, scenario_b, engine):
        with pytest.raises(ValidationError):
            engine.archive(scenario_b, "   ")
        assert scenario_b.location_quantity("101", "SKU1") == 40

    def test_nothing_allocated(self, scenario_a, engine):
        with pytest.raises(EmptyPoolError):
            engine.archive(scenario_a, "Empty")

        assert scenario_a.pool_quantity("SKU1") == 100
        assert engine.list_archives() == []

    def test_cancelled_archive_leaves_pool(self, scenario_b, engine):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            engine.archive(scenario_b, "Jan Batch", cancel_event=token)

        assert scenario_b.location_quantity("101", "SKU1") == 40
        assert engine.list_archives() == []

    def test_store_failure_is_atomic(self, scenario_b):
        engine = ArchiveEngine(FailingStore(), clock=lambda: FIXED_TIME)

        with pytest.raises(AtomicFailure) as exc_info:
            engine.archive(scenario_b, "Jan Batch")

        assert exc_info.value.operation == "Archive"
        assert isinstance(exc_info.value.cause, OSError)
        assert scenario_b.pool_quantity("SKU1") == 60
        assert scenario_b.location_quantity("101", "SKU1") == 40

    def test_session_write_failure_withdraws_archive(self):
        """Archive is only kept when the saved session could be emptied too."""
        store = SessionFailingStore()
        pool = create_mixed_pool(AllocationPool(store=store))
        engine = ArchiveEngine(store, clock=lambda: FIXED_TIME)

        with pytest.raises(AtomicFailure):
            engine.archive(pool, "Jan Batch")

        assert engine.list_archives() == []
        assert engine.get_archive("20250114_093000_Jan_Batch") is None
        assert pool.location_quantity("101", "A100") == 5
        assert pool.total_allocated == 17

    def test_archive_without_pool_store(self, engine):
        """A pool with no store is archived and cleared in memory only."""
        pool = create_mixed_pool(AllocationPool())

        data = engine.archive(pool, "Jan Batch")

        assert data.total_items == 17
        assert pool.is_empty

    def test_pool_remainder_is_logged(self, scenario_b, engine, caplog):
        with caplog.at_level(logging.WARNING, logger="allocation.archive"):
            engine.archive(scenario_b, "Jan Batch")

        assert "does not keep 60 unallocated pool units" in caplog.text

    def test_same_name_same_second_gets_suffix(self, pool, engine):
        create_mixed_pool(pool)
        engine.archive(pool, "Jan Batch")
        create_mixed_pool(pool)
        engine.archive(pool, "Jan Batch")

        ids = sorted(m.archive_id for m in engine.list_archives())
        assert ids == ["20250114_093000_Jan_Batch", "20250114_093000_Jan_Batch_2"]

    def test_inactive_locations_are_archived(self, pool, engine):
        create_mixed_pool(pool)
        pool.deactivate_location("103")

        data = engine.archive(pool, "With inactive")

        codes = [loc.location for loc in data.locations]
        assert sorted(codes) == ["101", "102", "103"]
        assert data.location_count == 2


class TestRestore:
    """Rebuilding a pool from an archive payload."""

    def test_restore_round_trip(self, pool, engine):
        create_mixed_pool(pool)
        before = snapshot_pool(pool, "x", FIXED_TIME).triples()

        data = engine.archive(pool, "Round trip")
        restored = engine.restore(data)

        assert isinstance(restored, AllocationPool)
        assert snapshot_pool(restored, "x", FIXED_TIME).triples() == before
        # Pool remainder is not part of the payload
        assert restored.pool_quantity("A100") == 0
        assert restored.baseline("A100") == 8
        assert restored.get_item("A100").total_in_locations == 8

    def test_restored_locations_are_active(self, pool, engine):
        create_mixed_pool(pool)
        pool.deactivate_location("103")
        data = engine.archive(pool, "With inactive")

        restored = engine.restore(data)

        assert restored.get_location("103").is_active
        assert not restored.get_location("103").has_items

    def test_restore_by_id(self, scenario_b, engine):
        engine.archive(scenario_b, "Jan Batch")

        restored = engine.restore_archive("20250114_093000_Jan_Batch")

        assert restored.location_quantity("101", "SKU1") == 40
        assert restored.store is engine.store

    def test_restore_unknown_id(self, engine):
        with pytest.raises(ArchiveNotFoundError):
            engine.restore_archive("nope")

    def test_restore_read_failure(self):
        engine = ArchiveEngine(FailingStore())

        with pytest.raises(AtomicFailure) as exc_info:
            engine.restore_archive("anything")
        assert exc_info.value.operation == "Restore"


class TestArchiveHistory:
    """Listing, lookup and deletion of stored archives."""

    def test_list_newest_first(self, store):
        engine = ArchiveEngine(store, clock=ticking_clock())
        for name in ("First", "Second", "Third"):
            pool = create_mixed_pool(AllocationPool(store=store))
            engine.archive(pool, name)

        assert [m.name for m in engine.list_archives()] == ["Third", "Second", "First"]
        assert engine.most_recent_archive().name == "Third"

    def test_most_recent_with_no_archives(self, engine):
        assert engine.most_recent_archive() is None

    def test_get_archive(self, scenario_b, engine):
        engine.archive(scenario_b, "Jan Batch")

        data = engine.get_archive("20250114_093000_Jan_Batch")
        assert data.name == "Jan Batch"
        assert engine.get_archive("missing") is None

    def test_delete_archive(self, scenario_b, engine):
        engine.archive(scenario_b, "Jan Batch")

        assert engine.delete_archive("20250114_093000_Jan_Batch")
        assert not engine.delete_archive("20250114_093000_Jan_Batch")
        assert engine.list_archives() == []


class TestArchiveDataSchema:
    """The dict form of ArchiveData is the external archive format."""

    def test_schema_keys(self, pool):
        create_mixed_pool(pool)
        data = snapshot_pool(pool, "Jan Batch", FIXED_TIME, notes="n")

        d = data.to_dict()
        assert set(d) == {"Name", "Notes", "ArchivedAt", "TotalItems", "LocationCount", "Locations"}
        assert set(d["Locations"][0]) == {"Location", "LocationName", "Items"}
        assert set(d["Locations"][0]["Items"][0]) == {"ItemNumber", "Description", "Quantity", "SKU"}
        assert ArchiveData.from_dict(d) == data

    def test_naive_timestamp_read_as_utc(self):
        data = ArchiveData.from_dict({
            "Name": "Legacy",
            "ArchivedAt": "2024-06-01T12:00:00",
            "Locations": [],
        })

        assert data.archived_at == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        assert data.total_items == 0


class TestJsonDirectoryStore:
    """Archive and session files on disk."""

    def test_archive_file_layout(self, tmp_path, pool):
        engine = ArchiveEngine(JsonDirectoryStore(tmp_path), clock=lambda: FIXED_TIME)
        create_mixed_pool(pool)

        engine.archive(pool, "Jan Batch")

        path = tmp_path / "20250114_093000_Jan_Batch.json"
        assert path.exists()
        with open(path, encoding="utf-8") as fh:
            contents = json.load(fh)
        assert contents["Manifest"]["Id"] == "20250114_093000_Jan_Batch"
        assert contents["Archive"]["TotalItems"] == 17
        assert not list(tmp_path.glob(".tmp_*"))

    def test_archive_round_trip_through_files(self, tmp_path, pool):
        store = JsonDirectoryStore(tmp_path)
        engine = ArchiveEngine(store, clock=lambda: FIXED_TIME)
        create_mixed_pool(pool)
        expected = snapshot_pool(pool, "x", FIXED_TIME).triples()
        engine.archive(pool, "Jan Batch")

        reopened = ArchiveEngine(JsonDirectoryStore(tmp_path))
        manifest = reopened.most_recent_archive()
        restored = reopened.restore_archive(manifest.archive_id)

        assert manifest.archived_at == FIXED_TIME
        assert snapshot_pool(restored, "x", FIXED_TIME).triples() == expected

    def test_duplicate_archive_id_rejected(self, tmp_path, scenario_b):
        store = JsonDirectoryStore(tmp_path)
        data = snapshot_pool(scenario_b, "Jan Batch", FIXED_TIME)
        engine = ArchiveEngine(store, clock=lambda: FIXED_TIME)
        engine.archive(scenario_b, "Jan Batch")
        manifest = engine.most_recent_archive()

        with pytest.raises(FileExistsError):
            store.save_archive(manifest, data)

    def test_unreadable_file_skipped(self, tmp_path, scenario_b, caplog):
        store = JsonDirectoryStore(tmp_path)
        ArchiveEngine(store, clock=lambda: FIXED_TIME).archive(scenario_b, "Jan Batch")
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="allocation.persistence"):
            manifests = store.list_archives()

        assert [m.name for m in manifests] == ["Jan Batch"]
        assert "broken.json" in caplog.text

    def test_session_save_and_load(self, tmp_path, pool):
        store = JsonDirectoryStore(tmp_path)
        create_mixed_pool(pool)
        pool.deactivate_location("103")
        pool.store = store
        pool.save()

        loaded = AllocationPool.load(JsonDirectoryStore(tmp_path))

        assert loaded.pool_quantity("A100") == 10
        assert loaded.pool_quantity("B200") == 7
        assert loaded.location_quantity("101", "B200") == 2
        assert not loaded.get_location("103").is_active
        assert loaded.baseline("B200") == 9
        assert store.list_archives() == []

    def test_archive_empties_saved_session(self, tmp_path):
        """Saved rows that were archived do not come back on the next load."""
        store = JsonDirectoryStore(tmp_path)
        pool = create_mixed_pool(AllocationPool(store=store))
        pool.save()
        engine = ArchiveEngine(store, clock=lambda: FIXED_TIME)

        data = engine.archive(pool, "Jan Batch")

        reloaded = AllocationPool.load(JsonDirectoryStore(tmp_path))
        assert reloaded.is_empty
        assert reloaded.total_allocated == 0
        assert data.total_items == 17
        assert engine.get_archive("20250114_093000_Jan_Batch").total_items == 17

    @pytest.mark.parametrize("archive_id", ["session", "../outside", "sub/dir", ".tmp_x", ""])
    def test_reserved_or_unsafe_ids_are_not_archives(self, tmp_path, archive_id):
        """Ids that name the session file or leave the directory are never touched."""
        store = JsonDirectoryStore(tmp_path / "archives")
        pool = create_mixed_pool(AllocationPool(store=store))
        pool.save()
        (tmp_path / "outside.json").write_text("{}", encoding="utf-8")

        assert not store.delete_archive(archive_id)
        assert store.load_archive(archive_id) is None
        assert store.session_path.exists()
        assert (tmp_path / "outside.json").exists()
        assert AllocationPool.load(store).total_allocated == 17

    def test_files_are_synced_before_replace(self, tmp_path, pool, monkeypatch):
        """Session and archive files are fsynced before they replace the target."""
        synced = []
        real_fsync = persistence.os.fsync

        def recording_fsync(fd):
            synced.append(fd)
            real_fsync(fd)

        monkeypatch.setattr(persistence.os, "fsync", recording_fsync)
        store = JsonDirectoryStore(tmp_path)
        create_mixed_pool(pool)
        pool.store = store
        pool.save()
        ArchiveEngine(store, clock=lambda: FIXED_TIME).archive(pool, "Jan Batch")

        # session save, archive file, emptied session
        assert len(synced) == 3

    def test_reserved_id_cannot_be_written(self, tmp_path, scenario_b):
        store = JsonDirectoryStore(tmp_path)
        manifest = AllocationArchive(
            archive_id="session",
            name="Session",
            archived_at=FIXED_TIME,
            entry_count=1,
        )

        with pytest.raises(ValidationError):
            store.save_archive(manifest, snapshot_pool(scenario_b, "Session", FIXED_TIME))
        assert not store.session_path.exists()

    def test_missing_session_loads_empty(self, tmp_path):
        loaded = AllocationPool.load(JsonDirectoryStore(tmp_path / "fresh"))
        assert loaded.is_empty
