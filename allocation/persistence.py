"""Persistence port and adapters.

The allocation core only talks to an AllocationStore. Durability, locking and
storage layout belong to the adapter.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from .config import ARCHIVE_FILE_EXTENSION, SESSION_FILE_NAME
from .errors import ValidationError
from .models import (
    AllocationArchive,
    ArchiveData,
    ItemAllocation,
    LocationAllocation,
)

logger = logging.getLogger(__name__)


class AllocationStore(Protocol):
    """What the allocation core needs from a storage engine."""

    def load_items(self) -> list[ItemAllocation]: ...

    def load_locations(self) -> list[LocationAllocation]: ...

    def save_all(
        self,
        items: list[ItemAllocation],
        locations: list[LocationAllocation],
    ) -> None: ...

    def list_archives(self) -> list[AllocationArchive]: ...

    def load_archive(self, archive_id: str) -> Optional[ArchiveData]: ...

    def save_archive(self, manifest: AllocationArchive, payload: ArchiveData) -> None:
        """Store manifest and payload together: both are recorded or neither is."""
        ...

    def delete_archive(self, archive_id: str) -> bool: ...


class InMemoryStore:
    """Process-local store. Rows are copied in and out so callers never alias them."""

    def __init__(self):
        self._items: list[ItemAllocation] = []
        self._locations: list[LocationAllocation] = []
        self._manifests: dict[str, AllocationArchive] = {}
        self._payloads: dict[str, ArchiveData] = {}

    def load_items(self) -> list[ItemAllocation]:
        return [i.copy() for i in self._items]

    def load_locations(self) -> list[LocationAllocation]:
        return [loc.copy() for loc in self._locations]

    def save_all(self, items, locations) -> None:
        self._items = [i.copy() for i in items]
        self._locations = [loc.copy() for loc in locations]

    def list_archives(self) -> list[AllocationArchive]:
        return sorted(self._manifests.values(), key=lambda m: m.archived_at, reverse=True)

    def load_archive(self, archive_id: str) -> Optional[ArchiveData]:
        return self._payloads.get(archive_id)

    def save_archive(self, manifest: AllocationArchive, payload: ArchiveData) -> None:
        if manifest.archive_id in self._manifests:
            raise FileExistsError(f"Archive {manifest.archive_id} already exists")
        # Both dicts are updated only after the duplicate check, so a failure
        # above leaves neither entry behind.
        self._payloads[manifest.archive_id] = payload
        self._manifests[manifest.archive_id] = manifest

    def delete_archive(self, archive_id: str) -> bool:
        if archive_id not in self._manifests:
            return False
        del self._manifests[archive_id]
        del self._payloads[archive_id]
        return True


def _write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON to a temp file in the same directory, then rename over the target."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=path.suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class JsonDirectoryStore:
    """
    Stores the working session and archives as JSON files in one directory.

    Layout:
        <root>/session.json           - current items and locations
        <root>/<archive_id>.json      - {"Manifest": {...}, "Archive": {...}}

    Each archive file carries its own manifest, so writing the single file is the
    atomic unit for save_archive.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def session_path(self) -> Path:
        return self.root / SESSION_FILE_NAME

    def _archive_path(self, archive_id: str) -> Optional[Path]:
        """File for an archive id, or None when the id is reserved or leaves the directory."""
        if (
            not archive_id
            or archive_id == Path(SESSION_FILE_NAME).stem
            or archive_id.startswith(".")
            or "/" in archive_id
            or "\\" in archive_id
            or ".." in archive_id
        ):
            return None
        return self.root / f"{archive_id}{ARCHIVE_FILE_EXTENSION}"

    def _read_session(self) -> dict:
        if not self.session_path.exists():
            return {"items": [], "locations": []}
        with open(self.session_path, encoding="utf-8") as fh:
            return json.load(fh)

    def load_items(self) -> list[ItemAllocation]:
        return [ItemAllocation.from_dict(d) for d in self._read_session().get("items", [])]

    def load_locations(self) -> list[LocationAllocation]:
        return [
            LocationAllocation.from_dict(d)
            for d in self._read_session().get("locations", [])
        ]

    def save_all(self, items, locations) -> None:
        _write_json_atomic(self.session_path, {
            "items": [i.to_dict() for i in items],
            "locations": [loc.to_dict() for loc in locations],
        })

    def _archive_files(self) -> list[Path]:
        return [
            p for p in self.root.glob(f"*{ARCHIVE_FILE_EXTENSION}")
            if p.name != SESSION_FILE_NAME and not p.name.startswith(".tmp_")
        ]

    def list_archives(self) -> list[AllocationArchive]:
        manifests = []
        for path in self._archive_files():
            try:
                with open(path, encoding="utf-8") as fh:
                    manifests.append(AllocationArchive.from_dict(json.load(fh)["Manifest"]))
            except (OSError, ValueError, KeyError) as e:
                # One unreadable file should not hide the rest of the history
                logger.warning("Failed to read archive %s: %s", path, e)
        return sorted(manifests, key=lambda m: m.archived_at, reverse=True)

    def load_archive(self, archive_id: str) -> Optional[ArchiveData]:
        path = self._archive_path(archive_id)
        if path is None or not path.exists():
            return None
        with open(path, encoding="utf-8") as fh:
            return ArchiveData.from_dict(json.load(fh)["Archive"])

    def save_archive(self, manifest: AllocationArchive, payload: ArchiveData) -> None:
        path = self._archive_path(manifest.archive_id)
        if path is None:
            raise ValidationError(f"Archive id {manifest.archive_id!r} is reserved or not a plain name")
        if path.exists():
            raise FileExistsError(f"Archive {manifest.archive_id} already exists")
        _write_json_atomic(path, {
            "Manifest": manifest.to_dict(),
            "Archive": payload.to_dict(),
        })
        logger.debug("Wrote archive file %s", path)

    def delete_archive(self, archive_id: str) -> bool:
        path = self._archive_path(archive_id)
        if path is None or not path.exists():
            return False
        path.unlink()
        return True
