"""Bounded undo stack for location deactivations."""

import logging
from collections import deque
from typing import Iterator, Optional

from .config import DEFAULT_UNDO_DEPTH
from .models import DeactivationRecord

logger = logging.getLogger(__name__)


class UndoLog:
    """
    Stack of DeactivationRecord values, newest on top.

    Only deactivation is undoable. When the stack is full, pushing a new record
    evicts the oldest one.
    """

    def __init__(self, depth: int = DEFAULT_UNDO_DEPTH):
        if depth < 1:
            raise ValueError(f"Undo depth must be at least 1, got {depth}")
        self.depth = depth
        self._records: deque[DeactivationRecord] = deque()

    def push(self, record: DeactivationRecord) -> Optional[DeactivationRecord]:
        """Push a record. Returns the evicted record, if the stack was full."""
        evicted = None
        if len(self._records) >= self.depth:
            evicted = self._records.popleft()
            logger.info(
                "Undo log full, evicted deactivation of %s", evicted.location
            )
        self._records.append(record)
        return evicted

    def peek(self) -> Optional[DeactivationRecord]:
        return self._records[-1] if self._records else None

    def pop(self) -> Optional[DeactivationRecord]:
        return self._records.pop() if self._records else None

    def remove(self, record: DeactivationRecord) -> bool:
        """Remove a specific record (wherever it sits). Returns True if found."""
        for existing in self._records:
            if existing.record_id == record.record_id:
                self._records.remove(existing)
                return True
        return False

    def clear(self) -> None:
        self._records.clear()

    @property
    def can_undo(self) -> bool:
        return bool(self._records)

    def __contains__(self, record: DeactivationRecord) -> bool:
        return any(r.record_id == record.record_id for r in self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[DeactivationRecord]:
        """Iterate newest first."""
        return reversed(self._records)
