"""
Persistence manager.

Tracks every dirty-tracked record in the process so they can be loaded,
saved and cleared together (e.g. on app pause and shutdown).  Constructed
explicitly by the composition root and passed to whoever needs it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from loguru import logger

from stepkeeper.core.exceptions import FailureKind


@runtime_checkable
class PersistentRecord(Protocol):
    """Non-generic view of a record, as the manager sees it."""

    @property
    def key(self) -> str: ...

    @property
    def is_dirty(self) -> bool: ...

    @property
    def load_failure(self) -> FailureKind | None: ...

    def load(self) -> None: ...

    def save(self) -> bool: ...

    def clear(self) -> None: ...

    def mark_dirty(self) -> None: ...


class PersistenceManager:
    """Load/save/clear a set of registered records as a group."""

    def __init__(self) -> None:
        self._records: list[PersistentRecord] = []
        self._has_loaded_all = False

    @property
    def has_loaded_all(self) -> bool:
        return self._has_loaded_all

    @property
    def records(self) -> list[PersistentRecord]:
        return list(self._records)

    def register(self, record: PersistentRecord) -> None:
        """Track *record*.  Loads it immediately if load_all() already ran."""
        if any(r is record for r in self._records):
            return
        self._records.append(record)
        if self._has_loaded_all:
            record.load()
        logger.debug(f"[PersistenceManager] Registered: {record.key}")

    def unregister(self, record: PersistentRecord) -> None:
        self._records = [r for r in self._records if r is not record]
        logger.debug(f"[PersistenceManager] Unregistered: {record.key}")

    def load_all(self) -> None:
        logger.debug(f"[PersistenceManager] Loading all ({len(self._records)} registered)")
        for record in self._records:
            record.load()
        self._has_loaded_all = True

    def save_all(self) -> int:
        """Save every dirty record.  Returns the number of writes."""
        written = sum(1 for record in self._records if record.save())
        logger.debug(f"[PersistenceManager] save_all wrote {written}/{len(self._records)}")
        return written

    def force_save_all(self) -> int:
        for record in self._records:
            record.mark_dirty()
        return self.save_all()

    def save(self, key: str) -> bool:
        """Save the record registered under *key*.  False if no such record."""
        for record in self._records:
            if record.key == key:
                record.save()
                return True
        logger.warning(f"[PersistenceManager] No persistent data found with key '{key}'")
        return False

    def clear_all(self) -> None:
        logger.info("[PersistenceManager] Clearing all persistent data")
        for record in self._records:
            record.clear()

    def debug_info(self) -> str:
        lines = [f"PersistenceManager - {len(self._records)} registered:"]
        for r in self._records:
            line = f"  [{r.key}] dirty={r.is_dirty}"
            if r.load_failure is not None:
                line += f" load_failure={r.load_failure}"
            lines.append(line)
        return "\n".join(lines)
