"""
Dirty-tracked persistent records.

A :class:`DirtyTrackedRecord` owns exactly one data object, loads it lazily
from a :class:`~stepkeeper.core.storage.KeyValueStore`, and writes it back
only when something marked it dirty.  Mutation is *not* observed: every
property setter on a subclass must call :meth:`mark_dirty` itself.

Payloads are JSON objects carrying a ``schemaVersion`` field next to the
record's own fields.  Migration between versions is not implemented; the
field is reserved so a future decoder can branch on it.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

from loguru import logger

from stepkeeper.core.exceptions import DeserializationError, FailureKind
from stepkeeper.core.storage import KeyValueStore

from .fields import SCHEMA_VERSION_FIELD

T = TypeVar("T")

KEY_PREFIX = "persistence"


class DirtyTrackedRecord(ABC, Generic[T]):
    """Base class for a single typed record persisted under one key.

    Subclasses implement :meth:`default`, :meth:`encode` and :meth:`decode`
    and expose typed properties whose setters call :meth:`mark_dirty`.
    """

    schema_version: ClassVar[int] = 1

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._data: T = self.default()
        self._is_dirty = False
        self._is_loaded = False
        self._load_failure: FailureKind | None = None

    # ── Codec ──────────────────────────────────────────────────────

    @abstractmethod
    def default(self) -> T:
        """Return a fresh default value."""

    @abstractmethod
    def encode(self, data: T) -> dict[str, Any]:
        """Encode *data* field-by-field into a JSON-safe dict."""

    @abstractmethod
    def decode(self, payload: dict[str, Any]) -> T:
        """Decode a payload produced by :meth:`encode`. Raises DeserializationError."""

    def on_loaded(self) -> None:
        """Called after every load, including the default fallback."""

    # ── Properties ─────────────────────────────────────────────────

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}/{type(self._data).__name__}"

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty

    @property
    def is_loaded(self) -> bool:
        return self._is_loaded

    @property
    def load_failure(self) -> FailureKind | None:
        """``deserialization_failed`` if the last load discarded a corrupt payload."""
        return self._load_failure

    @property
    def data(self) -> T:
        if not self._is_loaded:
            logger.warning(f"[{type(self).__name__}] Accessing data before load() was called")
        return self._data

    @property
    def name(self) -> str:
        return type(self).__name__

    # ── Lifecycle ──────────────────────────────────────────────────

    def mark_dirty(self) -> None:
        self._is_dirty = True

    def load(self) -> None:
        """Populate from the store, or keep a fresh default. Never raises."""
        try:
            raw = self._store.get(self.key)
        except Exception as e:
            logger.error(f"[{self.name}] Failed to read '{self.key}': {e}. Using defaults")
            raw = None

        self._load_failure = None
        if raw is None:
            logger.debug(f"[{self.name}] No saved data at '{self.key}', using defaults")
            self._data = self.default()
        else:
            try:
                self._data = self.decode(self._parse(raw))
                logger.debug(f"[{self.name}] Loaded from '{self.key}'")
            except (DeserializationError, ValueError, TypeError) as e:
                self._load_failure = FailureKind.DESERIALIZATION_FAILED
                logger.warning(f"[{self.name}] {self._load_failure} for '{self.key}': {e}. Using defaults")
                self._data = self.default()

        self._is_loaded = True
        self._is_dirty = False
        self.on_loaded()

    def save(self) -> bool:
        """Write the record if dirty.  Returns True when a write happened."""
        if not self._is_dirty:
            logger.trace(f"[{self.name}] Skipping save - no changes")
            return False

        payload = {SCHEMA_VERSION_FIELD: self.schema_version, **self.encode(self._data)}
        try:
            self._store.set(self.key, json.dumps(payload, sort_keys=True))
        except Exception as e:
            logger.error(f"[{self.name}] Failed to save '{self.key}': {e}")
            return False

        self._is_dirty = False
        logger.debug(f"[{self.name}] Saved to '{self.key}'")
        return True

    def clear(self) -> None:
        """Delete the backing key and reset to a loaded default."""
        try:
            self._store.delete(self.key)
        except Exception as e:
            logger.error(f"[{self.name}] Failed to delete '{self.key}': {e}")
        self._data = self.default()
        self._is_dirty = False
        self._is_loaded = True
        self._load_failure = None
        logger.info(f"[{self.name}] Cleared data at '{self.key}'")

    # ── Helpers ────────────────────────────────────────────────────

    def _parse(self, raw: str) -> dict[str, Any]:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise DeserializationError(f"invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise DeserializationError(f"expected a JSON object, got {type(payload).__name__}")
        version = payload.get(SCHEMA_VERSION_FIELD, self.schema_version)
        if version != self.schema_version:
            logger.info(f"[{self.name}] Payload schema v{version}, expected v{self.schema_version}")
        return payload
