"""
Abstract base class for durable key-value stores.

Records persist through this narrow interface: one string payload per key,
``get``/``set``/``delete`` plus ``flush``.  Implementations must be
durable-on-return: once ``set`` returns the value survives a restart.
"""

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Abstract base class for string key-value stores."""

    def __init__(self, **config):
        self.config = config

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string, or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if deleted, False if it didn't exist."""

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def flush(self) -> None:
        """Push buffered writes to durable storage. No-op for write-through stores."""


class StorageError(Exception):
    """Base exception for storage errors."""


class StoragePermissionError(StorageError):
    """Raised when storage operation is not permitted."""
