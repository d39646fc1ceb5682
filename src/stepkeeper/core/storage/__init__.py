"""
Storage backends for stepkeeper.

Provides a durable string key-value interface with a local filesystem
implementation and an in-memory one for tests.
"""

from .base import (
    KeyValueStore,
    StorageError,
    StoragePermissionError,
)
from .local import LocalStore
from .memory import MemoryStore

__all__ = [
    "KeyValueStore",
    "LocalStore",
    "MemoryStore",
    "StorageError",
    "StoragePermissionError",
]
