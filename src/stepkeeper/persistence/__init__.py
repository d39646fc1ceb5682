"""Dirty-tracked records persisted to a durable key-value store."""

from .manager import PersistenceManager, PersistentRecord
from .record import DirtyTrackedRecord

__all__ = [
    "DirtyTrackedRecord",
    "PersistenceManager",
    "PersistentRecord",
]
