"""Daily reset scheduling."""

from .models import DailyResetPersistentData, DailyResetState
from .scheduler import DailyResetScheduler, ResetHandlerQueue

__all__ = [
    "DailyResetPersistentData",
    "DailyResetScheduler",
    "DailyResetState",
    "ResetHandlerQueue",
]
