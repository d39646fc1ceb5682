"""Persisted state for the daily reset scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from stepkeeper.persistence.fields import format_datetime, read_datetime
from stepkeeper.persistence.record import DirtyTrackedRecord


@dataclass
class DailyResetState:
    last_reset_time: datetime | None = None  # None: never reset


class DailyResetPersistentData(DirtyTrackedRecord[DailyResetState]):
    def default(self) -> DailyResetState:
        return DailyResetState()

    def encode(self, data: DailyResetState) -> dict[str, Any]:
        return {"lastResetTime": format_datetime(data.last_reset_time)}

    def decode(self, payload: dict[str, Any]) -> DailyResetState:
        return DailyResetState(last_reset_time=read_datetime(payload, "lastResetTime"))

    @property
    def last_reset_time(self) -> datetime | None:
        return self.data.last_reset_time

    @last_reset_time.setter
    def last_reset_time(self, value: datetime | None) -> None:
        self.data.last_reset_time = value
        self.mark_dirty()
