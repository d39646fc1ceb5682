"""
Persisted step ledger with UTC day-boundary bookkeeping.

All writes to the ledger go through :class:`StepPersistentData` property
setters (which mark the record dirty) or :meth:`StepPersistentData.record_steps`,
the single reconciliation step that applies a delta to both counters.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from loguru import logger

from stepkeeper.core.clock import Clock
from stepkeeper.core.exceptions import DeserializationError
from stepkeeper.core.storage import KeyValueStore
from stepkeeper.persistence.fields import (
    SCHEMA_VERSION_FIELD,
    format_date,
    format_datetime,
    read_date,
    read_datetime,
    read_int,
    read_str,
)
from stepkeeper.persistence.record import DirtyTrackedRecord

from .models import STEP_RECORD_SCHEMA_VERSION, StepRecord, StepSource


class StepPersistentData(DirtyTrackedRecord[StepRecord]):
    """Typed, dirty-tracked access to the :class:`StepRecord`."""

    schema_version = STEP_RECORD_SCHEMA_VERSION

    def __init__(self, store: KeyValueStore, clock: Clock | None = None):
        super().__init__(store)
        self._clock = clock or Clock()

    # ── Codec ──────────────────────────────────────────────────────

    def default(self) -> StepRecord:
        return StepRecord()

    def encode(self, data: StepRecord) -> dict[str, Any]:
        return {
            "lastHealthSyncTime": format_datetime(data.last_health_sync_time),
            "pendingPedometerSteps": data.pending_pedometer_steps,
            "lastActiveSource": data.last_active_source.value,
            "totalStepsAllTime": data.total_steps_all_time,
            "stepsToday": data.steps_today,
            "lastStepDate": format_date(data.last_step_date),
        }

    def decode(self, payload: dict[str, Any]) -> StepRecord:
        source = read_str(payload, "lastActiveSource", StepSource.NONE.value)
        try:
            active_source = StepSource(source)
        except ValueError as e:
            raise DeserializationError(f"unknown step source {source!r}") from e

        return StepRecord(
            last_health_sync_time=read_datetime(payload, "lastHealthSyncTime"),
            pending_pedometer_steps=read_int(payload, "pendingPedometerSteps", minimum=0),
            last_active_source=active_source,
            total_steps_all_time=read_int(payload, "totalStepsAllTime", minimum=0),
            steps_today=read_int(payload, "stepsToday", minimum=0),
            last_step_date=read_date(payload, "lastStepDate"),
            schema_version=read_int(payload, SCHEMA_VERSION_FIELD, self.schema_version),
        )

    def on_loaded(self) -> None:
        self.check_day_boundary()

    # ── Typed properties ───────────────────────────────────────────

    @property
    def last_health_sync_time(self) -> datetime | None:
        return self.data.last_health_sync_time

    @last_health_sync_time.setter
    def last_health_sync_time(self, value: datetime | None) -> None:
        self.data.last_health_sync_time = value
        self.mark_dirty()

    @property
    def pending_pedometer_steps(self) -> int:
        return self.data.pending_pedometer_steps

    @pending_pedometer_steps.setter
    def pending_pedometer_steps(self, value: int) -> None:
        self.data.pending_pedometer_steps = max(0, value)
        self.mark_dirty()

    @property
    def last_active_source(self) -> StepSource:
        return self.data.last_active_source

    @last_active_source.setter
    def last_active_source(self, value: StepSource) -> None:
        self.data.last_active_source = value
        self.mark_dirty()

    @property
    def total_steps_all_time(self) -> int:
        return self.data.total_steps_all_time

    @property
    def steps_today(self) -> int:
        return self.data.steps_today

    @property
    def last_step_date(self) -> date | None:
        return self.data.last_step_date

    # ── Reconciliation ─────────────────────────────────────────────

    def check_day_boundary(self, today: date | None = None) -> bool:
        """Zero ``steps_today`` if ``last_step_date`` is before *today* (UTC).

        Returns True when a reset happened.  However many days were skipped,
        at most one reset occurs per call.
        """
        today = today or self._clock.today_utc()
        last = self._data.last_step_date
        if last is None or last >= today:
            return False

        logger.info(f"[StepPersistentData] New day detected ({last} -> {today}). Previous day's steps: {self._data.steps_today}")
        self._data.steps_today = 0
        self._data.last_step_date = today
        self.mark_dirty()
        return True

    def record_steps(self, steps: int, source: StepSource, today: date | None = None) -> int:
        """Apply a positive delta to today's and all-time totals in one step.

        Returns the number of steps recorded (0 when *steps* is not positive).
        """
        if steps <= 0:
            return 0

        today = today or self._clock.today_utc()
        self.check_day_boundary(today)

        self._data.total_steps_all_time += steps
        self._data.steps_today += steps
        self._data.last_step_date = today
        self._data.last_active_source = source
        self.mark_dirty()
        return steps
