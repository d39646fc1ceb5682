"""Time source shared by the controller, records and scheduler.

Wall-clock reads go through a :class:`Clock` so the day-boundary and
reset-boundary logic can be driven deterministically in tests.  Elapsed
time for bounded waits uses ``monotonic()``.
"""

from __future__ import annotations

import time
from datetime import UTC, date, datetime, tzinfo
from zoneinfo import ZoneInfo


class Clock:
    """System clock.  ``timezone`` selects the zone for local-time reads."""

    def __init__(self, timezone: str | None = None):
        self._tz: tzinfo | None = ZoneInfo(timezone) if timezone else None

    def utcnow(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        return datetime.now(UTC)

    def today_utc(self) -> date:
        """Current UTC calendar date."""
        return self.utcnow().date()

    def now(self) -> datetime:
        """Current instant as an aware datetime in the configured local zone."""
        if self._tz is None:
            return self.utcnow().astimezone()
        return self.utcnow().astimezone(self._tz)

    def monotonic(self) -> float:
        return time.monotonic()

    def to_local(self, value: datetime) -> datetime:
        """Express *value* in the configured local zone (naive values are taken as UTC)."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        if self._tz is None:
            return value.astimezone()
        return value.astimezone(self._tz)

    @property
    def timezone_name(self) -> str | None:
        return str(self._tz) if self._tz is not None else None
