"""
Step tracking data models.

``StepRecord`` is the persisted step ledger.  ``StepQueryResult`` is the
flat record exchanged with every platform bridge; its wire shape
(``success``, ``steps``, ``startTime``, ``endTime``, optional ``source``,
``errorCode``, ``errorMessage``; timestamps in epoch milliseconds) must not
change, since native bridges produce it verbatim.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import IntEnum, StrEnum
from typing import Any

from stepkeeper.core.exceptions import FailureKind, ProviderError

STEP_RECORD_SCHEMA_VERSION = 1


class StepSource(StrEnum):
    """Where a step count came from."""

    NONE = "none"
    NATIVE_HISTORICAL = "native_historical"  # OS health store (HealthKit / Health Connect)
    NATIVE_REALTIME = "native_realtime"  # on-device step counter sensor
    FALLBACK_PEDOMETER = "fallback_pedometer"  # library pedometer when no sensor is exposed


class ProviderKind(StrEnum):
    """Which kind of provider the controller selected."""

    NONE = "none"
    PEDOMETER = "pedometer"
    HISTORICAL = "historical"


class BridgeAvailability(IntEnum):
    """Availability codes returned by a native health bridge availability check."""

    UNAVAILABLE = 0
    AVAILABLE = 1
    NEEDS_UPDATE = 2

    @classmethod
    def from_code(cls, code: int) -> BridgeAvailability:
        try:
            return cls(code)
        except ValueError:
            return cls.UNAVAILABLE


# ── Wire record ──────────────────────────────────────────────────────


def to_epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def from_epoch_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


@dataclass(frozen=True)
class StepQueryResult:
    """Outcome of a historical step query (or a failure with its reason)."""

    success: bool
    steps: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    source: StepSource = StepSource.NONE
    error_code: str | None = None
    error_message: str | None = None
    failure: FailureKind | None = None

    @classmethod
    def succeeded(cls, steps: int, start: datetime, end: datetime, source: StepSource) -> StepQueryResult:
        return cls(success=True, steps=steps, start_time=start, end_time=end, source=source)

    @classmethod
    def failed(
        cls,
        message: str,
        source: StepSource = StepSource.NONE,
        *,
        failure: FailureKind = FailureKind.QUERY_FAILED,
        error_code: str | None = None,
    ) -> StepQueryResult:
        return cls(
            success=False,
            source=source,
            error_code=error_code,
            error_message=message,
            failure=failure,
        )

    @property
    def error(self) -> str:
        """Human-readable failure reason (empty on success)."""
        if self.success:
            return ""
        if self.error_code:
            return f"{self.error_code}: {self.error_message or 'Unknown error'}"
        return self.error_message or "Unknown error"

    # ── Wire encoding ──────────────────────────────────────────────

    @classmethod
    def from_payload(cls, payload: dict[str, Any], source: StepSource) -> StepQueryResult:
        """Decode a bridge payload.  Raises ProviderError on a malformed payload."""
        if not isinstance(payload, dict):
            raise ProviderError(f"bridge payload must be an object, got {type(payload).__name__}")
        success = payload.get("success")
        if not isinstance(success, bool):
            raise ProviderError("bridge payload is missing a boolean 'success'")

        if not success:
            return cls.failed(
                str(payload.get("errorMessage") or "Unknown error"),
                source,
                error_code=payload.get("errorCode"),
            )

        try:
            steps = int(payload.get("steps", 0))
            start = from_epoch_millis(int(payload["startTime"]))
            end = from_epoch_millis(int(payload["endTime"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"malformed bridge payload: {e}") from e
        if steps < 0:
            raise ProviderError(f"bridge reported negative steps: {steps}")
        return cls.succeeded(steps, start, end, source)

    @classmethod
    def from_json(cls, raw: str, source: StepSource) -> StepQueryResult:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise ProviderError(f"bridge message is not valid JSON: {e}") from e
        return cls.from_payload(payload, source)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "steps": self.steps,
            "startTime": to_epoch_millis(self.start_time) if self.start_time else 0,
            "endTime": to_epoch_millis(self.end_time) if self.end_time else 0,
        }
        if self.error_code is not None:
            payload["errorCode"] = self.error_code
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        return payload


# ── Persisted ledger ─────────────────────────────────────────────────


@dataclass
class StepRecord:
    """Persisted step totals.

    ``total_steps_all_time`` only grows (except through an explicit clear).
    ``steps_today`` is zeroed when ``last_step_date`` falls behind the
    current UTC calendar date.
    """

    last_health_sync_time: datetime | None = None
    pending_pedometer_steps: int = 0
    last_active_source: StepSource = StepSource.NONE
    total_steps_all_time: int = 0
    steps_today: int = 0
    last_step_date: date | None = None
    schema_version: int = STEP_RECORD_SCHEMA_VERSION
