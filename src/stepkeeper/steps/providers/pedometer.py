"""
Pedometer session tracker.

Samples a monotonically increasing device step counter (steps since boot),
turns successive readings into positive deltas, and treats a reading that
goes *down* as a counter reset (device reboot): it re-baselines silently and
never reports a negative count or estimates the steps lost across the reset.

States: ``Idle -> Tracking -> Idle``.  Polling is driven externally, one
:meth:`PedometerProvider.poll` per scheduling quantum.  While the app is
suspended (:meth:`pause`) polls are ignored, and :meth:`resume`
resynchronizes to the current counter without counting the gap.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

from stepkeeper.core.types import AuthCallback

from ..models import ProviderKind, StepSource
from .base import StepProvider


@runtime_checkable
class StepCounterSensor(Protocol):
    """Device step counter as exposed by the platform."""

    def is_present(self) -> bool:
        """True if step counter hardware is exposed on this device."""
        ...

    def read(self) -> int | None:
        """Cumulative steps since boot, or None if no reading is available yet."""
        ...


@runtime_checkable
class MotionPermission(Protocol):
    """OS permission gate for motion / activity-recognition data."""

    def is_granted(self) -> bool: ...

    def request(self, on_dialog_closed: Callable[[bool], None]) -> None:
        """Show the permission dialog; call back once it closes."""
        ...


@dataclass
class SessionCounters:
    """Per-session counter state.  Reset whenever tracking (re)starts."""

    baseline_reading: int = 0
    last_reading: int = 0
    session_accumulated: int = 0
    is_tracking: bool = False


class PedometerProvider(StepProvider):
    """Real-time provider backed by a device step counter."""

    kind = ProviderKind.PEDOMETER
    supports_real_time = True
    supports_historical_data = False

    def __init__(
        self,
        sensor: StepCounterSensor | None,
        permission: MotionPermission | None = None,
        source: StepSource = StepSource.NATIVE_REALTIME,
    ):
        super().__init__()
        self._sensor = sensor
        self._permission = permission
        self.source = source
        self.counters = SessionCounters()
        self._suspended = False

    # ── Capability queries ─────────────────────────────────────────

    @property
    def is_available(self) -> bool:
        if self._sensor is None:
            return False
        try:
            return bool(self._sensor.is_present())
        except Exception as e:
            logger.warning(f"[PedometerProvider] Sensor presence check failed: {e}")
            return False

    @property
    def is_tracking(self) -> bool:
        return self.counters.is_tracking

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    @property
    def session_steps(self) -> int:
        return self.counters.session_accumulated

    # ── Authorization ──────────────────────────────────────────────

    def request_authorization(self, callback: AuthCallback) -> None:
        logger.debug("[PedometerProvider] Requesting authorization...")
        done = False

        def finish(granted: bool) -> None:
            nonlocal done
            if done:
                return
            done = True
            self._finish_authorization(callback, granted)

        if self._permission is None or self._safe_is_granted():
            finish(self._check_sensor())
            return

        def on_dialog_closed(_dialog_result: bool) -> None:
            # A closed dialog is not a grant; ask the OS what was actually decided.
            if self._safe_is_granted():
                logger.info("[PedometerProvider] Motion permission granted")
                finish(self._check_sensor())
            else:
                logger.warning("[PedometerProvider] Motion permission denied")
                finish(False)

        try:
            self._permission.request(on_dialog_closed)
        except Exception as e:
            logger.error(f"[PedometerProvider] Permission request failed: {e}")
            finish(False)

    def _safe_is_granted(self) -> bool:
        try:
            return bool(self._permission.is_granted()) if self._permission else True
        except Exception as e:
            logger.warning(f"[PedometerProvider] Permission check failed: {e}")
            return False

    def _check_sensor(self) -> bool:
        available = self.is_available
        if not available:
            logger.warning("[PedometerProvider] Step counter not available on this device")
        return available

    # ── Tracking ───────────────────────────────────────────────────

    def start_real_time_tracking(self) -> None:
        if self.counters.is_tracking:
            return
        if not self.is_available:
            logger.info("[PedometerProvider] Step counter not found; real-time tracking unavailable")
            return

        reading = self._read()
        if reading is None:
            logger.warning("[PedometerProvider] Step counter returned no reading; not starting")
            return

        self.counters = SessionCounters(baseline_reading=reading, last_reading=reading, is_tracking=True)
        self._suspended = False
        logger.info(f"[PedometerProvider] Started real-time tracking. Baseline steps: {reading}")

    def stop_real_time_tracking(self) -> None:
        if not self.counters.is_tracking:
            return
        self.counters.is_tracking = False
        logger.info(f"[PedometerProvider] Stopped tracking. Session steps: {self.counters.session_accumulated}")

    def poll(self) -> None:
        if not self.counters.is_tracking or self._suspended:
            return

        current = self._read()
        if current is None or current == self.counters.last_reading:
            return

        if current > self.counters.last_reading:
            delta = current - self.counters.last_reading
            self.counters.session_accumulated += delta
            self.counters.last_reading = current
            logger.debug(f"[PedometerProvider] Steps detected: +{delta} (session total: {self.counters.session_accumulated})")
            self._emit_steps(delta)
        else:
            logger.info(
                f"[PedometerProvider] Counter went from {self.counters.last_reading} to {current}; "
                "assuming device reboot and resetting baseline"
            )
            self.counters.baseline_reading = current
            self.counters.last_reading = current

    def pause(self) -> None:
        if not self._suspended:
            self._suspended = True
            logger.debug("[PedometerProvider] App paused - step tracking suspended")

    def resume(self) -> None:
        if not self._suspended:
            return
        self._suspended = False
        if not self.counters.is_tracking:
            return

        current = self._read()
        if current is None:
            return
        if current < self.counters.last_reading:
            logger.info(
                f"[PedometerProvider] Counter went from {self.counters.last_reading} to {current} while paused; "
                "resetting baseline"
            )
            self.counters.baseline_reading = current
        else:
            logger.debug(f"[PedometerProvider] App resumed. Steps while paused: {current - self.counters.last_reading} (not counted)")
        self.counters.last_reading = current

    def reset_session(self) -> None:
        """Zero the session total and re-baseline on the current reading."""
        logger.debug(f"[PedometerProvider] Resetting session steps (was {self.counters.session_accumulated})")
        self.counters.session_accumulated = 0
        if self.counters.is_tracking:
            reading = self._read()
            if reading is not None:
                self.counters.baseline_reading = reading
                self.counters.last_reading = reading

    def _read(self) -> int | None:
        try:
            return self._sensor.read() if self._sensor else None
        except Exception as e:
            logger.warning(f"[PedometerProvider] Step counter read failed: {e}")
            return None
