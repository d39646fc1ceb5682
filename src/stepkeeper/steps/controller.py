"""
Step acquisition controller.

Selects a provider, runs a bounded authorization handshake, subscribes to
step deltas, and reconciles every delta into the persisted step ledger.

States: ``UNINITIALIZED -> INITIALIZING -> READY``.  Initialization always
ends in ``READY``; whether a source is actually usable is reported
separately (the ``initialize()`` result and :attr:`StepController.is_authorized`).

The authorization wait is cooperative: progress is checked once per tick
(``await asyncio.sleep(tick_seconds)``) against elapsed monotonic time.
When the deadline passes the attempt is disowned, so a callback arriving
later is ignored rather than resurrecting the abandoned flow.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import timedelta
from enum import StrEnum

from loguru import logger

from stepkeeper.core.clock import Clock
from stepkeeper.core.events import (
    STEPS_DAY_ROLLOVER,
    STEPS_DETECTED,
    STEPS_INITIALIZED,
    STEPS_SOURCE_CHANGED,
    Event,
    EventBus,
)
from stepkeeper.core.exceptions import FailureKind

from .models import ProviderKind, StepQueryResult, StepSource
from .providers.base import StepProvider
from .records import StepPersistentData

DEFAULT_AUTH_TIMEOUT = 10.0
DEFAULT_TICK_SECONDS = 0.1


class ControllerState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class StepController:
    """Owns provider selection and step reconciliation.

    Args:
        record: Persisted step ledger.  Must be loaded by the caller.
        providers: Candidate providers, most preferred first.  The first
            available one becomes active.
        bus: Event bus for ``steps.*`` notifications.
        auth_timeout: Seconds to wait for an authorization (or history
            query) callback.
        tick_seconds: Length of one cooperative scheduling quantum.
        save_on_reconcile: Write the ledger after every reconciliation.
    """

    def __init__(
        self,
        record: StepPersistentData,
        providers: Sequence[StepProvider] = (),
        bus: EventBus | None = None,
        *,
        clock: Clock | None = None,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        save_on_reconcile: bool = True,
    ):
        self._record = record
        self._providers = list(providers)
        self._bus = bus or EventBus()
        self._clock = clock or Clock()
        self._auth_timeout = auth_timeout
        self._tick_seconds = tick_seconds
        self._save_on_reconcile = save_on_reconcile

        self._state = ControllerState.UNINITIALIZED
        self._active_provider: StepProvider | None = None
        self._authorized = False
        self._init_future: asyncio.Future[bool] | None = None

    # ── Properties ─────────────────────────────────────────────────

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is ControllerState.READY

    @property
    def is_authorized(self) -> bool:
        return self._active_provider is not None and self._authorized

    @property
    def active_provider(self) -> StepProvider | None:
        return self._active_provider

    @property
    def active_kind(self) -> ProviderKind:
        return self._active_provider.kind if self._active_provider else ProviderKind.NONE

    @property
    def active_source(self) -> StepSource:
        return self._active_provider.source if self._active_provider else StepSource.NONE

    @property
    def is_tracking(self) -> bool:
        return self._active_provider is not None and self._active_provider.is_tracking

    @property
    def session_steps(self) -> int:
        return self._active_provider.session_steps if self._active_provider else 0

    @property
    def steps_today(self) -> int:
        return self._record.steps_today

    @property
    def total_steps_all_time(self) -> int:
        return self._record.total_steps_all_time

    @property
    def record(self) -> StepPersistentData:
        return self._record

    # ── Initialization ─────────────────────────────────────────────

    async def initialize(self, callback: Callable[[bool], None] | None = None) -> bool:
        """Select and authorize a provider.  Returns True if a source is usable.

        Idempotent: once READY, returns True immediately.  A call made while
        another initialization is running waits for that one.
        """
        if self._state is ControllerState.READY:
            logger.debug("[StepController] Already initialized")
            self._invoke(callback, True)
            return True

        if self._state is ControllerState.INITIALIZING and self._init_future is not None:
            success = await asyncio.shield(self._init_future)
            self._invoke(callback, success)
            return success

        self._state = ControllerState.INITIALIZING
        self._init_future = asyncio.get_running_loop().create_future()
        try:
            success = await self._run_initialization()
        except BaseException:
            self._state = ControllerState.UNINITIALIZED
            self._init_future.cancel()
            self._init_future = None
            raise

        self._init_future.set_result(success)
        self._invoke(callback, success)
        return success

    async def reinitialize(self, callback: Callable[[bool], None] | None = None) -> bool:
        """Drop the current selection and run initialization again."""
        if self._state is ControllerState.INITIALIZING:
            logger.warning("[StepController] Cannot reinitialize while initializing")
            return await self.initialize(callback)
        self.stop_tracking()
        self._detach()
        self._state = ControllerState.UNINITIALIZED
        return await self.initialize(callback)

    async def _run_initialization(self) -> bool:
        logger.info("[StepController] Starting initialization...")
        self._active_provider = self._select_provider()
        self._authorized = False

        provider = self._active_provider
        if provider is not None:
            granted = await self._await_authorization(provider)
            if granted is None:
                logger.warning(f"[StepController] Authorization timed out after {self._auth_timeout}s")
            elif granted:
                logger.info(f"[StepController] Authorization granted for {provider.source}")
                self._authorized = True
                provider.add_listener(self._handle_steps_detected)
            else:
                logger.warning("[StepController] Authorization denied or unavailable")
                self._active_provider = None

        self._state = ControllerState.READY
        success = self.is_authorized
        logger.info(f"[StepController] Initialization complete. Success: {success}, Source: {self.active_source}")

        self._bus.emit_sync(Event(name=STEPS_SOURCE_CHANGED, payload={"source": self.active_source}, source="steps"))
        self._bus.emit_sync(Event(name=STEPS_INITIALIZED, payload={"success": success}, source="steps"))
        return success

    def _select_provider(self) -> StepProvider | None:
        for provider in self._providers:
            if provider.is_available:
                logger.info(f"[StepController] {provider.name} is available")
                return provider
            logger.info(f"[StepController] {provider.name} is NOT available on this device/platform")
        return None

    async def _await_authorization(self, provider: StepProvider) -> bool | None:
        """Request authorization and wait up to the timeout.  None means timed out."""
        done, granted = await self._await_callback(provider.request_authorization)
        return bool(granted) if done else None

    async def _await_callback(self, start: Callable[[Callable], None]) -> tuple[bool, object]:
        """Call ``start(callback)`` and wait cooperatively for the callback.

        Returns ``(completed, value)``.  After the deadline this attempt is
        disowned and any later invocation of its callback is dropped.  Each
        call owns its own flag, so overlapping waits never disown each other.
        """
        outcome: list[object] = []
        disowned = False

        def on_result(value: object) -> None:
            if disowned:
                logger.warning("[StepController] Ignoring stale callback from an abandoned request")
                return
            if not outcome:
                outcome.append(value)

        try:
            start(on_result)
        except Exception as e:
            logger.error(f"[StepController] Request failed: {e}")
            return True, None

        started = self._clock.monotonic()
        while not outcome and self._clock.monotonic() - started < self._auth_timeout:
            await asyncio.sleep(self._tick_seconds)

        if outcome:
            return True, outcome[0]
        disowned = True
        return False, None

    def _detach(self) -> None:
        if self._active_provider is not None:
            self._active_provider.remove_listener(self._handle_steps_detected)
        self._active_provider = None
        self._authorized = False

    # ── Tracking control ───────────────────────────────────────────

    def start_tracking(self) -> None:
        if self._state is not ControllerState.READY:
            logger.warning("[StepController] Cannot start tracking - not initialized")
            return
        if self._active_provider is None:
            logger.warning("[StepController] Cannot start tracking - no provider available")
            return
        if not self._authorized:
            logger.warning("[StepController] Cannot start tracking - provider not authorized")
            return
        if not self._active_provider.supports_real_time:
            logger.warning("[StepController] Active provider does not support real-time tracking")
            return

        logger.info("[StepController] Starting real-time tracking...")
        self._active_provider.start_real_time_tracking()

    def stop_tracking(self) -> None:
        if self._active_provider is None:
            return
        if not self._active_provider.supports_real_time:
            logger.warning("[StepController] Active provider does not support real-time tracking")
            return
        logger.info("[StepController] Stopping tracking...")
        self._active_provider.stop_real_time_tracking()

    def toggle_tracking(self) -> None:
        if self.is_tracking:
            self.stop_tracking()
        else:
            self.start_tracking()

    def tick(self) -> None:
        """One cooperative quantum: let the active provider sample its source."""
        if self._active_provider is not None and self._authorized:
            self._active_provider.poll()

    def pause(self) -> None:
        if self._active_provider is not None:
            self._active_provider.pause()

    def resume(self) -> None:
        if self._active_provider is not None:
            self._active_provider.resume()

    # ── Reconciliation ─────────────────────────────────────────────

    def _handle_steps_detected(self, steps: int) -> None:
        if steps <= 0:
            return
        if self._state is not ControllerState.READY:
            logger.debug(f"[StepController] Dropping {steps} steps received before ready")
            return
        logger.debug(f"[StepController] Steps detected: {steps}")
        self._reconcile(steps, self.active_source)

    def _reconcile(self, steps: int, source: StepSource) -> int:
        today = self._clock.today_utc()
        if self._record.check_day_boundary(today):
            self._bus.emit_sync(Event(name=STEPS_DAY_ROLLOVER, payload={"date": today.isoformat()}, source="steps"))

        recorded = self._record.record_steps(steps, source, today)
        if recorded and self._save_on_reconcile:
            self._record.save()

        self._bus.emit_sync(
            Event(
                name=STEPS_DETECTED,
                payload={"steps": recorded, "source": source, "steps_today": self._record.steps_today},
                source="steps",
            )
        )
        return recorded

    def add_steps_manually(self, steps: int) -> int:
        """Inject steps without a provider (testing / offline fallback)."""
        if steps <= 0:
            return 0
        logger.info(f"[StepController] Manually adding {steps} steps")
        return self._reconcile(steps, StepSource.NONE)

    async def sync_history(self) -> StepQueryResult:
        """Pull steps recorded by the OS health store since the last sync."""
        provider = self._active_provider
        if self._state is not ControllerState.READY or provider is None:
            return StepQueryResult.failed("No active step provider", failure=FailureKind.UNAVAILABLE)
        if not provider.supports_historical_data:
            return StepQueryResult.failed(
                f"{provider.name} does not support historical queries", provider.source, failure=FailureKind.UNAVAILABLE
            )
        if not self._authorized:
            return StepQueryResult.failed("Step provider not authorized", provider.source, failure=FailureKind.UNAUTHORIZED)

        since = self._record.last_health_sync_time or (self._clock.utcnow() - timedelta(days=1))
        done, result = await self._await_callback(lambda cb: provider.get_steps_since(since, cb))
        if not done:
            logger.warning(f"[StepController] History query timed out after {self._auth_timeout}s")
            return StepQueryResult.failed("History query timed out", provider.source, failure=FailureKind.TIMEOUT)
        if not isinstance(result, StepQueryResult):
            return StepQueryResult.failed("History query failed", provider.source)
        if not result.success:
            logger.warning(f"[StepController] History query failed: {result.error}")
            return result

        if result.steps > 0:
            self._reconcile(result.steps, provider.source)
        self._record.last_health_sync_time = result.end_time or self._clock.utcnow()
        self._record.save()
        return result

    # ── Persistence helpers ────────────────────────────────────────

    def force_save(self) -> bool:
        self._record.mark_dirty()
        return self._record.save()

    def clear_all_data(self) -> None:
        self._record.clear()
        logger.info("[StepController] All data cleared")

    def debug_status(self) -> str:
        return (
            f"State: {self._state}\n"
            f"Source: {self.active_source}\n"
            f"Tracking: {self.is_tracking}\n"
            f"Authorized: {self.is_authorized}\n"
            f"Session Steps: {self.session_steps}\n"
            f"Today's Steps: {self.steps_today}\n"
            f"Total Steps: {self.total_steps_all_time}\n"
        )

    @staticmethod
    def _invoke(callback: Callable[[bool], None] | None, success: bool) -> None:
        if callback is None:
            return
        try:
            callback(success)
        except Exception as e:
            logger.warning(f"[StepController] Initialization callback failed: {e}")
