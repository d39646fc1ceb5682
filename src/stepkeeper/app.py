"""
Composition root.

Builds every stepkeeper component explicitly at process start and wires
them together; nothing instantiates itself lazily.  Lifetime of everything
built here is the lifetime of the process.

Usage::

    app = build_app(config, sensor=my_sensor, permission=my_permission)
    await app.start()
    stop = asyncio.Event()
    await app.run(stop)        # ticks until stop is set
    await app.shutdown()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from stepkeeper.core.clock import Clock
from stepkeeper.core.config import Config
from stepkeeper.core.config_schema import StepKeeperConfig
from stepkeeper.core.events import PAUSED, RESUMED, SHUTDOWN, STARTUP, Event, EventBus
from stepkeeper.core.storage import KeyValueStore, LocalStore
from stepkeeper.core.utils.logging import setup_logging
from stepkeeper.persistence import PersistenceManager
from stepkeeper.reset import DailyResetPersistentData, DailyResetScheduler, ResetHandlerQueue
from stepkeeper.steps import StepController, StepPersistentData
from stepkeeper.steps.providers import (
    HealthBridge,
    HistoricalStepProvider,
    MotionPermission,
    PedometerProvider,
    StepCounterSensor,
    StepProvider,
)


@dataclass
class StepKeeperApp:
    """The wired object graph plus its lifecycle."""

    settings: StepKeeperConfig
    store: KeyValueStore
    bus: EventBus
    clock: Clock
    persistence: PersistenceManager
    step_record: StepPersistentData
    reset_record: DailyResetPersistentData
    controller: StepController
    scheduler: DailyResetScheduler
    providers: list[StepProvider] = field(default_factory=list)
    _started: bool = False

    async def start(self) -> bool:
        """Load state, run the launch-time reset check, and initialize acquisition.

        Returns the controller's initialization result.
        """
        if self._started:
            return self.controller.is_authorized
        self._started = True

        self.persistence.load_all()
        self.scheduler.check_and_perform_reset()
        if self.settings.reset.cron_enabled:
            self.scheduler.start()

        success = await self.controller.initialize()
        if success and self.settings.tracking.auto_start:
            self.controller.start_tracking()

        await self.bus.emit(Event(name=STARTUP, payload={"success": success}, source="app"))
        return success

    async def run(self, stop: asyncio.Event) -> None:
        """Drive the cooperative tick loop until *stop* is set."""
        tick = self.settings.tracking.tick_seconds
        while not stop.is_set():
            self.controller.tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=tick)
            except TimeoutError:
                continue

    def pause(self) -> None:
        """App going to the background: suspend sampling and persist."""
        self.controller.pause()
        self.persistence.save_all()
        self.bus.emit_sync(Event(name=PAUSED, source="app"))

    def resume(self) -> None:
        """App back in the foreground: resync sampling and re-check the boundary."""
        self.controller.resume()
        self.scheduler.check_and_perform_reset()
        self.bus.emit_sync(Event(name=RESUMED, source="app"))

    async def shutdown(self) -> None:
        self.controller.stop_tracking()
        self.scheduler.shutdown()
        self.persistence.save_all()
        self.store.flush()
        await self.bus.emit(Event(name=SHUTDOWN, source="app"))
        logger.info("[StepKeeperApp] Shut down")


def build_app(
    config: Config | None = None,
    *,
    store: KeyValueStore | None = None,
    sensor: StepCounterSensor | None = None,
    permission: MotionPermission | None = None,
    bridge: HealthBridge | None = None,
    clock: Clock | None = None,
    bus: EventBus | None = None,
    pending_handlers: ResetHandlerQueue | None = None,
    configure_logging: bool = False,
) -> StepKeeperApp:
    """Wire the full object graph from *config*.

    The pedometer is always the first candidate provider; a historical
    provider is added as a fallback only when a health *bridge* is given.
    """
    config = config or Config()
    settings = config.validated()

    if configure_logging:
        setup_logging(settings)

    clock = clock or Clock(settings.reset.timezone)
    bus = bus or EventBus()
    if store is None:
        store_dir = settings.paths.store_dir or settings.paths.data_dir / "store"
        store = LocalStore(base_path=str(store_dir))

    persistence = PersistenceManager()
    step_record = StepPersistentData(store, clock=clock)
    reset_record = DailyResetPersistentData(store)
    persistence.register(step_record)
    persistence.register(reset_record)

    providers: list[StepProvider] = [PedometerProvider(sensor, permission)]
    if bridge is not None:
        providers.append(HistoricalStepProvider(bridge))

    controller = StepController(
        step_record,
        providers,
        bus,
        clock=clock,
        auth_timeout=settings.tracking.auth_timeout_seconds,
        tick_seconds=settings.tracking.tick_seconds,
        save_on_reconcile=settings.tracking.save_on_reconcile,
    )
    scheduler = DailyResetScheduler(
        reset_record,
        bus,
        reset_hour=settings.reset.hour,
        reset_minute=settings.reset.minute,
        clock=clock,
        pending=pending_handlers,
    )

    return StepKeeperApp(
        settings=settings,
        store=store,
        bus=bus,
        clock=clock,
        persistence=persistence,
        step_record=step_record,
        reset_record=reset_record,
        controller=controller,
        scheduler=scheduler,
        providers=providers,
    )
