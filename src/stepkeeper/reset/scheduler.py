"""Daily reset scheduler — fires priority-ordered handlers once per boundary.

A boundary is a local time-of-day (``hour:minute``).  A reset is due when
the most recent boundary at or before *now* is later than the most recent
boundary at or before the last reset, so a process that was asleep across
several boundaries still resets only once when it wakes.

The check runs on launch and on demand (:meth:`DailyResetScheduler.check_and_perform_reset`).
Optionally, :meth:`DailyResetScheduler.start` adds an APScheduler cron job
that runs the same check at the boundary while the process is alive.
APScheduler is imported lazily (only in :meth:`start`).  The cron job is a
coroutine so handlers and record writes stay on the event loop thread.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from stepkeeper.core.clock import Clock
from stepkeeper.core.events import DAILY_RESET, Event, EventBus
from stepkeeper.core.types import ResetHandler

from .models import DailyResetPersistentData

CRON_JOB_ID = "daily_reset"


class ResetHandlerQueue:
    """Accepts handler registrations before the scheduler exists.

    Registrations are held until :meth:`attach` hands them to a scheduler;
    after that they pass straight through.
    """

    def __init__(self) -> None:
        self._pending: dict[int, ResetHandler] = {}
        self._target: DailyResetScheduler | None = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_attached(self) -> bool:
        return self._target is not None

    def register(self, priority: int, handler: ResetHandler) -> bool:
        if self._target is not None:
            return self._target.register_reset_handler(priority, handler)
        if handler is None:
            logger.warning("[ResetHandlerQueue] Cannot register null handler")
            return False
        if priority in self._pending:
            logger.warning(f"[ResetHandlerQueue] Priority {priority} already queued. Use a unique priority.")
            return False
        self._pending[priority] = handler
        return True

    def unregister(self, priority: int) -> bool:
        if self._target is not None:
            return self._target.unregister_reset_handler(priority)
        return self._pending.pop(priority, None) is not None

    def attach(self, scheduler: DailyResetScheduler) -> None:
        pending, self._pending = self._pending, {}
        for priority, handler in sorted(pending.items()):
            scheduler.register_reset_handler(priority, handler)
        self._target = scheduler
        if pending:
            logger.debug(f"[ResetHandlerQueue] Flushed {len(pending)} queued handler(s)")


class DailyResetScheduler:
    """Runs registered reset handlers once per crossed daily boundary.

    Args:
        record: Persisted ``last_reset_time``.  Must be loaded by the caller.
        bus: Receives a ``reset.daily`` event after the handler chain.
        reset_hour: Boundary hour (0-23), local time.
        reset_minute: Boundary minute (0-59).
        clock: Time source; its zone defines "local".
        pending: Queue of handlers registered before this scheduler existed.
    """

    def __init__(
        self,
        record: DailyResetPersistentData,
        bus: EventBus | None = None,
        *,
        reset_hour: int = 4,
        reset_minute: int = 0,
        clock: Clock | None = None,
        pending: ResetHandlerQueue | None = None,
    ):
        self._record = record
        self._bus = bus or EventBus()
        self._clock = clock or Clock()
        self._reset_hour = _clamp(reset_hour, 0, 23)
        self._reset_minute = _clamp(reset_minute, 0, 59)
        self._handlers: dict[int, ResetHandler] = {}
        self._scheduler: Any = None  # AsyncIOScheduler, lazily created

        if pending is not None:
            pending.attach(self)

        logger.debug(f"[DailyResetScheduler] Initialized. Last reset: {self.last_reset_time}")

    # ── Properties ─────────────────────────────────────────────────

    @property
    def reset_hour(self) -> int:
        return self._reset_hour

    @property
    def reset_minute(self) -> int:
        return self._reset_minute

    @property
    def last_reset_time(self) -> datetime | None:
        return self._record.last_reset_time

    @property
    def handler_priorities(self) -> list[int]:
        return sorted(self._handlers)

    # ── Registration ───────────────────────────────────────────────

    def register_reset_handler(self, priority: int, handler: ResetHandler) -> bool:
        """Register *handler* to run at *priority* (lower runs first).

        Priorities are unique: a second registration at a taken priority is
        rejected and the existing handler stays.
        """
        if handler is None:
            logger.warning("[DailyResetScheduler] Cannot register null handler")
            return False
        if priority in self._handlers:
            logger.warning(f"[DailyResetScheduler] Priority {priority} already registered. Use a unique priority.")
            return False
        self._handlers[priority] = handler
        logger.debug(f"[DailyResetScheduler] Registered reset handler with priority {priority}")
        return True

    def unregister_reset_handler(self, priority: int) -> bool:
        if self._handlers.pop(priority, None) is None:
            return False
        logger.debug(f"[DailyResetScheduler] Unregistered reset handler with priority {priority}")
        return True

    # ── Boundary arithmetic ────────────────────────────────────────

    def get_reset_boundary_for(self, moment: datetime) -> datetime:
        """Most recent boundary at or before *moment*, in local time."""
        local = self._clock.to_local(moment)
        same_day = local.replace(hour=self._reset_hour, minute=self._reset_minute, second=0, microsecond=0)
        return same_day - timedelta(days=1) if local < same_day else same_day

    def get_next_reset_time(self) -> datetime:
        now = self._clock.now()
        today_reset = now.replace(hour=self._reset_hour, minute=self._reset_minute, second=0, microsecond=0)
        return today_reset if now < today_reset else today_reset + timedelta(days=1)

    def is_reset_due(self) -> bool:
        last_reset = self._record.last_reset_time
        if last_reset is None:
            logger.debug("[DailyResetScheduler] No reset recorded yet, reset is due")
            return True

        last_boundary = self.get_reset_boundary_for(last_reset)
        current_boundary = self.get_reset_boundary_for(self._clock.now())
        is_due = current_boundary > last_boundary
        logger.debug(
            f"[DailyResetScheduler] Reset check - last boundary: {last_boundary}, "
            f"current boundary: {current_boundary}, due: {is_due}"
        )
        return is_due

    # ── Reset ──────────────────────────────────────────────────────

    def check_and_perform_reset(self) -> bool:
        """Reset if a boundary was crossed.  Returns True when a reset ran."""
        if not self.is_reset_due():
            logger.debug("[DailyResetScheduler] No reset due")
            return False
        self.perform_reset()
        return True

    def force_reset(self) -> None:
        """Reset regardless of timing."""
        logger.info("[DailyResetScheduler] Forcing reset...")
        self.perform_reset()

    def perform_reset(self) -> None:
        logger.info(f"[DailyResetScheduler] Performing daily reset. {len(self._handlers)} handler(s) registered")

        for priority, handler in sorted(self._handlers.items()):
            try:
                logger.debug(f"[DailyResetScheduler] Executing handler with priority {priority}")
                handler()
            except Exception as e:
                logger.error(f"[DailyResetScheduler] Handler with priority {priority} raised: {e}")

        now = self._clock.now()
        self._bus.emit_sync(Event(name=DAILY_RESET, payload={"reset_time": now.isoformat()}, source="reset"))

        self._record.last_reset_time = now
        self._record.save()
        logger.info(f"[DailyResetScheduler] Daily reset complete. Next reset: {self.get_next_reset_time()}")

    def set_reset_time(self, hour: int, minute: int) -> None:
        """Change the boundary.  Takes effect on the next check."""
        self._reset_hour = _clamp(hour, 0, 23)
        self._reset_minute = _clamp(minute, 0, 59)
        logger.info(f"[DailyResetScheduler] Reset time changed to {self._reset_hour:02d}:{self._reset_minute:02d}")
        if self._scheduler is not None:
            self._scheduler.reschedule_job(CRON_JOB_ID, trigger=self._cron_trigger())

    # ── Cron lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        """Run the reset check at every boundary while the process lives.

        Must be called from a running asyncio event loop.
        """
        from apscheduler.schedulers.asyncio import AsyncIOScheduler

        kwargs: dict[str, Any] = {}
        if self._clock.timezone_name:
            kwargs["timezone"] = self._clock.timezone_name
        self._scheduler = AsyncIOScheduler(**kwargs)
        self._scheduler.add_job(
            self._run_scheduled_check,
            trigger=self._cron_trigger(),
            id=CRON_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"[DailyResetScheduler] Cron started at {self._reset_hour:02d}:{self._reset_minute:02d}")

    async def _run_scheduled_check(self) -> None:
        """Cron entry point.  Runs on the event loop thread."""
        self.check_and_perform_reset()

    def shutdown(self) -> None:
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("[DailyResetScheduler] Cron shut down")

    @property
    def apscheduler(self) -> Any:
        """The raw APScheduler instance, or None if :meth:`start` hasn't run."""
        return self._scheduler

    def _cron_trigger(self) -> Any:
        from apscheduler.triggers.cron import CronTrigger

        kwargs: dict[str, Any] = {"hour": self._reset_hour, "minute": self._reset_minute}
        if self._clock.timezone_name:
            kwargs["timezone"] = self._clock.timezone_name
        return CronTrigger(**kwargs)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))
