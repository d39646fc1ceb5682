"""Step and reset notifications.

The controller, the reset scheduler and the app publish :class:`Event`
objects on an :class:`EventBus`; UI, analytics or points code subscribes
without the publishers knowing about it.  Every event stepkeeper itself
emits has a fixed payload shape (:data:`PAYLOAD_KEYS`), checked when the
event is built.  Names outside that table carry free-form payloads.

Hooks may be plain functions or coroutine functions.  A failing hook is
logged and skipped; the hooks after it still run.

Usage::

    bus = EventBus()
    bus.on(STEPS_DETECTED, lambda e: print(f"+{e.payload['steps']} steps"))
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from time import time
from typing import Any

from loguru import logger

STEPS_DETECTED = "steps.detected"
STEPS_SOURCE_CHANGED = "steps.source_changed"
STEPS_INITIALIZED = "steps.initialized"
STEPS_DAY_ROLLOVER = "steps.day_rollover"
DAILY_RESET = "reset.daily"
STARTUP = "app.startup"
SHUTDOWN = "app.shutdown"
PAUSED = "app.paused"
RESUMED = "app.resumed"

PAYLOAD_KEYS: dict[str, frozenset[str]] = {
    STEPS_DETECTED: frozenset({"steps", "source", "steps_today"}),
    STEPS_SOURCE_CHANGED: frozenset({"source"}),
    STEPS_INITIALIZED: frozenset({"success"}),
    STEPS_DAY_ROLLOVER: frozenset({"date"}),
    DAILY_RESET: frozenset({"reset_time"}),
    STARTUP: frozenset({"success"}),
}


@dataclass(frozen=True)
class Event:
    """One notification.  Well-known names must carry their payload keys."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time)
    source: str = ""

    def __post_init__(self) -> None:
        missing = PAYLOAD_KEYS.get(self.name, frozenset()) - self.payload.keys()
        if missing:
            raise ValueError(f"'{self.name}' event is missing payload key(s): {', '.join(sorted(missing))}")


Hook = Callable[[Event], None | Awaitable[None]]


class EventBus:
    """Fan-out of events to per-name and wildcard hooks."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[Hook]] = defaultdict(list)
        self._wildcard_hooks: list[Hook] = []
        self._background_tasks: set[asyncio.Task] = set()  # keep scheduled hook tasks alive

    def on(self, event_name: str, hook: Hook) -> None:
        self._hooks[event_name].append(hook)

    def on_all(self, hook: Hook) -> None:
        """Subscribe *hook* to every event (e.g. for tracing)."""
        self._wildcard_hooks.append(hook)

    def hook_count(self, event_name: str) -> int:
        return len(self._hooks.get(event_name, [])) + len(self._wildcard_hooks)

    def _hooks_for(self, event: Event) -> list[Hook]:
        return [*self._hooks.get(event.name, []), *self._wildcard_hooks]

    async def emit(self, event: Event) -> None:
        """Run every matching hook in order, awaiting coroutine hooks."""
        for hook in self._hooks_for(event):
            try:
                result = hook(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning(f"[EventBus] Hook {hook!r} failed for {event.name}: {exc}")

    def emit_sync(self, event: Event) -> None:
        """Emit from synchronous code (the controller and scheduler paths).

        Coroutine hooks become tasks on the running loop.  With no running
        loop they are dropped with a warning.
        """
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for hook in self._hooks_for(event):
            try:
                result = hook(event)
            except Exception as exc:
                logger.warning(f"[EventBus] Hook {hook!r} failed for {event.name}: {exc}")
                continue
            if not inspect.iscoroutine(result):
                continue
            if loop is None:
                result.close()
                logger.warning(f"[EventBus] Skipping async hook {hook!r} for {event.name}: no running event loop")
                continue
            task = loop.create_task(self._guarded(hook, event, result))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    @staticmethod
    async def _guarded(hook: Hook, event: Event, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception as exc:
            logger.warning(f"[EventBus] Async hook {hook!r} failed for {event.name}: {exc}")
