"""
Step provider abstraction.

Every acquisition backend (on-device step counter, OS health store, …)
implements :class:`StepProvider` so the controller can treat them
uniformly.  Capabilities differ per backend and are advertised through
``supports_real_time`` / ``supports_historical_data``; calls a backend
cannot honour degrade to no-ops or failed results, never exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from loguru import logger

from stepkeeper.core.exceptions import FailureKind
from stepkeeper.core.types import AuthCallback, StepListener

from ..models import ProviderKind, StepQueryResult, StepSource

QueryCallback = Callable[[StepQueryResult], None]


class StepProvider(ABC):
    """Base class for step acquisition backends."""

    kind: ProviderKind = ProviderKind.NONE
    source: StepSource = StepSource.NONE
    supports_real_time: bool = False
    supports_historical_data: bool = False

    def __init__(self) -> None:
        self._listeners: list[StepListener] = []
        self._is_authorized = False

    @property
    def name(self) -> str:
        return type(self).__name__

    # ── Capability queries ─────────────────────────────────────────

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """True if the capability exists here.  Must not block or prompt."""

    @property
    def is_authorized(self) -> bool:
        """Last known permission state; may be stale until authorization completes."""
        return self._is_authorized

    # ── Operations ─────────────────────────────────────────────────

    @abstractmethod
    def request_authorization(self, callback: AuthCallback) -> None:
        """Ask for access.  Invokes *callback* exactly once with the actual grant state."""

    def get_steps_since(self, since: datetime, callback: QueryCallback) -> None:
        callback(
            StepQueryResult.failed(
                f"Historical step data not supported by {self.name}. Use real-time tracking instead.",
                self.source,
                failure=FailureKind.UNAVAILABLE,
            )
        )

    def start_real_time_tracking(self) -> None:
        """No-op unless the provider supports real-time tracking."""

    def stop_real_time_tracking(self) -> None:
        """No-op unless the provider supports real-time tracking."""

    @property
    def is_tracking(self) -> bool:
        return False

    @property
    def session_steps(self) -> int:
        return 0

    def poll(self) -> None:
        """Advance one scheduling quantum.  No-op for push-only providers."""

    def pause(self) -> None:
        """App moved to the background."""

    def resume(self) -> None:
        """App returned to the foreground."""

    # ── Step delta listeners ───────────────────────────────────────

    def add_listener(self, listener: StepListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StepListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _emit_steps(self, delta: int) -> None:
        """Deliver a strictly positive delta to every listener."""
        if delta <= 0:
            return
        for listener in list(self._listeners):
            try:
                listener(delta)
            except Exception as exc:
                logger.warning(f"[{self.name}] Step listener {listener!r} failed: {exc}")

    def _finish_authorization(self, callback: AuthCallback, granted: bool) -> None:
        self._is_authorized = granted
        try:
            callback(granted)
        except Exception as exc:
            logger.warning(f"[{self.name}] Authorization callback failed: {exc}")
