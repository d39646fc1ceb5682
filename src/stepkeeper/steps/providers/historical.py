"""
Historical step provider over a native health-store bridge.

The bridge (HealthKit on iOS, Health Connect on Android) is a thin native
module: each call fires one native query and the outcome is pushed back
later as a JSON message to one of the ``handle_*`` methods here.  This
provider has no real-time stream; steps arrive only through
:meth:`HistoricalStepProvider.get_steps_since` and friends.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Protocol, runtime_checkable

from loguru import logger

from stepkeeper.core.exceptions import FailureKind, ProviderError
from stepkeeper.core.types import AuthCallback

from ..models import BridgeAvailability, ProviderKind, StepQueryResult, StepSource, to_epoch_millis
from .base import QueryCallback, StepProvider


@runtime_checkable
class HealthBridge(Protocol):
    """Calls exposed by a native health-store module.

    Results are delivered asynchronously to the provider's ``handle_*``
    methods, as JSON strings.
    """

    def probe_availability(self) -> int: ...

    def check_authorization(self) -> bool: ...

    def request_authorization(self) -> None: ...

    def query_steps_since(self, since_millis: int) -> None: ...

    def query_steps_for_range(self, start_millis: int, end_millis: int) -> None: ...

    def query_steps_today(self) -> None: ...


class HistoricalStepProvider(StepProvider):
    """Provider that answers "how many steps since T" from the OS health store."""

    kind = ProviderKind.HISTORICAL
    source = StepSource.NATIVE_HISTORICAL
    supports_real_time = False
    supports_historical_data = True

    def __init__(self, bridge: HealthBridge | None):
        super().__init__()
        self._bridge = bridge
        self._auth_callback: AuthCallback | None = None
        self._query_callback: QueryCallback | None = None

    # ── Capability queries ─────────────────────────────────────────

    @property
    def availability(self) -> BridgeAvailability:
        if self._bridge is None:
            return BridgeAvailability.UNAVAILABLE
        try:
            return BridgeAvailability.from_code(int(self._bridge.probe_availability()))
        except Exception as e:
            logger.error(f"[HistoricalStepProvider] Failed to check availability: {e}")
            return BridgeAvailability.UNAVAILABLE

    @property
    def is_available(self) -> bool:
        return self.availability == BridgeAvailability.AVAILABLE

    @property
    def has_pending_query(self) -> bool:
        return self._query_callback is not None

    # ── Authorization ──────────────────────────────────────────────

    def request_authorization(self, callback: AuthCallback) -> None:
        if self._bridge is None:
            self._finish_authorization(callback, False)
            return

        self._auth_callback = callback
        try:
            self._bridge.request_authorization()
            logger.debug("[HistoricalStepProvider] Permission request sent")
        except Exception as e:
            logger.error(f"[HistoricalStepProvider] Failed to request permissions: {e}")
            self._complete_authorization(False)

    def handle_authorization_message(self, message: str) -> None:
        """Bridge push: the permission flow finished ("true"/"false")."""
        logger.debug(f"[HistoricalStepProvider] Authorization result: {message}")
        # The dialog result only says the flow ended; the grant must be re-read.
        self._complete_authorization(self._check_authorization())

    def _check_authorization(self) -> bool:
        if self._bridge is None:
            return False
        try:
            return bool(self._bridge.check_authorization())
        except Exception as e:
            logger.error(f"[HistoricalStepProvider] Failed to check permissions: {e}")
            return False

    def _complete_authorization(self, granted: bool) -> None:
        callback, self._auth_callback = self._auth_callback, None
        if callback is None:
            self._is_authorized = granted
            logger.debug("[HistoricalStepProvider] Authorization result with no pending request")
            return
        self._finish_authorization(callback, granted)

    # ── Queries ────────────────────────────────────────────────────

    def get_steps_since(self, since: datetime, callback: QueryCallback) -> None:
        self._dispatch(callback, "query_steps_since", to_epoch_millis(since))

    def query_steps_for_range(self, start: datetime, end: datetime, callback: QueryCallback) -> None:
        self._dispatch(callback, "query_steps_for_range", to_epoch_millis(start), to_epoch_millis(end))

    def query_steps_today(self, callback: QueryCallback) -> None:
        self._dispatch(callback, "query_steps_today")

    def _dispatch(self, callback: QueryCallback, method: str, *args: int) -> None:
        if self._bridge is None:
            callback(StepQueryResult.failed("No health bridge on this platform", self.source, failure=FailureKind.UNAVAILABLE))
            return

        if self._query_callback is not None:
            self._complete_query(StepQueryResult.failed("Superseded by a newer query", self.source))
        self._query_callback = callback

        try:
            getattr(self._bridge, method)(*args)
            logger.debug(f"[HistoricalStepProvider] {method}{args}")
        except Exception as e:
            logger.error(f"[HistoricalStepProvider] {method} failed: {e}")
            self._complete_query(StepQueryResult.failed(str(e), self.source))

    def handle_steps_message(self, message: str) -> None:
        """Bridge push: a query finished.  *message* is the flat JSON result record."""
        try:
            result = StepQueryResult.from_json(message, self.source)
        except ProviderError as e:
            logger.error(f"[HistoricalStepProvider] Failed to parse step result: {e}")
            result = StepQueryResult.failed(str(e), self.source)
        self._complete_query(result)

    def handle_error_message(self, message: str) -> None:
        """Bridge push: a query or permission call failed with ``errorCode``/``errorMessage``."""
        logger.error(f"[HistoricalStepProvider] Bridge error: {message}")
        try:
            payload = json.loads(message)
            code = payload.get("errorCode")
            text = payload.get("errorMessage") or "Unknown error"
        except (json.JSONDecodeError, AttributeError, TypeError) as e:
            code, text = None, f"Unparseable bridge error: {e}"
        self._complete_query(StepQueryResult.failed(str(text), self.source, error_code=code))

    def _complete_query(self, result: StepQueryResult) -> None:
        callback, self._query_callback = self._query_callback, None
        if callback is None:
            logger.debug("[HistoricalStepProvider] Query result with no pending request")
            return
        try:
            callback(result)
        except Exception as exc:
            logger.warning(f"[HistoricalStepProvider] Query callback failed: {exc}")
