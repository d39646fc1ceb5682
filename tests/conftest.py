"""Shared test fixtures for stepkeeper."""

import json
import os
import tempfile
from datetime import UTC, datetime, timedelta

import pytest

from stepkeeper.core.clock import Clock
from stepkeeper.core.storage import MemoryStore


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def tmp_config_file(tmp_dir):
    """Create a temporary YAML config file."""
    import yaml

    config_data = {
        "paths": {
            "data_dir": os.path.join(tmp_dir, "data"),
            "store_dir": os.path.join(tmp_dir, "store"),
        },
        "reset": {"hour": 5, "minute": 30},
    }
    config_path = os.path.join(tmp_dir, "config.yaml")
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


# ── Fakes ────────────────────────────────────────────────────────────


class FakeClock(Clock):
    """Settable wall clock.  monotonic() stays real so bounded waits elapse."""

    def __init__(self, start: datetime, timezone: str | None = "UTC"):
        super().__init__(timezone)
        self.current = start

    def utcnow(self) -> datetime:
        return self.current.astimezone(UTC)

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)

    def set(self, moment: datetime) -> None:
        self.current = moment


class FakeSensor:
    def __init__(self, value: int = 1000, present: bool = True):
        self.value = value
        self.present = present
        self.reads = 0

    def is_present(self) -> bool:
        return self.present

    def read(self) -> int | None:
        self.reads += 1
        return self.value if self.present else None

    def walk(self, steps: int) -> None:
        self.value += steps

    def reboot(self, value: int = 0) -> None:
        self.value = value


class FakePermission:
    """Motion permission gate.

    ``mode``: "grant" grants when the dialog closes, "deny" denies,
    "never" holds the dialog open (callback kept in ``pending``).
    """

    def __init__(self, granted: bool = False, mode: str = "grant"):
        self.granted = granted
        self.mode = mode
        self.requests = 0
        self.pending = None

    def is_granted(self) -> bool:
        return self.granted

    def request(self, on_dialog_closed) -> None:
        self.requests += 1
        if self.mode == "never":
            self.pending = on_dialog_closed
            return
        self.granted = self.mode == "grant"
        on_dialog_closed(True)


class FakeBridge:
    """Health-store bridge that answers through the provider's handle_* methods."""

    def __init__(self, availability: int = 1, authorized: bool = True, auto_respond: bool = True):
        self.availability = availability
        self.authorized = authorized
        self.auto_respond = auto_respond
        self.provider = None
        self.calls: list[tuple] = []
        self.next_payload: dict | None = None
        self.next_error: dict | None = None

    def probe_availability(self) -> int:
        return self.availability

    def check_authorization(self) -> bool:
        return self.authorized

    def request_authorization(self) -> None:
        self.calls.append(("request_authorization",))
        if self.auto_respond and self.provider is not None:
            self.provider.handle_authorization_message("true")

    def query_steps_since(self, since_millis: int) -> None:
        self.calls.append(("query_steps_since", since_millis))
        self._respond()

    def query_steps_for_range(self, start_millis: int, end_millis: int) -> None:
        self.calls.append(("query_steps_for_range", start_millis, end_millis))
        self._respond()

    def query_steps_today(self) -> None:
        self.calls.append(("query_steps_today",))
        self._respond()

    def _respond(self) -> None:
        if not self.auto_respond or self.provider is None:
            return
        if self.next_error is not None:
            self.provider.handle_error_message(json.dumps(self.next_error))
        elif self.next_payload is not None:
            self.provider.handle_steps_message(json.dumps(self.next_payload))


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def make_clock():
    return FakeClock


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sensor():
    return FakeSensor()


@pytest.fixture
def make_permission():
    return FakePermission


@pytest.fixture
def make_bridge():
    return FakeBridge
