"""Tests for stepkeeper.steps.controller — StepController."""

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest

from stepkeeper.core.events import (
    STEPS_DAY_ROLLOVER,
    STEPS_DETECTED,
    STEPS_INITIALIZED,
    STEPS_SOURCE_CHANGED,
    Event,
    EventBus,
)
from stepkeeper.core.exceptions import FailureKind
from stepkeeper.steps import ControllerState, ProviderKind, StepController, StepPersistentData, StepSource
from stepkeeper.steps.models import to_epoch_millis
from stepkeeper.steps.providers import HistoricalStepProvider, PedometerProvider

AUTH_TIMEOUT = 0.05
TICK = 0.005


@pytest.fixture
def record(store, clock):
    rec = StepPersistentData(store, clock=clock)
    rec.load()
    return rec


@pytest.fixture
def events():
    return []


@pytest.fixture
def bus(events):
    bus = EventBus()
    bus.on_all(events.append)
    return bus


@pytest.fixture
def make_controller(record, bus, clock):
    def _make(*providers, **kwargs):
        kwargs.setdefault("auth_timeout", AUTH_TIMEOUT)
        kwargs.setdefault("tick_seconds", TICK)
        return StepController(record, providers, bus, clock=clock, **kwargs)

    return _make


@pytest.fixture
def historical(make_bridge):
    bridge = make_bridge()
    provider = HistoricalStepProvider(bridge)
    bridge.provider = provider
    return provider, bridge


def _names(events: list[Event]) -> list[str]:
    return [e.name for e in events]


# ── Initialization ──────────────────────────────────────────────────


class TestInitialize:
    async def test_starts_uninitialized(self, make_controller):
        controller = make_controller()
        assert controller.state is ControllerState.UNINITIALIZED
        assert not controller.is_initialized

    async def test_no_providers(self, make_controller, events):
        controller = make_controller()
        assert await controller.initialize() is False
        assert controller.state is ControllerState.READY
        assert controller.active_source is StepSource.NONE
        assert controller.active_kind is ProviderKind.NONE
        assert _names(events) == [STEPS_SOURCE_CHANGED, STEPS_INITIALIZED]
        assert events[1].payload == {"success": False}

    async def test_pedometer_selected_and_subscribed(self, make_controller, sensor):
        pedometer = PedometerProvider(sensor)
        controller = make_controller(pedometer)

        assert await controller.initialize() is True
        assert controller.is_authorized
        assert controller.active_provider is pedometer
        assert controller.active_kind is ProviderKind.PEDOMETER
        assert pedometer.listener_count == 1

    async def test_first_available_provider_wins(self, make_controller, sensor, historical):
        sensor.present = False
        provider, _bridge = historical
        controller = make_controller(PedometerProvider(sensor), provider)

        assert await controller.initialize() is True
        assert controller.active_provider is provider
        assert controller.active_source is StepSource.NATIVE_HISTORICAL

    async def test_denied_authorization_drops_provider(self, make_controller, sensor, make_permission):
        controller = make_controller(PedometerProvider(sensor, make_permission(mode="deny")))

        assert await controller.initialize() is False
        assert controller.active_provider is None
        assert controller.state is ControllerState.READY

    async def test_timeout_keeps_provider_unauthorized(self, make_controller, sensor, make_permission):
        permission = make_permission(mode="never")
        pedometer = PedometerProvider(sensor, permission)
        controller = make_controller(pedometer)

        started = asyncio.get_running_loop().time()
        assert await controller.initialize() is False
        elapsed = asyncio.get_running_loop().time() - started

        assert elapsed >= AUTH_TIMEOUT
        assert elapsed < 2.0
        assert controller.state is ControllerState.READY
        assert controller.active_provider is pedometer
        assert not controller.is_authorized

    async def test_late_callback_after_timeout_is_ignored(self, make_controller, sensor, make_permission):
        permission = make_permission(mode="never")
        pedometer = PedometerProvider(sensor, permission)
        controller = make_controller(pedometer)
        await controller.initialize()

        permission.granted = True
        permission.pending(True)

        assert not controller.is_authorized
        assert pedometer.listener_count == 0
        controller.start_tracking()
        assert not controller.is_tracking

    async def test_second_call_is_idempotent(self, make_controller, sensor, make_permission):
        permission = make_permission(mode="grant")
        controller = make_controller(PedometerProvider(sensor, permission))
        await controller.initialize()

        seen = []
        assert await controller.initialize(seen.append) is True
        assert seen == [True]
        assert permission.requests == 1

    async def test_concurrent_calls_share_one_attempt(self, make_controller, sensor, make_permission):
        permission = make_permission(mode="never")
        controller = make_controller(PedometerProvider(sensor, permission), auth_timeout=2.0)

        tasks = [asyncio.create_task(controller.initialize()) for _ in range(2)]
        await asyncio.sleep(0.02)
        assert controller.state is ControllerState.INITIALIZING

        permission.granted = True
        permission.pending(True)
        assert await asyncio.gather(*tasks) == [True, True]
        assert permission.requests == 1

    async def test_failing_callback_does_not_propagate(self, make_controller, sensor):
        controller = make_controller(PedometerProvider(sensor))

        def broken(_success):
            raise RuntimeError("ui gone")

        assert await controller.initialize(broken) is True

    async def test_reinitialize_reselects(self, make_controller, sensor):
        pedometer = PedometerProvider(sensor)
        controller = make_controller(pedometer)
        await controller.initialize()
        controller.start_tracking()

        assert await controller.reinitialize() is True
        assert pedometer.listener_count == 1
        assert not controller.is_tracking


# ── Tracking & reconciliation ───────────────────────────────────────


@pytest.fixture
async def tracking(make_controller, sensor):
    controller = make_controller(PedometerProvider(sensor))
    await controller.initialize()
    controller.start_tracking()
    return controller


class TestTracking:
    async def test_start_before_initialize_is_refused(self, make_controller, sensor):
        controller = make_controller(PedometerProvider(sensor))
        controller.start_tracking()
        assert not controller.is_tracking

    async def test_tick_reconciles_delta(self, tracking, sensor, record, store, events):
        sensor.walk(10)
        tracking.tick()

        assert tracking.steps_today == 10
        assert tracking.total_steps_all_time == 10
        assert tracking.session_steps == 10
        assert record.last_active_source is StepSource.NATIVE_REALTIME
        assert store.write_count == 1

        detected = [e for e in events if e.name == STEPS_DETECTED]
        assert detected[-1].payload == {"steps": 10, "source": StepSource.NATIVE_REALTIME, "steps_today": 10}

    async def test_no_save_when_disabled(self, make_controller, sensor, store):
        controller = make_controller(PedometerProvider(sensor), save_on_reconcile=False)
        await controller.initialize()
        controller.start_tracking()
        sensor.walk(4)
        controller.tick()

        assert controller.steps_today == 4
        assert store.write_count == 0
        assert controller.record.is_dirty

    async def test_unauthorized_tick_does_nothing(self, make_controller, sensor, make_permission):
        controller = make_controller(PedometerProvider(sensor, make_permission(mode="never")))
        await controller.initialize()
        sensor.walk(10)
        controller.tick()
        assert controller.steps_today == 0

    async def test_three_days_later_resets_once(self, tracking, sensor, clock, events):
        sensor.walk(100)
        tracking.tick()
        clock.advance(days=3)

        sensor.walk(150)
        tracking.tick()
        sensor.walk(1)
        tracking.tick()

        assert _names(events).count(STEPS_DAY_ROLLOVER) == 1
        assert tracking.steps_today == 151
        assert tracking.total_steps_all_time == 251

    async def test_toggle(self, tracking):
        tracking.toggle_tracking()
        assert not tracking.is_tracking
        tracking.toggle_tracking()
        assert tracking.is_tracking

    async def test_stop_keeps_session_steps(self, tracking, sensor):
        sensor.walk(6)
        tracking.tick()
        tracking.stop_tracking()
        assert not tracking.is_tracking
        assert tracking.session_steps == 6

    async def test_pause_resume_skips_background_steps(self, tracking, sensor):
        tracking.pause()
        sensor.walk(500)
        tracking.tick()
        tracking.resume()
        tracking.tick()
        assert tracking.steps_today == 0

        sensor.walk(2)
        tracking.tick()
        assert tracking.steps_today == 2

    async def test_add_steps_manually(self, tracking, record):
        assert tracking.add_steps_manually(30) == 30
        assert tracking.steps_today == 30
        assert record.last_active_source is StepSource.NONE
        assert tracking.add_steps_manually(0) == 0
        assert tracking.add_steps_manually(-3) == 0
        assert tracking.steps_today == 30


# ── History sync ────────────────────────────────────────────────────


def _payload(steps: int, start: datetime, end: datetime) -> dict:
    return {"success": True, "steps": steps, "startTime": to_epoch_millis(start), "endTime": to_epoch_millis(end)}


class TestSyncHistory:
    async def test_first_sync_looks_back_one_day(self, make_controller, historical, clock, record):
        provider, bridge = historical
        now = clock.utcnow()
        bridge.next_payload = _payload(800, now - timedelta(days=1), now)
        controller = make_controller(provider)
        await controller.initialize()

        result = await controller.sync_history()

        assert result.success
        assert ("query_steps_since", to_epoch_millis(now - timedelta(days=1))) in bridge.calls
        assert controller.steps_today == 800
        assert record.last_active_source is StepSource.NATIVE_HISTORICAL
        assert record.last_health_sync_time == now
        assert not record.is_dirty

    async def test_next_sync_starts_at_last_sync(self, make_controller, historical, clock, record):
        provider, bridge = historical
        synced = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)
        record.last_health_sync_time = synced
        bridge.next_payload = _payload(0, synced, clock.utcnow())
        controller = make_controller(provider)
        await controller.initialize()

        result = await controller.sync_history()

        assert result.success
        assert bridge.calls[-1] == ("query_steps_since", to_epoch_millis(synced))
        assert controller.steps_today == 0
        assert record.last_health_sync_time == clock.utcnow()

    async def test_failed_query_is_returned(self, make_controller, historical, record):
        provider, bridge = historical
        bridge.next_error = {"errorCode": "E_QUERY", "errorMessage": "store locked"}
        controller = make_controller(provider)
        await controller.initialize()

        result = await controller.sync_history()

        assert not result.success
        assert result.error == "E_QUERY: store locked"
        assert record.last_health_sync_time is None

    async def test_timeout_then_late_result_is_ignored(self, make_controller, historical):
        provider, bridge = historical
        controller = make_controller(provider)
        await controller.initialize()

        result = await controller.sync_history()
        assert result.failure is FailureKind.TIMEOUT

        now = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
        provider.handle_steps_message(json.dumps(_payload(999, now - timedelta(hours=1), now)))
        assert controller.steps_today == 0

    async def test_overlapping_syncs_do_not_disown_each_other(self, make_controller, historical, clock):
        provider, bridge = historical
        controller = make_controller(provider, auth_timeout=1.0)
        await controller.initialize()
        bridge.auto_respond = False

        first = asyncio.create_task(controller.sync_history())
        await asyncio.sleep(0.02)
        second = asyncio.create_task(controller.sync_history())
        await asyncio.sleep(0.02)

        # the older query was superseded and reported right away
        assert first.done()
        superseded = first.result()
        assert not superseded.success
        assert "Superseded" in superseded.error

        now = clock.utcnow()
        provider.handle_steps_message(json.dumps(_payload(500, now - timedelta(hours=1), now)))
        result = await asyncio.wait_for(second, timeout=2.0)

        assert result.success
        assert controller.steps_today == 500
        assert controller.total_steps_all_time == 500

    async def test_timed_out_sync_leaves_later_sync_intact(self, make_controller, historical, clock):
        provider, bridge = historical
        controller = make_controller(provider)
        await controller.initialize()
        bridge.auto_respond = False

        timed_out = await controller.sync_history()
        assert timed_out.failure is FailureKind.TIMEOUT

        second = asyncio.create_task(controller.sync_history())
        await asyncio.sleep(0.01)
        now = clock.utcnow()
        provider.handle_steps_message(json.dumps(_payload(70, now - timedelta(hours=1), now)))
        result = await asyncio.wait_for(second, timeout=2.0)

        assert result.success
        assert controller.steps_today == 70

    async def test_pedometer_has_no_history(self, tracking):
        result = await tracking.sync_history()
        assert result.failure is FailureKind.UNAVAILABLE

    async def test_requires_initialization(self, make_controller, historical):
        provider, _bridge = historical
        result = await make_controller(provider).sync_history()
        assert result.failure is FailureKind.UNAVAILABLE

    async def test_requires_authorization(self, make_controller, historical):
        provider, bridge = historical
        bridge.auto_respond = False
        controller = make_controller(provider)
        await controller.initialize()

        result = await controller.sync_history()
        assert result.failure is FailureKind.UNAUTHORIZED


# ── Persistence helpers ─────────────────────────────────────────────


class TestPersistenceHelpers:
    async def test_force_save_writes_clean_record(self, tracking, store):
        assert tracking.force_save() is True
        assert store.write_count == 1

    async def test_clear_all_data(self, tracking, store):
        tracking.add_steps_manually(20)
        tracking.clear_all_data()
        assert tracking.steps_today == 0
        assert tracking.total_steps_all_time == 0
        assert store.get("persistence/StepRecord") is None

    async def test_debug_status(self, tracking, sensor):
        sensor.walk(3)
        tracking.tick()
        status = tracking.debug_status()
        assert "State: ready" in status
        assert "Source: native_realtime" in status
        assert "Today's Steps: 3" in status
