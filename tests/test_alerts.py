from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

import pytest

from conftest import FakeChannel, FakeClock, FakeTransport, T0, failing_channel
from config.constants import EventType
from config.settings import MonitoringSettings
from monitoring.alerts import NotificationGate, format_message
from monitoring.broadcast import BroadcastHub
from monitoring.models import MonitorSettings, MonitorState


HOST_DOWN = {"host": "Google DNS", "address": "8.8.8.8", "timestamp": T0.isoformat()}


def _state(**notifications: Any) -> MonitorState:
    config: Dict[str, Any] = {"enabled": True, "min_time_between_notifications": 5}
    config.update(notifications)
    return MonitorState(MonitorSettings(notifications=config))


def _gate(state: MonitorState, channels: List[FakeChannel], clock: FakeClock,
          local_time: datetime = datetime(2024, 5, 15, 12, 0), hub: BroadcastHub = None) -> NotificationGate:
    return NotificationGate(
        state,
        hub=hub,
        channel_factory=lambda settings: list(channels),
        monitoring_settings=MonitoringSettings(restore_cooldown_minutes=1),
        clock=clock,
        local_clock=lambda: local_time,
    )


# ============================================================================
# PREDICATES
# ============================================================================

@pytest.mark.asyncio
async def test_master_switch_off_suppresses_everything(clock: FakeClock) -> None:
    channel = FakeChannel()
    state = _state(enabled=False)
    gate = _gate(state, [channel], clock)

    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is False
    await gate.wait_idle()

    assert channel.sent == []
    assert len(state.ledger) == 0


@pytest.mark.asyncio
async def test_disabled_event_is_suppressed_but_others_pass(clock: FakeClock) -> None:
    channel = FakeChannel()
    gate = _gate(_state(events={"onHostDown": False}), [channel], clock)

    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is False
    assert await gate.consider(EventType.CONNECTION_LOST, {"host_count": 2}) is True
    await gate.wait_idle()

    assert [event for event, _ in channel.sent] == [EventType.CONNECTION_LOST]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "hhmm, suppressed",
    [
        ((21, 59), False),
        ((22, 0), True),
        ((23, 30), True),
        ((0, 0), True),
        ((8, 0), True),
        ((8, 1), False),
        ((12, 0), False),
    ],
)
async def test_quiet_hours_spanning_midnight(clock: FakeClock, hhmm: tuple, suppressed: bool) -> None:
    state = _state(quiet_hours_enabled=True, quiet_hours_start="22:00", quiet_hours_end="08:00")
    local = datetime(2024, 5, 15, *hhmm)
    gate = _gate(state, [FakeChannel()], clock, local_time=local)

    dispatched = await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8")

    assert dispatched is not suppressed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "hhmm, suppressed",
    [((11, 59), False), ((12, 0), True), ((12, 30), True), ((13, 0), True), ((13, 1), False)],
)
async def test_quiet_hours_within_one_day(clock: FakeClock, hhmm: tuple, suppressed: bool) -> None:
    state = _state(quiet_hours_enabled=True, quiet_hours_start="12:00", quiet_hours_end="13:00")
    gate = _gate(state, [FakeChannel()], clock, local_time=datetime(2024, 5, 15, *hhmm))

    assert await gate.consider(EventType.HOST_UP, HOST_DOWN, "host:8.8.8.8") is not suppressed


@pytest.mark.asyncio
async def test_quiet_hours_ignored_when_disabled(clock: FakeClock) -> None:
    state = _state(quiet_hours_enabled=False, quiet_hours_start="00:00", quiet_hours_end="23:59")
    gate = _gate(state, [FakeChannel()], clock)

    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is True


# ============================================================================
# COOLDOWN
# ============================================================================

@pytest.mark.asyncio
async def test_cooldown_blocks_until_the_window_has_elapsed(clock: FakeClock) -> None:
    channel = FakeChannel()
    state = _state(min_time_between_notifications=5)
    gate = _gate(state, [channel], clock)

    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is True

    clock.advance(minutes=4, seconds=59)
    assert await gate.consider(EventType.HOST_UP, HOST_DOWN, "host:8.8.8.8") is False
    # A suppressed attempt does not move the window
    assert state.ledger.last_fired("host:8.8.8.8") == T0

    clock.advance(seconds=1)
    assert await gate.consider(EventType.HOST_UP, HOST_DOWN, "host:8.8.8.8") is True
    await gate.wait_idle()

    assert [event for event, _ in channel.sent] == [EventType.HOST_DOWN, EventType.HOST_UP]


@pytest.mark.asyncio
async def test_cooldown_keys_are_independent(clock: FakeClock) -> None:
    gate = _gate(_state(), [FakeChannel()], clock)

    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is True
    assert await gate.consider(EventType.HOST_DOWN, {"address": "1.1.1.1"}, "host:1.1.1.1") is True
    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is False


@pytest.mark.asyncio
async def test_restored_uses_the_shorter_cooldown(clock: FakeClock) -> None:
    gate = _gate(_state(min_time_between_notifications=30), [FakeChannel()], clock)

    assert await gate.consider(EventType.CONNECTION_RESTORED, {}) is True
    clock.advance(seconds=59)
    assert await gate.consider(EventType.CONNECTION_RESTORED, {}) is False
    clock.advance(seconds=1)
    assert await gate.consider(EventType.CONNECTION_RESTORED, {}) is True

    # Lost keeps the configured cooldown
    assert await gate.consider(EventType.CONNECTION_LOST, {}) is True
    clock.advance(minutes=10)
    assert await gate.consider(EventType.CONNECTION_LOST, {}) is False


def test_cooldown_for_restored_never_exceeds_configured(clock: FakeClock) -> None:
    state = _state(min_time_between_notifications=0.5)
    gate = _gate(state, [], clock)

    settings = state.settings.notifications
    assert gate.cooldown_for(EventType.CONNECTION_RESTORED, settings).total_seconds() == 30
    assert gate.cooldown_for(EventType.HOST_DOWN, settings).total_seconds() == 30


# ============================================================================
# DELIVERY
# ============================================================================

@pytest.mark.asyncio
async def test_channel_failures_are_isolated(clock: FakeClock) -> None:
    healthy = FakeChannel("healthy")
    gate = _gate(
        _state(),
        [failing_channel(), FakeChannel("crashing", RuntimeError("boom")), healthy],
        clock,
    )

    assert await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8") is True
    await gate.wait_idle()

    assert len(healthy.sent) == 1
    assert gate.get_stats()["channel_failures"] == 2


@pytest.mark.asyncio
async def test_dispatch_reaches_subscribers(clock: FakeClock, hub: BroadcastHub) -> None:
    transport = FakeTransport()
    await hub.subscribe(transport, {"type": "initial", "data": {}})
    gate = _gate(_state(), [], clock, hub=hub)

    await gate.consider(EventType.HOST_DOWN, HOST_DOWN, "host:8.8.8.8")
    await hub.flush()

    notification = transport.messages()[-1]
    assert notification["type"] == "notification"
    assert notification["event"] == "onHostDown"
    assert notification["data"]["address"] == "8.8.8.8"


@pytest.mark.asyncio
async def test_send_test_bypasses_the_gate(clock: FakeClock) -> None:
    channel = FakeChannel()
    state = _state(enabled=False)
    gate = _gate(state, [channel], clock)

    enabled = await gate.send_test()
    await gate.wait_idle()

    assert enabled == {"browser": True}
    assert channel.sent[0][0] == EventType.SPEED_TEST_COMPLETE
    assert len(state.ledger) == 0


# ============================================================================
# FORMATTING
# ============================================================================

def test_format_host_down() -> None:
    assert format_message(EventType.HOST_DOWN, HOST_DOWN) == (
        "🔴 Host Down: Google DNS (8.8.8.8) is unreachable"
    )


def test_format_missing_values_render_as_na() -> None:
    message = format_message(EventType.SPEED_TEST_COMPLETE, {"download": 95.5})
    assert message == "✅ Speed Test Complete: ↓95.5 Mbps / ↑N/A Mbps / N/Ams ping"
