from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from conftest import (
    T0,
    FakeClock,
    FakeStore,
    FakeTransport,
    ScriptedPing,
    ScriptedSpeedtest,
    SleepRecorder,
    speedtest_report,
)
from config.constants import UNREACHABLE_PING
from config.settings import Settings
from exceptions import ConfigurationError, DataCapReachedError, MeasurementFailure
from monitoring.models import (
    BandwidthResult,
    HostHealthState,
    LiveHostState,
    MonitorSettings,
    ProbeResult,
)
from monitoring.monitor import MonitoringEngine
from monitoring.probe import ProbeRunner


HOSTS = [
    {"address": "8.8.8.8", "name": "Google DNS", "enabled": True},
    {"address": "1.1.1.1", "name": "Cloudflare DNS", "enabled": True},
]


def _settings(**overrides: Any) -> MonitorSettings:
    data: Dict[str, Any] = {
        "monitoring_hosts": HOSTS,
        "notifications": {"enabled": True, "channels": [{"type": "browser"}]},
    }
    data.update(overrides)
    return MonitorSettings(**data)


async def _engine(
    app_settings: Settings,
    store: FakeStore,
    ping: Optional[ScriptedPing] = None,
    speedtest: Optional[ScriptedSpeedtest] = None,
    settings: Optional[MonitorSettings] = None,
) -> MonitoringEngine:
    clock = FakeClock()
    store.settings = settings or _settings()
    runner = ProbeRunner(
        usage_source=store,
        monitoring_settings=app_settings.monitoring,
        ping_func=ping or ScriptedPing({"8.8.8.8": [15.0], "1.1.1.1": [12.0]}),
        speedtest_runner=speedtest or ScriptedSpeedtest([speedtest_report()]),
        sleep=SleepRecorder(),
        clock=clock,
    )
    engine = MonitoringEngine(store, probe_runner=runner, settings=app_settings, clock=clock)
    await engine.initialize()
    return engine


async def _subscribed(engine: MonitoringEngine) -> FakeTransport:
    transport = FakeTransport()
    await engine.subscribe(transport)
    return transport


# ============================================================================
# INITIALIZATION
# ============================================================================

@pytest.mark.asyncio
async def test_initialize_saves_defaults_when_nothing_stored(app_settings: Settings) -> None:
    store = FakeStore()
    engine = MonitoringEngine(store, settings=app_settings)

    await engine.initialize()

    assert store.settings == MonitorSettings()
    assert engine.state.settings.test_interval == 30


@pytest.mark.asyncio
async def test_initialize_restores_history_and_health(app_settings: Settings, store: FakeStore) -> None:
    store.history = [
        BandwidthResult(timestamp=T0, download=80, upload=15, ping=20),
        BandwidthResult(timestamp=T0, download=90, upload=18, ping=11),
    ]
    store.live["8.8.8.8"] = LiveHostState(
        result=ProbeResult("8.8.8.8", "Google DNS", UNREACHABLE_PING, T0),
        health=HostHealthState(is_down=True, consecutive_failures=5, last_notification_time=T0),
    )

    engine = await _engine(app_settings, store, ping=ScriptedPing({"8.8.8.8": [None], "1.1.1.1": [10.0]}))

    assert engine.state.current_speed == {"download": 90, "upload": 18, "ping": 11}
    assert engine.state.health["8.8.8.8"].is_down
    assert engine.state.ledger.last_fired("host:8.8.8.8") == T0

    # Still down after restart: no second HostDown
    transport = await _subscribed(engine)
    await engine.run_liveness_cycle()
    await engine.hub.flush()
    assert transport.notifications() == []


# ============================================================================
# LIVENESS
# ============================================================================

@pytest.mark.asyncio
async def test_host_down_notifies_once_and_persists(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(
        app_settings, store, ping=ScriptedPing({"8.8.8.8": [None], "1.1.1.1": [12.0]})
    )
    transport = await _subscribed(engine)

    for _ in range(4):
        await engine.run_liveness_cycle()
    await engine.hub.flush()

    assert transport.notifications() == ["onHostDown"]
    persisted = store.live["8.8.8.8"].health
    assert persisted.is_down
    assert persisted.consecutive_failures == 4
    assert persisted.last_notification_time == T0
    assert engine.state.live["8.8.8.8"].ping == UNREACHABLE_PING
    assert engine.state.current_speed["ping"] == UNREACHABLE_PING


@pytest.mark.asyncio
async def test_disabled_host_down_still_tracks_state(app_settings: Settings, store: FakeStore) -> None:
    settings = _settings(notifications={"enabled": True, "events": {"onHostDown": False}})
    engine = await _engine(
        app_settings, store, settings=settings,
        ping=ScriptedPing({"8.8.8.8": [None], "1.1.1.1": [12.0]}),
    )
    transport = await _subscribed(engine)

    for _ in range(3):
        await engine.run_liveness_cycle()
    await engine.hub.flush()

    assert transport.notifications() == []
    assert engine.state.health["8.8.8.8"].is_down
    assert store.live["8.8.8.8"].health.is_down
    assert store.live["8.8.8.8"].health.last_notification_time is None


@pytest.mark.asyncio
async def test_connection_lost_and_restored(app_settings: Settings, store: FakeStore) -> None:
    ping = ScriptedPing({"8.8.8.8": [None, None, 14.0], "1.1.1.1": [None, None, 11.0]})
    engine = await _engine(app_settings, store, ping=ping)
    transport = await _subscribed(engine)

    await engine.run_liveness_cycle()
    assert engine.state.connection_lost
    await engine.run_liveness_cycle()
    await engine.run_liveness_cycle()
    await engine.hub.flush()

    assert not engine.state.connection_lost
    assert transport.notifications() == ["onConnectionLost", "onConnectionRestored"]


@pytest.mark.asyncio
async def test_persistence_failure_does_not_break_the_cycle(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store)
    store.fail_live_saves = True

    results = await engine.run_liveness_cycle()

    assert len(results) == 2
    assert set(engine.state.live) == {"8.8.8.8", "1.1.1.1"}


@pytest.mark.asyncio
async def test_live_update_is_published(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store)
    transport = await _subscribed(engine)

    await engine.run_liveness_cycle()
    await engine.hub.flush()

    live = [m for m in transport.messages() if m["type"] == "liveMonitoring"]
    assert live[-1]["data"]["1.1.1.1"]["ping"] == 12.0


# ============================================================================
# BANDWIDTH
# ============================================================================

@pytest.mark.asyncio
async def test_breach_and_completion_are_both_notified(app_settings: Settings, store: FakeStore) -> None:
    speedtest = ScriptedSpeedtest([speedtest_report(download_mbps=5, upload_mbps=10, ping_ms=50)])
    engine = await _engine(app_settings, store, speedtest=speedtest)
    transport = await _subscribed(engine)

    result = await engine.run_bandwidth_test()
    await engine.hub.flush()

    assert result.download == 5.0
    assert transport.notifications() == ["onThresholdBreach", "onSpeedTestComplete"]
    assert [m["type"] for m in transport.messages()][-2:] == ["speedtest", "history"]
    assert store.history == [result]
    assert engine.state.current_speed["download"] == 5.0


@pytest.mark.asyncio
async def test_failed_test_is_recorded_without_notifications(app_settings: Settings, store: FakeStore) -> None:
    speedtest = ScriptedSpeedtest([MeasurementFailure("timed out")])
    engine = await _engine(app_settings, store, speedtest=speedtest)
    transport = await _subscribed(engine)

    result = await engine.run_bandwidth_test()
    await engine.hub.flush()

    assert result.error
    assert list(engine.state.history) == [result]
    assert transport.notifications() == []
    assert engine.state.current_speed["download"] == 0.0


@pytest.mark.asyncio
async def test_data_cap_blocks_manual_and_skips_scheduled(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store, settings=_settings(monthly_data_cap="1 GB"))
    store.usage_bytes = 2 * 1024 ** 3

    with pytest.raises(DataCapReachedError):
        await engine.run_bandwidth_test()
    await engine.run_scheduled_bandwidth_test()

    assert store.history == []


# ============================================================================
# SETTINGS
# ============================================================================

@pytest.mark.asyncio
async def test_update_settings_merges_and_publishes(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store)
    transport = await _subscribed(engine)
    saves = store.save_settings_calls

    updated = await engine.update_settings({"thresholds": {"minDownload": 5}, "testInterval": 15})

    assert updated.thresholds.min_download == 5
    assert updated.thresholds.min_upload == 10
    assert updated.test_interval == 15
    assert engine.state.settings is updated
    assert store.save_settings_calls == saves + 1
    assert transport.types[-1] == "settings"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "patch",
    [
        {"monitorInterval": 0},
        {"testInterval": "often"},
        {"monthlyDataCap": "lots"},
        {"notifications": {"quietHoursStart": "25:00"}},
        {"monitoringHosts": [{"address": ""}]},
    ],
)
async def test_invalid_settings_are_rejected_untouched(
    app_settings: Settings, store: FakeStore, patch: Dict[str, Any]
) -> None:
    engine = await _engine(app_settings, store)
    before = engine.state.settings
    saves = store.save_settings_calls

    with pytest.raises(ConfigurationError):
        await engine.update_settings(patch)

    assert engine.state.settings is before
    assert store.save_settings_calls == saves


@pytest.mark.asyncio
async def test_removed_host_is_forgotten(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store)
    await engine.run_liveness_cycle()

    await engine.update_settings({"monitoringHosts": [HOSTS[1]]})

    assert set(engine.state.health) == {"1.1.1.1"}
    assert set(engine.state.live) == {"1.1.1.1"}


# ============================================================================
# HISTORY / USAGE
# ============================================================================

@pytest.mark.asyncio
async def test_history_pagination(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store)
    for n in range(5):
        store.history.append(BandwidthResult(timestamp=T0, download=float(n)))

    page = await engine.history_page(limit=2, offset=1, paginated=True)

    assert [r["download"] for r in page["results"]] == [3.0, 2.0]
    assert page["pagination"] == {"offset": 1, "limit": 2, "total": 5, "hasMore": True}


@pytest.mark.asyncio
async def test_monthly_usage_report(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store, settings=_settings(monthly_data_cap="1 GB"))
    store.usage_bytes = 512 * 1024 ** 2

    usage = await engine.monthly_usage()

    assert usage["percentageUsed"] == 50.0
    assert usage["capReached"] is False
    assert usage["totalFormatted"] == "512.00 MB"


@pytest.mark.asyncio
async def test_clear_history(app_settings: Settings, store: FakeStore) -> None:
    engine = await _engine(app_settings, store)
    await engine.run_bandwidth_test()
    transport = await _subscribed(engine)

    assert await engine.clear_history() == 1
    await engine.hub.flush()

    assert len(engine.state.history) == 0
    assert transport.messages()[-1]["type"] == "historyCleared"
