from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from conftest import T0, down, probe
from database.connection import DatabaseManager
from database.store import SQLAlchemyStore
from monitoring.models import (
    BandwidthResult,
    HostHealthState,
    LiveHostState,
    MonitorSettings,
)


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path):
    manager = DatabaseManager(url=f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}")
    await manager.initialize()
    yield SQLAlchemyStore(manager)
    await manager.close()


def _speed(timestamp: datetime, download: float = 100.0, down_bytes: int = 0, up_bytes: int = 0) -> BandwidthResult:
    return BandwidthResult(
        timestamp=timestamp,
        download=download,
        upload=20.0,
        ping=10.0,
        server="Example Server",
        download_bytes=down_bytes or None,
        upload_bytes=up_bytes or None,
    )


@pytest.mark.asyncio
async def test_history_order_and_count(sql_store: SQLAlchemyStore) -> None:
    for n in range(4):
        await sql_store.save_bandwidth_result(_speed(T0 + timedelta(minutes=n), download=float(n)))

    recent = await sql_store.load_recent_history(3)
    page = await sql_store.load_history_page(2, offset=1)

    assert [r.download for r in recent] == [1.0, 2.0, 3.0]
    assert [r.download for r in page] == [2.0, 1.0]
    assert await sql_store.count_history() == 4
    assert recent[-1].timestamp == T0 + timedelta(minutes=3)
    assert recent[-1].timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_failed_result_round_trips_error(sql_store: SQLAlchemyStore) -> None:
    await sql_store.save_bandwidth_result(BandwidthResult.failed(T0, "Speed test failed after 4 attempts"))

    [stored] = await sql_store.load_recent_history(10)

    assert not stored.succeeded
    assert stored.download == 0.0


@pytest.mark.asyncio
async def test_clear_history(sql_store: SQLAlchemyStore) -> None:
    await sql_store.save_bandwidth_result(_speed(T0))
    await sql_store.save_bandwidth_result(_speed(T0))

    assert await sql_store.clear_history() == 2
    assert await sql_store.count_history() == 0


@pytest.mark.asyncio
async def test_monthly_usage_counts_only_the_window(sql_store: SQLAlchemyStore) -> None:
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    end = datetime(2024, 6, 1, tzinfo=timezone.utc)
    await sql_store.save_bandwidth_result(_speed(start, down_bytes=100, up_bytes=50))
    await sql_store.save_bandwidth_result(_speed(T0, down_bytes=1000))
    await sql_store.save_bandwidth_result(_speed(start - timedelta(seconds=1), down_bytes=7777))
    await sql_store.save_bandwidth_result(_speed(end, down_bytes=8888))

    assert await sql_store.monthly_usage_bytes(start, end) == 1150.0


@pytest.mark.asyncio
async def test_live_health_upsert_keeps_one_row(sql_store: SQLAlchemyStore) -> None:
    first = LiveHostState(down("8.8.8.8", T0), HostHealthState(consecutive_failures=1))
    second = LiveHostState(
        down("8.8.8.8", T0 + timedelta(seconds=5)),
        HostHealthState(is_down=True, consecutive_failures=3, last_notification_time=T0),
    )

    await sql_store.save_live_health("8.8.8.8", first)
    await sql_store.save_live_health("8.8.8.8", second)
    live = await sql_store.load_live_health()

    assert list(live) == ["8.8.8.8"]
    restored = live["8.8.8.8"]
    assert restored.health.is_down
    assert restored.health.consecutive_failures == 3
    assert restored.health.last_notification_time == T0
    assert restored.result.timestamp == T0 + timedelta(seconds=5)

    history = await sql_store.load_live_history("8.8.8.8", T0 - timedelta(minutes=1))
    assert len(history) == 2


@pytest.mark.asyncio
async def test_live_history_window_and_prune(sql_store: SQLAlchemyStore) -> None:
    old = T0 - timedelta(days=8)
    for timestamp in (old, T0):
        await sql_store.save_live_health(
            "1.1.1.1", LiveHostState(probe("1.1.1.1", 12.0, timestamp), HostHealthState())
        )

    recent = await sql_store.load_live_history("1.1.1.1", T0 - timedelta(hours=1))
    assert [r.timestamp for r in recent] == [T0]

    assert await sql_store.prune_live_history(T0 - timedelta(days=7)) == 1
    assert len(await sql_store.load_live_history("1.1.1.1", old - timedelta(days=1))) == 1


@pytest.mark.asyncio
async def test_settings_round_trip(sql_store: SQLAlchemyStore) -> None:
    assert await sql_store.load_settings() is None

    settings = MonitorSettings(test_interval=15, monthly_data_cap="500 GB")
    await sql_store.save_settings(settings)
    await sql_store.save_settings(settings.model_copy(update={"test_interval": 20}))

    loaded = await sql_store.load_settings()
    assert loaded.test_interval == 20
    assert loaded.monthly_data_cap == "500 GB"
    assert loaded.notifications == settings.notifications


@pytest.mark.asyncio
async def test_database_info_counts_rows(sql_store: SQLAlchemyStore) -> None:
    await sql_store.save_bandwidth_result(_speed(T0))
    await sql_store.save_live_health("1.1.1.1", LiveHostState(probe("1.1.1.1", 9.0), HostHealthState()))

    info = await sql_store.db.get_database_info()

    assert (info["speed_tests"], info["hosts"], info["probes"]) == (1, 1, 1)
    assert await sql_store.db.check_connection()
