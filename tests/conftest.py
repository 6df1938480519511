from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import pytest

from config.settings import BroadcastSettings, MonitoringSettings, Settings
from config.constants import EventType, UNREACHABLE_PING
from exceptions import NotificationChannelError, StoreError
from monitoring.broadcast import BroadcastHub
from monitoring.channels import NotificationChannel
from monitoring.models import (
    BandwidthResult,
    LiveHostState,
    MonitorSettings,
    ProbeResult,
)


T0 = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def probe(address: str, ping: float, timestamp: Optional[datetime] = None, name: str = "") -> ProbeResult:
    return ProbeResult(address=address, name=name or address, ping=ping, timestamp=timestamp or T0)


def down(address: str, timestamp: Optional[datetime] = None) -> ProbeResult:
    return probe(address, UNREACHABLE_PING, timestamp)


def speedtest_report(download_mbps: float = 100.0, upload_mbps: float = 20.0, ping_ms: float = 12.0,
                     download_bytes: int = 150_000_000, upload_bytes: int = 30_000_000) -> Dict[str, Any]:
    """A report shaped like the speed-test CLI's ``--format=json`` output."""
    return {
        "ping": {"jitter": 1.5, "latency": ping_ms},
        "download": {
            "bandwidth": download_mbps * 125_000,
            "bytes": download_bytes,
            "latency": {"iqm": 20.1, "low": 10.0, "high": 40.0, "jitter": 2.0},
        },
        "upload": {
            "bandwidth": upload_mbps * 125_000,
            "bytes": upload_bytes,
            "latency": {"iqm": 30.2, "low": 11.0, "high": 50.0},
        },
        "isp": "Example ISP",
        "server": {"name": "Example Server"},
        "result": {"url": "https://www.speedtest.net/result/c/abc"},
    }


# ============================================================================
# FAKES
# ============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTransport:
    """Subscriber transport recording every decoded message."""

    def __init__(self, fail: bool = False, send_delay: float = 0.0):
        self.is_open = True
        self.fail = fail
        self.send_delay = send_delay
        self.sent: List[Dict[str, Any]] = []

    async def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        self.sent.append(json.loads(text))

    @property
    def types(self) -> List[str]:
        return [message["type"] for message in self.sent]

    def messages(self) -> List[Dict[str, Any]]:
        """Every message received, batches unpacked."""
        flat: List[Dict[str, Any]] = []
        for message in self.sent:
            if message["type"] == "batch":
                flat.extend(message["messages"])
            else:
                flat.append(message)
        return flat

    def notifications(self) -> List[str]:
        return [m["event"] for m in self.messages() if m["type"] == "notification"]


class FakeChannel(NotificationChannel):
    def __init__(self, name: str = "fake", error: Optional[BaseException] = None):
        self.name = name
        self.error = error
        self.sent: List[tuple] = []

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((event_type, message))


class FakeStore:
    """In-memory ``Store``."""

    def __init__(self) -> None:
        self.history: List[BandwidthResult] = []
        self.live: Dict[str, LiveHostState] = {}
        self.live_history: List[ProbeResult] = []
        self.settings: Optional[MonitorSettings] = None
        self.usage_bytes: float = 0.0
        self.save_settings_calls = 0
        self.fail_live_saves = False

    async def save_bandwidth_result(self, result: BandwidthResult) -> None:
        self.history.append(result)

    async def load_recent_history(self, limit: int) -> List[BandwidthResult]:
        return list(self.history[-limit:])

    async def load_history_page(self, limit: int, offset: int = 0) -> List[BandwidthResult]:
        newest_first = list(reversed(self.history))
        return newest_first[offset:offset + limit]

    async def count_history(self) -> int:
        return len(self.history)

    async def clear_history(self) -> int:
        deleted = len(self.history)
        self.history.clear()
        return deleted

    async def monthly_usage_bytes(self, start: datetime, end: datetime) -> float:
        return self.usage_bytes

    async def save_live_health(self, address: str, state: LiveHostState) -> None:
        if self.fail_live_saves:
            raise StoreError("disk full", operation="save_live_health")
        self.live[address] = LiveHostState(
            result=state.result,
            health=type(state.health)(**vars(state.health)),
        )
        self.live_history.append(state.result)

    async def load_live_health(self) -> Dict[str, LiveHostState]:
        return dict(self.live)

    async def load_live_history(self, address: str, since: datetime) -> List[ProbeResult]:
        return [r for r in self.live_history if r.address == address and r.timestamp >= since]

    async def prune_live_history(self, older_than: datetime) -> int:
        before = len(self.live_history)
        self.live_history = [r for r in self.live_history if r.timestamp >= older_than]
        return before - len(self.live_history)

    async def load_settings(self) -> Optional[MonitorSettings]:
        return self.settings

    async def save_settings(self, settings: MonitorSettings) -> None:
        self.save_settings_calls += 1
        self.settings = settings


class ScriptedPing:
    """
    Blocking ping replacement.  Each address replays its script; the last
    value repeats once the script is exhausted.  ``None`` means no reply.
    """

    def __init__(self, scripts: Dict[str, Iterable[Optional[float]]]):
        self.scripts = {address: list(values) for address, values in scripts.items()}
        self.calls: List[str] = []

    def __call__(self, address: str, timeout: float = 2, unit: str = "ms") -> Optional[float]:
        self.calls.append(address)
        script = self.scripts.get(address, [None])
        value = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(value, BaseException):
            raise value
        return value


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedSpeedtest:
    """Async speed-test runner replaying reports or raising failures."""

    def __init__(self, outcomes: List[Any]):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> Dict[str, Any]:
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def failing_channel(message: str = "HTTP 500") -> FakeChannel:
    return FakeChannel("broken", NotificationChannelError(message, channel="broken"))


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        monitoring=MonitoringSettings(speedtest_retry_delay=10),
        broadcast=BroadcastSettings(batch_interval_ms=10, batch_size_limit=50),
    )


@pytest.fixture
def hub(app_settings: Settings) -> BroadcastHub:
    return BroadcastHub(app_settings.broadcast)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
