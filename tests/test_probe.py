from __future__ import annotations

import pytest

from conftest import (
    FakeClock,
    FakeStore,
    ScriptedPing,
    ScriptedSpeedtest,
    SleepRecorder,
    speedtest_report,
)
from config.constants import FailureReason, UNREACHABLE_PING
from config.settings import MonitoringSettings
from exceptions import DataCapReachedError, MeasurementFailure
from monitoring.models import MonitoredHost
from monitoring.probe import ProbeRunner, classify_failure, parse_speedtest_output


def _runner(speedtest=None, ping=None, store=None, sleep=None, clock=None) -> ProbeRunner:
    return ProbeRunner(
        usage_source=store,
        monitoring_settings=MonitoringSettings(speedtest_max_attempts=4, speedtest_retry_delay=10),
        ping_func=ping or ScriptedPing({}),
        speedtest_runner=speedtest or ScriptedSpeedtest([speedtest_report()]),
        sleep=sleep or SleepRecorder(),
        clock=clock or FakeClock(),
    )


# ============================================================================
# LIVENESS
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply, expected",
    [
        (12.3456, 12.35),
        (None, UNREACHABLE_PING),
        (False, UNREACHABLE_PING),
        (PermissionError("raw socket not permitted"), UNREACHABLE_PING),
        (OSError("network unreachable"), UNREACHABLE_PING),
    ],
)
async def test_ping_collapses_failures_to_sentinel(reply, expected: float) -> None:
    runner = _runner(ping=ScriptedPing({"8.8.8.8": [reply]}))
    assert await runner.ping("8.8.8.8") == expected


@pytest.mark.asyncio
async def test_probe_carries_host_identity() -> None:
    runner = _runner(ping=ScriptedPing({"1.1.1.1": [7.0]}))

    result = await runner.probe(MonitoredHost(address="1.1.1.1", name="Cloudflare DNS"))

    assert result.name == "Cloudflare DNS"
    assert result.ping == 7.0
    assert result.is_reachable


# ============================================================================
# BANDWIDTH
# ============================================================================

@pytest.mark.asyncio
async def test_retries_are_bounded_with_progressive_delay() -> None:
    speedtest = ScriptedSpeedtest([MeasurementFailure("Speed test timeout", FailureReason.TIMEOUT)])
    sleep = SleepRecorder()

    result = await _runner(speedtest=speedtest, sleep=sleep).run_bandwidth_test()

    assert speedtest.calls == 4
    assert sleep.delays == [10, 20, 30]
    assert not result.succeeded
    assert "after 4 attempts" in result.error
    assert "Timeout" in result.error
    assert (result.download, result.upload, result.ping) == (0.0, 0.0, 0.0)


@pytest.mark.asyncio
async def test_terminal_error_clips_long_failure_message() -> None:
    speedtest = ScriptedSpeedtest([MeasurementFailure("x" * 500, FailureReason.UNKNOWN)])

    result = await _runner(speedtest=speedtest).run_bandwidth_test()

    detail = result.error.split("): ", 1)[1]
    assert len(detail) == 100
    assert detail.endswith("...")


@pytest.mark.asyncio
async def test_recovers_on_a_later_attempt() -> None:
    speedtest = ScriptedSpeedtest([
        MeasurementFailure("socket hang up", FailureReason.NETWORK),
        speedtest_report(download_mbps=250, upload_mbps=40, ping_ms=9),
    ])
    sleep = SleepRecorder()

    result = await _runner(speedtest=speedtest, sleep=sleep).run_bandwidth_test()

    assert result.succeeded
    assert (result.download, result.upload, result.ping) == (250.0, 40.0, 9.0)
    assert sleep.delays == [10]


@pytest.mark.asyncio
async def test_malformed_report_counts_as_unknown_failure() -> None:
    speedtest = ScriptedSpeedtest([{"type": "log", "message": "no result"}])

    result = await _runner(speedtest=speedtest).run_bandwidth_test()

    assert speedtest.calls == 4
    assert "(Unknown)" in result.error


@pytest.mark.asyncio
async def test_data_cap_refuses_before_running() -> None:
    store = FakeStore()
    store.usage_bytes = 6 * 1024 ** 3
    speedtest = ScriptedSpeedtest([speedtest_report()])

    with pytest.raises(DataCapReachedError) as excinfo:
        await _runner(speedtest=speedtest, store=store).run_bandwidth_test("5 GB")

    assert speedtest.calls == 0
    assert excinfo.value.details["monthly_data_cap"] == "5 GB"


@pytest.mark.asyncio
async def test_data_cap_below_usage_runs() -> None:
    store = FakeStore()
    store.usage_bytes = 4 * 1024 ** 3

    result = await _runner(store=store).run_bandwidth_test("5 GB")

    assert result.succeeded


@pytest.mark.parametrize(
    "message, timed_out, expected",
    [
        ("Speed test timeout after 90 seconds", False, FailureReason.TIMEOUT),
        ("anything", True, FailureReason.TIMEOUT),
        ("Cannot write: socket closed", False, FailureReason.NETWORK),
        ("getaddrinfo ENOTFOUND www.speedtest.net", False, FailureReason.DNS),
        ("Configuration - Couldn't resolve host name", False, FailureReason.DNS),
        ("license not accepted", False, FailureReason.UNKNOWN),
    ],
)
def test_classify_failure(message: str, timed_out: bool, expected: FailureReason) -> None:
    assert classify_failure(message, timed_out) == expected


def test_parse_speedtest_output(clock: FakeClock) -> None:
    result = parse_speedtest_output(speedtest_report(download_mbps=100, upload_mbps=20), clock())

    assert result.download == 100.0
    assert result.upload == 20.0
    assert result.ping == 12.0
    assert result.jitter == 2.0
    assert result.download_latency == 20.1
    assert result.upload_latency == 30.2
    assert result.server == "Example Server"
    assert result.isp == "Example ISP"
    assert result.download_bytes == 150_000_000
    assert result.result_url.endswith("/abc")
