"""
============================================================================
INTERNET MONITOR - PROBE RUNNER
============================================================================
Performs the two kinds of measurement the monitor relies on:

• Liveness probe  - one ICMP echo per host through ``ping3``.  Runs in a
  worker thread (ping3 is blocking) with a short fixed timeout.  Every
  failure mode collapses to the ``-1`` sentinel; a probe never raises.

• Bandwidth test  - the Ookla ``speedtest`` CLI run as an asyncio
  subprocess with ``--format=json``.  Each attempt is bounded by a hard
  wall-clock timeout.  Failed attempts are classified (Timeout / Network
  Connection / DNS Resolution / Unknown) and retried with a progressive
  back-off (attempt N waits N x base delay).  After the last attempt a
  zeroed result carrying the error text is returned.

Before a bandwidth test starts, the monthly data cap (if configured) is
checked against the bytes recorded this calendar month.  A reached cap
raises ``DataCapReachedError``; nothing is executed.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import json
import shlex
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from ping3 import ping as icmp_ping

from config.constants import BYTES_PER_SECOND_PER_MBPS, UNREACHABLE_PING, FailureReason
from config.settings import MonitoringSettings, get_settings
from exceptions import DataCapReachedError, MeasurementFailure, ProbeFailure
from monitoring.models import BandwidthResult, MonitoredHost, ProbeResult
from utils.helpers import DataHelper, StringHelper, TimeHelper
from utils.logger import get_logger


logger = get_logger("ProbeRunner")

PingFunc = Callable[..., Any]
SleepFunc = Callable[[float], Awaitable[None]]


class UsageSource(Protocol):
    """Anything that can report bytes transferred between two instants."""

    async def monthly_usage_bytes(self, start: datetime, end: datetime) -> float:
        ...


# ============================================================================
# FAILURE CLASSIFICATION / PARSING
# ============================================================================

def classify_failure(message: str, timed_out: bool = False) -> FailureReason:
    """
    Map an error message from the speed-test CLI to a failure reason.
    """
    text = (message or "").lower()

    if timed_out or "timeout" in text or "timed out" in text:
        return FailureReason.TIMEOUT
    if "write" in text or "socket" in text:
        return FailureReason.NETWORK
    if "enotfound" in text or "resolve" in text or "name resolution" in text:
        return FailureReason.DNS
    return FailureReason.UNKNOWN


def _first_truthy(source: Dict[str, Any], *keys: str) -> float:
    for key in keys:
        value = source.get(key)
        if value:
            return float(value)
    return 0.0


def parse_speedtest_output(report: Dict[str, Any], timestamp: datetime) -> BandwidthResult:
    """
    Convert the speed-test CLI JSON report into a ``BandwidthResult``.

    Bandwidth is reported in bytes/s; 125000 bytes/s is 1 Mbps.

    Raises:
        KeyError / TypeError / ValueError: when mandatory fields are missing
    """
    download = report["download"]
    upload = report["upload"]
    ping_section = report["ping"]

    download_latency_info = download.get("latency") or {}
    upload_latency_info = upload.get("latency") or {}

    jitter = download_latency_info.get("jitter") or ping_section.get("jitter") or 0

    server = (report.get("server") or {}).get("name") or "Unknown"
    result_url = (report.get("result") or {}).get("url")

    return BandwidthResult(
        timestamp=timestamp,
        download=round(float(download["bandwidth"]) / BYTES_PER_SECOND_PER_MBPS, 2),
        upload=round(float(upload["bandwidth"]) / BYTES_PER_SECOND_PER_MBPS, 2),
        ping=round(float(ping_section["latency"]), 2),
        jitter=round(float(jitter), 2),
        download_latency=round(_first_truthy(download_latency_info, "iqm", "high", "low"), 2),
        upload_latency=round(_first_truthy(upload_latency_info, "iqm", "high", "low"), 2),
        server=server,
        isp=report.get("isp") or "Unknown",
        result_url=result_url,
        download_bytes=download.get("bytes") or None,
        upload_bytes=upload.get("bytes") or None,
    )


# ============================================================================
# SPEED-TEST CLI
# ============================================================================

class SpeedtestCLI:
    """
    Runs the external speed-test binary once and returns its JSON report.

    Every failure is raised as ``MeasurementFailure`` with a classified
    reason; a process that outlives the timeout is killed.
    """

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout

    async def __call__(self) -> Dict[str, Any]:
        args = shlex.split(self.command)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MeasurementFailure(
                f"Cannot start speed-test command '{args[0]}': {e}",
                reason=FailureReason.UNKNOWN,
                cause=e,
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise MeasurementFailure(
                f"Speed test timeout after {self.timeout:g} seconds",
                reason=FailureReason.TIMEOUT,
            )

        err_text = stderr.decode(errors="replace").strip()
        if process.returncode != 0:
            message = err_text or f"speed-test exited with code {process.returncode}"
            raise MeasurementFailure(message, reason=classify_failure(message))

        if err_text and "speedtest" not in err_text.lower():
            logger.warning(f"[SpeedTest] stderr: {err_text[:200]}")

        try:
            return json.loads(stdout.decode(errors="replace"))
        except ValueError as e:
            raise MeasurementFailure(
                f"Unparseable speed-test output: {e}",
                reason=FailureReason.UNKNOWN,
                cause=e,
            )


# ============================================================================
# PROBE RUNNER
# ============================================================================

class ProbeRunner:
    """
    Single-measurement executor used by the monitoring engine.

    Parameters
    ----------
    usage_source : UsageSource | None
        Reports this month's transferred bytes for the data-cap check.
    ping_func : callable
        Blocking ``ping(address, timeout=..., unit="ms")``; defaults to
        ``ping3.ping``.
    speedtest_runner : async callable
        Returns the speed-test JSON report; defaults to ``SpeedtestCLI``.
    sleep : async callable
        Used for the retry back-off.
    """

    def __init__(
        self,
        usage_source: Optional[UsageSource] = None,
        monitoring_settings: Optional[MonitoringSettings] = None,
        ping_func: Optional[PingFunc] = None,
        speedtest_runner: Optional[Callable[[], Awaitable[Dict[str, Any]]]] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], datetime] = TimeHelper.get_utc_now,
    ):
        self.config = monitoring_settings or get_settings().monitoring
        self.usage_source = usage_source
        self._ping = ping_func or icmp_ping
        self._speedtest = speedtest_runner or SpeedtestCLI(
            self.config.speedtest_command, self.config.speedtest_timeout
        )
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # LIVENESS
    # ------------------------------------------------------------------

    def _ping_blocking(self, address: str) -> float:
        try:
            rtt = self._ping(address, timeout=self.config.probe_timeout, unit="ms")
        except Exception as e:
            raise ProbeFailure(f"Ping to {address} failed: {e}", address=address, cause=e)

        # ping3 returns None on timeout and False on resolution failure
        if rtt is None or rtt is False:
            raise ProbeFailure(f"No reply from {address}", address=address)

        return round(float(rtt), 2)

    async def ping(self, address: str) -> float:
        """
        Ping one address.  Returns round-trip time in ms or -1.
        """
        try:
            return await asyncio.to_thread(self._ping_blocking, address)
        except ProbeFailure as e:
            logger.debug(f"[Probe] {e.message}")
            return UNREACHABLE_PING

    async def probe(self, host: MonitoredHost) -> ProbeResult:
        """Probe a monitored host.  Never raises."""
        rtt = await self.ping(host.address)
        return ProbeResult(
            address=host.address,
            name=host.name or host.address,
            ping=rtt,
            timestamp=self._clock(),
        )

    # ------------------------------------------------------------------
    # DATA CAP
    # ------------------------------------------------------------------

    async def check_data_cap(self, monthly_data_cap: Optional[str]) -> None:
        """
        Raise ``DataCapReachedError`` when this month's usage reached the cap.
        """
        cap_bytes = DataHelper.parse_data_cap(monthly_data_cap)
        if cap_bytes is None or self.usage_source is None:
            return

        start, end = TimeHelper.month_bounds(self._clock())
        used = await self.usage_source.monthly_usage_bytes(start, end)

        if used >= cap_bytes:
            logger.warning(
                f"[SpeedTest] Monthly data cap reached: "
                f"{DataHelper.format_bytes(used)} of {monthly_data_cap}"
            )
            raise DataCapReachedError(
                monthly_data_cap=monthly_data_cap,
                used_bytes=used,
                cap_bytes=cap_bytes,
            )

    # ------------------------------------------------------------------
    # BANDWIDTH
    # ------------------------------------------------------------------

    async def run_bandwidth_test(self, monthly_data_cap: Optional[str] = None) -> BandwidthResult:
        """
        Run a bandwidth test with bounded retries.

        Raises:
            DataCapReachedError: if the monthly cap is already reached

        Returns:
            The measured result, or the terminal failure result after
            ``speedtest_max_attempts`` failed attempts.
        """
        await self.check_data_cap(monthly_data_cap)

        max_attempts = self.config.speedtest_max_attempts
        last_failure: Optional[MeasurementFailure] = None

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info(f"[SpeedTest] Running speed test (attempt {attempt}/{max_attempts})")
                report = await self._speedtest()
                result = parse_speedtest_output(report, self._clock())
                logger.info(
                    f"[SpeedTest] ✓ ↓{result.download} Mbps / ↑{result.upload} Mbps / "
                    f"{result.ping}ms ({result.server})"
                )
                return result

            except MeasurementFailure as e:
                last_failure = e
            except (KeyError, TypeError, ValueError) as e:
                last_failure = MeasurementFailure(
                    f"Malformed speed-test report: {e}",
                    reason=FailureReason.UNKNOWN,
                    cause=e,
                )

            last_failure.attempt = attempt
            last_failure.details["attempt"] = attempt
            logger.error(
                f"[SpeedTest] Attempt {attempt}/{max_attempts} failed "
                f"[{last_failure.reason.value}]: {last_failure.message}"
            )

            if attempt < max_attempts:
                delay = self.config.speedtest_retry_delay * attempt
                logger.info(f"[SpeedTest] Retrying in {delay:g} seconds...")
                await self._sleep(delay)

        error = (
            f"Speed test failed after {max_attempts} attempts "
            f"({last_failure.reason.value}): {StringHelper.truncate(last_failure.message, 100)}"
        )
        logger.warning(f"[SpeedTest] ⚠️ All attempts failed. {error}")
        return BandwidthResult.failed(self._clock(), error)
