"""
============================================================================
INTERNET MONITOR - MONITORING ENGINE
============================================================================
Wires the monitoring core together and owns its state.

Architecture
------------
MonitoringEngine                ← owns MonitorState, the single state aggregate
├── initialize()                ← settings / history / live health from the Store
├── run_liveness_cycle()        ← one liveness tick
│   ├── ProbeRunner.probe()     ← all enabled hosts concurrently
│   ├── HostHealthTracker       ← hysteresis, latency, connection lost/restored
│   ├── NotificationGate        ← per candidate event
│   ├── Store.save_live_health  ← every host, whatever the gate decided
│   └── BroadcastHub            ← liveMonitoring
├── run_bandwidth_test()        ← one speed test (scheduled or manual)
│   ├── ProbeRunner             ← cap check, retries, terminal failure
│   ├── history / Store         ← rolling window + durable row
│   ├── ThresholdEvaluator      ← breach + SpeedTestComplete
│   └── NotificationGate / BroadcastHub
└── update_settings()           ← validate, persist, swap, restart Scheduler

Everything runs on one asyncio event loop.  A liveness tick finishes
updating the health map before it publishes; a bandwidth tick finishes
updating the history before it notifies.  Settings are read once per tick
from ``state.settings`` and replaced as a whole on update, so a tick never
sees half an update.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from config.constants import EventType, MessageType, UNREACHABLE_PING
from config.settings import Settings, get_settings
from exceptions import ConfigurationError, DataCapReachedError, StoreError
from monitoring.alerts import NotificationGate
from monitoring.broadcast import BroadcastHub, SubscriberTransport
from monitoring.health import HostHealthTracker
from monitoring.models import (
    BandwidthResult,
    LiveHostState,
    MonitorEvent,
    MonitoredHost,
    MonitorSettings,
    MonitorState,
    ProbeResult,
)
from monitoring.probe import ProbeRunner
from monitoring.scheduler import Scheduler
from monitoring.thresholds import ThresholdEvaluator
from utils.helpers import DataHelper, TimeHelper
from utils.logger import get_logger, set_log_level


logger = get_logger("MonitoringEngine")

HOST_EVENTS = (EventType.HOST_DOWN, EventType.HOST_UP)

LIVE_HISTORY_RANGES: Dict[str, timedelta] = {
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


class MonitoringEngine:
    """
    Top-level orchestrator of the monitoring core.

    Parameters
    ----------
    store : Store
        Durable persistence (``database.store.SQLAlchemyStore`` in production).
    hub : BroadcastHub | None
        Subscriber fan-out; one is created when omitted.
    probe_runner, gate, tracker, evaluator, scheduler :
        Optional collaborators, created from the settings when omitted.
    """

    def __init__(
        self,
        store: Any,
        hub: Optional[BroadcastHub] = None,
        probe_runner: Optional[ProbeRunner] = None,
        gate: Optional[NotificationGate] = None,
        tracker: Optional[HostHealthTracker] = None,
        evaluator: Optional[ThresholdEvaluator] = None,
        scheduler: Optional[Scheduler] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = TimeHelper.get_utc_now,
    ):
        self.settings = settings or get_settings()
        self.config = self.settings.monitoring
        self.store = store
        self._clock = clock

        self.state = MonitorState(MonitorSettings(), history_limit=self.config.history_limit)
        self.hub = hub or BroadcastHub(self.settings.broadcast)
        self.probe_runner = probe_runner or ProbeRunner(
            usage_source=store, monitoring_settings=self.config
        )
        self.gate = gate or NotificationGate(
            self.state, self.hub, monitoring_settings=self.config
        )
        self.tracker = tracker or HostHealthTracker(
            self.state.health,
            failure_threshold=self.config.failure_threshold,
            success_threshold=self.config.success_threshold,
        )
        self.evaluator = evaluator or ThresholdEvaluator()
        self.scheduler = scheduler or Scheduler(
            self.run_liveness_cycle,
            self.run_scheduled_bandwidth_test,
            self.run_maintenance,
            monitoring_settings=self.config,
        )

        self._cycles = 0

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load settings, recent history and live health from the Store."""
        stored = await self.store.load_settings()
        if stored is None:
            logger.info("No stored settings — using defaults")
            stored = MonitorSettings()
            await self.store.save_settings(stored)
        self.state.settings = stored
        set_log_level(stored.log_level.value)

        history = await self.store.load_recent_history(self.config.history_preload)
        for result in history:
            self.state.append_history(result)

        if self.state.history:
            latest = self.state.history[-1]
            self.state.current_speed.update(
                download=latest.download, upload=latest.upload, ping=latest.ping
            )

        live = await self.store.load_live_health()
        self.tracker.rehydrate({address: entry.health for address, entry in live.items()})
        for address, entry in live.items():
            self.state.live[address] = entry.result
            if entry.health.last_notification_time is not None:
                self.state.ledger.record(f"host:{address}", entry.health.last_notification_time)

        logger.info(
            f"Engine initialized — {len(self.state.history)} speed test(s), "
            f"{len(live)} host state(s), "
            f"{len(stored.enabled_hosts)}/{len(stored.monitoring_hosts)} host(s) enabled"
        )

    async def start(self) -> None:
        """Start the scheduler loops and announce monitoring."""
        await self.scheduler.start(self.state.settings)
        self.state.is_monitoring = True
        await self.hub.publish({"type": MessageType.STATUS.value, "isMonitoring": True})
        logger.info(
            "=== Monitoring started === enabled hosts: "
            + ", ".join(host.name for host in self.state.settings.enabled_hosts)
        )

    async def stop(self) -> None:
        await self.scheduler.stop()
        self.state.is_monitoring = False
        await self.gate.wait_idle()
        await self.hub.close()
        logger.info("✓ MonitoringEngine stopped")

    async def subscribe(self, transport: SubscriberTransport) -> None:
        """Register a subscriber; it receives the snapshot first."""
        await self.hub.subscribe(transport, self.state.snapshot())

    def snapshot(self) -> Dict[str, Any]:
        return self.state.snapshot()

    # ------------------------------------------------------------------
    # LIVENESS
    # ------------------------------------------------------------------

    async def run_liveness_cycle(self) -> List[ProbeResult]:
        """
        Probe every enabled host once and process the results.
        """
        settings = self.state.settings
        hosts = settings.enabled_hosts
        if not hosts:
            logger.warning("No enabled hosts for monitoring")
            return []

        results = await self._probe_all(hosts)
        self._cycles += 1

        for result in results:
            status = "TIMEOUT" if not result.is_reachable else f"{result.ping}ms"
            logger.debug(f"  {'✓' if result.is_reachable else '❌'} {result.name} ({result.address}): {status}")

        events = self.tracker.evaluate_cycle(
            results,
            settings.thresholds,
            per_host_latency=settings.notifications.latency_cooldown_per_host,
        )
        self.state.connection_lost = self.tracker.connection_lost

        for result in results:
            self.state.live[result.address] = result

        await self._notify(events)
        await self._persist_live(results)

        self.state.current_speed["ping"] = results[0].ping if results else UNREACHABLE_PING

        await self.hub.publish({
            "type": MessageType.LIVE_MONITORING.value,
            "data": self.state.live_to_dict(),
        })
        return results

    async def _probe_all(self, hosts: List[MonitoredHost]) -> List[ProbeResult]:
        """Concurrent probes; a probe that raises counts as unreachable."""
        outcomes = await asyncio.gather(
            *(self.probe_runner.probe(host) for host in hosts),
            return_exceptions=True,
        )

        results: List[ProbeResult] = []
        for host, outcome in zip(hosts, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Probe of {host.address} raised {type(outcome).__name__}: {outcome}")
                outcome = ProbeResult(
                    address=host.address,
                    name=host.name,
                    ping=UNREACHABLE_PING,
                    timestamp=self._clock(),
                )
            results.append(outcome)
        return results

    async def _persist_live(self, results: List[ProbeResult]) -> None:
        outcomes = await asyncio.gather(
            *(
                self.store.save_live_health(
                    result.address,
                    LiveHostState(result=result, health=self.tracker.state_for(result.address)),
                )
                for result in results
            ),
            return_exceptions=True,
        )
        for result, outcome in zip(results, outcomes):
            if isinstance(outcome, StoreError):
                logger.error(f"Failed to persist live state of {result.address}: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome

    async def _notify(self, events: List[MonitorEvent]) -> None:
        for event in events:
            dispatched = await self.gate.consider_event(event)
            if dispatched and event.event_type in HOST_EVENTS and event.address:
                self.tracker.state_for(event.address).last_notification_time = self._clock()

    # ------------------------------------------------------------------
    # BANDWIDTH
    # ------------------------------------------------------------------

    async def run_bandwidth_test(self) -> BandwidthResult:
        """
        Run one speed test and process its result.

        Raises:
            DataCapReachedError: the monthly cap refused the test
        """
        settings = self.state.settings
        result = await self.probe_runner.run_bandwidth_test(settings.monthly_data_cap)

        self.state.append_history(result)
        try:
            await self.store.save_bandwidth_result(result)
        except StoreError as e:
            logger.error(f"Failed to persist speed test: {e}")

        if result.succeeded:
            self.state.current_speed.update(
                download=result.download, upload=result.upload, ping=result.ping
            )
            events = self.evaluator.evaluate(result, settings.thresholds)
            for event in events:
                if event.event_type == EventType.THRESHOLD_BREACH:
                    logger.warning(f"⚠️  Threshold breach detected: {', '.join(event.payload['breaches'])}")
            await self._notify(events)

        await self.hub.publish({"type": MessageType.SPEEDTEST.value, "data": result.to_dict()})
        if result.succeeded:
            await self.hub.publish({
                "type": MessageType.HISTORY.value,
                "data": self.state.history_to_list(),
            })
        return result

    async def run_scheduled_bandwidth_test(self) -> None:
        """Scheduler entry point: a cap refusal is logged, not raised."""
        logger.info("🔄 Running scheduled speed test...")
        try:
            result = await self.run_bandwidth_test()
        except DataCapReachedError as e:
            logger.warning(f"Scheduled speed test skipped: {e.message}")
            return

        if result.error:
            logger.warning("⚠️  Scheduled speed test completed with errors. Will retry on next schedule.")
        else:
            logger.info("✅ Scheduled speed test completed successfully.")

    async def ping(self, address: Optional[str] = None) -> Dict[str, Any]:
        """Manual single-host ping."""
        address = address or self.state.settings.ping_host
        rtt = await self.probe_runner.ping(address)
        return {"host": address, "ping": rtt, "timestamp": self._clock().isoformat()}

    # ------------------------------------------------------------------
    # SETTINGS
    # ------------------------------------------------------------------

    async def update_settings(self, patch: Dict[str, Any]) -> MonitorSettings:
        """
        Merge *patch* into the current settings, validate, persist and
        apply.  The scheduler is restarted, so the change is seen from the
        next tick on.

        Raises:
            ConfigurationError: the merged settings are invalid
        """
        merged = DataHelper.deep_merge(self.state.settings.to_wire(), patch)
        try:
            new_settings = MonitorSettings.model_validate(merged)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid settings: {e.error_count()} error(s)",
                details={"errors": e.errors(include_url=False, include_context=False)},
                cause=e,
            )

        await self.store.save_settings(new_settings)
        self.state.settings = new_settings
        set_log_level(new_settings.log_level.value)

        monitored = {host.address for host in new_settings.monitoring_hosts}
        self.tracker.prune(monitored)
        for address in list(self.state.live):
            if address not in monitored:
                del self.state.live[address]

        if self.scheduler.is_running:
            await self.scheduler.restart(new_settings)

        await self.hub.publish({
            "type": MessageType.SETTINGS.value,
            "data": new_settings.to_wire(),
        })
        logger.info("Settings updated")
        return new_settings

    # ------------------------------------------------------------------
    # HISTORY / USAGE
    # ------------------------------------------------------------------

    async def clear_history(self) -> int:
        deleted = await self.store.clear_history()
        self.state.history.clear()
        await self.hub.publish({"type": MessageType.HISTORY_CLEARED.value})
        return deleted

    async def history_page(
        self, limit: int = 50, offset: int = 0, paginated: bool = False
    ) -> Any:
        limit = max(1, min(limit, 1000))
        offset = max(0, offset)
        results = [r.to_dict() for r in await self.store.load_history_page(limit, offset)]
        if not paginated:
            return results

        total = await self.store.count_history()
        return {
            "results": results,
            "pagination": {
                "offset": offset,
                "limit": limit,
                "total": total,
                "hasMore": offset + limit < total,
            },
        }

    async def live_history(self, address: str, time_range: str = "1h") -> List[Dict[str, Any]]:
        window = LIVE_HISTORY_RANGES.get(time_range, LIVE_HISTORY_RANGES["1h"])
        rows = await self.store.load_live_history(address, self._clock() - window)
        return [row.to_dict() for row in rows]

    async def monthly_usage(self) -> Dict[str, Any]:
        settings = self.state.settings
        start, end = TimeHelper.month_bounds(self._clock())
        used = await self.store.monthly_usage_bytes(start, end)
        cap_bytes = settings.data_cap_bytes

        return {
            "totalBytes": used,
            "totalFormatted": DataHelper.format_bytes(used),
            "monthlyDataCap": settings.monthly_data_cap,
            "capInBytes": cap_bytes,
            "capReached": used >= cap_bytes if cap_bytes else False,
            "percentageUsed": min(100.0, used / cap_bytes * 100) if cap_bytes else 0.0,
        }

    # ------------------------------------------------------------------
    # NOTIFICATIONS / MAINTENANCE
    # ------------------------------------------------------------------

    async def send_test_notification(self) -> Dict[str, Any]:
        channels = await self.gate.send_test()
        return {
            "message": "Test notification sent to all enabled channels",
            "enabledChannels": channels,
        }

    async def run_maintenance(self) -> None:
        """Prune live-monitoring history beyond the retention window."""
        cutoff = self._clock() - timedelta(days=self.config.live_history_retention_days)
        deleted = await self.store.prune_live_history(cutoff)
        logger.info(
            f"[Maintenance] Deleted {deleted} probe row(s) older than "
            f"{self.config.live_history_retention_days} days"
        )

    # ------------------------------------------------------------------
    # DIAGNOSTIC
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self.state.is_monitoring,
            "cycles": self._cycles,
            "hosts_down": [a for a, s in self.state.health.items() if s.is_down],
            "connection_lost": self.state.connection_lost,
            "history_size": len(self.state.history),
            "next_test": (
                self.scheduler.next_bandwidth_run.isoformat()
                if self.scheduler.next_bandwidth_run else None
            ),
            "jobs": self.scheduler.get_job_stats(),
            "notifications": self.gate.get_stats(),
            "broadcast": self.hub.get_stats(),
        }
