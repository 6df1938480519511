"""
============================================================================
INTERNET MONITOR - HOST HEALTH TRACKER
============================================================================
Debounces raw probe results into host state transitions.

State machine (per address)
---------------------------
    probe unreachable:  failures += 1, successes = 0
                        Up   and failures  >= FAILURE_THRESHOLD  -> Down (HostDown)
    probe reachable:    successes += 1, failures = 0
                        Down and successes >= SUCCESS_THRESHOLD  -> Up   (HostUp)

A host seen for the first time starts Up with zeroed counters.

On top of the per-host machine, one cycle (all results of a single
liveness tick) can also produce:

• HighLatency          - host Up, probe reachable and ping > max_ping
• ConnectionLost       - every result unreachable, not already flagged
• ConnectionRestored   - flagged lost and at least one result reachable

The tracker only decides which events are *candidates*; whether they are
delivered is the NotificationGate's business.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from typing import Dict, Iterable, List, Optional, Sequence

from config.constants import EventType
from config.settings import get_settings
from monitoring.models import HostHealthState, MonitorEvent, ProbeResult, Thresholds
from utils.logger import get_logger


logger = get_logger("HostHealth")


class HostHealthTracker:
    """
    Per-host hysteresis plus the global connection flag.

    Parameters
    ----------
    states : dict | None
        Address -> HostHealthState map to mutate.  Pass the engine's
        ``MonitorState.health`` so both see the same objects.
    """

    def __init__(
        self,
        states: Optional[Dict[str, HostHealthState]] = None,
        failure_threshold: Optional[int] = None,
        success_threshold: Optional[int] = None,
    ):
        config = get_settings().monitoring
        self.states: Dict[str, HostHealthState] = states if states is not None else {}
        self.failure_threshold = failure_threshold or config.failure_threshold
        self.success_threshold = success_threshold or config.success_threshold
        self.connection_lost = False

    # ------------------------------------------------------------------
    # STATE ACCESS
    # ------------------------------------------------------------------

    def state_for(self, address: str) -> HostHealthState:
        """Return the state for *address*, creating an optimistic-up one."""
        state = self.states.get(address)
        if state is None:
            state = HostHealthState()
            self.states[address] = state
        return state

    def rehydrate(self, states: Dict[str, HostHealthState]) -> None:
        """Load persisted states (engine start)."""
        self.states.update(states)
        down = [address for address, state in states.items() if state.is_down]
        logger.info(
            f"[HostHealth] Rehydrated {len(states)} host state(s)"
            + (f", down: {', '.join(down)}" if down else "")
        )

    def reset(self) -> None:
        self.states.clear()
        self.connection_lost = False

    def prune(self, addresses: Iterable[str]) -> None:
        """Drop states of addresses that are no longer monitored."""
        keep = set(addresses)
        for address in list(self.states):
            if address not in keep:
                del self.states[address]

    # ------------------------------------------------------------------
    # PER-HOST STEP
    # ------------------------------------------------------------------

    def observe(self, result: ProbeResult) -> Optional[MonitorEvent]:
        """
        Apply one probe result.  Returns HostDown / HostUp on a transition.
        """
        state = self.state_for(result.address)
        was_down = state.is_down

        if not result.is_reachable:
            state.consecutive_failures += 1
            state.consecutive_successes = 0

            if not was_down and state.consecutive_failures >= self.failure_threshold:
                state.is_down = True
                logger.error(
                    f"🔴 HOST DOWN: {result.name} ({result.address}) - "
                    f"{state.consecutive_failures} consecutive failures"
                )
                return MonitorEvent(
                    EventType.HOST_DOWN,
                    {
                        "host": result.name,
                        "address": result.address,
                        "timestamp": result.timestamp.isoformat(),
                    },
                    cooldown_key=f"host:{result.address}",
                )
            return None

        state.consecutive_successes += 1
        state.consecutive_failures = 0

        if was_down and state.consecutive_successes >= self.success_threshold:
            state.is_down = False
            logger.info(f"🟢 HOST RECOVERED: {result.name} ({result.address}) - {result.ping}ms")
            return MonitorEvent(
                EventType.HOST_UP,
                {
                    "host": result.name,
                    "address": result.address,
                    "ping": result.ping,
                    "timestamp": result.timestamp.isoformat(),
                },
                cooldown_key=f"host:{result.address}",
            )
        return None

    # ------------------------------------------------------------------
    # WHOLE CYCLE
    # ------------------------------------------------------------------

    def evaluate_cycle(
        self,
        results: Sequence[ProbeResult],
        thresholds: Thresholds,
        per_host_latency: bool = False,
    ) -> List[MonitorEvent]:
        """
        Run every result through the state machine, then the high-latency
        and connection-level checks.  Events come back in that order.
        """
        events: List[MonitorEvent] = []

        for result in results:
            transition = self.observe(result)
            if transition is not None:
                events.append(transition)

        max_ping = thresholds.max_ping
        if max_ping > 0:
            for result in results:
                state = self.states[result.address]
                if state.is_down or not result.is_reachable or result.ping <= max_ping:
                    continue
                key = f"highLatency:{result.address}" if per_host_latency else "highLatency"
                events.append(MonitorEvent(
                    EventType.HIGH_LATENCY,
                    {
                        "host": result.name,
                        "address": result.address,
                        "ping": result.ping,
                        "threshold": max_ping,
                        "timestamp": result.timestamp.isoformat(),
                    },
                    cooldown_key=key,
                ))

        if not results:
            return events

        reachable = sum(1 for result in results if result.is_reachable)
        timestamp = max(result.timestamp for result in results).isoformat()

        if reachable == 0 and not self.connection_lost:
            self.connection_lost = True
            logger.error("🔴 CONNECTION LOST: All hosts unreachable")
            events.append(MonitorEvent(
                EventType.CONNECTION_LOST,
                {"host_count": len(results), "timestamp": timestamp},
                cooldown_key=EventType.CONNECTION_LOST.cooldown_class,
            ))
        elif reachable > 0 and self.connection_lost:
            self.connection_lost = False
            logger.info("🟢 CONNECTION RESTORED")
            events.append(MonitorEvent(
                EventType.CONNECTION_RESTORED,
                {
                    "host_count": len(results),
                    "reachable_count": reachable,
                    "timestamp": timestamp,
                },
                cooldown_key=EventType.CONNECTION_RESTORED.cooldown_class,
            ))

        return events
