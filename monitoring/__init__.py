"""
============================================================================
INTERNET MONITOR - MONITORING PACKAGE
============================================================================
The monitoring core and its web surface:
    • ProbeRunner        — ping probes and the speed-test CLI
    • HostHealthTracker  — hysteresis, connection lost/restored, latency
    • ThresholdEvaluator — bandwidth thresholds
    • NotificationGate   — enable/event/quiet-hours/cooldown gate + channels
    • BroadcastHub       — subscriber fan-out with batching
    • Scheduler          — liveness, bandwidth and maintenance loops
    • MonitoringEngine   — owns the state aggregate and runs the ticks
    • WebServer          — aiohttp API + WebSocket endpoint

File layout
-----------
monitoring/
├── __init__.py          ← this file
├── models.py            ← settings models, results, MonitorState
├── probe.py             ← ProbeRunner + speed-test CLI
├── health.py            ← HostHealthTracker
├── thresholds.py        ← ThresholdEvaluator
├── channels.py          ← outbound notification channels
├── alerts.py            ← NotificationGate
├── broadcast.py         ← BroadcastHub
├── scheduler.py         ← Scheduler
├── monitor.py           ← MonitoringEngine
└── server.py            ← WebServer

============================================================================
"""

from monitoring.models import (
    BandwidthResult,
    HostHealthState,
    MonitorEvent,
    MonitorSettings,
    MonitorState,
    ProbeResult,
)
from monitoring.probe import ProbeRunner
from monitoring.health import HostHealthTracker
from monitoring.thresholds import ThresholdEvaluator, Breach
from monitoring.alerts import NotificationGate
from monitoring.broadcast import BroadcastHub
from monitoring.scheduler import Scheduler, ScheduledJob
from monitoring.monitor import MonitoringEngine
from monitoring.server import WebServer

__all__ = [
    # Models
    "BandwidthResult",
    "HostHealthState",
    "MonitorEvent",
    "MonitorSettings",
    "MonitorState",
    "ProbeResult",

    # Core
    "ProbeRunner",
    "HostHealthTracker",
    "ThresholdEvaluator",
    "Breach",
    "NotificationGate",
    "BroadcastHub",

    # Scheduling / engine
    "Scheduler",
    "ScheduledJob",
    "MonitoringEngine",

    # Web
    "WebServer",
]
