"""
============================================================================
INTERNET MONITOR - NOTIFICATION GATE
============================================================================
Decides whether a candidate event becomes a notification and, if it does,
delivers it.

Decision order
--------------
``consider()`` runs four predicates and stops at the first that fails:

1.  master switch         notifications.enabled
2.  event toggle          notifications.events[event_type]
3.  quiet hours           local wall clock inside [start, end], both ends
                          inclusive; start > end spans midnight
4.  cooldown              now - last dispatch for the cooldown key
                          >= min_time_between_notifications
                          (ConnectionRestored uses a shorter cooldown)

Suppressed attempts leave the cooldown ledger untouched.

Delivery
--------
A dispatched event is:

•  recorded in the cooldown ledger,
•  pushed to the BroadcastHub as a ``notification`` message (the browser
   decides on its own whether to show it),
•  sent to every enabled outbound channel.  The fan-out runs as a
   background task joined with ``gather(return_exceptions=True)``; each
   channel's failure is logged and never reaches the caller or the other
   channels.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from config.constants import EVENT_EMOJI, MESSAGE_TEMPLATES, EventType, MessageType
from config.settings import MonitoringSettings, get_settings
from exceptions import NotificationChannelError
from monitoring.broadcast import BroadcastHub
from monitoring.channels import NotificationChannel, build_channels
from monitoring.models import MonitorEvent, MonitorState, NotificationSettings
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("NotificationGate")

ChannelFactory = Callable[[NotificationSettings], List[NotificationChannel]]


class _TemplateValues(dict):
    """format_map source that renders missing keys as N/A."""

    def __missing__(self, key: str) -> str:
        return "N/A"


def format_message(event_type: EventType, payload: Dict[str, Any]) -> str:
    """Render the fixed template of *event_type* with *payload*."""
    values = _TemplateValues(payload)
    values["emoji"] = EVENT_EMOJI[event_type]
    return MESSAGE_TEMPLATES[event_type].format_map(values)


class NotificationGate:
    """
    Parameters
    ----------
    state : MonitorState
        Source of the settings snapshot and owner of the cooldown ledger.
    hub : BroadcastHub | None
        Receives every dispatched notification.
    channel_factory : callable
        NotificationSettings -> list of outbound channels.
    clock / local_clock : callables
        UTC time for the cooldown ledger, local time for quiet hours.
    """

    def __init__(
        self,
        state: MonitorState,
        hub: Optional[BroadcastHub] = None,
        channel_factory: ChannelFactory = build_channels,
        monitoring_settings: Optional[MonitoringSettings] = None,
        clock: Callable[[], datetime] = TimeHelper.get_utc_now,
        local_clock: Callable[[], datetime] = TimeHelper.get_local_now,
    ):
        self.state = state
        self.hub = hub
        self._channel_factory = channel_factory
        self._clock = clock
        self._local_clock = local_clock

        config = monitoring_settings or get_settings().monitoring
        self._restore_cooldown = timedelta(minutes=config.restore_cooldown_minutes)

        self._fan_out_tasks: Set[asyncio.Task] = set()

        # --- counters ---
        self._dispatched = 0
        self._suppressed: Dict[str, int] = {
            "disabled": 0, "event_disabled": 0, "quiet_hours": 0, "cooldown": 0,
        }
        self._channel_failures = 0

    # ------------------------------------------------------------------
    # PREDICATES
    # ------------------------------------------------------------------

    @staticmethod
    def is_enabled(settings: NotificationSettings) -> bool:
        return settings.enabled

    @staticmethod
    def is_event_enabled(settings: NotificationSettings, event_type: EventType) -> bool:
        return settings.is_event_enabled(event_type)

    @staticmethod
    def in_quiet_hours(settings: NotificationSettings, now_local: datetime) -> bool:
        if not settings.quiet_hours_enabled:
            return False
        return TimeHelper.is_in_quiet_hours(
            now_local, settings.quiet_hours_start, settings.quiet_hours_end
        )

    def cooldown_for(self, event_type: EventType, settings: NotificationSettings) -> timedelta:
        configured = timedelta(minutes=settings.min_time_between_notifications)
        if event_type == EventType.CONNECTION_RESTORED:
            return min(configured, self._restore_cooldown)
        return configured

    def cooldown_elapsed(
        self,
        key: str,
        event_type: EventType,
        settings: NotificationSettings,
        now: datetime,
    ) -> bool:
        return self.state.ledger.is_ready(key, now, self.cooldown_for(event_type, settings))

    # ------------------------------------------------------------------
    # GATE
    # ------------------------------------------------------------------

    async def consider(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        cooldown_key: Optional[str] = None,
    ) -> bool:
        """
        Run the gate for one event.  Returns True when it was dispatched.
        """
        settings = self.state.settings.notifications
        key = cooldown_key or event_type.cooldown_class

        if not self.is_enabled(settings):
            logger.debug(f"[Gate] {event_type.value} suppressed: notifications disabled")
            self._suppressed["disabled"] += 1
            return False

        if not self.is_event_enabled(settings, event_type):
            logger.debug(f"[Gate] {event_type.value} suppressed: event disabled")
            self._suppressed["event_disabled"] += 1
            return False

        if self.in_quiet_hours(settings, self._local_clock()):
            logger.info(f"[Gate] {event_type.value} suppressed: quiet hours")
            self._suppressed["quiet_hours"] += 1
            return False

        now = self._clock()
        if not self.cooldown_elapsed(key, event_type, settings, now):
            logger.debug(f"[Gate] {event_type.value} suppressed: cooldown ({key})")
            self._suppressed["cooldown"] += 1
            return False

        self.state.ledger.record(key, now)
        await self._dispatch(event_type, payload, settings, now)
        return True

    async def consider_event(self, event: MonitorEvent) -> bool:
        return await self.consider(event.event_type, event.payload, event.cooldown_key)

    async def send_test(self) -> Dict[str, bool]:
        """
        Send a sample SpeedTestComplete notification to every enabled
        channel, bypassing the gate.  Returns channel type -> enabled.
        """
        settings = self.state.settings.notifications
        payload = {
            "download": 95.5,
            "upload": 11.2,
            "ping": 15,
            "timestamp": self._clock().isoformat(),
        }
        await self._dispatch(EventType.SPEED_TEST_COMPLETE, payload, settings, self._clock())
        return {config.type: config.enabled for config in settings.channels}

    # ------------------------------------------------------------------
    # DELIVERY
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        settings: NotificationSettings,
        now: datetime,
    ) -> None:
        message = format_message(event_type, payload)
        self._dispatched += 1
        logger.info(f"[Gate] 📣 SENDING NOTIFICATION: {message}")

        channels = self._channel_factory(settings)
        if channels:
            task = asyncio.create_task(self._fan_out(channels, message, event_type, payload))
            self._fan_out_tasks.add(task)
            task.add_done_callback(self._fan_out_tasks.discard)

        if self.hub is not None:
            await self.hub.publish({
                "type": MessageType.NOTIFICATION.value,
                "event": event_type.value,
                "data": payload,
                "timestamp": now.isoformat(),
            })

    async def _fan_out(
        self,
        channels: List[NotificationChannel],
        message: str,
        event_type: EventType,
        payload: Dict[str, Any],
    ) -> None:
        results = await asyncio.gather(
            *(self._send_one(channel, message, event_type, payload) for channel in channels),
            return_exceptions=True,
        )
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                self._channel_failures += 1
                logger.error(
                    f"[Gate] ✗ {channel.name} raised {type(result).__name__}: {result}"
                )

    async def _send_one(
        self,
        channel: NotificationChannel,
        message: str,
        event_type: EventType,
        payload: Dict[str, Any],
    ) -> bool:
        try:
            await channel.send(message, event_type, payload)
            logger.info(f"[Gate] ✓ {channel.name} notification sent")
            return True
        except NotificationChannelError as e:
            self._channel_failures += 1
            logger.error(f"[Gate] ✗ {channel.name} notification failed: {e.message}")
            return False

    async def wait_idle(self) -> None:
        """Wait for every outstanding channel fan-out."""
        while self._fan_out_tasks:
            await asyncio.gather(*list(self._fan_out_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # DIAGNOSTIC
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "dispatched": self._dispatched,
            "suppressed": dict(self._suppressed),
            "channel_failures": self._channel_failures,
            "in_flight": len(self._fan_out_tasks),
            "cooldown_entries": len(self.state.ledger),
        }
