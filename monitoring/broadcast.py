"""
============================================================================
INTERNET MONITOR - BROADCAST HUB
============================================================================
Fans state changes out to every connected subscriber (dashboard
WebSockets).

Batching
--------
Most messages (live probes, speed-test results, notifications) are queued
and flushed together, either ``batch_interval_ms`` after the first one was
queued or as soon as ``batch_size_limit`` messages are waiting.  A flush of
one message sends it as-is; a flush of several sends a single envelope:

    {"type": "batch", "messages": [...], "count": n}

``initial``, ``status`` and ``settings`` messages skip the queue and are
sent immediately.

Ordering
--------
Every subscriber has its own send lock.  ``subscribe()`` takes that lock
before the subscriber becomes visible to broadcasts and releases it only
after the snapshot went out, so a new subscriber always sees the snapshot
first and deltas afterwards.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Protocol

from config.constants import IMMEDIATE_MESSAGE_TYPES, MessageType
from config.settings import BroadcastSettings, get_settings
from utils.logger import get_logger


logger = get_logger("BroadcastHub")


class SubscriberTransport(Protocol):
    """A push connection to one subscriber."""

    @property
    def is_open(self) -> bool: ...

    async def send(self, text: str) -> None: ...


def serialize_message(message: Dict[str, Any]) -> str:
    return json.dumps(message, default=str, ensure_ascii=False)


class BroadcastHub:
    """
    Subscriber set plus the batching queue.

    Parameters
    ----------
    broadcast_settings : BroadcastSettings | None
        Batch window and size cap; defaults to the cached settings.
    serializer : callable
        dict -> str used for every outgoing message.
    """

    def __init__(
        self,
        broadcast_settings: Optional[BroadcastSettings] = None,
        serializer: Callable[[Dict[str, Any]], str] = serialize_message,
    ):
        config = broadcast_settings or get_settings().broadcast
        self.batch_interval = config.batch_interval_ms / 1000.0
        self.batch_size_limit = config.batch_size_limit
        self._serialize = serializer

        # transport -> per-subscriber send lock
        self._subscribers: Dict[SubscriberTransport, asyncio.Lock] = {}

        self._queue: List[Dict[str, Any]] = []
        self._flush_task: Optional[asyncio.Task] = None

        # --- counters ---
        self._messages_sent = 0
        self._batches_sent = 0
        self._dropped_subscribers = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def pending(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # SUBSCRIBERS
    # ------------------------------------------------------------------

    async def subscribe(self, transport: SubscriberTransport, snapshot: Dict[str, Any]) -> None:
        """
        Register *transport* and send it *snapshot* before any delta.
        """
        lock = asyncio.Lock()
        await lock.acquire()
        self._subscribers[transport] = lock
        try:
            delivered = await self._deliver(transport, self._serialize(snapshot))
        finally:
            lock.release()

        if delivered:
            logger.info(f"[Hub] Subscriber connected ({self.subscriber_count} total)")
        else:
            self.unsubscribe(transport)

    def unsubscribe(self, transport: SubscriberTransport) -> None:
        if self._subscribers.pop(transport, None) is not None:
            logger.info(f"[Hub] Subscriber disconnected ({self.subscriber_count} total)")

    # ------------------------------------------------------------------
    # PUBLISHING
    # ------------------------------------------------------------------

    async def publish(self, message: Dict[str, Any]) -> None:
        """
        Send *message* now if its type must not be delayed, otherwise queue
        it for the next batch.
        """
        if message.get("type") in IMMEDIATE_MESSAGE_TYPES:
            await self._broadcast(message)
            return

        self._queue.append(message)

        if len(self._queue) >= self.batch_size_limit:
            self._cancel_timer()
            await self._send_batch(self._take_queue())
            return

        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_later())

    async def flush(self) -> None:
        """Send whatever is queued right away."""
        self._cancel_timer()
        await self._send_batch(self._take_queue())

    async def close(self) -> None:
        """Flush the queue and forget every subscriber."""
        await self.flush()
        self._subscribers.clear()

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.batch_interval)
        # Detach before sending so a size-cap flush cannot cancel us mid-send
        self._flush_task = None
        await self._send_batch(self._take_queue())

    def _cancel_timer(self) -> None:
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None

    def _take_queue(self) -> List[Dict[str, Any]]:
        batch, self._queue = self._queue, []
        return batch

    async def _send_batch(self, batch: List[Dict[str, Any]]) -> None:
        if not batch:
            return

        if len(batch) == 1:
            await self._broadcast(batch[0])
            return

        await self._broadcast({
            "type": MessageType.BATCH.value,
            "messages": batch,
            "count": len(batch),
        })
        self._batches_sent += 1
        logger.debug(f"[Hub] ✓ Batched {len(batch)} messages")

    # ------------------------------------------------------------------
    # DELIVERY
    # ------------------------------------------------------------------

    async def _broadcast(self, message: Dict[str, Any]) -> None:
        if not self._subscribers:
            logger.debug(f"[Hub] No subscribers for {message.get('type')}")
            return

        text = self._serialize(message)
        targets = list(self._subscribers.items())

        results = await asyncio.gather(
            *(self._deliver_locked(transport, lock, text) for transport, lock in targets)
        )

        for (transport, _), delivered in zip(targets, results):
            if not delivered:
                self._dropped_subscribers += 1
                self.unsubscribe(transport)

        self._messages_sent += 1
        logger.debug(
            f"[Hub] {message.get('type')} sent to {sum(results)}/{len(targets)} subscriber(s)"
        )

    async def _deliver_locked(
        self, transport: SubscriberTransport, lock: asyncio.Lock, text: str
    ) -> bool:
        async with lock:
            return await self._deliver(transport, text)

    async def _deliver(self, transport: SubscriberTransport, text: str) -> bool:
        """Send to one subscriber; False if it is closed or the send failed."""
        if not transport.is_open:
            return False
        try:
            await transport.send(text)
            return True
        except (ConnectionError, RuntimeError, asyncio.TimeoutError) as e:
            logger.warning(f"[Hub] Dropping subscriber after send failure: {e}")
            return False

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "subscribers": self.subscriber_count,
            "pending": self.pending,
            "messages_sent": self._messages_sent,
            "batches_sent": self._batches_sent,
            "dropped_subscribers": self._dropped_subscribers,
        }
