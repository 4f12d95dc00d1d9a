from __future__ import annotations

import asyncio
import itertools
import logging
import threading

from lockerlease.core.entities.broadcast_event import BroadcastEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Handle for one connected display. Events are read on the loop that subscribed."""

    def __init__(self, subscriber_id: int, loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self.subscriber_id = subscriber_id
        self.loop = loop
        self.closed = False
        # one spare slot for the end-of-stream marker
        self._queue: asyncio.Queue[BroadcastEvent | None] = asyncio.Queue(maxsize=maxsize + 1)
        self._capacity = maxsize

    async def get(self) -> BroadcastEvent | None:
        """Next event, or None once the subscription has been closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def offer(self, event: BroadcastEvent) -> bool:
        """Enqueue without waiting. Must run on `loop`. Returns False if the subscriber is too far behind."""
        if self.closed:
            return False
        if self._queue.qsize() >= self._capacity:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Must run on `loop`. Drops pending events and wakes any reader."""
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)


class EventFanout:
    """
    Pushes events to every currently registered subscriber, with no backlog for late joiners.

    `broadcast` may be called from any thread. Delivery is scheduled on each subscriber's loop, so
    the broadcaster never waits on a reader; a reader that falls behind is dropped on its own.
    """

    def __init__(self, *, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Must be called from within a running event loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            subscription = Subscription(next(self._ids), loop, self._queue_size)
            self._subscribers[subscription.subscriber_id] = subscription
        logger.info("subscriber_connected", extra={"subscriber_id": subscription.subscriber_id})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscription.subscriber_id, None)
        subscription.closed = True
        if removed is not None:
            logger.info("subscriber_disconnected", extra={"subscriber_id": subscription.subscriber_id})

    def broadcast(self, event: BroadcastEvent) -> int:
        """Schedule `event` for every subscriber. Returns how many deliveries were scheduled."""
        with self._lock:
            targets = list(self._subscribers.values())

        scheduled = 0
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(self._deliver, subscription, event)
            except RuntimeError:
                # loop already closed
                subscription.closed = True
                self._drop(subscription, reason="loop_closed")
                continue
            scheduled += 1
        return scheduled

    def _deliver(self, subscription: Subscription, event: BroadcastEvent) -> None:
        if subscription.closed:
            return
        if not subscription.offer(event):
            self._drop(subscription, reason="queue_full")
            subscription.close()

    def _drop(self, subscription: Subscription, *, reason: str) -> None:
        with self._lock:
            self._subscribers.pop(subscription.subscriber_id, None)
        logger.warning("subscriber_dropped", extra={"subscriber_id": subscription.subscriber_id, "reason": reason})
