"""
Live activity: a read-time filtered view over the newest events, plus an
in-process fan-out broker for server-push subscribers.
"""

import asyncio
import threading
from typing import Any

import structlog

from visitor_analytics.core.clock import Clock, seconds_to_ns, NS_PER_SECOND
from visitor_analytics.models.event import Event
from visitor_analytics.schemas.event import LiveEventResponse
from visitor_analytics.services.event_store import EventStore

logger = structlog.get_logger()


def to_live_event(event: Event) -> LiveEventResponse:
    return LiveEventResponse(
        id=event.id,
        timestamp=event.ts_ns // NS_PER_SECOND,
        page=event.page or "/",
        referrer=event.referrer,
        country=event.country,
        os=event.os,
        browser=event.browser,
        event_type=event.event_type,
        is_bot=bool(event.is_bot),
        page_load_ms=event.page_load_ms
    )


class LiveWindow:
    """Trailing window over the event log; expired entries are filtered out on read"""

    def __init__(self, store: EventStore, clock: Clock, default_ttl: int = 30, max_limit: int = 100):
        self.store = store
        self.clock = clock
        self.default_ttl = default_ttl
        self.max_limit = max_limit

    def recent_events(self, ttl_seconds: int | None = None, limit: int = 20) -> list[LiveEventResponse]:
        """Events younger than ``ttl_seconds``, newest first, at most ``limit``"""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        limit = max(1, min(self.max_limit, limit))
        since_ns = self.clock.now_ns() - seconds_to_ns(ttl)

        return [to_live_event(event) for event in self.store.recent(since_ns, limit)]


class Subscription:
    """Bounded queue bound to the subscriber's event loop"""

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, message: dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            # Slow subscriber: drop rather than block ingestion
            self.dropped += 1

    async def get(self, timeout: float) -> dict[str, Any] | None:
        """Next message, or None when nothing arrived within ``timeout``"""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class LiveBroker:
    """Fans out freshly ingested events to every live subscriber"""

    def __init__(self, buffer_size: int = 10):
        self.buffer_size = buffer_size
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        """Register a subscriber; must be called from inside its event loop"""
        subscription = Subscription(asyncio.get_running_loop(), self.buffer_size)
        with self._lock:
            self._subscribers.add(subscription)
        logger.info("live_subscriber_added", subscribers=len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)
        logger.info(
            "live_subscriber_removed",
            subscribers=len(self._subscribers),
            dropped=subscription.dropped
        )

    def publish(self, message: dict[str, Any]) -> None:
        """Safe to call from any thread"""
        with self._lock:
            subscribers = list(self._subscribers)

        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(subscription._offer, message)
            except RuntimeError:
                # Loop already closed; the subscriber is gone
                self.unsubscribe(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
