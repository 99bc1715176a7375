import asyncio
import threading
from datetime import timedelta

import pytest

from conftest import GOOGLEBOT_UA, START
from visitor_analytics.services.cache import StatsCache
from visitor_analytics.services.live import LiveBroker
from visitor_analytics.services.timeseries import PRESETS, parse_timeframe


def test_live_window_expires_entries(engine, clock, ingest):
    ingest({"event_type": "pageview", "page": "/landing", "page_load_ms": 180})

    events = engine.live.recent_events(30)
    assert [event.page for event in events] == ["/landing"]
    assert events[0].page_load_ms == 180
    assert events[0].timestamp == clock.now_ns() // 1_000_000_000

    clock.advance(30)
    assert len(engine.live.recent_events(30)) == 1

    clock.advance(1)
    assert engine.live.recent_events(30) == []
    assert len(engine.live.recent_events(60)) == 1


def test_live_window_newest_first_and_limited(engine, clock, ingest):
    for index in range(5):
        ingest({"event_type": "click", "page": f"/p{index}"})
        clock.advance(1)

    events = engine.live.recent_events(60, limit=2)
    assert [event.page for event in events] == ["/p4", "/p3"]


def test_live_window_flags_bots(engine, ingest):
    ingest(user_agent=GOOGLEBOT_UA)
    assert engine.live.recent_events()[0].is_bot is True


def test_cache_serves_value_within_ttl(clock):
    cache = StatsCache(clock, ttl_seconds=60)
    calls = []

    def compute():
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute("k", compute) == 1
    clock.advance(60)
    assert cache.get_or_compute("k", compute) == 1
    clock.advance(1)
    assert cache.get_or_compute("k", compute) == 2

    cache.invalidate("k")
    assert cache.get_or_compute("k", compute) == 3
    assert cache.get_or_compute("other", compute) == 4

    cache.invalidate()
    assert cache.get_or_compute("other", compute) == 5


def test_stats_are_cached_until_ttl(engine, clock, ingest):
    ingest()
    assert engine.analytics.get_stats(PRESETS["24h"]).total_events == 1

    ingest(address="198.51.100.9")
    assert engine.analytics.get_stats(PRESETS["24h"]).total_events == 1

    clock.advance(61)
    assert engine.analytics.get_stats(PRESETS["24h"]).total_events == 2


@pytest.mark.asyncio
async def test_broker_delivers_to_every_subscriber():
    broker = LiveBroker(buffer_size=5)
    first, second = broker.subscribe(), broker.subscribe()
    assert broker.subscriber_count == 2

    worker = threading.Thread(target=broker.publish, args=({"page": "/"},))
    worker.start()
    worker.join()

    assert await first.get(timeout=1) == {"page": "/"}
    assert await second.get(timeout=1) == {"page": "/"}

    broker.unsubscribe(first)
    broker.unsubscribe(second)
    assert broker.subscriber_count == 0


@pytest.mark.asyncio
async def test_broker_drops_for_slow_subscribers():
    broker = LiveBroker(buffer_size=1)
    subscription = broker.subscribe()

    broker.publish({"n": 1})
    broker.publish({"n": 2})
    await asyncio.sleep(0)

    assert subscription.dropped == 1
    assert await subscription.get(timeout=1) == {"n": 1}
    assert await subscription.get(timeout=0.01) is None


@pytest.mark.asyncio
async def test_ingestion_publishes_to_subscribers(engine, ingest):
    subscription = engine.broker.subscribe()

    ingest({"event_type": "pageview", "page": "/live"})

    message = await subscription.get(timeout=1)
    assert message["page"] == "/live"
    assert message["is_bot"] is False


def test_custom_ranges_are_not_cached(engine, clock, ingest):
    timeframe = parse_timeframe(start=START - timedelta(hours=1), end=START + timedelta(hours=1))

    ingest()
    assert engine.analytics.get_stats(timeframe).total_events == 1
    assert engine.analytics.get_chart_data(timeframe).buckets
    assert len(engine.cache) == 0

    ingest(address="198.51.100.9")
    assert engine.analytics.get_stats(timeframe).total_events == 2
