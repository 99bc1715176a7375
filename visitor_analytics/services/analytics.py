from collections import Counter
from datetime import datetime
from typing import List

import pytz
import structlog

from visitor_analytics.core.clock import Clock, NS_PER_SECOND
from visitor_analytics.schemas.analytics import (
    ChartResponse,
    StatsResponse,
    TopStatResponse,
    VisitorSummary,
)
from visitor_analytics.schemas.event import VisitorClass
from visitor_analytics.services.cache import StatsCache
from visitor_analytics.services.descriptors import referrer_host
from visitor_analytics.services.event_store import EventStore
from visitor_analytics.services.ledger import VisitorLedger, classify_entry
from visitor_analytics.services.timeseries import (
    Timeframe,
    build_buckets,
    fold_hits,
    hourly_window,
)

logger = structlog.get_logger()


def _ns_to_datetime(ts_ns: int) -> datetime:
    return datetime.fromtimestamp(ts_ns / NS_PER_SECOND, tz=pytz.utc)


class AnalyticsService:
    """Read side of the engine: totals, charts, top values and visitor lookups"""

    def __init__(
            self,
            store: EventStore,
            ledger: VisitorLedger,
            clock: Clock,
            cache: StatsCache,
            timezone: str = "UTC"
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.cache = cache
        self.timezone = timezone

    def _bounds(self, timeframe: Timeframe):
        buckets = build_buckets(timeframe, self.clock.now_ns(), self.timezone)
        return buckets, buckets[0].start_ns, buckets[-1].end_ns

    def _cached(self, kind: str, timeframe: Timeframe, compute):
        # Keys are limited to presets and hourly windows
        if timeframe.start is not None:
            return compute()
        return self.cache.get_or_compute((kind, timeframe.name), compute)

    def get_chart_data(self, timeframe: Timeframe) -> ChartResponse:
        """Gap-filled bucket sequence for the timeframe, oldest first"""
        return self._cached("chart", timeframe, lambda: self._compute_chart(timeframe))

    def get_recent_stats_window(self, hours: int) -> ChartResponse:
        """Hourly buckets over the trailing ``hours`` (1-168)"""
        timeframe = hourly_window(hours)
        return self.get_chart_data(timeframe)

    def _compute_chart(self, timeframe: Timeframe) -> ChartResponse:
        buckets, start_ns, end_ns = self._bounds(timeframe)
        hits = self.store.fetch_range(start_ns, end_ns)

        logger.info(
            "chart_computed",
            timeframe=timeframe.name,
            buckets=len(buckets),
            events=len(hits)
        )
        return ChartResponse(
            timeframe=timeframe.name,
            granularity=timeframe.granularity.value,
            buckets=fold_hits(buckets, hits)
        )

    def get_stats(self, timeframe: Timeframe) -> StatsResponse:
        """Distinct-identity totals and event count for the timeframe"""
        return self._cached("stats", timeframe, lambda: self._compute_stats(timeframe))

    def _compute_stats(self, timeframe: Timeframe) -> StatsResponse:
        _, start_ns, end_ns = self._bounds(timeframe)
        hits = self.store.fetch_range(start_ns, end_ns)

        by_class = {cls.value: set() for cls in VisitorClass}
        for hit in hits:
            if hit.visitor_class in by_class:
                by_class[hit.visitor_class].add(hit.identity)

        humans = by_class[VisitorClass.NEW.value] | by_class[VisitorClass.RETURNING.value]

        logger.info("stats_computed", timeframe=timeframe.name, events=len(hits))
        return StatsResponse(
            timeframe=timeframe.name,
            unique_visitors=len(humans),
            bots=len(by_class[VisitorClass.BOT.value]),
            new_visitors=len(by_class[VisitorClass.NEW.value]),
            returning_visitors=len(by_class[VisitorClass.RETURNING.value]),
            total_events=len(hits)
        )

    def get_top_stats(self, dimension: str, timeframe: Timeframe, limit: int = 10) -> List[TopStatResponse]:
        """Most frequent values of a descriptor; referrers are grouped by host"""
        _, start_ns, end_ns = self._bounds(timeframe)

        if dimension != "referrer":
            rows = self.store.top_values(dimension, start_ns, end_ns, limit)
            return [TopStatResponse(value=value, count=count) for value, count in rows]

        # Group full referrer URLs by host; fetch extra rows since hosts merge
        hosts = Counter()
        for value, count in self.store.top_values("referrer", start_ns, end_ns, limit * 10):
            hosts[referrer_host(value)] += count

        return [
            TopStatResponse(value=host, count=count)
            for host, count in sorted(hosts.items(), key=lambda item: (-item[1], item[0]))[:limit]
        ]

    def get_visitor(self, identity: str) -> VisitorSummary:
        """Ledger summary; unknown identities come back as `absent` with zero visits"""
        entry = self.ledger.get(identity)
        if entry is None:
            return VisitorSummary(identity=identity, state="absent")

        return VisitorSummary(
            identity=identity,
            state=classify_entry(entry).value,
            visit_count=entry.visit_count,
            first_seen=_ns_to_datetime(entry.first_seen_ns),
            last_seen=_ns_to_datetime(entry.last_seen_ns),
            country=entry.country,
            os=entry.os,
            browser=entry.browser,
            device_type=entry.device_type
        )
