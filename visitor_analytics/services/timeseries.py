"""
Time-series aggregation into calendar-aligned buckets.

The bucket skeleton is generated from the clock alone, then classified hits are
folded into it, so every expected bucket is present even when it saw no events.
Counters count distinct identities per bucket, not events.
"""

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable

import pytz

from visitor_analytics.core.clock import NS_PER_SECOND
from visitor_analytics.schemas.analytics import ChartBucket
from visitor_analytics.schemas.event import VisitorClass
from visitor_analytics.services.event_store import ClassifiedHit

# Spans up to this length are bucketed hourly, longer ones daily
HOURLY_SPAN_LIMIT = timedelta(hours=48)
MAX_RANGE_SPAN = timedelta(days=366)


class Granularity(str, Enum):
    """Time bucket types."""

    HOUR = "hour"
    DAY = "day"


@dataclass(frozen=True)
class Timeframe:
    """A symbolic window (`24h`, `7d`, `30d`) or an explicit half-open range"""

    name: str
    granularity: Granularity
    count: int = 0
    start: datetime | None = None
    end: datetime | None = None
    label_format: str = "%Y-%m-%d %H:00"


PRESETS = {
    "24h": Timeframe("24h", Granularity.HOUR, 24, label_format="%H:00"),
    "7d": Timeframe("7d", Granularity.DAY, 7, label_format="%a"),
    "30d": Timeframe("30d", Granularity.DAY, 30, label_format="%d %b"),
}


@dataclass(frozen=True)
class Bucket:
    start: datetime
    end: datetime
    start_ns: int
    end_ns: int
    label: str


EPOCH = datetime(1970, 1, 1, tzinfo=pytz.utc)


def _to_ns(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(microseconds=1) * 1000


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return pytz.utc.localize(moment)
    return moment.astimezone(pytz.utc)


def get_timezone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"Unknown reporting timezone: {name}")


def parse_timeframe(
        name: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None
) -> Timeframe:
    """Resolve a preset name or an explicit ``[start, end)`` range"""
    if start is not None or end is not None:
        if start is None or end is None:
            raise ValueError("Both start and end are required for a custom range")
        start, end = _as_utc(start), _as_utc(end)
        span = end - start
        if span <= timedelta(0):
            raise ValueError("Range end must be after its start")
        if span > MAX_RANGE_SPAN:
            raise ValueError("Range may not exceed 366 days")
        if span <= HOURLY_SPAN_LIMIT:
            return Timeframe("range", Granularity.HOUR, start=start, end=end)
        return Timeframe("range", Granularity.DAY, start=start, end=end, label_format="%Y-%m-%d")

    timeframe = PRESETS.get(name or "24h")
    if timeframe is None:
        raise ValueError(f"Unknown timeframe: {name}. Use one of {', '.join(PRESETS)}")
    return timeframe


def hourly_window(hours: int) -> Timeframe:
    """Trailing window of ``hours`` hourly buckets ending with the current hour"""
    if not 1 <= hours <= 168:
        raise ValueError("hours must be between 1 and 168")
    return Timeframe(f"{hours}h", Granularity.HOUR, hours)


def _day_start(day: date, tz) -> datetime:
    return tz.localize(datetime.combine(day, time.min)).astimezone(pytz.utc)


def _make_bucket(start: datetime, end: datetime, tz, label_format: str, label_at: datetime | None = None) -> Bucket:
    return Bucket(
        start=start,
        end=end,
        start_ns=_to_ns(start),
        end_ns=_to_ns(end),
        label=(label_at or start).astimezone(tz).strftime(label_format)
    )


def _floor(moment: datetime, granularity: Granularity, tz) -> datetime:
    local = moment.astimezone(tz)
    if granularity == Granularity.HOUR:
        return local.replace(minute=0, second=0, microsecond=0).astimezone(pytz.utc)
    return _day_start(local.date(), tz)


def _step(start: datetime, granularity: Granularity, tz) -> datetime:
    if granularity == Granularity.HOUR:
        return start + timedelta(hours=1)
    # Days can be 23 or 25 hours long across DST changes
    return _day_start(start.astimezone(tz).date() + timedelta(days=1), tz)


def build_buckets(timeframe: Timeframe, now_ns: int, timezone: str = "UTC") -> list[Bucket]:
    """
    Generate the complete, ordered bucket skeleton for a timeframe.

    Presets walk backward from the bucket containing ``now_ns`` (which is
    included); explicit ranges walk forward from the boundary at or before
    ``start`` until ``end`` is covered, with the edge buckets clipped to
    ``[start, end)``.
    """
    tz = get_timezone(timezone)
    granularity = timeframe.granularity

    if timeframe.start is not None:
        cursor = _floor(timeframe.start, granularity, tz)
        buckets = []
        while cursor < timeframe.end:
            nxt = _step(cursor, granularity, tz)
            # Edge buckets are clipped to the requested range
            buckets.append(_make_bucket(
                max(cursor, timeframe.start),
                min(nxt, timeframe.end),
                tz,
                timeframe.label_format,
                label_at=cursor
            ))
            cursor = nxt
        return buckets

    now = datetime.fromtimestamp(now_ns / NS_PER_SECOND, tz=pytz.utc)
    current = _floor(now, granularity, tz)

    if granularity == Granularity.HOUR:
        starts = [current - timedelta(hours=offset) for offset in range(timeframe.count - 1, -1, -1)]
    else:
        today = current.astimezone(tz).date()
        starts = [_day_start(today - timedelta(days=offset), tz) for offset in range(timeframe.count - 1, -1, -1)]

    return [_make_bucket(start, _step(start, granularity, tz), tz, timeframe.label_format) for start in starts]


def fold_hits(buckets: list[Bucket], hits: Iterable[ClassifiedHit]) -> list[ChartBucket]:
    """Count distinct identities per bucket and classification; empty buckets stay zero"""
    starts = [bucket.start_ns for bucket in buckets]
    seen: list[dict[str, set[str]]] = [
        {cls.value: set() for cls in VisitorClass} for _ in buckets
    ]

    for hit in hits:
        index = bisect_right(starts, hit.ts_ns) - 1
        if index < 0 or hit.ts_ns >= buckets[index].end_ns:
            continue
        sets = seen[index]
        if hit.visitor_class in sets:
            sets[hit.visitor_class].add(hit.identity)

    return [
        ChartBucket(
            label=bucket.label,
            start=bucket.start,
            end=bucket.end,
            bots=len(sets[VisitorClass.BOT.value]),
            new_visitors=len(sets[VisitorClass.NEW.value]),
            returning_visitors=len(sets[VisitorClass.RETURNING.value])
        )
        for bucket, sets in zip(buckets, seen)
    ]
