from datetime import datetime
from typing import List

from pydantic import BaseModel


class ChartBucket(BaseModel):
    """One gap-filled time bucket; counters are distinct identities"""
    label: str
    start: datetime
    end: datetime
    bots: int = 0
    new_visitors: int = 0
    returning_visitors: int = 0


class ChartResponse(BaseModel):
    """Chart data response"""
    timeframe: str
    granularity: str
    buckets: List[ChartBucket]


class StatsResponse(BaseModel):
    """Aggregate counts for a timeframe"""
    timeframe: str
    unique_visitors: int
    bots: int
    new_visitors: int
    returning_visitors: int
    total_events: int


class TopStatResponse(BaseModel):
    """Top values for one descriptor"""
    value: str
    count: int


class VisitorSummary(BaseModel):
    """Ledger view of one identity; state is `absent` when never seen"""
    identity: str
    state: str
    visit_count: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    country: str | None = None
    os: str | None = None
    browser: str | None = None
    device_type: str | None = None
