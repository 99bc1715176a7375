import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from visitor_analytics.core.clock import NS_PER_SECOND, seconds_to_ns
from visitor_analytics.core.database import build_engine, init_db
from visitor_analytics.services.engine import VisitorEngine

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"

# Friday 2024-03-15 12:30:00 UTC
START = datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to"""

    def __init__(self, start: datetime = START):
        self.ns = int(start.timestamp()) * NS_PER_SECOND

    def now_ns(self) -> int:
        return self.ns

    def advance(self, seconds: float) -> None:
        self.ns += seconds_to_ns(seconds)

    def set(self, moment: datetime) -> None:
        self.ns = int(moment.timestamp()) * NS_PER_SECOND


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def db_engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def engine(session_factory, clock):
    return VisitorEngine(session_factory, clock=clock)


@pytest.fixture
def ingest(engine):
    """Ingest a JSON payload dict as a browser from 203.0.113.7"""
    def _ingest(payload=None, user_agent=CHROME_UA, address="203.0.113.7"):
        body = json.dumps(payload or {"event_type": "pageview", "page": "/"})
        return engine.ingestion.ingest(body, address=address, user_agent=user_agent)

    return _ingest
