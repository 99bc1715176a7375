from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from visitor_analytics.core.clock import Clock, SystemClock, seconds_to_ns
from visitor_analytics.core.config import Settings, settings
from visitor_analytics.core.database import SessionLocal
from visitor_analytics.services.analytics import AnalyticsService
from visitor_analytics.services.cache import StatsCache
from visitor_analytics.services.event_store import EventStore
from visitor_analytics.services.ingestion import IngestionService
from visitor_analytics.services.ledger import VisitorLedger
from visitor_analytics.services.live import LiveBroker, LiveWindow
from visitor_analytics.services.retention import RetentionSweeper


class VisitorEngine:
    """Wires the stores, ledger, cache and live components around one clock"""

    def __init__(
            self,
            session_factory: sessionmaker,
            clock: Clock | None = None,
            config: Settings = settings
    ):
        self.config = config
        self.clock = clock or SystemClock()

        self.store = EventStore(session_factory)
        self.ledger = VisitorLedger(
            session_factory,
            session_window_ns=seconds_to_ns(config.session_window_minutes * 60)
        )
        self.cache = StatsCache(self.clock, ttl_seconds=config.stats_cache_ttl_seconds)
        self.broker = LiveBroker(buffer_size=config.live_subscriber_buffer)

        self.ingestion = IngestionService(
            session_factory,
            self.store,
            self.ledger,
            self.clock,
            broker=self.broker,
            max_payload_bytes=config.max_payload_bytes,
            raw_payload_max_bytes=config.raw_payload_max_bytes,
            identity_salt=config.identity_salt
        )
        self.analytics = AnalyticsService(
            self.store,
            self.ledger,
            self.clock,
            self.cache,
            timezone=config.reporting_timezone
        )
        self.live = LiveWindow(
            self.store,
            self.clock,
            default_ttl=config.live_ttl_seconds,
            max_limit=config.live_max_limit
        )
        self.retention = RetentionSweeper(
            self.store,
            self.ledger,
            self.clock,
            retention_days=config.retention_days,
            cache=self.cache
        )


@lru_cache(maxsize=1)
def get_visitor_engine() -> VisitorEngine:
    """Dependency returning the process-wide engine"""
    return VisitorEngine(SessionLocal)
