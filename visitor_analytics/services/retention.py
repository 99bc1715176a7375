import threading

import structlog

from visitor_analytics.core.clock import Clock, seconds_to_ns
from visitor_analytics.services.cache import StatsCache
from visitor_analytics.services.event_store import EventStore
from visitor_analytics.services.ledger import VisitorLedger

logger = structlog.get_logger()

SECONDS_PER_DAY = 86400


class RetentionSweeper:
    """Age-based purge of events and idle ledger rows"""

    def __init__(
            self,
            store: EventStore,
            ledger: VisitorLedger,
            clock: Clock,
            retention_days: int = 90,
            cache: StatsCache | None = None
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.retention_ns = seconds_to_ns(retention_days * SECONDS_PER_DAY)
        self.cache = cache

    def sweep(self) -> dict[str, int]:
        cutoff_ns = self.clock.now_ns() - self.retention_ns
        events = self.store.purge_older_than(cutoff_ns)
        visitors = self.ledger.purge_inactive(cutoff_ns)

        if self.cache is not None and (events or visitors):
            self.cache.invalidate()

        logger.info("retention_sweep_completed", events_deleted=events, visitors_deleted=visitors)
        return {"events": events, "visitors": visitors}

    def run(self, stop: threading.Event, interval_seconds: float) -> int:
        """Sweep every ``interval_seconds`` until ``stop`` is set; returns sweeps run"""
        sweeps = 0
        logger.info("retention_worker_started", interval_seconds=interval_seconds)

        while not stop.is_set():
            self.sweep()
            sweeps += 1
            # Returns early as soon as stop is set
            stop.wait(interval_seconds)

        logger.info("retention_worker_stopped", sweeps=sweeps)
        return sweeps
