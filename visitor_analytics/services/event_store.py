from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
import structlog

from visitor_analytics.core.errors import PersistenceError
from visitor_analytics.models.event import Event

logger = structlog.get_logger()

# Columns the top-values query may group by
TOP_DIMENSIONS = frozenset({
    "page", "referrer", "country", "os", "browser", "device_type", "resolution",
})


@dataclass(frozen=True)
class ClassifiedHit:
    """The slice of an event the aggregator needs"""

    identity: str
    ts_ns: int
    visitor_class: str


class EventStore:
    """Append-only event log on top of the `events` table"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def append(self, session: Session, **values) -> Event:
        """Stage an event in the caller's transaction"""
        event = Event(**values)
        session.add(event)
        return event

    def fetch_range(self, start_ns: int, end_ns: int) -> list[ClassifiedHit]:
        """Classified hits with ``start_ns <= ts_ns < end_ns``, oldest first"""
        stmt = (
            select(Event.identity, Event.ts_ns, Event.visitor_class)
            .where(Event.ts_ns >= start_ns, Event.ts_ns < end_ns)
            .order_by(Event.ts_ns)
        )
        try:
            with self.session_factory() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error("event_range_query_failed", error=str(e))
            raise PersistenceError("Failed to read events") from e

        return [ClassifiedHit(row[0], row[1], row[2]) for row in rows]

    def recent(self, since_ns: int, limit: int) -> list[Event]:
        """Events with ``ts_ns >= since_ns``, newest first"""
        stmt = (
            select(Event)
            .where(Event.ts_ns >= since_ns)
            .order_by(Event.ts_ns.desc())
            .limit(limit)
        )
        try:
            with self.session_factory() as session:
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            logger.error("recent_events_query_failed", error=str(e))
            raise PersistenceError("Failed to read recent events") from e

    def top_values(
            self,
            dimension: str,
            start_ns: int,
            end_ns: int,
            limit: int = 10
    ) -> list[tuple[str, int]]:
        """Most frequent non-empty values of one column in the range"""
        if dimension not in TOP_DIMENSIONS:
            raise ValueError(f"Unsupported dimension: {dimension}")

        column = getattr(Event, dimension)
        count = func.count().label("count")
        stmt = (
            select(column, count)
            .where(Event.ts_ns >= start_ns, Event.ts_ns < end_ns)
            .where(column.is_not(None), column != "")
            .group_by(column)
            .order_by(count.desc(), column)
            .limit(limit)
        )
        try:
            with self.session_factory() as session:
                return [(row[0], row[1]) for row in session.execute(stmt).all()]
        except SQLAlchemyError as e:
            logger.error("top_values_query_failed", dimension=dimension, error=str(e))
            raise PersistenceError("Failed to read top values") from e

    def purge_older_than(self, cutoff_ns: int) -> int:
        """Retention sweep: delete events older than the cutoff"""
        try:
            with self.session_factory() as session:
                result = session.execute(delete(Event).where(Event.ts_ns < cutoff_ns))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("event_purge_failed", error=str(e))
            raise PersistenceError("Failed to purge events") from e

        return result.rowcount or 0
