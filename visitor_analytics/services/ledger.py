"""
Visitor ledger: one mutable row per identity.

Per identity the ledger moves through absent -> new -> returning, or
absent -> bot. The bot state is sticky. A new session starts when the gap
since ``last_seen`` exceeds the session window, and bumps ``visit_count``.
"""

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
import structlog

from visitor_analytics.core.errors import PersistenceError
from visitor_analytics.models.visitor import Visitor
from visitor_analytics.schemas.event import VisitorClass

logger = structlog.get_logger()

DESCRIPTOR_FIELDS = ("country", "os", "browser", "device_type", "resolution", "timezone")


class KeyedLock:
    """One lock per key; locks are dropped once nobody holds or waits on them"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def classify_entry(entry: Visitor) -> VisitorClass:
    if entry.is_bot:
        return VisitorClass.BOT
    if entry.visit_count > 1:
        return VisitorClass.RETURNING
    return VisitorClass.NEW


class VisitorLedger:
    """Read-modify-write access to the `visitors` table, serialized per identity"""

    def __init__(self, session_factory: sessionmaker, session_window_ns: int):
        self.session_factory = session_factory
        self.session_window_ns = session_window_ns
        self._locks = KeyedLock()

    def locked(self, identity: str):
        """Serialize updates for one identity; other identities proceed in parallel"""
        return self._locks.hold(identity)

    def record(
            self,
            session: Session,
            identity: str,
            ts_ns: int,
            is_bot: bool,
            descriptors: dict[str, str | None] | None = None
    ) -> VisitorClass:
        """
        Upsert the ledger row for ``identity`` inside the caller's transaction.

        Must run while holding ``locked(identity)``. Returns the classification
        as of this event, which the caller embeds into the stored event.
        """
        entry = session.get(Visitor, identity, with_for_update=True)

        if entry is None:
            entry = Visitor(
                identity=identity,
                first_seen_ns=ts_ns,
                last_seen_ns=ts_ns,
                visit_count=1,
                is_bot=is_bot
            )
            session.add(entry)
        else:
            if ts_ns - entry.last_seen_ns > self.session_window_ns:
                entry.visit_count += 1
            entry.first_seen_ns = min(entry.first_seen_ns, ts_ns)
            entry.last_seen_ns = max(entry.last_seen_ns, ts_ns)
            # Sticky: once a bot, always a bot
            entry.is_bot = bool(entry.is_bot or is_bot)

        for field in DESCRIPTOR_FIELDS:
            value = (descriptors or {}).get(field)
            if value:
                setattr(entry, field, value)

        return classify_entry(entry)

    def get(self, identity: str) -> Visitor | None:
        try:
            with self.session_factory() as session:
                return session.get(Visitor, identity)
        except SQLAlchemyError as e:
            logger.error("ledger_read_failed", identity=identity, error=str(e))
            raise PersistenceError("Failed to read visitor ledger") from e

    def purge_inactive(self, cutoff_ns: int) -> int:
        """Retention sweep: forget identities not seen since the cutoff"""
        try:
            with self.session_factory() as session:
                result = session.execute(delete(Visitor).where(Visitor.last_seen_ns < cutoff_ns))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("ledger_purge_failed", error=str(e))
            raise PersistenceError("Failed to purge visitor ledger") from e

        return result.rowcount or 0
