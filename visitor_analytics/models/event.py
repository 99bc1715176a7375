# SQLAlchemy models

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String, Text
from visitor_analytics.models.base import Base


class Event(Base):
    """Append-only record of one accepted tracking event"""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity = Column(String(64), nullable=False, index=True)
    ts_ns = Column(BigInteger, nullable=False, index=True)
    client_ts_ns = Column(BigInteger, nullable=True)
    event_type = Column(String(20), nullable=False)
    page = Column(String(500), nullable=False)
    referrer = Column(String(500), nullable=True)
    country = Column(String(50), nullable=True)
    os = Column(String(50), nullable=True)
    browser = Column(String(50), nullable=True)
    device_type = Column(String(50), nullable=True)
    resolution = Column(String(20), nullable=True)
    timezone = Column(String(50), nullable=True)
    page_load_ms = Column(Integer, nullable=True)
    is_bot = Column(Boolean, nullable=False, default=False)
    # Classification as of insert time: new, returning or bot
    visitor_class = Column(String(16), nullable=False)
    raw_payload = Column(Text, nullable=True)

    __table_args__ = (
        # Composite index for bucket folding
        Index('idx_events_ts_identity', 'ts_ns', 'identity'),
    )
