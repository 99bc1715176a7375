from sqlalchemy import BigInteger, Boolean, Column, Integer, String
from visitor_analytics.models.base import Base


class Visitor(Base):
    """Per-identity ledger row, the only mutable state the engine keeps"""

    __tablename__ = "visitors"

    identity = Column(String(64), primary_key=True)
    first_seen_ns = Column(BigInteger, nullable=False)
    last_seen_ns = Column(BigInteger, nullable=False, index=True)
    visit_count = Column(Integer, nullable=False, default=1)
    is_bot = Column(Boolean, nullable=False, default=False)

    country = Column(String(50), nullable=True)
    os = Column(String(50), nullable=True)
    browser = Column(String(50), nullable=True)
    device_type = Column(String(50), nullable=True)
    resolution = Column(String(20), nullable=True)
    timezone = Column(String(50), nullable=True)
