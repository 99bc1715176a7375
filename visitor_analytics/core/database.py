# DB connections

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from visitor_analytics.core.config import settings
from visitor_analytics.models.base import Base
import duckdb


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a sync engine; SQLite connections are shared across worker threads"""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            # A single connection keeps the in-memory database alive
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=0,
        pool_pre_ping=True
    )


sync_engine = build_engine(settings.database_url, echo=settings.debug)

SessionLocal = sessionmaker(bind=sync_engine, expire_on_commit=False)


def init_db(engine: Engine = sync_engine) -> None:
    """Create the events and visitors tables if they don't exist"""
    # Register both tables on the metadata
    import visitor_analytics.models.event  # noqa: F401
    import visitor_analytics.models.visitor  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_duckdb_connection(path: str):
    """Get DuckDB connection for offline analysis exports"""
    return duckdb.connect(path)
