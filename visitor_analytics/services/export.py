from pathlib import Path

import pandas as pd
import structlog
from sqlalchemy import select
from sqlalchemy.engine import Engine

from visitor_analytics.core.database import get_duckdb_connection
from visitor_analytics.models.event import Event

logger = structlog.get_logger()


def export_events(engine: Engine, duckdb_path: str | Path, since_ns: int | None = None) -> int:
    """
    Copy stored events into a DuckDB file for offline analysis.

    The `events` table in the DuckDB file is replaced on every export.
    Returns the number of rows written.
    """
    stmt = select(Event.__table__).order_by(Event.ts_ns)
    if since_ns is not None:
        stmt = stmt.where(Event.ts_ns >= since_ns)

    with engine.connect() as conn:
        df = pd.read_sql(stmt, conn)

    if df.empty:
        logger.info("duckdb_export_skipped", reason="no_events")
        return 0

    duckdb_path = Path(duckdb_path)
    duckdb_path.parent.mkdir(parents=True, exist_ok=True)

    con = get_duckdb_connection(str(duckdb_path))
    try:
        con.register("events_df", df)
        con.execute("CREATE OR REPLACE TABLE events AS SELECT * FROM events_df")
        con.unregister("events_df")
    finally:
        con.close()

    logger.info("duckdb_export_success", rows=len(df), path=str(duckdb_path))
    return len(df)
