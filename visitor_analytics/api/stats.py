# GET /stats/*

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query
import structlog

from visitor_analytics.core.errors import PersistenceError
from visitor_analytics.schemas.analytics import (
    ChartResponse,
    StatsResponse,
    TopStatResponse,
    VisitorSummary,
)
from visitor_analytics.services.engine import VisitorEngine, get_visitor_engine
from visitor_analytics.services.event_store import TOP_DIMENSIONS
from visitor_analytics.services.timeseries import Timeframe, parse_timeframe

logger = structlog.get_logger()
router = APIRouter(tags=["analytics"])


def resolve_timeframe(
        timeframe: str = Query(default="24h", description="24h, 7d or 30d"),
        start: datetime | None = Query(default=None, description="Range start (ISO-8601, inclusive)"),
        end: datetime | None = Query(default=None, description="Range end (ISO-8601, exclusive)")
) -> Timeframe:
    """Dependency turning query parameters into a timeframe"""
    try:
        return parse_timeframe(timeframe, start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/stats", response_model=StatsResponse)
def get_stats(
        timeframe: Timeframe = Depends(resolve_timeframe),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """
    Aggregate counts for a timeframe.

    - **unique_visitors**: distinct non-bot identities
    - **bots / new_visitors / returning_visitors**: distinct identities per classification
    - **total_events**: raw event count
    """
    try:
        return engine.analytics.get_stats(timeframe)
    except PersistenceError as e:
        logger.error("stats_query_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch stats")


@router.get("/stats/chart", response_model=ChartResponse)
def get_chart_data(
        timeframe: Timeframe = Depends(resolve_timeframe),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """
    Gap-filled chart buckets, oldest first.

    `24h` gives 24 hourly buckets, `7d` and `30d` daily buckets; explicit ranges
    are hourly up to 48 hours and daily beyond. The current bucket is included.
    """
    try:
        return engine.analytics.get_chart_data(timeframe)
    except PersistenceError as e:
        logger.error("chart_query_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch chart data")


@router.get("/stats/hourly", response_model=ChartResponse)
def get_recent_stats_window(
        hours: int = Query(default=24, ge=1, le=168, description="Lookback in hours"),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """Hourly buckets over the trailing `hours`"""
    try:
        return engine.analytics.get_recent_stats_window(hours)
    except PersistenceError as e:
        logger.error("hourly_stats_query_failed", hours=hours, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch stats")


@router.get("/stats/top/{dimension}", response_model=List[TopStatResponse])
def get_top_stats(
        dimension: str = Path(..., description=", ".join(sorted(TOP_DIMENSIONS))),
        limit: int = Query(default=10, ge=1, le=100),
        timeframe: Timeframe = Depends(resolve_timeframe),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """Most frequent values of one descriptor within the timeframe"""
    if dimension not in TOP_DIMENSIONS:
        raise HTTPException(status_code=404, detail=f"Unknown dimension: {dimension}")

    try:
        return engine.analytics.get_top_stats(dimension, timeframe, limit)
    except PersistenceError as e:
        logger.error("top_stats_query_failed", dimension=dimension, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch top stats")


@router.get("/visitors/{identity}", response_model=VisitorSummary)
def get_visitor(
        identity: str,
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """Ledger entry for one identity; unknown identities report state `absent`"""
    try:
        return engine.analytics.get_visitor(identity)
    except PersistenceError as e:
        logger.error("visitor_query_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch visitor")
