import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
import structlog

from visitor_analytics.api import events, stats
from visitor_analytics.core.config import settings
from visitor_analytics.core.database import init_db, sync_engine
from visitor_analytics.core.errors import PersistenceError
from visitor_analytics.middleware.rate_limit import rate_limit_middleware


def configure_logging(debug: bool = False) -> None:
    """JSON logs; request-scoped context is merged in from contextvars"""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO)
    )


configure_logging(settings.debug)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; signal live streams to close on shutdown"""
    app.state.shutdown = asyncio.Event()
    await run_in_threadpool(init_db)
    logger.info("application_startup", app_name=settings.app_name)
    yield
    app.state.shutdown.set()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start_time = time.perf_counter()

    response = await call_next(request)

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2)
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.middleware("http")(rate_limit_middleware)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    # Store details stay in the logs
    logger.error("unhandled_persistence_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(events.router)
app.include_router(stats.router)


def _database_ok() -> bool:
    try:
        with sync_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning("health_database_unavailable", error=str(e))
        return False


@app.get("/health")
async def health_check():
    """Liveness plus a database round trip"""
    database_ok = await run_in_threadpool(_database_ok)
    return {
        "status": "healthy" if database_ok else "degraded",
        "app": settings.app_name,
        "database": "ok" if database_ok else "unavailable"
    }


@app.get("/")
async def root():
    return {
        "message": "Visitor Analytics API",
        "endpoints": {
            "health": "/health",
            "collect": "/api/collect",
            "beacon": "/api/collect.gif",
            "live": "/api/live",
            "stream": "/api/live/stream",
            "stats": "/stats",
            "chart": "/stats/chart",
            "hourly": "/stats/hourly",
            "top": "/stats/top/{dimension}",
            "visitor": "/visitors/{identity}",
            "docs": "/docs"
        }
    }
