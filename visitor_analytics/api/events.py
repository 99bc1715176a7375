import asyncio
import base64
import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool
import structlog

from visitor_analytics.core.clock import NS_PER_SECOND
from visitor_analytics.core.config import settings
from visitor_analytics.core.errors import PayloadTooLarge, PersistenceError, ValidationError
from visitor_analytics.schemas.event import LiveEventResponse
from visitor_analytics.services.engine import VisitorEngine, get_visitor_engine
from visitor_analytics.services.identity import client_address

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["events"])

PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _ingest(engine: VisitorEngine, request: Request, raw: bytes | str, base64_encoded: bool):
    return engine.ingestion.ingest(
        raw,
        address=client_address(
            request.client.host if request.client else None,
            request.headers,
            settings.trust_forwarded_for
        ),
        user_agent=request.headers.get("user-agent"),
        base64_encoded=base64_encoded
    )


async def _read_capped(request: Request, limit: int) -> bytes | None:
    """Read the request body, or return None once it exceeds `limit` bytes"""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        return None

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)


@router.post("/collect", status_code=status.HTTP_204_NO_CONTENT)
async def collect(
        request: Request,
        data: str | None = Query(default=None, description="Base64 encoded JSON payload"),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """
    Ingest one tracking event.

    The payload is either the JSON request body or a base64 encoded `data`
    query parameter. Responses carry no body.
    """
    if data is not None:
        raw, base64_encoded = data, True
    else:
        raw, base64_encoded = await _read_capped(request, engine.ingestion.max_payload_bytes), False
        if raw is None:
            logger.info("payload_rejected", reason="too_large")
            return Response(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

    try:
        await run_in_threadpool(_ingest, engine, request, raw, base64_encoded)
    except PayloadTooLarge as e:
        logger.info("payload_rejected", reason="too_large", size=e.size)
        return Response(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
    except ValidationError as e:
        logger.info("payload_rejected", reason="invalid", errors=e.reasons)
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    except PersistenceError:
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/collect.gif")
async def collect_gif(
        request: Request,
        data: str = Query(default=""),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """Pixel beacon: same ingestion as /collect, always answers with a 1x1 GIF"""
    try:
        await run_in_threadpool(_ingest, engine, request, data, True)
    except ValidationError as e:
        logger.info("beacon_rejected", errors=e.reasons)
    except PersistenceError:
        logger.error("beacon_store_failed")

    return Response(content=PIXEL_GIF, media_type="image/gif", headers=NO_CACHE_HEADERS)


@router.get("/live", response_model=list[LiveEventResponse])
def get_live_events(
        ttl: int = Query(default=settings.live_ttl_seconds, ge=1, le=3600, description="Window in seconds"),
        limit: int = Query(default=settings.live_default_limit, ge=1, le=settings.live_max_limit),
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """Events from the trailing `ttl` seconds, newest first"""
    try:
        return engine.live.recent_events(ttl, limit)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to fetch events")


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.get("/live/stream")
async def stream_live_events(
        request: Request,
        engine: VisitorEngine = Depends(get_visitor_engine)
):
    """Server-Sent Events feed of newly ingested events"""
    shutdown: asyncio.Event = getattr(request.app.state, "shutdown", None) or asyncio.Event()

    async def event_stream():
        subscription = engine.broker.subscribe()
        try:
            yield _sse("connected", {"message": "Connected to live events"})
            while not shutdown.is_set():
                if await request.is_disconnected():
                    break
                message = await subscription.get(timeout=settings.live_heartbeat_seconds)
                if message is None:
                    yield _sse("heartbeat", {"timestamp": engine.clock.now_ns() // NS_PER_SECOND})
                else:
                    yield _sse("event", message)
            yield _sse("close", {"message": "Connection closing"})
        finally:
            engine.broker.unsubscribe(subscription)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"}
    )
