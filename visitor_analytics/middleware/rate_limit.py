from fastapi import Request, status
from fastapi.responses import JSONResponse
import time
import redis
import structlog
from visitor_analytics.core.config import settings
from visitor_analytics.services.identity import client_address

logger = structlog.get_logger()

EXEMPT_PATHS = frozenset({"/health", "/api/live/stream"})


class SlidingWindowLimiter:
    """Per-client request limiter: Redis sorted-set window, in-memory buckets as fallback"""

    def __init__(self, rate: int, period: int, redis_url: str | None = None):
        """
        Args:
            rate: Number of requests allowed
            period: Time period in seconds
            redis_url: Redis to share counters with other workers; None keeps them in memory
        """
        self.rate = rate
        self.period = period
        self.buckets: dict[str, dict[str, float]] = {}
        self.redis_client = None

        if redis_url:
            try:
                client = redis.from_url(redis_url, decode_responses=False, socket_connect_timeout=1)
                client.ping()
                self.redis_client = client
                logger.info("rate_limiter_using_redis")
            except redis.RedisError as e:
                logger.warning("rate_limiter_redis_failed_using_memory", error=str(e))

    def hit(self, key: str) -> tuple[bool, int]:
        """Record a request; returns (allowed, remaining)"""
        if self.redis_client is not None:
            try:
                return self._hit_redis(key)
            except redis.RedisError as e:
                logger.warning("rate_limiter_redis_error_using_memory", error=str(e))
                self.redis_client = None
        return self._hit_memory(key)

    def _hit_redis(self, key: str) -> tuple[bool, int]:
        redis_key = f"rate_limit:{key}"
        now = time.time()

        pipe = self.redis_client.pipeline()
        # Drop entries outside the window, count, then record this request
        pipe.zremrangebyscore(redis_key, 0, now - self.period)
        pipe.zcard(redis_key)
        pipe.zadd(redis_key, {str(now): now})
        pipe.expire(redis_key, self.period)
        results = pipe.execute()

        # results[1] is the count before adding current request
        count = results[1] + 1
        return count <= self.rate, max(0, self.rate - count)

    def _hit_memory(self, key: str) -> tuple[bool, int]:
        now = time.time()
        bucket = self.buckets.setdefault(key, {"tokens": float(self.rate), "last_update": now})

        # Refill tokens based on time passed
        elapsed = now - bucket["last_update"]
        bucket["last_update"] = now
        bucket["tokens"] = min(self.rate, bucket["tokens"] + (elapsed / self.period) * self.rate)

        if bucket["tokens"] >= 1:
            bucket["tokens"] -= 1
            return True, int(bucket["tokens"])
        return False, 0


limiter = SlidingWindowLimiter(
    rate=settings.rate_limit_requests,
    period=settings.rate_limit_period,
    redis_url=settings.redis_url
)


def _limit_headers(remaining: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limiter.rate),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(limiter.period),
    }


async def rate_limit_middleware(request: Request, call_next):
    """Limits requests per client address, or per API key when a valid one is sent"""
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    api_key = request.headers.get("X-API-Key")
    if api_key and settings.api_key and api_key == settings.api_key:
        key = f"api_key:{api_key}"
    else:
        peer = request.client.host if request.client else None
        key = f"ip:{client_address(peer, request.headers, settings.trust_forwarded_for)}"

    allowed, remaining = limiter.hit(key)
    if not allowed:
        logger.warning("rate_limit_exceeded", path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Rate limit exceeded. Please try again later."},
            headers={**_limit_headers(0), "Retry-After": str(limiter.period)}
        )

    response = await call_next(request)
    response.headers.update(_limit_headers(remaining))
    return response
