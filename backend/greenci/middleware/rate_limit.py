"""
Redis-backed sliding window rate limiter.

RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW_SECONDS (100 per 15 minutes by
default) per caller. Callers sending X-API-Key are counted per key, everyone
else per client IP. Fails open when Redis is unreachable.
"""

import logging
import time
from uuid import uuid4

import redis.asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from greenci.auth.jwt import api_key_fingerprint
from greenci.config import settings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/api/health", "/metrics", "/"})
KEY_PREFIX = "greenci:ratelimit:"


def client_identity(request: Request) -> str:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key_fingerprint(api_key)
    return "ip-" + (request.client.host if request.client else "unknown")


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int | None = None, window_seconds: int | None = None):
        super().__init__(app)
        self._redis: aioredis.Redis | None = None
        self.limit = limit or settings.rate_limit_requests
        self.window = window_seconds or settings.rate_limit_window_seconds

    async def _get_redis(self) -> aioredis.Redis | None:
        if self._redis is None:
            try:
                client = aioredis.from_url(settings.redis_url, decode_responses=True)
                await client.ping()
                self._redis = client
            except Exception as exc:
                logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
        return self._redis

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith("/api") or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        r = await self._get_redis()
        if r is None:
            return await call_next(request)

        identity = client_identity(request)
        key = f"{KEY_PREFIX}{identity}"
        now = time.time()

        try:
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zadd(key, {f"{now}:{uuid4().hex[:8]}": now})
            pipe.zcard(key)
            pipe.expire(key, self.window)
            request_count = (await pipe.execute())[2]
        except Exception as exc:
            logger.warning("Rate limiter Redis error: %s", exc)
            self._redis = None
            return await call_next(request)

        if request_count > self.limit:
            logger.warning("Rate limit exceeded for %s on %s", identity, request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests, please try again later."},
                headers={"Retry-After": str(self.window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - request_count))
        return response
