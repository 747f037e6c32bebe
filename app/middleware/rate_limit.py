"""Redis-backed sliding-window rate limiting middleware."""

from __future__ import annotations

import math
import time
from functools import lru_cache
from typing import Protocol
from uuid import uuid4

import structlog
from fastapi import Request
from redis import asyncio as redis_async
from redis.asyncio.client import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from app.config import get_settings
from app.core.request_meta import extract_client_ip

logger = structlog.get_logger(__name__)
_WINDOW_SECONDS = 60
CREATE_PATH = "/api/auth/session/create"
REFRESH_PATH = "/api/auth/session/refresh"
_EXEMPT_PREFIXES = ("/health",)


class SlidingWindowRedis(Protocol):
    """Protocol for Redis operations used by the rate limiter."""

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        """Delete members with score inside an inclusive range."""

    async def zcard(self, key: str) -> int:
        """Return sorted-set cardinality."""

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        """Add one or more scored members to sorted set."""

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Apply TTL to key."""


@lru_cache
def get_rate_limit_redis_client() -> Redis:
    """Create and cache the Redis client shared by the limiter and readiness probe."""
    settings = get_settings()
    return redis_async.from_url(settings.redis.url, decode_responses=True)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-client sliding-window request limits."""

    def __init__(
        self,
        app,
        redis_client: SlidingWindowRedis | None = None,
        default_requests_per_minute: int | None = None,
        create_requests_per_minute: int | None = None,
        refresh_requests_per_minute: int | None = None,
    ) -> None:
        super().__init__(app)
        if redis_client is None or None in (
            default_requests_per_minute,
            create_requests_per_minute,
            refresh_requests_per_minute,
        ):
            limits = get_settings().rate_limit
            default_requests_per_minute = (
                default_requests_per_minute or limits.default_requests_per_minute
            )
            create_requests_per_minute = (
                create_requests_per_minute or limits.create_requests_per_minute
            )
            refresh_requests_per_minute = (
                refresh_requests_per_minute or limits.refresh_requests_per_minute
            )

        self._redis = redis_client or get_rate_limit_redis_client()
        self._default_limit = default_requests_per_minute
        self._path_limits = {
            CREATE_PATH: create_requests_per_minute,
            REFRESH_PATH: refresh_requests_per_minute,
        }
        self._window_milliseconds = _WINDOW_SECONDS * 1000

    async def dispatch(self, request: Request, call_next) -> Response:
        """Reject requests exceeding the configured per-minute threshold."""
        if request.url.path.startswith(_EXEMPT_PREFIXES):
            return await call_next(request)

        limit = self._path_limits.get(request.url.path, self._default_limit)
        bucket_key = f"rate_limit:{request.url.path}:{extract_client_ip(request) or 'unknown'}"
        now_ms = int(time.time() * 1000)
        window_start = now_ms - self._window_milliseconds

        try:
            await self._redis.zremrangebyscore(bucket_key, "-inf", window_start)
            current_count = await self._redis.zcard(bucket_key)
            if current_count >= limit:
                logger.warning(
                    "rate_limit_exceeded",
                    path=request.url.path,
                    method=request.method,
                    limit=limit,
                )
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded.", "code": "rate_limited"},
                    headers={"Retry-After": str(_WINDOW_SECONDS)},
                )

            member = f"{now_ms}:{uuid4()}"
            await self._redis.zadd(bucket_key, {member: now_ms})
            await self._redis.expire(bucket_key, math.ceil(self._window_milliseconds / 1000) + 1)
        except RedisError:
            # Limiter outages must not take session checks down with them.
            logger.warning(
                "rate_limit_backend_unavailable",
                path=request.url.path,
                method=request.method,
            )

        return await call_next(request)
