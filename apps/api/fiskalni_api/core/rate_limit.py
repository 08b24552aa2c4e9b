from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from fiskalni_api.core.config import settings
from fiskalni_api.core.exceptions import RateLimitError, error_response


@dataclass(frozen=True)
class RateLimitRule:
    key_prefix: str
    limit: int
    window_seconds: int


GLOBAL_RULE = RateLimitRule(key_prefix="global", limit=settings.rate_limit_global_per_minute, window_seconds=60)
SYNC_RULE = RateLimitRule(key_prefix="sync", limit=settings.rate_limit_sync_per_minute, window_seconds=60)


def _extract_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _increment_and_check(redis: Redis, *, rule: RateLimitRule, ip: str) -> int | None:
    """Count one hit; return the seconds to wait when the rule is exceeded."""
    key = f"rate:{rule.key_prefix}:{ip}"
    value = await redis.incr(key)
    if value == 1:
        await redis.expire(key, rule.window_seconds)
    if int(value) <= rule.limit:
        return None
    ttl = await redis.ttl(key)
    return int(ttl) if ttl and int(ttl) > 0 else rule.window_seconds


def _too_many_requests(retry_after: int) -> Response:
    # Middleware sits outside the app exception handlers.
    return error_response(RateLimitError(retry_after=retry_after))


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        redis: Redis | None = getattr(request.app.state, "redis", None)
        if redis is None:
            return await call_next(request)

        ip = _extract_ip(request)
        try:
            retry_after = await _increment_and_check(redis, rule=GLOBAL_RULE, ip=ip)
            if retry_after is not None:
                return _too_many_requests(retry_after)

            if request.url.path.startswith("/sync/"):
                retry_after = await _increment_and_check(redis, rule=SYNC_RULE, ip=ip)
                if retry_after is not None:
                    return _too_many_requests(retry_after)
        except Exception:
            # Keep API available if Redis is temporarily unavailable.
            return await call_next(request)

        return await call_next(request)
