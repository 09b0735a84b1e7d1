from __future__ import annotations

from dataclasses import dataclass

import redis
from fastapi import Depends, HTTPException, Request

from app.core.config import settings
from app.core.redis_client import get_redis


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int


def client_ip(request: Request) -> str | None:
    if settings.trust_proxy_headers:
        xri = str(request.headers.get("x-real-ip") or "").strip()
        if xri:
            return xri
        xff = str(request.headers.get("x-forwarded-for") or "")
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    if request.client and request.client.host:
        return request.client.host
    return None


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int):
    """Fixed-window limiter keyed on the client address.

    Redis being unavailable lets the request through; rate limiting is not
    worth an outage of the learning endpoints.
    """

    async def _dep(request: Request) -> RateLimit:
        key = f"rl:{key_prefix}:{client_ip(request) or 'unknown'}"
        rl = RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

        r = get_redis()
        try:
            current = int(r.incr(key))
            if current == 1:
                r.expire(key, rl.window_seconds)
            if current <= rl.limit:
                return rl
            ttl = r.ttl(key)
        except redis.RedisError:
            return rl

        retry_after = int(ttl) if ttl and ttl > 0 else rl.window_seconds
        raise HTTPException(
            status_code=429,
            detail="rate limit exceeded",
            headers={"Retry-After": str(retry_after)},
        )

    return Depends(_dep)
