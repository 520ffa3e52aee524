"""Redis-backed fixed window rate limiting, tiered by path."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gifts.config import Settings
from gifts.redis_client import get_redis

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version", "/api/health"})

SENSITIVE_PATHS = (
    "/api/auth/login",
    "/api/auth/register/request-code",
    "/api/auth/register/verify",
    "/api/auth/password/request-reset-code",
    "/api/auth/password/reset",
)


@dataclass(frozen=True)
class RateTier:
    name: str
    prefixes: tuple[str, ...]
    limit: int
    message: str

    def matches(self, path: str) -> bool:
        return any(path == p or path.startswith(p + "/") for p in self.prefixes)


def build_tiers(settings: Settings) -> list[RateTier]:
    """General API, auth and sensitive-auth tiers; a request counts against each tier it matches."""
    return [
        RateTier("api", ("/api",), settings.rate_limit_requests, "请求过于频繁，请稍后再试"),
        RateTier("auth", ("/api/auth",), settings.rate_limit_auth, "认证请求过于频繁，请稍后再试"),
        RateTier("sensitive", SENSITIVE_PATHS, settings.rate_limit_sensitive, "敏感操作过于频繁，请 1 分钟后再试"),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests per IP and tier using Redis counters."""

    def __init__(self, app: Any, tiers: list[RateTier], window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.tiers = tiers
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check every matching tier, return 429 if any is exceeded."""
        path = request.url.path
        if path in _EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)
        tiers = [tier for tier in self.tiers if tier.matches(path)]
        if not tiers:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        window = int(time.time()) // self.window_seconds

        try:
            redis = get_redis()
            pipe = redis.pipeline()
            for tier in tiers:
                key = f"ratelimit:{tier.name}:{client_ip}:{window}"
                pipe.incr(key)
                pipe.expire(key, self.window_seconds + 1)
            results: list[Any] = await pipe.execute()
        except RuntimeError:
            # Redis not initialized, let the request through without rate limiting
            return await call_next(request)

        counts = [int(c) for c in results[::2]]
        for tier, count in zip(tiers, counts):
            if count > tier.limit:
                return JSONResponse(
                    status_code=429,
                    content={"detail": tier.message},
                    headers={
                        "Retry-After": str(self.window_seconds),
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Limit": str(tier.limit),
                    },
                )

        # Report the tightest tier.
        tier, count = min(zip(tiers, counts), key=lambda tc: tc[0].limit - tc[1])
        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(max(0, tier.limit - count))
        response.headers["X-RateLimit-Limit"] = str(tier.limit)
        return response
