"""
Redis-backed sliding window rate limiter (per minute, HTTP layer).

Independent of the daily message quota, which is enforced by the
conversation core. Tiers:
  - Anonymous: 10 req/min
  - Identified (X-User-Id): 60 req/min
  - LLM-triggering endpoints (/chat, /ancestry): 5 req/min per caller
"""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from services.concierge.config import settings

logger = logging.getLogger(__name__)

LLM_PREFIXES = ("/chat", "/ancestry")
# Read-only chat endpoints stay on the general tiers
LLM_EXEMPT_PATHS = ("/chat/history", "/chat/sessions")
EXEMPT_PATHS = ("/health",)


def _get_rate_limit(path: str, method: str, is_authenticated: bool) -> tuple[int, str]:
    """Return (limit_per_min, tier_name) for the given path and auth state."""
    if method == "POST" and path.startswith(LLM_PREFIXES) and not path.startswith(LLM_EXEMPT_PATHS):
        return settings.rate_limit_llm_per_min, "llm"
    if is_authenticated:
        return settings.rate_limit_auth_per_min, "auth"
    return settings.rate_limit_anon_per_min, "anon"


def _get_client_key(request: Request) -> tuple[str, bool]:
    """Extract client identifier and whether the caller identified itself."""
    user_id = request.headers.get("x-user-id", "").strip()
    if user_id:
        return f"user:{user_id}", True
    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return f"ip:{client_ip}", False


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiter backed by Redis sorted sets."""

    def __init__(self, app, redis_client=None):
        super().__init__(app)
        self.redis = redis_client

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        if self.redis is None:
            return await call_next(request)

        client_key, is_authenticated = _get_client_key(request)
        limit, tier = _get_rate_limit(request.url.path, request.method, is_authenticated)
        window_key = f"ratelimit:{tier}:{client_key}"

        now = time.time()
        window_start = now - 60.0

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(window_key, 0, window_start)
            pipe.zcard(window_key)
            pipe.zadd(window_key, {f"{now}:{id(request)}": now})
            pipe.expire(window_key, 120)
            results = await pipe.execute()
        except RedisError as exc:
            # Limiter degrades open: requests pass through
            logger.warning("Rate limiter unavailable: %s", exc)
            return await call_next(request)

        current_count = results[1]

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, limit - current_count - 1)),
            "X-RateLimit-Reset": str(int(now + 60)),
        }

        if current_count >= limit:
            headers["Retry-After"] = "60"
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": {
                        "code": "RATE_LIMITED",
                        "message": "Muitas solicitações. Aguarde um minuto e tente novamente.",
                    },
                    "requestId": getattr(request.state, "request_id", ""),
                },
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
