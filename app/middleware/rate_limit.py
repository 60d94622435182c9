"""
Rate limiting middleware for the admin endpoints.

Sliding-window limiter keyed by client IP, held in process memory. Limits are read
from settings on every request so they can be changed (or disabled) at runtime.
"""

import logging
import time
from collections import defaultdict
from collections.abc import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._hits: dict[str, list[float]] = defaultdict(list)
        self._clock = clock

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record a hit for key and return False if it is over the limit."""
        now = self._clock()
        cutoff = now - window_seconds
        hits = [ts for ts in self._hits[key] if ts > cutoff]
        if len(hits) >= limit:
            self._hits[key] = hits
            return False
        hits.append(now)
        self._hits[key] = hits
        return True

    def reset(self) -> None:
        self._hits.clear()


def get_client_ip(request: Request) -> str:
    """Client IP, preferring proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting for requests whose path starts with one of rate_limited_paths."""

    def __init__(self, app, rate_limited_paths: list[str], limiter: SlidingWindowLimiter | None = None):
        super().__init__(app)
        self.rate_limited_paths = rate_limited_paths
        self.limiter = limiter if limiter is not None else SlidingWindowLimiter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if settings.rate_limit_enabled and any(path.startswith(p) for p in self.rate_limited_paths):
            client_ip = get_client_ip(request)
            limit = settings.rate_limit_requests
            window = settings.rate_limit_window_seconds
            if not self.limiter.allow(client_ip, limit, window):
                logger.warning(
                    f"Rate limit exceeded for {client_ip} on {path} ({limit} requests per {window}s)"
                )
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "error": "Rate limit exceeded",
                        "message": f"Too many requests. Limit: {limit} requests per {window} seconds.",
                        "retry_after": window,
                    },
                    headers={"Retry-After": str(window)},
                )

        return await call_next(request)
