"""
In-memory rate limiting for credential endpoints (admin login).

Sliding window of request timestamps per (client IP, route). Single-process
only; a multi-worker deployment needs a shared store instead.
"""
import time
import logging
from collections import defaultdict, deque

from fastapi import Request

from domain.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window counter keyed by an arbitrary string."""

    def __init__(self):
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _evict(self, key: str, window_seconds: int, now: float) -> deque[float]:
        hits = self._hits[key]
        while hits and hits[0] <= now - window_seconds:
            hits.popleft()
        return hits

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Record a hit and return True, or return False if the window is full."""
        now = time.time()
        hits = self._evict(key, window_seconds, now)
        if len(hits) >= max_requests:
            return False
        hits.append(now)
        return True

    def reset(self) -> None:
        self._hits.clear()


# Global rate limiter instance
_limiter = RateLimiter()


def rate_limit(max_requests: int = 10, window_seconds: int = 60):
    """
    FastAPI dependency factory.

    Usage:
        @router.post("/login")
        async def login(..., _rate=Depends(rate_limit(5, 300))):
    """
    async def _check_rate_limit(request: Request):
        client_ip = request.client.host if request.client else "unknown"
        key = f"{client_ip}:{request.url.path}"

        if not _limiter.check(key, max_requests, window_seconds):
            logger.warning(
                f"security: rate limit exceeded for {client_ip} on {request.url.path} "
                f"({max_requests}/{window_seconds}s)"
            )
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds.",
                details={"retryAfter": window_seconds},
            )

    return _check_rate_limit
