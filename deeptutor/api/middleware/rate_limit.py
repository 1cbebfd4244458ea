"""
Per-client rate limiting with sliding window.
"""

import time
from collections import defaultdict
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from deeptutor.shared.config import settings
from deeptutor.shared.logging import get_logger

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """In-memory sliding window rate limiter per client."""

    def __init__(self, requests_per_minute: int = 30):
        self.requests_per_minute = requests_per_minute
        self.window_seconds = 60
        # client_id -> request timestamps in window
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _prune(self, client_id: str) -> list[float]:
        """Drop expired timestamps; clients with none left are forgotten."""
        cutoff = time.time() - self.window_seconds
        recent = [t for t in self._requests.get(client_id, []) if t > cutoff]
        if recent:
            self._requests[client_id] = recent
        else:
            self._requests.pop(client_id, None)
        return recent

    def is_allowed(self, client_id: str) -> bool:
        return len(self._prune(client_id)) < self.requests_per_minute

    def record(self, client_id: str):
        self._requests[client_id].append(time.time())

    def retry_after_seconds(self, client_id: str) -> int:
        """Seconds until the oldest request in the window expires."""
        recent = self._prune(client_id)
        if len(recent) < self.requests_per_minute:
            return 0
        oldest = min(recent)
        return max(1, int(self.window_seconds - (time.time() - oldest)))

    @property
    def tracked_clients(self) -> int:
        return len(self._requests)


def get_client_id(request: Request, trust_forwarded_for: bool = False) -> Optional[str]:
    """
    Identify the caller for rate limiting.

    X-Forwarded-For is client-controlled; it is only read when the service runs
    behind a proxy that sets it.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
    client = request.client
    if client:
        return f"ip:{client.host}"
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client rate limiting middleware."""

    def __init__(
        self,
        app,
        requests_per_minute: Optional[int] = None,
        skip_paths: Optional[list[str]] = None,
        trust_forwarded_for: Optional[bool] = None,
        client_id_func: Optional[Callable[[Request], Optional[str]]] = None,
    ):
        super().__init__(app)
        self.limiter = SlidingWindowRateLimiter(
            requests_per_minute or settings.api.rate_limit_requests_per_minute
        )
        self.skip_paths = set(skip_paths or ["/health", "/docs", "/openapi.json", "/redoc"])
        if trust_forwarded_for is None:
            trust_forwarded_for = settings.api.trust_forwarded_for
        self.client_id_func = client_id_func or (
            lambda request: get_client_id(request, trust_forwarded_for)
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.skip_paths or path.startswith("/docs") or path.startswith("/redoc"):
            return await call_next(request)

        client_id = self.client_id_func(request)
        if not client_id:
            return await call_next(request)

        if not self.limiter.is_allowed(client_id):
            retry_after = self.limiter.retry_after_seconds(client_id)
            logger.warning(
                "Rate limit exceeded",
                extra={"client_id": client_id[:16], "retry_after": retry_after},
            )
            return Response(
                content='{"error":"Rate limit exceeded. Try again later."}',
                status_code=429,
                headers={"Retry-After": str(retry_after), "Content-Type": "application/json"},
            )

        self.limiter.record(client_id)
        return await call_next(request)
