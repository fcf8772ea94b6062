from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "0",
}


class SlidingWindowLimiter:
    """Per-key request counter over a sliding time window.

    Keys whose hits have all aged out are dropped, at most once per window,
    so memory follows the set of recently active clients.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._next_sweep = clock() + window_seconds
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window_seconds > 0

    def __len__(self) -> int:
        return len(self._hits)

    def _prune(self, key: str, now: float) -> Optional[Deque[float]]:
        hits = self._hits.get(key)
        if hits is None:
            return None
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
            return None
        return hits

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            self._prune(key, now)
        self._next_sweep = now + self.window_seconds

    def hit(self, key: str) -> bool:
        """Record a request; False when the key is over its limit."""
        if not self.enabled:
            return True
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            hits = self._prune(key, now)
            if hits is None:
                hits = self._hits[key] = deque()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def retry_after(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            hits = self._prune(key, now)
            if not hits:
                return 0
            return max(0, int(self.window_seconds - (now - hits[0])) + 1)


def install(app: FastAPI, limiter: SlidingWindowLimiter) -> None:
    @app.middleware("http")
    async def _rate_limit(request: Request, call_next):
        if request.url.path.startswith("/api/"):
            client = request.client.host if request.client else "unknown"
            if not limiter.hit(client):
                logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
                return JSONResponse(
                    status_code=429,
                    content={
                        "error": "Too many requests from this IP, please try again later.",
                        "message": f"Limit is {limiter.max_requests} requests per {limiter.window_seconds} seconds",
                    },
                    headers={"Retry-After": str(limiter.retry_after(client))},
                )
        return await call_next(request)

    @app.middleware("http")
    async def _security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
