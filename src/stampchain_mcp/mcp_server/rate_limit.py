"""Per-session request rate limiting."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable

import structlog

from ..core.errors import RateLimitError

logger = structlog.get_logger(__name__)


class MCPRateLimiter:
    """Rate limiter for tool calls.

    Uses a sliding window algorithm to limit requests per key (typically a
    session id). All access happens on the event loop thread.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests per window
            window_seconds: Window size in seconds
            clock: Monotonic time source
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._last_cleanup = clock()

    async def allow(self, key: str) -> bool:
        """Check if request is allowed and record it.

        Args:
            key: Rate limit key

        Returns:
            True if request is allowed
        """
        now = self._clock()
        cutoff = now - self.window_seconds

        if now - self._last_cleanup > self.window_seconds:
            self._cleanup(now)
            self._last_cleanup = now

        bucket = self._requests.setdefault(key, deque())
        while bucket and bucket[0] < cutoff:
            bucket.popleft()

        if len(bucket) >= self.max_requests:
            logger.warning("mcp_rate_limit_exceeded", key=key, limit=self.max_requests)
            return False

        bucket.append(now)
        return True

    async def check(self, key: str) -> None:
        """Record a request or raise when over the limit.

        Raises:
            RateLimitError: If ``key`` has exhausted its window
        """
        if await self.allow(key):
            return
        _, reset_in = await self.get_remaining(key)
        raise RateLimitError(
            f"Rate limit exceeded: {self.max_requests} requests per "
            f"{self.window_seconds:g} seconds",
            retry_after=round(reset_in, 3),
            limit=self.max_requests,
        )

    def _cleanup(self, now: float) -> None:
        stale_before = now - (self.window_seconds * 2)
        stale_keys = [
            key
            for key, bucket in self._requests.items()
            if not bucket or bucket[-1] < stale_before
        ]
        for key in stale_keys:
            del self._requests[key]

    async def get_remaining(self, key: str) -> tuple[int, float]:
        """Get remaining requests and reset time.

        Args:
            key: Rate limit key

        Returns:
            Tuple of (remaining_requests, seconds_until_reset)
        """
        now = self._clock()
        cutoff = now - self.window_seconds

        bucket = self._requests.get(key, deque())
        while bucket and bucket[0] < cutoff:
            bucket.popleft()

        remaining = max(0, self.max_requests - len(bucket))
        if bucket:
            seconds_until_reset = max(0.0, bucket[0] + self.window_seconds - now)
        else:
            seconds_until_reset = 0.0
        return remaining, seconds_until_reset

    def forget(self, key: str) -> None:
        """Drop the window for a key, e.g. when its session ends."""
        self._requests.pop(key, None)
