"""Tests for the per-session rate limiter."""

import pytest

from stampchain_mcp.core.errors import RateLimitError
from stampchain_mcp.mcp_server.rate_limit import MCPRateLimiter


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestMCPRateLimiter:
    """Tests for MCPRateLimiter."""

    @pytest.mark.asyncio
    async def test_allows_within_limit(self):
        """Test requests within the limit."""
        limiter = MCPRateLimiter(max_requests=3, window_seconds=60)
        for _ in range(3):
            assert await limiter.allow("s1")
        assert not await limiter.allow("s1")

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        """Test that each key has its own window."""
        limiter = MCPRateLimiter(max_requests=1, window_seconds=60)
        assert await limiter.allow("s1")
        assert await limiter.allow("s2")
        assert not await limiter.allow("s1")

    @pytest.mark.asyncio
    async def test_window_slides(self):
        """Test that old requests fall out of the window."""
        clock = FakeMonotonic()
        limiter = MCPRateLimiter(max_requests=2, window_seconds=10, clock=clock)
        assert await limiter.allow("s1")
        clock.now += 5
        assert await limiter.allow("s1")
        assert not await limiter.allow("s1")

        clock.now += 5.5
        assert await limiter.allow("s1")

    @pytest.mark.asyncio
    async def test_check_raises(self):
        """Test that check raises RateLimitError with retry details."""
        clock = FakeMonotonic()
        limiter = MCPRateLimiter(max_requests=1, window_seconds=30, clock=clock)
        await limiter.check("s1")
        clock.now += 10
        with pytest.raises(RateLimitError, match="1 requests per 30 seconds") as exc_info:
            await limiter.check("s1")
        assert exc_info.value.retry_after == 20.0
        assert exc_info.value.limit == 1

    @pytest.mark.asyncio
    async def test_get_remaining(self):
        """Test remaining requests and reset time."""
        clock = FakeMonotonic()
        limiter = MCPRateLimiter(max_requests=5, window_seconds=60, clock=clock)
        assert await limiter.get_remaining("s1") == (5, 0.0)
        await limiter.allow("s1")
        clock.now += 15
        assert await limiter.get_remaining("s1") == (4, 45.0)

    @pytest.mark.asyncio
    async def test_forget(self):
        """Test dropping a key's window."""
        limiter = MCPRateLimiter(max_requests=1, window_seconds=60)
        await limiter.allow("s1")
        limiter.forget("s1")
        assert await limiter.allow("s1")
