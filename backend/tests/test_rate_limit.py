"""
Tests for in-memory rate limiter middleware.

Tests: RateLimiter class: sliding window, key isolation, reset.
"""
import time

import pytest

from middleware.rate_limit import RateLimiter


class TestRateLimiter:
    """Tests for the RateLimiter class."""

    @pytest.mark.unit
    def test_allows_requests_under_limit(self):
        """Requests under the limit should be allowed."""
        limiter = RateLimiter()
        for _ in range(5):
            assert limiter.check("testkey", max_requests=5, window_seconds=60) is True

    @pytest.mark.unit
    def test_blocks_requests_over_limit(self):
        """Request exceeding the limit should be blocked."""
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("testkey", max_requests=3, window_seconds=60)
        # 4th request should be blocked
        assert limiter.check("testkey", max_requests=3, window_seconds=60) is False

    @pytest.mark.unit
    def test_different_keys_independent(self):
        """Different keys should have independent limits."""
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("key1", max_requests=3, window_seconds=60)
        assert limiter.check("key1", max_requests=3, window_seconds=60) is False
        assert limiter.check("key2", max_requests=3, window_seconds=60) is True

    @pytest.mark.unit
    def test_window_expiry(self):
        """Requests should be allowed again after the window expires."""
        limiter = RateLimiter()
        for _ in range(2):
            limiter.check("testkey", max_requests=2, window_seconds=1)
        assert limiter.check("testkey", max_requests=2, window_seconds=1) is False
        time.sleep(1.1)
        assert limiter.check("testkey", max_requests=2, window_seconds=1) is True

    @pytest.mark.unit
    def test_old_entries_are_evicted(self):
        """Timestamps older than the window no longer count."""
        limiter = RateLimiter()
        old_time = time.time() - 120
        limiter._hits["testkey"].extend([old_time, old_time + 1, old_time + 2])
        assert limiter.check("testkey", max_requests=1, window_seconds=60) is True
        assert len(limiter._hits["testkey"]) == 1

    @pytest.mark.unit
    def test_reset_clears_all_keys(self):
        limiter = RateLimiter()
        limiter.check("once", max_requests=1, window_seconds=60)
        assert limiter.check("once", max_requests=1, window_seconds=60) is False
        limiter.reset()
        assert limiter.check("once", max_requests=1, window_seconds=60) is True
