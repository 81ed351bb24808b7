"""Tests for the observation quota limiter."""

import pytest

from src.weather.rate_limiter import RateLimiter


class TestRateLimiter:

    def test_allows_up_to_quota(self, clock):
        limiter = RateLimiter(max_calls=3, window_seconds=60, clock=clock)
        assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]
        assert limiter.remaining == 0

    def test_window_resets(self, clock):
        limiter = RateLimiter(max_calls=1, window_seconds=60, clock=clock)
        assert limiter.try_acquire() is True
        clock.advance(59)
        assert limiter.try_acquire() is False
        clock.advance(1)
        assert limiter.remaining == 1
        assert limiter.try_acquire() is True

    def test_remaining_before_first_call(self, clock):
        assert RateLimiter(max_calls=5, clock=clock).remaining == 5

    def test_remaining_does_not_consume(self, clock):
        limiter = RateLimiter(max_calls=2, window_seconds=60, clock=clock)
        limiter.try_acquire()
        assert limiter.remaining == 1
        assert limiter.remaining == 1

    def test_rejects_zero_quota(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls=0)
