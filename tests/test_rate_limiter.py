import pytest

from core.exceptions import RateLimitExceededError
from core.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_allows_up_to_limit_then_rejects_with_retry_after():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=2, window_s=10, clock=clock)

    limiter.check("a")
    clock.t += 1
    limiter.check("a")
    with pytest.raises(RateLimitExceededError) as info:
        limiter.check("a")

    assert info.value.status_code == 429
    assert info.value.retry_after_s == pytest.approx(9.0)


def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=1, window_s=10, clock=clock)

    limiter.check("a")
    clock.t += 10.5
    limiter.check("a")


def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(limit=1, window_s=10, clock=FakeClock())

    limiter.check("a")
    limiter.check("b")
    with pytest.raises(RateLimitExceededError):
        limiter.check("a")


def test_zero_limit_disables():
    limiter = SlidingWindowRateLimiter(limit=0, window_s=10, clock=FakeClock())

    for _ in range(100):
        limiter.check("a")
    assert len(limiter) == 0


def test_idle_keys_are_evicted():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=5, window_s=10, clock=clock)

    limiter.check("a")
    limiter.check("b")
    clock.t += 11
    limiter.check("c")

    assert len(limiter) == 1


def test_key_table_is_bounded_lru():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(limit=1, window_s=60, max_keys=2, clock=clock)

    limiter.check("a")
    limiter.check("b")
    limiter.check("c")

    assert len(limiter) == 2
    # "a" was evicted, so it starts fresh
    limiter.check("a")
    with pytest.raises(RateLimitExceededError):
        limiter.check("c")
