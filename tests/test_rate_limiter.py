"""
Tests for the fixed-window rate limiter.
"""
from browser_control.utils.rate_limiter import RateLimiter

from conftest import FakeClock


def test_tokens_run_out_within_a_window():
    clock = FakeClock()
    limiter = RateLimiter(3, 1.0, clock=clock)

    assert [limiter.can_make_request() for _ in range(4)] == [True, True, True, False]


def test_tokens_replenish_after_the_interval():
    clock = FakeClock()
    limiter = RateLimiter(1, 1.0, clock=clock)
    assert limiter.can_make_request()
    assert not limiter.can_make_request()

    clock.advance(0.999)
    assert not limiter.can_make_request()

    clock.advance(0.001)
    assert limiter.can_make_request()


def test_retry_after_counts_down():
    clock = FakeClock()
    limiter = RateLimiter(1, 60.0, clock=clock)
    limiter.can_make_request()

    clock.advance(15)

    assert limiter.retry_after() == 45


def test_capacity_check_does_not_take_a_token():
    clock = FakeClock()
    limiter = RateLimiter(1, 1.0, clock=clock)

    assert limiter.has_capacity()
    assert limiter.has_capacity()
    assert limiter.can_make_request()
    assert not limiter.has_capacity()

    clock.advance(1.0)
    assert limiter.has_capacity()
