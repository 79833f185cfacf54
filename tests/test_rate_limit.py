from __future__ import annotations

from walletauth.auth.rate_limit import RateLimiter, get_rate_limiter, reset_rate_limiter


def test_allows_until_max_failures(clock) -> None:
    limiter = RateLimiter(max_attempts=3, window_seconds=60, clock=clock)

    assert limiter.check("1.2.3.4") == (True, 3)
    limiter.record_failure("1.2.3.4")
    limiter.record_failure("1.2.3.4")
    assert limiter.check("1.2.3.4") == (True, 1)
    limiter.record_failure("1.2.3.4")
    assert limiter.check("1.2.3.4") == (False, 0)

    # Other clients are unaffected.
    assert limiter.check("5.6.7.8") == (True, 3)


def test_failures_age_out_of_the_window(clock) -> None:
    limiter = RateLimiter(max_attempts=1, window_seconds=60, clock=clock)
    limiter.record_failure("ip")
    assert limiter.check("ip")[0] is False

    clock.advance(61)
    assert limiter.check("ip") == (True, 1)


def test_reset_clears_failures(clock) -> None:
    limiter = RateLimiter(max_attempts=1, window_seconds=60, clock=clock)
    limiter.record_failure("ip")
    limiter.reset("ip")
    assert limiter.check("ip")[0] is True


def test_zero_max_attempts_disables_limiting(clock) -> None:
    limiter = RateLimiter(max_attempts=0, window_seconds=60, clock=clock)
    for _ in range(50):
        limiter.record_failure("ip")
    assert limiter.check("ip") == (True, -1)


def test_global_limiter_is_shared_until_reset() -> None:
    first = get_rate_limiter(5, 60)
    assert get_rate_limiter(5, 60) is first
    reset_rate_limiter()
    assert get_rate_limiter(5, 60) is not first


def test_clients_that_never_return_are_forgotten(clock) -> None:
    limiter = RateLimiter(max_attempts=5, window_seconds=1, clock=clock)
    for i in range(1000):
        limiter.record_failure(f"2001:db8::{i:x}")
    assert len(limiter) == 1000

    clock.advance(3600)
    assert limiter.check("203.0.113.7") == (True, 5)
    assert len(limiter) == 0


def test_sweep_keeps_clients_still_inside_the_window(clock) -> None:
    limiter = RateLimiter(max_attempts=2, window_seconds=60, clock=clock)
    limiter.record_failure("old")
    clock.advance(61)
    limiter.record_failure("recent")

    assert len(limiter) == 1
    assert limiter.check("recent") == (True, 1)
