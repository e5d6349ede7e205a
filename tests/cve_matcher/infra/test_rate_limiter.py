from __future__ import annotations

from cve_matcher.infra.rate_limiter import SimpleRateLimiter


def test_simple_rate_limiter_enforces_interval(clock):
    rl = SimpleRateLimiter(rps=10.0, clock=clock)
    rl.acquire()
    rl.acquire()
    assert len(clock.sleeps) == 1
    assert abs(clock.sleeps[0] - 0.1) < 1e-9


def test_simple_rate_limiter_does_not_wait_after_idle(clock):
    rl = SimpleRateLimiter(rps=2.0, clock=clock)
    rl.acquire()
    clock.advance(5)
    rl.acquire()
    assert clock.sleeps == []
