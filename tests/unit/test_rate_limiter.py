from __future__ import annotations

import pytest

from ledger.rate_limiter import RateLimitError, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t
        self.slept = []

    def __call__(self) -> float:  # acts like time.monotonic
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt

    def sleep(self, dt: float) -> None:
        self.slept.append(dt)
        self.t += dt


def test_non_blocking_exceeds_limit():
    clock = FakeClock()
    rl = SlidingWindowRateLimiter(max_calls=2, per_seconds=1.0, clock=clock, sleep=clock.sleep)

    rl.acquire(blocking=True)
    rl.acquire(blocking=True)
    with pytest.raises(RateLimitError):
        rl.acquire(blocking=False)

    clock.advance(1.0)
    rl.acquire(blocking=False)  # now allowed


def test_blocking_waits_for_oldest_permit():
    clock = FakeClock()
    rl = SlidingWindowRateLimiter(max_calls=2, per_seconds=1.0, clock=clock, sleep=clock.sleep)

    rl.acquire()
    clock.advance(0.25)
    rl.acquire()
    waited = rl.acquire()

    assert waited == pytest.approx(0.75)
    assert clock.slept == [pytest.approx(0.75)]


def test_wait_time_is_zero_when_free():
    clock = FakeClock()
    rl = SlidingWindowRateLimiter(max_calls=1, per_seconds=10.0, clock=clock, sleep=clock.sleep)
    assert rl.wait_time() == 0.0
    rl.acquire()
    assert rl.wait_time() == pytest.approx(10.0)
    clock.advance(10.0)
    assert rl.wait_time() == 0.0


@pytest.mark.parametrize("max_calls,per_seconds", [(0, 1.0), (1, 0.0), (-1, 1.0)])
def test_invalid_configuration(max_calls, per_seconds):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_calls=max_calls, per_seconds=per_seconds)
