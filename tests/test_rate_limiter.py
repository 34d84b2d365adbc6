"""Property-based tests for the sliding-window rate limiter."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from catalog_ingest.services.rate_limiter import RateLimiter


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_limiter(clock: FakeClock, max_requests: int, window: float, min_delay: float) -> RateLimiter:
    return RateLimiter(
        max_requests_per_window=max_requests,
        window_seconds=window,
        min_delay_seconds=min_delay,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.mark.asyncio
async def test_requests_under_capacity_do_not_wait() -> None:
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=3, window=10.0, min_delay=0.0)

    for _ in range(3):
        await limiter.acquire()

    assert clock.sleeps == []
    assert limiter.request_count_in_window() == 3


@pytest.mark.asyncio
async def test_full_window_waits_for_oldest_to_expire() -> None:
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=3, window=10.0, min_delay=0.0)

    for _ in range(4):
        await limiter.acquire()

    assert clock.sleeps == [pytest.approx(10.1)]
    assert limiter.request_count_in_window() == 1


@pytest.mark.asyncio
async def test_minimum_delay_between_requests() -> None:
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=20, window=60.0, min_delay=3.0)

    await limiter.acquire()
    clock.advance(1.0)
    await limiter.acquire()

    assert clock.sleeps == [pytest.approx(2.0)]


@pytest.mark.asyncio
async def test_no_delay_when_last_request_is_old_enough() -> None:
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests=20, window=60.0, min_delay=3.0)

    await limiter.acquire()
    clock.advance(5.0)
    await limiter.acquire()

    assert clock.sleeps == []


def test_rejects_empty_window() -> None:
    with pytest.raises(ValueError):
        RateLimiter(max_requests_per_window=0)


@given(
    max_requests=st.integers(min_value=1, max_value=6),
    window=st.floats(min_value=1.0, max_value=60.0, allow_nan=False, allow_infinity=False),
    min_delay=st.floats(min_value=0.0, max_value=5.0, allow_nan=False, allow_infinity=False),
    gaps=st.lists(
        st.floats(min_value=0.0, max_value=30.0, allow_nan=False, allow_infinity=False),
        min_size=1,
        max_size=40,
    ),
)
@settings(deadline=None, max_examples=100)
def test_sliding_window_is_never_exceeded(
    max_requests: int,
    window: float,
    min_delay: float,
    gaps: list[float],
) -> None:
    """Property: any window holds at most max_requests grants, spaced by min_delay."""
    clock = FakeClock()
    limiter = make_limiter(clock, max_requests, window, min_delay)
    granted: list[float] = []

    async def issue_requests() -> None:
        for gap in gaps:
            clock.advance(gap)
            await limiter.acquire()
            granted.append(clock())

    asyncio.run(issue_requests())

    for earlier, later in zip(granted, granted[max_requests:]):
        assert later - earlier >= window
    for earlier, later in zip(granted, granted[1:]):
        assert later - earlier >= min_delay - 1e-9
