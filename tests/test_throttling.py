from __future__ import annotations

import threading
import time

import pytest

from rec_mapper.geocoding.models import GeocodeProvider
from rec_mapper.geocoding.throttling import (
    MinIntervalRateLimiter,
    NoOpRateLimiter,
    get_shared_rate_limiter,
    reset_shared_rate_limiters,
)


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def fresh_registry():
    reset_shared_rate_limiters()
    yield
    reset_shared_rate_limiters()


def test_first_request_does_not_wait(clock):
    limiter = MinIntervalRateLimiter(1.1, clock=clock, sleep=clock.sleep)
    limiter.wait()
    assert clock.sleeps == []


def test_waits_for_remaining_interval(clock):
    limiter = MinIntervalRateLimiter(1.1, clock=clock, sleep=clock.sleep)
    limiter.wait()
    clock.now += 0.5
    limiter.wait()
    assert clock.sleeps == [pytest.approx(0.6)]


def test_no_wait_once_interval_has_passed(clock):
    limiter = MinIntervalRateLimiter(1.1, clock=clock, sleep=clock.sleep)
    limiter.wait()
    clock.now += 5.0
    limiter.wait()
    assert clock.sleeps == []


def test_interval_is_measured_from_completion(clock):
    limiter = MinIntervalRateLimiter(1.0, clock=clock, sleep=clock.sleep)
    with limiter.slot():
        clock.now += 3.0  # slow request
    with limiter.slot():
        pass
    assert clock.sleeps == [pytest.approx(1.0)]


def test_slot_releases_on_error(clock):
    limiter = MinIntervalRateLimiter(0.0, clock=clock, sleep=clock.sleep)
    with pytest.raises(RuntimeError):
        with limiter.slot():
            raise RuntimeError("request failed")
    # the lock was released, so this does not deadlock
    limiter.wait()


def test_interrupted_sleep_releases_lock(clock):
    calls = []

    def sleep(seconds):
        calls.append(seconds)
        if len(calls) == 1:
            raise KeyboardInterrupt
        clock.sleep(seconds)

    limiter = MinIntervalRateLimiter(1.0, clock=clock, sleep=sleep)
    limiter.wait()
    with pytest.raises(KeyboardInterrupt):
        limiter.acquire()
    assert not limiter.lock.locked()

    limiter.wait()
    assert len(calls) == 2


def test_concurrent_slots_are_serialized_and_spaced():
    limiter = MinIntervalRateLimiter(0.2)
    barrier = threading.Barrier(2)
    spans: list[tuple[float, float]] = []

    def request():
        barrier.wait()
        with limiter.slot():
            started = time.perf_counter()
            time.sleep(0.05)
            spans.append((started, time.perf_counter()))

    threads = [threading.Thread(target=request) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
        assert not t.is_alive()

    (_, first_end), (second_start, _) = sorted(spans)
    assert second_start - first_end >= 0.2 - 1e-3


def test_invalid_arguments(clock):
    with pytest.raises(ValueError):
        MinIntervalRateLimiter(-1)
    limiter = MinIntervalRateLimiter(1.0, clock=clock, sleep=clock.sleep)
    with pytest.raises(ValueError):
        limiter.acquire(0)


def test_noop_limiter_never_blocks():
    limiter = NoOpRateLimiter()
    for _ in range(3):
        with limiter.slot():
            pass
    limiter.wait()


def test_shared_limiter_is_per_provider_and_only_widens():
    osm = get_shared_rate_limiter(GeocodeProvider.NOMINATIM, 1.1)
    assert get_shared_rate_limiter("osm", 0.5) is osm
    assert osm.min_interval_s == 1.1

    get_shared_rate_limiter(GeocodeProvider.NOMINATIM, 2.0)
    assert osm.min_interval_s == 2.0

    assert get_shared_rate_limiter(GeocodeProvider.GOOGLE, 0.1) is not osm
