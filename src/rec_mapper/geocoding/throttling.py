"""
Rate limiting implementations for controlling API request rates.

Provides thread-safe rate limiters to ensure compliance with provider
usage policies (Nominatim allows roughly one request per second).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .base import RateLimiter
from .models import GeocodeProvider

logger = logging.getLogger(__name__)


class MinIntervalRateLimiter(RateLimiter):
    """
    Rate gate with a minimum gap after the previous request completed.

    The gap is measured from completion, not from a fixed schedule, so it
    stretches naturally when requests are slow. The lock is held from
    acquire() to release(), which serializes concurrent callers behind
    the delay.
    """

    def __init__(
        self,
        min_interval_s: float,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate gate.

        Args:
            min_interval_s: Minimum seconds between one request finishing
                and the next one starting
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
        """
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")

        self.min_interval_s = float(min_interval_s)
        self.clock = clock
        self.sleep = sleep
        self.last_completed: Optional[float] = None
        self.lock = threading.Lock()

    def wait(self) -> None:
        """Block until it's safe to make a request, then count it as done."""
        self.acquire(1)
        self.release()

    def acquire(self, count: int = 1) -> None:
        """
        Block until the spacing since the last completion has elapsed.

        Args:
            count: Number of requests the caller will make under this slot
        """
        if count <= 0:
            raise ValueError("count must be > 0")

        self.lock.acquire()
        if self.last_completed is None:
            return
        delay_needed = self.last_completed + self.min_interval_s - self.clock()
        if delay_needed > 0:
            logger.debug(f"Rate limiter sleeping {delay_needed:.3f}s")
            try:
                self.sleep(delay_needed)
            except BaseException:
                # the caller never reaches release()
                self.lock.release()
                raise

    def release(self) -> None:
        self.last_completed = self.clock()
        self.lock.release()


class NoOpRateLimiter(RateLimiter):
    """
    Rate limiter that does nothing (for testing/development).

    Useful when you want to disable rate limiting without changing code.
    """

    def wait(self) -> None:
        """Do nothing."""
        pass

    def acquire(self, count: int = 1) -> None:
        """Do nothing."""
        pass


_SHARED_LIMITERS: dict[GeocodeProvider, MinIntervalRateLimiter] = {}
_SHARED_LOCK = threading.Lock()


def get_shared_rate_limiter(provider: GeocodeProvider, min_interval_s: float) -> MinIntervalRateLimiter:
    """
    Return the process-wide limiter for a provider.

    The first caller fixes the interval; later callers asking for a longer
    interval widen it, never narrow it.
    """
    provider = GeocodeProvider(provider)
    with _SHARED_LOCK:
        limiter = _SHARED_LIMITERS.get(provider)
        if limiter is None:
            limiter = MinIntervalRateLimiter(min_interval_s)
            _SHARED_LIMITERS[provider] = limiter
            logger.info(f"Created shared rate limiter for {provider.value}: {min_interval_s}s spacing")
        elif min_interval_s > limiter.min_interval_s:
            limiter.min_interval_s = float(min_interval_s)
        return limiter


def reset_shared_rate_limiters() -> None:
    with _SHARED_LOCK:
        _SHARED_LIMITERS.clear()
