"""
Abstract base classes for the geocoding system.

These define the interfaces that all concrete implementations must follow.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import ClassVar, Iterator, Optional

from .models import GeocodeProvider, GeocodeResult


class Geocoder(ABC):
    """
    Abstract base for geocoding providers.

    A geocoder turns one free-text query into one of the four
    GeocodeResult variants. Provider-specific statuses and transport
    failures never escape as exceptions.
    """

    PROVIDER: ClassVar[GeocodeProvider]

    @abstractmethod
    def resolve(self, query: str) -> GeocodeResult:
        """
        Geocode a single query.

        Args:
            query: Free-text location

        Returns:
            Resolved, NeedsDisambiguation, NotFound or Failed
        """
        pass


class GeocodeCache(ABC):
    """
    Abstract base for the geocode result cache.

    Keys are provider-scoped; the same text cached for two providers is
    two independent entries. Failed results are never stored.
    """

    @abstractmethod
    def get(self, provider: GeocodeProvider, query: str) -> Optional[GeocodeResult]:
        """Return the cached result, or None on a miss."""
        pass

    @abstractmethod
    def put(self, provider: GeocodeProvider, query: str, result: GeocodeResult) -> bool:
        """Store a result. Returns False when the result is not cacheable."""
        pass

    @abstractmethod
    def clear(self, provider: Optional[GeocodeProvider] = None) -> int:
        """Remove entries for one provider, or all. Returns the count removed."""
        pass

    def close(self) -> None:
        """Close connections/cleanup resources."""
        pass


class RateLimiter(ABC):
    """
    Abstract base for rate limiters.

    Rate limiters control the rate at which requests are made,
    useful for respecting API rate limits.
    """

    @abstractmethod
    def wait(self) -> None:
        """Block until it's safe to make another request."""
        pass

    @abstractmethod
    def acquire(self, count: int = 1) -> None:
        """
        Acquire one or more request slots.

        Args:
            count: Number of requests to acquire (for bulk operations)
        """
        pass

    def release(self) -> None:
        """Mark the request made under the last acquire() as complete."""
        pass

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold a request slot for the duration of the block."""
        self.acquire()
        try:
            yield
        finally:
            self.release()
