"""
Geocoding provider adapters implementing the Geocoder interface.

Two backends are supported:
- Nominatim (OpenStreetMap): no key, strict one-request-per-second policy
  Reference: https://nominatim.org/release-docs/latest/api/Search/
- Google Geocoding API: API key, richer match-quality metadata
  Reference: https://developers.google.com/maps/documentation/geocoding/requests-geocoding

Both translate their provider-specific statuses into the four-way
GeocodeResult union and never pick the first of several candidates.
"""

import time
from abc import abstractmethod
from typing import Any, ClassVar, Optional, List
import logging

import requests

from ..utils.errors import ProviderAuthError, ProviderNetworkError, ProviderRateLimited
from .base import Geocoder, RateLimiter
from .models import (
    FailureReason,
    Failed,
    GeocodeProvider,
    GeocodeResult,
    GeocodingConfig,
    MatchQuality,
    NeedsDisambiguation,
    NotFound,
    Resolved,
)
from .throttling import get_shared_rate_limiter

logger = logging.getLogger(__name__)


class HTTPGeocoder(Geocoder):
    """
    Shared request/retry machinery for HTTP geocoding providers.

    Subclasses implement `_query()` (transport plus provider status
    checks, raising GeocodingError subclasses) and `_parse()` (payload to
    GeocodeResult).
    """

    PROVIDER: ClassVar[GeocodeProvider]

    def __init__(
        self,
        timeout: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 2,
        retry_delay_s: float = 2.0,
        session: Optional[requests.Session] = None,
        min_interval_s: float = 0.0,
    ):
        """
        Args:
            timeout: HTTP request timeout in seconds
            rate_limiter: Limiter to use (defaults to the process-wide one for the provider)
            max_retries: Attempts on transport errors and rate limiting
            retry_delay_s: Base delay between attempts (doubles each time)
            session: Optional requests session (tests pass a fake)
            min_interval_s: Spacing for the shared limiter when none is given
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.timeout = timeout
        self.rate_limiter = rate_limiter or get_shared_rate_limiter(self.PROVIDER, min_interval_s)
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.session = session or requests.Session()

    def _precheck(self) -> Optional[Failed]:
        """Return a Failed result when the adapter cannot run at all."""
        return None

    @abstractmethod
    def _query(self, query: str) -> Any:
        """Fetch the raw payload for a query, raising GeocodingError subclasses."""
        ...

    @abstractmethod
    def _parse(self, payload: Any) -> GeocodeResult:
        ...

    def resolve(self, query: str) -> GeocodeResult:
        """
        Geocode a single query.

        Handles retries and rate limiting. Authentication failures are
        returned immediately; transport errors and rate limiting are
        retried with exponential backoff before giving up.

        Args:
            query: Free-text location

        Returns:
            GeocodeResult; never raises for provider or transport errors
        """
        query = (query or "").strip()
        if not query:
            return Failed("Empty query", retryable=False, reason=FailureReason.INVALID_REQUEST)

        precheck = self._precheck()
        if precheck is not None:
            return precheck

        failure: Optional[Failed] = None
        for attempt in range(self.max_retries):
            try:
                with self.rate_limiter.slot():
                    payload = self._query(query)
                return self._parse(payload)
            except ProviderAuthError as e:
                logger.error(f"{self.PROVIDER.value} rejected credentials: {e}")
                return Failed(str(e), retryable=False, reason=FailureReason.AUTH, http_status=e.http_status)
            except ProviderRateLimited as e:
                failure = Failed(str(e), retryable=True, reason=FailureReason.RATE_LIMITED, http_status=e.http_status)
            except ProviderNetworkError as e:
                failure = Failed(str(e), retryable=False, reason=FailureReason.NETWORK, http_status=e.http_status)

            logger.warning(
                f"Attempt {attempt+1}/{self.max_retries} failed for "
                f"'{query[:60]}' via {self.PROVIDER.value}: {failure.message}"
            )
            if attempt < self.max_retries - 1:
                time.sleep(self.retry_delay_s * (2 ** attempt))  # exponential backoff

        return failure

    def _get(self, url: str, params: dict[str, Any], headers: Optional[dict[str, str]] = None) -> Any:
        """
        HTTP GET returning the decoded JSON body.

        Raises:
            ProviderNetworkError: On transport failure, bad status or bad JSON
            ProviderRateLimited: On HTTP 429
            ProviderAuthError: On HTTP 401/403
        """
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderNetworkError(f"{type(e).__name__}: {e}") from e

        logger.debug(f"{self.PROVIDER.value} query status: {response.status_code}")

        if response.status_code == 429:
            raise ProviderRateLimited("HTTP 429: too many requests", http_status=429)
        if response.status_code in (401, 403):
            raise ProviderAuthError(f"HTTP {response.status_code}: access denied", http_status=response.status_code)
        if not response.ok:
            raise ProviderNetworkError(f"HTTP {response.status_code}", http_status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderNetworkError("Response was not valid JSON", http_status=response.status_code) from e

    @staticmethod
    def _from_candidates(candidates: List[Resolved]) -> GeocodeResult:
        if not candidates:
            return NotFound()
        if len(candidates) == 1:
            return candidates[0]
        return NeedsDisambiguation(tuple(candidates))


class NominatimGeocoder(HTTPGeocoder):
    """
    OpenStreetMap Nominatim search API.

    No key is needed, but the usage policy requires an identifying
    User-Agent and at most one request per second across the process.
    """

    PROVIDER = GeocodeProvider.NOMINATIM

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org/search",
        user_agent: str = "RecMapper/1.0 (address mapping)",
        limit: int = 5,
        min_interval_s: float = 1.1,
        **kwargs: Any,
    ):
        super().__init__(min_interval_s=min_interval_s, **kwargs)
        self.base_url = base_url
        self.user_agent = user_agent
        self.limit = limit
        logger.info(f"Initialized NominatimGeocoder: {base_url}, retries={self.max_retries}, timeout={self.timeout}s")

    def _query(self, query: str) -> Any:
        params = {
            "format": "json",
            "q": query,
            "limit": self.limit,
            "addressdetails": 1,
        }
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        logger.debug(f"Querying Nominatim: {query}")
        return self._get(self.base_url, params=params, headers=headers)

    @staticmethod
    def _candidate(row: dict[str, Any]) -> Optional[Resolved]:
        # Nominatim returns coordinates as strings
        try:
            lat = float(row["lat"])
            lng = float(row["lon"])
        except (KeyError, TypeError, ValueError):
            return None
        place_id = row.get("place_id")
        return Resolved(
            lat=lat,
            lng=lng,
            formatted_address=row.get("display_name") or "",
            place_id=str(place_id) if place_id is not None else None,
            match_quality=MatchQuality.APPROXIMATE,
        )

    def _parse(self, payload: Any) -> GeocodeResult:
        if not isinstance(payload, list):
            return Failed("Unexpected Nominatim response shape", retryable=False, reason=FailureReason.PROVIDER_ERROR)
        candidates = [c for c in (self._candidate(r) for r in payload if isinstance(r, dict)) if c is not None and c.is_success()]
        return self._from_candidates(candidates)


class GoogleGeocoder(HTTPGeocoder):
    """
    Google Geocoding API.

    Reports match quality from `geometry.location_type` and keeps the
    `partial_match` flag. A missing or rejected key is an AUTH failure,
    distinct from NotFound.
    """

    PROVIDER = GeocodeProvider.GOOGLE

    LOCATION_TYPES: ClassVar[dict[str, MatchQuality]] = {
        "ROOFTOP": MatchQuality.ROOFTOP_EXACT,
        "RANGE_INTERPOLATED": MatchQuality.RANGE_INTERPOLATED,
        "GEOMETRIC_CENTER": MatchQuality.GEOMETRIC_CENTER,
        "APPROXIMATE": MatchQuality.APPROXIMATE,
    }
    RATE_LIMIT_STATUSES: ClassVar[tuple[str, ...]] = ("OVER_QUERY_LIMIT", "RESOURCE_EXHAUSTED")

    def __init__(
        self,
        api_key: Optional[str],
        api_base_url: str = "https://maps.googleapis.com/maps/api/geocode/json",
        min_interval_s: float = 0.1,
        **kwargs: Any,
    ):
        super().__init__(min_interval_s=min_interval_s, **kwargs)
        self.api_key = api_key
        self.api_base_url = api_base_url
        logger.info(f"Initialized GoogleGeocoder: {api_base_url}, retries={self.max_retries}, timeout={self.timeout}s")

    def _precheck(self) -> Optional[Failed]:
        if not self.api_key:
            return Failed("API key required", retryable=False, reason=FailureReason.AUTH)
        return None

    def _query(self, query: str) -> Any:
        payload = self._get(self.api_base_url, params={"address": query, "key": self.api_key})
        if not isinstance(payload, dict):
            raise ProviderNetworkError("Unexpected Google response shape")

        status = payload.get("status")
        message = payload.get("error_message")
        if status in self.RATE_LIMIT_STATUSES:
            raise ProviderRateLimited(message or "API rate limit exceeded")
        if status == "REQUEST_DENIED":
            raise ProviderAuthError(message or "Invalid API key")
        return payload

    def _candidate(self, row: dict[str, Any]) -> Optional[Resolved]:
        geometry = row.get("geometry")
        if not isinstance(geometry, dict):
            return None
        location = geometry.get("location")
        if not isinstance(location, dict):
            return None
        try:
            lat = float(location["lat"])
            lng = float(location["lng"])
        except (KeyError, TypeError, ValueError):
            return None
        return Resolved(
            lat=lat,
            lng=lng,
            formatted_address=row.get("formatted_address") or "",
            place_id=row.get("place_id"),
            match_quality=self.LOCATION_TYPES.get(geometry.get("location_type", ""), MatchQuality.APPROXIMATE),
            partial_match=bool(row.get("partial_match", False)),
        )

    def _parse(self, payload: dict[str, Any]) -> GeocodeResult:
        status = payload.get("status")
        message = payload.get("error_message")

        if status == "OK":
            rows = payload.get("results") or []
            if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
                return Failed("Unexpected Google results shape", retryable=False, reason=FailureReason.PROVIDER_ERROR)
            candidates = [c for c in (self._candidate(r) for r in rows) if c is not None]
            if rows and not candidates:
                return Failed("Google results had no usable coordinates", retryable=False, reason=FailureReason.PROVIDER_ERROR)
            return self._from_candidates(candidates)
        if status == "ZERO_RESULTS":
            return NotFound()
        if status == "INVALID_REQUEST":
            return Failed(message or "Invalid request", retryable=False, reason=FailureReason.INVALID_REQUEST)
        if status == "UNKNOWN_ERROR":
            return Failed(message or "Server error, try again", retryable=True, reason=FailureReason.PROVIDER_ERROR)
        return Failed(message or str(status or "Unknown error"), retryable=False, reason=FailureReason.PROVIDER_ERROR)


def create_geocoder(
    config: GeocodingConfig,
    session: Optional[requests.Session] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> HTTPGeocoder:
    """
    Build the provider adapter selected by the config.

    The variant is chosen once per batch; callers hold on to the returned
    geocoder rather than re-dispatching per query.
    """
    common: dict[str, Any] = {
        "timeout": config.timeout,
        "rate_limiter": rate_limiter,
        "max_retries": config.max_retries,
        "retry_delay_s": config.retry_delay_s,
        "session": session,
    }
    if config.provider == GeocodeProvider.GOOGLE:
        return GoogleGeocoder(api_key=config.api_key, min_interval_s=config.google_delay_s, **common)
    return NominatimGeocoder(
        user_agent=config.user_agent,
        limit=config.max_candidates,
        min_interval_s=config.nominatim_delay_s,
        **common,
    )
