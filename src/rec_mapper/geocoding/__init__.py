"""
- Models: Data structures (QueryItem, Resolved, NeedsDisambiguation, ...)
- Base classes: Abstract interfaces
- Providers: Nominatim and Google adapters
- Throttling: Rate limiting for API calls
- Cache: Backends for storing geocoding results
- Orchestrator: Resumable batch geocoding state machine
"""

from .models import (
    GeocodeProvider,
    GeocodeStatus,
    MatchQuality,
    FailureReason,
    Resolved,
    NeedsDisambiguation,
    NotFound,
    Failed,
    GeocodeResult,
    QueryItem,
    AddressRecord,
    GeocodingConfig,
    result_from_dict,
    validate_address_records,
)

from .base import (
    Geocoder,
    GeocodeCache,
    RateLimiter,
)

from .throttling import (
    MinIntervalRateLimiter,
    NoOpRateLimiter,
    get_shared_rate_limiter,
    reset_shared_rate_limiters,
)

from .providers import (
    NominatimGeocoder,
    GoogleGeocoder,
    create_geocoder,
)

from .cache import (
    InMemoryGeocodeCache,
    DuckDBGeocodeCache,
    cache_key,
)

from .orchestrator import (
    OrchestratorPhase,
    OrchestratorState,
    ResolvedRecord,
    ItemError,
    GeocodeOrchestrator,
)

__all__ = [
    # Models
    "GeocodeProvider",
    "GeocodeStatus",
    "MatchQuality",
    "FailureReason",
    "Resolved",
    "NeedsDisambiguation",
    "NotFound",
    "Failed",
    "GeocodeResult",
    "QueryItem",
    "AddressRecord",
    "GeocodingConfig",
    "result_from_dict",
    "validate_address_records",
    # Base classes
    "Geocoder",
    "GeocodeCache",
    "RateLimiter",
    # Throttling
    "MinIntervalRateLimiter",
    "NoOpRateLimiter",
    "get_shared_rate_limiter",
    "reset_shared_rate_limiters",
    # Providers
    "NominatimGeocoder",
    "GoogleGeocoder",
    "create_geocoder",
    # Cache
    "InMemoryGeocodeCache",
    "DuckDBGeocodeCache",
    "cache_key",
    # Orchestrator
    "OrchestratorPhase",
    "OrchestratorState",
    "ResolvedRecord",
    "ItemError",
    "GeocodeOrchestrator",
]
