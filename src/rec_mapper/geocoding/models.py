"""
Core data models for geocoding.

These immutable, frozen dataclasses serve as the contract between the
providers, the cache and the orchestrator. A geocode result is one of
four variants: Resolved, NeedsDisambiguation, NotFound or Failed.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union
from enum import StrEnum
from pathlib import Path
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..settings import settings
from ..utils.errors import DataValidationError


class GeocodeProvider(StrEnum):
    """Geocoding backends. Values double as cache key prefixes."""
    NOMINATIM = "osm"
    GOOGLE = "google"


class GeocodeStatus(StrEnum):
    RESOLVED = "resolved"
    NEEDS_DISAMBIGUATION = "needs_disambiguation"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class MatchQuality(StrEnum):
    """Provider-reported precision of a geocode."""
    ROOFTOP_EXACT = "rooftop-exact"
    RANGE_INTERPOLATED = "range-interpolated"
    GEOMETRIC_CENTER = "geometric-center"
    APPROXIMATE = "approximate"


class FailureReason(StrEnum):
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_ERROR = "provider_error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Resolved:
    """A single located result."""
    lat: float
    lng: float
    formatted_address: str
    place_id: Optional[str] = None
    match_quality: MatchQuality = MatchQuality.APPROXIMATE
    partial_match: bool = False
    manual: bool = False

    status = GeocodeStatus.RESOLVED

    def is_success(self) -> bool:
        """Coordinates exist and fall within valid geographic ranges."""
        try:
            return -90 <= self.lat <= 90 and -180 <= self.lng <= 180
        except (TypeError, ValueError):
            return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "lat": self.lat,
            "lng": self.lng,
            "formatted_address": self.formatted_address,
            "place_id": self.place_id,
            "match_quality": self.match_quality.value,
            "partial_match": self.partial_match,
            "manual": self.manual,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Resolved":
        return cls(
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            formatted_address=data.get("formatted_address") or "",
            place_id=data.get("place_id"),
            match_quality=MatchQuality(data.get("match_quality", MatchQuality.APPROXIMATE.value)),
            partial_match=bool(data.get("partial_match", False)),
            manual=bool(data.get("manual", False)),
        )


@dataclass(frozen=True)
class NeedsDisambiguation:
    """Several plausible results; a human must pick one."""
    candidates: tuple[Resolved, ...]

    status = GeocodeStatus.NEEDS_DISAMBIGUATION

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass(frozen=True)
class NotFound:
    """Valid query, nothing found."""
    message: str = "No results found"

    status = GeocodeStatus.NOT_FOUND

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "message": self.message}


@dataclass(frozen=True)
class Failed:
    """The provider could not answer."""
    message: str
    retryable: bool = False
    reason: FailureReason = FailureReason.PROVIDER_ERROR
    http_status: Optional[int] = None

    status = GeocodeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "retryable": self.retryable,
            "reason": self.reason.value,
            "http_status": self.http_status,
        }


GeocodeResult = Union[Resolved, NeedsDisambiguation, NotFound, Failed]


def result_from_dict(data: dict[str, Any]) -> GeocodeResult:
    """Rebuild a GeocodeResult from its `to_dict()` form."""
    status = GeocodeStatus(data["status"])
    if status == GeocodeStatus.RESOLVED:
        return Resolved.from_dict(data)
    if status == GeocodeStatus.NEEDS_DISAMBIGUATION:
        return NeedsDisambiguation(tuple(Resolved.from_dict(c) for c in data.get("candidates", [])))
    if status == GeocodeStatus.NOT_FOUND:
        return NotFound(message=data.get("message") or NotFound.message)
    return Failed(
        message=data.get("message") or "",
        retryable=bool(data.get("retryable", False)),
        reason=FailureReason(data.get("reason", FailureReason.PROVIDER_ERROR.value)),
        http_status=data.get("http_status"),
    )


@dataclass(frozen=True)
class QueryItem:
    """
    One address to geocode.

    `query_address` is the source address, suffixed with the area hint
    unless the hint already appears in it (case-insensitive).
    """
    source_address: str
    query_address: str

    @classmethod
    def build(cls, address: str, area_hint: str = "") -> "QueryItem":
        address = address.strip()
        hint = (area_hint or "").strip()
        query = address
        if hint and hint.lower() not in address.lower():
            query = f"{address}, {hint}"
        return cls(source_address=address, query_address=query)

    def to_dict(self) -> dict[str, str]:
        return {"source_address": self.source_address, "query_address": self.query_address}


class AddressRecord(BaseModel):
    """An extracted or user-entered address awaiting geocoding."""
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    address: str = Field(min_length=1)
    index: int | None = None
    raw_text: str | None = None
    path: str | None = None


def validate_address_records(records: list[Any], source: str = "input") -> list[AddressRecord]:
    """
    Validate raw address records.

    Accepts AddressRecord instances, dicts with an `address` key, or
    plain strings.

    Raises:
        DataValidationError: If any record is invalid
    """
    validated = []
    errors: list[dict[str, Any]] = []
    for i, record in enumerate(records):
        if isinstance(record, AddressRecord):
            validated.append(record)
            continue
        if isinstance(record, str):
            record = {"address": record}
        try:
            validated.append(AddressRecord.model_validate(record))
        except ValidationError as e:
            for err in e.errors():
                errors.append({**err, "loc": (i, *err.get("loc", ()))})
    if errors:
        raise DataValidationError(source, errors)
    return validated


@dataclass
class GeocodingConfig:
    """Configuration for one geocoding batch."""
    provider: GeocodeProvider = GeocodeProvider.NOMINATIM
    api_key: Optional[str] = None
    timeout: float = 10.0
    user_agent: str = "RecMapper/1.0 (address mapping)"

    # Minimum spacing between requests, per provider
    nominatim_delay_s: float = 1.1
    google_delay_s: float = 0.1

    # Adapter-level retries on transport errors and rate limiting
    max_retries: int = 2
    retry_delay_s: float = 2.0

    # Orchestrator never offers more than this many candidates
    max_candidates: int = 5

    cache_path: Optional[Path] = None

    def __post_init__(self):
        self.provider = GeocodeProvider(self.provider)
        if not 1 <= self.max_candidates <= 5:
            raise ValueError("max_candidates must be between 1 and 5")

    # --- Environment helpers -------------------------------------------------
    @staticmethod
    def _env_var_candidates() -> list[str]:
        """Return prioritized list of environment variable names to check for API key."""
        return [
            "REC_MAPPER_API_KEY",
            "GOOGLE_MAPS_API_KEY",
            "GEOCODING_API_KEY",
        ]

    @staticmethod
    def _read_key_from_file(path: str) -> Optional[str]:
        try:
            with open(path, "r", encoding="utf8") as fh:
                return fh.read().strip() or None
        except OSError:
            return None

    @classmethod
    def _key_from_environment(cls) -> Optional[str]:
        for name in cls._env_var_candidates():
            val = os.getenv(name)
            if val and val.strip():
                return val.strip()
        key_file = os.getenv("GEOCODING_API_KEY_FILE")
        if key_file:
            return cls._read_key_from_file(key_file)
        return None

    @classmethod
    def from_env(cls, **overrides: Any) -> "GeocodingConfig":
        """Create a config from settings, environment secrets and overrides.

        Priority for api_key resolution:
        1. explicit `api_key` passed in `overrides`
        2. environment variables (candidates returned by `_env_var_candidates`)
        3. file path in env `GEOCODING_API_KEY_FILE`
        4. the same variables after loading `.env`
        5. None
        """
        cfg_values: dict[str, Any] = {
            "provider": settings.provider,
            "api_key": settings.api_key,
            "timeout": settings.request_timeout_s,
            "user_agent": settings.user_agent,
            "nominatim_delay_s": settings.nominatim_delay_s,
            "google_delay_s": settings.google_delay_s,
            "max_candidates": settings.max_candidates,
            "cache_path": settings.cache_db_path,
        }
        cfg_values.update(overrides)

        if not cfg_values.get("api_key"):
            key = cls._key_from_environment()
            if key is None:
                load_dotenv(override=False)
                key = cls._key_from_environment()
            cfg_values["api_key"] = key

        return cls(**cfg_values)

    def delay_for(self, provider: Optional[GeocodeProvider] = None) -> float:
        provider = GeocodeProvider(provider or self.provider)
        if provider == GeocodeProvider.NOMINATIM:
            return self.nominatim_delay_s
        return self.google_delay_s
