from __future__ import annotations

import pytest
import requests

from rec_mapper.geocoding.models import (
    FailureReason,
    Failed,
    GeocodeProvider,
    GeocodingConfig,
    MatchQuality,
    NeedsDisambiguation,
    NotFound,
    Resolved,
)
from rec_mapper.geocoding.providers import GoogleGeocoder, HTTPGeocoder, NominatimGeocoder, create_geocoder
from rec_mapper.geocoding.throttling import NoOpRateLimiter


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, bad_json: bool = False):
        self.status_code = status_code
        self.payload = payload
        self.bad_json = bad_json

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if self.bad_json:
            raise ValueError("not json")
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def nominatim(session, **kwargs):
    return NominatimGeocoder(session=session, rate_limiter=NoOpRateLimiter(), retry_delay_s=0, **kwargs)


def google(session, api_key="key", **kwargs):
    return GoogleGeocoder(api_key=api_key, session=session, rate_limiter=NoOpRateLimiter(), retry_delay_s=0, **kwargs)


def osm_row(lat, lon, name, place_id=1):
    return {"lat": str(lat), "lon": str(lon), "display_name": name, "place_id": place_id}


def google_row(lat, lng, name, location_type="ROOFTOP", partial=False):
    row = {
        "formatted_address": name,
        "place_id": f"pid-{name}",
        "geometry": {"location": {"lat": lat, "lng": lng}, "location_type": location_type},
    }
    if partial:
        row["partial_match"] = True
    return row


# --- Nominatim ------------------------------------------------------------------

def test_nominatim_single_result():
    session = FakeSession(FakeResponse(payload=[osm_row(39.78, -89.65, "1 Main St, Springfield", 77)]))
    result = nominatim(session, user_agent="Tests/1.0").resolve("1 Main St, Springfield")

    assert result == Resolved(39.78, -89.65, "1 Main St, Springfield", place_id="77", match_quality=MatchQuality.APPROXIMATE)
    call = session.calls[0]
    assert call["params"]["q"] == "1 Main St, Springfield"
    assert call["params"]["format"] == "json"
    assert call["headers"]["User-Agent"] == "Tests/1.0"


def test_nominatim_multiple_results_need_disambiguation():
    session = FakeSession(FakeResponse(payload=[
        osm_row(1.0, 2.0, "100 Elm St, Town A", 1),
        osm_row(3.0, 4.0, "100 Elm St, Town B", 2),
    ]))
    result = nominatim(session).resolve("100 Elm St")

    assert isinstance(result, NeedsDisambiguation)
    assert [c.formatted_address for c in result.candidates] == ["100 Elm St, Town A", "100 Elm St, Town B"]


def test_nominatim_empty_is_not_found():
    assert nominatim(FakeSession(FakeResponse(payload=[]))).resolve("Unknown Place Name") == NotFound()


def test_nominatim_rate_limited_is_retryable_failure():
    session = FakeSession(FakeResponse(429), FakeResponse(429))
    result = nominatim(session, max_retries=2).resolve("1 Main St")

    assert isinstance(result, Failed)
    assert result.reason == FailureReason.RATE_LIMITED
    assert result.retryable
    assert result.http_status == 429
    assert len(session.calls) == 2


def test_nominatim_forbidden_is_auth_failure_without_retry():
    session = FakeSession(FakeResponse(403), FakeResponse(payload=[]))
    result = nominatim(session, max_retries=2).resolve("1 Main St")

    assert result.reason == FailureReason.AUTH
    assert not result.retryable
    assert len(session.calls) == 1


def test_transport_error_is_retried():
    session = FakeSession(
        requests.ConnectionError("connection reset"),
        FakeResponse(payload=[osm_row(1.0, 2.0, "Somewhere")]),
    )
    result = nominatim(session, max_retries=2).resolve("Somewhere")
    assert isinstance(result, Resolved)
    assert len(session.calls) == 2


def test_transport_error_exhausts_retries():
    session = FakeSession(requests.Timeout("slow"), FakeResponse(500))
    result = nominatim(session, max_retries=2).resolve("Somewhere")

    assert result.reason == FailureReason.NETWORK
    assert not result.retryable
    assert result.http_status == 500


def test_bad_json_is_network_failure():
    result = nominatim(FakeSession(FakeResponse(bad_json=True)), max_retries=1).resolve("Somewhere")
    assert result.reason == FailureReason.NETWORK


def test_empty_query_is_invalid_request():
    session = FakeSession()
    result = nominatim(session).resolve("   ")
    assert result.reason == FailureReason.INVALID_REQUEST
    assert session.calls == []


# --- Google ---------------------------------------------------------------------

def test_google_requires_key():
    session = FakeSession()
    result = google(session, api_key=None).resolve("1 Main St")

    assert result.reason == FailureReason.AUTH
    assert session.calls == []


def test_google_single_result_keeps_quality():
    session = FakeSession(FakeResponse(payload={
        "status": "OK",
        "results": [google_row(39.78, -89.65, "1 Main St, Springfield", "RANGE_INTERPOLATED", partial=True)],
    }))
    result = google(session).resolve("1 Main St")

    assert isinstance(result, Resolved)
    assert result.match_quality == MatchQuality.RANGE_INTERPOLATED
    assert result.partial_match
    assert session.calls[0]["params"] == {"address": "1 Main St", "key": "key"}


def test_google_multiple_results():
    session = FakeSession(FakeResponse(payload={
        "status": "OK",
        "results": [google_row(1.0, 2.0, "Town A"), google_row(3.0, 4.0, "Town B", "APPROXIMATE")],
    }))
    result = google(session).resolve("100 Elm St")

    assert isinstance(result, NeedsDisambiguation)
    assert result.candidates[0].match_quality == MatchQuality.ROOFTOP_EXACT
    assert result.candidates[1].match_quality == MatchQuality.APPROXIMATE


@pytest.mark.parametrize(
    "status, reason, retryable",
    [
        ("INVALID_REQUEST", FailureReason.INVALID_REQUEST, False),
        ("UNKNOWN_ERROR", FailureReason.PROVIDER_ERROR, True),
        ("REQUEST_DENIED", FailureReason.AUTH, False),
        ("OVER_QUERY_LIMIT", FailureReason.RATE_LIMITED, True),
    ],
)
def test_google_status_mapping(status, reason, retryable):
    session = FakeSession(FakeResponse(payload={"status": status}), FakeResponse(payload={"status": status}))
    result = google(session, max_retries=2).resolve("1 Main St")

    assert isinstance(result, Failed)
    assert result.reason == reason
    assert result.retryable == retryable


def test_google_zero_results_is_not_found():
    session = FakeSession(FakeResponse(payload={"status": "ZERO_RESULTS", "results": []}))
    assert google(session).resolve("Unknown Place Name") == NotFound()


@pytest.mark.parametrize(
    "results",
    [
        {"a": 1},
        ["not a row"],
        [{"formatted_address": "1 Main St", "geometry": "x"}],
        [{"formatted_address": "1 Main St", "geometry": {"location": [40.7, -74.0]}}],
    ],
)
def test_google_malformed_results_are_provider_errors(results):
    session = FakeSession(FakeResponse(payload={"status": "OK", "results": results}))
    result = google(session).resolve("1 Main St")

    assert isinstance(result, Failed)
    assert result.reason == FailureReason.PROVIDER_ERROR
    assert not result.retryable


def test_google_skips_rows_without_coordinates():
    rows = [google_row(40.7, -74.0, "1 Main St"), {"formatted_address": "Nowhere", "geometry": {}}]
    session = FakeSession(FakeResponse(payload={"status": "OK", "results": rows}))
    result = google(session).resolve("1 Main St")

    assert isinstance(result, Resolved)
    assert result.formatted_address == "1 Main St"


def test_http_geocoder_requires_query_and_parse():
    with pytest.raises(TypeError):
        HTTPGeocoder(session=FakeSession(), rate_limiter=NoOpRateLimiter())

    class QueryOnly(HTTPGeocoder):
        PROVIDER = GeocodeProvider.NOMINATIM

        def _query(self, query):
            return []

    with pytest.raises(TypeError):
        QueryOnly(session=FakeSession(), rate_limiter=NoOpRateLimiter())


# --- Factory --------------------------------------------------------------------

def test_create_geocoder_picks_variant():
    limiter = NoOpRateLimiter()
    osm = create_geocoder(GeocodingConfig(max_candidates=3, user_agent="UA"), session=FakeSession(), rate_limiter=limiter)
    assert isinstance(osm, NominatimGeocoder)
    assert osm.PROVIDER == GeocodeProvider.NOMINATIM
    assert osm.limit == 3
    assert osm.user_agent == "UA"

    gmaps = create_geocoder(GeocodingConfig(provider="google", api_key="k"), session=FakeSession(), rate_limiter=limiter)
    assert isinstance(gmaps, GoogleGeocoder)
    assert gmaps.api_key == "k"
    assert gmaps.rate_limiter is limiter


def test_default_rate_limiter_is_shared():
    a = NominatimGeocoder(session=FakeSession())
    b = NominatimGeocoder(session=FakeSession())
    assert a.rate_limiter is b.rate_limiter
