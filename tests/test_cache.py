from __future__ import annotations

import pytest

from rec_mapper.geocoding.cache import DuckDBGeocodeCache, InMemoryGeocodeCache, cache_key
from rec_mapper.geocoding.models import (
    Failed,
    FailureReason,
    GeocodeProvider,
    MatchQuality,
    NeedsDisambiguation,
    NotFound,
    Resolved,
)

OSM = GeocodeProvider.NOMINATIM
GOOGLE = GeocodeProvider.GOOGLE

RESOLVED = Resolved(39.78, -89.65, "1 Main St, Springfield", place_id="42", match_quality=MatchQuality.ROOFTOP_EXACT)
AMBIGUOUS = NeedsDisambiguation((
    Resolved(1.0, 2.0, "100 Elm St, Town A"),
    Resolved(3.0, 4.0, "100 Elm St, Town B"),
))


@pytest.fixture(params=["memory", "duckdb"])
def cache(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryGeocodeCache()
    else:
        backend = DuckDBGeocodeCache(tmp_path / "cache" / "geocode.duckdb")
    yield backend
    backend.close()


def test_cache_key_normalizes_case_and_whitespace():
    assert cache_key(OSM, "  1  Main\tSt ") == "geocode_osm_1_main_st"
    assert cache_key(GOOGLE, "1 main st") == "geocode_google_1_main_st"


def test_round_trip(cache):
    assert cache.put(OSM, "1 Main St", RESOLVED)
    assert cache.put(OSM, "100 Elm St", AMBIGUOUS)
    assert cache.put(OSM, "Nowhere", NotFound())

    assert cache.get(OSM, "1 MAIN   st") == RESOLVED
    assert cache.get(OSM, "100 Elm St") == AMBIGUOUS
    assert cache.get(OSM, "nowhere") == NotFound()
    assert cache.get(OSM, "2 Main St") is None


def test_failed_results_are_rejected(cache):
    assert cache.put(OSM, "1 Main St", Failed("slow down", True, FailureReason.RATE_LIMITED, 429)) is False
    assert cache.get(OSM, "1 Main St") is None


def test_entries_are_provider_scoped(cache):
    cache.put(OSM, "1 Main St", RESOLVED)
    assert cache.get(GOOGLE, "1 Main St") is None


def test_clear_counts(cache):
    cache.put(OSM, "a", RESOLVED)
    cache.put(OSM, "b", NotFound())
    cache.put(GOOGLE, "a", RESOLVED)

    assert cache.clear(GOOGLE) == 1
    assert cache.get(OSM, "a") == RESOLVED
    assert cache.clear() == 2
    assert cache.get(OSM, "a") is None
    assert cache.clear() == 0


def test_put_overwrites(cache):
    cache.put(OSM, "a", NotFound())
    cache.put(OSM, "a", RESOLVED)
    assert cache.get(OSM, "a") == RESOLVED


def test_duckdb_persists_between_connections(tmp_path):
    path = tmp_path / "geocode.duckdb"
    first = DuckDBGeocodeCache(path)
    first.put(OSM, "1 Main St", RESOLVED)
    first.close()

    second = DuckDBGeocodeCache(path)
    assert second.get(OSM, "1 main st") == RESOLVED
    second.close()


def test_duckdb_summary_and_export(tmp_path):
    cache = DuckDBGeocodeCache(tmp_path / "geocode.duckdb")
    cache.put(OSM, "a", RESOLVED)
    cache.put(OSM, "b", NotFound())
    cache.put(GOOGLE, "a", AMBIGUOUS)

    summary = cache.get_summary()
    assert summary["total"] == 3
    assert summary["by_provider"] == {"osm": 2, "google": 1}
    assert summary["by_status"] == {"resolved": 1, "not_found": 1, "needs_disambiguation": 1}

    out = tmp_path / "export" / "cache.csv"
    assert cache.export_to_csv(out) == 3
    assert out.exists()
    cache.close()
