from __future__ import annotations

import pytest

from rec_mapper.matching.refinement import MatchStatus, SelectionSession
from rec_mapper.matching.strategies import MatchOptions
from rec_mapper.settings import settings


OPTIONS = MatchOptions(min_similarity=0.6)


def make_session(page, structural=None, textual=None):
    return SelectionSession(page, OPTIONS, structural_score=structural, textual_score=textual)


def test_find_matches_builds_state(listings_page, listing_keys):
    session = make_session(listings_page)
    session.find_matches(listing_keys[:2])

    assert session.state.samples() == listing_keys[:2]
    assert session.state.matches() == listing_keys[2:]
    assert session.state.active_keys() == listing_keys


def test_exclusion_cascades_to_similar_match(listings_page, listing_keys):
    _, _, c, d, e = listing_keys

    def structural(a, b):
        return 0.95 if {a, b} == {c, d} else 0.5

    session = make_session(listings_page, structural, lambda a, b: 0.4)
    session.find_matches(listing_keys[:2])

    assert session.exclude(c) == [c, d]
    assert session.state.statuses[e] == MatchStatus.MATCHED


def test_exclusion_of_dissimilar_match_is_single(listings_page, listing_keys):
    c = listing_keys[2]
    session = make_session(listings_page, lambda a, b: 0.5, lambda a, b: 1.0)
    session.find_matches(listing_keys[:2])

    assert session.exclude(c) == [c]
    assert session.state.excluded() == [c]


def test_structural_and_textual_thresholds(listings_page, listing_keys):
    c = listing_keys[2]

    session = make_session(listings_page, lambda a, b: 0.8, lambda a, b: 0.2)
    session.find_matches(listing_keys[:2])
    assert session.exclude(c) == [c]

    session = make_session(listings_page, lambda a, b: 0.8, lambda a, b: 0.3)
    session.find_matches(listing_keys[:2])
    assert session.exclude(c) == listing_keys[2:]


def test_include_never_cascades(listings_page, listing_keys):
    _, _, c, d, _ = listing_keys
    session = make_session(listings_page, lambda a, b: 0.95, lambda a, b: 0.0)
    session.find_matches(listing_keys[:2])
    session.exclude(c)

    assert session.include(d) is True
    assert session.state.statuses[d] == MatchStatus.MATCHED
    assert session.state.statuses[c] == MatchStatus.EXCLUDED
    assert session.include(d) is False


def test_reincluded_item_survives_later_exclusion(listings_page, listing_keys):
    _, _, c, d, e = listing_keys
    session = make_session(listings_page, lambda a, b: 0.95, lambda a, b: 0.0)
    session.find_matches(listing_keys[:2])
    session.exclude(c)
    session.include(d)
    session.include(e)

    assert session.exclude(e) == [e]
    assert session.state.statuses[d] == MatchStatus.MATCHED


def test_exclude_rejects_samples_and_unknown_keys(listings_page, listing_keys):
    session = make_session(listings_page)
    session.find_matches(listing_keys[:2])

    with pytest.raises(ValueError):
        session.exclude(listing_keys[0])
    with pytest.raises(KeyError):
        session.exclude(0)


def test_refine_keeps_excluded_paths_out(listings_page, listing_keys):
    c = listing_keys[2]
    session = make_session(listings_page)
    session.find_matches(listing_keys[:2])
    session.exclude(c, auto=False)

    result = session.refine()

    assert c not in result.matches
    assert session.state.statuses[c] == MatchStatus.EXCLUDED
    assert session.state.matches() == listing_keys[3:]
    assert session.state.samples() == listing_keys[:2]


def test_state_to_dict(listings_page, listing_keys):
    session = make_session(listings_page)
    session.find_matches(listing_keys[:2])
    data = session.state.to_dict()
    assert data["selector"] == "div.listing"
    assert data["confidence"] == "high"
    assert data["statuses"][str(listing_keys[0])] == "sample"


def test_refine_similarity_defaults_to_settings(listings_page, monkeypatch):
    monkeypatch.setattr(settings, "refine_similarity", 0.95)
    assert SelectionSession(listings_page, OPTIONS).refine_similarity == 0.95
    assert SelectionSession(listings_page, OPTIONS, refine_similarity=0.5).refine_similarity == 0.5
