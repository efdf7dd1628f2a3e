from __future__ import annotations

import pytest

from rec_mapper.matching.strategies import Confidence, MatchOptions
from rec_mapper.pipeline import ExtractionPipeline
from rec_mapper.utils.errors import SelectorInvalid

OPTIONS = MatchOptions(min_similarity=0.6)


def test_extraction_pipeline(listings_html):
    samples = ["div.listing:nth-of-type(1)", "div.listing:nth-of-type(2)"]
    extraction = ExtractionPipeline(listings_html, samples, options=OPTIONS).run(progress=False)

    assert extraction.result.selector.query == "div.listing"
    assert extraction.result.confidence == Confidence.HIGH
    assert [a.address for a in extraction.addresses] == [
        "123 Main St, Springfield",
        "456 Oak Ave, Springfield",
        "789 Pine Rd, Springfield",
        "101 Elm St, Springfield",
        "202 Birch Ln, Springfield",
    ]


def test_pipeline_reads_files(listings_html, tmp_path):
    path = tmp_path / "page.html"
    path.write_text(listings_html)
    samples = ["div.listing:nth-of-type(1)", "div.listing:nth-of-type(3)"]
    extraction = ExtractionPipeline(path, samples, options=OPTIONS).run(progress=False)
    assert len(extraction.addresses) == 5


def test_pipeline_prints_step_status(listings_html, capsys):
    samples = ["div.listing:nth-of-type(1)", "div.listing:nth-of-type(2)"]
    ExtractionPipeline(listings_html, samples, options=OPTIONS).run()
    out = capsys.readouterr().out
    for step in ("Parse Page", "Resolve Samples", "Find Matches", "Extract Addresses"):
        assert step in out
    assert "Complete" in out


def test_unmatched_sample_selector_fails(listings_html, capsys):
    with pytest.raises(SelectorInvalid):
        ExtractionPipeline(listings_html, ["div.listing", "div.nothing"], options=OPTIONS).run()
    assert "Failed" in capsys.readouterr().out


def test_single_distinct_sample_fails(listings_html):
    with pytest.raises(ValueError):
        ExtractionPipeline(listings_html, ["div.listing", "div.listing"], options=OPTIONS).run(progress=False)
