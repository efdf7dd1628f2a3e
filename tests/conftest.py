from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


LISTINGS_HTML = """
<html><body>
  <header><div class="nav">Home</div></header>
  <main id="results">
    <div class="listing">123 Main St, Springfield</div>
    <div class="listing">456 Oak Ave, Springfield</div>
    <div class="listing">789 Pine Rd, Springfield</div>
    <div class="listing">101 Elm St, Springfield</div>
    <div class="listing">202 Birch Ln, Springfield</div>
  </main>
  <footer><div class="legal">Copyright 2024 Springfield Parks</div></footer>
</body></html>
"""


@pytest.fixture
def listings_html() -> str:
    return LISTINGS_HTML


@pytest.fixture
def listings_page():
    from rec_mapper.matching.page import Page

    return Page.from_html(LISTINGS_HTML)


@pytest.fixture
def listing_keys(listings_page) -> list[int]:
    return listings_page.select("div.listing")
