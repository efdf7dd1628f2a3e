"""
Text extraction from matched elements.

Addresses are not parsed here; the geocoding provider does that. This
module only produces clean, reasonably short query strings.
"""

from __future__ import annotations

import copy
import re
from typing import Optional, Sequence

from bs4.element import Tag

from ..geocoding.models import AddressRecord
from .page import Page

_STRIP_TAGS = ["script", "style", "noscript", "svg", "img"]
_SEGMENT_SPLIT = re.compile(r"[|•·—–]|\s{3,}")
_WORD = re.compile(r"\w+")
_URL_LIKE = re.compile(r"https?://|www\.", re.I)

MAX_DIRECT_LENGTH = 200
MAX_SEGMENT_LENGTH = 150
MIN_SEGMENT_LENGTH = 10

TEXT_SIMILARITY_WEIGHTS = {
    "length": 0.3,
    "numeric": 0.3,
    "words": 0.2,
    "url": 0.2,
}


def extract_text(tag: Tag) -> str:
    """Visible text of an element with line breaks turned into commas."""
    if tag is None:
        return ""

    clone = copy.copy(tag)
    for unwanted in clone.find_all(_STRIP_TAGS):
        unwanted.decompose()

    text = clone.get_text()
    text = re.sub(r"[\t\r]+", " ", text)
    text = re.sub(r"\n+", ", ", text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r",\s*,", ",", text)
    text = re.sub(r",\s*$", "", text)
    return text.strip().strip(",").strip()


def best_address(text: str) -> Optional[str]:
    """
    Pick the part of an element's text most likely to be the location.

    Short text is used as-is. Longer text is split on separators and the
    first mid-length segment containing a digit is preferred.
    """
    if not text or len(text) < 3:
        return None

    if len(text) <= MAX_DIRECT_LENGTH:
        return text

    segments = [s.strip() for s in _SEGMENT_SPLIT.split(text)]
    candidates = [s for s in segments if MIN_SEGMENT_LENGTH <= len(s) <= MAX_SEGMENT_LENGTH]
    if candidates:
        with_numbers = [c for c in candidates if re.search(r"\d", c)]
        return (with_numbers or candidates)[0]

    return text[:MAX_SEGMENT_LENGTH] + "..."


def normalize_display(text: str) -> str:
    if not text:
        return ""
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r",\s*,", ",", text)
    text = re.sub(r"\s+,", ",", text)
    text = re.sub(r",(\S)", r", \1", text)
    return text.strip()


def text_similarity(a: str, b: str) -> float:
    """
    Cheap textual likeness of two strings, in [0, 1].

    Combines length ratio, agreement on containing digits, shared-word
    ratio and agreement on looking like a URL.
    """
    a = a or ""
    b = b or ""

    longest = max(len(a), len(b))
    length_ratio = min(len(a), len(b)) / longest if longest else 1.0

    numeric = 1.0 if bool(re.search(r"\d", a)) == bool(re.search(r"\d", b)) else 0.0

    words_a = set(w.lower() for w in _WORD.findall(a))
    words_b = set(w.lower() for w in _WORD.findall(b))
    most_words = max(len(words_a), len(words_b))
    word_ratio = len(words_a & words_b) / most_words if most_words else 0.0

    url = 1.0 if bool(_URL_LIKE.search(a)) == bool(_URL_LIKE.search(b)) else 0.0

    return (
        length_ratio * TEXT_SIMILARITY_WEIGHTS["length"]
        + numeric * TEXT_SIMILARITY_WEIGHTS["numeric"]
        + word_ratio * TEXT_SIMILARITY_WEIGHTS["words"]
        + url * TEXT_SIMILARITY_WEIGHTS["url"]
    )


def extract_addresses(page: Page, keys: Sequence[int]) -> list[AddressRecord]:
    """
    Turn matched elements into address records, in the given order.

    Elements with no usable text are dropped.
    """
    records = []
    for key in keys:
        raw_text = extract_text(page.element(key))
        address = normalize_display(best_address(raw_text) or raw_text)
        if not address:
            continue
        records.append(AddressRecord(
            index=len(records),
            address=address,
            raw_text=raw_text,
            path=page.selector_path(key),
        ))
    return records
