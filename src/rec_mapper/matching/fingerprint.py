"""
Structural fingerprints and the similarity score used to compare them.

A fingerprint is a derived summary of one element. It is used for
comparison only, never for identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from bs4.element import Tag

# Namespace used by the selection overlay for its own highlight markers
RESERVED_PREFIX = "rec-mapper"

SIMILARITY_WEIGHTS: Mapping[str, float] = {
    "tag": 2.0,
    "classes": 2.0,
    "children": 1.0,
    "text": 0.5,
    "attributes": 1.0,
}

# Relative text-length difference below which the text factor scores in full
TEXT_LENGTH_TOLERANCE = 0.5


def is_reserved_class(name: str) -> bool:
    return name.startswith(f"{RESERVED_PREFIX}-")


def is_reserved_attribute(name: str) -> bool:
    return name.startswith(f"data-{RESERVED_PREFIX}")


def element_classes(tag: Tag) -> list[str]:
    """Return the element's class names in source order, reserved ones removed."""
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    seen: dict[str, None] = {}
    for name in classes:
        if name and not is_reserved_class(name):
            seen.setdefault(name, None)
    return list(seen)


def element_attribute_names(tag: Tag) -> list[str]:
    return [name for name in tag.attrs if not is_reserved_attribute(name)]


def element_child_count(tag: Tag) -> int:
    return sum(1 for child in tag.children if isinstance(child, Tag))


@dataclass(frozen=True)
class ElementFingerprint:
    """Structural signature of a single page element."""
    tag: str
    class_list: frozenset[str]
    has_stable_id: bool
    child_count: int
    text_length: int
    attribute_names: frozenset[str]


def fingerprint(tag: Tag) -> ElementFingerprint:
    """
    Compute the fingerprint of an element.

    Class names and attributes under the reserved namespace are dropped
    before anything is recorded, so highlighting side-effects never
    change the signature.

    Args:
        tag: Element to fingerprint

    Returns:
        ElementFingerprint for the element's current state
    """
    element_id = tag.get("id")
    return ElementFingerprint(
        tag=tag.name.lower(),
        class_list=frozenset(element_classes(tag)),
        has_stable_id=bool(element_id and str(element_id).strip()),
        child_count=element_child_count(tag),
        text_length=len(tag.get_text().strip()),
        attribute_names=frozenset(element_attribute_names(tag)),
    )


def _overlap(a: frozenset[str], b: frozenset[str]) -> Optional[float]:
    """Jaccard overlap, or None when both sets are empty."""
    union = a | b
    if not union:
        return None
    return len(a & b) / len(union)


def similarity(a: ElementFingerprint, b: ElementFingerprint) -> float:
    """
    Score how structurally alike two fingerprints are.

    Tag equality is a hard gate. Class and attribute overlap only count
    toward the total weight when at least one side has any, so two bare
    elements are not penalised for what neither of them has.

    Args:
        a: First fingerprint
        b: Second fingerprint

    Returns:
        Score in [0, 1]; symmetric in its arguments
    """
    if a.tag != b.tag:
        return 0.0

    score = SIMILARITY_WEIGHTS["tag"]
    total = SIMILARITY_WEIGHTS["tag"]

    class_overlap = _overlap(a.class_list, b.class_list)
    if class_overlap is not None:
        score += class_overlap * SIMILARITY_WEIGHTS["classes"]
        total += SIMILARITY_WEIGHTS["classes"]

    max_children = max(a.child_count, b.child_count, 1)
    score += (1 - abs(a.child_count - b.child_count) / max_children) * SIMILARITY_WEIGHTS["children"]
    total += SIMILARITY_WEIGHTS["children"]

    max_text = max(a.text_length, b.text_length, 1)
    if abs(a.text_length - b.text_length) / max_text < TEXT_LENGTH_TOLERANCE:
        score += SIMILARITY_WEIGHTS["text"]
    total += SIMILARITY_WEIGHTS["text"]

    attribute_overlap = _overlap(a.attribute_names, b.attribute_names)
    if attribute_overlap is not None:
        score += attribute_overlap * SIMILARITY_WEIGHTS["attributes"]
        total += SIMILARITY_WEIGHTS["attributes"]

    return score / total
