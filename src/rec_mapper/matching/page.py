"""
Immutable page snapshot used by the matching subsystem.

Every element gets an integer key in document order. The matcher only
exchanges keys, never live element references, and never writes
selection state back into the tree.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import soupsieve as sv
from bs4 import BeautifulSoup
from bs4.element import Tag

from ..utils.errors import SelectorInvalid
from .fingerprint import (
    ElementFingerprint,
    element_attribute_names,
    element_child_count,
    element_classes,
    fingerprint,
)

logger = logging.getLogger(__name__)


class Page:
    """
    Arena of elements for one parsed HTML document.

    Fingerprints are memoised per key. That is safe because a Page is a
    snapshot: re-parse the HTML to observe a changed document.
    """

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self._elements: list[Tag] = soup.find_all(True)
        self._keys: dict[int, int] = {id(el): i for i, el in enumerate(self._elements)}
        self._fingerprints: dict[int, ElementFingerprint] = {}
        logger.debug(f"Indexed page with {len(self._elements)} elements")

    @classmethod
    def from_html(cls, html: str, parser: str = "html.parser") -> "Page":
        return cls(BeautifulSoup(html, parser))

    @classmethod
    def from_file(cls, path: Path | str, encoding: str = "utf-8") -> "Page":
        return cls.from_html(Path(path).read_text(encoding=encoding))

    def __len__(self) -> int:
        return len(self._elements)

    def keys(self) -> range:
        return range(len(self._elements))

    # --- Element access ----------------------------------------------------

    def element(self, key: int) -> Tag:
        try:
            return self._elements[key]
        except IndexError as e:
            raise KeyError(f"Unknown element key {key}") from e

    def key_of(self, tag: Tag) -> int:
        try:
            return self._keys[id(tag)]
        except KeyError as e:
            raise KeyError(f"Element <{tag.name}> does not belong to this page") from e

    def tag_name(self, key: int) -> str:
        return self.element(key).name.lower()

    def classes(self, key: int) -> list[str]:
        return element_classes(self.element(key))

    def attribute_names(self, key: int) -> list[str]:
        return element_attribute_names(self.element(key))

    def child_count(self, key: int) -> int:
        return element_child_count(self.element(key))

    def fingerprint(self, key: int) -> ElementFingerprint:
        fp = self._fingerprints.get(key)
        if fp is None:
            fp = fingerprint(self.element(key))
            self._fingerprints[key] = fp
        return fp

    # --- Tree navigation ---------------------------------------------------

    def parent(self, key: int) -> Optional[int]:
        parent = self.element(key).parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return None
        return self._keys.get(id(parent))

    def ancestors(self, key: int) -> list[int]:
        """Ancestors of an element, nearest first, excluding the element itself."""
        result = []
        current = self.parent(key)
        while current is not None:
            result.append(current)
            current = self.parent(current)
        return result

    def contains(self, ancestor: int, key: int) -> bool:
        """True when `key` is `ancestor` or one of its descendants."""
        return ancestor == key or ancestor in self.ancestors(key)

    def body(self) -> int:
        body = self.soup.body
        if body is not None:
            return self.key_of(body)
        if not self._elements:
            raise KeyError("Page has no elements")
        return 0

    # --- Queries -----------------------------------------------------------

    def select(self, selector: str, root: Optional[int] = None) -> list[int]:
        """
        Run a CSS selector and return matching keys in document order.

        Args:
            selector: CSS selector
            root: Optional key limiting the search to that element's descendants

        Raises:
            SelectorInvalid: If the selector cannot be parsed
        """
        scope = self.soup if root is None else self.element(root)
        try:
            found = scope.select(selector)
        except (sv.SelectorSyntaxError, ValueError) as e:
            raise SelectorInvalid(selector, str(e)) from e
        return [self._keys[id(tag)] for tag in found if id(tag) in self._keys]

    def find_by_tag(self, tag: str, root: Optional[int] = None) -> list[int]:
        scope = self.soup if root is None else self.element(root)
        return [self._keys[id(el)] for el in scope.find_all(tag.lower())]

    def selector_path(self, key: int) -> str:
        """
        Build the structural path of an element, root first.

        An element id ends the walk since it is already unique. Same-tag
        siblings are told apart with :nth-of-type.
        """
        path = []
        current: Optional[int] = key
        while current is not None:
            el = self.element(current)
            selector = el.name.lower()

            element_id = el.get("id")
            if element_id:
                path.insert(0, f"{selector}#{sv.escape(str(element_id))}")
                break

            selector += "".join(f".{sv.escape(c)}" for c in element_classes(el))

            parent = el.parent
            if parent is not None and not isinstance(parent, BeautifulSoup):
                siblings = [c for c in parent.children if isinstance(c, Tag) and c.name == el.name]
                if len(siblings) > 1:
                    index = next(i for i, s in enumerate(siblings) if s is el) + 1
                    selector += f":nth-of-type({index})"

            path.insert(0, selector)
            current = self.parent(current)

        return " > ".join(path)
