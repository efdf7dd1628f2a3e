"""
Selector synthesis from a handful of sample elements.

Derives the two structural rules the match strategies query with: a
common tag/class selector and a pattern relative to the samples'
nearest common ancestor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import soupsieve as sv

from ..utils.errors import StructuralMismatch
from .page import Page


@dataclass(frozen=True)
class PathStep:
    """One level of a path walked down from the common ancestor."""
    tag: str
    classes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParentRelativePattern:
    parent: int
    parent_selector: str
    child_selector: str
    steps: tuple[PathStep, ...]

    @property
    def full_selector(self) -> str:
        return f"{self.parent_selector} {self.child_selector}"


def _intersect_ordered(first: Sequence[str], others: Iterable[Sequence[str]]) -> list[str]:
    """Intersection of several class lists, keeping the first list's order."""
    common = list(first)
    for other in others:
        other_set = set(other)
        common = [c for c in common if c in other_set]
    return common


class SelectorSynthesizer:
    """
    Builds candidate structural rules for a set of sample keys.

    Short class names (two characters or fewer) tend to be utility
    classes and are left out of generated selectors.
    """

    def __init__(
        self,
        page: Page,
        max_classes: int = 3,
        max_step_classes: int = 2,
        min_class_length: int = 3,
    ):
        self.page = page
        self.max_classes = max_classes
        self.max_step_classes = max_step_classes
        self.min_class_length = min_class_length

    def _meaningful(self, classes: Iterable[str]) -> list[str]:
        return [c for c in classes if len(c) >= self.min_class_length]

    def common_tag(self, samples: Sequence[int]) -> str:
        tags = [self.page.tag_name(k) for k in samples]
        if not tags or len(set(tags)) != 1:
            raise StructuralMismatch(tags)
        return tags[0]

    def common_classes(self, samples: Sequence[int]) -> list[str]:
        if not samples:
            return []
        class_lists = [self.page.classes(k) for k in samples]
        return _intersect_ordered(class_lists[0], class_lists[1:])

    def common_selector(self, samples: Sequence[int]) -> str:
        """
        Shared tag plus up to `max_classes` shared class names.

        Longer class names win; ties keep source order.

        Raises:
            StructuralMismatch: If the samples do not share a tag
        """
        tag = self.common_tag(samples)
        prioritized = sorted(self._meaningful(self.common_classes(samples)), key=len, reverse=True)
        return tag + "".join(f".{sv.escape(c)}" for c in prioritized[: self.max_classes])

    def common_ancestor(self, samples: Sequence[int]) -> Optional[int]:
        """Nearest element containing every sample, or <body> when that contains them all."""
        if not samples:
            return None
        if len(samples) == 1:
            return self.page.parent(samples[0])

        for ancestor in self.page.ancestors(samples[0]):
            if all(self.page.contains(ancestor, k) for k in samples):
                return ancestor
        body = self.page.body()
        if all(self.page.contains(body, k) for k in samples):
            return body
        return None

    def relative_path(self, key: int, ancestor: int) -> list[PathStep]:
        """Steps from just below `ancestor` down to `key`, inclusive."""
        steps = []
        current: Optional[int] = key
        while current is not None and current != ancestor:
            steps.insert(0, PathStep(self.page.tag_name(current), tuple(self.page.classes(current))))
            current = self.page.parent(current)
        return steps

    def parent_relative_pattern(self, samples: Sequence[int]) -> Optional[ParentRelativePattern]:
        """
        Longest common (tag, shared classes) prefix below the common ancestor.

        The walk stops at the first depth where the samples disagree on tag.
        """
        if len(samples) < 2:
            return None

        parent = self.common_ancestor(samples)
        if parent is None:
            return None

        paths = [self.relative_path(k, parent) for k in samples]
        min_length = min(len(p) for p in paths)

        common_steps = []
        for depth in range(min_length):
            tags = {p[depth].tag for p in paths}
            if len(tags) != 1:
                break
            classes = _intersect_ordered(paths[0][depth].classes, (p[depth].classes for p in paths[1:]))
            common_steps.append(PathStep(paths[0][depth].tag, tuple(classes)))

        if not common_steps:
            return None

        child_selector = " > ".join(
            step.tag + "".join(
                f".{sv.escape(c)}" for c in self._meaningful(step.classes)[: self.max_step_classes]
            )
            for step in common_steps
        )

        return ParentRelativePattern(
            parent=parent,
            parent_selector=self.page.selector_path(parent),
            child_selector=child_selector,
            steps=tuple(common_steps),
        )
