"""
Selection state and user refinement of a match set.

What the tool believes about each element (sample, match, excluded) is
held here, keyed by element key, and never written into the page.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Optional, Sequence
import logging

from ..settings import settings
from .fingerprint import similarity
from .page import Page
from .strategies import CandidateSelector, Confidence, MatchOptions, MatchResult, MatchStrategyPipeline
from .text import extract_text, text_similarity

logger = logging.getLogger(__name__)

# A match is auto-excluded alongside a user exclusion when it is
# structurally close and textually alike, or structurally near-identical.
AUTO_EXCLUDE_STRUCTURAL = 0.75
AUTO_EXCLUDE_TEXTUAL = 0.3
AUTO_EXCLUDE_STRUCTURAL_ONLY = 0.9


class MatchStatus(StrEnum):
    SAMPLE = "sample"
    MATCHED = "matched"
    EXCLUDED = "excluded"


@dataclass
class SelectionState:
    """Status of every element the tool currently cares about."""
    statuses: dict[int, MatchStatus] = field(default_factory=dict)
    # Structural paths of excluded elements; checked independently of similarity
    excluded_paths: set[str] = field(default_factory=set)
    # Keys the user re-included; auto-exclusion leaves them alone
    pinned: set[int] = field(default_factory=set)
    selector: Optional[CandidateSelector] = None
    confidence: Confidence = Confidence.LOW

    @classmethod
    def from_result(cls, samples: Sequence[int], result: MatchResult) -> "SelectionState":
        statuses = {key: MatchStatus.SAMPLE for key in samples}
        for key in result.matches:
            statuses.setdefault(key, MatchStatus.MATCHED)
        return cls(statuses=statuses, selector=result.selector, confidence=result.confidence)

    def _with_status(self, status: MatchStatus) -> list[int]:
        return sorted(k for k, s in self.statuses.items() if s == status)

    def samples(self) -> list[int]:
        return self._with_status(MatchStatus.SAMPLE)

    def matches(self) -> list[int]:
        return self._with_status(MatchStatus.MATCHED)

    def excluded(self) -> list[int]:
        return self._with_status(MatchStatus.EXCLUDED)

    def active_keys(self) -> list[int]:
        """Samples and non-excluded matches, in document order."""
        return sorted(k for k, s in self.statuses.items() if s != MatchStatus.EXCLUDED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "statuses": {str(k): s.value for k, s in sorted(self.statuses.items())},
            "excluded_paths": sorted(self.excluded_paths),
            "pinned": sorted(self.pinned),
            "selector": self.selector.query if self.selector else None,
            "confidence": self.confidence.value,
        }


class SelectionSession:
    """
    Drives matching and refinement for one page.

    Usage:
        session = SelectionSession(page)
        session.find_matches([a, b])
        session.exclude(false_positive)
        session.refine()
        keys = session.state.active_keys()
    """

    def __init__(
        self,
        page: Page,
        options: Optional[MatchOptions] = None,
        refine_similarity: Optional[float] = None,
        structural_score: Optional[Callable[[int, int], float]] = None,
        textual_score: Optional[Callable[[int, int], float]] = None,
    ):
        self.page = page
        self.options = options or MatchOptions.from_settings()
        self.refine_similarity = settings.refine_similarity if refine_similarity is None else refine_similarity
        self.structural_score = structural_score or self._structural_score
        self.textual_score = textual_score or self._textual_score
        self.state = SelectionState()

    def _structural_score(self, a: int, b: int) -> float:
        return similarity(self.page.fingerprint(a), self.page.fingerprint(b))

    def _textual_score(self, a: int, b: int) -> float:
        return text_similarity(extract_text(self.page.element(a)), extract_text(self.page.element(b)))

    def find_matches(self, samples: Sequence[int]) -> MatchResult:
        result = MatchStrategyPipeline(self.page, self.options).find_matches(samples)
        self.state = SelectionState.from_result(samples, result)
        return result

    def _should_auto_exclude(self, excluded: int, other: int) -> bool:
        structural = self.structural_score(excluded, other)
        if structural >= AUTO_EXCLUDE_STRUCTURAL_ONLY:
            return True
        if structural < AUTO_EXCLUDE_STRUCTURAL:
            return False
        return self.textual_score(excluded, other) >= AUTO_EXCLUDE_TEXTUAL

    def _mark_excluded(self, key: int) -> None:
        self.state.statuses[key] = MatchStatus.EXCLUDED
        self.state.excluded_paths.add(self.page.selector_path(key))

    def exclude(self, key: int, auto: bool = True) -> list[int]:
        """
        Exclude a match, plus any other matches that look like it.

        Args:
            key: Match the user rejected
            auto: Whether to apply similarity-based auto-exclusion

        Returns:
            Keys newly excluded, the requested key first

        Raises:
            KeyError: If the key is not part of the current match set
            ValueError: If the key is a sample
        """
        status = self.state.statuses.get(key)
        if status is None:
            raise KeyError(f"Element {key} is not part of the current match set")
        if status == MatchStatus.SAMPLE:
            raise ValueError(f"Element {key} is a sample and cannot be excluded")
        if status == MatchStatus.EXCLUDED:
            return []

        self.state.pinned.discard(key)
        self._mark_excluded(key)
        newly_excluded = [key]

        if auto:
            for other in self.state.matches():
                if other in self.state.pinned:
                    continue
                if self._should_auto_exclude(key, other):
                    self._mark_excluded(other)
                    newly_excluded.append(other)

        if len(newly_excluded) > 1:
            logger.info(f"Excluding {key} also auto-excluded {len(newly_excluded) - 1} similar matches")
        return newly_excluded

    def include(self, key: int) -> bool:
        """
        Re-include a single excluded match. Never cascades.

        Returns:
            True if the key was excluded and is now a match again
        """
        if self.state.statuses.get(key) != MatchStatus.EXCLUDED:
            return False
        self.state.statuses[key] = MatchStatus.MATCHED
        self.state.excluded_paths.discard(self.page.selector_path(key))
        self.state.pinned.add(key)
        return True

    def refine(self, threshold: Optional[float] = None) -> MatchResult:
        """
        Re-run matching on the non-excluded elements at a raised threshold.

        Anything whose structural path belongs to an excluded element is
        kept out of the new match set, whatever its similarity.
        """
        threshold = self.refine_similarity if threshold is None else threshold
        samples = self.state.active_keys()
        options = MatchOptions(
            min_similarity=threshold,
            fallback_factor=self.options.fallback_factor,
            fallback_max_results=self.options.fallback_max_results,
            high_confidence_ratio=self.options.high_confidence_ratio,
        )
        result = MatchStrategyPipeline(self.page, options).find_matches(samples)

        excluded_paths = self.state.excluded_paths
        kept = tuple(k for k in result.matches if self.page.selector_path(k) not in excluded_paths)
        result = MatchResult(matches=kept, selector=result.selector, confidence=result.confidence)

        statuses = {k: s for k, s in self.state.statuses.items() if s != MatchStatus.MATCHED}
        for key in kept:
            statuses.setdefault(key, MatchStatus.MATCHED)
        self.state.statuses = statuses
        self.state.selector = result.selector
        self.state.confidence = result.confidence
        return result
