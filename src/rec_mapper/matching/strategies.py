"""Match strategies and the ordered pipeline that falls through them.

Each strategy tries to expand a few samples into the full set of
structurally similar elements. The pipeline runs them in order and keeps
the first one that finds at least as many matches as there are samples.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar, Iterable, Optional, Sequence, Type
import logging

from ..settings import settings
from ..utils.errors import MatchingError
from .fingerprint import similarity
from .page import Page
from .selectors import SelectorSynthesizer

logger = logging.getLogger(__name__)


class Confidence(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class CandidateSelector:
    query: str
    strategy: str
    confidence: Confidence


@dataclass(frozen=True)
class MatchResult:
    matches: tuple[int, ...]
    selector: Optional[CandidateSelector]
    confidence: Confidence

    @classmethod
    def empty(cls) -> "MatchResult":
        return cls(matches=(), selector=None, confidence=Confidence.LOW)

    def __len__(self) -> int:
        return len(self.matches)

    def to_dict(self) -> dict[str, Any]:
        return {
            "matches": list(self.matches),
            "selector": self.selector.query if self.selector else None,
            "strategy": self.selector.strategy if self.selector else None,
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True)
class MatchOptions:
    """Thresholds shared by all strategies."""
    min_similarity: float = 0.6
    # Strategy 4 runs at min_similarity * fallback_factor
    fallback_factor: float = 0.8
    # None disables the cap on fallback results
    fallback_max_results: Optional[int] = 500
    high_confidence_ratio: int = 3

    @classmethod
    def from_settings(cls, **overrides: Any) -> "MatchOptions":
        values: dict[str, Any] = {
            "min_similarity": settings.min_similarity,
            "fallback_factor": settings.fallback_factor,
            "fallback_max_results": settings.fallback_max_results,
        }
        values.update(overrides)
        return cls(**values)


class MatchStrategy(ABC):
    """
    Abstract base for match strategies.

    Subclasses that define NAME register themselves, so a pipeline can be
    assembled from strategy names.
    """

    NAME: ClassVar[str]
    # The last-resort strategy is accepted even when it finds too few matches
    IS_FALLBACK: ClassVar[bool] = False

    _REGISTRY: ClassVar[dict[str, Type['MatchStrategy']]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "NAME" in cls.__dict__:
            key = str(cls.NAME).lower()
            if key in MatchStrategy._REGISTRY and MatchStrategy._REGISTRY[key] is not cls:
                raise RuntimeError(f"Duplicate strategy NAME '{key}' for {cls.__name__}")
            MatchStrategy._REGISTRY[key] = cls
            logger.debug(f"Registered MatchStrategy: {cls.__name__} as '{key}'")

    @classmethod
    def create(cls, name: str, page: Page, synthesizer: SelectorSynthesizer, options: MatchOptions) -> 'MatchStrategy':
        key = str(name).lower()
        try:
            strategy_cls = cls._REGISTRY[key]
        except KeyError as e:
            raise ValueError(
                f"Unknown strategy '{name}'. "
                f"Known strategies: {sorted(cls._REGISTRY.keys())}"
            ) from e
        return strategy_cls(page, synthesizer, options)

    def __init__(self, page: Page, synthesizer: SelectorSynthesizer, options: MatchOptions):
        self.page = page
        self.synthesizer = synthesizer
        self.options = options

    @abstractmethod
    def propose(self, samples: Sequence[int]) -> Optional[MatchResult]:
        """
        Propose a match set for the samples.

        Returns:
            A MatchResult, or None when the strategy has nothing to offer

        Raises:
            MatchingError: If the strategy's rule cannot be built or run
        """
        ...

    def _similar_to_any(self, candidates: Iterable[int], samples: Sequence[int], threshold: float) -> list[int]:
        sample_fps = [self.page.fingerprint(s) for s in samples]
        return [
            c for c in candidates
            if any(similarity(fp, self.page.fingerprint(c)) >= threshold for fp in sample_fps)
        ]

    def _similar_on_average(self, candidates: Iterable[int], samples: Sequence[int], threshold: float) -> list[int]:
        sample_fps = [self.page.fingerprint(s) for s in samples]
        matches = []
        for c in candidates:
            candidate_fp = self.page.fingerprint(c)
            average = sum(similarity(fp, candidate_fp) for fp in sample_fps) / len(sample_fps)
            if average >= threshold:
                matches.append(c)
        return matches

    def _confidence(self, match_count: int, sample_count: int) -> Confidence:
        if match_count <= sample_count * self.options.high_confidence_ratio:
            return Confidence.HIGH
        return Confidence.MEDIUM

    def _result(self, matches: list[int], query: str, sample_count: int) -> MatchResult:
        confidence = self._confidence(len(matches), sample_count)
        return MatchResult(
            matches=tuple(matches),
            selector=CandidateSelector(query=query, strategy=self.NAME, confidence=confidence),
            confidence=confidence,
        )


class CommonSelectorStrategy(MatchStrategy):
    """Query by shared tag and classes; keep results close to any sample."""

    NAME = "common_selector"

    def propose(self, samples: Sequence[int]) -> Optional[MatchResult]:
        query = self.synthesizer.common_selector(samples)
        candidates = self.page.select(query)
        matches = self._similar_to_any(candidates, samples, self.options.min_similarity)
        return self._result(matches, query, len(samples))


class ParentPatternStrategy(MatchStrategy):
    """Query by the path pattern below the samples' common ancestor."""

    NAME = "parent_pattern"

    def propose(self, samples: Sequence[int]) -> Optional[MatchResult]:
        pattern = self.synthesizer.parent_relative_pattern(samples)
        if pattern is None:
            return None
        query = pattern.full_selector
        candidates = self.page.select(query)
        matches = self._similar_to_any(candidates, samples, self.options.min_similarity)
        return self._result(matches, query, len(samples))


class AncestorScanStrategy(MatchStrategy):
    """Scan every element of the samples' tag inside the common ancestor."""

    NAME = "ancestor_scan"

    def propose(self, samples: Sequence[int]) -> Optional[MatchResult]:
        tag = self.synthesizer.common_tag(samples)
        ancestor = self.synthesizer.common_ancestor(samples)
        if ancestor is None:
            return None
        candidates = self.page.find_by_tag(tag, root=ancestor)
        matches = self._similar_on_average(candidates, samples, self.options.min_similarity)
        query = f"{self.page.selector_path(ancestor)} {tag}"
        return self._result(matches, query, len(samples))


class GlobalFallbackStrategy(MatchStrategy):
    """Scan the whole document at a lowered threshold; always low confidence."""

    NAME = "global_fallback"
    IS_FALLBACK = True

    def propose(self, samples: Sequence[int]) -> Optional[MatchResult]:
        tag = self.synthesizer.common_tag(samples)
        threshold = self.options.min_similarity * self.options.fallback_factor
        matches = self._similar_on_average(self.page.find_by_tag(tag), samples, threshold)

        cap = self.options.fallback_max_results
        if cap is not None and len(matches) > cap:
            logger.warning(f"Fallback found {len(matches)} matches for <{tag}>, keeping first {cap}")
            matches = matches[:cap]

        return MatchResult(
            matches=tuple(matches),
            selector=CandidateSelector(query=tag, strategy=self.NAME, confidence=Confidence.LOW),
            confidence=Confidence.LOW,
        )


class MatchStrategyPipeline:
    """
    Ordered strategies with fall-through.

    The pipeline is pure with respect to its page snapshot: the same
    samples on the same page always yield the same MatchResult.

    Usage:
        page = Page.from_html(html)
        pipeline = MatchStrategyPipeline(page)
        result = pipeline.find_matches([sample_a, sample_b])
    """

    DEFAULT_ORDER: ClassVar[tuple[str, ...]] = (
        CommonSelectorStrategy.NAME,
        ParentPatternStrategy.NAME,
        AncestorScanStrategy.NAME,
        GlobalFallbackStrategy.NAME,
    )

    def __init__(
        self,
        page: Page,
        options: Optional[MatchOptions] = None,
        strategy_names: Optional[Sequence[str]] = None,
    ):
        self.page = page
        self.options = options or MatchOptions.from_settings()
        self.synthesizer = SelectorSynthesizer(page)
        self.strategies = [
            MatchStrategy.create(name, page, self.synthesizer, self.options)
            for name in (strategy_names or self.DEFAULT_ORDER)
        ]

    def find_matches(self, samples: Sequence[int]) -> MatchResult:
        """
        Expand sample keys into a full match set.

        Args:
            samples: Two or more element keys picked by the user

        Returns:
            MatchResult from the first strategy that succeeds; empty when
            fewer than two samples are given or every strategy fails
        """
        samples = list(dict.fromkeys(samples))
        if len(samples) < 2:
            return MatchResult.empty()

        for strategy in self.strategies:
            try:
                result = strategy.propose(samples)
            except MatchingError as e:
                logger.warning(f"Strategy '{strategy.NAME}' skipped: {e}")
                continue

            if result is None:
                continue

            if len(result.matches) >= len(samples) or strategy.IS_FALLBACK:
                logger.info(
                    f"Strategy '{strategy.NAME}' matched {len(result.matches)} elements "
                    f"({result.confidence.value} confidence)"
                )
                return result

            logger.debug(
                f"Strategy '{strategy.NAME}' found {len(result.matches)} matches "
                f"for {len(samples)} samples, falling through"
            )

        return MatchResult.empty()
