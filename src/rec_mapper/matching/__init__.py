from .page import Page
from .fingerprint import ElementFingerprint, fingerprint, similarity
from .selectors import SelectorSynthesizer, ParentRelativePattern
from .strategies import (
    Confidence,
    CandidateSelector,
    MatchResult,
    MatchOptions,
    MatchStrategy,
    MatchStrategyPipeline,
)
from .refinement import MatchStatus, SelectionState, SelectionSession
from .text import extract_text, extract_addresses, text_similarity

__all__ = [
    "Page",
    "ElementFingerprint",
    "fingerprint",
    "similarity",
    "SelectorSynthesizer",
    "ParentRelativePattern",
    "Confidence",
    "CandidateSelector",
    "MatchResult",
    "MatchOptions",
    "MatchStrategy",
    "MatchStrategyPipeline",
    "MatchStatus",
    "SelectionState",
    "SelectionSession",
    "extract_text",
    "extract_addresses",
    "text_similarity",
]
