"""Page-to-addresses extraction pipeline.

Parses a page, locates the user's sample elements, expands them into a
match set and extracts one address record per matched element.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence
import logging

from .geocoding.models import AddressRecord
from .matching.page import Page
from .matching.refinement import SelectionSession
from .matching.strategies import MatchOptions, MatchResult
from .matching.text import extract_addresses
from .utils.errors import SelectorInvalid
from .utils.pipeline_mixin import PipelineMixin

logger = logging.getLogger(__name__)


@dataclass
class Extraction:
    """Everything the pipeline learned about one page."""
    page: Page
    session: SelectionSession
    samples: list[int]
    result: Optional[MatchResult] = None
    addresses: Optional[list[AddressRecord]] = None


class ExtractionPipeline(PipelineMixin):
    """
    Runs: Parse Page -> Resolve Samples -> Find Matches -> Extract Addresses.

    Samples are given as CSS selectors; the first element each selector
    matches becomes a sample. At least two distinct samples are needed.

    Usage:
        pipeline = ExtractionPipeline(html, ['#first', '#second'])
        extraction = pipeline.run()
        extraction.addresses
    """

    NAME = 'extraction'

    def __init__(
        self,
        source: str | Path,
        sample_selectors: Sequence[str],
        options: Optional[MatchOptions] = None,
        refine_similarity: Optional[float] = None,
        parser: str = 'html.parser',
    ):
        """
        Args:
            source: HTML text, or a path to an HTML file
            sample_selectors: One CSS selector per sample element
            options: Matching thresholds (defaults from settings)
            refine_similarity: Threshold used by later refine() calls
            parser: BeautifulSoup parser name
        """
        self.source = source
        self.sample_selectors = list(sample_selectors)
        self.options = options or MatchOptions.from_settings()
        self.refine_similarity = refine_similarity
        self.parser = parser

    def _pipeline(self, **kwargs: Any) -> Iterable[tuple[str, Callable, dict[str, Any]]]:
        return [
            ('Parse Page', self.parse_page, {}),
            ('Resolve Samples', self.resolve_samples, {}),
            ('Find Matches', self.find_matches, {}),
            ('Extract Addresses', self.extract, {}),
        ]

    def run(self, progress: bool = True) -> Extraction:
        return self._execute_pipeline(progress=progress)

    def parse_page(self) -> Page:
        if isinstance(self.source, Path):
            return Page.from_file(self.source)
        return Page.from_html(self.source, parser=self.parser)

    def resolve_samples(self, page: Page) -> Extraction:
        samples: list[int] = []
        for selector in self.sample_selectors:
            found = page.select(selector)
            if not found:
                raise SelectorInvalid(selector, "matched no elements")
            if found[0] not in samples:
                samples.append(found[0])
        if len(samples) < 2:
            raise ValueError(f"Need at least 2 distinct sample elements, got {len(samples)}")

        session = SelectionSession(page, self.options, refine_similarity=self.refine_similarity)
        return Extraction(page=page, session=session, samples=samples)

    def find_matches(self, extraction: Extraction) -> Extraction:
        extraction.result = extraction.session.find_matches(extraction.samples)
        selector = extraction.result.selector.query if extraction.result.selector else None
        logger.info(
            f"Matched {len(extraction.result)} elements "
            f"(selector={selector}, confidence={extraction.result.confidence.value})"
        )
        return extraction

    def extract(self, extraction: Extraction) -> Extraction:
        extraction.addresses = extract_addresses(extraction.page, extraction.session.state.active_keys())
        return extraction
