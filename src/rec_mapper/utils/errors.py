from typing import Any
from pydantic import ValidationError


class RecMapperError(Exception):
    """Base class for every error raised by rec_mapper."""


class MatchingError(RecMapperError):
    """A matching strategy could not produce a usable rule."""


class StructuralMismatch(MatchingError):
    """Samples share no common tag, so no structural rule can be synthesized."""

    def __init__(self, tags: list[str]):
        self.tags = tags
        super().__init__(f"Samples have no common tag: {sorted(set(tags))}")


class SelectorInvalid(MatchingError):
    """A generated selector could not be evaluated against the page."""

    def __init__(self, selector: str, reason: str = ""):
        self.selector = selector
        self.reason = reason
        msg = f"Invalid selector {selector!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class GeocodingError(RecMapperError):
    """Raised by provider transports; translated into Failed results."""

    def __init__(self, message: str, http_status: int | None = None):
        self.http_status = http_status
        super().__init__(message)


class ProviderNetworkError(GeocodingError):
    pass


class ProviderRateLimited(GeocodingError):
    pass


class ProviderAuthError(GeocodingError):
    pass


class InvalidTransition(RecMapperError):
    """An orchestrator event arrived in a phase that does not accept it."""

    def __init__(self, event: str, phase: str):
        self.event = event
        self.phase = phase
        super().__init__(f"Cannot handle '{event}' while orchestrator is {phase}")


class DataValidationError(RecMapperError):
    def __init__(self, source: str, errors: list[dict[str, Any]], original: ValidationError | None = None):
        self.source = source
        self.errors = errors
        self.original = original
        msg = f"Validation failed for {len(errors)} records from source '{source}'"

        super().__init__(msg)

    def summary(self, limit: int=5) -> str:
        """Human-readable summary of the first few validation issues."""
        lines = []
        for err in self.errors[:limit]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            lines.append(f"- {loc}: {err.get('msg')} ({err.get('type')})")
        if len(self.errors) > limit:
            lines.append(f"... ({len(self.errors) - limit} more)")
        return "\n".join(lines)
