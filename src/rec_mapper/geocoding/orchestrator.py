"""
Batch geocoding as an explicit, resumable state machine.

The orchestrator walks a queue of addresses one at a time. Ambiguous and
unresolved addresses suspend the run until the caller supplies a choice,
manual coordinates or a skip; everything else is recorded and the run
continues. The whole state round-trips through `to_dict()`.

Usage:
    orch = GeocodeOrchestrator(create_geocoder(config), cache)
    phase = orch.start(records, area_hint="Springfield")
    while phase != OrchestratorPhase.DONE:
        if phase == OrchestratorPhase.SUSPENDED_ON_DISAMBIGUATION:
            phase = orch.choose(0)
        else:
            phase = orch.skip()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional, Sequence, Union

from ..utils.errors import InvalidTransition, RecMapperError
from .base import GeocodeCache, Geocoder
from .models import (
    FailureReason,
    GeocodeResult,
    NeedsDisambiguation,
    NotFound,
    QueryItem,
    Resolved,
    result_from_dict,
    validate_address_records,
)

logger = logging.getLogger(__name__)


class OrchestratorPhase(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SUSPENDED_ON_DISAMBIGUATION = "suspended_on_disambiguation"
    SUSPENDED_ON_NOT_FOUND = "suspended_on_not_found"
    DONE = "done"


SUSPENDED_PHASES = (OrchestratorPhase.SUSPENDED_ON_DISAMBIGUATION, OrchestratorPhase.SUSPENDED_ON_NOT_FOUND)


@dataclass(frozen=True)
class ResolvedRecord:
    """A queue item that ended up with coordinates."""
    index: int
    item: QueryItem
    result: Resolved
    from_cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            **self.item.to_dict(),
            "result": self.result.to_dict(),
            "from_cache": self.from_cache,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResolvedRecord":
        return cls(
            index=int(data["index"]),
            item=QueryItem(data["source_address"], data["query_address"]),
            result=Resolved.from_dict(data["result"]),
            from_cache=bool(data.get("from_cache", False)),
        )


@dataclass(frozen=True)
class ItemError:
    """A queue item that failed or was skipped."""
    index: int
    item: QueryItem
    message: str
    reason: FailureReason
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            **self.item.to_dict(),
            "message": self.message,
            "reason": self.reason.value,
            "retryable": self.retryable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemError":
        return cls(
            index=int(data["index"]),
            item=QueryItem(data["source_address"], data["query_address"]),
            message=data.get("message") or "",
            reason=FailureReason(data["reason"]),
            retryable=bool(data.get("retryable", False)),
        )


@dataclass
class OrchestratorState:
    phase: OrchestratorPhase = OrchestratorPhase.IDLE
    queue: list[QueryItem] = field(default_factory=list)
    cursor: int = 0
    resolved: list[ResolvedRecord] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    # Result awaiting human input; only set while suspended
    pending: Optional[Union[NeedsDisambiguation, NotFound]] = None
    area_hint: str = ""

    def current(self) -> Optional[QueryItem]:
        if self.cursor < len(self.queue):
            return self.queue[self.cursor]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "queue": [q.to_dict() for q in self.queue],
            "cursor": self.cursor,
            "resolved": [r.to_dict() for r in self.resolved],
            "errors": [e.to_dict() for e in self.errors],
            "pending": self.pending.to_dict() if self.pending is not None else None,
            "area_hint": self.area_hint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrchestratorState":
        pending = data.get("pending")
        return cls(
            phase=OrchestratorPhase(data["phase"]),
            queue=[QueryItem(q["source_address"], q["query_address"]) for q in data.get("queue", [])],
            cursor=int(data.get("cursor", 0)),
            resolved=[ResolvedRecord.from_dict(r) for r in data.get("resolved", [])],
            errors=[ItemError.from_dict(e) for e in data.get("errors", [])],
            pending=result_from_dict(pending) if pending else None,
            area_hint=data.get("area_hint", ""),
        )


class GeocodeOrchestrator:
    """
    Drives a geocoder over a queue of addresses, one item at a time.

    Every public event returns the phase the machine ends up in. Events
    that the current phase does not accept raise InvalidTransition.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        cache: Optional[GeocodeCache] = None,
        max_candidates: int = 5,
        state: Optional[OrchestratorState] = None,
    ):
        """
        Args:
            geocoder: Provider adapter, fixed for the whole batch
            cache: Optional result cache, consulted before the provider
            max_candidates: Most candidates ever offered for disambiguation
            state: Previously serialized state to resume from
        """
        if not 1 <= max_candidates <= 5:
            raise ValueError("max_candidates must be between 1 and 5")
        self.geocoder = geocoder
        self.cache = cache
        self.max_candidates = max_candidates
        self.state = state or OrchestratorState()

    @property
    def phase(self) -> OrchestratorPhase:
        return self.state.phase

    @property
    def pending(self) -> Optional[Union[NeedsDisambiguation, NotFound]]:
        return self.state.pending

    def _require(self, event: str, *phases: OrchestratorPhase) -> None:
        if self.state.phase not in phases:
            raise InvalidTransition(event, self.state.phase.value)

    # --- Events --------------------------------------------------------------
    def start(self, records: Sequence[Any], area_hint: str = "") -> OrchestratorPhase:
        """
        Begin a new batch.

        Args:
            records: AddressRecords, dicts with an `address` key, or strings
            area_hint: Appended to queries that do not already mention it

        Raises:
            DataValidationError: If any record has no usable address
            InvalidTransition: If a batch is already in progress
        """
        self._require("start", OrchestratorPhase.IDLE, OrchestratorPhase.DONE)
        validated = validate_address_records(list(records), source="orchestrator")

        self.state = OrchestratorState(
            phase=OrchestratorPhase.RUNNING,
            queue=[QueryItem.build(r.address, area_hint) for r in validated],
            area_hint=area_hint,
        )
        logger.info(f"Geocoding {len(self.state.queue)} addresses via {self.geocoder.PROVIDER.value}")
        return self._run()

    def choose(self, candidate: Union[int, Resolved]) -> OrchestratorPhase:
        """
        Resolve the pending ambiguous item with one of its candidates.

        Args:
            candidate: Index into the pending candidates, or the candidate itself

        Raises:
            ValueError: If the candidate is not one of those offered
        """
        self._require("choose", OrchestratorPhase.SUSPENDED_ON_DISAMBIGUATION)
        candidates = self.state.pending.candidates

        if isinstance(candidate, int):
            if not 0 <= candidate < len(candidates):
                raise ValueError(f"Candidate index {candidate} out of range (0-{len(candidates) - 1})")
            chosen = candidates[candidate]
        else:
            if candidate not in candidates:
                raise ValueError("Chosen candidate was not among those offered")
            chosen = candidate

        self._record_resolved(chosen, from_cache=False)
        return self._resume()

    def provide_coordinates(self, lat: float, lng: float, label: Optional[str] = None) -> OrchestratorPhase:
        """
        Resolve the pending not-found item with manually entered coordinates.

        Raises:
            ValueError: If the coordinates are outside valid ranges
        """
        self._require("provide_coordinates", OrchestratorPhase.SUSPENDED_ON_NOT_FOUND)
        lat, lng = float(lat), float(lng)
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise ValueError(f"Coordinates out of range: ({lat}, {lng})")

        item = self.state.current()
        manual = Resolved(lat=lat, lng=lng, formatted_address=label or item.source_address, manual=True)
        self._record_resolved(manual, from_cache=False)
        return self._resume()

    def skip(self) -> OrchestratorPhase:
        """Give up on the pending item and carry on with the queue."""
        self._require("skip", *SUSPENDED_PHASES)
        pending = self.state.pending
        what = "ambiguous" if isinstance(pending, NeedsDisambiguation) else "not found"
        self._record_error(f"Skipped by user ({what})", FailureReason.SKIPPED)
        return self._resume()

    def cancel(self) -> OrchestratorPhase:
        """
        Abandon the batch. The pending item and the rest of the queue are
        dropped; already resolved items are kept.
        """
        dropped = len(self.state.queue) - self.state.cursor
        self.state.pending = None
        self.state.queue = self.state.queue[: self.state.cursor]
        self.state.phase = OrchestratorPhase.IDLE
        if dropped:
            logger.info(f"Geocoding cancelled, {dropped} addresses not processed")
        return self.state.phase

    # --- Loop ----------------------------------------------------------------
    def _lookup(self, query: str) -> tuple[GeocodeResult, bool]:
        provider = self.geocoder.PROVIDER
        if self.cache is not None:
            cached = self.cache.get(provider, query)
            if cached is not None:
                logger.debug(f"Cache hit for '{query}'")
                return cached, True

        result = self.geocoder.resolve(query)
        if self.cache is not None:
            self.cache.put(provider, query, result)
        return result, False

    def _run(self) -> OrchestratorPhase:
        state = self.state
        while state.cursor < len(state.queue):
            item = state.queue[state.cursor]
            try:
                result, from_cache = self._lookup(item.query_address)
            except (RecMapperError, ValueError, TypeError, AttributeError, KeyError) as e:
                logger.error(f"Geocoding raised for '{item.source_address}': {type(e).__name__}: {e}")
                self._record_error(f"{type(e).__name__}: {e}", FailureReason.PROVIDER_ERROR)
                state.cursor += 1
                continue

            if isinstance(result, Resolved):
                self._record_resolved(result, from_cache)
                state.cursor += 1
            elif isinstance(result, NeedsDisambiguation):
                state.pending = NeedsDisambiguation(result.candidates[: self.max_candidates])
                state.phase = OrchestratorPhase.SUSPENDED_ON_DISAMBIGUATION
                logger.info(f"'{item.source_address}' matched {len(result.candidates)} places, waiting for a choice")
                return state.phase
            elif isinstance(result, NotFound):
                state.pending = result
                state.phase = OrchestratorPhase.SUSPENDED_ON_NOT_FOUND
                logger.info(f"'{item.source_address}' not found, waiting for coordinates or skip")
                return state.phase
            else:  # Failed
                self._record_error(result.message, result.reason, result.retryable)
                logger.warning(f"Geocoding failed for '{item.source_address}': {result.message}")
                state.cursor += 1

        state.phase = OrchestratorPhase.DONE
        logger.info(f"Geocoding done: {len(state.resolved)} resolved, {len(state.errors)} errors")
        return state.phase

    def _resume(self) -> OrchestratorPhase:
        self.state.pending = None
        self.state.cursor += 1
        self.state.phase = OrchestratorPhase.RUNNING
        return self._run()

    def _record_resolved(self, result: Resolved, from_cache: bool) -> None:
        self.state.resolved.append(ResolvedRecord(
            index=self.state.cursor,
            item=self.state.current(),
            result=result,
            from_cache=from_cache,
        ))

    def _record_error(self, message: str, reason: FailureReason, retryable: bool = False) -> None:
        self.state.errors.append(ItemError(
            index=self.state.cursor,
            item=self.state.current(),
            message=message,
            reason=reason,
            retryable=retryable,
        ))

    # --- Output --------------------------------------------------------------
    def outcome_count(self) -> int:
        """Resolved plus errored/skipped items."""
        return len(self.state.resolved) + len(self.state.errors)

    def error_summary(self, limit: int = 20) -> str:
        """Human-readable list of items that did not resolve."""
        errors = self.state.errors
        if not errors:
            return ""
        lines = [f"{len(errors)} addresses could not be geocoded:"]
        for err in errors[:limit]:
            hint = " (retry later)" if err.retryable else ""
            lines.append(f"- {err.item.source_address}: {err.message} [{err.reason.value}]{hint}")
        if len(errors) > limit:
            lines.append(f"... ({len(errors) - limit} more)")
        return "\n".join(lines)

    def markers(self):
        """Map markers for the resolved items, numbered in resolution order."""
        from ..mapping.sink import build_markers

        return build_markers(self.state.resolved)
