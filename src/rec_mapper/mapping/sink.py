"""
Map output for geocoded addresses.

The map itself is someone else's concern; a sink receives numbered
markers plus a "fit all" command. GeoDataFrameSink collects them into a
GeoDataFrame that can be written out as GeoJSON.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Optional, Sequence, TYPE_CHECKING

import geopandas as gpd
from shapely.geometry import Point

from ..geocoding.models import MatchQuality, Resolved

if TYPE_CHECKING:
    from ..geocoding.orchestrator import ResolvedRecord

logger = logging.getLogger(__name__)

CRS = "EPSG:4326"


@dataclass(frozen=True)
class MapMarker:
    lat: float
    lng: float
    label: int
    original_address: str
    formatted_address: str
    match_quality: MatchQuality
    manual: bool = False
    partial_match: bool = False

    @classmethod
    def from_resolved(cls, label: int, original_address: str, result: Resolved) -> "MapMarker":
        return cls(
            lat=result.lat,
            lng=result.lng,
            label=label,
            original_address=original_address,
            formatted_address=result.formatted_address,
            match_quality=result.match_quality,
            manual=result.manual,
            partial_match=result.partial_match,
        )

    @property
    def quality_label(self) -> str:
        """Short description shown next to the marker."""
        if self.manual:
            return "Manual entry"
        if self.partial_match:
            return "Approximate match"
        if self.match_quality == MatchQuality.ROOFTOP_EXACT:
            return "Exact match"
        return "Approximate"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["match_quality"] = self.match_quality.value
        data["quality_label"] = self.quality_label
        return data


def build_markers(records: Sequence["ResolvedRecord"]) -> list[MapMarker]:
    """Number resolved records 1..n in resolution order."""
    return [
        MapMarker.from_resolved(i, rec.item.source_address, rec.result)
        for i, rec in enumerate(records, start=1)
    ]


class MapSink(ABC):
    """Receives markers and renders them somewhere."""

    @abstractmethod
    def add_marker(self, marker: MapMarker) -> None:
        ...

    @abstractmethod
    def fit_bounds(self) -> Optional[tuple[float, float, float, float]]:
        """Bounds (minx, miny, maxx, maxy) covering every marker, or None when empty."""
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def render(self) -> Any:
        ...

    def add_markers(self, markers: Sequence[MapMarker]) -> None:
        for marker in markers:
            self.add_marker(marker)


class GeoDataFrameSink(MapSink):
    """Collects markers as WGS84 points in a GeoDataFrame."""

    COLUMNS = [
        "label",
        "original_address",
        "formatted_address",
        "match_quality",
        "quality_label",
        "manual",
        "partial_match",
    ]

    def __init__(self):
        self.markers: list[MapMarker] = []

    def __len__(self) -> int:
        return len(self.markers)

    def add_marker(self, marker: MapMarker) -> None:
        self.markers.append(marker)

    def clear(self) -> None:
        self.markers = []

    def render(self) -> gpd.GeoDataFrame:
        rows = []
        for marker in self.markers:
            data = marker.to_dict()
            rows.append({col: data[col] for col in self.COLUMNS})
        geometry = [Point(m.lng, m.lat) for m in self.markers]
        return gpd.GeoDataFrame(rows, columns=self.COLUMNS, geometry=geometry, crs=CRS)

    def fit_bounds(self) -> Optional[tuple[float, float, float, float]]:
        if not self.markers:
            return None
        minx, miny, maxx, maxy = self.render().total_bounds
        return float(minx), float(miny), float(maxx), float(maxy)

    def to_geojson(self, path: Path | str) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render().to_json(), encoding="utf-8")
        logger.info(f"Wrote {len(self.markers)} markers to {path}")
        return path
