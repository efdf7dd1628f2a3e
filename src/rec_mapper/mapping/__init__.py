from .sink import MapMarker, MapSink, GeoDataFrameSink, build_markers

__all__ = ["MapMarker", "MapSink", "GeoDataFrameSink", "build_markers"]
