"""
routebook.engine.geo — Track distance and map geodata
======================================================

Turns a decoded QuickRoute payload into the ``geo`` block stored on a map
record, and works out which event location fields it may fill.

Pure functions; no DB I/O.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from routebook.engine.quickroute import CORNER_NAMES, QuickRouteData, read_quickroute

__all__ = [
    "EARTH_RADIUS_M",
    "GeoPayload",
    "event_geo_updates",
    "extract_geo",
    "geo_from_quickroute",
    "haversine_distance",
    "track_distance_km",
]

EARTH_RADIUS_M = 6371000.0


def haversine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle distance in metres between two ``[lat, long]`` points."""
    lat1, lon1, lat2, lon2 = map(math.radians, (a[0], a[1], b[0], b[1]))
    dlat, dlon = lat2 - lat1, lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def track_distance_km(track: Sequence[Sequence[float]]) -> float:
    """Length of *track* in km, floored to whole metres first.

    Sums exactly ``len(track) - 1`` consecutive legs; 0 or 1 point → 0.
    """
    metres = sum(
        haversine_distance(track[i], track[i + 1]) for i in range(len(track) - 1)
    )
    return math.floor(metres) / 1000


# ---------------------------------------------------------------------------
# GeoPayload — what a geocoded map contributes
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class GeoPayload:
    track: list[list[float]] = field(default_factory=list)
    distance_run: float = 0.0
    map_centre: dict[str, float] = field(default_factory=dict)
    map_corners: dict[str, dict[str, float]] = field(default_factory=dict)
    image_corners: dict[str, dict[str, float]] = field(default_factory=dict)
    location_size_pixels: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "track": [list(p) for p in self.track],
            "distance_run": self.distance_run,
            "map_centre": dict(self.map_centre),
            "map_corners": {k: dict(v) for k, v in self.map_corners.items()},
            "image_corners": {k: dict(v) for k, v in self.image_corners.items()},
            "location_size_pixels": dict(self.location_size_pixels),
        }


def _corner_dict(points) -> dict[str, dict[str, float]]:
    return {
        name: {"lat": point.lat, "long": point.long}
        for name, point in zip(CORNER_NAMES, points)
    }


def geo_from_quickroute(data: QuickRouteData) -> GeoPayload:
    """Build the stored geo block from decoded QuickRoute data.

    The track is the first route segment of the first session; a file with
    no sessions still yields corners and centre with an empty track.
    """
    track: list[list[float]] = []
    if data.sessions and data.sessions[0].segments:
        track = [[p.lat, p.long] for p in data.sessions[0].segments[0]]

    corners = data.map_corners
    centre = {}
    if corners:
        centre = {
            "lat": sum(p.lat for p in corners) / len(corners),
            "long": sum(p.long for p in corners) / len(corners),
        }

    pixels = {}
    if data.location_size_pixels is not None:
        x, y, width, height = data.location_size_pixels
        pixels = {"x": x, "y": y, "width": width, "height": height}

    return GeoPayload(
        track=track,
        distance_run=track_distance_km(track),
        map_centre=centre,
        map_corners=_corner_dict(corners),
        image_corners=_corner_dict(data.image_corners),
        location_size_pixels=pixels,
    )


def extract_geo(image_bytes: bytes) -> GeoPayload | None:
    """Decode *image_bytes*; ``None`` when the image is not georeferenced."""
    data = read_quickroute(image_bytes)
    if data is None or not data.map_corners:
        return None
    return geo_from_quickroute(data)


# ---------------------------------------------------------------------------
# Event location fields — first geocoded map wins
# ---------------------------------------------------------------------------
_CORNER_FIELDS = {
    "sw": "loc_corner_sw",
    "nw": "loc_corner_nw",
    "ne": "loc_corner_ne",
    "se": "loc_corner_se",
}


def _is_empty(value) -> bool:
    return value is None or value == "" or value == []


def event_geo_updates(event_fields: Mapping, payload: GeoPayload) -> dict:
    """Return the event fields *payload* may set: only those still empty."""
    updates: dict = {}
    if payload.map_centre:
        if _is_empty(event_fields.get("loc_lat")):
            updates["loc_lat"] = payload.map_centre["lat"]
        if _is_empty(event_fields.get("loc_long")):
            updates["loc_long"] = payload.map_centre["long"]

    for corner, column in _CORNER_FIELDS.items():
        point = payload.map_corners.get(corner)
        if point and _is_empty(event_fields.get(column)):
            updates[column] = [point["lat"], point["long"]]
    return updates
