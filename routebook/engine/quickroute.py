"""
routebook.engine.quickroute — QuickRoute JPEG payload reader
=============================================================

QuickRoute exports a route-annotated map as an ordinary JPEG and stores the
georeferencing in APP0 segments whose data starts with ``b"QuickRoute"``.
A large payload is split over several consecutive segments; the pieces are
concatenated (minus the 10-byte marker) before decoding.

Payload layout (little-endian)::

    repeat:  tag (uint8) | length (uint32) | data[length]

    tag 1   version                 4 × uint8
    tag 2   map corner positions    4 × LongLat  (SW, NW, NE, SE)
    tag 3   image corner positions  4 × LongLat  (SW, NW, NE, SE)
    tag 4   map location & size     4 × uint16   (x, y, width, height)
    tag 5   sessions                uint32 count, then count × (tag 6 | length | session)

    session data is itself a tag stream:
    tag 7   route                   see _read_route
    tag 9   projection origin       LongLat
    tags 8, 10, 11, 12              handles, laps, session info, map reading info (skipped)

    LongLat = int32 longitude, int32 latitude, both in degrees × 3 600 000;
              a position outside ±90 / ±180 degrees makes the payload invalid

Only the reading side is implemented; nothing here writes JPEGs.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import NamedTuple

from routebook.constants import is_valid_position

logger = logging.getLogger(__name__)

__all__ = [
    "CORNER_NAMES",
    "GeoPoint",
    "QuickRouteData",
    "QuickRouteFormatError",
    "RouteSession",
    "read_quickroute",
]

MARKER = b"QuickRoute"
CORNER_NAMES = ("sw", "nw", "ne", "se")
POSITION_SCALE = 3600000

# Top-level tags
TAG_VERSION = 1
TAG_MAP_CORNERS = 2
TAG_IMAGE_CORNERS = 3
TAG_LOCATION_SIZE_PIXELS = 4
TAG_SESSIONS = 5
TAG_SESSION = 6
# Session tags
TAG_ROUTE = 7
TAG_PROJECTION_ORIGIN = 9

# Waypoint attribute flags
ATTR_POSITION = 0x01
ATTR_TIME = 0x02
ATTR_HEART_RATE = 0x04
ATTR_ALTITUDE = 0x08

_SOI = b"\xff\xd8"
_SOS = 0xDA
_EOI = 0xD9
_APP0 = 0xE0
_STANDALONE_MARKERS = {0x01} | set(range(0xD0, 0xD8))


class QuickRouteFormatError(ValueError):
    """The QuickRoute payload is present but truncated or malformed."""


class GeoPoint(NamedTuple):
    lat: float
    long: float


@dataclass(slots=True)
class RouteSession:
    segments: list[list[GeoPoint]] = field(default_factory=list)
    projection_origin: GeoPoint | None = None


@dataclass(slots=True)
class QuickRouteData:
    version: str | None = None
    map_corners: list[GeoPoint] = field(default_factory=list)
    image_corners: list[GeoPoint] = field(default_factory=list)
    location_size_pixels: tuple[int, int, int, int] | None = None
    sessions: list[RouteSession] = field(default_factory=list)


# ---------------------------------------------------------------------------
# JPEG container
# ---------------------------------------------------------------------------
def _payload_from_jpeg(data: bytes) -> bytes | None:
    """Concatenate QuickRoute APP0 segments up to start-of-scan."""
    if not data.startswith(_SOI):
        return None

    chunks: list[bytes] = []
    pos = 2
    while pos + 4 <= len(data):
        if data[pos] != 0xFF:
            break
        marker = data[pos + 1]
        if marker == 0xFF:           # fill byte
            pos += 1
            continue
        if marker in (_SOS, _EOI):
            break
        if marker in _STANDALONE_MARKERS:
            pos += 2
            continue

        (length,) = struct.unpack_from(">H", data, pos + 2)
        if length < 2:
            break
        segment = data[pos + 4 : pos + 2 + length]
        if marker == _APP0 and segment.startswith(MARKER):
            chunks.append(segment[len(MARKER):])
        pos += 2 + length

    if not chunks:
        return None
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# Payload reader
# ---------------------------------------------------------------------------
class _Reader:
    """Bounds-checked little-endian cursor over a byte string."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int) -> bytes:
        if size < 0 or size > self.remaining:
            raise QuickRouteFormatError(
                f"payload truncated: need {size} bytes at offset {self.pos}, "
                f"{self.remaining} left"
            )
        chunk = self.data[self.pos : self.pos + size]
        self.pos += size
        return chunk

    def unpack(self, fmt: str) -> tuple:
        return struct.unpack("<" + fmt, self.take(struct.calcsize("<" + fmt)))

    def u8(self) -> int:
        return self.unpack("B")[0]

    def u16(self) -> int:
        return self.unpack("H")[0]

    def u32(self) -> int:
        return self.unpack("I")[0]

    def long_lat(self) -> GeoPoint:
        long, lat = self.unpack("ii")
        point = GeoPoint(lat=lat / POSITION_SCALE, long=long / POSITION_SCALE)
        if not is_valid_position(point.lat, point.long):
            raise QuickRouteFormatError(
                f"position out of range at offset {self.pos - 8}: {point.lat}, {point.long}"
            )
        return point

    def tags(self):
        """Yield ``(tag, sub_reader)`` until the data is exhausted."""
        while self.remaining:
            tag = self.u8()
            length = self.u32()
            yield tag, _Reader(self.take(length))


def _read_route(reader: _Reader) -> list[list[GeoPoint]]:
    attributes = reader.u16()
    extra_length = reader.u32()
    segment_count = reader.u32()

    segments: list[list[GeoPoint]] = []
    for _ in range(segment_count):
        waypoint_count = reader.u32()
        waypoints: list[GeoPoint] = []
        for _ in range(waypoint_count):
            if attributes & ATTR_POSITION:
                waypoints.append(reader.long_lat())
            if attributes & ATTR_TIME:
                # 0: absolute timestamp (int64); otherwise ms offset (uint16)
                if reader.u8() == 0:
                    reader.take(8)
                else:
                    reader.take(2)
            if attributes & ATTR_HEART_RATE:
                reader.take(1)
            if attributes & ATTR_ALTITUDE:
                reader.take(2)
            reader.take(extra_length)
        segments.append(waypoints)
    return segments


def _read_session(reader: _Reader) -> RouteSession:
    session = RouteSession()
    for tag, body in reader.tags():
        if tag == TAG_ROUTE:
            session.segments = _read_route(body)
        elif tag == TAG_PROJECTION_ORIGIN:
            session.projection_origin = body.long_lat()
    return session


def _read_sessions(reader: _Reader) -> list[RouteSession]:
    sessions = []
    for _ in range(reader.u32()):
        tag = reader.u8()
        body = _Reader(reader.take(reader.u32()))
        if tag != TAG_SESSION:
            raise QuickRouteFormatError(f"expected session tag, found {tag}")
        sessions.append(_read_session(body))
    return sessions


def _decode(payload: bytes) -> QuickRouteData:
    result = QuickRouteData()
    for tag, body in _Reader(payload).tags():
        if tag == TAG_VERSION:
            result.version = ".".join(str(b) for b in body.take(4))
        elif tag == TAG_MAP_CORNERS:
            result.map_corners = [body.long_lat() for _ in CORNER_NAMES]
        elif tag == TAG_IMAGE_CORNERS:
            result.image_corners = [body.long_lat() for _ in CORNER_NAMES]
        elif tag == TAG_LOCATION_SIZE_PIXELS:
            result.location_size_pixels = body.unpack("HHHH")
        elif tag == TAG_SESSIONS:
            result.sessions = _read_sessions(body)
    return result


def read_quickroute(image_bytes: bytes) -> QuickRouteData | None:
    """Decode the QuickRoute payload embedded in *image_bytes*.

    Returns ``None`` for non-JPEG input or a JPEG without a payload.

    Raises
    ------
    QuickRouteFormatError
        If a payload is present but cannot be decoded.
    """
    payload = _payload_from_jpeg(image_bytes)
    if payload is None:
        return None
    data = _decode(payload)
    logger.debug(
        "QuickRoute payload v%s: %d bytes, %d session(s)",
        data.version, len(payload), len(data.sessions),
    )
    return data
