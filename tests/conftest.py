"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
import struct

# ---------------------------------------------------------------------------
# routebook.api.deps validates JWT_SECRET at import time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# SQLite has no JSONB; render it as TEXT so the JSON type handles the values.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from routebook.database.models import Base, Club, Role, User, Visibility  # noqa: E402
from routebook.engine.visibility import Viewer  # noqa: E402


@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Routebook tables.

    StaticPool keeps one connection, so every session sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Users & clubs
# ---------------------------------------------------------------------------
def make_club(engine: Engine, short_name: str, **kwargs) -> Club:
    with Session(engine, expire_on_commit=False) as session:
        club = Club(short_name=short_name, **kwargs)
        session.add(club)
        session.commit()
        return club


def make_user(
    engine: Engine,
    name: str,
    role: str = Role.STANDARD,
    clubs: list[Club] | None = None,
    **kwargs,
) -> Viewer:
    """Insert a user and return the matching :class:`Viewer`."""
    club_ids = [c.id for c in clubs or []]
    with Session(engine, expire_on_commit=False) as session:
        user = User(
            email=f"{name}@example.org",
            display_name=name,
            role=str(role),
            visibility=kwargs.pop("visibility", Visibility.ALL.value),
            member_of=club_ids,
            **kwargs,
        )
        session.add(user)
        session.commit()
        return Viewer(role=user.role, id=user.id, club_ids=frozenset(club_ids))


@pytest.fixture
def club_a(db_engine) -> Club:
    return make_club(db_engine, "PBM", full_name="Praga Brno Moravia")


@pytest.fixture
def club_b(db_engine) -> Club:
    return make_club(db_engine, "SOK", full_name="Sokol Orienteers")


@pytest.fixture
def admin(db_engine) -> Viewer:
    return make_user(db_engine, "admin", Role.ADMIN)


@pytest.fixture
def alice(db_engine, club_a) -> Viewer:
    return make_user(db_engine, "alice", clubs=[club_a], oris_id="1001")


@pytest.fixture
def bob(db_engine, club_a) -> Viewer:
    return make_user(db_engine, "bob", clubs=[club_a])


@pytest.fixture
def carol(db_engine, club_b) -> Viewer:
    return make_user(db_engine, "carol", clubs=[club_b])


@pytest.fixture
def guest(db_engine) -> Viewer:
    return make_user(db_engine, "guest", Role.GUEST)


@pytest.fixture
def anonymous() -> Viewer:
    return Viewer.anonymous()


# ---------------------------------------------------------------------------
# QuickRoute JPEG builder
# ---------------------------------------------------------------------------
def _qr_tag(tag: int, body: bytes) -> bytes:
    return struct.pack("<BI", tag, len(body)) + body


def _qr_long_lat(lat: float, long: float) -> bytes:
    return struct.pack("<ii", round(long * 3600000), round(lat * 3600000))


def build_quickroute_payload(
    corners: list[tuple[float, float]],
    track: list[tuple[float, float]],
    pixels: tuple[int, int, int, int] = (0, 0, 800, 600),
    with_times: bool = False,
) -> bytes:
    """Tag stream with version, corners, pixel box and one single-segment session.

    *corners* are ``(lat, long)`` in SW, NW, NE, SE order.
    """
    attributes = 0x01 | (0x02 if with_times else 0)
    waypoints = b""
    for i, point in enumerate(track):
        waypoints += _qr_long_lat(*point)
        if with_times:
            waypoints += b"\x00" + struct.pack("<q", 0) if i == 0 else b"\x01" + struct.pack("<H", 1000)
    route = struct.pack("<HII", attributes, 0, 1) + struct.pack("<I", len(track)) + waypoints
    session = _qr_tag(7, route) + _qr_tag(9, _qr_long_lat(*corners[0]))
    corner_bytes = b"".join(_qr_long_lat(*c) for c in corners)
    return (
        _qr_tag(1, bytes([1, 0, 0, 0]))
        + _qr_tag(2, corner_bytes)
        + _qr_tag(3, corner_bytes)
        + _qr_tag(4, struct.pack("<HHHH", *pixels))
        + _qr_tag(5, struct.pack("<I", 1) + _qr_tag(6, session))
    )


def wrap_in_jpeg(payload: bytes | None, chunk_size: int = 60000) -> bytes:
    """Minimal JPEG: SOI, a JFIF APP0, QuickRoute APP0 chunks, SOS, EOI."""
    def segment(marker: int, data: bytes) -> bytes:
        return bytes([0xFF, marker]) + struct.pack(">H", len(data) + 2) + data

    out = b"\xff\xd8" + segment(0xE0, b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00")
    if payload is not None:
        for i in range(0, len(payload), chunk_size):
            out += segment(0xE0, b"QuickRoute" + payload[i : i + chunk_size])
    out += segment(0xDA, b"\x00" * 6) + b"\x12\x34\x56" + b"\xff\xd9"
    return out


SQUARE_CORNERS = [(50.0, 14.0), (50.1, 14.0), (50.1, 14.2), (50.0, 14.2)]
SQUARE_TRACK = [(50.0, 14.0), (50.0, 14.1), (50.05, 14.1)]


@pytest.fixture
def quickroute_jpeg() -> bytes:
    return wrap_in_jpeg(build_quickroute_payload(SQUARE_CORNERS, SQUARE_TRACK))
