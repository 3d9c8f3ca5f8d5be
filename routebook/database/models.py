"""
routebook.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- users          — Accounts (role, default visibility, club memberships)
- clubs          — Orienteering clubs (organisers, runner memberships)
- events         — One race/session; runners, maps and geo are embedded JSON
- linked_events  — Named groups of events (e.g. stages of a multi-day race)
- audit_log      — Append-only trail of every mutation

Runners, map records and geo info are owned by value inside ``events.runners``
so an event is always loaded and filtered as one unit.  ``events.linked_to``
and ``linked_events.includes`` hold the same edge from both ends; keeping them
symmetric is the job of :mod:`routebook.services.link_service`.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Routebook ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Role(enum.StrEnum):
    """Account roles.  ``ANONYMOUS`` is only ever a viewer, never stored."""
    ADMIN = "admin"
    STANDARD = "standard"
    GUEST = "guest"
    ANONYMOUS = "anonymous"


class Visibility(enum.StrEnum):
    """Who may see a runner's entry in an event."""
    PUBLIC = "public"    # anyone, even when not logged in
    ALL = "all"          # any logged-in user, guests included
    CLUB = "club"        # logged-in members of a shared club
    PRIVATE = "private"  # the runner (and admins) only


class MapType(enum.StrEnum):
    COURSE = "course"
    ROUTE = "route"
    OVERLAY = "overlay"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(200), default=None)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.STANDARD.value)
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Visibility.ALL.value
    )
    member_of: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    oris_id: Mapped[str | None] = mapped_column(String(20), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.display_name!r} role={self.role}>"


# ---------------------------------------------------------------------------
# Clubs
# ---------------------------------------------------------------------------
class Club(Base):
    __tablename__ = "clubs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str | None] = mapped_column(String(36), default=None)
    short_name: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(200), default=None)
    oris_id: Mapped[str | None] = mapped_column(String(20), default=None)
    country: Mapped[str | None] = mapped_column(String(3), default=None)
    website: Mapped[str | None] = mapped_column(String(500), default=None)

    def __repr__(self) -> str:
        return f"<Club id={self.id} short={self.short_name!r}>"


# ---------------------------------------------------------------------------
# Events — one race or training session
# ---------------------------------------------------------------------------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    oris_id: Mapped[str | None] = mapped_column(String(100), default=None)
    organised_by: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    linked_to: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    map_name: Mapped[str | None] = mapped_column(String(200), default=None)
    loc_place: Mapped[str | None] = mapped_column(String(200), default=None)
    loc_regions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    loc_country: Mapped[str | None] = mapped_column(String(3), default=None)
    loc_lat: Mapped[float | None] = mapped_column(Float, default=None)
    loc_long: Mapped[float | None] = mapped_column(Float, default=None)
    # Each corner is [lat, long] or [] when unknown
    loc_corner_sw: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    loc_corner_nw: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    loc_corner_ne: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    loc_corner_se: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    types: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    website: Mapped[str | None] = mapped_column(String(500), default=None)
    results: Mapped[str | None] = mapped_column(String(500), default=None)

    # Embedded runner documents (see routebook.services.event_service)
    runners: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    active: Mapped[bool] = mapped_column(Boolean, default=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # UPDATE … WHERE version_id = :expected; a concurrent writer gets StaleDataError
    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index(
            "ix_events_date_name",
            "date",
            "name",
            unique=True,
            postgresql_where=active.is_(True),
            sqlite_where=active.is_(True),
        ),
        Index(
            "ix_events_oris_id",
            "oris_id",
            unique=True,
            postgresql_where=oris_id.isnot(None),
            sqlite_where=oris_id.isnot(None),
        ),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} name={self.name!r} date={self.date} active={self.active}>"


# ---------------------------------------------------------------------------
# LinkedEvent — named grouping of events
# ---------------------------------------------------------------------------
class LinkedEvent(Base):
    __tablename__ = "linked_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    display_name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    includes: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LinkedEvent id={self.id} name={self.display_name!r}>"


# ---------------------------------------------------------------------------
# AuditLog — append-only audit trail
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} actor={self.actor_id} action={self.action_type}>"
