"""
routebook.engine.visibility — Per-viewer runner projection
===========================================================

Decides, for one viewer, which runner entries of an event may be returned.
Hidden runners are dropped from the output entirely, so the response gives
no hint of how many there were.

A runner is visible when ANY of these holds:

    ===========================================  =========================
    clause                                       anonymous viewer?
    ===========================================  =========================
    viewer is an admin                           —
    runner visibility is ``public``              yes
    viewer is logged in and visibility ``all``   no
    viewer is the runner                         no
    visibility ``club`` and a club is shared     no
    ===========================================  =========================

The detail view (:func:`project_runners`) and the listing view
(:func:`summarise_runners`) use the same test and differ only in the
fields they emit.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from routebook.database.models import Role, Visibility

__all__ = [
    "Viewer",
    "can_see",
    "project_runners",
    "summarise_runner",
    "summarise_runners",
]


@dataclass(frozen=True, slots=True)
class Viewer:
    """Who is asking.  Passed explicitly into every read and write."""

    role: str
    id: str | None = None
    club_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def anonymous(cls) -> Viewer:
        return cls(role=Role.ANONYMOUS)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_authenticated(self) -> bool:
        return self.role != Role.ANONYMOUS and self.id is not None


def can_see(runner: Mapping, viewer: Viewer, runner_clubs: Iterable[str] = ()) -> bool:
    """Return True when *viewer* may see *runner*.

    *runner_clubs* are the club ids of the runner's user.
    """
    if viewer.is_admin:
        return True

    visibility = runner.get("visibility") or Visibility.ALL
    if visibility == Visibility.PUBLIC:
        return True
    if not viewer.is_authenticated:
        return False

    if visibility == Visibility.ALL:
        return True
    if viewer.id == runner.get("user"):
        return True
    if visibility == Visibility.CLUB:
        return not viewer.club_ids.isdisjoint(runner_clubs)
    return False


def project_runners(
    runners: Iterable[Mapping],
    viewer: Viewer,
    member_of: Mapping[str, Iterable[str]] | None = None,
) -> list[dict]:
    """Return the runners *viewer* may see, in their original order.

    *member_of* maps a user id to that user's club ids; users missing from it
    are treated as belonging to no club.
    """
    member_of = member_of or {}
    return [
        dict(runner)
        for runner in runners
        if can_see(runner, viewer, member_of.get(runner.get("user"), ()))
    ]


def summarise_runner(runner: Mapping, display_name: str | None = None) -> dict:
    return {
        "user": runner.get("user"),
        "display_name": display_name,
        "course_title": runner.get("course_title"),
        "number_maps": len(runner.get("maps") or []),
    }


def summarise_runners(
    runners: Iterable[Mapping],
    viewer: Viewer,
    member_of: Mapping[str, Iterable[str]] | None = None,
    display_names: Mapping[str, str] | None = None,
) -> list[dict]:
    """Listing-view projection: same membership test, reduced fields."""
    display_names = display_names or {}
    return [
        summarise_runner(runner, display_names.get(runner.get("user")))
        for runner in project_runners(runners, viewer, member_of)
    ]
