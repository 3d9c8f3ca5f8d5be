"""
routebook.engine.links — Event ↔ LinkedEvent reference delta
=============================================================

Pure set arithmetic for the two-sided reference between an Event
(``linked_to``) and a LinkedEvent (``includes``).  No DB I/O here; the
mirror write lives in :mod:`routebook.services.link_service`.

The reference lists are stored as JSON arrays but behave as sets:
:func:`with_id` and :func:`without_id` never produce duplicates and always
return a *new* list, so SQLAlchemy sees the column as changed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

__all__ = ["LinkDelta", "compute_delta", "with_id", "without_id"]


@dataclass(frozen=True, slots=True)
class LinkDelta:
    """Ids gained and lost by one side of the reference."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.removed)


def compute_delta(
    previous: Iterable[str] | None, new: Iterable[str] | None
) -> LinkDelta:
    """Return the ids to add and remove to move from *previous* to *new*.

    ``new is None`` means the caller did not ask for a change, so nothing is
    added or removed.  ``new == []`` means "clear it": every previous id is
    removed.  Output order follows the input order, without duplicates.
    """
    if new is None:
        return LinkDelta()

    before = list(dict.fromkeys(previous or ()))
    after = list(dict.fromkeys(new))
    before_set = set(before)
    after_set = set(after)

    return LinkDelta(
        added=[i for i in after if i not in before_set],
        removed=[i for i in before if i not in after_set],
    )


def with_id(values: Iterable[str] | None, item: str) -> list[str]:
    """Set-insert: *values* plus *item*, unchanged if already present."""
    result = list(values or ())
    if item not in result:
        result.append(item)
    return result


def without_id(values: Iterable[str] | None, item: str) -> list[str]:
    """Set-remove: every occurrence of *item* dropped."""
    return [v for v in (values or ()) if v != item]
