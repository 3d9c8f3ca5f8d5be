"""
routebook.services.link_service — Reference mirror & link repair
=================================================================

``events.linked_to`` and ``linked_events.includes`` store the same edges from
both ends.  Whichever side a mutation writes directly, :func:`apply_mirror`
brings the other side into line in the same session.

The repair job (:func:`repair_links`) is for data written outside the
services, e.g. restored backups or manual SQL.  It works like a counter
reconciliation:

    1. Load every event's ``linked_to`` and every linked event's ``includes``.
    2. Report each edge that appears on one side only.
    3. Re-derive the other side from the side named as authority.
    4. Log every correction.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from routebook.database.engine import get_session
from routebook.database.models import Event, LinkedEvent
from routebook.engine.links import LinkDelta, with_id, without_id
from routebook.errors import InvariantRepairable, ValidationError

logger = logging.getLogger(__name__)

AUTHORITIES = ("event", "linked_event")


# ---------------------------------------------------------------------------
# Mirror
# ---------------------------------------------------------------------------
def apply_mirror(
    session: Session,
    delta: LinkDelta,
    mirror_model: type,
    mirror_field: str,
    owner_id: str,
) -> int:
    """Insert *owner_id* into ``mirror_field`` of every added row and remove
    it from every removed row.

    Rows that no longer exist are skipped.  Re-running with the same delta
    changes nothing.  Returns the number of rows modified.
    """
    if not delta:
        return 0

    wanted = set(delta.added) | set(delta.removed)
    rows = {
        row.id: row
        for row in session.scalars(select(mirror_model).where(mirror_model.id.in_(wanted)))
    }

    changed = 0
    for target_id in delta.added:
        row = rows.get(target_id)
        if row is None:
            continue
        current = getattr(row, mirror_field) or []
        if owner_id not in current:
            setattr(row, mirror_field, with_id(current, owner_id))
            changed += 1
    for target_id in delta.removed:
        row = rows.get(target_id)
        if row is None:
            continue
        current = getattr(row, mirror_field) or []
        if owner_id in current:
            setattr(row, mirror_field, without_id(current, owner_id))
            changed += 1

    logger.debug(
        "Mirrored %s into %s.%s: +%d -%d (%d row(s) changed)",
        owner_id, mirror_model.__tablename__, mirror_field,
        len(delta.added), len(delta.removed), changed,
    )
    return changed


def pull_everywhere(session: Session, mirror_model: type, mirror_field: str, owner_id: str) -> int:
    """Remove *owner_id* from ``mirror_field`` of every row that holds it."""
    holders = [
        row.id
        for row in session.scalars(select(mirror_model))
        if owner_id in (getattr(row, mirror_field) or [])
    ]
    return apply_mirror(
        session, LinkDelta(removed=holders), mirror_model, mirror_field, owner_id
    )


# ---------------------------------------------------------------------------
# Drift detection
# ---------------------------------------------------------------------------
def _load_sides(session: Session) -> tuple[dict[str, Event], dict[str, LinkedEvent]]:
    events = {e.id: e for e in session.scalars(select(Event))}
    linked = {le.id: le for le in session.scalars(select(LinkedEvent))}
    return events, linked


def _drift(events: dict[str, Event], linked: dict[str, LinkedEvent]) -> tuple[int, list[InvariantRepairable]]:
    checked = 0
    found: list[InvariantRepairable] = []
    for event in events.values():
        for linked_id in event.linked_to or []:
            checked += 1
            other = linked.get(linked_id)
            if other is None or event.id not in (other.includes or []):
                found.append(InvariantRepairable(event.id, linked_id, "linked_event"))
    for other in linked.values():
        for event_id in other.includes or []:
            checked += 1
            event = events.get(event_id)
            if event is None or other.id not in (event.linked_to or []):
                found.append(InvariantRepairable(event_id, other.id, "event"))
    return checked, found


def find_link_drift(session: Session) -> list[InvariantRepairable]:
    """Return one entry per edge stored on only one side."""
    return _drift(*_load_sides(session))[1]


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------
def _repair_one(
    problem: InvariantRepairable,
    authority: str,
    events: dict[str, Event],
    linked: dict[str, LinkedEvent],
) -> str:
    """Fix one half-edge in place and return a short description of the fix."""
    event = events.get(problem.event_id)
    other = linked.get(problem.linked_event_id)

    if problem.missing_on == "linked_event":
        # edge recorded on the event only
        if authority == "event" and other is not None:
            other.includes = with_id(other.includes, event.id)
            return "added to includes"
        event.linked_to = without_id(event.linked_to, problem.linked_event_id)
        return "removed from linked_to"

    # edge recorded on the linked event only
    if authority == "linked_event" and event is not None and event.active:
        event.linked_to = with_id(event.linked_to, other.id)
        return "added to linked_to"
    other.includes = without_id(other.includes, problem.event_id)
    return "removed from includes"


def repair_links(engine: Engine, authority: str = "event") -> dict:
    """Make both sides of every Event ↔ LinkedEvent edge agree.

    *authority* names the side treated as correct: ``"event"`` keeps
    ``events.linked_to`` and rebuilds ``linked_events.includes``,
    ``"linked_event"`` does the reverse.  Edges pointing at missing rows are
    dropped whichever side is authoritative.

    Returns ``{"checked": N, "corrected": M, "corrections": [...], "timestamp": ...}``.
    """
    if authority not in AUTHORITIES:
        raise ValidationError(
            f"authority must be one of {AUTHORITIES}, not {authority!r}", field="authority"
        )

    corrections: list[dict] = []
    with get_session(engine) as session:
        events, linked = _load_sides(session)
        checked, problems = _drift(events, linked)
        for problem in problems:
            action = _repair_one(problem, authority, events, linked)
            corrections.append({
                "event_id": problem.event_id,
                "linked_event_id": problem.linked_event_id,
                "missing_on": problem.missing_on,
                "action": action,
            })

    if corrections:
        logger.warning(
            "Link repair (%s authoritative): corrected %d/%d edges: %s",
            authority, len(corrections), checked, corrections,
        )
    else:
        logger.info("Link repair: all %d edges consistent", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "timestamp": datetime.now(UTC).isoformat(),
    }
