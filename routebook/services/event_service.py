"""
routebook.services.event_service — Event & LinkedEvent mutations and reads
============================================================================

Every operation takes the requesting :class:`~routebook.engine.visibility.Viewer`
explicitly and runs as one unit of work:

  1. Check the viewer's role / ownership
  2. Whitelist and validate the input, dropping unknown reference ids
  3. Write the primary row and flush
  4. Mirror the Event ↔ LinkedEvent references onto the other side
  5. Write an audit row
  6. Commit (steps 3-5 succeed or fail together)

``events`` and ``linked_events`` are versioned, so a unit that lost a race
with a concurrent request fails with ``StaleDataError`` at flush; it is re-run
from a fresh read up to ``max_write_retries`` times.

Reads return plain dicts whose ``runners`` have already been projected for the
viewer.
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from routebook.config import DEFAULT_CONFIG, RoutebookConfig
from routebook.constants import (
    DELETED_TAG_FORMAT,
    EVENT_CREATE_FIELDS,
    EVENT_ID_FILTERS,
    EVENT_LIST_FIELDS,
    EVENT_LIST_FILTERS,
    EVENT_STRING_FILTERS,
    EVENT_TYPES,
    EVENT_UPDATE_FIELDS,
    LAT_BOUNDS,
    LONG_BOUNDS,
    RUNNER_CREATE_FIELDS,
    RUNNER_UPDATE_FIELDS,
    is_valid_date,
)
from routebook.database.engine import get_session
from routebook.database.models import Club, Event, LinkedEvent, Role, User, Visibility
from routebook.engine.links import LinkDelta, compute_delta
from routebook.engine.visibility import Viewer, project_runners, summarise_runners
from routebook.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from routebook.services.audit import log_action, row_to_dict
from routebook.services.link_service import apply_mirror, pull_everywhere
from routebook.services.validation_service import (
    is_valid_id,
    validate_event_ids,
    validate_ids,
    validate_user_id,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Unit-of-work runner
# ---------------------------------------------------------------------------
def run_unit(
    engine: Engine,
    description: str,
    unit: Callable[[Session], T],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> T:
    """Run *unit* in a fresh session, re-running it after a lost version race.

    Domain errors raised by *unit* roll back and propagate unchanged.
    Uniqueness violations surface as :class:`ConflictError`.
    """
    attempts = max(1, config.max_write_retries)
    for attempt in range(1, attempts + 1):
        try:
            with get_session(engine) as session:
                return unit(session)
        except StaleDataError:
            logger.warning(
                "%s: concurrent modification, retrying (%d/%d)",
                description, attempt, attempts,
            )
        except IntegrityError as exc:
            logger.warning("%s failed: %s", description, exc.orig)
            raise ConflictError(f"{description}: conflicts with an existing record.") from exc

    logger.warning("%s: gave up after %d concurrent modifications", description, attempts)
    raise ConflictError(f"{description}: the record was modified concurrently, try again.")


# ---------------------------------------------------------------------------
# Permission helpers
# ---------------------------------------------------------------------------
def require_member(viewer: Viewer, action: str) -> None:
    """Guests and anonymous viewers never mutate anything."""
    if not viewer.is_authenticated or viewer.role == Role.GUEST:
        logger.warning("Rejected %s by %s viewer %s", action, viewer.role, viewer.id)
        raise AuthorizationError(f"Guest accounts are not allowed to {action}.")


def _is_standard_user(viewer: Viewer, user_id: str | None) -> bool:
    return viewer.role == Role.STANDARD and viewer.id is not None and viewer.id == user_id


def _runner_ids(event: Event) -> list[str]:
    return [r.get("user") for r in event.runners or []]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def get_active_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id) if is_valid_id(event_id) else None
    if event is None or not event.active:
        logger.warning("Event %s not found", event_id)
        raise NotFoundError("Event could not be found.")
    return event


def _get_linked_event(session: Session, linked_event_id: str) -> LinkedEvent:
    linked = session.get(LinkedEvent, linked_event_id) if is_valid_id(linked_event_id) else None
    if linked is None:
        logger.warning("Linked event %s not found", linked_event_id)
        raise NotFoundError("Event link could not be found.")
    return linked


def _active_duplicate(session: Session, date: str, name: str, exclude_id: str | None = None) -> bool:
    query = select(Event.id).where(
        Event.date == date, Event.name == name, Event.active.is_(True)
    )
    if exclude_id is not None:
        query = query.where(Event.id != exclude_id)
    return session.scalars(query).first() is not None


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _user_lookup(session: Session, user_ids) -> tuple[dict[str, list], dict[str, str]]:
    """``(member_of, display_names)`` for the given user ids."""
    ids = [u for u in dict.fromkeys(user_ids) if u]
    if not ids:
        return {}, {}
    users = session.scalars(select(User).where(User.id.in_(ids))).all()
    return (
        {u.id: list(u.member_of or []) for u in users},
        {u.id: u.display_name for u in users},
    )


def _event_fields(event: Event) -> dict:
    return {
        "id": event.id,
        "owner": event.owner_id,
        "date": event.date,
        "name": event.name,
        "oris_id": event.oris_id,
        "organised_by": list(event.organised_by or []),
        "linked_to": list(event.linked_to or []),
        "map_name": event.map_name,
        "loc_place": event.loc_place,
        "loc_regions": list(event.loc_regions or []),
        "loc_country": event.loc_country,
        "loc_lat": event.loc_lat,
        "loc_long": event.loc_long,
        "loc_corner_sw": list(event.loc_corner_sw or []),
        "loc_corner_nw": list(event.loc_corner_nw or []),
        "loc_corner_ne": list(event.loc_corner_ne or []),
        "loc_corner_se": list(event.loc_corner_se or []),
        "types": list(event.types or []),
        "tags": list(event.tags or []),
        "website": event.website,
        "results": event.results,
    }


def serialize_event(session: Session, event: Event, viewer: Viewer) -> dict:
    """Detail view: every event field plus the runners *viewer* may see."""
    runners = copy.deepcopy(event.runners or [])
    member_of, _ = _user_lookup(session, (r.get("user") for r in runners))
    data = _event_fields(event)
    data["runners"] = project_runners(runners, viewer, member_of)
    data["created_at"] = _iso(event.created_at)
    data["updated_at"] = _iso(event.updated_at)
    return data


def summarise_event(
    event: Event,
    viewer: Viewer,
    member_of: Mapping[str, list],
    display_names: Mapping[str, str],
) -> dict:
    """Listing view.  No runner total: it would count hidden runners."""
    return {
        "id": event.id,
        "oris_id": event.oris_id,
        "date": event.date,
        "name": event.name,
        "map_name": event.map_name,
        "loc_place": event.loc_place,
        "loc_country": event.loc_country,
        "loc_lat": event.loc_lat,
        "loc_long": event.loc_long,
        "loc_corner_sw": list(event.loc_corner_sw or []),
        "loc_corner_ne": list(event.loc_corner_ne or []),
        "organised_by": list(event.organised_by or []),
        "linked_to": list(event.linked_to or []),
        "types": list(event.types or []),
        "tags": list(event.tags or []),
        "runners": summarise_runners(event.runners or [], viewer, member_of, display_names),
    }


def serialize_linked_event(linked: LinkedEvent, events: Mapping[str, Event] | None = None) -> dict:
    includes = list(linked.includes or [])
    if events is not None:
        includes = [
            {"id": i, "name": events[i].name, "date": events[i].date}
            for i in includes
            if i in events
        ]
    return {
        "id": linked.id,
        "display_name": linked.display_name,
        "includes": includes,
        "created_at": _iso(linked.created_at),
        "updated_at": _iso(linked.updated_at),
    }


# ---------------------------------------------------------------------------
# Input cleaning
# ---------------------------------------------------------------------------
def _pick_event_fields(fields: Mapping[str, Any], allowed: frozenset[str]) -> dict:
    values: dict[str, Any] = {}
    for key in allowed:
        if key not in fields:
            continue
        value = fields[key]
        if key in EVENT_LIST_FIELDS:
            if not isinstance(value, list):
                raise ValidationError(f"{key} must be a list.", field=key)
            value = [str(v) for v in value]
            if key == "types":
                unknown = [v for v in value if v not in EVENT_TYPES]
                if unknown:
                    raise ValidationError(
                        f"Unknown event type(s): {', '.join(unknown)}.", field=key
                    )
        elif key in ("loc_lat", "loc_long") and value is not None:
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a number.", field=key) from None
            low, high = LAT_BOUNDS if key == "loc_lat" else LONG_BOUNDS
            if not low <= value <= high:
                raise ValidationError(f"{key} must be between {low:g} and {high:g}.", field=key)
        values[key] = value
    return values


def _clean_runner_fields(fields: Mapping[str, Any], allowed: frozenset[str]) -> dict:
    values = {key: copy.deepcopy(fields[key]) for key in allowed if key in fields}
    if "visibility" in values:
        if values["visibility"] not in {v.value for v in Visibility}:
            raise ValidationError(
                "visibility must be one of public, all, club, private.", field="visibility"
            )
    for key in ("full_results", "tags", "maps"):
        if key in values and not isinstance(values[key], list):
            raise ValidationError(f"{key} must be a list.", field=key)
    if "maps" in values:
        titles = [m.get("title") for m in values["maps"] if isinstance(m, dict)]
        if len(titles) != len(values["maps"]) or len(set(titles)) != len(titles):
            raise ValidationError("maps must be records with unique titles.", field="maps")
    return values


def _check_date(value: Any) -> None:
    if not is_valid_date(value):
        raise ValidationError(
            'The date format required is a string of the form "YYYY-MM-DD".', field="date"
        )


def _oris_id_taken(session: Session, oris_id: str) -> bool:
    return session.scalars(select(Event.id).where(Event.oris_id == oris_id)).first() is not None


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
def insert_event(session: Session, viewer: Viewer, fields: Mapping[str, Any]) -> Event:
    """Create-event body, shared with the federation import."""
    date, name = fields.get("date"), fields.get("name")
    if not date or not name:
        raise ValidationError("You must provide an event's name and date.", field="date" if not date else "name")
    _check_date(date)
    if _active_duplicate(session, date, name):
        logger.warning("Create event rejected: %s on %s already exists", name, date)
        raise ConflictError(f"The event {name} on {date} already exists.")

    values = _pick_event_fields(fields, EVENT_CREATE_FIELDS)
    if values.get("oris_id") and _oris_id_taken(session, values["oris_id"]):
        raise ConflictError(f"An event with ORIS id {values['oris_id']} already exists.")
    if isinstance(fields.get("organised_by"), list):
        values["organised_by"] = validate_ids(session, Club, fields["organised_by"])
    linked_ids: list[str] = []
    if isinstance(fields.get("linked_to"), list):
        linked_ids = validate_ids(session, LinkedEvent, fields["linked_to"])
    values["linked_to"] = linked_ids

    event = Event(owner_id=viewer.id, **values)
    session.add(event)
    session.flush()

    apply_mirror(session, compute_delta([], linked_ids), LinkedEvent, "includes", event.id)
    log_action(
        session, actor_id=viewer.id, action_type="CREATE", target_table="events",
        target_id=event.id, before=None, after=row_to_dict(event),
    )
    return event


def create_event(
    engine: Engine,
    viewer: Viewer,
    fields: Mapping[str, Any],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Create an event owned by *viewer*.

    ``organised_by`` and ``linked_to`` ids that do not exist are dropped; the
    new event id is added to each remaining linked event's ``includes``.
    """
    require_member(viewer, "create an event")

    def unit(session: Session) -> dict:
        event = insert_event(session, viewer, fields)
        return serialize_event(session, event, viewer)

    result = run_unit(engine, "Create event", unit, config)
    logger.info("%s on %s created by %s", result["name"], result["date"], viewer.id)
    return result


def create_linked_event(
    engine: Engine,
    viewer: Viewer,
    fields: Mapping[str, Any],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    require_member(viewer, "create an event link")
    display_name = fields.get("display_name")
    if not display_name:
        raise ValidationError("You must provide a name for the event link.", field="display_name")
    if "includes" in fields and not isinstance(fields["includes"], list):
        raise ValidationError("includes must be a list of event ids.", field="includes")

    def unit(session: Session) -> dict:
        exists = session.scalars(
            select(LinkedEvent.id).where(LinkedEvent.display_name == display_name)
        ).first()
        if exists is not None:
            logger.warning("Create event link rejected: %s already exists", display_name)
            raise ConflictError(f"The event link {display_name} already exists.")

        event_ids = validate_event_ids(session, fields.get("includes"))
        linked = LinkedEvent(display_name=display_name, includes=event_ids)
        session.add(linked)
        session.flush()

        apply_mirror(session, compute_delta([], event_ids), Event, "linked_to", linked.id)
        log_action(
            session, actor_id=viewer.id, action_type="CREATE", target_table="linked_events",
            target_id=linked.id, before=None, after=row_to_dict(linked),
        )
        return serialize_linked_event(linked)

    result = run_unit(engine, "Create event link", unit, config)
    logger.info("Event link %s created by %s", display_name, viewer.id)
    return result


def add_runner(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    fields: Mapping[str, Any],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Add *viewer* as a runner at *event_id*.

    The runners column is replaced under the version check, so two
    concurrent adds to the same event cannot lose each other's runner.
    """
    require_member(viewer, "edit events")
    values = _clean_runner_fields(fields, RUNNER_CREATE_FIELDS)
    values.setdefault("visibility", Visibility.ALL.value)

    def unit(session: Session) -> dict:
        if not validate_user_id(session, viewer.id):
            raise ValidationError("Requesting user does not exist.", field="user")
        event = get_active_event(session, event_id)
        if viewer.id in _runner_ids(event):
            logger.warning("Runner %s already present in %s", viewer.id, event_id)
            raise ConflictError("Runner already present in event. Update the runner instead.")

        before = row_to_dict(event)
        runner = {"user": viewer.id, "maps": [], "comments": [], **values}
        event.runners = copy.deepcopy(event.runners or []) + [runner]
        session.flush()
        log_action(
            session, actor_id=viewer.id, action_type="ADD_RUNNER", target_table="events",
            target_id=event.id, before=before, after=row_to_dict(event),
        )
        return serialize_event(session, event, viewer)

    result = run_unit(engine, "Add runner", unit, config)
    logger.info("Added %s as runner to %s (%s)", viewer.id, result["name"], result["date"])
    return result


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------
def update_event(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    fields: Mapping[str, Any],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Update event-level fields.

    Allowed for an admin, the owner, or any current runner of the event.
    ``linked_to`` replaces the whole list; linked events gained or lost are
    updated to match.  Only an admin may change the owner.
    """
    require_member(viewer, "edit events")
    if "date" in fields:
        _check_date(fields["date"])

    def unit(session: Session) -> dict:
        event = get_active_event(session, event_id)
        allowed = (
            viewer.is_admin
            or _is_standard_user(viewer, event.owner_id)
            or (viewer.role == Role.STANDARD and viewer.id in _runner_ids(event))
        )
        if not allowed:
            logger.warning("%s not allowed to update event %s", viewer.id, event_id)
            raise AuthorizationError("Not allowed to update this event.")

        values = _pick_event_fields(fields, EVENT_UPDATE_FIELDS)
        new_date = values.get("date", event.date)
        new_name = values.get("name", event.name)
        if not new_name:
            raise ValidationError("Event name cannot be empty.", field="name")
        if (new_date, new_name) != (event.date, event.name) and _active_duplicate(
            session, new_date, new_name, exclude_id=event.id
        ):
            raise ConflictError(f"The event {new_name} on {new_date} already exists.")

        if isinstance(fields.get("organised_by"), list):
            values["organised_by"] = validate_ids(session, Club, fields["organised_by"])
        delta = LinkDelta()
        if isinstance(fields.get("linked_to"), list):
            linked_ids = validate_ids(session, LinkedEvent, fields["linked_to"])
            delta = compute_delta(event.linked_to, linked_ids)
            values["linked_to"] = linked_ids
        if fields.get("owner") and viewer.is_admin and validate_user_id(session, fields["owner"]):
            values["owner_id"] = fields["owner"]

        if not values:
            raise ValidationError("No valid fields to update.")

        before = row_to_dict(event)
        for key, value in values.items():
            setattr(event, key, value)
        session.flush()

        apply_mirror(session, delta, LinkedEvent, "includes", event.id)
        log_action(
            session, actor_id=viewer.id, action_type="UPDATE", target_table="events",
            target_id=event.id, before=before, after=row_to_dict(event),
        )
        return serialize_event(session, event, viewer)

    result = run_unit(engine, "Update event", unit, config)
    logger.info("%s (%s) updated by %s", result["name"], result["date"], viewer.id)
    return result


def update_linked_event(
    engine: Engine,
    viewer: Viewer,
    linked_event_id: str,
    fields: Mapping[str, Any],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Rename a linked event and/or replace its ``includes`` list."""
    require_member(viewer, "edit event links")

    def unit(session: Session) -> dict:
        linked = _get_linked_event(session, linked_event_id)
        values: dict[str, Any] = {}

        display_name = fields.get("display_name")
        if display_name and display_name != linked.display_name:
            taken = session.scalars(
                select(LinkedEvent.id).where(LinkedEvent.display_name == display_name)
            ).first()
            if taken is not None:
                raise ConflictError(f"The event link {display_name} already exists.")
            values["display_name"] = display_name

        delta = LinkDelta()
        if isinstance(fields.get("includes"), list):
            event_ids = validate_event_ids(session, fields["includes"])
            delta = compute_delta(linked.includes, event_ids)
            values["includes"] = event_ids

        if not values:
            raise ValidationError("No valid fields to update.")

        before = row_to_dict(linked)
        for key, value in values.items():
            setattr(linked, key, value)
        session.flush()

        apply_mirror(session, delta, Event, "linked_to", linked.id)
        log_action(
            session, actor_id=viewer.id, action_type="UPDATE", target_table="linked_events",
            target_id=linked.id, before=before, after=row_to_dict(linked),
        )
        return serialize_linked_event(linked)

    result = run_unit(engine, "Update event link", unit, config)
    logger.info("Event link %s updated by %s", result["display_name"], viewer.id)
    return result


def update_runner(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    user_id: str,
    fields: Mapping[str, Any],
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Merge whitelisted fields into the runner entry of *user_id*.

    Only an admin or the runner's own (standard) account may do this; being
    another runner of the same event is not enough.
    """
    require_member(viewer, "edit events")
    values = _clean_runner_fields(fields, RUNNER_UPDATE_FIELDS)

    def unit(session: Session) -> dict:
        event = get_active_event(session, event_id)
        runners = copy.deepcopy(event.runners or [])
        runner = next((r for r in runners if r.get("user") == user_id), None)
        if runner is None:
            raise NotFoundError("Runner not present in event. Add the runner first.")
        if not (viewer.is_admin or _is_standard_user(viewer, user_id)):
            logger.warning("%s not allowed to update runner %s", viewer.id, user_id)
            raise AuthorizationError("Not allowed to update this runner.")
        if not values:
            raise ValidationError("No valid fields to update.")

        before = row_to_dict(event)
        runner.update(values)
        event.runners = runners
        session.flush()
        log_action(
            session, actor_id=viewer.id, action_type="UPDATE_RUNNER", target_table="events",
            target_id=event.id, before=before, after=row_to_dict(event),
        )
        return serialize_event(session, event, viewer)

    result = run_unit(engine, "Update runner", unit, config)
    logger.info(
        "Updated %s in %s (%d field(s)) by %s",
        user_id, result["name"], len(values), viewer.id,
    )
    return result


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------
def delete_event(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    config: RoutebookConfig = DEFAULT_CONFIG,
    now: Callable[[], datetime] = datetime.now,
) -> dict:
    """Soft delete: deactivate, tag name and ORIS id, drop every link.

    Refused while any runner other than the requester is still attached.
    """
    require_member(viewer, "delete events")

    def unit(session: Session) -> dict:
        event = get_active_event(session, event_id)
        if not (viewer.is_admin or _is_standard_user(viewer, event.owner_id)):
            logger.warning("%s not allowed to delete event %s", viewer.id, event_id)
            raise AuthorizationError("Not allowed to delete this event.")
        others = [u for u in _runner_ids(event) if u != viewer.id]
        if others:
            logger.warning("Delete of %s refused: %d other runner(s)", event_id, len(others))
            raise AuthorizationError("Other runners are still attached to this event.")

        before = row_to_dict(event)
        tag = now().strftime(DELETED_TAG_FORMAT)
        event.active = False
        event.name = f"{event.name}{tag}"
        if event.oris_id:
            event.oris_id = f"{event.oris_id}{tag}"
        event.linked_to = []
        session.flush()

        pull_everywhere(session, LinkedEvent, "includes", event.id)
        log_action(
            session, actor_id=viewer.id, action_type="DELETE", target_table="events",
            target_id=event.id, before=before, after=row_to_dict(event),
        )
        return serialize_event(session, event, viewer)

    result = run_unit(engine, "Delete event", unit, config)
    logger.info("Deleted event %s (%s)", result["id"], result["name"])
    return result


def delete_linked_event(
    engine: Engine,
    viewer: Viewer,
    linked_event_id: str,
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Admin only.  Hard delete, then pull the id from every event."""
    if not viewer.is_admin:
        logger.warning("%s not allowed to delete event link %s", viewer.id, linked_event_id)
        raise AuthorizationError("Only administrators can delete event links.")

    def unit(session: Session) -> dict:
        linked = _get_linked_event(session, linked_event_id)
        before = row_to_dict(linked)
        result = serialize_linked_event(linked)
        session.delete(linked)
        session.flush()

        pull_everywhere(session, Event, "linked_to", linked_event_id)
        log_action(
            session, actor_id=viewer.id, action_type="DELETE", target_table="linked_events",
            target_id=linked_event_id, before=before, after=None,
        )
        return result

    result = run_unit(engine, "Delete event link", unit, config)
    logger.info("Deleted event link %s (%s)", result["id"], result["display_name"])
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_event(engine: Engine, viewer: Viewer, event_id: str) -> dict:
    with get_session(engine) as session:
        event = get_active_event(session, event_id)
        return serialize_event(session, event, viewer)


_RANGE = re.compile(r"\s*(?P<low>-?\d+(?:\.\d+)?)?\s*-\s*(?P<high>-?\d+(?:\.\d+)?)?\s*")


def parse_range(text: str, low: float, high: float) -> tuple[float, float]:
    """Parse ``"x-y"``, ``"x-"`` or ``"-y"`` into an open interval."""
    match = _RANGE.fullmatch(text or "")
    if match is None:
        raise ValidationError(f"Invalid range {text!r}; expected low-high.")
    return (
        float(match["low"]) if match["low"] is not None else low,
        float(match["high"]) if match["high"] is not None else high,
    )


def _matches(event: Event, filters: Mapping[str, str]) -> bool:
    for key, wanted in filters.items():
        if key in EVENT_LIST_FILTERS:
            if not any(wanted in item for item in getattr(event, key) or []):
                return False
        elif key == "organised_by" and wanted not in (event.organised_by or []):
            return False
        elif key == "linked_to" and wanted not in (event.linked_to or []):
            return False
        elif key == "runners" and wanted not in _runner_ids(event):
            return False
    return True


def list_events(engine: Engine, viewer: Viewer, filters: Mapping[str, str] | None = None) -> list[dict]:
    """Summaries of active events, optionally filtered.

    String fields match by substring, list fields when any element contains
    the value, id fields exactly.  ``loc_lat`` / ``loc_long`` take a
    ``low-high`` range.  A malformed id filter matches nothing.
    """
    filters = dict(filters or {})
    query = select(Event).where(Event.active.is_(True))

    for key in EVENT_STRING_FILTERS & filters.keys():
        query = query.where(getattr(Event, key).contains(filters[key], autoescape=True))
    python_filters: dict[str, str] = {k: filters[k] for k in EVENT_LIST_FILTERS & filters.keys()}
    for key in EVENT_ID_FILTERS & filters.keys():
        if not is_valid_id(filters[key]):
            return []
        if key == "owner":
            query = query.where(Event.owner_id == filters[key])
        else:
            python_filters[key] = filters[key]
    if filters.get("loc_lat"):
        low, high = parse_range(filters["loc_lat"], *LAT_BOUNDS)
        query = query.where(Event.loc_lat > low, Event.loc_lat < high)
    if filters.get("loc_long"):
        low, high = parse_range(filters["loc_long"], *LONG_BOUNDS)
        query = query.where(Event.loc_long > low, Event.loc_long < high)

    with get_session(engine) as session:
        events = [
            e for e in session.scalars(query.order_by(Event.date.desc(), Event.name))
            if _matches(e, python_filters)
        ]
        member_of, display_names = _user_lookup(
            session, (r.get("user") for e in events for r in e.runners or [])
        )
        result = [summarise_event(e, viewer, member_of, display_names) for e in events]

    logger.info("Returned list of %d event(s)", len(result))
    return result


def list_linked_events(
    engine: Engine,
    display_name: str | None = None,
    includes: str | None = None,
) -> list[dict]:
    """Linked events filtered by name substring and/or an included event id."""
    if includes is not None and not is_valid_id(includes):
        return []
    query = select(LinkedEvent).order_by(LinkedEvent.display_name)
    if display_name:
        query = query.where(LinkedEvent.display_name.contains(display_name, autoescape=True))

    with get_session(engine) as session:
        rows = [
            le for le in session.scalars(query)
            if includes is None or includes in (le.includes or [])
        ]
        event_ids = {i for le in rows for i in le.includes or []}
        events = {
            e.id: e for e in session.scalars(select(Event).where(Event.id.in_(event_ids)))
        } if event_ids else {}
        result = [serialize_linked_event(le, events) for le in rows]

    logger.info("Returned list of %d event link(s)", len(result))
    return result
