"""
routebook.services.oris_service — Czech federation (ORIS) import
=================================================================

Pre-fills the create-event and add-runner inputs from ORIS, the Czech
orienteering federation's public API.  ORIS is read-only here and every
response is wrapped as ``{"Status": "OK", "Data": {...}}``.

Flows:
    create_event_from_oris   getEvent → (getClub for unknown organisers) → create
    add_runner_from_oris     getEvent + getEventEntries + getEventResults → add runner
    list_oris_user_events    getUserEventEntries + getEvent per entry → candidates to import
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from routebook.config import DEFAULT_CONFIG, RoutebookConfig
from routebook.constants import (
    ORIS_COUNTRY,
    ORIS_EVENT_PAGE,
    ORIS_RESULTS_PAGE,
    ORIS_RESULTS_SOURCE_TYPE,
    ORIS_TYPE_NAMES,
    ORIS_UNTAGGED_LEVELS,
    is_valid_date,
)
from routebook.database.engine import get_session
from routebook.database.models import Club, User
from routebook.engine.visibility import Viewer
from routebook.errors import ConflictError, UpstreamError, ValidationError
from routebook.services.audit import log_action, row_to_dict
from routebook.services.event_service import (
    add_runner,
    get_active_event,
    insert_event,
    require_member,
    run_unit,
    serialize_event,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------
class OrisClient:
    """Thin wrapper over ``httpx.Client`` that unwraps ORIS responses.

    Pass *transport* (e.g. ``httpx.MockTransport``) to stub the API in tests.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_CONFIG.oris_api_url,
        timeout: float = DEFAULT_CONFIG.oris_timeout_seconds,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config: RoutebookConfig, transport: httpx.BaseTransport | None = None) -> OrisClient:
        return cls(config.oris_api_url, config.oris_timeout_seconds, transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OrisClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def call(self, method: str, **params: Any) -> Any:
        """GET ``?format=json&method=<method>`` and return the ``Data`` member."""
        try:
            resp = self._client.get("", params={"format": "json", "method": method, **params})
        except httpx.HTTPError as exc:
            logger.warning("ORIS %s request failed: %s", method, exc)
            raise UpstreamError(f"ORIS API error: {exc}") from exc

        if resp.status_code != 200:
            logger.warning("ORIS %s returned HTTP %d", method, resp.status_code)
            raise UpstreamError(f"ORIS API error: HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            logger.warning("ORIS %s returned invalid JSON", method)
            raise UpstreamError("ORIS API error: response is not JSON") from exc

        if not isinstance(payload, dict) or payload.get("Status") != "OK":
            status = payload.get("Status") if isinstance(payload, dict) else None
            logger.warning("ORIS %s returned status %r", method, status)
            raise UpstreamError(f"ORIS API error: status {status!r}")
        return payload.get("Data")

    def get_event(self, oris_event_id: str) -> dict:
        data = self.call("getEvent", id=oris_event_id)
        if not isinstance(data, dict) or not data:
            raise UpstreamError(f"ORIS has no event {oris_event_id}")
        return data

    def get_event_entries(self, oris_event_id: str) -> dict:
        return self.call("getEventEntries", eventid=oris_event_id) or {}

    def get_event_results(self, oris_event_id: str) -> dict:
        return self.call("getEventResults", eventid=oris_event_id) or {}

    def get_club(self, abbr: str) -> dict | None:
        return self.call("getClub", id=abbr) or None

    def get_user_event_entries(
        self, user_oris_id: str, date_from: str | None = None, date_to: str | None = None
    ) -> dict:
        params = {"userid": user_oris_id}
        if date_from:
            params["datefrom"] = date_from
        if date_to:
            params["dateto"] = date_to
        return self.call("getUserEventEntries", **params) or {}


# ---------------------------------------------------------------------------
# Field mapping (pure)
# ---------------------------------------------------------------------------
def _records(data: Any) -> list[dict]:
    """ORIS keys lists as ``{"Entry_1": {...}, ...}``; return the values."""
    if isinstance(data, Mapping):
        return [v for v in data.values() if isinstance(v, Mapping)]
    if isinstance(data, list):
        return [v for v in data if isinstance(v, Mapping)]
    return []


def _float_or_none(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_multi_stage(event_data: Mapping) -> bool:
    return str(event_data.get("Stages") or "0") != "0"


def stage_ids(event_data: Mapping) -> list[str]:
    stages = (str(event_data.get(f"Stage{i}") or "0") for i in range(1, 8))
    return [s for s in stages if s != "0"]


def event_fields_from_oris(event_data: Mapping) -> tuple[dict, list[str]]:
    """Map an ORIS ``getEvent`` record to create-event fields.

    Returns ``(fields, organiser_abbreviations)``.
    """
    oris_id = str(event_data.get("ID"))
    types: list[str] = []
    for code in (
        (event_data.get("Discipline") or {}).get("ShortName"),
        (event_data.get("Sport") or {}).get("NameCZ"),
    ):
        name = ORIS_TYPE_NAMES.get(code)
        if name and name not in types:
            types.append(name)

    region = event_data.get("Region") or ""
    fields: dict[str, Any] = {
        "date": event_data.get("Date"),
        "name": event_data.get("Name"),
        "oris_id": oris_id,
        "map_name": event_data.get("Map") or None,
        "loc_place": event_data.get("Place") or None,
        "loc_regions": [r for r in region.split(", ") if r],
        "loc_country": ORIS_COUNTRY,
        "loc_lat": _float_or_none(event_data.get("GPSLat")),
        "loc_long": _float_or_none(event_data.get("GPSLon")),
        "types": types,
        "website": ORIS_EVENT_PAGE.format(oris_id=oris_id),
        "results": ORIS_RESULTS_PAGE.format(oris_id=oris_id),
    }
    for document in _records(event_data.get("Documents")):
        if str((document.get("SourceType") or {}).get("ID")) == ORIS_RESULTS_SOURCE_TYPE:
            fields["results"] = document.get("Url") or fields["results"]

    level = event_data.get("Level") or {}
    if level.get("ShortName") and level["ShortName"] not in ORIS_UNTAGGED_LEVELS:
        fields["tags"] = [level.get("NameCZ") or level["ShortName"]]

    organisers = [
        abbr
        for abbr in ((event_data.get(k) or {}).get("Abbr") for k in ("Org1", "Org2"))
        if abbr
    ]
    return fields, list(dict.fromkeys(organisers))


def runner_fields_from_oris(
    event_data: Mapping,
    entries: Any,
    results: Any,
    user_oris_id: str,
    visibility: str,
) -> dict:
    """Map ORIS entry/class/result records for one runner to add-runner fields."""
    fields: dict[str, Any] = {"visibility": visibility}

    entry = next(
        (e for e in _records(entries) if str(e.get("UserID")) == str(user_oris_id)), None
    )
    if entry is None or not entry.get("ClassID"):
        return fields
    class_id = str(entry["ClassID"])

    course = (event_data.get("Classes") or {}).get(f"Class_{class_id}")
    if course:
        fields["course_title"] = course.get("Name")
        fields["course_length"] = course.get("Distance")
        fields["course_climb"] = course.get("Climbing")
        fields["course_controls"] = course.get("Controls")

    class_results = [r for r in _records(results) if str(r.get("ClassID")) == class_id]
    mine = next((r for r in class_results if str(r.get("UserID")) == str(user_oris_id)), None)
    if mine is not None:
        fields["time"] = mine.get("Time")
        fields["place"] = mine.get("Place")
        fields["time_behind"] = mine.get("Loss")
        fields["field_size"] = str(len(class_results))
        fields["full_results"] = [
            {
                "place": r.get("Place"),
                "sort": r.get("Sort"),
                "name": r.get("Name"),
                "reg_number": r.get("RegNo"),
                "club_short": (r.get("RegNo") or "")[:3],
                "club": r.get("ClubNameResults"),
                "time": r.get("Time"),
                "loss": r.get("Loss"),
            }
            for r in class_results
        ]
    return fields


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------
def _clubs_by_short_name(session: Session, abbrs: list[str]) -> dict[str, Club]:
    if not abbrs:
        return {}
    return {
        c.short_name: c
        for c in session.scalars(select(Club).where(Club.short_name.in_(abbrs)))
    }


def create_event_from_oris(
    engine: Engine,
    viewer: Viewer,
    oris_event_id: str,
    client: OrisClient,
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Create an event from ORIS data, creating unknown organiser clubs.

    Multi-stage parent events are refused; import the individual stages.
    """
    require_member(viewer, "create an event")
    event_data = client.get_event(oris_event_id)
    if is_multi_stage(event_data):
        stages = ", ".join(stage_ids(event_data))
        logger.warning("ORIS event %s is a multi-stage parent", oris_event_id)
        raise ValidationError(
            "This ORIS event ID is the parent of a multi-stage event. "
            f"The individual events are {stages}.",
            field="oris_event_id",
        )

    fields, organisers = event_fields_from_oris(event_data)
    with get_session(engine) as session:
        known = set(_clubs_by_short_name(session, organisers))
    club_data = {
        abbr: data
        for abbr in organisers
        if abbr not in known and (data := client.get_club(abbr))
    }

    def unit(session: Session) -> dict:
        clubs = _clubs_by_short_name(session, organisers)
        for abbr, data in club_data.items():
            if abbr in clubs:
                continue
            club = Club(
                owner_id=viewer.id,
                short_name=data.get("Abbr") or abbr,
                full_name=data.get("Name"),
                oris_id=str(data.get("ID")) if data.get("ID") is not None else None,
                country=ORIS_COUNTRY,
                website=data.get("WWW") or None,
            )
            session.add(club)
            session.flush()
            log_action(
                session, actor_id=viewer.id, action_type="CREATE", target_table="clubs",
                target_id=club.id, before=None, after=row_to_dict(club),
                reason=f"organiser of ORIS event {oris_event_id}",
            )
            logger.info("Club %s created alongside ORIS event %s", club.short_name, oris_event_id)
            clubs[abbr] = club

        event = insert_event(
            session, viewer,
            {**fields, "organised_by": [clubs[a].id for a in organisers if a in clubs]},
        )
        return serialize_event(session, event, viewer)

    result = run_unit(engine, "Create event from ORIS", unit, config)
    logger.info("%s on %s imported from ORIS by %s", result["name"], result["date"], viewer.id)
    return result


def add_runner_from_oris(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    client: OrisClient,
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> dict:
    """Add *viewer* as a runner using their ORIS entry and result."""
    require_member(viewer, "edit events")
    with get_session(engine) as session:
        user = session.get(User, viewer.id)
        if user is None or not user.oris_id:
            raise ValidationError(
                "User does not have an ORIS ID so cannot be added as a runner.", field="oris_id"
            )
        event = get_active_event(session, event_id)
        if not event.oris_id:
            raise ValidationError("Event does not have an ORIS ID.", field="oris_id")
        if any(r.get("user") == viewer.id for r in event.runners or []):
            raise ConflictError("Runner already present in event. Update the runner instead.")
        user_oris_id, visibility, event_oris_id = user.oris_id, user.visibility, event.oris_id

    fields = runner_fields_from_oris(
        client.get_event(event_oris_id),
        client.get_event_entries(event_oris_id),
        client.get_event_results(event_oris_id),
        user_oris_id,
        visibility,
    )
    return add_runner(engine, viewer, event_id, fields, config)


def list_oris_user_events(
    engine: Engine,
    viewer: Viewer,
    client: OrisClient,
    date_from: str | None = None,
    date_to: str | None = None,
) -> list[dict]:
    """ORIS events the viewer has entered, as candidates for import.

    Malformed ``date_from`` / ``date_to`` values are ignored.
    """
    with get_session(engine) as session:
        user = session.get(User, viewer.id) if viewer.id else None
        if user is None or not user.oris_id:
            raise ValidationError("User does not have an ORIS ID.", field="oris_id")
        user_oris_id = user.oris_id

    entries = _records(client.get_user_event_entries(
        user_oris_id,
        date_from if is_valid_date(date_from) else None,
        date_to if is_valid_date(date_to) else None,
    ))

    result = []
    for entry in entries:
        event_data = client.get_event(str(entry.get("EventID")))
        item = {
            "oris_entry_id": entry.get("ID"),
            "oris_class_id": entry.get("ClassID"),
            "oris_event_id": entry.get("EventID"),
            "date": entry.get("EventDate"),
            "class": entry.get("ClassDesc"),
            "name": event_data.get("Name"),
            "place": event_data.get("Place"),
        }
        if is_multi_stage(event_data):
            item["included_events"] = stage_ids(event_data)
        result.append(item)

    logger.info(
        "Returned list of %d ORIS event(s) entered by %s (%s)",
        len(result), viewer.id, user_oris_id,
    )
    return result
