"""
routebook.services.map_service — Map uploads and their geodata
===============================================================

A runner's maps are records inside ``events.runners[*].maps``, keyed by
title.  Uploading a course, route or overlay image for a title overwrites
just that file reference; when the image carries a QuickRoute payload the
record's ``geo`` block is replaced too and any still-empty event location
fields are filled from it.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import Engine

from routebook.config import DEFAULT_CONFIG, RoutebookConfig
from routebook.constants import MAP_TYPES
from routebook.database.models import Event, Role, Visibility
from routebook.engine.geo import GeoPayload, event_geo_updates, extract_geo
from routebook.engine.quickroute import QuickRouteFormatError
from routebook.engine.visibility import Viewer
from routebook.errors import AuthorizationError, NotFoundError, ValidationError
from routebook.services.audit import log_action, row_to_dict
from routebook.services.event_service import (
    get_active_event,
    run_unit,
    serialize_event,
)
from routebook.services.validation_service import validate_user_id

logger = logging.getLogger(__name__)


def _check_permission(viewer: Viewer, user_id: str, action: str) -> None:
    allowed = viewer.is_admin or (
        viewer.role == Role.STANDARD and viewer.id is not None and viewer.id == user_id
    )
    if not allowed:
        logger.warning("%s not allowed to %s for %s", viewer.id, action, user_id)
        raise AuthorizationError(f"Not allowed to {action} for this user.")


def _check_map_type(map_type: str) -> None:
    if map_type not in MAP_TYPES:
        raise ValidationError(
            f"map_type must be one of {', '.join(MAP_TYPES)}.", field="map_type"
        )


def check_upload(viewer: Viewer, user_id: str, map_type: str) -> None:
    """Reject an upload before its file is stored."""
    _check_permission(viewer, user_id, "upload a map")
    _check_map_type(map_type)


def read_geo(image_bytes: bytes) -> GeoPayload | None:
    """Geodata from an upload; a damaged payload counts as none."""
    try:
        return extract_geo(image_bytes)
    except QuickRouteFormatError as exc:
        logger.warning("Ignoring unreadable QuickRoute payload: %s", exc)
        return None


def new_map_record(title: str) -> dict:
    record = {"title": title, "is_geocoded": False, "geo": {}}
    for map_type in MAP_TYPES:
        record[map_type] = None
        record[f"{map_type}_updated"] = None
    return record


def attach_map(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    user_id: str,
    map_type: str,
    image_bytes: bytes,
    file_ref: str,
    title: str | None = None,
    config: RoutebookConfig = DEFAULT_CONFIG,
    now: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> tuple[dict, str | None]:
    """Record *file_ref* as the *map_type* image of *user_id*'s map *title*.

    The runner entry and the map record are created when missing.  Returns
    the updated event and the file reference it replaced, so the caller can
    delete the old file.
    """
    check_upload(viewer, user_id, map_type)
    title = title or config.default_map_title
    geo = read_geo(image_bytes)

    def unit(session) -> tuple[dict, str | None]:
        if not validate_user_id(session, user_id):
            raise ValidationError("Unknown user.", field="user_id")
        event = get_active_event(session, event_id)
        before = row_to_dict(event)

        runners = copy.deepcopy(event.runners or [])
        runner = next((r for r in runners if r.get("user") == user_id), None)
        if runner is None:
            runner = {
                "user": user_id,
                "visibility": Visibility.ALL.value,
                "maps": [],
                "comments": [],
            }
            runners.append(runner)
        maps = runner.setdefault("maps", [])
        record = next((m for m in maps if m.get("title") == title), None)
        if record is None:
            record = new_map_record(title)
            maps.append(record)

        replaced = record.get(map_type)
        record[map_type] = file_ref
        record[f"{map_type}_updated"] = now().isoformat()
        if geo is not None:
            record["is_geocoded"] = True
            record["geo"] = geo.to_dict()
            for key, value in event_geo_updates(row_to_dict(event), geo).items():
                setattr(event, key, value)
        event.runners = runners
        session.flush()

        log_action(
            session, actor_id=viewer.id, action_type="ATTACH_MAP", target_table="events",
            target_id=event.id, before=before, after=row_to_dict(event),
            reason=f"{user_id}/{map_type}/{title}",
        )
        return serialize_event(session, event, viewer), replaced

    result, replaced = run_unit(engine, "Attach map", unit, config)
    logger.info(
        "Map %s/%s added to %s for %s (geocoded=%s)",
        title, map_type, result["name"], user_id, geo is not None,
    )
    return result, replaced


def delete_map(
    engine: Engine,
    viewer: Viewer,
    event_id: str,
    user_id: str,
    map_type: str,
    title: str | None = None,
    config: RoutebookConfig = DEFAULT_CONFIG,
) -> tuple[dict, str | None]:
    """Clear the *map_type* image of map *title* and drop its geodata.

    Returns the updated event and the file reference that was removed, so
    the caller can delete the stored file.
    """
    _check_permission(viewer, user_id, "delete a map")
    _check_map_type(map_type)
    title = title or config.default_map_title

    def unit(session) -> tuple[dict, str | None]:
        event: Event = get_active_event(session, event_id)
        before = row_to_dict(event)

        runners = copy.deepcopy(event.runners or [])
        runner = next((r for r in runners if r.get("user") == user_id), None)
        if runner is None:
            raise NotFoundError("Runner does not exist.")
        record = next((m for m in runner.get("maps") or [] if m.get("title") == title), None)
        if record is None:
            raise NotFoundError("Map does not exist.")

        removed = record.get(map_type)
        record[map_type] = None
        record[f"{map_type}_updated"] = None
        record["is_geocoded"] = False
        record["geo"] = {}
        event.runners = runners
        session.flush()

        log_action(
            session, actor_id=viewer.id, action_type="DELETE_MAP", target_table="events",
            target_id=event.id, before=before, after=row_to_dict(event),
            reason=f"{user_id}/{map_type}/{title}",
        )
        return serialize_event(session, event, viewer), removed

    result, removed = run_unit(engine, "Delete map", unit, config)
    logger.info("Map %s/%s deleted from %s for %s", title, map_type, result["name"], user_id)
    return result, removed
