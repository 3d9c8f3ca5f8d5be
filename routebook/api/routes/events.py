"""
routebook.api.routes.events — Events, runners and maps
=======================================================

Thin HTTP layer: bodies are parsed with pydantic, everything else is the
service layer's job.  Domain errors become HTTP responses in
:mod:`routebook.api.main`.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, UploadFile
from pydantic import BaseModel
from sqlalchemy import Engine

from routebook.api.deps import get_config, get_engine, get_oris_client, get_viewer
from routebook.config import RoutebookConfig
from routebook.engine.visibility import Viewer
from routebook.services import event_service, map_service, oris_service
from routebook.services.oris_service import OrisClient
from routebook.services.upload_service import delete_map_image, save_map_image

router = APIRouter(prefix="/events", tags=["events"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EventBody(BaseModel):
    date: str | None = None
    name: str | None = None
    owner: str | None = None
    oris_id: str | None = None
    map_name: str | None = None
    loc_place: str | None = None
    loc_regions: list[str] | None = None
    loc_country: str | None = None
    loc_lat: float | None = None
    loc_long: float | None = None
    types: list[str] | None = None
    tags: list[str] | None = None
    website: str | None = None
    results: str | None = None
    organised_by: list[str] | None = None
    linked_to: list[str] | None = None


class RunnerBody(BaseModel):
    visibility: str | None = None
    course_title: str | None = None
    course_length: str | None = None
    course_climb: str | None = None
    course_controls: str | None = None
    full_results: list[dict[str, Any]] | None = None
    time: str | None = None
    place: str | None = None
    time_behind: str | None = None
    field_size: str | None = None
    distance_run: str | None = None
    tags: list[str] | None = None
    maps: list[dict[str, Any]] | None = None


def _fields(body: BaseModel) -> dict:
    # unset ≠ null: an omitted linked_to leaves links alone, [] clears them
    return body.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@router.get("")
def list_events(
    request: Request,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
):
    """List active events.  Any event field may be passed as a query filter."""
    return event_service.list_events(engine, viewer, dict(request.query_params))


@router.post("", status_code=201)
def create_event(
    body: EventBody,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.create_event(engine, viewer, _fields(body), cfg)


@router.get("/oris")
def list_oris_user_events(
    date_from: str | None = None,
    date_to: str | None = None,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    client: OrisClient = Depends(get_oris_client),
):
    """ORIS events the caller has entered, for picking one to import."""
    return oris_service.list_oris_user_events(engine, viewer, client, date_from, date_to)


@router.post("/oris/{oris_event_id}", status_code=201)
def create_event_from_oris(
    oris_event_id: str,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
    client: OrisClient = Depends(get_oris_client),
):
    return oris_service.create_event_from_oris(engine, viewer, oris_event_id, client, cfg)


@router.get("/{event_id}")
def get_event(
    event_id: str,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
):
    return event_service.get_event(engine, viewer, event_id)


@router.patch("/{event_id}")
def update_event(
    event_id: str,
    body: EventBody,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.update_event(engine, viewer, event_id, _fields(body), cfg)


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.delete_event(engine, viewer, event_id, cfg)


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------
@router.post("/{event_id}/runners", status_code=201)
def add_runner(
    event_id: str,
    body: RunnerBody,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.add_runner(engine, viewer, event_id, _fields(body), cfg)


@router.post("/{event_id}/oris", status_code=201)
def add_runner_from_oris(
    event_id: str,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
    client: OrisClient = Depends(get_oris_client),
):
    return oris_service.add_runner_from_oris(engine, viewer, event_id, client, cfg)


@router.patch("/{event_id}/runners/{user_id}")
def update_runner(
    event_id: str,
    user_id: str,
    body: RunnerBody,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.update_runner(engine, viewer, event_id, user_id, _fields(body), cfg)


# ---------------------------------------------------------------------------
# Maps
# ---------------------------------------------------------------------------
@router.post("/{event_id}/maps/{user_id}/{map_type}")
@router.post("/{event_id}/maps/{user_id}/{map_type}/{map_title}")
def upload_map(
    event_id: str,
    user_id: str,
    map_type: str,
    file: UploadFile,
    map_title: str | None = None,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    """Upload a scanned course, route or overlay image for *user_id*."""
    map_service.check_upload(viewer, user_id, map_type)
    content = file.file.read()
    stored = save_map_image(event_id, file.filename or "", content, file.content_type)
    try:
        event, replaced = map_service.attach_map(
            engine, viewer, event_id, user_id, map_type, content, stored, map_title, cfg
        )
    except Exception:
        delete_map_image(stored)
        raise
    delete_map_image(replaced)
    return event


@router.delete("/{event_id}/maps/{user_id}/{map_type}")
@router.delete("/{event_id}/maps/{user_id}/{map_type}/{map_title}")
def delete_map(
    event_id: str,
    user_id: str,
    map_type: str,
    map_title: str | None = None,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    event, removed = map_service.delete_map(
        engine, viewer, event_id, user_id, map_type, map_title, cfg
    )
    delete_map_image(removed)
    return event
