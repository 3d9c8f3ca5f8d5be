"""
routebook.api.routes.linked_events — Event links (multi-stage groupings)
=========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from routebook.api.deps import get_config, get_engine, get_viewer
from routebook.config import RoutebookConfig
from routebook.engine.visibility import Viewer
from routebook.errors import AuthorizationError
from routebook.services import event_service, link_service

router = APIRouter(prefix="/linked-events", tags=["linked-events"])


class LinkedEventBody(BaseModel):
    display_name: str | None = None
    includes: list[str] | None = None


@router.get("")
def list_linked_events(
    display_name: str | None = None,
    includes: str | None = None,
    engine: Engine = Depends(get_engine),
):
    return event_service.list_linked_events(engine, display_name, includes)


@router.post("", status_code=201)
def create_linked_event(
    body: LinkedEventBody,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.create_linked_event(
        engine, viewer, body.model_dump(exclude_unset=True), cfg
    )


@router.post("/repair")
def repair_links(
    authority: str = "event",
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
):
    """Admin only: make ``linked_to`` and ``includes`` agree again."""
    if not viewer.is_admin:
        raise AuthorizationError("Only administrators can repair event links.")
    return link_service.repair_links(engine, authority)


@router.patch("/{linked_event_id}")
def update_linked_event(
    linked_event_id: str,
    body: LinkedEventBody,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.update_linked_event(
        engine, viewer, linked_event_id, body.model_dump(exclude_unset=True), cfg
    )


@router.delete("/{linked_event_id}")
def delete_linked_event(
    linked_event_id: str,
    engine: Engine = Depends(get_engine),
    viewer: Viewer = Depends(get_viewer),
    cfg: RoutebookConfig = Depends(get_config),
):
    return event_service.delete_linked_event(engine, viewer, linked_event_id, cfg)
