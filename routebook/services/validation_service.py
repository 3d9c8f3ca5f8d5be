"""
routebook.services.validation_service — Reference existence checks
===================================================================

Filters caller-supplied id lists down to ids that are well-formed and exist.
Bad ids are dropped, never raised: a stale club or linked-event id in a
request silently contributes nothing.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from routebook.database.models import Event, User

logger = logging.getLogger(__name__)


def is_valid_id(candidate: object) -> bool:
    if not isinstance(candidate, str):
        return False
    try:
        uuid.UUID(candidate)
    except ValueError:
        return False
    return True


def validate_ids(
    session: Session, model: type, candidates: Iterable | None, *criteria
) -> list[str]:
    """Return the ids in *candidates* that exist as *model* rows.

    Extra *criteria* narrow the lookup (e.g. ``Event.active.is_(True)``).
    The result is de-duplicated and keeps the input order.
    """
    wellformed = list(dict.fromkeys(c for c in candidates or () if is_valid_id(c)))
    if not wellformed:
        return []

    query = select(model.id).where(model.id.in_(wellformed), *criteria)
    found = set(session.scalars(query))
    valid = [c for c in wellformed if c in found]
    if len(valid) != len(wellformed):
        logger.info(
            "Dropped %d unknown %s id(s)",
            len(wellformed) - len(valid), model.__tablename__,
        )
    return valid


def validate_event_ids(session: Session, candidates: Iterable | None) -> list[str]:
    """Active events only; a deleted event can no longer be linked."""
    return validate_ids(session, Event, candidates, Event.active.is_(True))


def validate_user_id(session: Session, candidate: object) -> bool:
    return bool(validate_ids(session, User, [candidate]))
