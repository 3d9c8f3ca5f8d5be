"""
routebook.services.audit — Mutation audit trail
================================================

Every service write records a before/after snapshot in ``audit_log`` inside
the same transaction as the change, so an aborted mutation leaves no audit
row behind.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from routebook.database.models import AuditLog


def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        elif isinstance(val, (list, dict)):
            val = copy.deepcopy(val)
        result[col.name] = val
    return result


def log_action(
    session: Session,
    *,
    actor_id: str | None,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into audit_log within the current transaction."""
    session.add(AuditLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))
