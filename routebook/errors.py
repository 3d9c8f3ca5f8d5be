"""
routebook.errors — Error taxonomy
==================================

Services raise these; the API layer maps them to HTTP status codes once,
in :mod:`routebook.api.main`.  ``InvariantRepairable`` is never raised to a
caller; the repair pass creates and logs instances of it.
"""

from __future__ import annotations


class RoutebookError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RoutebookError):
    """Malformed or missing input.  ``field`` names the offending input."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(RoutebookError):
    status_code = 404


class ConflictError(RoutebookError):
    """Uniqueness violation or a write that lost a race with another one."""

    status_code = 409


class AuthorizationError(RoutebookError):
    status_code = 403


class UpstreamError(RoutebookError):
    """The federation data source failed or returned something unusable."""

    status_code = 502


class InvariantRepairable(RoutebookError):
    """A half-edge between an Event and a LinkedEvent found by the repair pass."""

    def __init__(self, event_id: str, linked_event_id: str, missing_on: str) -> None:
        super().__init__(
            f"link {event_id} <-> {linked_event_id} missing on {missing_on} side"
        )
        self.event_id = event_id
        self.linked_event_id = linked_event_id
        self.missing_on = missing_on
