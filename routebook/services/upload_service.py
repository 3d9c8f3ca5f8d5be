"""
routebook.services.upload_service — Map image storage
======================================================

Scanned maps are stored under ``ROUTEBOOK_UPLOAD_DIR/maps/<event_id>/`` with
a random file name and served back via the static ``/api/uploads`` mount.
The stored path (relative to the upload root) is what the map record keeps.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

from routebook.constants import ALLOWED_IMAGE_EXTENSIONS, MAX_MAP_UPLOAD_BYTES
from routebook.errors import ValidationError

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("ROUTEBOOK_UPLOAD_DIR", "uploads"))
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png"}


def ensure_upload_dir(root: Path | None = None) -> None:
    """Create the upload directory if it doesn't exist."""
    (root or UPLOAD_DIR).mkdir(parents=True, exist_ok=True)


def save_map_image(
    event_id: str,
    filename: str,
    content: bytes,
    content_type: str | None = None,
    root: Path | None = None,
) -> str:
    """Validate and persist an uploaded map image.

    Returns
    -------
    str
        Path of the stored file relative to the upload root,
        e.g. ``maps/<event_id>/3f2a….jpg``.

    Raises
    ------
    ValidationError
        Empty or oversized file, or not a JPEG/PNG.
    """
    if not content:
        raise ValidationError("No map image file attached.", field="file")
    if len(content) > MAX_MAP_UPLOAD_BYTES:
        raise ValidationError(
            f"File too large: {len(content)} bytes "
            f"(max {MAX_MAP_UPLOAD_BYTES // 1024 // 1024}MB)",
            field="file",
        )

    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError(
            f"File type not allowed: {ext!r}. "
            f"Allowed: {', '.join(sorted(ALLOWED_IMAGE_EXTENSIONS))}",
            field="file",
        )
    if content_type and content_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"MIME type not allowed: {content_type!r}.", field="file")

    root = root or UPLOAD_DIR
    relative = Path("maps") / event_id / f"{uuid.uuid4().hex}{ext}"
    dest = root / relative
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(content)
    logger.info("Stored map image %s (%d bytes)", relative, len(content))
    return relative.as_posix()


def delete_map_image(relative: str | None, root: Path | None = None) -> bool:
    """Remove a stored map image.  Returns False if there was nothing to remove."""
    if not relative:
        return False
    root = (root or UPLOAD_DIR).resolve()
    target = (root / relative).resolve()
    if root not in target.parents:
        logger.warning("Refusing to delete %s outside the upload directory", relative)
        return False
    if not target.exists():
        return False
    target.unlink()
    logger.info("Deleted map image %s", relative)
    return True
