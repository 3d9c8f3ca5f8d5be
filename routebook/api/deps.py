"""
routebook.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from routebook.config import RoutebookConfig, load_config
from routebook.database.engine import create_db_engine
from routebook.database.models import User
from routebook.engine.visibility import Viewer
from routebook.services.oris_service import OrisClient

_WEAK_SECRETS = frozenset({
    "routebook-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> RoutebookConfig:
    return load_config(os.getenv("ROUTEBOOK_CONFIG", "config.yaml"))


def get_oris_client(
    cfg: Annotated[RoutebookConfig, Depends(get_config)],
) -> Iterator[OrisClient]:
    with OrisClient.from_config(cfg) as client:
        yield client


def get_viewer(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> Viewer:
    """Resolve the bearer token to a :class:`Viewer`.

    No token → anonymous viewer.  A token that does not verify, or whose
    ``sub`` is not a known user, is rejected with 401.
    """
    if not authorization:
        return Viewer.anonymous()
    if not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Malformed authorization header")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")

    with Session(engine) as session:
        user = session.get(User, str(payload.get("sub")))
        if user is None:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unknown user")
        return Viewer(
            role=user.role,
            id=user.id,
            club_ids=frozenset(user.member_of or []),
        )


def create_token(user_id: str) -> str:
    """Issue a bearer token for *user_id* (used by tests and admin tooling)."""
    return jwt.encode({"sub": user_id}, JWT_SECRET, algorithm=JWT_ALGORITHM)
