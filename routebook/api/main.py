"""
routebook.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn routebook.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.staticfiles import StaticFiles

load_dotenv()

from routebook.api.deps import get_config, get_engine  # noqa: E402
from routebook.api.routes.events import router as events_router  # noqa: E402
from routebook.api.routes.linked_events import router as linked_events_router  # noqa: E402
from routebook.errors import RoutebookError  # noqa: E402
from routebook.services.upload_service import UPLOAD_DIR, ensure_upload_dir  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: apply log level, warm the DB engine."""
    cfg = get_config()
    logging.getLogger("routebook").setLevel(cfg.log_level)

    ensure_upload_dir()

    engine = get_engine()
    logger.info("Routebook API started, engine ready (%s)", engine.url.database)
    yield
    logger.info("Routebook API shutting down")


app = FastAPI(
    title="Routebook API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoutebookError)
async def routebook_error_handler(request: Request, exc: RoutebookError) -> JSONResponse:
    content = {"error": exc.message}
    if getattr(exc, "field", None):
        content["field"] = exc.field
    return JSONResponse(status_code=exc.status_code, content=content)


# Mount routers
app.include_router(events_router, prefix="/api")
app.include_router(linked_events_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


if UPLOAD_DIR.exists():
    app.mount(
        "/api/uploads",
        StaticFiles(directory=str(UPLOAD_DIR)),
        name="uploads",
    )
