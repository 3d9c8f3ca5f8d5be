"""
routebook.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for infrastructure settings (federation API endpoint,
retry budget, log level).  Secrets and connection strings stay in the
environment (``DATABASE_URL``, ``JWT_SECRET``).

Usage::

    from routebook.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.oris_api_url)          # "https://oris.orientacnisporty.cz/API/"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RoutebookConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Federation data source (ORIS)
    oris_api_url: str
    oris_timeout_seconds: float

    # Maps
    default_map_title: str

    # Writes that lose a version race are re-run this many times
    max_write_retries: int

    # Optional
    log_level: str = "INFO"


DEFAULT_CONFIG = RoutebookConfig(
    oris_api_url="https://oris.orientacnisporty.cz/API/",
    oris_timeout_seconds=10.0,
    default_map_title="map",
    max_write_retries=3,
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RoutebookConfig:
    """Read *path* and return a :class:`RoutebookConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return RoutebookConfig(
        oris_api_url=raw["oris_api_url"],
        oris_timeout_seconds=float(raw["oris_timeout_seconds"]),
        default_map_title=raw["default_map_title"],
        max_write_retries=int(raw["max_write_retries"]),
        log_level=str(raw.get("log_level") or "INFO").upper(),
    )
