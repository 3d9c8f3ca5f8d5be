"""
routebook.constants — Shared Constants
=======================================

Field allow-lists, the date pattern and the federation lookup tables.
Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------
# YYYY-MM-DD with per-month day ranges; February 29 is always accepted.
DATE_PATTERN = re.compile(
    r"[12][0-9]{3}-("
    r"(0[13578]|1[02])-(0[1-9]|[12][0-9]|3[01])"
    r"|(0[469]|11)-(0[1-9]|[12][0-9]|30)"
    r"|02-(0[1-9]|[12][0-9])"
    r")"
)

# Appended to name / oris_id on soft delete, e.g. " deleted:07032024@1530"
DELETED_TAG_FORMAT = " deleted:%d%m%Y@%H%M"


def is_valid_date(value: object) -> bool:
    return isinstance(value, str) and DATE_PATTERN.fullmatch(value) is not None


# ---------------------------------------------------------------------------
# Coordinates (decimal degrees, inclusive)
# ---------------------------------------------------------------------------
LAT_BOUNDS: tuple[float, float] = (-90.0, 90.0)
LONG_BOUNDS: tuple[float, float] = (-180.0, 180.0)


def is_valid_position(lat: float, long: float) -> bool:
    return (
        LAT_BOUNDS[0] <= lat <= LAT_BOUNDS[1]
        and LONG_BOUNDS[0] <= long <= LONG_BOUNDS[1]
    )


# ---------------------------------------------------------------------------
# Event field allow-lists
# ---------------------------------------------------------------------------
EVENT_CREATE_FIELDS: frozenset[str] = frozenset({
    "date", "name", "map_name", "loc_place", "loc_regions", "loc_country",
    "loc_lat", "loc_long", "oris_id", "types", "tags", "website", "results",
})

# oris_id is fixed once set; owner is handled separately (admin only)
EVENT_UPDATE_FIELDS: frozenset[str] = EVENT_CREATE_FIELDS - {"oris_id"}

# Fields whose value must be a list of strings
EVENT_LIST_FIELDS: frozenset[str] = frozenset({"loc_regions", "types", "tags"})

# Discipline labels; stored in English, translated by clients
EVENT_TYPES: tuple[str, ...] = (
    "Sprint", "Middle", "Long", "Ultra-Long", "Relay", "Night", "TempO",
    "Mass start", "MTBO", "SkiO", "TrailO", "Score", "Spanish Score",
    "non-standard",
)

# String fields that list_events can filter on by substring
EVENT_STRING_FILTERS: frozenset[str] = frozenset({
    "date", "name", "oris_id", "map_name", "loc_place", "loc_country",
    "website", "results",
})
EVENT_LIST_FILTERS: frozenset[str] = frozenset({"loc_regions", "types", "tags"})
EVENT_ID_FILTERS: frozenset[str] = frozenset({
    "owner", "organised_by", "linked_to", "runners",
})


# ---------------------------------------------------------------------------
# Runner field allow-lists
# ---------------------------------------------------------------------------
RUNNER_CREATE_FIELDS: frozenset[str] = frozenset({
    "visibility", "course_title", "course_length", "course_climb",
    "course_controls", "full_results", "time", "place", "time_behind",
    "field_size", "distance_run", "tags",
})

RUNNER_UPDATE_FIELDS: frozenset[str] = RUNNER_CREATE_FIELDS | {"maps"}


# ---------------------------------------------------------------------------
# Maps
# ---------------------------------------------------------------------------
MAP_TYPES: tuple[str, ...] = ("course", "route", "overlay")

ALLOWED_IMAGE_EXTENSIONS: set[str] = {".jpg", ".jpeg", ".png"}
MAX_MAP_UPLOAD_BYTES: int = 20 * 1024 * 1024


# ---------------------------------------------------------------------------
# Federation (ORIS) lookups
# ---------------------------------------------------------------------------
ORIS_TYPE_NAMES: dict[str, str] = {
    "SP": "Sprint",
    "KT": "Middle",
    "KL": "Long",
    "DT": "Ultra-Long",
    "ST": "Relay",
    "NOB": "Night",
    "TeO": "TempO",
    "MS": "Mass start",
    "MTBO": "MTBO",
    "LOB": "SkiO",
    "TRAIL": "TrailO",
}

# Levels that are not worth tagging (championship tiers are tagged by name)
ORIS_UNTAGGED_LEVELS: frozenset[str] = frozenset({"E", "ET", "S", "OST"})

# Documents of this source type hold the results link
ORIS_RESULTS_SOURCE_TYPE = "4"

ORIS_COUNTRY = "CZE"
ORIS_EVENT_PAGE = "https://oris.orientacnisporty.cz/Zavod?id={oris_id}"
ORIS_RESULTS_PAGE = "https://oris.orientacnisporty.cz/Vysledky?id={oris_id}"
