"""
Routebook — Orienteering Events, Results & Map Archive
=======================================================
Tracks orienteering events, the runners who took part, their results and the
scanned course maps they upload.  Events can be grouped into linked events
(e.g. the stages of a multi-day race), every runner entry carries its own
visibility level, and georeferenced (QuickRoute) map scans are decoded on
upload to recover the GPS track and map corners.

Package layout::

    routebook/
    ├── __main__.py        # python -m routebook: init-db, check/repair links
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Error taxonomy shared by services and API
    ├── constants.py       # Field whitelists, federation code tables
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session helper
    │   └── models.py      # ORM models (events, linked events, users, clubs)
    ├── engine/
    │   ├── links.py       # Event ↔ LinkedEvent reference delta
    │   ├── visibility.py  # Per-viewer runner projection
    │   ├── quickroute.py  # QuickRoute JPEG payload decoder
    │   └── geo.py         # Track distance, map centre, event geo defaults
    ├── services/
    │   ├── event_service.py      # Event / LinkedEvent / Runner mutations
    │   ├── map_service.py        # Map upload + geodata merge
    │   ├── link_service.py       # Mirror application + repair pass
    │   ├── validation_service.py # Existence validators for ids
    │   ├── oris_service.py       # Federation (ORIS) data source client
    │   ├── audit.py              # Append-only mutation audit trail
    │   └── upload_service.py     # Map image file storage
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / viewer dependencies
        └── routes/        # Thin REST adapters over the services
"""

__version__ = "0.1.0"
