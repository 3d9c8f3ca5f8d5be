"""
routebook.__main__ — Maintenance entry point for ``python -m routebook``
=========================================================================

Commands:

    init-db                         create any missing tables
    check-links                     report Event ↔ LinkedEvent half-edges
    repair-links [--authority X]    rebuild the other side from X
                                    (``event`` or ``linked_event``)

Wiring:
1. Load .env (DATABASE_URL).
2. Configure logging.
3. Create the SQLAlchemy engine.
4. Run the command.

Run with::

    python -m routebook repair-links --authority event
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from routebook.database.engine import create_db_engine, get_session, init_db
from routebook.errors import RoutebookError
from routebook.services.link_service import AUTHORITIES, find_link_drift, repair_links

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("routebook")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m routebook")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init-db", help="create missing tables")
    commands.add_parser("check-links", help="report inconsistent event links")
    repair = commands.add_parser("repair-links", help="make event links consistent")
    repair.add_argument("--authority", choices=AUTHORITIES, default="event")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    load_dotenv()

    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1

    if args.command == "init-db":
        init_db(engine)
        return 0

    if args.command == "check-links":
        with get_session(engine) as session:
            problems = find_link_drift(session)
        for problem in problems:
            logger.warning("%s", problem.message)
        logger.info("%d inconsistent link(s) found", len(problems))
        return 1 if problems else 0

    try:
        report = repair_links(engine, authority=args.authority)
    except RoutebookError as exc:
        logger.error("Link repair failed: %s", exc.message)
        return 1
    logger.info("Checked %d link(s), corrected %d", report["checked"], report["corrected"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
