"""
tests/test_link_repair.py — Link Drift Detection & Repair Tests
================================================================
Half-edges are written directly to the tables (as a restored backup or
manual SQL would) and then detected and repaired.
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy.orm import Session

from routebook.database.models import Event, LinkedEvent
from routebook.engine.links import LinkDelta
from routebook.errors import ValidationError
from routebook.services import event_service
from routebook.services.link_service import (
    apply_mirror,
    find_link_drift,
    pull_everywhere,
    repair_links,
)


@pytest.fixture
def graph(db_engine, alice):
    """Event A linked to L on both sides, event B unlinked."""
    a = event_service.create_event(db_engine, alice, {"name": "A", "date": "2024-06-01"})["id"]
    b = event_service.create_event(db_engine, alice, {"name": "B", "date": "2024-06-02"})["id"]
    link = event_service.create_linked_event(
        db_engine, alice, {"display_name": "L", "includes": [a]}
    )["id"]
    return a, b, link


def _set(engine, model, row_id, **values):
    with Session(engine) as session:
        row = session.get(model, row_id)
        for key, value in values.items():
            setattr(row, key, value)
        session.commit()


def _get(engine, model, row_id):
    with Session(engine) as session:
        return session.get(model, row_id)


class TestApplyMirror:
    def test_add_and_remove(self, db_engine, graph):
        a, b, link = graph
        with Session(db_engine) as session:
            changed = apply_mirror(session, LinkDelta(added=[b], removed=[a]), Event, "linked_to", link)
            session.commit()
        assert changed == 2
        assert _get(db_engine, Event, a).linked_to == []
        assert _get(db_engine, Event, b).linked_to == [link]

    def test_noop_delta(self, db_session):
        assert apply_mirror(db_session, LinkDelta(), Event, "linked_to", "x") == 0

    def test_rerun_changes_nothing(self, db_engine, graph):
        a, _, link = graph
        with Session(db_engine) as session:
            assert apply_mirror(session, LinkDelta(added=[a]), Event, "linked_to", link) == 0

    def test_missing_rows_skipped(self, db_engine, graph):
        _, _, link = graph
        with Session(db_engine) as session:
            delta = LinkDelta(added=["3f1c7c8e-0000-4000-8000-000000000000"])
            assert apply_mirror(session, delta, Event, "linked_to", link) == 0

    def test_pull_everywhere(self, db_engine, graph):
        a, _, link = graph
        with Session(db_engine) as session:
            assert pull_everywhere(session, LinkedEvent, "includes", a) == 1
            session.commit()
        assert _get(db_engine, LinkedEvent, link).includes == []


class TestDriftDetection:
    def test_consistent_graph(self, db_engine, graph):
        with Session(db_engine) as session:
            assert find_link_drift(session) == []

    def test_edge_missing_on_linked_event(self, db_engine, graph):
        _, b, link = graph
        _set(db_engine, Event, b, linked_to=[link])
        with Session(db_engine) as session:
            (problem,) = find_link_drift(session)
        assert (problem.event_id, problem.linked_event_id, problem.missing_on) == (
            b, link, "linked_event",
        )

    def test_edge_missing_on_event(self, db_engine, graph):
        a, _, link = graph
        _set(db_engine, Event, a, linked_to=[])
        with Session(db_engine) as session:
            (problem,) = find_link_drift(session)
        assert problem.missing_on == "event"


class TestRepair:
    def test_event_authoritative(self, db_engine, graph, caplog):
        a, b, link = graph
        _set(db_engine, Event, b, linked_to=[link])
        _set(db_engine, Event, a, linked_to=[])

        with caplog.at_level(logging.WARNING, logger="routebook.services.link_service"):
            report = repair_links(db_engine, authority="event")

        assert report["corrected"] == 2
        assert _get(db_engine, LinkedEvent, link).includes == [b]
        assert "corrected 2" in caplog.text
        with Session(db_engine) as session:
            assert find_link_drift(session) == []

    def test_linked_event_authoritative(self, db_engine, graph):
        a, b, link = graph
        _set(db_engine, Event, b, linked_to=[link])
        _set(db_engine, Event, a, linked_to=[])

        report = repair_links(db_engine, authority="linked_event")

        assert report["corrected"] == 2
        assert _get(db_engine, Event, a).linked_to == [link]
        assert _get(db_engine, Event, b).linked_to == []
        assert _get(db_engine, LinkedEvent, link).includes == [a]

    def test_dangling_reference_dropped(self, db_engine, graph):
        a, _, link = graph
        ghost = "3f1c7c8e-0000-4000-8000-000000000000"
        _set(db_engine, Event, a, linked_to=[link, ghost])
        _set(db_engine, LinkedEvent, link, includes=[a, ghost])

        report = repair_links(db_engine, authority="linked_event")

        assert report["corrected"] == 2
        assert _get(db_engine, Event, a).linked_to == [link]
        assert _get(db_engine, LinkedEvent, link).includes == [a]

    def test_clean_graph_reports_nothing(self, db_engine, graph):
        report = repair_links(db_engine)
        assert report["checked"] == 2
        assert report["corrected"] == 0
        assert report["corrections"] == []

    def test_unknown_authority(self, db_engine):
        with pytest.raises(ValidationError):
            repair_links(db_engine, authority="both")
