"""
tests/test_map_service.py — Map Upload & Geodata Tests
=======================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import build_quickroute_payload, wrap_in_jpeg
from sqlalchemy import select
from sqlalchemy.orm import Session

from routebook.database.models import AuditLog, Event
from routebook.errors import AuthorizationError, NotFoundError, ValidationError
from routebook.services import event_service, map_service

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=UTC)
OTHER_CORNERS = [(10.0, 10.0), (10.2, 10.0), (10.2, 10.2), (10.0, 10.2)]


@pytest.fixture
def event_id(db_engine, alice):
    return event_service.create_event(
        db_engine, alice, {"name": "Night Sprint", "date": "2024-05-01"}
    )["id"]


def _attach(engine, viewer, event_id, user_id, image, map_type="route", title=None, ref="maps/x.jpg"):
    return map_service.attach_map(
        engine, viewer, event_id, user_id, map_type, image, ref, title, now=lambda: NOW
    )[0]


def _stored(engine, event_id) -> Event:
    with Session(engine) as session:
        return session.get(Event, event_id)


class TestAttachMap:
    def test_geocoded_upload(self, db_engine, bob, event_id, quickroute_jpeg):
        result = _attach(db_engine, bob, event_id, bob.id, quickroute_jpeg)

        (runner,) = result["runners"]
        assert runner["user"] == bob.id
        (record,) = runner["maps"]
        assert record["title"] == "map"
        assert record["route"] == "maps/x.jpg"
        assert record["route_updated"] == NOW.isoformat()
        assert record["course"] is None
        assert record["is_geocoded"] is True
        assert record["geo"]["map_centre"] == pytest.approx({"lat": 50.05, "long": 14.1})
        assert len(record["geo"]["track"]) == 3

        assert result["loc_lat"] == pytest.approx(50.05)
        assert result["loc_long"] == pytest.approx(14.1)
        assert result["loc_corner_sw"] == [50.0, 14.0]
        assert result["loc_corner_ne"] == pytest.approx([50.1, 14.2])

    def test_first_geocoded_map_sets_location(self, db_engine, alice, bob, event_id, quickroute_jpeg):
        _attach(db_engine, bob, event_id, bob.id, quickroute_jpeg)
        other = wrap_in_jpeg(build_quickroute_payload(OTHER_CORNERS, OTHER_CORNERS[:2]))
        result = _attach(db_engine, alice, event_id, alice.id, other)

        assert result["loc_lat"] == pytest.approx(50.05)
        alice_map = next(r for r in result["runners"] if r["user"] == alice.id)["maps"][0]
        assert alice_map["geo"]["map_centre"] == pytest.approx({"lat": 10.1, "long": 10.1})

    def test_existing_location_is_kept(self, db_engine, alice, event_id, quickroute_jpeg):
        event_service.update_event(db_engine, alice, event_id, {"loc_lat": 1.0, "loc_long": 2.0})
        result = _attach(db_engine, alice, event_id, alice.id, quickroute_jpeg)
        assert (result["loc_lat"], result["loc_long"]) == (1.0, 2.0)
        assert result["loc_corner_sw"] == [50.0, 14.0]

    def test_plain_image(self, db_engine, bob, event_id):
        result = _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None), map_type="course")
        record = result["runners"][0]["maps"][0]
        assert record["course"] == "maps/x.jpg"
        assert record["is_geocoded"] is False
        assert record["geo"] == {}
        assert result["loc_lat"] is None

    def test_corrupt_payload_degrades(self, db_engine, bob, event_id):
        payload = build_quickroute_payload(OTHER_CORNERS, OTHER_CORNERS)[:-3]
        result = _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(payload))
        assert result["runners"][0]["maps"][0]["is_geocoded"] is False
        assert result["loc_lat"] is None

    def test_out_of_range_corners_are_not_geocoded(self, db_engine, bob, event_id):
        corners = [(500.0, 14.0)] + OTHER_CORNERS[1:]
        image = wrap_in_jpeg(build_quickroute_payload(corners, OTHER_CORNERS[:2]))
        result = _attach(db_engine, bob, event_id, bob.id, image)
        record = result["runners"][0]["maps"][0]
        assert record["is_geocoded"] is False
        assert record["geo"] == {}
        assert result["loc_lat"] is None
        assert result["loc_corner_sw"] == []

    def test_second_type_on_same_record(self, db_engine, bob, event_id, quickroute_jpeg):
        _attach(db_engine, bob, event_id, bob.id, quickroute_jpeg, ref="maps/route.jpg")
        result = _attach(
            db_engine, bob, event_id, bob.id, wrap_in_jpeg(None),
            map_type="course", ref="maps/course.jpg",
        )
        (record,) = result["runners"][0]["maps"]
        assert record["route"] == "maps/route.jpg"
        assert record["course"] == "maps/course.jpg"
        assert record["is_geocoded"] is True

    def test_titles_make_separate_records(self, db_engine, bob, event_id):
        _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None), title="Day 1")
        result = _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None), title="Day 2")
        assert [m["title"] for m in result["runners"][0]["maps"]] == ["Day 1", "Day 2"]

    def test_existing_runner_is_reused(self, db_engine, bob, event_id):
        event_service.add_runner(db_engine, bob, event_id, {"visibility": "public"})
        result = _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None))
        (runner,) = result["runners"]
        assert runner["visibility"] == "public"
        assert len(runner["maps"]) == 1

    def test_replacing_an_image_returns_old_ref(self, db_engine, bob, event_id):
        _, replaced = map_service.attach_map(
            db_engine, bob, event_id, bob.id, "course", wrap_in_jpeg(None), "maps/old.jpg"
        )
        assert replaced is None
        result, replaced = map_service.attach_map(
            db_engine, bob, event_id, bob.id, "course", wrap_in_jpeg(None), "maps/new.jpg"
        )
        assert replaced == "maps/old.jpg"
        assert result["runners"][0]["maps"][0]["course"] == "maps/new.jpg"

    def test_audited(self, db_engine, bob, event_id):
        _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None), title="Day 1")
        with Session(db_engine) as session:
            row = session.scalars(
                select(AuditLog).where(AuditLog.action_type == "ATTACH_MAP")
            ).one()
        assert row.reason == f"{bob.id}/route/Day 1"

    def test_other_user_rejected(self, db_engine, bob, carol, event_id):
        with pytest.raises(AuthorizationError):
            _attach(db_engine, carol, event_id, bob.id, wrap_in_jpeg(None))

    def test_guest_rejected(self, db_engine, guest, event_id):
        with pytest.raises(AuthorizationError):
            _attach(db_engine, guest, event_id, guest.id, wrap_in_jpeg(None))

    def test_admin_uploads_for_anyone(self, db_engine, admin, bob, event_id):
        result = _attach(db_engine, admin, event_id, bob.id, wrap_in_jpeg(None))
        assert result["runners"][0]["user"] == bob.id

    def test_bad_map_type(self, db_engine, bob, event_id):
        with pytest.raises(ValidationError):
            _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None), map_type="sketch")

    def test_check_upload(self, bob, carol, anonymous):
        map_service.check_upload(bob, bob.id, "overlay")
        with pytest.raises(AuthorizationError):
            map_service.check_upload(carol, bob.id, "route")
        with pytest.raises(AuthorizationError):
            map_service.check_upload(anonymous, bob.id, "route")
        with pytest.raises(ValidationError):
            map_service.check_upload(bob, bob.id, "sketch")

    def test_unknown_user(self, db_engine, admin, event_id):
        with pytest.raises(ValidationError):
            _attach(db_engine, admin, event_id, "3f1c7c8e-0000-4000-8000-000000000000", b"")

    def test_missing_event(self, db_engine, bob):
        with pytest.raises(NotFoundError):
            _attach(db_engine, bob, "3f1c7c8e-0000-4000-8000-000000000000", bob.id, b"")


class TestDeleteMap:
    def test_clears_type_and_geo(self, db_engine, bob, event_id, quickroute_jpeg):
        _attach(db_engine, bob, event_id, bob.id, quickroute_jpeg, ref="maps/route.jpg")
        result, removed = map_service.delete_map(db_engine, bob, event_id, bob.id, "route")

        assert removed == "maps/route.jpg"
        record = result["runners"][0]["maps"][0]
        assert record["route"] is None
        assert record["route_updated"] is None
        assert record["is_geocoded"] is False
        assert record["geo"] == {}
        # event location stays once set
        assert _stored(db_engine, event_id).loc_lat == pytest.approx(50.05)

    def test_missing_runner(self, db_engine, bob, event_id):
        with pytest.raises(NotFoundError, match="Runner"):
            map_service.delete_map(db_engine, bob, event_id, bob.id, "route")

    def test_missing_map(self, db_engine, bob, event_id):
        _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None), title="Day 1")
        with pytest.raises(NotFoundError, match="Map"):
            map_service.delete_map(db_engine, bob, event_id, bob.id, "route", "Day 2")

    def test_other_user_rejected(self, db_engine, bob, carol, event_id):
        _attach(db_engine, bob, event_id, bob.id, wrap_in_jpeg(None))
        with pytest.raises(AuthorizationError):
            map_service.delete_map(db_engine, carol, event_id, bob.id, "route")
