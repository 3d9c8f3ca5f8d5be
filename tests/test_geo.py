"""
tests/test_geo.py — Track Distance & Geodata Tests
===================================================
"""

from __future__ import annotations

import math

import pytest
from conftest import SQUARE_CORNERS, build_quickroute_payload, wrap_in_jpeg

from routebook.engine.geo import (
    EARTH_RADIUS_M,
    GeoPayload,
    event_geo_updates,
    extract_geo,
    haversine_distance,
    track_distance_km,
)

ONE_DEGREE_AT_EQUATOR_M = EARTH_RADIUS_M * math.pi / 180


class TestDistance:
    def test_same_point(self):
        assert haversine_distance([50.0, 14.0], [50.0, 14.0]) == 0

    def test_one_degree_along_equator(self):
        assert haversine_distance([0, 0], [0, 1]) == pytest.approx(ONE_DEGREE_AT_EQUATOR_M)

    def test_symmetric(self):
        a, b = [50.08, 14.42], [49.19, 16.61]
        assert haversine_distance(a, b) == pytest.approx(haversine_distance(b, a))

    @pytest.mark.parametrize("track", [[], [[50.0, 14.0]]])
    def test_fewer_than_two_points(self, track):
        assert track_distance_km(track) == 0

    def test_two_points_floored_to_metres(self):
        assert track_distance_km([[0, 0], [0, 1]]) == math.floor(ONE_DEGREE_AT_EQUATOR_M) / 1000

    def test_three_points_sum_two_legs(self):
        track = [[0, 0], [0, 1], [0, 2]]
        assert track_distance_km(track) == math.floor(2 * ONE_DEGREE_AT_EQUATOR_M) / 1000

    def test_out_and_back(self):
        assert track_distance_km([[0, 0], [0, 1], [0, 0]]) == pytest.approx(
            2 * math.floor(ONE_DEGREE_AT_EQUATOR_M) / 1000, abs=0.002
        )


class TestExtractGeo:
    def test_non_geocoded_image(self):
        assert extract_geo(wrap_in_jpeg(None)) is None
        assert extract_geo(b"not an image") is None

    def test_geo_block(self, quickroute_jpeg):
        geo = extract_geo(quickroute_jpeg).to_dict()
        assert geo["map_corners"]["sw"] == {"lat": 50.0, "long": 14.0}
        assert geo["map_corners"]["ne"] == pytest.approx({"lat": 50.1, "long": 14.2})
        assert geo["map_centre"] == pytest.approx({"lat": 50.05, "long": 14.1})
        assert geo["location_size_pixels"] == {"x": 0, "y": 0, "width": 800, "height": 600}
        assert len(geo["track"]) == 3
        assert geo["distance_run"] == track_distance_km(geo["track"])
        assert geo["distance_run"] > 0

    def test_single_point_track(self):
        image = wrap_in_jpeg(build_quickroute_payload(SQUARE_CORNERS, [SQUARE_CORNERS[0]]))
        geo = extract_geo(image)
        assert geo.track == [[50.0, 14.0]]
        assert geo.distance_run == 0


class TestEventGeoUpdates:
    @pytest.fixture
    def payload(self, quickroute_jpeg) -> GeoPayload:
        return extract_geo(quickroute_jpeg)

    def test_fills_empty_fields(self, payload):
        updates = event_geo_updates({"loc_lat": None, "loc_long": None}, payload)
        assert updates["loc_lat"] == pytest.approx(50.05)
        assert updates["loc_long"] == pytest.approx(14.1)
        assert updates["loc_corner_sw"] == [50.0, 14.0]
        assert set(updates) == {
            "loc_lat", "loc_long",
            "loc_corner_sw", "loc_corner_nw", "loc_corner_ne", "loc_corner_se",
        }

    def test_keeps_existing_values(self, payload):
        event = {
            "loc_lat": 49.0,
            "loc_long": 16.0,
            "loc_corner_sw": [1, 2],
            "loc_corner_nw": [],
            "loc_corner_ne": [3, 4],
            "loc_corner_se": [5, 6],
        }
        assert set(event_geo_updates(event, payload)) == {"loc_corner_nw"}

    def test_empty_payload_changes_nothing(self):
        assert event_geo_updates({}, GeoPayload()) == {}
