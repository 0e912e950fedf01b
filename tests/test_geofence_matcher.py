# tests/test_geofence_matcher.py
"""Unit tests for distance math and zone selection."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from types import SimpleNamespace
import pytest
from app.services.config_store import ZoneSnapshot
from app.services.geofence_matcher import haversine_distance, match
from tests.helpers import Z1, Z2, Z1_CENTER, offset_north


def point(meters_north_of_z1):
    lat, lng = offset_north(*Z1_CENTER, meters_north_of_z1)
    return SimpleNamespace(latitude=lat, longitude=lng)


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_distance(25.0, -100.0, 25.0, -100.0) == 0

    def test_one_degree_of_latitude(self):
        assert haversine_distance(0, 0, 1, 0) == pytest.approx(111_195, abs=1)

    def test_symmetric(self):
        a = haversine_distance(25.6866, -100.3161, 19.4326, -99.1332)
        b = haversine_distance(19.4326, -99.1332, 25.6866, -100.3161)
        assert a == pytest.approx(b)
        assert a == pytest.approx(706_000, rel=0.01)   # Monterrey → Mexico City

    def test_antipodal_points_do_not_blow_up(self):
        assert haversine_distance(0, 0, 0, 180) == pytest.approx(20_015_087, rel=1e-6)


class TestMatch:
    def test_inside_zone(self):
        result = match(point(30), [Z1, Z2])
        assert result.zone_code == "Z1"
        assert result.distance_m == pytest.approx(30, abs=0.01)

    def test_boundary_is_inside(self):
        edge = point(50)
        exact = haversine_distance(edge.latitude, edge.longitude, Z1.latitude, Z1.longitude)
        zone = ZoneSnapshot(code="B", name="B", latitude=Z1.latitude, longitude=Z1.longitude, radius_m=exact)
        assert match(edge, [zone]).zone_code == "B"

    def test_outside_reports_nearest_distance(self):
        result = match(point(500), [Z1, Z2])
        assert result.zone is None
        assert result.distance_m == pytest.approx(500, abs=0.01)

    def test_no_zones(self):
        result = match(point(0), [])
        assert result.zone is None
        assert result.distance_m is None

    def test_overlapping_zones_pick_nearest_center(self):
        big = ZoneSnapshot(code="A-BIG", name="Big", latitude=Z1.latitude, longitude=Z1.longitude,
                           radius_m=5000)
        result = match(point(1990), [big, Z2])
        assert result.zone_code == "Z2"

    def test_equal_distance_picks_smallest_code(self):
        lat, lng = Z1_CENTER
        zb = ZoneSnapshot(code="ZB", name="B", latitude=lat, longitude=lng, radius_m=100)
        za = ZoneSnapshot(code="ZA", name="A", latitude=lat, longitude=lng, radius_m=100)
        assert match(point(10), [zb, za]).zone_code == "ZA"
        assert match(point(10), [za, zb]).zone_code == "ZA"
