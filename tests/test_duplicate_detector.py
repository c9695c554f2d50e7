"""Unit tests for duplicate_detector.py.

Tests cover: the reference scenarios, threshold boundary, empty and small
snapshots, the grid path for large snapshots, exhaustive fallback beyond
the radius schedule, and index cache reuse.
"""

import math
from dataclasses import replace

from duplicate_detector import DuplicateDetector, DuplicateOutcome, nearest_linear
from geo_distance import haversine_m
from intake_config import INTAKE_CONFIG
from spatial_index import KnownLocation


LONDON = KnownLocation(id="node/1", lat=51.5074, lng=-0.1278)


# =========================================================================
# Reference scenarios
# =========================================================================

class TestScenarios:
    def test_same_coordinate_is_duplicate(self):
        known = [KnownLocation(id="A", lat=51.5074, lng=-0.1278)]
        outcome = DuplicateDetector().check(51.5074, -0.1278, known)

        assert outcome.is_duplicate is True
        assert outcome.distance_meters == 0
        assert outcome.nearest_location_id == "A"
        assert outcome.threshold_meters == 50

    def test_a_couple_of_hundred_metres_away_is_not_duplicate(self):
        known = [KnownLocation(id="A", lat=51.5074, lng=-0.1278)]
        outcome = DuplicateDetector().check(51.5088, -0.1262, known)

        assert outcome.is_duplicate is False
        assert outcome.nearest_location_id == "A"
        # ~156 m north plus ~111 m east
        assert outcome.distance_meters == haversine_m(51.5088, -0.1262, 51.5074, -0.1278)
        assert 150 <= outcome.distance_meters <= 200

    def test_close_submission_is_duplicate(self):
        outcome = DuplicateDetector().check(51.5075, -0.1279, [LONDON])

        assert outcome.is_duplicate is True
        assert outcome.nearest_location_id == "node/1"
        assert outcome.distance_meters == haversine_m(51.5075, -0.1279, LONDON.lat, LONDON.lng)
        assert outcome.distance_meters < 50

    def test_moving_closer_never_clears_duplicate(self):
        detector = DuplicateDetector()
        flagged = False
        # Walk due north towards LONDON in 5 m steps.
        for step in range(20, -1, -1):
            lat = LONDON.lat + step * 5 / 111_195
            outcome = detector.check(lat, LONDON.lng, [LONDON])
            if flagged:
                assert outcome.is_duplicate is True
            flagged = flagged or outcome.is_duplicate
        assert flagged is True


# =========================================================================
# Edge cases
# =========================================================================

class TestEdgeCases:
    def test_empty_snapshot(self):
        outcome = DuplicateDetector().check(51.5, -0.12, [])
        assert outcome.is_duplicate is False
        assert outcome.nearest_location_id is None
        assert math.isinf(outcome.distance_meters)

    def test_empty_snapshot_serialises_null_distance(self):
        outcome = DuplicateDetector().check(51.5, -0.12, ())
        assert outcome.to_dict() == {
            "isDuplicate": False,
            "distanceMeters": None,
            "nearestLocationId": None,
            "thresholdMeters": 50.0,
        }

    def test_exactly_at_threshold_is_not_duplicate(self, monkeypatch):
        loc = KnownLocation(id="x", lat=0.0, lng=0.0)
        monkeypatch.setattr("duplicate_detector.haversine_m", lambda *a: 50)
        outcome = DuplicateDetector().check(0.0, 0.0, [loc])
        assert outcome.distance_meters == 50
        assert outcome.is_duplicate is False

    def test_same_coordinate_is_duplicate(self):
        outcome = DuplicateDetector().check(LONDON.lat, LONDON.lng, [LONDON])
        assert outcome.distance_meters == 0
        assert outcome.is_duplicate is True

    def test_custom_threshold(self):
        config = replace(
            INTAKE_CONFIG, duplicate=replace(INTAKE_CONFIG.duplicate, threshold_m=250.0)
        )
        outcome = DuplicateDetector(config).check(51.5090, -0.1290, [LONDON])
        assert outcome.is_duplicate is True
        assert outcome.threshold_meters == 250.0


# =========================================================================
# Nearest search
# =========================================================================

class TestNearestLinear:
    def test_picks_closest(self):
        locs = [KnownLocation("a", 0.0, 0.01), KnownLocation("b", 0.0, 0.001)]
        best, dist = nearest_linear(0.0, 0.0, locs)
        assert best.id == "b"
        assert dist == haversine_m(0.0, 0.0, 0.0, 0.001)

    def test_tie_keeps_first(self):
        locs = [KnownLocation("a", 0.0, 0.001), KnownLocation("b", 0.0, -0.001)]
        best, _ = nearest_linear(0.0, 0.0, locs)
        assert best.id == "a"


class TestGridSearch:
    def test_matches_linear_scan_on_large_snapshot(self, grid_locations):
        locs = grid_locations(51.40, -0.30, 15, 15, step_deg=0.013)
        detector = DuplicateDetector()
        for lat, lng in [(51.45, -0.25), (51.4013, -0.2999), (51.58, -0.12), (51.52, -0.21)]:
            _, expected = nearest_linear(lat, lng, locs)
            nearest, dist = detector.find_nearest(lat, lng, locs)
            assert dist == expected
            assert haversine_m(lat, lng, nearest.lat, nearest.lng) == expected

    def test_beyond_radius_schedule_falls_back_to_full_scan(self, grid_locations):
        locs = grid_locations(10.0, 10.0, 12, 12, step_deg=0.01)
        detector = DuplicateDetector()
        # ~110 km north of the lattice: outside every search radius.
        nearest, dist = detector.find_nearest(11.2, 10.05, locs)
        _, expected = nearest_linear(11.2, 10.05, locs)
        assert nearest is not None
        assert dist == expected
        assert dist > 5000

    def test_high_latitude_nearest_is_exact(self, grid_locations):
        padding = grid_locations(69.0, 20.0, 10, 10, step_deg=0.2, prefix="pad")
        east = KnownLocation(id="east", lat=70.0, lng=25.0235)
        north = KnownLocation(id="north", lat=70.0085, lng=25.0)
        detector = DuplicateDetector()
        locs = padding + (east, north)
        nearest, dist = detector.find_nearest(70.0, 25.0, locs)
        _, expected = nearest_linear(70.0, 25.0, locs)
        assert dist == expected
        assert nearest.id == "east"

    def test_adding_a_farther_location_keeps_result(self, grid_locations):
        locs = grid_locations(40.0, -74.0, 11, 11, step_deg=0.01)
        detector = DuplicateDetector()
        before = detector.check(40.0501, -73.9499, locs)
        extra = locs + (KnownLocation(id="far", lat=40.3, lng=-73.5),)
        after = detector.check(40.0501, -73.9499, extra)
        assert after.is_duplicate == before.is_duplicate
        assert after.nearest_location_id == before.nearest_location_id
        assert after.distance_meters == before.distance_meters


# =========================================================================
# Index cache
# =========================================================================

class TestIndexCache:
    def test_same_snapshot_reuses_index(self, grid_locations):
        locs = grid_locations(51.4, -0.3, 12, 12)
        detector = DuplicateDetector()
        detector.check(51.45, -0.25, locs)
        detector.check(51.46, -0.24, locs)
        stats = detector.cache_stats()
        assert stats["builds"] == 1
        assert stats["hits"] == 1
        assert stats["total_items"] == len(locs)

    def test_new_snapshot_rebuilds_index(self, grid_locations):
        detector = DuplicateDetector()
        first = grid_locations(51.4, -0.3, 12, 12)
        second = grid_locations(51.4, -0.3, 12, 12)
        assert first == second and first is not second
        detector.check(51.45, -0.25, first)
        detector.check(51.45, -0.25, second)
        assert detector.cache_stats()["builds"] == 2

    def test_small_snapshot_skips_grid(self):
        detector = DuplicateDetector()
        detector.check(51.5, -0.12, [LONDON])
        assert detector.cache_stats() == {"cached": False, "builds": 0, "hits": 0}

    def test_invalidate_forces_rebuild(self, grid_locations):
        locs = grid_locations(51.4, -0.3, 12, 12)
        detector = DuplicateDetector()
        detector.check(51.45, -0.25, locs)
        detector.invalidate()
        assert detector.cache_stats()["cached"] is False
        detector.check(51.45, -0.25, locs)
        assert detector.cache_stats()["builds"] == 2

    def test_refresh_returns_index(self, grid_locations):
        locs = grid_locations(51.4, -0.3, 12, 12)
        detector = DuplicateDetector()
        index = detector.refresh(locs)
        assert len(index) == len(locs)
        detector.check(51.45, -0.25, locs)
        assert detector.cache_stats()["hits"] == 1


class TestOutcome:
    def test_to_dict_keys(self):
        outcome = DuplicateOutcome(True, 12, "node/9", 50.0)
        assert outcome.to_dict() == {
            "isDuplicate": True,
            "distanceMeters": 12,
            "nearestLocationId": "node/9",
            "thresholdMeters": 50.0,
        }
