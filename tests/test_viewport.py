"""Tests for civicwatch.viewport — containment, density ceilings, ordering."""
import math
import random
from dataclasses import replace

import pytest

from civicwatch.models import Viewport
from civicwatch.viewport import (
    LOW_SPEC_MARKER_CAP,
    contains,
    density_ceiling,
    limit_markers,
    order_markers,
    select_visible_markers,
)

from conftest import JHB_LAT, JHB_LNG, make_report


def _vp(delta=0.05, lat=JHB_LAT, lng=JHB_LNG):
    return Viewport(lat, lng, delta, delta)


class TestContains:
    def test_centre_is_inside(self):
        assert contains(JHB_LAT, JHB_LNG, _vp(), buffer=0)

    def test_edge_plus_buffer(self):
        vp = _vp(0.1)
        assert contains(JHB_LAT + 0.149, JHB_LNG, vp, buffer=0.1)
        assert not contains(JHB_LAT + 0.151, JHB_LNG, vp, buffer=0.1)

    def test_zero_buffer(self):
        vp = _vp(0.1)
        assert not contains(JHB_LAT, JHB_LNG + 0.06, vp, buffer=0)

    def test_nan_never_contained(self):
        assert not contains(math.nan, JHB_LNG, _vp())
        assert not contains(JHB_LAT, math.nan, _vp())


class TestDensityCeiling:
    @pytest.mark.parametrize("lat_delta,lng_delta,expected", [
        (2.0, 2.0, 5),        # area 4
        (0.5, 0.5, 10),       # area 0.25
        (0.2, 0.1, 20),       # area 0.02
        (0.05, 0.05, 30),     # area 0.0025
        (0.1, 0.1, 20),       # area 0.01000...02, just above the 0.01 boundary
        (1.0, 1.0, 10),       # area exactly 1 is not > 1
    ])
    def test_table(self, lat_delta, lng_delta, expected):
        assert density_ceiling(Viewport(0, 0, lat_delta, lng_delta)) == expected

    def test_low_spec_caps(self):
        assert density_ceiling(_vp(0.05), low_spec=True) == LOW_SPEC_MARKER_CAP
        # Already below the cap
        assert density_ceiling(Viewport(0, 0, 2, 2), low_spec=True) == 5

    def test_ceiling_non_increasing_in_area(self):
        previous = math.inf
        for delta in (0.01, 0.05, 0.1, 0.2, 0.4, 0.8, 1.5, 3.0):
            ceiling = density_ceiling(Viewport(0, 0, delta, delta))
            assert ceiling <= previous
            previous = ceiling


class TestOrdering:
    def test_nearest(self):
        reports = [
            make_report(id="far", lat=JHB_LAT + 0.02),
            make_report(id="near", lat=JHB_LAT + 0.001),
            make_report(id="mid", lat=JHB_LAT - 0.01),
        ]
        assert [r.id for r in order_markers(reports, _vp(), "nearest")] == ["near", "mid", "far"]

    def test_upvotes(self):
        reports = [make_report(id="a", upvotes=1), make_report(id="b", upvotes=9), make_report(id="c", upvotes=1)]
        assert [r.id for r in order_markers(reports, _vp(), "upvotes")] == ["b", "a", "c"]

    def test_recent_puts_undated_last(self):
        reports = [
            make_report(id="old", age_hours=50),
            make_report(id="undated", age_hours=None),
            make_report(id="new", age_hours=1),
        ]
        assert [r.id for r in order_markers(reports, _vp(), "recent")] == ["new", "old", "undated"]

    def test_input(self):
        reports = [make_report(id=str(i)) for i in range(5)]
        assert [r.id for r in order_markers(reports, _vp(), "input")] == ["0", "1", "2", "3", "4"]

    def test_unknown_order(self):
        with pytest.raises(ValueError):
            order_markers([], _vp(), "alphabetical")

    def test_limit_markers_truncates_after_ordering(self):
        vp = Viewport(JHB_LAT, JHB_LNG, 2.0, 2.0)  # ceiling 5
        reports = [make_report(id=str(i), lat=JHB_LAT + i * 0.01) for i in range(10, 0, -1)]
        result = limit_markers(reports, vp)
        assert [r.id for r in result] == ["1", "2", "3", "4", "5"]


class TestSelectVisibleMarkers:
    def test_fifty_reports_forty_inside(self):
        vp = _vp(0.05)
        rng = random.Random(7)
        inside = [make_report(id=f"in{i}", lat=JHB_LAT + rng.uniform(-0.02, 0.02),
                              lng=JHB_LNG + rng.uniform(-0.02, 0.02)) for i in range(40)]
        outside = [make_report(id=f"out{i}", lat=JHB_LAT + 1 + i * 0.01) for i in range(10)]
        result = select_visible_markers(inside + outside, vp)
        assert len(result) <= 30
        assert len(result) == 30
        assert all(r.id.startswith("in") for r in result)

    def test_never_returns_points_outside_buffer(self):
        vp = _vp(0.02)
        rng = random.Random(3)
        reports = [make_report(id=str(i), lat=JHB_LAT + rng.uniform(-0.5, 0.5),
                               lng=JHB_LNG + rng.uniform(-0.5, 0.5)) for i in range(200)]
        reports.append(make_report(id="centre"))
        result = select_visible_markers(reports, vp, buffer=0.05)
        assert result
        for r in result:
            assert abs(r.lat - vp.center_lat) <= vp.lat_delta / 2 + 0.05
            assert abs(r.lng - vp.center_lng) <= vp.lng_delta / 2 + 0.05

    def test_skips_invalid_coordinates(self):
        good = make_report(id="good")
        bad = replace(make_report(id="bad"), lat=math.nan)
        out_of_range = make_report(id="range", lat=123.0)
        result = select_visible_markers([bad, good, out_of_range], _vp())
        assert [r.id for r in result] == ["good"]

    def test_low_spec(self):
        reports = [make_report(id=str(i)) for i in range(25)]
        assert len(select_visible_markers(reports, _vp(), low_spec=True)) == LOW_SPEC_MARKER_CAP

    def test_empty(self):
        assert select_visible_markers([], _vp()) == []

    def test_unknown_order_rejected_up_front(self):
        with pytest.raises(ValueError):
            select_visible_markers([], _vp(), order="random")

    def test_deterministic(self):
        reports = [make_report(id=str(i), lat=JHB_LAT + (i % 7) * 0.001) for i in range(40)]
        first = select_visible_markers(reports, _vp())
        second = select_visible_markers(list(reports), _vp())
        assert [r.id for r in first] == [r.id for r in second]
