"""
Tests for reference path construction, projection and the local lane window.
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from data.formats.data_format import Lane
from trajectory.errors import InputInvalid
from trajectory.reference_path import (
    LocalLaneWindow, ReferencePath, ReferencePathConfig, build_reference_path,
)


def straight_points(length=20.0, spacing=1.0):
    xs = np.arange(0.0, length + spacing, spacing)
    return np.column_stack((xs, np.zeros_like(xs)))


def arc_points(radius=50.0, angle=1.0, spacing=1.0):
    angles = np.arange(0.0, angle, spacing / radius)
    return np.column_stack((radius * np.sin(angles), radius * (1.0 - np.cos(angles))))


class TestReferencePath:
    """Curve fitting and resampling."""

    def test_arc_length_is_strictly_increasing(self):
        ref = build_reference_path(arc_points())
        assert np.all(np.diff(ref.s) > 0.0)
        assert ref.s[0] == 0.0
        assert ref.length == pytest.approx(ref.s[-1])

    def test_resample_spacing(self):
        ref = build_reference_path(straight_points(), ReferencePathConfig(resample_step=0.5))
        spacing = np.diff(ref.s)
        assert np.all(spacing <= 0.5 + 1e-6)
        assert ref.length == pytest.approx(20.0, abs=1e-6)

    def test_straight_line_has_zero_curvature(self):
        ref = build_reference_path(straight_points())
        assert np.allclose(ref.heading, 0.0, atol=1e-9)
        assert np.allclose(ref.curvature, 0.0, atol=1e-9)

    def test_arc_curvature_matches_radius(self):
        ref = build_reference_path(arc_points(radius=50.0))
        middle = slice(len(ref) // 4, 3 * len(ref) // 4)
        assert np.allclose(ref.curvature[middle], 1.0 / 50.0, atol=1e-3)

    def test_too_few_waypoints(self):
        with pytest.raises(InputInvalid):
            build_reference_path([[0.0, 0.0], [1.0, 0.0]])

    def test_repeated_waypoints_do_not_count(self):
        with pytest.raises(InputInvalid):
            build_reference_path([[0.0, 0.0], [0.0, 0.0], [1.0, 0.0]])

    def test_non_finite_waypoints(self):
        with pytest.raises(InputInvalid):
            build_reference_path([[0.0, 0.0], [1.0, np.nan], [2.0, 0.0]])

    def test_bad_shape(self):
        with pytest.raises(InputInvalid):
            build_reference_path(np.zeros((0, 2)))

    def test_accepts_lane(self):
        lane = Lane.from_xy(straight_points(), lane_width=3.5)
        ref = build_reference_path(lane)
        assert ref.length == pytest.approx(20.0, abs=1e-6)

    def test_evaluate_extrapolates_along_end_tangent(self):
        ref = build_reference_path(straight_points())
        x, y, heading, curvature, _ = ref.evaluate([-2.0, 22.0])
        assert x[0] == pytest.approx(-2.0, abs=1e-6)
        assert x[1] == pytest.approx(22.0, abs=1e-6)
        assert np.allclose(y, 0.0, atol=1e-9)
        assert np.allclose(curvature, 0.0)


class TestProjection:
    """Closest-point projection."""

    @pytest.fixture
    def ref(self):
        return build_reference_path(straight_points())

    def test_left_is_positive(self, ref):
        s, d = ref.project(10.0, 1.5)
        assert s == pytest.approx(10.0, abs=1e-6)
        assert d == pytest.approx(1.5, abs=1e-6)

    def test_right_is_negative(self, ref):
        s, d = ref.project(7.3, -2.0)
        assert s == pytest.approx(7.3, abs=1e-6)
        assert d == pytest.approx(-2.0, abs=1e-6)

    def test_on_curve(self):
        ref = build_reference_path(arc_points(radius=50.0))
        # Point 1m inside the circle at 0.5 rad
        angle = 0.5
        x = 49.0 * math.sin(angle)
        y = 50.0 - 49.0 * math.cos(angle)
        s, d = ref.project(x, y)
        assert s == pytest.approx(50.0 * angle, abs=0.05)
        assert d == pytest.approx(1.0, abs=0.01)

    def test_too_far(self, ref):
        with pytest.raises(InputInvalid):
            ref.project(10.0, 12.0, max_lateral_distance=10.0)

    def test_off_the_end(self, ref):
        with pytest.raises(InputInvalid):
            ref.project(25.0, 0.0)
        with pytest.raises(InputInvalid):
            ref.project(-3.0, 0.0)

    def test_at_the_ends(self, ref):
        s, _ = ref.project(0.0, 0.5)
        assert s == pytest.approx(0.0, abs=1e-6)
        s, _ = ref.project(20.0, -0.5)
        assert s == pytest.approx(20.0, abs=1e-6)


class TestLocalLaneWindow:
    """Window caching and rebuilds."""

    @pytest.fixture
    def lane(self):
        return Lane.from_xy(straight_points(length=400.0), lane_width=3.5)

    def test_no_lane(self):
        window = LocalLaneWindow()
        with pytest.raises(InputInvalid):
            window.update(0.0, 0.0)

    def test_window_is_reused(self, lane):
        window = LocalLaneWindow()
        window.set_lane(lane)
        ref, rebuilt = window.update(0.0, 0.0)
        assert rebuilt
        assert ref.length == pytest.approx(200.0, abs=1e-6)

        ref2, rebuilt = window.update(5.0, 0.2)
        assert not rebuilt
        assert ref2 is ref
        assert window.rebuild_count == 1

    def test_rebuild_when_window_runs_out(self, lane):
        window = LocalLaneWindow()
        window.set_lane(lane)
        window.update(0.0, 0.0)
        ref, rebuilt = window.update(85.0, 0.0)
        assert rebuilt
        assert window.rebuild_count == 2
        # 10m kept behind the vehicle
        s, _ = ref.project(85.0, 0.0)
        assert s == pytest.approx(10.0, abs=1e-6)

    def test_new_lane_invalidates(self, lane):
        window = LocalLaneWindow()
        window.set_lane(lane)
        window.update(0.0, 0.0)
        window.set_lane(lane)
        _, rebuilt = window.update(1.0, 0.0)
        assert rebuilt

    def test_lane_widths_default_when_unknown(self, lane):
        window = LocalLaneWindow(ReferencePathConfig(default_left_lane_width=3.0))
        window.set_lane(lane)
        assert window.lane_widths(10.0, 0.0) == (3.5, 3.0, 0.0)

    def test_lane_widths_from_waypoints(self):
        window = LocalLaneWindow()
        window.set_lane(Lane.from_xy(straight_points(), 3.2, 3.4, 3.6))
        assert window.lane_widths(5.0, 0.0) == (3.2, 3.4, 3.6)
