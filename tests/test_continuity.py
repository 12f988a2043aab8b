"""
Tests for output path stitching and trimming.
"""

import math
import sys
from pathlib import Path as FilePath

import numpy as np
import pytest

# Add project root to path
project_root = FilePath(__file__).parent.parent
sys.path.insert(0, str(project_root))

from trajectory.continuity import concat, max_deviation, trim_passed
from trajectory.models.trajectory import FrenetPath, Path, TrajectoryPoint


def straight(xs, y=0.0, velocity=10.0):
    return Path([TrajectoryPoint(x=float(x), y=y, heading=0.0, velocity=velocity, curvature=0.0)
                 for x in xs])


def spacing(path):
    xy = path.xy()
    return np.hypot(np.diff(xy[:, 0]), np.diff(xy[:, 1]))


class TestConcat:

    def test_gaps_are_bounded(self):
        new = straight([0.0, 4.0, 4.1, 4.15, 9.0, 10.0])
        result = concat(None, new, max_size=100, min_size=5, max_separation=1.5, min_separation=0.2)
        gaps = spacing(result)
        assert np.all(gaps <= 1.5 + 1e-9)
        assert np.all(gaps >= 0.2 - 1e-9)
        assert result[0].x == 0.0
        assert result[-1].x == 10.0

    def test_close_points_are_merged(self):
        new = straight([0.0, 0.1, 0.15, 1.0])
        result = concat(None, new, max_size=100, min_size=1, max_separation=1.5, min_separation=0.2)
        assert [p.x for p in result] == [0.0, 1.0]

    def test_interpolation_splits_gap_evenly(self):
        new = straight([0.0, 3.0])
        result = concat(None, new, max_size=100, min_size=1, max_separation=1.5, min_separation=0.2)
        assert [p.x for p in result] == pytest.approx([0.0, 1.5, 3.0])
        assert result[1].velocity == pytest.approx(10.0)

    def test_interpolated_heading_wraps(self):
        a = TrajectoryPoint(x=0.0, y=0.0, heading=math.pi - 0.1, velocity=1.0, curvature=0.0)
        b = TrajectoryPoint(x=-2.0, y=0.0, heading=-math.pi + 0.1, velocity=1.0, curvature=0.0)
        result = concat(None, Path([a, b]), max_size=10, min_size=1,
                        max_separation=1.5, min_separation=0.2)
        assert abs(abs(result[1].heading) - math.pi) < 1e-6

    def test_appends_only_points_ahead(self):
        existing = straight(np.arange(0.0, 11.0, 1.0))
        new = straight(np.arange(5.0, 20.0, 1.0))
        result = concat(existing, new, max_size=100, min_size=1, max_separation=1.5, min_separation=0.2)
        xs = [p.x for p in result]
        assert xs == sorted(xs)
        assert xs[:11] == list(np.arange(0.0, 11.0, 1.0))
        assert xs[11] == 11.0
        assert len(result) == 20

    def test_gap_to_existing_path_is_bounded(self):
        existing = straight([0.0, 1.0, 2.0])
        new = straight([6.0, 7.0])
        result = concat(existing, new, max_size=100, min_size=1, max_separation=1.5, min_separation=0.2)
        assert np.all(spacing(result) <= 1.5 + 1e-9)
        assert result[3].x == pytest.approx(2.0 + 4.0 / 3.0)

    def test_existing_points_are_kept(self):
        existing = straight([0.0, 1.0, 2.0], y=0.3)
        new = straight([2.0, 3.0, 4.0])
        result = concat(existing, new, max_size=100, min_size=1, max_separation=1.5, min_separation=0.2)
        assert result.points[:3] == existing.points

    def test_max_size_drops_oldest(self):
        new = straight(np.arange(0.0, 50.0, 1.0))
        result = concat(None, new, max_size=20, min_size=5, max_separation=1.5, min_separation=0.2)
        assert len(result) == 20
        assert result[-1].x == 49.0
        assert result[0].x == 30.0

    def test_needs_extension(self):
        new = straight(np.arange(0.0, 10.0, 1.0))
        short = concat(None, new, max_size=100, min_size=20, max_separation=1.5, min_separation=0.2)
        assert short.needs_extension
        long = concat(None, new, max_size=100, min_size=5, max_separation=1.5, min_separation=0.2)
        assert not long.needs_extension

    def test_invalid_separation(self):
        with pytest.raises(ValueError):
            concat(None, straight([0.0, 1.0]), max_size=10, min_size=1,
                   max_separation=0.2, min_separation=0.2)

    def test_accepts_frenet_path(self):
        t = np.linspace(0.0, 1.0, 6)
        zeros = np.zeros_like(t)
        frenet = FrenetPath(
            t=t, s=10.0 * t, s_d=np.full_like(t, 10.0), s_dd=zeros, s_ddd=zeros,
            d=zeros, d_d=zeros, d_dd=zeros, d_ddd=zeros,
            x=10.0 * t, y=zeros, heading=zeros, curvature=zeros,
            speed=np.full_like(t, 10.0), acceleration=zeros,
        )
        result = concat(None, frenet, max_size=100, min_size=1, max_separation=1.5,
                        min_separation=0.2, start_time=2.0)
        assert result[-1].x == pytest.approx(10.0)
        assert np.all(spacing(result) <= 1.5 + 1e-9)
        # Points are timed from the start time, interpolated ones included
        assert result[0].time == pytest.approx(2.0)
        assert result[-1].time == pytest.approx(3.0)
        assert [p.time for p in result] == pytest.approx([2.0 + 0.1 * p.x for p in result])


class TestTrim:

    def test_trim_passed(self):
        path = straight(np.arange(0.0, 20.0, 1.0))
        trimmed = trim_passed(path, 5.2, 0.3)
        assert trimmed[0].x == 5.0
        assert len(trimmed) == 15

    def test_trim_sets_extension_flag(self):
        path = straight(np.arange(0.0, 20.0, 1.0))
        assert trim_passed(path, 15.0, 0.0, min_size=10).needs_extension
        assert not trim_passed(path, 2.0, 0.0, min_size=10).needs_extension

    def test_trim_empty(self):
        trimmed = trim_passed(Path(), 0.0, 0.0)
        assert trimmed.empty
        assert trimmed.needs_extension


class TestDeviation:

    def test_distance_to_polyline(self):
        path = straight(np.arange(0.0, 10.0, 2.0))
        assert max_deviation(path, 3.0, 1.2) == pytest.approx(1.2)
        assert max_deviation(path, -3.0, 4.0) == pytest.approx(5.0)

    def test_empty_path(self):
        assert max_deviation(Path(), 0.0, 0.0) == float("inf")

    def test_single_point(self):
        assert max_deviation(straight([1.0]), 4.0, 4.0) == pytest.approx(5.0)
