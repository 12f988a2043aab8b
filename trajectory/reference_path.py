"""
Reference path construction.

Fits a smooth, arc-length parameterized curve through raw lane waypoints,
resamples it at a fixed spacing and provides the closest-point projection used
by the Frenet frame converter. LocalLaneWindow caches the reference path built
from the part of the lane around the vehicle.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.interpolate import CubicSpline
from scipy.spatial import cKDTree

from data.formats.data_format import Lane
from .errors import InputInvalid

logger = logging.getLogger(__name__)


@dataclass
class ReferencePathConfig:
    """Reference path and local window parameters."""
    resample_step: float = 0.5  # m
    min_waypoints: int = 3
    max_lateral_search_distance: float = 10.0  # m
    max_projection_iterations: int = 10
    projection_tolerance: float = 1e-6  # m
    window_back_distance: float = 10.0  # m kept behind the vehicle
    window_ahead_distance: float = 200.0  # m kept ahead of the vehicle
    window_rebuild_ahead: float = 120.0  # rebuild once less than this remains ahead
    rebuild_margin: float = 0.0  # rebuild once the vehicle is less than this from the window start
    default_lane_width: float = 3.5
    default_left_lane_width: float = 0.0
    default_right_lane_width: float = 0.0


class ReferencePath:
    """
    Smooth reference curve with arc-length parameterization.

    Sample arrays (``s``, ``x``, ``y``, ``heading``, ``curvature``,
    ``dcurvature``) are spaced ``resample_step`` apart; queries at arbitrary s
    go through the fitted splines. Beyond either end, positions are
    extrapolated along the end tangent with zero curvature.
    """

    def __init__(self, x, y, resample_step: float = 0.5, min_waypoints: int = 3):
        x = np.asarray(x, dtype=float).ravel()
        y = np.asarray(y, dtype=float).ravel()
        if len(x) != len(y):
            raise InputInvalid("Waypoint x/y length mismatch")

        # Drop repeated points (spline fit would divide by zero)
        if len(x) > 1:
            keep = np.concatenate(([True], np.hypot(np.diff(x), np.diff(y)) > 1e-3))
            x, y = x[keep], y[keep]
        if len(x) < max(2, min_waypoints):
            raise InputInvalid(
                f"Need at least {max(2, min_waypoints)} distinct waypoints, got {len(x)}"
            )
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
            raise InputInvalid("Waypoints contain non-finite values")

        # First pass on chord length, then re-fit on the arc length of the resampled curve
        chord = np.concatenate(([0.0], np.cumsum(np.hypot(np.diff(x), np.diff(y)))))
        chord_sx = CubicSpline(chord, x, bc_type="natural")
        chord_sy = CubicSpline(chord, y, bc_type="natural")

        self.resample_step = float(resample_step)
        count = max(2, int(math.ceil(chord[-1] / self.resample_step)) + 1)
        u = np.linspace(0.0, chord[-1], count)
        rx = chord_sx(u)
        ry = chord_sy(u)
        ds = np.hypot(np.diff(rx), np.diff(ry))
        if np.any(ds <= 1e-9):
            raise InputInvalid("Resampled reference path is not strictly monotonic in arc length")

        self.s = np.concatenate(([0.0], np.cumsum(ds)))
        self.x = rx
        self.y = ry
        self.length = float(self.s[-1])
        self._sx = CubicSpline(self.s, rx, bc_type="natural")
        self._sy = CubicSpline(self.s, ry, bc_type="natural")

        self.heading = self._heading(self.s)
        self.curvature = self._curvature(self.s)
        self.dcurvature = np.gradient(self.curvature, self.s)
        self._kd_tree = cKDTree(np.column_stack((self.x, self.y)))

    def __len__(self) -> int:
        return len(self.s)

    def _heading(self, s):
        return np.arctan2(self._sy(s, 1), self._sx(s, 1))

    def _curvature(self, s):
        dx, dy = self._sx(s, 1), self._sy(s, 1)
        ddx, ddy = self._sx(s, 2), self._sy(s, 2)
        den = np.power(dx ** 2 + dy ** 2, 1.5)
        return np.where(den > 1e-9, (dx * ddy - dy * ddx) / np.maximum(den, 1e-9), 0.0)

    def evaluate(self, s) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Reference (x, y, heading, curvature, dcurvature) at arc length(s) s."""
        s = np.atleast_1d(np.asarray(s, dtype=float))
        clamped = np.clip(s, 0.0, self.length)
        x = self._sx(clamped)
        y = self._sy(clamped)
        heading = self._heading(clamped)
        curvature = self._curvature(clamped)
        dcurvature = np.interp(clamped, self.s, self.dcurvature)

        outside = s != clamped
        if np.any(outside):
            overshoot = s - clamped
            x = np.where(outside, x + overshoot * np.cos(heading), x)
            y = np.where(outside, y + overshoot * np.sin(heading), y)
            curvature = np.where(outside, 0.0, curvature)
            dcurvature = np.where(outside, 0.0, dcurvature)
        return x, y, heading, curvature, dcurvature

    def nearest_index(self, x: float, y: float) -> int:
        _, idx = self._kd_tree.query([x, y])
        return int(idx)

    def project(self, x: float, y: float, max_lateral_distance: float = 10.0,
                max_iterations: int = 10, tolerance: float = 1e-6) -> Tuple[float, float]:
        """
        Closest-point projection of (x, y) onto the curve.

        Returns:
            (s, d) with d positive to the left of the path.

        Raises:
            InputInvalid: point too far from the path, off either end, or the
                refinement did not converge within max_iterations.
        """
        p = np.array([x, y], dtype=float)
        idx = self.nearest_index(x, y)

        # Exact projection on the adjacent resampled segments
        best_s, best_dist = float(self.s[idx]), float("inf")
        for i in (idx - 1, idx):
            if i < 0 or i + 1 >= len(self.s):
                continue
            a = np.array([self.x[i], self.y[i]])
            seg = np.array([self.x[i + 1], self.y[i + 1]]) - a
            u = float(np.clip(np.dot(p - a, seg) / np.dot(seg, seg), 0.0, 1.0))
            dist = float(np.linalg.norm(p - (a + u * seg)))
            if dist < best_dist:
                best_dist = dist
                best_s = float(self.s[i] + u * (self.s[i + 1] - self.s[i]))

        # Newton refinement of (p - r(s)) . r'(s) = 0 on the spline
        s = best_s
        converged = False
        for _ in range(max(1, int(max_iterations))):
            r = np.array([self._sx(s), self._sy(s)])
            r1 = np.array([self._sx(s, 1), self._sy(s, 1)])
            r2 = np.array([self._sx(s, 2), self._sy(s, 2)])
            f = float(np.dot(p - r, r1))
            fp = float(-np.dot(r1, r1) + np.dot(p - r, r2))
            if abs(fp) < 1e-12:
                break
            s_new = float(np.clip(s - f / fp, 0.0, self.length))
            if abs(s_new - s) < tolerance:
                s = s_new
                converged = True
                break
            s = s_new
        if not converged:
            raise InputInvalid(
                f"Projection of ({x:.2f}, {y:.2f}) did not converge in {max_iterations} iterations"
            )

        rx, ry, heading, _, _ = self.evaluate(s)
        dx, dy = x - float(rx[0]), y - float(ry[0])
        h = float(heading[0])
        along = dx * math.cos(h) + dy * math.sin(h)
        d = -dx * math.sin(h) + dy * math.cos(h)

        end_tolerance = max(self.resample_step, 1e-3)
        if (s <= 0.0 and along < -end_tolerance) or (s >= self.length and along > end_tolerance):
            raise InputInvalid(
                f"Position ({x:.2f}, {y:.2f}) lies off the end of the reference path"
            )
        if abs(d) > max_lateral_distance:
            raise InputInvalid(
                f"Position ({x:.2f}, {y:.2f}) is {abs(d):.2f}m from the reference path "
                f"(limit {max_lateral_distance:.2f}m)"
            )
        return s, d


def build_reference_path(waypoints, config: Optional[ReferencePathConfig] = None) -> ReferencePath:
    """
    Build a reference path from raw waypoints.

    Args:
        waypoints: Lane, or (N, 2) array-like of x/y positions
        config: Reference path parameters

    Raises:
        InputInvalid: fewer than ``min_waypoints`` usable waypoints
    """
    config = config or ReferencePathConfig()
    xy = waypoints.xy() if isinstance(waypoints, Lane) else np.asarray(waypoints, dtype=float)
    if xy.ndim != 2 or xy.shape[0] == 0 or xy.shape[1] < 2:
        raise InputInvalid(f"Expected (N, 2) waypoints, got shape {xy.shape}")
    return ReferencePath(xy[:, 0], xy[:, 1], config.resample_step, config.min_waypoints)


class LocalLaneWindow:
    """
    Cached reference path over the part of the lane around the vehicle.

    The window is rebuilt only when a new lane arrives or the vehicle has
    moved beyond the span the cached window covers.
    """

    def __init__(self, config: Optional[ReferencePathConfig] = None):
        self.config = config or ReferencePathConfig()
        self.reference_path: Optional[ReferencePath] = None
        self.rebuild_count = 0
        self._lane: Optional[Lane] = None
        self._lane_xy: Optional[np.ndarray] = None
        self._lane_tree: Optional[cKDTree] = None

    def set_lane(self, lane: Lane):
        """Replace the full lane; the cached window is dropped."""
        self._lane = lane
        self._lane_xy = lane.xy()
        self._lane_tree = cKDTree(self._lane_xy) if len(self._lane_xy) else None
        self.reference_path = None

    def invalidate(self):
        self.reference_path = None

    @property
    def has_lane(self) -> bool:
        return self._lane is not None and len(self._lane) > 0

    def lane_widths(self, x: float, y: float) -> Tuple[float, float, float]:
        """(lane, left, right) widths at the lane waypoint nearest (x, y)."""
        cfg = self.config
        if self._lane_tree is None:
            return cfg.default_lane_width, cfg.default_left_lane_width, cfg.default_right_lane_width
        _, idx = self._lane_tree.query([x, y])
        wp = self._lane.waypoints[int(idx)]
        return (
            wp.lane_width if wp.lane_width > 0.0 else cfg.default_lane_width,
            wp.left_lane_width if wp.left_lane_width > 0.0 else cfg.default_left_lane_width,
            wp.right_lane_width if wp.right_lane_width > 0.0 else cfg.default_right_lane_width,
        )

    def update(self, x: float, y: float) -> Tuple[ReferencePath, bool]:
        """
        Return the reference path for a vehicle at (x, y).

        Returns:
            (reference_path, rebuilt)

        Raises:
            InputInvalid: no lane, or the window cannot be built
        """
        if not self.has_lane:
            raise InputInvalid("No lane waypoints received")

        if self.reference_path is not None and not self._needs_rebuild(x, y):
            return self.reference_path, False

        self.reference_path = self._build_window(x, y)
        self.rebuild_count += 1
        logger.debug(f"[REFERENCE] Rebuilt local window ({self.reference_path.length:.1f}m)")
        return self.reference_path, True

    def _needs_rebuild(self, x: float, y: float) -> bool:
        cfg = self.config
        ref = self.reference_path
        try:
            s, _ = ref.project(x, y, cfg.max_lateral_search_distance,
                               cfg.max_projection_iterations, cfg.projection_tolerance)
        except InputInvalid:
            return True
        return s < cfg.rebuild_margin or s > ref.length - cfg.window_rebuild_ahead

    def _build_window(self, x: float, y: float) -> ReferencePath:
        cfg = self.config
        _, nearest = self._lane_tree.query([x, y])
        nearest = int(nearest)
        seg = np.hypot(np.diff(self._lane_xy[:, 0]), np.diff(self._lane_xy[:, 1]))

        start = nearest
        travelled = 0.0
        while start > 0 and travelled < cfg.window_back_distance:
            travelled += seg[start - 1]
            start -= 1

        end = nearest
        travelled = 0.0
        while end < len(self._lane_xy) - 1 and travelled < cfg.window_ahead_distance:
            travelled += seg[end]
            end += 1

        window = self._lane_xy[start:end + 1]
        return build_reference_path(window, cfg)
