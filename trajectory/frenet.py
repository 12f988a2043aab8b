"""
Cartesian <-> Frenet frame conversion.

d is positive to the left of the reference path. FrenetState derivatives are
time derivatives; the conversions go through the arc-length derivatives
d' = dd/ds and d'' = d^2d/ds^2 internally.
"""

import math
from typing import Optional, Tuple

import numpy as np

from data.formats.data_format import VehicleState
from .errors import InputInvalid
from .models.trajectory import FrenetPath, FrenetState, Path, TrajectoryPoint
from .reference_path import ReferencePath, ReferencePathConfig
from .utils import normalize_angle

# Below this longitudinal speed, lateral motion is treated as stationary
_MIN_S_DOT = 1e-3


def project(x: float, y: float, reference_path: ReferencePath,
            config: Optional[ReferencePathConfig] = None) -> Tuple[float, float]:
    """Closest-point (s, d) of a position on the reference path."""
    config = config or ReferencePathConfig()
    return reference_path.project(
        x, y,
        max_lateral_distance=config.max_lateral_search_distance,
        max_iterations=config.max_projection_iterations,
        tolerance=config.projection_tolerance,
    )


def cartesian_to_frenet(x: float, y: float, heading: float, speed: float,
                        acceleration: float, curvature: float,
                        reference_path: ReferencePath,
                        config: Optional[ReferencePathConfig] = None) -> FrenetState:
    """
    Convert a Cartesian kinematic state to a FrenetState.

    Raises:
        InputInvalid: the position cannot be projected, lies past the centre
            of curvature of the path, or the heading is perpendicular to it.
    """
    s, d = project(x, y, reference_path, config)
    _, _, r_theta, r_kappa, r_dkappa = (float(v[0]) for v in reference_path.evaluate(s))

    one_minus_kappa_d = 1.0 - r_kappa * d
    if one_minus_kappa_d <= 1e-6:
        raise InputInvalid(
            f"Position ({x:.2f}, {y:.2f}) lies beyond the reference path's centre of curvature"
        )
    delta_theta = normalize_angle(heading - r_theta)
    cos_dt = math.cos(delta_theta)
    if abs(cos_dt) < 1e-3:
        raise InputInvalid("Heading is perpendicular to the reference path")
    tan_dt = math.tan(delta_theta)

    d_prime = one_minus_kappa_d * tan_dt
    kappa_r_d_prime = r_dkappa * d + r_kappa * d_prime
    d_pprime = (-kappa_r_d_prime * tan_dt
                + one_minus_kappa_d / (cos_dt * cos_dt)
                * (curvature * one_minus_kappa_d / cos_dt - r_kappa))

    s_d = speed * cos_dt / one_minus_kappa_d
    delta_theta_prime = one_minus_kappa_d / cos_dt * curvature - r_kappa
    s_dd = (acceleration * cos_dt
            - s_d * s_d * (d_prime * delta_theta_prime - kappa_r_d_prime)) / one_minus_kappa_d

    return FrenetState(
        s=s,
        s_d=s_d,
        s_dd=s_dd,
        d=d,
        d_d=d_prime * s_d,
        d_dd=d_pprime * s_d * s_d + d_prime * s_dd,
    )


def to_frenet(state: VehicleState, reference_path: ReferencePath,
              config: Optional[ReferencePathConfig] = None) -> FrenetState:
    """FrenetState of the vehicle. Vehicle curvature is yaw rate / speed."""
    curvature = state.yaw_rate / state.speed if abs(state.speed) > 0.1 else 0.0
    return cartesian_to_frenet(state.x, state.y, state.heading, state.speed,
                               state.acceleration, curvature, reference_path, config)


def point_to_frenet(point: TrajectoryPoint, reference_path: ReferencePath,
                    config: Optional[ReferencePathConfig] = None) -> FrenetState:
    """FrenetState of a committed path point (used to extend the path from its tail)."""
    return cartesian_to_frenet(point.x, point.y, point.heading, point.velocity,
                               point.acceleration, point.curvature, reference_path, config)


def frenet_to_cartesian_arrays(path: FrenetPath, reference_path: ReferencePath) -> FrenetPath:
    """
    Fill the Cartesian arrays (x, y, heading, curvature, speed, acceleration)
    of a candidate from its Frenet samples. Vectorized over time.

    Samples that fall past the reference path's centre of curvature get an
    infinite curvature so the evaluator rejects them.
    """
    s, s_d, s_dd = path.s, path.s_d, path.s_dd
    d, d_d, d_dd = path.d, path.d_d, path.d_dd
    rx, ry, r_theta, r_kappa, r_dkappa = reference_path.evaluate(s)

    moving = np.abs(s_d) > _MIN_S_DOT
    safe_s_d = np.where(moving, s_d, 1.0)
    d_prime = np.where(moving, d_d / safe_s_d, 0.0)
    d_pprime = np.where(moving, (d_dd - d_prime * s_dd) / (safe_s_d * safe_s_d), 0.0)

    one_minus_kappa_d = 1.0 - r_kappa * d
    valid = one_minus_kappa_d > 1e-6
    safe_omkd = np.where(valid, one_minus_kappa_d, 1.0)

    delta_theta = np.arctan2(d_prime, safe_omkd)
    cos_dt = np.cos(delta_theta)
    tan_dt = np.tan(delta_theta)
    kappa_r_d_prime = r_dkappa * d + r_kappa * d_prime

    path.x = rx - np.sin(r_theta) * d
    path.y = ry + np.cos(r_theta) * d
    path.heading = normalize_angle(delta_theta + r_theta)

    curvature = ((d_pprime + kappa_r_d_prime * tan_dt) * cos_dt * cos_dt / safe_omkd
                 + r_kappa) * cos_dt / safe_omkd
    path.curvature = np.where(valid, curvature, np.inf)

    path.speed = np.hypot(safe_omkd * s_d, d_d)
    delta_theta_prime = safe_omkd / cos_dt * curvature - r_kappa
    path.acceleration = (s_dd * safe_omkd / cos_dt
                         + s_d * s_d / cos_dt * (d_prime * delta_theta_prime - kappa_r_d_prime))
    return path


def to_cartesian(path: FrenetPath, reference_path: ReferencePath) -> Path:
    """Cartesian output Path of a candidate."""
    if len(path.x) != len(path.t):
        frenet_to_cartesian_arrays(path, reference_path)
    return Path(path.to_points())


def frenet_state_to_point(state: FrenetState, reference_path: ReferencePath) -> TrajectoryPoint:
    """Cartesian point of a single FrenetState."""
    single = FrenetPath(
        t=np.zeros(1),
        s=np.array([state.s]), s_d=np.array([state.s_d]),
        s_dd=np.array([state.s_dd]), s_ddd=np.zeros(1),
        d=np.array([state.d]), d_d=np.array([state.d_d]),
        d_dd=np.array([state.d_dd]), d_ddd=np.zeros(1),
    )
    return to_cartesian(single, reference_path)[0]
