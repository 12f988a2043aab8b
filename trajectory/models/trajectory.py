"""
Trajectory types shared by the planning components.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

import numpy as np


@dataclass
class FrenetState:
    """Road-relative state. All derivatives are time derivatives."""
    s: float = 0.0
    s_d: float = 0.0
    s_dd: float = 0.0
    d: float = 0.0
    d_d: float = 0.0
    d_dd: float = 0.0


@dataclass
class TrajectoryPoint:
    """Single point in trajectory."""
    x: float
    y: float
    heading: float  # radians
    velocity: float  # m/s
    curvature: float  # 1/m
    acceleration: float = 0.0  # m/s^2
    s: float = 0.0  # arc length on the reference path
    d: float = 0.0  # lateral offset from the reference path
    time: float = 0.0  # s, cycle clock time the vehicle is expected here


class Path:
    """Committed output trajectory (ordered Cartesian waypoints)."""

    def __init__(self, points: Optional[List[TrajectoryPoint]] = None,
                 needs_extension: bool = False):
        self.points: List[TrajectoryPoint] = list(points) if points else []
        self.needs_extension = needs_extension

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[TrajectoryPoint]:
        return iter(self.points)

    def __getitem__(self, index):
        return self.points[index]

    @property
    def empty(self) -> bool:
        return not self.points

    def xy(self) -> np.ndarray:
        if not self.points:
            return np.zeros((0, 2))
        return np.array([[p.x, p.y] for p in self.points], dtype=float)

    @property
    def length(self) -> float:
        xy = self.xy()
        if len(xy) < 2:
            return 0.0
        return float(np.sum(np.hypot(np.diff(xy[:, 0]), np.diff(xy[:, 1]))))

    def copy(self) -> "Path":
        return Path(list(self.points), self.needs_extension)


@dataclass
class FrenetPath:
    """One sampled candidate trajectory."""
    t: np.ndarray
    s: np.ndarray
    s_d: np.ndarray
    s_dd: np.ndarray
    s_ddd: np.ndarray
    d: np.ndarray
    d_d: np.ndarray
    d_dd: np.ndarray
    d_ddd: np.ndarray
    lateral_poly: object = None  # QuinticPolynomial
    longitudinal_poly: object = None  # QuarticPolynomial
    target_d: float = 0.0
    target_speed: float = 0.0
    horizon: float = 0.0
    index: int = 0  # generation order within its cycle
    lane_id: int = 0
    # Cartesian states, filled by frenet.frenet_to_cartesian_arrays
    x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    heading: np.ndarray = field(default_factory=lambda: np.zeros(0))
    curvature: np.ndarray = field(default_factory=lambda: np.zeros(0))
    speed: np.ndarray = field(default_factory=lambda: np.zeros(0))
    acceleration: np.ndarray = field(default_factory=lambda: np.zeros(0))
    # Evaluation results
    feasible: bool = False
    infeasible_reason: Optional[str] = None
    cost: float = float("inf")
    cost_terms: Dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.t)

    @property
    def end_d(self) -> float:
        return float(self.d[-1])

    @property
    def end_speed(self) -> float:
        return float(self.s_d[-1])

    def to_points(self, start_time: float = 0.0) -> List[TrajectoryPoint]:
        """Cartesian points, timed from ``start_time`` (clock time of t = 0)."""
        return [
            TrajectoryPoint(
                x=float(self.x[i]),
                y=float(self.y[i]),
                heading=float(self.heading[i]),
                velocity=float(self.speed[i]),
                curvature=float(self.curvature[i]),
                acceleration=float(self.acceleration[i]),
                s=float(self.s[i]),
                d=float(self.d[i]),
                time=start_time + float(self.t[i]),
            )
            for i in range(len(self.x))
        ]
