"""
Data format definitions for planner inputs, outputs and recordings.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class VehicleState:
    """Vehicle baselink state from localization."""
    timestamp: float
    x: float
    y: float
    heading: float  # radians
    speed: float  # m/s
    acceleration: float = 0.0  # m/s^2
    yaw_rate: float = 0.0  # rad/s


@dataclass(frozen=True)
class FrameTransform:
    """2D rigid transform of a sensor frame expressed in the planning frame."""
    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return self.x + c * x - s * y, self.y + s * x + c * y

    def rotate(self, vx: float, vy: float) -> Tuple[float, float]:
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return c * vx - s * vy, s * vx + c * vy


@dataclass(frozen=True)
class Obstacle:
    """Perceived obstacle.

    The footprint is either a polygon given in the obstacle's own frame
    (vertices relative to x, y and rotated by yaw) or a circle of ``radius``.
    """
    x: float
    y: float
    yaw: float = 0.0
    footprint: Optional[Tuple[Tuple[float, float], ...]] = None
    radius: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    obstacle_id: int = -1

    def world_footprint(self) -> Optional[np.ndarray]:
        """Polygon vertices in the obstacle's parent frame, or None for circles."""
        if not self.footprint:
            return None
        local = np.asarray(self.footprint, dtype=float)
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        rot = np.array([[c, -s], [s, c]])
        return local @ rot.T + np.array([self.x, self.y])

    def transformed(self, transform: FrameTransform) -> "Obstacle":
        """Express this obstacle in the frame ``transform`` maps into."""
        x, y = transform.apply(self.x, self.y)
        vx, vy = transform.rotate(self.vx, self.vy)
        return Obstacle(
            x=x,
            y=y,
            yaw=self.yaw + transform.yaw,
            footprint=self.footprint,
            radius=self.radius,
            vx=vx,
            vy=vy,
            obstacle_id=self.obstacle_id,
        )


@dataclass(frozen=True)
class LaneWaypoint:
    """Raw lane waypoint. Widths of 0 mean "unknown" (config default used)."""
    x: float
    y: float
    lane_width: float = 0.0
    left_lane_width: float = 0.0  # width of the neighbouring lane on the left
    right_lane_width: float = 0.0  # width of the neighbouring lane on the right


@dataclass
class Lane:
    """Ordered lane waypoints, replaced wholesale on every lane message."""
    waypoints: List[LaneWaypoint] = field(default_factory=list)

    @classmethod
    def from_xy(cls, points: Sequence[Sequence[float]], lane_width: float = 0.0,
                left_lane_width: float = 0.0, right_lane_width: float = 0.0) -> "Lane":
        return cls([
            LaneWaypoint(float(p[0]), float(p[1]), lane_width, left_lane_width, right_lane_width)
            for p in points
        ])

    def __len__(self) -> int:
        return len(self.waypoints)

    def xy(self) -> np.ndarray:
        if not self.waypoints:
            return np.zeros((0, 2))
        return np.array([[wp.x, wp.y] for wp in self.waypoints], dtype=float)


@dataclass
class ControlCommand:
    """Control command sent to the vehicle."""
    timestamp: float
    acceleration: float  # m/s^2
    steering_angle: float  # radians, positive = left
    target_speed: float  # m/s
    is_stop: bool = False
    # Tracking breakdown (None for stop commands)
    heading_error: Optional[float] = None
    cross_track_error: Optional[float] = None
    speed_error: Optional[float] = None
    target_index: Optional[int] = None


@dataclass
class CycleInputs:
    """Inputs of one planning cycle."""
    vehicle_state: Optional[VehicleState]
    lane: Optional[Lane] = None
    obstacles: Optional[List[Obstacle]] = None
    obstacle_transform: Optional[FrameTransform] = None


@dataclass
class CycleOutput:
    """Everything one planning cycle publishes."""
    timestamp: float
    command: ControlCommand
    path: Any = None  # trajectory.models.trajectory.Path
    candidates: List[Any] = field(default_factory=list)  # FrenetPath list
    selected: Any = None  # FrenetPath
    reference_path: Any = None  # ReferencePath
    sampling_width: Optional[Tuple[float, float]] = None  # (left, right) metres
    current_lane_id: int = 0
    target_lane_id: int = 0
    replanned: bool = False
    regenerate: bool = False
    failure_reason: Optional[str] = None
    cycle_time: float = 0.0
    diagnostics: Dict[str, float] = field(default_factory=dict)  # candidate generation stats

    @property
    def ok(self) -> bool:
        return self.failure_reason is None


@dataclass
class RecordingFrame:
    """Complete recording frame for one cycle."""
    timestamp: float
    frame_id: int
    vehicle_state: Optional[VehicleState] = None
    control_command: Optional[ControlCommand] = None
    cycle_output: Optional[CycleOutput] = None
