"""
Path tracking controller.

Steering follows the Stanley law at the front axle; acceleration comes from a
PID loop on the speed of the next waypoint. stop_command() is the fail-safe
output used whenever planning fails.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from data.formats.data_format import ControlCommand, VehicleState
from trajectory.errors import ControllerTargetUnavailable
from trajectory.models.trajectory import Path
from trajectory.utils import normalize_angle
from .pid_controller import LongitudinalController

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """Tracking controller parameters."""
    stanley_gain: float = 1.0  # cross-track gain k
    speed_floor: float = 1.0  # m/s, avoids the cross-track singularity at standstill
    max_steering_angle: float = 0.6  # rad
    max_lookahead_distance: float = 5.0  # m, nearest waypoint must lie within this
    speed_kp: float = 1.0
    speed_ki: float = 0.1
    speed_kd: float = 0.05
    speed_integral_limit: float = 5.0
    max_accel: float = 3.0  # m/s^2
    max_decel: float = 5.0  # m/s^2
    stop_deceleration: float = 3.0  # m/s^2, fail-safe braking
    stopped_speed: float = 0.05  # m/s, below this the vehicle counts as stopped
    control_dt: float = 0.1  # s, used when no previous timestamp is known


@dataclass
class TrackingResult:
    """Controller output with its error breakdown."""
    acceleration: float
    steering_angle: float
    target_speed: float
    target_index: int
    heading_error: float
    cross_track_error: float
    speed_error: float


class TrackingController:
    """
    Stanley lateral control plus PID longitudinal control.
    The state passed in must be the front axle state.
    """

    def __init__(self, config: Optional[ControllerConfig] = None):
        self.config = config or ControllerConfig()
        self.longitudinal = LongitudinalController(
            kp=self.config.speed_kp,
            ki=self.config.speed_ki,
            kd=self.config.speed_kd,
            max_accel=self.config.max_accel,
            max_decel=self.config.max_decel,
            integral_limit=self.config.speed_integral_limit,
        )
        self._last_timestamp: Optional[float] = None

    def nearest_index(self, path: Path, state: VehicleState) -> int:
        """
        Index of the waypoint nearest the front axle.

        Raises:
            ControllerTargetUnavailable: empty path, or the nearest waypoint is
                beyond max_lookahead_distance
        """
        if path is None or path.empty:
            raise ControllerTargetUnavailable("Path is empty")
        xy = path.xy()
        distances = np.hypot(xy[:, 0] - state.x, xy[:, 1] - state.y)
        index = int(np.argmin(distances))
        if distances[index] > self.config.max_lookahead_distance:
            raise ControllerTargetUnavailable(
                f"Nearest waypoint is {distances[index]:.2f}m away "
                f"(limit {self.config.max_lookahead_distance:.2f}m)"
            )
        return index

    def track(self, path: Path, state: VehicleState) -> TrackingResult:
        cfg = self.config
        index = self.nearest_index(path, state)
        target = path[index]

        heading_error = normalize_angle(target.heading - state.heading)
        # Positive when the path lies to the left of the front axle
        dx, dy = state.x - target.x, state.y - target.y
        cross_track_error = -(-dx * math.sin(target.heading) + dy * math.cos(target.heading))

        steering = heading_error + math.atan2(cfg.stanley_gain * cross_track_error,
                                              max(state.speed, cfg.speed_floor))
        steering = float(np.clip(steering, -cfg.max_steering_angle, cfg.max_steering_angle))

        next_point = path[min(index + 1, len(path) - 1)]
        dt = cfg.control_dt
        if self._last_timestamp is not None and state.timestamp > self._last_timestamp:
            dt = state.timestamp - self._last_timestamp
        self._last_timestamp = state.timestamp
        acceleration, speed_error = self.longitudinal.compute_acceleration(
            state.speed, next_point.velocity, dt)

        return TrackingResult(
            acceleration=acceleration,
            steering_angle=steering,
            target_speed=next_point.velocity,
            target_index=index,
            heading_error=heading_error,
            cross_track_error=cross_track_error,
            speed_error=speed_error,
        )

    def compute_command(self, path: Path, state: VehicleState) -> Tuple[float, float]:
        """
        Compute (acceleration, steering_angle) to follow the path.

        Raises:
            ControllerTargetUnavailable: no valid target waypoint
        """
        result = self.track(path, state)
        return result.acceleration, result.steering_angle

    def command(self, path: Path, state: VehicleState) -> ControlCommand:
        """Tracking command with its error breakdown."""
        result = self.track(path, state)
        logger.debug(f"[CONTROLLER] idx={result.target_index} "
                     f"heading_err={result.heading_error:.3f} cte={result.cross_track_error:.3f} "
                     f"speed_err={result.speed_error:.2f} -> steer={result.steering_angle:.3f} "
                     f"accel={result.acceleration:.2f}")
        return ControlCommand(
            timestamp=state.timestamp,
            acceleration=result.acceleration,
            steering_angle=result.steering_angle,
            target_speed=result.target_speed,
            heading_error=result.heading_error,
            cross_track_error=result.cross_track_error,
            speed_error=result.speed_error,
            target_index=result.target_index,
        )

    def stop_command(self, state: Optional[VehicleState], timestamp: Optional[float] = None) -> ControlCommand:
        """
        Fail-safe stop: zero target speed, neutral steering, braking while moving.
        """
        self.reset()
        moving = state is not None and abs(state.speed) > self.config.stopped_speed
        if timestamp is None:
            timestamp = state.timestamp if state is not None else 0.0
        return ControlCommand(
            timestamp=timestamp,
            acceleration=-self.config.stop_deceleration if moving else 0.0,
            steering_angle=0.0,
            target_speed=0.0,
            is_stop=True,
        )

    def reset(self):
        self.longitudinal.reset()
        self._last_timestamp = None
