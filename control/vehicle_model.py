"""
Vehicle geometry and kinematics (bicycle model).
Used by the tracking controller (front axle reference) and the closed-loop
simulation.
"""

import math
from dataclasses import replace
from typing import Tuple

import numpy as np

from data.formats.data_format import VehicleState


def front_axle_state(state: VehicleState, wheelbase: float) -> VehicleState:
    """
    Vehicle state moved from the baselink (rear axle) to the front axle.

    Args:
        state: Baselink state
        wheelbase: Distance between front and rear axles (meters)

    Returns:
        State at the front axle; heading, speed and rates unchanged
    """
    return replace(
        state,
        x=state.x + wheelbase * math.cos(state.heading),
        y=state.y + wheelbase * math.sin(state.heading),
    )


class BicycleModel:
    """
    Kinematic bicycle model referenced to the rear axle.
    Simplified 2D model assuming no roll, pitch or tyre slip.
    """

    def __init__(self, wheelbase: float = 2.7, max_steering_angle: float = 0.6,
                 max_speed: float = 40.0):
        """
        Initialize bicycle model.

        Args:
            wheelbase: Distance between front and rear axles (meters)
            max_steering_angle: Maximum steering angle (radians)
            max_speed: Speed saturation (m/s)
        """
        self.wheelbase = wheelbase
        self.max_steering_angle = max_steering_angle
        self.max_speed = max_speed

    def update(self, x: float, y: float, heading: float, velocity: float,
               steering_angle: float, dt: float) -> Tuple[float, float, float]:
        """
        Advance the pose at constant velocity and steering.

        Returns:
            New (x, y, heading)
        """
        steering_angle = float(np.clip(steering_angle, -self.max_steering_angle, self.max_steering_angle))
        yaw_rate = velocity * self.compute_curvature(steering_angle)

        new_x = x + velocity * math.cos(heading) * dt
        new_y = y + velocity * math.sin(heading) * dt
        new_heading = math.atan2(math.sin(heading + yaw_rate * dt), math.cos(heading + yaw_rate * dt))
        return new_x, new_y, new_heading

    def step(self, state: VehicleState, acceleration: float, steering_angle: float,
             dt: float) -> VehicleState:
        """
        Advance a full vehicle state by one time step.

        Speed is integrated from the commanded acceleration and never goes
        negative (the vehicle stops, it does not reverse).
        """
        steering_angle = float(np.clip(steering_angle, -self.max_steering_angle, self.max_steering_angle))
        x, y, heading = self.update(state.x, state.y, state.heading, state.speed, steering_angle, dt)
        speed = float(np.clip(state.speed + acceleration * dt, 0.0, self.max_speed))
        applied_accel = (speed - state.speed) / dt if dt > 0 else 0.0
        return VehicleState(
            timestamp=state.timestamp + dt,
            x=x,
            y=y,
            heading=heading,
            speed=speed,
            acceleration=applied_accel,
            yaw_rate=speed * self.compute_curvature(steering_angle),
        )

    def compute_curvature(self, steering_angle: float) -> float:
        """
        Compute curvature from steering angle.

        Args:
            steering_angle: Steering angle (radians)

        Returns:
            Curvature (1/m)
        """
        if abs(steering_angle) < 1e-6:
            return 0.0
        return math.tan(steering_angle) / self.wheelbase
