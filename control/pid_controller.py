"""
PID controller for vehicle control.
Drives the longitudinal loop (speed -> acceleration command).
"""

import numpy as np
from typing import Optional, Tuple


class PIDController:
    """
    PID controller with integral windup protection.
    """

    def __init__(self, kp: float, ki: float, kd: float,
                 integral_limit: Optional[float] = None, output_limit: Optional[Tuple[float, float]] = None):
        """
        Initialize PID controller.

        Args:
            kp: Proportional gain
            ki: Integral gain
            kd: Derivative gain
            integral_limit: Limit for integral term (anti-windup)
            output_limit: (min, max) output limits
        """
        self.kp = kp
        self.ki = ki
        self.kd = kd
        self.integral_limit = integral_limit
        self.output_limit = output_limit

        self.integral = 0.0
        self.prev_error = 0.0
        self.prev_time = None

    def update(self, error: float, dt: float) -> float:
        """
        Update PID controller.

        Args:
            error: Current error
            dt: Time step

        Returns:
            Control output
        """
        p_term = self.kp * error

        if dt > 0:
            self.integral += error * dt
        if self.integral_limit is not None:
            self.integral = float(np.clip(self.integral, -self.integral_limit, self.integral_limit))
        i_term = self.ki * self.integral

        # No derivative kick on the first update
        if self.prev_time is not None and dt > 0:
            d_term = self.kd * (error - self.prev_error) / dt
        else:
            d_term = 0.0

        output = p_term + i_term + d_term
        if self.output_limit is not None:
            output = np.clip(output, self.output_limit[0], self.output_limit[1])

        self.prev_error = error
        self.prev_time = (self.prev_time or 0.0) + dt
        return float(output)

    def reset(self):
        """Reset controller state."""
        self.integral = 0.0
        self.prev_error = 0.0
        self.prev_time = None


class LongitudinalController:
    """
    Longitudinal control: PID on speed error, output is a desired acceleration.
    """

    def __init__(self, kp: float = 1.0, ki: float = 0.1, kd: float = 0.05,
                 max_accel: float = 3.0, max_decel: float = 5.0,
                 integral_limit: float = 5.0):
        """
        Initialize longitudinal controller.

        Args:
            kp: Proportional gain
            ki: Integral gain
            kd: Derivative gain
            max_accel: Largest commanded acceleration (m/s^2)
            max_decel: Largest commanded deceleration (m/s^2, positive)
            integral_limit: Anti-windup limit on the integrated speed error
        """
        self.max_accel = max_accel
        self.max_decel = max_decel
        self.pid = PIDController(
            kp=kp,
            ki=ki,
            kd=kd,
            integral_limit=integral_limit,
            output_limit=(-max_decel, max_accel),
        )

    def compute_acceleration(self, current_speed: float, target_speed: float,
                             dt: float) -> Tuple[float, float]:
        """
        Compute the acceleration command.

        Args:
            current_speed: Current vehicle speed (m/s)
            target_speed: Desired speed (m/s)
            dt: Time since the previous command (s)

        Returns:
            Tuple of (acceleration, speed_error)
        """
        speed_error = target_speed - current_speed
        return self.pid.update(speed_error, dt), speed_error

    def reset(self):
        self.pid.reset()
