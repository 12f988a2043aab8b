from __future__ import annotations

import math
from typing import Tuple

import numpy as np


LEFT_LANE_ID = 1
REFERENCE_LANE_ID = 0
RIGHT_LANE_ID = -1
LANE_IDS = (RIGHT_LANE_ID, REFERENCE_LANE_ID, LEFT_LANE_ID)


def normalize_angle(angle):
    """Wrap angle(s) to [-pi, pi)."""
    if isinstance(angle, np.ndarray):
        return (angle + np.pi) % (2.0 * np.pi) - np.pi
    return (float(angle) + math.pi) % (2.0 * math.pi) - math.pi


def sample_range(low: float, high: float, step: float) -> np.ndarray:
    """
    Evenly spaced samples covering [low, high] with spacing at most ``step``.

    A collapsed (or inverted) range yields its midpoint only.
    """
    low = float(low)
    high = float(high)
    if high - low <= 1e-9 or step <= 0.0:
        return np.array([0.5 * (low + high)])
    count = int(math.ceil((high - low) / step - 1e-9)) + 1
    return np.linspace(low, high, count)


def lane_band(lane_id: int, lane_width: float, left_lane_width: float,
              right_lane_width: float) -> Tuple[float, float]:
    """
    Lateral band (d_min, d_max) occupied by a lane, measured from the
    reference line (positive = left).
    """
    half = 0.5 * lane_width
    if lane_id == LEFT_LANE_ID:
        return half, half + left_lane_width
    if lane_id == RIGHT_LANE_ID:
        return -half - right_lane_width, -half
    if lane_id == REFERENCE_LANE_ID:
        return -half, half
    raise ValueError(f"Unsupported lane id: {lane_id}")


def lane_center(lane_id: int, lane_width: float, left_lane_width: float,
                right_lane_width: float) -> float:
    d_min, d_max = lane_band(lane_id, lane_width, left_lane_width, right_lane_width)
    return 0.5 * (d_min + d_max)


def lane_id_for_offset(d: float, lane_width: float, left_lane_width: float,
                       right_lane_width: float) -> int:
    """Lane whose band contains lateral offset d (outer lanes absorb overflow)."""
    half = 0.5 * lane_width
    if d > half and left_lane_width > 0.0:
        return LEFT_LANE_ID
    if d < -half and right_lane_width > 0.0:
        return RIGHT_LANE_ID
    return REFERENCE_LANE_ID


def available_lanes(left_lane_width: float, right_lane_width: float) -> Tuple[int, ...]:
    """Lane ids that exist: the reference lane plus neighbours with a width."""
    lanes = [REFERENCE_LANE_ID]
    if left_lane_width > 0.0:
        lanes.append(LEFT_LANE_ID)
    if right_lane_width > 0.0:
        lanes.append(RIGHT_LANE_ID)
    return tuple(lanes)


def offset_in_lane(d: float, lane_id: int, lane_width: float, left_lane_width: float,
                   right_lane_width: float) -> bool:
    """True when d lies inside the lane's width band."""
    if lane_id == LEFT_LANE_ID and left_lane_width <= 0.0:
        return False
    if lane_id == RIGHT_LANE_ID and right_lane_width <= 0.0:
        return False
    d_min, d_max = lane_band(lane_id, lane_width, left_lane_width, right_lane_width)
    return d_min <= d <= d_max
