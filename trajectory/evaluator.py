"""
Feasibility checks and cost of candidate trajectories.

A candidate is feasible when, at every time step, speed, acceleration and
curvature stay within limits and the vehicle clears every obstacle (predicted
at constant velocity) by half its width plus the obstacle margin.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from scipy.integrate import trapezoid
from shapely.affinity import translate
from shapely.geometry import Point, Polygon

from data.formats.data_format import Obstacle
from .models.trajectory import FrenetPath
from .utils import lane_center

logger = logging.getLogger(__name__)

_LIMIT_TOLERANCE = 1e-6


@dataclass
class LimitsConfig:
    """Kinematic/dynamic limits and obstacle clearance."""
    max_speed: float = 20.0  # m/s
    max_accel: float = 4.0  # m/s^2
    max_curvature: float = 0.2  # 1/m
    obstacle_margin: float = 0.3  # m, on top of half the vehicle width


@dataclass
class CostWeights:
    """Cost function weights."""
    k_lateral: float = 1.0
    k_speed: float = 1.0
    k_jerk: float = 0.1
    k_consistency: float = 0.5
    lane_switch_penalty: float = 1.0  # added to the consistency term on a lane change


@dataclass
class EvaluationContext:
    """Per-cycle inputs of the cost function."""
    desired_speed: float
    lane_width: float = 3.5
    left_lane_width: float = 0.0
    right_lane_width: float = 0.0
    previous_end_d: Optional[float] = None
    previous_lane_id: Optional[int] = None


@dataclass
class PreparedObstacle:
    """Obstacle geometry at t = 0 plus its constant velocity."""
    geometry: object  # shapely geometry
    radius: float = 0.0  # distance subtracted for circular obstacles
    vx: float = 0.0
    vy: float = 0.0
    obstacle_id: int = -1

    @property
    def is_static(self) -> bool:
        return self.vx == 0.0 and self.vy == 0.0


def prepare_obstacles(obstacles: Optional[Sequence[Obstacle]]) -> List[PreparedObstacle]:
    """Build shapely geometry once per cycle."""
    prepared = []
    for obstacle in obstacles or []:
        footprint = obstacle.world_footprint()
        if footprint is not None and len(footprint) >= 3:
            geometry = Polygon(footprint)
            radius = 0.0
        else:
            geometry = Point(obstacle.x, obstacle.y)
            radius = max(0.0, obstacle.radius)
        prepared.append(PreparedObstacle(geometry, radius, obstacle.vx, obstacle.vy,
                                         obstacle.obstacle_id))
    return prepared


def _moving_distances(obstacle: PreparedObstacle, points, times: np.ndarray) -> np.ndarray:
    """Distance from each point to the obstacle translated to that point's time."""
    return np.array([
        translate(obstacle.geometry, obstacle.vx * t, obstacle.vy * t).distance(point)
        for t, point in zip(times, points)
    ])


class FeasibilityEvaluator:
    """Scores candidates in place."""

    def __init__(self, limits: Optional[LimitsConfig] = None,
                 weights: Optional[CostWeights] = None,
                 vehicle_width: float = 2.0,
                 context: Optional[EvaluationContext] = None):
        self.limits = limits or LimitsConfig()
        self.weights = weights or CostWeights()
        self.vehicle_width = vehicle_width
        self.context = context or EvaluationContext(desired_speed=10.0)

    @property
    def clearance(self) -> float:
        return 0.5 * self.vehicle_width + self.limits.obstacle_margin

    def check_limits(self, path: FrenetPath) -> Optional[str]:
        """Name of the first violated limit, or None."""
        limits = self.limits
        if np.any(~np.isfinite(path.speed)) or np.any(path.speed > limits.max_speed + _LIMIT_TOLERANCE):
            return "max_speed"
        if np.any(~np.isfinite(path.acceleration)) or \
                np.any(np.abs(path.acceleration) > limits.max_accel + _LIMIT_TOLERANCE):
            return "max_accel"
        if np.any(~np.isfinite(path.curvature)) or \
                np.any(np.abs(path.curvature) > limits.max_curvature + _LIMIT_TOLERANCE):
            return "max_curvature"
        return None

    def min_clearance(self, path: FrenetPath, obstacles: Sequence[PreparedObstacle],
                      time_offset: float = 0.0) -> float:
        """
        Smallest distance from any trajectory point to any obstacle.

        Moving obstacles are predicted at ``time_offset + t``; the offset is
        how far in the future the candidate's t = 0 lies.
        """
        if not obstacles or len(path.x) == 0:
            return float("inf")
        points = shapely.points(np.column_stack((path.x, path.y)))
        best = float("inf")
        for obstacle in obstacles:
            if obstacle.is_static:
                distances = shapely.distance(obstacle.geometry, points)
            else:
                distances = _moving_distances(obstacle, points, time_offset + np.asarray(path.t))
            best = min(best, float(np.min(distances)) - obstacle.radius)
        return best

    def path_collides(self, xy: np.ndarray, obstacles: Sequence,
                      times: Optional[np.ndarray] = None) -> bool:
        """
        True when a committed path passes closer than the clearance to an obstacle.

        ``times`` holds, per point, how far from now the vehicle reaches it;
        moving obstacles are predicted there. Without it every obstacle is
        taken at its current pose.
        """
        if not obstacles or len(xy) == 0:
            return False
        if isinstance(obstacles[0], Obstacle):
            obstacles = prepare_obstacles(obstacles)
        points = shapely.points(np.asarray(xy, dtype=float))
        for obstacle in obstacles:
            if times is None or obstacle.is_static:
                distances = shapely.distance(obstacle.geometry, points)
            else:
                ahead = np.maximum(np.asarray(times, dtype=float), 0.0)
                distances = _moving_distances(obstacle, points, ahead)
            if float(np.min(distances)) - obstacle.radius < self.clearance:
                return True
        return False

    def cost_terms(self, path: FrenetPath, context: EvaluationContext) -> Dict[str, float]:
        w = self.weights
        centre = lane_center(path.lane_id, context.lane_width,
                             context.left_lane_width, context.right_lane_width)
        terms = {
            "lateral": w.k_lateral * (path.end_d - centre) ** 2,
            "speed": w.k_speed * (path.end_speed - context.desired_speed) ** 2,
            "jerk": w.k_jerk * float(trapezoid(path.d_ddd ** 2, path.t)
                                     + trapezoid(path.s_ddd ** 2, path.t)),
            "consistency": 0.0,
        }
        if context.previous_end_d is not None:
            consistency = (path.end_d - context.previous_end_d) ** 2
            if context.previous_lane_id is not None and path.lane_id != context.previous_lane_id:
                consistency += w.lane_switch_penalty
            terms["consistency"] = w.k_consistency * consistency
        return terms

    def evaluate(self, path: FrenetPath, obstacles: Sequence,
                 context: Optional[EvaluationContext] = None,
                 time_offset: float = 0.0) -> Tuple[bool, float]:
        """
        Check feasibility and compute the cost of one candidate.

        The candidate's ``feasible``, ``infeasible_reason``, ``cost`` and
        ``cost_terms`` are updated in place. Cost is computed for infeasible
        candidates too (diagnostics).

        Returns:
            (feasible, cost)
        """
        context = context or self.context
        if obstacles and isinstance(obstacles[0], Obstacle):
            obstacles = prepare_obstacles(obstacles)
        reason = self.check_limits(path)
        if reason is None and self.min_clearance(path, obstacles, time_offset) < self.clearance:
            reason = "collision"

        path.cost_terms = self.cost_terms(path, context)
        path.cost = float(sum(path.cost_terms.values()))
        path.feasible = reason is None
        path.infeasible_reason = reason
        return path.feasible, path.cost

    def evaluate_all(self, candidates: Sequence[FrenetPath], obstacles: Sequence[Obstacle],
                     context: EvaluationContext, executor=None, time_offset: float = 0.0) -> int:
        """Evaluate every candidate; returns the number of feasible ones."""
        prepared = prepare_obstacles(obstacles)
        if executor is None:
            results = [self.evaluate(c, prepared, context, time_offset) for c in candidates]
        else:
            results = list(executor.map(lambda c: self.evaluate(c, prepared, context, time_offset),
                                        candidates))
        feasible = sum(1 for ok, _ in results if ok)
        logger.debug(f"[EVALUATOR] {feasible}/{len(candidates)} feasible")
        return feasible
