"""
Frenet optimal trajectory planning module.
Samples candidate trajectories from a start state, scores them and selects
the one to execute.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from data.formats.data_format import Obstacle
from ..evaluator import CostWeights, EvaluationContext, FeasibilityEvaluator, LimitsConfig
from .trajectory import FrenetPath, FrenetState
from ..reference_path import ReferencePath
from ..sampler import SamplingConfig, SamplingWidth, TrajectorySampler
from ..selector import SelectionConfig, TrajectorySelector

logger = logging.getLogger(__name__)


@dataclass
class PlanningResult:
    """Outcome of one sample -> evaluate -> select pass."""
    selected: FrenetPath
    candidates: List[FrenetPath]
    feasible_count: int


class FrenetOptimalPlanner:
    """
    Sampling-based optimal planner in the Frenet frame.
    Bundles the sampler, evaluator and selector for one start state.
    """

    def __init__(self, sampling: Optional[SamplingConfig] = None,
                 limits: Optional[LimitsConfig] = None,
                 weights: Optional[CostWeights] = None,
                 selection: Optional[SelectionConfig] = None,
                 vehicle_width: float = 2.0,
                 num_workers: int = 1):
        """
        Initialize Frenet optimal planner.

        Args:
            sampling: Sampling ranges and discretization
            limits: Kinematic limits and obstacle margin
            weights: Cost function weights
            selection: Tie-break policies
            vehicle_width: Vehicle width in meters
            num_workers: Evaluation threads (1 = evaluate sequentially)
        """
        self.sampler = TrajectorySampler(sampling)
        self.evaluator = FeasibilityEvaluator(limits, weights, vehicle_width)
        self.selector = TrajectorySelector(selection)
        self.num_workers = max(1, int(num_workers))
        self._executor = ThreadPoolExecutor(max_workers=self.num_workers,
                                            thread_name_prefix="frenet-eval") \
            if self.num_workers > 1 else None
        self.last_generation_diagnostics: Dict[str, float] = {}
        self.last_candidates: List[FrenetPath] = []

    def plan(self, start: FrenetState, reference_path: ReferencePath, widths: SamplingWidth,
             obstacles: Sequence[Obstacle], current_lane_id: int, target_lane_id: int,
             desired_speed: Optional[float] = None,
             previous: Optional[FrenetPath] = None,
             time_offset: float = 0.0) -> PlanningResult:
        """
        Plan from a start state.

        Args:
            start: Sampling origin
            reference_path: Reference path the Frenet frame is defined on
            widths: Lateral sampling extents and lane widths
            obstacles: Obstacles in the planning frame
            current_lane_id: Lane the vehicle is in
            target_lane_id: Lane the vehicle should be in
            desired_speed: Cruising speed (defaults to the sampling config's)
            previous: Previously selected trajectory (consistency cost)
            time_offset: Seconds from now until the vehicle reaches the start
                state (moving obstacle prediction)

        Returns:
            PlanningResult with every evaluated candidate

        Raises:
            NoFeasibleTrajectory: every candidate violates a constraint
        """
        started = time.perf_counter()
        self.last_candidates = []
        desired = self.sampler.config.desired_speed if desired_speed is None else desired_speed

        candidates = self.sampler.sample(
            start, widths,
            target_speeds=self.sampler.target_speeds(desired),
            reference_path=reference_path,
        )
        context = EvaluationContext(
            desired_speed=desired,
            lane_width=widths.lane_width,
            left_lane_width=widths.left_lane_width,
            right_lane_width=widths.right_lane_width,
            previous_end_d=previous.end_d if previous is not None else None,
            previous_lane_id=previous.lane_id if previous is not None else None,
        )
        feasible = self.evaluator.evaluate_all(candidates, obstacles, context, self._executor,
                                               time_offset=time_offset)
        self.last_candidates = candidates

        self.last_generation_diagnostics = {
            "candidates": float(len(candidates)),
            "feasible": float(feasible),
            "plan_time_ms": (time.perf_counter() - started) * 1000.0,
        }
        selected = self.selector.select(candidates, current_lane_id, target_lane_id)
        self.last_generation_diagnostics["selected_cost"] = selected.cost
        return PlanningResult(selected=selected, candidates=candidates, feasible_count=feasible)

    def get_last_generation_diagnostics(self) -> Dict[str, float]:
        return dict(self.last_generation_diagnostics)

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
