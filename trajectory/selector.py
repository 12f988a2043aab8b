"""
Trajectory selection with lane arbitration.

The minimum-cost feasible candidate is picked per lane id; the target lane's
winner is preferred, then the current lane's, then the cheapest overall.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .errors import NoFeasibleTrajectory
from .models.trajectory import FrenetPath

logger = logging.getLogger(__name__)

CANDIDATE_TIE_BREAKS = ("generation_order", "smallest_offset")
LANE_TIE_BREAKS = ("current_lane_first", "lowest_lane_id", "highest_lane_id")


@dataclass
class SelectionConfig:
    """
    Tie-break policies.

    candidate_tie_break: among equal-cost candidates of one lane, take the
        first generated ("generation_order") or the one closest to the
        reference line ("smallest_offset").
    lane_tie_break: among equal-cost lane winners in the global fallback,
        prefer the lane nearest the current one ("current_lane_first"), or the
        lowest / highest lane id.
    """
    candidate_tie_break: str = "generation_order"
    lane_tie_break: str = "current_lane_first"
    cost_tolerance: float = 1e-9  # costs closer than this are ties

    def __post_init__(self):
        if self.candidate_tie_break not in CANDIDATE_TIE_BREAKS:
            raise ValueError(f"candidate_tie_break must be one of {CANDIDATE_TIE_BREAKS}, "
                             f"got {self.candidate_tie_break!r}")
        if self.lane_tie_break not in LANE_TIE_BREAKS:
            raise ValueError(f"lane_tie_break must be one of {LANE_TIE_BREAKS}, "
                             f"got {self.lane_tie_break!r}")


class TrajectorySelector:
    """Deterministic minimum-cost selection."""

    def __init__(self, config: Optional[SelectionConfig] = None):
        self.config = config or SelectionConfig()

    def _tied(self, paths: Sequence[FrenetPath]) -> List[FrenetPath]:
        best = min(p.cost for p in paths)
        return [p for p in paths if p.cost <= best + self.config.cost_tolerance]

    def best_per_lane(self, candidates: Sequence[FrenetPath]) -> Dict[int, FrenetPath]:
        """Minimum-cost feasible candidate of every lane that has one."""
        by_lane: Dict[int, List[FrenetPath]] = {}
        for path in candidates:
            if path.feasible:
                by_lane.setdefault(path.lane_id, []).append(path)

        winners = {}
        for lane_id, paths in by_lane.items():
            tied = self._tied(paths)
            if self.config.candidate_tie_break == "smallest_offset":
                winners[lane_id] = min(tied, key=lambda p: (abs(p.target_d), p.index))
            else:
                winners[lane_id] = min(tied, key=lambda p: p.index)
        return winners

    def select(self, candidates: Sequence[FrenetPath], current_lane_id: int,
               target_lane_id: int) -> FrenetPath:
        """
        Pick the trajectory to execute.

        Raises:
            NoFeasibleTrajectory: no candidate in any lane is feasible
        """
        winners = self.best_per_lane(candidates)
        if not winners:
            reasons = {}
            for path in candidates:
                reasons[path.infeasible_reason] = reasons.get(path.infeasible_reason, 0) + 1
            raise NoFeasibleTrajectory(
                f"No feasible trajectory among {len(candidates)} candidates {reasons}"
            )

        if target_lane_id in winners:
            return winners[target_lane_id]
        if current_lane_id in winners:
            logger.debug(f"[SELECTOR] Target lane {target_lane_id} infeasible, "
                         f"keeping current lane {current_lane_id}")
            return winners[current_lane_id]

        tied = self._tied(list(winners.values()))
        policy = self.config.lane_tie_break
        if policy == "highest_lane_id":
            return max(tied, key=lambda p: p.lane_id)
        if policy == "current_lane_first":
            return min(tied, key=lambda p: (abs(p.lane_id - current_lane_id), p.lane_id))
        return min(tied, key=lambda p: p.lane_id)
