"""
Tests for trajectory selection and lane arbitration.
"""

import random
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from trajectory.errors import NoFeasibleTrajectory
from trajectory.models.trajectory import FrenetPath
from trajectory.selector import SelectionConfig, TrajectorySelector


def make_path(index, lane_id, cost, feasible=True, target_d=0.0, reason=None):
    zeros = np.zeros(2)
    return FrenetPath(
        t=zeros, s=zeros, s_d=zeros, s_dd=zeros, s_ddd=zeros,
        d=np.full(2, target_d), d_d=zeros, d_dd=zeros, d_ddd=zeros,
        target_d=target_d, index=index, lane_id=lane_id,
        feasible=feasible, cost=cost,
        infeasible_reason=None if feasible else (reason or "collision"),
    )


def test_minimum_cost_in_target_lane():
    candidates = [
        make_path(0, 0, 1.0),
        make_path(1, 1, 5.0),
        make_path(2, 1, 3.0),
        make_path(3, 1, 0.5, feasible=False),
    ]
    selected = TrajectorySelector().select(candidates, current_lane_id=0, target_lane_id=1)
    assert selected.index == 2


def test_current_lane_when_target_infeasible():
    candidates = [
        make_path(0, 1, 0.1, feasible=False),
        make_path(1, 0, 4.0),
        make_path(2, 0, 2.0),
        make_path(3, -1, 1.0),
    ]
    selected = TrajectorySelector().select(candidates, current_lane_id=0, target_lane_id=1)
    assert selected.index == 2


def test_global_minimum_when_target_and_current_infeasible():
    candidates = [
        make_path(0, 0, 0.1, feasible=False),
        make_path(1, 1, 3.0),
        make_path(2, -1, 2.0),
    ]
    selected = TrajectorySelector().select(candidates, current_lane_id=0, target_lane_id=0)
    assert selected.index == 2


def test_no_feasible_trajectory():
    candidates = [make_path(i, 0, float(i), feasible=False, reason="max_curvature") for i in range(3)]
    with pytest.raises(NoFeasibleTrajectory) as exc_info:
        TrajectorySelector().select(candidates, 0, 0)
    assert "max_curvature" in str(exc_info.value)
    assert exc_info.value.reason == "no_feasible_trajectory"


def test_no_candidates():
    with pytest.raises(NoFeasibleTrajectory):
        TrajectorySelector().select([], 0, 0)


def test_selection_is_independent_of_input_order():
    candidates = [make_path(i, i % 3 - 1, round(abs(i - 7) * 0.5, 1)) for i in range(15)]
    selector = TrajectorySelector()
    expected = selector.select(candidates, current_lane_id=0, target_lane_id=1).index
    rng = random.Random(3)
    for _ in range(10):
        shuffled = list(candidates)
        rng.shuffle(shuffled)
        assert selector.select(shuffled, current_lane_id=0, target_lane_id=1).index == expected


class TestCandidateTieBreak:

    def test_generation_order(self):
        candidates = [make_path(4, 0, 1.0, target_d=0.1), make_path(2, 0, 1.0, target_d=-0.5)]
        selector = TrajectorySelector(SelectionConfig(candidate_tie_break="generation_order"))
        assert selector.select(candidates, 0, 0).index == 2

    def test_smallest_offset(self):
        candidates = [make_path(4, 0, 1.0, target_d=0.1), make_path(2, 0, 1.0, target_d=-0.5)]
        selector = TrajectorySelector(SelectionConfig(candidate_tie_break="smallest_offset"))
        assert selector.select(candidates, 0, 0).index == 4

    def test_cost_tolerance(self):
        candidates = [make_path(1, 0, 1.0 + 1e-12), make_path(0, 0, 1.0 + 1e-3)]
        selector = TrajectorySelector(SelectionConfig(cost_tolerance=1e-9))
        assert selector.select(candidates, 0, 0).index == 1


class TestLaneTieBreak:

    @pytest.fixture
    def tied(self):
        # Target and current lane 0 infeasible; lanes -1 and 1 tie
        return [
            make_path(0, 0, 0.1, feasible=False),
            make_path(1, -1, 2.0),
            make_path(2, 1, 2.0),
        ]

    def test_lowest_lane_id(self, tied):
        selector = TrajectorySelector(SelectionConfig(lane_tie_break="lowest_lane_id"))
        assert selector.select(tied, current_lane_id=0, target_lane_id=0).lane_id == -1

    def test_highest_lane_id(self, tied):
        selector = TrajectorySelector(SelectionConfig(lane_tie_break="highest_lane_id"))
        assert selector.select(tied, current_lane_id=0, target_lane_id=0).lane_id == 1

    def test_current_lane_first_prefers_nearest_lane(self):
        candidates = [
            make_path(0, 1, 0.1, feasible=False),
            make_path(1, -1, 2.0),
            make_path(2, 0, 2.0),
        ]
        selector = TrajectorySelector(SelectionConfig(lane_tie_break="current_lane_first"))
        # Current lane 1 and target lane 1 infeasible: lane 0 is nearer than -1
        assert selector.select(candidates, current_lane_id=1, target_lane_id=1).lane_id == 0

    def test_invalid_policies(self):
        with pytest.raises(ValueError):
            SelectionConfig(candidate_tie_break="random")
        with pytest.raises(ValueError):
            SelectionConfig(lane_tie_break="leftmost")


def test_best_per_lane():
    candidates = [
        make_path(0, 0, 3.0),
        make_path(1, 0, 1.0),
        make_path(2, 1, 2.0),
        make_path(3, -1, 0.5, feasible=False),
    ]
    winners = TrajectorySelector().best_per_lane(candidates)
    assert set(winners) == {0, 1}
    assert winners[0].index == 1
    assert winners[1].index == 2
