"""
Tests for candidate feasibility checks and cost.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from data.formats.data_format import Obstacle
from trajectory.evaluator import (
    CostWeights, EvaluationContext, FeasibilityEvaluator, LimitsConfig, prepare_obstacles,
)
from trajectory.models.trajectory import FrenetState
from trajectory.reference_path import build_reference_path
from trajectory.sampler import SamplingConfig, SamplingWidth, TrajectorySampler, get_sampling_width


@pytest.fixture(scope="module")
def reference_path():
    xs = np.arange(0.0, 151.0, 1.0)
    return build_reference_path(np.column_stack((xs, np.zeros_like(xs))))


@pytest.fixture
def start():
    return FrenetState(s=0.0, s_d=10.0)


def centre_candidate(reference_path, start, horizon=3.0, speed=10.0):
    sampler = TrajectorySampler(SamplingConfig())
    return sampler.sample(start, SamplingWidth(0.0, 0.0), target_speeds=[speed],
                          horizons=[horizon], reference_path=reference_path)[0]


def lane_change_candidates(reference_path, start):
    sampler = TrajectorySampler(SamplingConfig())
    widths = get_sampling_width(0, 1, 2.0, 3.5, 3.5, 0.0)
    return sampler.sample(start, widths, reference_path=reference_path)


def box(x, y, half_length=2.25, half_width=1.0, **kwargs):
    return Obstacle(x=x, y=y, footprint=((-half_length, -half_width), (half_length, -half_width),
                                         (half_length, half_width), (-half_length, half_width)),
                    **kwargs)


class TestLimits:

    def test_straight_candidate_is_feasible(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        feasible, cost = FeasibilityEvaluator().evaluate(path, [])
        assert feasible
        assert path.infeasible_reason is None
        assert np.isfinite(cost)

    def test_speed_limit(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        evaluator = FeasibilityEvaluator(LimitsConfig(max_speed=9.0))
        feasible, _ = evaluator.evaluate(path, [])
        assert not feasible
        assert path.infeasible_reason == "max_speed"

    def test_acceleration_limit(self, reference_path, start):
        # 10 -> 16 m/s in 3s peaks at 3 m/s^2
        path = centre_candidate(reference_path, start, speed=16.0)
        assert FeasibilityEvaluator(LimitsConfig(max_accel=4.0)).evaluate(path, [])[0]
        assert FeasibilityEvaluator(LimitsConfig(max_accel=2.5)).evaluate(path, [])[0] is False
        assert path.infeasible_reason == "max_accel"

    def test_non_finite_curvature_is_infeasible(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        path.curvature = path.curvature.copy()
        path.curvature[5] = np.inf
        assert FeasibilityEvaluator().check_limits(path) == "max_curvature"

    def test_feasible_set_shrinks_with_curvature_limit(self, reference_path, start):
        counts = []
        for max_curvature in (0.2, 0.05, 0.02, 0.005, 0.001):
            candidates = lane_change_candidates(reference_path, start)
            evaluator = FeasibilityEvaluator(LimitsConfig(max_curvature=max_curvature))
            counts.append(evaluator.evaluate_all(candidates, [], EvaluationContext(desired_speed=10.0)))
        assert counts == sorted(counts, reverse=True)
        assert counts[0] > counts[-1]


class TestCollision:

    def test_static_obstacle_on_path(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        feasible, _ = FeasibilityEvaluator().evaluate(path, [box(15.0, 0.0)])
        assert not feasible
        assert path.infeasible_reason == "collision"

    def test_circular_obstacle(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        evaluator = FeasibilityEvaluator(vehicle_width=2.0, limits=LimitsConfig(obstacle_margin=0.3))
        # Clearance is 1.3m; a 1m radius circle 2.5m to the side leaves 1.5m
        assert evaluator.evaluate(path, [Obstacle(x=15.0, y=2.5, radius=1.0)])[0]
        assert not evaluator.evaluate(path, [Obstacle(x=15.0, y=2.0, radius=1.0)])[0]

    def test_feasible_set_shrinks_with_margin(self, reference_path, start):
        obstacles = [box(25.0, 2.5, half_width=0.5)]
        counts = []
        for margin in (0.0, 0.3, 0.6, 1.0, 2.0):
            candidates = lane_change_candidates(reference_path, start)
            evaluator = FeasibilityEvaluator(LimitsConfig(obstacle_margin=margin))
            counts.append(evaluator.evaluate_all(candidates, obstacles,
                                                 EvaluationContext(desired_speed=10.0)))
        assert counts == sorted(counts, reverse=True)
        assert counts[0] > counts[-1]

    def test_moving_obstacle_is_predicted(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        evaluator = FeasibilityEvaluator()
        # Ends 10m short of a static box
        assert evaluator.evaluate(path, [box(42.25, 0.0)])[0]
        # The same box driving towards the vehicle meets it within the horizon
        assert not evaluator.evaluate(path, [box(42.25, 0.0, vx=-10.0)])[0]
        # Driving away at the same speed never gets closer
        assert evaluator.evaluate(path, [box(42.25, 0.0, vx=10.0)])[0]

    def test_time_offset_shifts_prediction(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        evaluator = FeasibilityEvaluator()
        crossing = [Obstacle(x=15.0, y=-16.0, radius=0.5, vy=8.0)]
        # Crosses behind the vehicle when the candidate starts now
        assert evaluator.evaluate(path, crossing)[0]
        # Starting 0.5s from now, both reach (15, 0) together
        assert not evaluator.evaluate(path, crossing, time_offset=0.5)[0]
        assert path.infeasible_reason == "collision"

    def test_path_collides_with_point_times(self):
        evaluator = FeasibilityEvaluator()
        xs = np.arange(0.0, 20.0)
        xy = np.column_stack((xs, np.zeros_like(xs)))
        crossing = [Obstacle(x=10.0, y=-10.0, radius=0.5, vy=10.0)]
        assert not evaluator.path_collides(xy, crossing)
        assert evaluator.path_collides(xy, crossing, times=xs / 10.0)
        assert not evaluator.path_collides(xy, crossing, times=xs / 10.0 + 1.0)

    def test_path_collides(self):
        evaluator = FeasibilityEvaluator()
        xy = np.column_stack((np.arange(0.0, 20.0), np.zeros(20)))
        assert evaluator.path_collides(xy, [box(10.0, 0.5)])
        assert not evaluator.path_collides(xy, [box(10.0, 5.0)])
        assert not evaluator.path_collides(xy, [])

    def test_prepare_obstacles(self):
        prepared = prepare_obstacles([box(1.0, 2.0), Obstacle(x=3.0, y=4.0, radius=0.5, vx=1.0)])
        assert prepared[0].geometry.geom_type == "Polygon"
        assert prepared[0].is_static
        assert prepared[1].geometry.geom_type == "Point"
        assert prepared[1].radius == 0.5
        assert not prepared[1].is_static


class TestCost:

    def test_speed_term(self, reference_path, start):
        path = centre_candidate(reference_path, start, speed=8.0)
        evaluator = FeasibilityEvaluator(weights=CostWeights(k_speed=2.0))
        evaluator.evaluate(path, [], EvaluationContext(desired_speed=10.0))
        assert path.cost_terms["speed"] == pytest.approx(2.0 * 4.0)

    def test_lateral_term_uses_lane_centre(self, reference_path, start):
        candidates = lane_change_candidates(reference_path, start)
        evaluator = FeasibilityEvaluator()
        context = EvaluationContext(desired_speed=10.0, lane_width=3.5, left_lane_width=3.5)
        for path in candidates:
            evaluator.evaluate(path, [], context)
            centre = 3.5 if path.lane_id == 1 else 0.0
            assert path.cost_terms["lateral"] == pytest.approx((path.end_d - centre) ** 2)

    def test_jerk_prefers_longer_horizon(self, reference_path, start):
        short = centre_candidate(reference_path, start, horizon=3.0, speed=12.0)
        long = centre_candidate(reference_path, start, horizon=5.0, speed=12.0)
        evaluator = FeasibilityEvaluator()
        evaluator.evaluate(short, [])
        evaluator.evaluate(long, [])
        assert long.cost_terms["jerk"] < short.cost_terms["jerk"]

    def test_consistency_term(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        evaluator = FeasibilityEvaluator(weights=CostWeights(k_consistency=1.0, lane_switch_penalty=5.0))

        evaluator.evaluate(path, [], EvaluationContext(desired_speed=10.0))
        assert path.cost_terms["consistency"] == 0.0

        evaluator.evaluate(path, [], EvaluationContext(desired_speed=10.0, previous_end_d=1.0,
                                                       previous_lane_id=0))
        assert path.cost_terms["consistency"] == pytest.approx(1.0)

        evaluator.evaluate(path, [], EvaluationContext(desired_speed=10.0, previous_end_d=1.0,
                                                       previous_lane_id=1))
        assert path.cost_terms["consistency"] == pytest.approx(6.0)

    def test_cost_is_sum_of_terms(self, reference_path, start):
        path = centre_candidate(reference_path, start, speed=9.0)
        _, cost = FeasibilityEvaluator().evaluate(path, [])
        assert cost == pytest.approx(sum(path.cost_terms.values()))
        assert path.cost == cost

    def test_infeasible_candidates_are_still_costed(self, reference_path, start):
        path = centre_candidate(reference_path, start)
        feasible, cost = FeasibilityEvaluator().evaluate(path, [box(15.0, 0.0)])
        assert not feasible
        assert np.isfinite(cost)


def test_parallel_evaluation_matches_sequential(reference_path, start):
    obstacles = [box(30.0, 1.5)]
    context = EvaluationContext(desired_speed=10.0, lane_width=3.5, left_lane_width=3.5)
    evaluator = FeasibilityEvaluator()

    sequential = lane_change_candidates(reference_path, start)
    count = evaluator.evaluate_all(sequential, obstacles, context)

    parallel = lane_change_candidates(reference_path, start)
    with ThreadPoolExecutor(max_workers=4) as executor:
        parallel_count = evaluator.evaluate_all(parallel, obstacles, context, executor)

    assert count == parallel_count
    assert [p.feasible for p in sequential] == [p.feasible for p in parallel]
    assert [p.cost for p in sequential] == pytest.approx([p.cost for p in parallel])
