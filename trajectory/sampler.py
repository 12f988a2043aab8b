"""
Candidate trajectory sampling in the Frenet frame.

Every candidate pairs a quintic lateral polynomial (end d = offset, end d_d =
end d_dd = 0) with a quartic longitudinal polynomial (end s_d = target speed,
end s_dd = 0) over one horizon. One candidate is generated per
(lateral offset, target speed, horizon) combination, in that nesting order.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import InputInvalid
from .frenet import frenet_to_cartesian_arrays
from .models.trajectory import FrenetPath, FrenetState
from .polynomials import QuarticPolynomial, QuinticPolynomial
from .reference_path import ReferencePath
from .utils import available_lanes, lane_band, lane_center, lane_id_for_offset, sample_range

logger = logging.getLogger(__name__)


@dataclass
class SamplingConfig:
    """Sampling ranges and discretization."""
    lateral_step: float = 0.5  # m, max spacing between lateral offsets
    lateral_margin: float = 0.2  # m, kept clear of lane edges on top of half the vehicle width
    desired_speed: float = 10.0  # m/s
    speed_range: float = 2.0  # m/s either side of the desired speed
    speed_step: float = 1.0  # m/s
    min_horizon: float = 3.0  # s
    max_horizon: float = 5.0  # s
    horizon_step: float = 1.0  # s
    dt: float = 0.1  # s


@dataclass(frozen=True)
class SamplingWidth:
    """
    Lateral sampling extents for one cycle.

    ``left`` and ``right`` are signed distances from the reference line:
    offsets are sampled over [-right, left]. The lane widths the extents
    were derived from are carried along to tag candidates with a lane id.
    """
    left: float
    right: float
    lane_width: float = 3.5
    left_lane_width: float = 0.0
    right_lane_width: float = 0.0

    def as_list(self) -> List[float]:
        return [self.left, self.right]


def get_sampling_width(current_lane_id: int, target_lane_id: int, vehicle_width: float,
                       lane_width: float, left_lane_width: float, right_lane_width: float,
                       margin: float = 0.0, all_lanes: bool = False) -> SamplingWidth:
    """
    Sampling extents covering the current and target lanes.

    With ``all_lanes`` every existing lane (reference lane plus neighbours
    with a non-zero width) is covered as well, so keep-lane and lane-change
    options are sampled together.

    The union of both lane bands is narrowed by half the vehicle width plus
    margin on each side. A band narrower than the vehicle collapses to its
    centre. When the band contains the reference line, both extents are
    clipped to be non-negative.

    Raises:
        InputInvalid: unknown lane id or non-positive lane width
    """
    if lane_width <= 0.0:
        raise InputInvalid(f"Lane width must be positive, got {lane_width}")
    lane_ids = [current_lane_id, target_lane_id]
    if all_lanes:
        lane_ids.extend(available_lanes(left_lane_width, right_lane_width))
    try:
        bands = [lane_band(lane_id, lane_width, left_lane_width, right_lane_width)
                 for lane_id in lane_ids]
    except ValueError as e:
        raise InputInvalid(str(e)) from e

    d_min = min(b[0] for b in bands)
    d_max = max(b[1] for b in bands)
    inset = 0.5 * vehicle_width + margin
    low, high = d_min + inset, d_max - inset
    if low > high:
        low = high = 0.5 * (d_min + d_max)

    left, right = high, -low
    if d_min <= 0.0 <= d_max:
        left, right = max(left, 0.0), max(right, 0.0)
    return SamplingWidth(left, right, lane_width, left_lane_width, right_lane_width)


class TrajectorySampler:
    """Generates the candidate family for one start state."""

    def __init__(self, config: Optional[SamplingConfig] = None):
        self.config = config or SamplingConfig()

    def lateral_offsets(self, widths: SamplingWidth) -> np.ndarray:
        """
        Offsets over [-right, left], spaced at most ``lateral_step`` apart.

        Lane centres inside the range split it into sections sampled
        separately, so every centre is an offset.
        """
        low, high = -widths.right, widths.left
        step = self.config.lateral_step
        if high - low <= 1e-9:
            return sample_range(low, high, step)
        lane_widths = (widths.lane_width, widths.left_lane_width, widths.right_lane_width)
        centres = [lane_center(lane_id, *lane_widths)
                   for lane_id in available_lanes(widths.left_lane_width, widths.right_lane_width)]
        breaks = sorted({low, high} | {c for c in centres if low + 1e-9 < c < high - 1e-9})
        sections = [sample_range(a, b, step)[:-1] for a, b in zip(breaks[:-1], breaks[1:])]
        return np.concatenate(sections + [np.array([high])])

    def target_speeds(self, desired_speed: Optional[float] = None) -> np.ndarray:
        cfg = self.config
        desired = cfg.desired_speed if desired_speed is None else desired_speed
        return sample_range(max(0.0, desired - cfg.speed_range),
                            max(0.0, desired + cfg.speed_range), cfg.speed_step)

    def horizons(self) -> np.ndarray:
        cfg = self.config
        return sample_range(cfg.min_horizon, cfg.max_horizon, cfg.horizon_step)

    def sample(self, start: FrenetState, widths: SamplingWidth,
               target_speeds: Optional[Sequence[float]] = None,
               horizons: Optional[Sequence[float]] = None,
               reference_path: Optional[ReferencePath] = None) -> List[FrenetPath]:
        """
        Generate one candidate per (lateral offset, target speed, horizon).

        When ``reference_path`` is given the Cartesian arrays of each
        candidate are filled in as well.
        """
        offsets = self.lateral_offsets(widths)
        speeds = self.target_speeds() if target_speeds is None else np.asarray(target_speeds, dtype=float)
        times = self.horizons() if horizons is None else np.asarray(horizons, dtype=float)
        if len(offsets) == 0 or len(speeds) == 0 or len(times) == 0:
            raise InputInvalid("Empty sampling range")

        candidates = []
        for target_d in offsets:
            for target_speed in speeds:
                for horizon in times:
                    path = self._generate(start, float(target_d), float(target_speed),
                                          float(horizon), len(candidates), widths)
                    if reference_path is not None:
                        frenet_to_cartesian_arrays(path, reference_path)
                    candidates.append(path)

        logger.debug(f"[SAMPLER] {len(candidates)} candidates "
                     f"({len(offsets)} offsets x {len(speeds)} speeds x {len(times)} horizons)")
        return candidates

    def _generate(self, start: FrenetState, target_d: float, target_speed: float,
                  horizon: float, index: int, widths: SamplingWidth) -> FrenetPath:
        if horizon <= 0.0:
            raise InputInvalid(f"Horizon must be positive, got {horizon}")
        count = max(2, int(round(horizon / self.config.dt)) + 1)
        t = np.linspace(0.0, horizon, count)

        lat = QuinticPolynomial(start.d, start.d_d, start.d_dd, target_d, 0.0, 0.0, horizon)
        lon = QuarticPolynomial(start.s, start.s_d, start.s_dd, target_speed, 0.0, horizon)

        return FrenetPath(
            t=t,
            s=lon.calc_point(t),
            s_d=lon.calc_first_derivative(t),
            s_dd=lon.calc_second_derivative(t),
            s_ddd=lon.calc_third_derivative(t),
            d=lat.calc_point(t),
            d_d=lat.calc_first_derivative(t),
            d_dd=lat.calc_second_derivative(t),
            d_ddd=lat.calc_third_derivative(t),
            lateral_poly=lat,
            longitudinal_poly=lon,
            target_d=target_d,
            target_speed=target_speed,
            horizon=horizon,
            index=index,
            lane_id=lane_id_for_offset(target_d, widths.lane_width,
                                       widths.left_lane_width, widths.right_lane_width),
        )
