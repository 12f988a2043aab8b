"""
Frenet planning stack integration script.
Connects the reference path builder, Frenet planner, path continuity and
tracking control into one planning cycle per localization update.
"""

import math
import sys
import threading
import time
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import List, Optional, Sequence
import logging

import numpy as np
import yaml

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from control.tracking_controller import ControllerConfig, TrackingController
from control.vehicle_model import BicycleModel, front_axle_state
from data.formats.data_format import (
    ControlCommand, CycleInputs, CycleOutput, FrameTransform, Lane, Obstacle, VehicleState,
)
from data.recorder import DataRecorder
from trajectory.continuity import ContinuityConfig, concat, max_deviation, trim_passed
from trajectory.errors import InputInvalid, NoFeasibleTrajectory, PlanningError, StaleInput
from trajectory.evaluator import CostWeights, LimitsConfig
from trajectory.frenet import point_to_frenet, to_frenet
from trajectory.models.trajectory import FrenetPath, Path as OutputPath
from trajectory.models.trajectory_planner import FrenetOptimalPlanner
from trajectory.reference_path import LocalLaneWindow, ReferencePathConfig
from trajectory.sampler import SamplingConfig, SamplingWidth, get_sampling_width
from trajectory.selector import SelectionConfig
from trajectory.utils import LANE_IDS, lane_id_for_offset, offset_in_lane

logger = logging.getLogger(__name__)


@dataclass
class VehicleConfig:
    """Vehicle geometry."""
    width: float = 2.0  # m
    length: float = 4.5  # m
    wheelbase: float = 2.7  # m


@dataclass
class PlannerSettings:
    """Orchestrator settings."""
    stale_timeout: float = 0.5  # s without localization before stopping
    cycle_period: float = 0.1  # s, clock advance of a cycle without localization
    num_workers: int = 1  # candidate evaluation threads
    target_lane_id: int = 0
    sample_all_lanes: bool = True  # sample every existing lane, not only current and target
    replan_on_collision: bool = True  # full replan when the retained path hits an obstacle


def _section(cls, data: Optional[dict]):
    """Build a config dataclass from one YAML section; unknown keys are ignored."""
    data = data or {}
    defaults = cls()
    return cls(**{f.name: data.get(f.name, getattr(defaults, f.name)) for f in fields(cls)})


@dataclass
class PlannerConfig:
    """Complete planning stack configuration."""
    vehicle: VehicleConfig = field(default_factory=VehicleConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    reference: ReferencePathConfig = field(default_factory=ReferencePathConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    cost: CostWeights = field(default_factory=CostWeights)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    continuity: ContinuityConfig = field(default_factory=ContinuityConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    planner: PlannerSettings = field(default_factory=PlannerSettings)

    @classmethod
    def from_dict(cls, config: Optional[dict]) -> "PlannerConfig":
        config = config or {}
        return cls(
            vehicle=_section(VehicleConfig, config.get('vehicle', {})),
            limits=_section(LimitsConfig, config.get('limits', {})),
            reference=_section(ReferencePathConfig, config.get('reference', {})),
            sampling=_section(SamplingConfig, config.get('sampling', {})),
            cost=_section(CostWeights, config.get('cost', {})),
            selection=_section(SelectionConfig, config.get('selection', {})),
            continuity=_section(ContinuityConfig, config.get('continuity', {})),
            controller=_section(ControllerConfig, config.get('controller', {})),
            planner=_section(PlannerSettings, config.get('planner', {})),
        )


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = Path(__file__).parent / "config" / "planner_config.yaml"
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


class PlannerStack:
    """
    Planning cycle orchestrator.

    One advance() call runs one full cycle: reference path, Frenet start
    state, sampling/evaluation/selection, path continuity and tracking.
    Lane, obstacle, target lane and config updates may arrive from other
    threads; they are buffered and applied at the start of the next cycle.
    """

    def __init__(self, config: Optional[PlannerConfig] = None,
                 recorder: Optional[DataRecorder] = None):
        """
        Initialize planning stack.

        Args:
            config: Stack configuration (defaults when None)
            recorder: Optional recorder receiving every cycle's output
        """
        self.config = config or PlannerConfig()
        self.recorder = recorder

        self._lock = threading.Lock()
        self._pending_lane: Optional[Lane] = None
        self._pending_obstacles: Optional[List[Obstacle]] = None
        self._pending_config: Optional[PlannerConfig] = None
        self._pending_target_lane: Optional[int] = None

        self.window = LocalLaneWindow(self.config.reference)
        self.planner: Optional[FrenetOptimalPlanner] = None
        self.controller: Optional[TrackingController] = None
        self._build_components()

        self.obstacles: List[Obstacle] = []
        self.current_lane_id = 0
        self.target_lane_id = self.config.planner.target_lane_id
        self.path = OutputPath()
        self.regenerate = True
        self.last_selected: Optional[FrenetPath] = None
        self.last_vehicle_state: Optional[VehicleState] = None
        self.clock: Optional[float] = None
        self.frame_count = 0

    def _build_components(self):
        cfg = self.config
        if self.planner is not None:
            self.planner.close()
        self.planner = FrenetOptimalPlanner(
            sampling=cfg.sampling,
            limits=cfg.limits,
            weights=cfg.cost,
            selection=cfg.selection,
            vehicle_width=cfg.vehicle.width,
            num_workers=cfg.planner.num_workers,
        )
        self.controller = TrackingController(cfg.controller)
        self.window.config = cfg.reference
        self.window.invalidate()

    # ------------------------------------------------------------------
    # Asynchronous inputs (buffered until the next cycle)
    # ------------------------------------------------------------------

    def update_lane(self, lane: Lane):
        """Replace the full lane at the start of the next cycle."""
        with self._lock:
            self._pending_lane = lane

    def update_obstacles(self, obstacles: Sequence[Obstacle],
                         transform: Optional[FrameTransform] = None):
        """Replace the obstacle set at the start of the next cycle."""
        if transform is not None:
            obstacles = [o.transformed(transform) for o in obstacles]
        with self._lock:
            self._pending_obstacles = list(obstacles)

    def apply_config(self, config: PlannerConfig):
        """Swap in a new configuration at the start of the next cycle."""
        with self._lock:
            self._pending_config = config

    def set_target_lane(self, lane_id: int):
        """Request a lane (0 = reference, +1 = left, -1 = right)."""
        if lane_id not in LANE_IDS:
            raise ValueError(f"Unsupported lane id: {lane_id}")
        with self._lock:
            self._pending_target_lane = lane_id

    def _apply_pending(self, inputs: CycleInputs):
        with self._lock:
            lane, self._pending_lane = self._pending_lane, None
            obstacles, self._pending_obstacles = self._pending_obstacles, None
            config, self._pending_config = self._pending_config, None
            target_lane, self._pending_target_lane = self._pending_target_lane, None

        # Inputs handed to advance() are newer than anything buffered
        if inputs.lane is not None:
            lane = inputs.lane
        if inputs.obstacles is not None:
            obstacles = list(inputs.obstacles)
            if inputs.obstacle_transform is not None:
                obstacles = [o.transformed(inputs.obstacle_transform) for o in obstacles]

        if config is not None:
            self.config = config
            self._build_components()
            self.regenerate = True
            logger.info("[PLANNER] Applied new configuration")
        if lane is not None:
            self.window.set_lane(lane)
            self.regenerate = True
            logger.info(f"[PLANNER] New lane with {len(lane)} waypoints")
        if obstacles is not None:
            self.obstacles = obstacles
        if target_lane is not None and target_lane != self.target_lane_id:
            logger.info(f"[PLANNER] Target lane {self.target_lane_id} -> {target_lane}")
            self.target_lane_id = target_lane

    # ------------------------------------------------------------------
    # Planning cycle
    # ------------------------------------------------------------------

    def advance(self, inputs: CycleInputs, now: Optional[float] = None) -> CycleOutput:
        """
        Run one planning cycle.

        Args:
            inputs: Localization plus optional lane/obstacle updates
            now: Cycle clock (defaults to the localization timestamp; a cycle
                without localization advances the clock by one cycle period)

        Returns:
            CycleOutput; on any planning failure the command is the stop command
        """
        started = time.perf_counter()
        self._apply_pending(inputs)

        state = inputs.vehicle_state
        if now is None:
            if state is not None:
                now = state.timestamp
            elif self.clock is not None:
                now = self.clock + self.config.planner.cycle_period
            else:
                now = 0.0
        if state is not None:
            self.last_vehicle_state = state
        else:
            state = self.last_vehicle_state
        self.clock = now

        try:
            self._check_stale(state, now)
            output = self._run_cycle(state, now)
        except PlanningError as e:
            output = self._fail_safe(state, now, e)

        output.cycle_time = time.perf_counter() - started
        self.frame_count += 1
        if self.recorder is not None:
            self.recorder.record_cycle(state, output, self.frame_count)
        return output

    def check_watchdog(self, now: float) -> Optional[CycleOutput]:
        """
        Stop the vehicle if localization went stale between cycles.

        Returns:
            Fail-safe output when stale, None otherwise
        """
        state = self.last_vehicle_state
        try:
            self._check_stale(state, now)
        except StaleInput as e:
            return self._fail_safe(state, now, e)
        return None

    def _check_stale(self, state: Optional[VehicleState], now: float):
        if state is None:
            raise StaleInput("No localization received")
        age = now - state.timestamp
        if age > self.config.planner.stale_timeout:
            raise StaleInput(f"Localization is {age:.2f}s old "
                             f"(timeout {self.config.planner.stale_timeout:.2f}s)")

    def _regenerate_reason(self, state: VehicleState, now: float) -> Optional[str]:
        if self.regenerate:
            return "regenerate_flag"
        if self.path.empty:
            return "empty_path"
        deviation = max_deviation(self.path, state.x, state.y)
        if deviation > self.config.continuity.max_deviation:
            return f"deviation {deviation:.2f}m"
        if self.config.planner.replan_on_collision and \
                self.planner.evaluator.path_collides(
                    self.path.xy(), self.obstacles, times=[p.time - now for p in self.path]):
            return "retained_path_collision"
        return None

    def _sampling_width(self, state: VehicleState) -> SamplingWidth:
        cfg = self.config
        lane_width, left_width, right_width = self.window.lane_widths(state.x, state.y)
        return get_sampling_width(
            self.current_lane_id, self.target_lane_id, cfg.vehicle.width,
            lane_width, left_width, right_width, cfg.sampling.lateral_margin,
            all_lanes=cfg.planner.sample_all_lanes,
        )

    def _update_lane_id(self, selected: FrenetPath, widths: SamplingWidth):
        end_d = selected.end_d
        lane_id = lane_id_for_offset(end_d, widths.lane_width, widths.left_lane_width,
                                     widths.right_lane_width)
        if lane_id != self.current_lane_id and offset_in_lane(
                end_d, lane_id, widths.lane_width, widths.left_lane_width, widths.right_lane_width):
            logger.info(f"[PLANNER] Current lane {self.current_lane_id} -> {lane_id}")
            self.current_lane_id = lane_id

    def _run_cycle(self, state: VehicleState, now: float) -> CycleOutput:
        cfg = self.config
        if not self.window.has_lane:
            raise InputInvalid("No lane waypoints received")

        reference_path, _ = self.window.update(state.x, state.y)
        widths = self._sampling_width(state)
        self.path = trim_passed(self.path, state.x, state.y, cfg.continuity.min_size)

        reason = self._regenerate_reason(state, now)
        start = None
        start_time = now
        if reason is not None:
            logger.info(f"[PLANNER] Full replan ({reason})")
            start = to_frenet(state, reference_path, cfg.reference)
            self.path = OutputPath()
        elif self.path.needs_extension or len(self.path) < cfg.continuity.min_size:
            tail = self.path[-1]
            start = point_to_frenet(tail, reference_path, cfg.reference)
            start_time = max(tail.time, now)

        candidates = []
        selected = None
        diagnostics = {}
        if start is not None:
            result = self.planner.plan(
                start, reference_path, widths, self.obstacles,
                self.current_lane_id, self.target_lane_id,
                previous=self.last_selected,
                time_offset=start_time - now,
            )
            candidates = result.candidates
            selected = result.selected
            self.path = concat(self.path, selected, cfg.continuity.max_size, cfg.continuity.min_size,
                               cfg.continuity.max_separation, cfg.continuity.min_separation,
                               start_time=start_time)
            self.last_selected = selected
            self._update_lane_id(selected, widths)
            self.regenerate = False
            diagnostics = self.planner.get_last_generation_diagnostics()
            logger.debug(f"[PLANNER] {result.feasible_count}/{len(candidates)} feasible, "
                         f"end_d={selected.end_d:.2f} end_speed={selected.end_speed:.2f} "
                         f"path={len(self.path)}")

        command = self.controller.command(self.path, front_axle_state(state, cfg.vehicle.wheelbase))
        command.timestamp = now
        return CycleOutput(
            timestamp=now,
            command=command,
            path=self.path.copy(),
            candidates=candidates,
            selected=selected,
            reference_path=reference_path,
            sampling_width=(widths.left, widths.right),
            current_lane_id=self.current_lane_id,
            target_lane_id=self.target_lane_id,
            replanned=reason is not None,
            regenerate=self.regenerate,
            diagnostics=diagnostics,
        )

    def _fail_safe(self, state: Optional[VehicleState], now: float, error: PlanningError) -> CycleOutput:
        logger.warning(f"[PLANNER] {error.reason}: {error} - issuing stop command")
        candidates = self.planner.last_candidates if isinstance(error, NoFeasibleTrajectory) else []
        self.path = OutputPath()
        self.regenerate = True
        self.last_selected = None
        command = self.controller.stop_command(state, now)
        return CycleOutput(
            timestamp=now,
            command=command,
            path=OutputPath(),
            candidates=list(candidates),
            reference_path=self.window.reference_path,
            current_lane_id=self.current_lane_id,
            target_lane_id=self.target_lane_id,
            regenerate=True,
            failure_reason=error.reason,
        )

    def close(self):
        if self.planner is not None:
            self.planner.close()


# ----------------------------------------------------------------------
# Closed-loop simulation
# ----------------------------------------------------------------------

def build_scenario_lane(road: str, length: float = 400.0, spacing: float = 1.0,
                        lane_width: float = 3.5, neighbour_width: float = 3.5) -> Lane:
    """Lane waypoints for the simulation scenarios ("straight" or "curve")."""
    if road == "straight":
        xs = np.arange(0.0, length + spacing, spacing)
        points = np.column_stack((xs, np.zeros_like(xs)))
    elif road == "curve":
        # Straight lead-in, then a 90 degree left arc, then straight again
        radius = 80.0
        lead = np.arange(0.0, 50.0, spacing)
        arc_angles = np.arange(0.0, math.pi / 2, spacing / radius)
        arc = np.column_stack((50.0 + radius * np.sin(arc_angles),
                               radius * (1.0 - np.cos(arc_angles))))
        exit_y = np.arange(radius, radius + length, spacing)
        points = np.vstack((
            np.column_stack((lead, np.zeros_like(lead))),
            arc,
            np.column_stack((np.full_like(exit_y, 50.0 + radius), exit_y)),
        ))
    else:
        raise ValueError(f"Unknown road type: {road}")
    return Lane.from_xy(points, lane_width, neighbour_width, neighbour_width)


def run_simulation(stack: PlannerStack, road: str = "straight", cycles: int = 300,
                   dt: float = 0.1, initial_speed: float = 8.0,
                   obstacle_distance: Optional[float] = None) -> List[CycleOutput]:
    """Drive the stack in closed loop with a kinematic bicycle model."""
    cfg = stack.config
    model = BicycleModel(cfg.vehicle.wheelbase, cfg.controller.max_steering_angle)
    lane = build_scenario_lane(road)

    obstacles = []
    if obstacle_distance is not None:
        half_len, half_wid = 2.25, 1.0
        obstacles.append(Obstacle(
            x=obstacle_distance, y=0.0, yaw=0.0, obstacle_id=1,
            footprint=((-half_len, -half_wid), (half_len, -half_wid),
                       (half_len, half_wid), (-half_len, half_wid)),
        ))

    state = VehicleState(timestamp=0.0, x=0.0, y=0.0, heading=0.0, speed=initial_speed)
    outputs = []
    for i in range(cycles):
        inputs = CycleInputs(
            vehicle_state=state,
            lane=lane if i == 0 else None,
            obstacles=obstacles if i == 0 else None,
        )
        output = stack.advance(inputs)
        outputs.append(output)
        command: ControlCommand = output.command
        if i % 20 == 0:
            logger.info(f"[SIM] t={state.timestamp:.1f}s x={state.x:.1f} y={state.y:.1f} "
                        f"v={state.speed:.2f} lane={output.current_lane_id} "
                        f"steer={command.steering_angle:.3f} accel={command.acceleration:.2f} "
                        f"status={output.failure_reason or 'ok'}")
        state = model.step(state, command.acceleration, command.steering_angle, dt)
    return outputs


def setup_logging(level: str = "INFO"):
    # Ensure tmp/logs directory exists
    log_dir = Path(__file__).parent / 'tmp' / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'planner_stack.log'

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(str(log_file))
        ]
    )


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Run the Frenet planning stack in closed-loop simulation')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration YAML file (default: config/planner_config.yaml)')
    parser.add_argument('--road', type=str, choices=['straight', 'curve'], default='straight',
                        help='Scenario road geometry')
    parser.add_argument('--cycles', type=int, default=300,
                        help='Number of planning cycles to simulate')
    parser.add_argument('--dt', type=float, default=0.1,
                        help='Simulation time step (seconds)')
    parser.add_argument('--initial-speed', type=float, default=8.0,
                        help='Initial vehicle speed (m/s)')
    parser.add_argument('--obstacle', type=float, default=None,
                        help='Place a static obstacle on the lane centre this far ahead (meters)')
    parser.add_argument('--target-lane', type=int, choices=list(LANE_IDS), default=None,
                        help='Target lane id (0 = reference, 1 = left, -1 = right)')
    parser.add_argument('--record', action='store_true',
                        help='Record cycles to HDF5')
    parser.add_argument('--recording_dir', type=str, default='data/recordings',
                        help='Directory for recordings')
    parser.add_argument('--log-level', type=str, default='INFO',
                        help='Logging level')

    args = parser.parse_args()
    setup_logging(args.log_level)

    config = PlannerConfig.from_dict(load_config(args.config))
    if args.target_lane is not None:
        config = replace(config, planner=replace(config.planner, target_lane_id=args.target_lane))

    recorder = DataRecorder(args.recording_dir) if args.record else None
    stack = PlannerStack(config, recorder=recorder)
    try:
        outputs = run_simulation(stack, road=args.road, cycles=args.cycles, dt=args.dt,
                                 initial_speed=args.initial_speed, obstacle_distance=args.obstacle)
    finally:
        stack.close()
        if recorder is not None:
            recorder.close()

    failures = [o for o in outputs if not o.ok]
    replans = sum(1 for o in outputs if o.replanned)
    cycle_ms = np.array([o.cycle_time for o in outputs]) * 1000.0
    logger.info(f"[SIM] {len(outputs)} cycles, {replans} full replans, {len(failures)} failures, "
                f"cycle time mean={cycle_ms.mean():.1f}ms max={cycle_ms.max():.1f}ms")


if __name__ == "__main__":
    main()
