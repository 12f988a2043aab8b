"""
Data replay utility for planning stack recordings.
Reads recorded cycles back for debugging and analysis.
"""

import json
import h5py
import numpy as np
from pathlib import Path
from typing import Iterator, Optional

from .formats.data_format import ControlCommand, VehicleState


def _opt(value) -> Optional[float]:
    value = float(value)
    return None if np.isnan(value) else value


class DataReplay:
    """Replay recorded planning stack data."""

    def __init__(self, recording_file: str):
        """
        Initialize data replay.

        Args:
            recording_file: Path to HDF5 recording file
        """
        self.recording_file = Path(recording_file)
        if not self.recording_file.exists():
            raise FileNotFoundError(f"Recording file not found: {recording_file}")

        self.h5_file = h5py.File(self.recording_file, 'r')
        self._load_metadata()

    def _load_metadata(self):
        """Load recording metadata."""
        if "metadata" in self.h5_file.attrs:
            self.metadata = json.loads(self.h5_file.attrs["metadata"])
        else:
            self.metadata = {}

    def __len__(self) -> int:
        if "planning/timestamps" not in self.h5_file:
            return 0
        return int(self.h5_file["planning/timestamps"].shape[0])

    def get_vehicle_states(self) -> Iterator[VehicleState]:
        """
        Get vehicle states iterator.

        Yields:
            VehicleState per recorded cycle
        """
        if "vehicle/timestamps" not in self.h5_file:
            return

        timestamps = self.h5_file["vehicle/timestamps"][:]
        positions = self.h5_file["vehicle/position"][:]
        headings = self.h5_file["vehicle/heading"][:]
        speeds = self.h5_file["vehicle/speed"][:]
        accelerations = self.h5_file["vehicle/acceleration"][:]
        yaw_rates = self.h5_file["vehicle/yaw_rate"][:]

        for i in range(len(timestamps)):
            yield VehicleState(
                timestamp=float(timestamps[i]),
                x=float(positions[i][0]),
                y=float(positions[i][1]),
                heading=float(headings[i]),
                speed=float(speeds[i]),
                acceleration=float(accelerations[i]),
                yaw_rate=float(yaw_rates[i]),
            )

    def get_control_commands(self) -> Iterator[ControlCommand]:
        """
        Get control commands iterator.

        Yields:
            ControlCommand per recorded cycle
        """
        if "control/timestamps" not in self.h5_file:
            return

        group = self.h5_file["control"]
        timestamps = group["timestamps"][:]
        for i in range(len(timestamps)):
            yield ControlCommand(
                timestamp=float(timestamps[i]),
                acceleration=float(group["acceleration"][i]),
                steering_angle=float(group["steering_angle"][i]),
                target_speed=float(group["target_speed"][i]),
                is_stop=bool(group["is_stop"][i]),
                heading_error=_opt(group["heading_error"][i]),
                cross_track_error=_opt(group["cross_track_error"][i]),
                speed_error=_opt(group["speed_error"][i]),
            )

    def get_planning_records(self) -> Iterator[dict]:
        """
        Get planning outputs iterator.

        Yields:
            Dictionary with per-cycle planning data
        """
        if "planning/timestamps" not in self.h5_file:
            return

        group = self.h5_file["planning"]
        timestamps = group["timestamps"][:]
        for i in range(len(timestamps)):
            reason = group["failure_reason"][i]
            if isinstance(reason, bytes):
                reason = reason.decode("utf-8")
            yield {
                "timestamp": float(timestamps[i]),
                "frame_id": int(group["frame_ids"][i]),
                "path_x": np.asarray(group["path_x"][i]),
                "path_y": np.asarray(group["path_y"][i]),
                "path_speed": np.asarray(group["path_speed"][i]),
                "selected_x": np.asarray(group["selected_x"][i]),
                "selected_y": np.asarray(group["selected_y"][i]),
                "selected_cost": float(group["selected_cost"][i]),
                "candidate_end_d": np.asarray(group["candidate_end_d"][i]),
                "candidate_cost": np.asarray(group["candidate_cost"][i]),
                "num_candidates": int(group["num_candidates"][i]),
                "num_feasible": int(group["num_feasible"][i]),
                "sampling_width": group["sampling_width"][i].tolist(),
                "current_lane_id": int(group["current_lane_id"][i]),
                "target_lane_id": int(group["target_lane_id"][i]),
                "replanned": bool(group["replanned"][i]),
                "regenerate": bool(group["regenerate"][i]),
                "cycle_time": float(group["cycle_time"][i]),
                "failure_reason": reason or None,
            }

    def close(self):
        """Close recording file."""
        self.h5_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
