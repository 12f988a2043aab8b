"""
Data recorder for the planning stack.
Records vehicle state, control commands and per-cycle planning outputs.
"""

import h5py
import numpy as np
import json
import time
import threading
import queue
import logging
from pathlib import Path
from typing import Optional, List
from datetime import datetime

from .formats.data_format import CycleOutput, RecordingFrame, VehicleState

logger = logging.getLogger(__name__)

_FLOAT_VLEN = h5py.vlen_dtype(np.float32)


def _opt(value: Optional[float]) -> float:
    return float("nan") if value is None else float(value)


class DataRecorder:
    """Records planning stack data to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 flush_every: int = 30):
        """
        Initialize data recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            flush_every: Frames buffered before an asynchronous flush
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"recording_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"

        self.h5_file = h5py.File(self.output_file, 'w')
        self._create_datasets()

        # Buffer for frames
        self.frame_buffer: List[RecordingFrame] = []
        self.frame_buffer_lock = threading.Lock()
        self.flush_queue: "queue.Queue[List[RecordingFrame]]" = queue.Queue()
        self.flush_stop_event = threading.Event()
        self.frame_count = 0
        self.flush_every = max(1, int(flush_every))
        self.flush_queue_warn_threshold = 5
        self.flush_thread = threading.Thread(
            target=self._flush_worker,
            name="DataRecorderFlushWorker",
            daemon=True,
        )
        self.flush_thread.start()

        # Metadata
        self.metadata = {
            "recording_start_time": datetime.now().isoformat(),
            "recording_name": recording_name,
            "recording_type": "planner_stack",
        }

    def _create_datasets(self):
        """Create HDF5 datasets for data storage."""
        # Use extensible datasets (maxshape allows resizing)
        max_shape = (None,)

        def scalar(name, dtype=np.float64):
            self.h5_file.create_dataset(name, shape=(0,), maxshape=max_shape, dtype=dtype)

        def vlen(name):
            self.h5_file.create_dataset(name, shape=(0,), maxshape=max_shape, dtype=_FLOAT_VLEN)

        # Vehicle state
        scalar("vehicle/timestamps")
        self.h5_file.create_dataset("vehicle/position", shape=(0, 2), maxshape=(None, 2),
                                    dtype=np.float64)
        for name in ("heading", "speed", "acceleration", "yaw_rate"):
            scalar(f"vehicle/{name}", np.float32)

        # Control commands
        scalar("control/timestamps")
        for name in ("acceleration", "steering_angle", "target_speed",
                     "heading_error", "cross_track_error", "speed_error"):
            scalar(f"control/{name}", np.float32)
        scalar("control/is_stop", np.int8)

        # Planning outputs
        scalar("planning/timestamps")
        scalar("planning/frame_ids", np.int32)
        for name in ("path_x", "path_y", "path_speed", "selected_x", "selected_y",
                     "candidate_end_d", "candidate_cost"):
            vlen(f"planning/{name}")
        self.h5_file.create_dataset("planning/sampling_width", shape=(0, 2), maxshape=(None, 2),
                                    dtype=np.float32)
        scalar("planning/selected_cost", np.float32)
        scalar("planning/num_candidates", np.int32)
        scalar("planning/num_feasible", np.int32)
        scalar("planning/current_lane_id", np.int8)
        scalar("planning/target_lane_id", np.int8)
        scalar("planning/replanned", np.int8)
        scalar("planning/regenerate", np.int8)
        scalar("planning/cycle_time", np.float32)
        self.h5_file.create_dataset("planning/failure_reason", shape=(0,), maxshape=max_shape,
                                    dtype=h5py.string_dtype(encoding='utf-8'))

    def record_frame(self, frame: RecordingFrame):
        """
        Record a complete frame of data.

        Args:
            frame: RecordingFrame containing all data
        """
        with self.frame_buffer_lock:
            self.frame_buffer.append(frame)
            self.frame_count += 1

            # Flush buffer periodically (async)
            if len(self.frame_buffer) >= self.flush_every:
                frames = self.frame_buffer
                self.frame_buffer = []
                self.flush_queue.put(frames)

    def record_cycle(self, vehicle_state: Optional[VehicleState], output: CycleOutput,
                     frame_id: Optional[int] = None):
        """Record one planning cycle."""
        self.record_frame(RecordingFrame(
            timestamp=output.timestamp,
            frame_id=self.frame_count if frame_id is None else frame_id,
            vehicle_state=vehicle_state,
            control_command=output.command,
            cycle_output=output,
        ))

    def flush(self):
        """Flush buffered frames to disk (asynchronously)."""
        with self.frame_buffer_lock:
            if not self.frame_buffer:
                return
            frames = self.frame_buffer
            self.frame_buffer = []
        self.flush_queue.put(frames)

    def _flush_worker(self):
        while not self.flush_stop_event.is_set() or not self.flush_queue.empty():
            try:
                frames = self.flush_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if self.flush_queue.qsize() > self.flush_queue_warn_threshold:
                logger.warning(
                    "[RECORDER_QUEUE_BACKLOG] size=%d threshold=%d",
                    self.flush_queue.qsize(),
                    self.flush_queue_warn_threshold,
                )
            try:
                self._flush_frames(frames)
            except Exception as e:
                logger.error(f"[RECORDER] Failed to write {len(frames)} frames: {e}", exc_info=True)
            finally:
                self.flush_queue.task_done()

    def _flush_frames(self, frames: List[RecordingFrame]):
        if not frames:
            return
        flush_start = time.time()
        vehicle_frames = [f for f in frames if f.vehicle_state is not None]
        control_frames = [f for f in frames if f.control_command is not None]
        planning_frames = [f for f in frames if f.cycle_output is not None]

        if vehicle_frames:
            self._write_vehicle_states(vehicle_frames)
        if control_frames:
            self._write_control_commands(control_frames)
        if planning_frames:
            self._write_planning_outputs(planning_frames)
        self.h5_file.flush()
        logger.debug(f"[RECORDER] Flushed {len(frames)} frames in {time.time() - flush_start:.3f}s")

    def _append(self, name: str, values):
        dataset = self.h5_file[name]
        current_size = dataset.shape[0]
        new_size = current_size + len(values)
        dataset.resize((new_size,) + dataset.shape[1:])
        if dataset.dtype.kind == "O" and h5py.check_string_dtype(dataset.dtype) is None:
            for i, value in enumerate(values):
                dataset[current_size + i] = np.asarray(value, dtype=np.float32)
        else:
            dataset[current_size:] = values

    def _write_vehicle_states(self, frames: List[RecordingFrame]):
        """Write vehicle states to HDF5."""
        states = [f.vehicle_state for f in frames]
        self._append("vehicle/timestamps", [s.timestamp for s in states])
        self._append("vehicle/position", np.array([[s.x, s.y] for s in states], dtype=np.float64))
        self._append("vehicle/heading", [s.heading for s in states])
        self._append("vehicle/speed", [s.speed for s in states])
        self._append("vehicle/acceleration", [s.acceleration for s in states])
        self._append("vehicle/yaw_rate", [s.yaw_rate for s in states])

    def _write_control_commands(self, frames: List[RecordingFrame]):
        """Write control commands to HDF5."""
        commands = [f.control_command for f in frames]
        self._append("control/timestamps", [c.timestamp for c in commands])
        self._append("control/acceleration", [c.acceleration for c in commands])
        self._append("control/steering_angle", [c.steering_angle for c in commands])
        self._append("control/target_speed", [c.target_speed for c in commands])
        self._append("control/heading_error", [_opt(c.heading_error) for c in commands])
        self._append("control/cross_track_error", [_opt(c.cross_track_error) for c in commands])
        self._append("control/speed_error", [_opt(c.speed_error) for c in commands])
        self._append("control/is_stop", [1 if c.is_stop else 0 for c in commands])

    def _write_planning_outputs(self, frames: List[RecordingFrame]):
        """Write planning outputs to HDF5."""
        outputs = [f.cycle_output for f in frames]
        self._append("planning/timestamps", [o.timestamp for o in outputs])
        self._append("planning/frame_ids", [f.frame_id for f in frames])

        path_x, path_y, path_speed = [], [], []
        selected_x, selected_y, selected_cost = [], [], []
        end_d, costs, feasible = [], [], []
        widths = []
        for output in outputs:
            points = output.path.points if output.path is not None else []
            path_x.append([p.x for p in points])
            path_y.append([p.y for p in points])
            path_speed.append([p.velocity for p in points])
            if output.selected is not None:
                selected_x.append(output.selected.x)
                selected_y.append(output.selected.y)
                selected_cost.append(output.selected.cost)
            else:
                selected_x.append([])
                selected_y.append([])
                selected_cost.append(float("nan"))
            end_d.append([c.end_d for c in output.candidates])
            costs.append([c.cost for c in output.candidates])
            feasible.append(sum(1 for c in output.candidates if c.feasible))
            widths.append(output.sampling_width if output.sampling_width is not None
                          else (float("nan"), float("nan")))

        self._append("planning/path_x", path_x)
        self._append("planning/path_y", path_y)
        self._append("planning/path_speed", path_speed)
        self._append("planning/selected_x", selected_x)
        self._append("planning/selected_y", selected_y)
        self._append("planning/selected_cost", selected_cost)
        self._append("planning/candidate_end_d", end_d)
        self._append("planning/candidate_cost", costs)
        self._append("planning/num_candidates", [len(o.candidates) for o in outputs])
        self._append("planning/num_feasible", feasible)
        self._append("planning/sampling_width", np.array(widths, dtype=np.float32))
        self._append("planning/current_lane_id", [o.current_lane_id for o in outputs])
        self._append("planning/target_lane_id", [o.target_lane_id for o in outputs])
        self._append("planning/replanned", [1 if o.replanned else 0 for o in outputs])
        self._append("planning/regenerate", [1 if o.regenerate else 0 for o in outputs])
        self._append("planning/cycle_time", [o.cycle_time for o in outputs])
        self._append("planning/failure_reason", [o.failure_reason or "" for o in outputs])

    def close(self):
        """Close the recording file."""
        try:
            with self.frame_buffer_lock:
                if self.frame_buffer:
                    frames = self.frame_buffer
                    self.frame_buffer = []
                    self.flush_queue.put(frames)
            self.flush_stop_event.set()
            self.flush_thread.join(timeout=5.0)
        except Exception as e:
            logger.error(f"Error during final flush: {e}", exc_info=True)
            # Continue to close the file even if flush fails

        # Save metadata
        self.metadata["recording_end_time"] = datetime.now().isoformat()
        self.metadata["total_frames"] = self.frame_count

        try:
            metadata_str = json.dumps(self.metadata, indent=2)
            self.h5_file.attrs["metadata"] = metadata_str
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to save metadata: {e}")

        self.h5_file.close()
        logger.info(f"[RECORDER] Recording saved to: {self.output_file}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
