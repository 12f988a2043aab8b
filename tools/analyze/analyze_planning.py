"""
Analyze a planning stack recording.

Reports:
1. Planning health (failures by reason, full replans, feasible candidate counts)
2. Tracking quality (cross-track and heading error, steering activity)
3. Cycle timing

Usage:
    python tools/analyze/analyze_planning.py <recording_file>
    python tools/analyze/analyze_planning.py --latest
"""

import sys
from collections import Counter
from pathlib import Path
from typing import Dict, Optional
import argparse

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from data.replay import DataReplay


def load_planning_data(recording_file: str) -> Dict:
    """Load vehicle, control and planning arrays from a recording."""
    with DataReplay(recording_file) as replay:
        states = list(replay.get_vehicle_states())
        commands = list(replay.get_control_commands())
        records = list(replay.get_planning_records())

    return {
        'x': np.array([s.x for s in states]),
        'y': np.array([s.y for s in states]),
        'speed': np.array([s.speed for s in states]),
        'timestamps': np.array([s.timestamp for s in states]),
        'steering': np.array([c.steering_angle for c in commands]),
        'acceleration': np.array([c.acceleration for c in commands]),
        'cross_track_error': np.array([np.nan if c.cross_track_error is None else c.cross_track_error
                                       for c in commands]),
        'heading_error': np.array([np.nan if c.heading_error is None else c.heading_error
                                   for c in commands]),
        'is_stop': np.array([c.is_stop for c in commands]),
        'records': records,
    }


def analyze_planning_health(data: Dict) -> Dict:
    """Failure reasons, replans and candidate feasibility."""
    print("\n" + "=" * 80)
    print("ANALYSIS 1: Planning Health")
    print("=" * 80)

    records = data['records']
    if not records:
        print("No planning records found")
        return {'status': 'FAIL'}

    reasons = Counter(r['failure_reason'] for r in records if r['failure_reason'])
    replans = sum(1 for r in records if r['replanned'])
    planned = [r for r in records if r['num_candidates'] > 0]
    feasible_ratio = [r['num_feasible'] / r['num_candidates'] for r in planned]

    print(f"  Cycles: {len(records)}")
    print(f"  Full replans: {replans}")
    print(f"  Planning passes: {len(planned)}")
    if feasible_ratio:
        print(f"  Feasible candidates: mean {np.mean(feasible_ratio) * 100:.1f}%, "
              f"min {np.min(feasible_ratio) * 100:.1f}%")
    if reasons:
        print("  Failures:")
        for reason, count in reasons.most_common():
            print(f"    {reason}: {count}")
    else:
        print("  No failures")

    lane_changes = sum(1 for a, b in zip(records, records[1:])
                       if a['current_lane_id'] != b['current_lane_id'])
    print(f"  Lane changes: {lane_changes}")

    return {
        'status': 'PASS' if not reasons else 'WARN',
        'failures': dict(reasons),
        'replans': replans,
        'lane_changes': lane_changes,
    }


def analyze_tracking(data: Dict) -> Dict:
    """Cross-track/heading error statistics."""
    print("\n" + "=" * 80)
    print("ANALYSIS 2: Tracking")
    print("=" * 80)

    cte = data['cross_track_error']
    valid = ~np.isnan(cte)
    if not np.any(valid):
        print("No tracking data (every command was a stop command)")
        return {'status': 'FAIL'}

    rmse = float(np.sqrt(np.mean(cte[valid] ** 2)))
    max_cte = float(np.max(np.abs(cte[valid])))
    heading = data['heading_error'][valid]
    steering_rate = np.abs(np.diff(data['steering'])) if len(data['steering']) > 1 else np.zeros(1)

    print(f"  Cross-track RMSE: {rmse:.3f}m (max {max_cte:.3f}m)")
    print(f"  Heading error RMSE: {np.sqrt(np.mean(heading ** 2)):.4f}rad")
    print(f"  Steering change per cycle: mean {np.mean(steering_rate):.4f}rad, "
          f"max {np.max(steering_rate):.4f}rad")
    print(f"  Stop commands: {int(np.sum(data['is_stop']))}")

    return {'status': 'PASS' if rmse < 0.3 else 'WARN', 'rmse': rmse, 'max_cte': max_cte}


def analyze_timing(data: Dict) -> Dict:
    """Cycle time statistics."""
    print("\n" + "=" * 80)
    print("ANALYSIS 3: Cycle Timing")
    print("=" * 80)

    cycle_ms = np.array([r['cycle_time'] for r in data['records']]) * 1000.0
    if len(cycle_ms) == 0:
        return {'status': 'FAIL'}
    print(f"  Mean: {np.mean(cycle_ms):.2f}ms  P95: {np.percentile(cycle_ms, 95):.2f}ms  "
          f"Max: {np.max(cycle_ms):.2f}ms")
    return {'status': 'PASS', 'mean_ms': float(np.mean(cycle_ms))}


def create_visualizations(data: Dict, output_dir: Path):
    """Plot the driven path, speed and tracking errors."""
    output_dir.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(10, 8))
    for record in data['records'][::10]:
        if len(record['path_x']):
            ax.plot(record['path_x'], record['path_y'], color='tab:blue', alpha=0.2, linewidth=1)
    ax.plot(data['x'], data['y'], color='black', linewidth=2, label='Vehicle')
    ax.set_xlabel('x (m)')
    ax.set_ylabel('y (m)')
    ax.set_aspect('equal', adjustable='datalim')
    ax.legend()
    ax.set_title('Driven path and committed output paths')
    plt.tight_layout()
    plt.savefig(output_dir / 'planning_paths.png', dpi=150)
    plt.close()

    fig, (ax1, ax2, ax3) = plt.subplots(3, 1, figsize=(12, 9), sharex=True)
    t = data['timestamps']
    ax1.plot(t, data['speed'])
    ax1.set_ylabel('speed (m/s)')
    n = min(len(t), len(data['cross_track_error']))
    ax2.plot(t[:n], data['cross_track_error'][:n])
    ax2.set_ylabel('cross-track (m)')
    ax3.plot(t[:n], data['steering'][:n])
    ax3.set_ylabel('steering (rad)')
    ax3.set_xlabel('time (s)')
    plt.tight_layout()
    plt.savefig(output_dir / 'planning_tracking.png', dpi=150)
    plt.close()
    print(f"\nPlots saved to {output_dir}")


def find_latest_recording(recordings_dir: str = "data/recordings") -> Optional[Path]:
    recordings = sorted(Path(recordings_dir).glob("*.h5"), key=lambda p: p.stat().st_mtime)
    return recordings[-1] if recordings else None


def main():
    parser = argparse.ArgumentParser(
        description="Analyze a planning stack recording",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("recording", nargs='?', default=None,
                        help="Recording file (.h5)")
    parser.add_argument("--latest", action="store_true",
                        help="Analyze the most recent recording")
    parser.add_argument("--output-dir", type=str, default="tmp/planning_analysis",
                        help="Directory for plots")
    parser.add_argument("--no-plots", action="store_true",
                        help="Skip plot generation")
    args = parser.parse_args()

    recording = args.recording
    if recording is None and args.latest:
        recording = find_latest_recording()
    if recording is None:
        parser.error("Provide a recording file or --latest")

    data = load_planning_data(str(recording))
    analyze_planning_health(data)
    analyze_tracking(data)
    analyze_timing(data)
    if not args.no_plots:
        create_visualizations(data, Path(args.output_dir))


if __name__ == '__main__':
    main()
