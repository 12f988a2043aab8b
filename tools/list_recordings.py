"""
List planning stack recordings with their metadata.
"""

import json
from datetime import datetime
from pathlib import Path

import h5py


def list_recordings(recordings_dir: str = "data/recordings", show_all: bool = False):
    """
    List recordings with frame counts and failure summary.

    Args:
        recordings_dir: Directory containing recordings
        show_all: If True, show all recordings. If False, show only recent ones.
    """
    recordings_path = Path(recordings_dir)
    if not recordings_path.exists():
        print(f"Recordings directory not found: {recordings_dir}")
        return

    recordings = sorted(recordings_path.glob("*.h5"),
                        key=lambda p: p.stat().st_mtime, reverse=True)

    if not recordings:
        print("No recordings found!")
        return

    if not show_all:
        recordings = recordings[:10]  # Show last 10

    print("=" * 80)
    print(f"RECORDINGS ({len(recordings)} shown)")
    print("=" * 80)
    print(f"{'Name':<35} {'Cycles':<8} {'Failures':<10} {'Date':<20}")
    print("-" * 80)

    for rec in recordings:
        try:
            with h5py.File(rec, 'r') as f:
                metadata = {}
                if "metadata" in f.attrs:
                    metadata = json.loads(f.attrs["metadata"])

                num_frames = metadata.get("total_frames", len(f.get("planning/timestamps", [])))
                failures = 0
                if "planning/failure_reason" in f:
                    failures = sum(1 for r in f["planning/failure_reason"][:] if len(r) > 0)
                start_time = metadata.get("recording_start_time", "")

                if start_time:
                    try:
                        dt = datetime.fromisoformat(start_time)
                        date_str = dt.strftime("%Y-%m-%d %H:%M")
                    except ValueError:
                        date_str = start_time[:16]
                else:
                    date_str = "unknown"

                print(f"{rec.stem:<35} {num_frames:<8} {failures:<10} {date_str:<20}")

        except (OSError, ValueError) as e:
            print(f"{rec.stem:<35} {'ERROR':<8} {'-':<10} {str(e)[:20]}")

    print("=" * 80)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="List planning stack recordings")
    parser.add_argument("--all", action="store_true",
                        help="Show all recordings (default: last 10)")
    parser.add_argument("--dir", type=str, default="data/recordings",
                        help="Recordings directory")

    args = parser.parse_args()

    list_recordings(args.dir, show_all=args.all)
