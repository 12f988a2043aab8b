"""
Path continuity: stitching new trajectories onto the committed output path.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np

from .models.trajectory import FrenetPath, Path, TrajectoryPoint
from .utils import normalize_angle

logger = logging.getLogger(__name__)


@dataclass
class ContinuityConfig:
    """Output path buffer bounds."""
    max_size: int = 100  # waypoints
    min_size: int = 30  # extend the path once it holds fewer waypoints
    max_separation: float = 1.5  # m between consecutive waypoints
    min_separation: float = 0.2  # m between consecutive waypoints
    max_deviation: float = 1.5  # m from the path before a full replan


def _interpolate(a: TrajectoryPoint, b: TrajectoryPoint, ratio: float) -> TrajectoryPoint:
    def lerp(u, v):
        return u + (v - u) * ratio

    return TrajectoryPoint(
        x=lerp(a.x, b.x),
        y=lerp(a.y, b.y),
        heading=normalize_angle(a.heading + normalize_angle(b.heading - a.heading) * ratio),
        velocity=lerp(a.velocity, b.velocity),
        curvature=lerp(a.curvature, b.curvature),
        acceleration=lerp(a.acceleration, b.acceleration),
        s=lerp(a.s, b.s),
        d=lerp(a.d, b.d),
        time=lerp(a.time, b.time),
    )


def _distance(a: TrajectoryPoint, b: TrajectoryPoint) -> float:
    return math.hypot(b.x - a.x, b.y - a.y)


def concat(existing: Optional[Path], new_trajectory: Union[Path, FrenetPath],
           max_size: int, min_size: int, max_separation: float,
           min_separation: float, start_time: float = 0.0) -> Path:
    """
    Append a newly selected trajectory to the committed path.

    Only points of the new trajectory lying ahead of the existing path's last
    point (along its heading) are appended. A point closer than
    ``min_separation`` to the last kept point is merged into it (dropped); a
    gap wider than ``max_separation`` is filled by linear interpolation. The
    result keeps at most ``max_size`` points (oldest dropped) and is flagged
    ``needs_extension`` when it holds fewer than ``min_size``. A FrenetPath
    is timed from ``start_time``.
    """
    if max_separation <= min_separation:
        raise ValueError(f"max_separation ({max_separation}) must exceed "
                         f"min_separation ({min_separation})")

    points: List[TrajectoryPoint] = list(existing.points) if existing is not None else []
    if isinstance(new_trajectory, FrenetPath):
        incoming = new_trajectory.to_points(start_time)
    else:
        incoming = list(new_trajectory.points)

    if points:
        last = points[-1]
        cos_h, sin_h = math.cos(last.heading), math.sin(last.heading)
        incoming = [p for p in incoming
                    if (p.x - last.x) * cos_h + (p.y - last.y) * sin_h > 0.0]

    for point in incoming:
        if not points:
            points.append(point)
            continue
        last = points[-1]
        gap = _distance(last, point)
        if gap < min_separation:
            continue
        if gap > max_separation:
            steps = int(math.ceil(gap / max_separation))
            for k in range(1, steps):
                points.append(_interpolate(last, point, k / steps))
        points.append(point)

    if len(points) > max_size:
        logger.debug(f"[CONTINUITY] Dropping {len(points) - max_size} oldest waypoints")
        points = points[len(points) - max_size:]
    return Path(points, needs_extension=len(points) < min_size)


def _nearest_index(path: Path, x: float, y: float) -> int:
    xy = path.xy()
    return int(np.argmin(np.hypot(xy[:, 0] - x, xy[:, 1] - y)))


def trim_passed(path: Path, x: float, y: float, min_size: Optional[int] = None) -> Path:
    """Drop the waypoints before the one nearest (x, y)."""
    if path.empty:
        return Path([], needs_extension=True)
    start = _nearest_index(path, x, y)
    points = path.points[start:]
    needs_extension = path.needs_extension if min_size is None else len(points) < min_size
    return Path(points, needs_extension=needs_extension)


def max_deviation(path: Path, x: float, y: float) -> float:
    """Distance from (x, y) to the path polyline (inf for an empty path)."""
    if path.empty:
        return float("inf")
    xy = path.xy()
    p = np.array([x, y])
    if len(xy) == 1:
        return float(np.linalg.norm(p - xy[0]))
    a = xy[:-1]
    seg = xy[1:] - a
    seg_len2 = np.maximum(np.sum(seg * seg, axis=1), 1e-12)
    u = np.clip(np.sum((p - a) * seg, axis=1) / seg_len2, 0.0, 1.0)
    closest = a + seg * u[:, None]
    return float(np.min(np.hypot(closest[:, 0] - x, closest[:, 1] - y)))
