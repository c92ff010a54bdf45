import numpy as np

from . import parameters
from .errors import InvalidParametersError


def catmull_rom_point(p0, p1, p2, p3, t: float) -> np.ndarray:
    """Evaluate the uniform Catmull-Rom segment between p1 and p2 at t in [0, 1]"""
    t2 = t * t
    t3 = t2 * t
    return 0.5 * ((2.0 * p1) +
                  (-p0 + p2) * t +
                  (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2 +
                  (-p0 + 3.0 * p1 - 3.0 * p2 + p3) * t3)


def smooth_path(raw_points, subdivisions: int = parameters.SUBDIVISIONS) -> np.ndarray:
    """Smooth a voxel-grid path using Catmull-Rom splines

    The raw points are used as control points; the curve passes through
    each of them. Boundary segments reuse the first/last control point.

    Args:
        raw_points: Path points (N, 3) in physical coordinates
        subdivisions: Number of interpolated points inserted between each pair

    Returns:
        Smoothed points (M, 3) with M >= N, same first and last point
    """
    if int(subdivisions) != subdivisions or subdivisions < 0:
        raise InvalidParametersError(f"subdivisions must be a non-negative integer, got {subdivisions}")
    subdivisions = int(subdivisions)

    points = np.array(raw_points, dtype=np.float64).reshape(-1, 3)
    if len(points) < 2 or subdivisions == 0:
        return points

    last = len(points) - 1
    smoothed = []
    for i in range(last):
        p0 = points[i - 1] if i > 0 else points[0]
        p1 = points[i]
        p2 = points[i + 1]
        p3 = points[i + 2] if i + 2 <= last else points[last]

        smoothed.append(p1)
        for s in range(1, subdivisions + 1):
            pt = catmull_rom_point(p0, p1, p2, p3, s / (subdivisions + 1))
            # Coincident control points would produce repeated samples
            if not np.array_equal(pt, smoothed[-1]) and not np.array_equal(pt, p2):
                smoothed.append(pt)

    smoothed.append(points[last])
    return np.array(smoothed)


def path_length(points) -> float:
    """Total arc length of a polyline (N, 3)"""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(np.diff(points, axis=0), axis=1)))
