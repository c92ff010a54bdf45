import pytest
import numpy as np
from pathlib import Path
import tempfile

from vessel_tracing import ScalarVolume, trace_centerline


TUBE_RADIUS = 5.0
TUBE_AXIS = (25.0, 25.0)
STRAIGHT_START = (25.0, 25.0, 5.0)
STRAIGHT_END = (25.0, 25.0, 45.0)

ARC_CENTER = (5.0, 5.0)
ARC_RADIUS = 35.0
ARC_Z = 10.0
ARC_TUBE_RADIUS = 4.0


def distance_to_arc(points):
    """Distance from points (N, 3) to the quarter-circle phantom axis"""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    dx = points[:, 0] - ARC_CENTER[0]
    dy = points[:, 1] - ARC_CENTER[1]
    rho = np.hypot(dx, dy)
    theta = np.arctan2(dy, dx)
    on_arc = (theta >= 0) & (theta <= np.pi / 2)
    d_arc = np.hypot(rho - ARC_RADIUS, points[:, 2] - ARC_Z)

    arc_start = np.array([ARC_CENTER[0] + ARC_RADIUS, ARC_CENTER[1], ARC_Z])
    arc_end = np.array([ARC_CENTER[0], ARC_CENTER[1] + ARC_RADIUS, ARC_Z])
    d_ends = np.minimum(np.linalg.norm(points - arc_start, axis=1),
                        np.linalg.norm(points - arc_end, axis=1))
    return np.where(on_arc, d_arc, d_ends)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="session")
def straight_tube_array():
    """50^3 binary cylinder of radius 5 along z through (25, 25), zyx order."""
    z, y, x = np.mgrid[0:50, 0:50, 0:50]
    inside = (x - TUBE_AXIS[0]) ** 2 + (y - TUBE_AXIS[1]) ** 2 <= TUBE_RADIUS ** 2
    return np.where(inside, 200.0, 0.0)


@pytest.fixture(scope="session")
def straight_tube(straight_tube_array):
    """Straight tube phantom, 1 mm isotropic spacing, origin at 0."""
    return ScalarVolume(straight_tube_array, spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0))


@pytest.fixture(scope="session")
def straight_tube_result(straight_tube):
    """Centerline traced once through the straight tube."""
    return trace_centerline(straight_tube, STRAIGHT_START, STRAIGHT_END)


@pytest.fixture(scope="session")
def curved_tube():
    """Quarter-circle tube with a parabolic intensity profile.

    Axis: arc of radius 35 around (5, 5) in the plane z = 10, from (40, 5, 10)
    to (5, 40, 10). Tube radius 4 mm.
    """
    z, y, x = np.mgrid[0:21, 0:50, 0:50]
    points = np.stack([x.ravel(), y.ravel(), z.ravel()], axis=1).astype(float)
    d = distance_to_arc(points).reshape(x.shape)
    array = 200.0 * np.clip(1.0 - (d / ARC_TUBE_RADIUS) ** 2, 0.0, 1.0)
    volume = ScalarVolume(array)
    start = (ARC_CENTER[0] + ARC_RADIUS, ARC_CENTER[1], ARC_Z)
    end = (ARC_CENTER[0], ARC_CENTER[1] + ARC_RADIUS, ARC_Z)
    return volume, start, end
