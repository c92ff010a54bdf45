import logging
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from tqdm import tqdm
from typing import List, Optional, Tuple

from . import parameters
from .data_structures import TubularMask
from .errors import InvalidInputError, InvalidParametersError
from .volume import VolumeGeometry

logger = logging.getLogger(__name__)

# Slack on the segment parameter before a voxel counts as past an open end
END_TOLERANCE = 1e-9


def segment_index_box(p0: np.ndarray, p1: np.ndarray, pad_mm: float,
                      geometry: VolumeGeometry) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Voxel index box (inclusive low, exclusive high) around a padded segment

    Returns:
        (low, high) in (i, j, k) order, or None if the box misses the volume
    """
    lo_mm = np.minimum(p0, p1) - pad_mm
    hi_mm = np.maximum(p0, p1) + pad_mm
    low = np.floor(geometry.physical_to_continuous_index(lo_mm)).astype(int)
    high = np.ceil(geometry.physical_to_continuous_index(hi_mm)).astype(int) + 1
    low = np.maximum(low, 0)
    high = np.minimum(high, np.asarray(geometry.size))
    if np.any(high <= low):
        return None
    return low, high


def _update_block(best_dist: np.ndarray, best_radius: np.ndarray, best_beyond: np.ndarray,
                  z_offset: int, low: np.ndarray, high: np.ndarray, p0: np.ndarray, p1: np.ndarray,
                  r0: float, r1: float, geometry: VolumeGeometry,
                  open_start: bool = False, open_end: bool = False):
    """Merge one segment's distances into the best-distance buffers

    Arrays are in (z, y, x) order; z_offset is the first slice held by the buffers.
    open_start/open_end mark the path ends: voxels whose projection falls before
    p0 (or after p1) are flagged in best_beyond when this segment is nearest.
    """
    origin = np.asarray(geometry.origin)
    spacing = np.asarray(geometry.spacing)
    xs = origin[0] + np.arange(low[0], high[0]) * spacing[0]
    ys = origin[1] + np.arange(low[1], high[1]) * spacing[1]
    zs = origin[2] + np.arange(low[2], high[2]) * spacing[2]
    Z, Y, X = np.meshgrid(zs, ys, xs, indexing='ij')

    seg = p1 - p0
    seg_len2 = float(np.dot(seg, seg))
    rx, ry, rz = X - p0[0], Y - p0[1], Z - p0[2]
    beyond = np.zeros(X.shape, dtype=bool)
    if seg_len2 > 0:
        proj = (rx * seg[0] + ry * seg[1] + rz * seg[2]) / seg_len2
        if open_start:
            beyond |= proj < -END_TOLERANCE
        if open_end:
            beyond |= proj > 1.0 + END_TOLERANCE
        t = np.clip(proj, 0.0, 1.0)
    else:
        t = np.zeros_like(X)
    dx = rx - t * seg[0]
    dy = ry - t * seg[1]
    dz = rz - t * seg[2]
    dist = np.sqrt(dx * dx + dy * dy + dz * dz)
    radius = r0 + t * (r1 - r0)

    region = (slice(low[2] - z_offset, high[2] - z_offset),
              slice(low[1], high[1]),
              slice(low[0], high[0]))
    block_dist = best_dist[region]
    block_radius = best_radius[region]
    block_beyond = best_beyond[region]
    # Strictly closer wins; ties keep the earlier segment
    closer = dist < block_dist
    block_dist[closer] = dist[closer]
    block_radius[closer] = radius[closer]
    block_beyond[closer] = beyond[closer]


def _rasterize_slab(points: np.ndarray, radii: np.ndarray, geometry: VolumeGeometry,
                    boxes: List, z_start: int, z_stop: int, show_progress: bool) -> np.ndarray:
    """Rasterize the tube restricted to slices [z_start, z_stop)"""
    nx, ny, _ = geometry.size
    depth = z_stop - z_start
    best_dist = np.full((depth, ny, nx), np.inf)
    best_radius = np.zeros((depth, ny, nx))
    best_beyond = np.zeros((depth, ny, nx), dtype=bool)
    last = len(points) - 1

    for s, box in enumerate(tqdm(boxes, desc="Rasterizing segments", leave=False,
                                 disable=not show_progress)):
        if box is None:
            continue
        low, high = box
        if high[2] <= z_start or low[2] >= z_stop:
            continue
        low = low.copy()
        high = high.copy()
        low[2] = max(low[2], z_start)
        high[2] = min(high[2], z_stop)
        e = min(s + 1, last)
        # Open ends are cut flat; a single point stays a ball
        _update_block(best_dist, best_radius, best_beyond, z_start, low, high,
                      points[s], points[e], radii[s], radii[e], geometry,
                      open_start=(s == 0 and last > 0), open_end=(e == last and last > 0))

    return ((best_dist <= best_radius) & ~best_beyond).astype(np.uint8)


def rasterize_tube(points, radii, geometry: VolumeGeometry,
                   radius_override_mm: Optional[float] = None,
                   num_workers: int = parameters.MASK_WORKERS,
                   show_progress: bool = False) -> TubularMask:
    """Generate a tubular binary mask along a centerline

    A voxel is foreground when its distance to the polyline is within the
    radius interpolated along the nearest segment. Each segment only scans
    its bounding box padded by the largest radius plus one voxel diagonal.
    The tube ends flat at the first and last point; a single point gives a ball.

    Args:
        points: Centerline points (N, 3) in physical coordinates
        radii: Radius at each point (N,) in mm
        geometry: Output geometry (size, spacing, origin)
        radius_override_mm: Uniform radius replacing the profile (None or < 0 for per-point radii)
        num_workers: Number of threads; the volume is split into z-slabs
        show_progress: Show a tqdm progress bar per slab

    Returns:
        TubularMask with the same geometry as the reference
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0:
        raise InvalidInputError("Centerline has no points")
    if int(num_workers) != num_workers or num_workers < 1:
        raise InvalidParametersError(f"num_workers must be a positive integer, got {num_workers}")

    if radius_override_mm is not None and np.isnan(radius_override_mm):
        raise InvalidParametersError("Radius override must not be NaN")
    if radius_override_mm is not None and radius_override_mm >= 0:
        if radius_override_mm == 0 or not np.isfinite(radius_override_mm):
            raise InvalidParametersError(
                f"Radius override must be a positive finite value, got {radius_override_mm}")
        radii = np.full(len(points), float(radius_override_mm))
    else:
        radii = np.asarray(radii, dtype=np.float64).reshape(-1)
        if len(radii) != len(points):
            raise InvalidParametersError(
                f"Radius profile length {len(radii)} does not match {len(points)} points")
        if np.any(~np.isfinite(radii)) or np.any(radii < 0):
            raise InvalidParametersError("Radius profile must be finite and non-negative")

    pad_mm = float(np.max(radii)) + geometry.voxel_diagonal
    num_segments = max(1, len(points) - 1)
    boxes = []
    for s in range(num_segments):
        e = min(s + 1, len(points) - 1)
        boxes.append(segment_index_box(points[s], points[e], pad_mm, geometry))

    nz = geometry.size[2]
    num_workers = min(int(num_workers), nz)
    bounds = np.linspace(0, nz, num_workers + 1).astype(int)
    slabs = [(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]

    mask = np.zeros(geometry.shape, dtype=np.uint8)
    if len(slabs) == 1:
        mask[:] = _rasterize_slab(points, radii, geometry, boxes, 0, nz, show_progress)
    else:
        # Slabs cover disjoint slices so results are written without locking
        with ThreadPoolExecutor(max_workers=len(slabs)) as executor:
            futures = [(executor.submit(_rasterize_slab, points, radii, geometry, boxes,
                                        z0, z1, False), z0, z1)
                       for z0, z1 in slabs]
            for future, z0, z1 in futures:
                mask[z0:z1] = future.result()

    logger.debug(f"Rasterized {num_segments} segments into {int(mask.sum())} foreground voxels")
    return TubularMask(array=mask, geometry=geometry)
