import heapq
import itertools
import logging
import math
import numpy as np
from typing import List, Optional, Tuple

from .errors import InvalidParametersError, NoPathFoundError, SearchLimitExceededError
from .volume import CostVolume, VoxelIndex

logger = logging.getLogger(__name__)

# 26-connectivity neighbor offsets (di, dj, dk)
NEIGHBOR_OFFSETS: Tuple[Tuple[int, int, int], ...] = tuple(
    (di, dj, dk)
    for dk in (-1, 0, 1)
    for dj in (-1, 0, 1)
    for di in (-1, 0, 1)
    if (di, dj, dk) != (0, 0, 0)
)


def neighbor_distances(spacing) -> Tuple[float, ...]:
    """Physical length of each NEIGHBOR_OFFSETS step for the given spacing"""
    sx, sy, sz = spacing
    return tuple(math.sqrt((di * sx) ** 2 + (dj * sy) ** 2 + (dk * sz) ** 2)
                 for di, dj, dk in NEIGHBOR_OFFSETS)


def search_bounds(size, spacing, start: VoxelIndex, end: VoxelIndex,
                  margin_mm: Optional[float] = None) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
    """Index box (inclusive low, exclusive high) explored by the search

    Args:
        size: Volume size (nx, ny, nz)
        spacing: Voxel spacing in mm
        start, end: Seed voxels
        margin_mm: Margin around the seeds' bounding box; None for the whole volume
    """
    if margin_mm is None:
        return (0, 0, 0), tuple(int(n) for n in size)

    low, high = [], []
    for d in range(3):
        pad = int(math.ceil(margin_mm / spacing[d]))
        low.append(max(0, min(start[d], end[d]) - pad))
        high.append(min(int(size[d]), max(start[d], end[d]) + pad + 1))
    return tuple(low), tuple(high)


def find_path(cost_volume: CostVolume, start: VoxelIndex, end: VoxelIndex,
              max_iterations: Optional[int] = None,
              search_margin_mm: Optional[float] = None) -> List[VoxelIndex]:
    """Dijkstra shortest path on the 26-connected voxel grid

    Edge weight between neighbors u and v is the mean cost of u and v times
    their physical distance. Equal-cost queue entries are popped in insertion
    order and a predecessor is only replaced by a strictly cheaper one, so
    ties always resolve the same way.

    Args:
        cost_volume: Strictly positive cost per voxel; non-finite voxels are impassable
        start: Start voxel (i, j, k)
        end: End voxel (i, j, k)
        max_iterations: Maximum number of settled voxels (None = searchable voxels)
        search_margin_mm: Optional margin restricting the search region

    Returns:
        Ordered list of voxel indices from start to end

    Raises:
        NoPathFoundError: if end cannot be reached
        SearchLimitExceededError: if max_iterations voxels were settled first
    """
    geometry = cost_volume.geometry
    start = tuple(int(v) for v in start)
    end = tuple(int(v) for v in end)
    for name, idx in (('Start', start), ('End', end)):
        if not geometry.contains_index(idx):
            raise InvalidParametersError(f"{name} voxel {idx} is outside the volume {geometry.size}")

    nx, ny, nz = geometry.size
    low, high = search_bounds(geometry.size, geometry.spacing, start, end, search_margin_mm)
    searchable = (high[0] - low[0]) * (high[1] - low[1]) * (high[2] - low[2])
    if max_iterations is None:
        max_iterations = searchable

    costs = cost_volume.array.ravel()
    slice_size = nx * ny
    steps = [(di, dj, dk, di + dj * nx + dk * slice_size, length)
             for (di, dj, dk), length in zip(NEIGHBOR_OFFSETS, neighbor_distances(geometry.spacing))]

    start_flat = start[0] + start[1] * nx + start[2] * slice_size
    end_flat = end[0] + end[1] * nx + end[2] * slice_size

    if not math.isfinite(costs[start_flat]) or not math.isfinite(costs[end_flat]):
        raise NoPathFoundError("Start or end voxel lies on an impassable voxel")

    # Search state per voxel: cumulative cost, predecessor and visited flag
    distance = {start_flat: 0.0}
    previous = {start_flat: None}
    visited = set()

    counter = itertools.count()
    queue = [(0.0, next(counter), start_flat)]
    iterations = 0
    found = False

    while queue:
        d, _, u = heapq.heappop(queue)
        if u in visited:
            continue  # stale entry
        visited.add(u)

        if u == end_flat:
            found = True
            break

        iterations += 1
        if iterations > max_iterations:
            raise SearchLimitExceededError(
                f"Path search exceeded {max_iterations} iterations without reaching the end point",
                iterations=iterations)

        uk, rem = divmod(u, slice_size)
        uj, ui = divmod(rem, nx)
        cost_u = float(costs[u])

        for di, dj, dk, offset, length in steps:
            vi, vj, vk = ui + di, uj + dj, uk + dk
            if not (low[0] <= vi < high[0] and low[1] <= vj < high[1] and low[2] <= vk < high[2]):
                continue

            v = u + offset
            if v in visited:
                continue
            cost_v = float(costs[v])
            if not math.isfinite(cost_v):
                continue

            new_dist = d + 0.5 * (cost_u + cost_v) * length
            if new_dist < distance.get(v, math.inf):
                distance[v] = new_dist
                previous[v] = u
                heapq.heappush(queue, (new_dist, next(counter), v))

    if not found:
        raise NoPathFoundError(
            f"No path found between start {start} and end {end} "
            f"({len(visited)} of {searchable} searchable voxels visited)")

    logger.debug(f"Path search settled {len(visited)} voxels, path cost {distance[end_flat]:.6g}")

    # Backtrack path
    path = []
    cur = end_flat
    while cur is not None:
        k, rem = divmod(cur, slice_size)
        j, i = divmod(rem, nx)
        path.append((i, j, k))
        cur = previous[cur]
    path.reverse()
    return path


def path_to_physical(cost_volume: CostVolume, path: List[VoxelIndex]) -> np.ndarray:
    """Convert a voxel path to physical points (N, 3)"""
    return cost_volume.geometry.index_to_physical(np.asarray(path, dtype=float).reshape(-1, 3))
