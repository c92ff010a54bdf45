import logging
import numpy as np
import SimpleITK as sitk
from tqdm import tqdm
from typing import Optional, Union

from .cost_map import build_cost_map
from .data_structures import TraceConfig, CenterlineResult, TubularMask
from .errors import CenterlineError, InvalidInputError, InvalidParametersError, InternalError
from .mask_rasterizer import rasterize_tube
from .radius_estimation import estimate_local_radius
from .shortest_path import find_path, path_to_physical
from .smoothing import smooth_path, path_length
from .volume import ScalarVolume, VolumeGeometry, VoxelIndex

logger = logging.getLogger(__name__)


def _as_volume(volume: Union[ScalarVolume, sitk.Image, None]) -> ScalarVolume:
    if volume is None:
        raise InvalidInputError("Input image is null")
    if isinstance(volume, sitk.Image):
        return ScalarVolume.from_sitk(volume)
    if not isinstance(volume, ScalarVolume):
        raise InvalidInputError(f"Unsupported volume type: {type(volume).__name__}")
    return volume


def _as_geometry(reference) -> VolumeGeometry:
    if reference is None:
        raise InvalidInputError("Reference image is null")
    if isinstance(reference, VolumeGeometry):
        return reference
    if isinstance(reference, ScalarVolume):
        return reference.geometry
    if isinstance(reference, sitk.Image):
        return VolumeGeometry.from_sitk(reference)
    raise InvalidInputError(f"Unsupported reference geometry type: {type(reference).__name__}")


def physical_to_index(volume: Union[ScalarVolume, sitk.Image], point) -> Optional[VoxelIndex]:
    """Convert a physical point to the nearest voxel index

    Returns:
        The (i, j, k) index, or None if the point is outside the image bounds
    """
    if volume is None:
        return None
    return _as_volume(volume).geometry.physical_to_index(point)


def compute_tangents(points: np.ndarray) -> np.ndarray:
    """Unit tangent at each centerline point

    Central differences inside, one-sided differences at the ends. Points whose
    difference vanishes borrow the tangent of the nearest valid neighbor; a
    path without any extent falls back to the z axis.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    n = len(points)
    tangents = np.zeros((n, 3))
    if n > 1:
        tangents[0] = points[1] - points[0]
        tangents[-1] = points[-1] - points[-2]
        if n > 2:
            tangents[1:-1] = points[2:] - points[:-2]

    norms = np.linalg.norm(tangents, axis=1)
    valid = np.flatnonzero(norms > 1e-12)
    if len(valid) == 0:
        tangents[:] = (0.0, 0.0, 1.0)
        return tangents

    tangents[valid] /= norms[valid, None]
    for i in np.flatnonzero(norms <= 1e-12):
        nearest = valid[np.argmin(np.abs(valid - i))]
        tangents[i] = tangents[nearest]
    return tangents


def trace_centerline(volume: Union[ScalarVolume, sitk.Image], start_point, end_point,
                     config: Optional[TraceConfig] = None) -> CenterlineResult:
    """Trace a vessel centerline between two physical points

    Uses Dijkstra shortest path on an intensity-derived cost map,
    followed by spline smoothing and radius estimation.

    Args:
        volume: Input magnitude/MRA image (ScalarVolume or SimpleITK image)
        start_point: Start point in physical coordinates (mm)
        end_point: End point in physical coordinates (mm)
        config: Tracing configuration (default TraceConfig())

    Returns:
        CenterlineResult

    Raises:
        InvalidInputError: null, empty or uniform volume
        InvalidParametersError: seeds outside the volume or invalid configuration
        NoPathFoundError: seeds disconnected or search limit exceeded
        InternalError: non-finite values in the cost map or result
    """
    if config is None:
        config = TraceConfig()
    config.validate()
    volume = _as_volume(volume)
    geometry = volume.geometry

    # Convert physical points to voxel indices
    start_idx = geometry.physical_to_index(start_point)
    if start_idx is None:
        raise InvalidParametersError(f"Start point {tuple(start_point)} is outside image bounds")
    end_idx = geometry.physical_to_index(end_point)
    if end_idx is None:
        raise InvalidParametersError(f"End point {tuple(end_point)} is outside image bounds")

    if config.intensity_range is None:
        low, high = volume.intensity_range()
        if not high - low > 1e-6:
            raise InvalidInputError("Image has uniform intensity")

    logger.info(f"Tracing centerline from voxel {start_idx} to {end_idx}")

    try:
        # Step 1: Cost map
        logger.info("Step 1: Building cost map...")
        cost_volume = build_cost_map(volume, config.bright_vessels, config.cost_exponent,
                                     config.intensity_range)
        if np.any(np.isnan(cost_volume.array)):
            raise InternalError("Cost map contains NaN values")

        # Step 2: Shortest path
        logger.info("Step 2: Searching minimum-cost path...")
        voxel_path = find_path(cost_volume, start_idx, end_idx,
                               max_iterations=config.max_iterations,
                               search_margin_mm=config.search_margin_mm)
        logger.info(f"Found path with {len(voxel_path)} voxels")

        # Step 3: Smoothing
        logger.info("Step 3: Smoothing path...")
        raw_points = path_to_physical(cost_volume, voxel_path)
        points = smooth_path(raw_points, config.subdivisions)

        # Step 4: Radius estimation
        logger.info("Step 4: Estimating local radius...")
        tangents = compute_tangents(points)
        radii = np.array([
            estimate_local_radius(volume, point, tangent,
                                  max_radius_mm=config.max_radius_mm,
                                  num_directions=config.radius_directions,
                                  fallback_radius_mm=config.initial_radius_mm)
            for point, tangent in tqdm(zip(points, tangents), total=len(points),
                                       desc="Estimating radius", leave=False,
                                       disable=not config.show_progress)
        ])

        total_length = path_length(points)
        if not (np.all(np.isfinite(points)) and np.all(np.isfinite(radii))
                and np.isfinite(total_length)):
            raise InternalError("Non-finite values in traced centerline")

        result = CenterlineResult(points=points, radii=radii, total_length_mm=total_length,
                                  voxel_path=voxel_path)
    except CenterlineError as e:
        logger.error(f"Centerline tracing failed: {e}")
        raise

    logger.info(f"Centerline traced: {len(result)} points, length {total_length:.2f} mm, "
                f"mean radius {result.mean_radius_mm:.2f} mm")
    return result


def generate_mask(centerline: CenterlineResult, radius_override_mm: Optional[float],
                  reference_geometry: Union[VolumeGeometry, ScalarVolume, sitk.Image],
                  num_workers: int = 1) -> TubularMask:
    """Generate a tubular binary mask along a traced centerline

    Args:
        centerline: Centerline with radius information
        radius_override_mm: Override radius (None or < 0 for per-point radii)
        reference_geometry: Geometry of the output mask (spacing, size, origin)
        num_workers: Number of rasterization threads

    Returns:
        TubularMask
    """
    geometry = _as_geometry(reference_geometry)
    if centerline is None or len(centerline.points) == 0:
        raise InvalidInputError("Centerline has no points")

    logger.info(f"Generating tubular mask from {len(centerline.points)} centerline points")
    mask = rasterize_tube(centerline.points, centerline.radii, geometry,
                          radius_override_mm=radius_override_mm, num_workers=num_workers)
    logger.info(f"Mask contains {mask.foreground_count} foreground voxels")
    return mask
