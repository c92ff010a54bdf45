import logging
import numpy as np
from typing import Tuple

from . import parameters
from .errors import InvalidParametersError
from .volume import ScalarVolume

logger = logging.getLogger(__name__)


def orthonormal_basis(tangent) -> Tuple[np.ndarray, np.ndarray]:
    """Two unit vectors perpendicular to the tangent and to each other"""
    tangent = np.asarray(tangent, dtype=np.float64)
    arbitrary = np.array([0.0, 0.0, 1.0])
    if abs(tangent[2]) > 0.9:
        arbitrary = np.array([1.0, 0.0, 0.0])

    perp1 = np.cross(tangent, arbitrary)
    perp1 /= np.linalg.norm(perp1)
    perp2 = np.cross(tangent, perp1)
    perp2 /= np.linalg.norm(perp2)
    return perp1, perp2


def ray_directions(tangent, num_directions: int) -> np.ndarray:
    """Evenly spaced unit directions (num_directions, 3) orthogonal to the tangent"""
    perp1, perp2 = orthonormal_basis(tangent)
    angles = np.arange(num_directions) * (2.0 * np.pi / num_directions)
    return np.outer(np.cos(angles), perp1) + np.outer(np.sin(angles), perp2)


def _boundary_distance(radii: np.ndarray, profile: np.ndarray, inside: np.ndarray,
                       center_value: float, threshold: float, max_radius_mm: float) -> float:
    """Distance where one ray profile crosses the threshold

    The crossing is interpolated linearly between the two samples that bracket it.
    """
    polarity = np.sign(center_value - threshold)
    prev_r, prev_v = 0.0, center_value
    for r, v, ok in zip(radii, profile, inside):
        if not ok:
            # Ray left the image before reaching the wall
            return prev_r
        if (v - threshold) * polarity < 0:
            denom = prev_v - v
            frac = (prev_v - threshold) / denom if denom != 0 else 1.0
            return prev_r + float(np.clip(frac, 0.0, 1.0)) * (r - prev_r)
        prev_r, prev_v = r, v
    return max_radius_mm


def estimate_local_radius(volume: ScalarVolume, center, tangent,
                          max_radius_mm: float = parameters.MAX_RADIUS_MM,
                          num_directions: int = parameters.RADIUS_DIRECTIONS,
                          fallback_radius_mm: float = parameters.FALLBACK_RADIUS_MM) -> float:
    """Estimate local vessel radius at a centerline point

    Rays are cast in the plane orthogonal to the tangent. Along each ray the
    wall is where the intensity crosses the half-maximum between the center
    intensity and the local background (median of the outermost sample of
    every ray). The radius is the median over rays.

    Args:
        volume: Input intensity volume
        center: Point on the centerline (physical coords)
        tangent: Local tangent direction; must not be zero
        max_radius_mm: Maximum search radius in mm
        num_directions: Number of rays
        fallback_radius_mm: Returned when the center is outside the image
            or there is no measurable contrast

    Returns:
        Estimated radius in mm
    """
    tangent = np.asarray(tangent, dtype=np.float64)
    norm = np.linalg.norm(tangent)
    if tangent.shape != (3,) or not np.isfinite(norm) or norm < 1e-12:
        raise InvalidParametersError("Tangent must be a non-zero 3D vector")
    if not np.isfinite(max_radius_mm) or max_radius_mm <= 0:
        raise InvalidParametersError(f"max_radius_mm must be positive, got {max_radius_mm}")
    if int(num_directions) != num_directions or num_directions < 1:
        raise InvalidParametersError(f"num_directions must be a positive integer, got {num_directions}")
    tangent = tangent / norm
    center = np.asarray(center, dtype=np.float64)

    if not volume.contains_points(center):
        return fallback_radius_mm

    center_value = float(volume.sample(center))

    step_mm = min(volume.spacing) * parameters.RADIAL_STEP_FRACTION
    num_steps = max(1, int(np.floor(max_radius_mm / step_mm + 1e-9)))
    radii = step_mm * np.arange(1, num_steps + 1)
    if radii[-1] < max_radius_mm - 1e-9:
        radii = np.append(radii, max_radius_mm)

    directions = ray_directions(tangent, int(num_directions))
    # Sample points (num_directions, num_steps, 3)
    sample_points = center[None, None, :] + radii[None, :, None] * directions[:, None, :]
    inside = volume.contains_points(sample_points)
    profiles = volume.sample(sample_points)

    # Local background: outermost in-buffer sample of each ray
    outer = []
    for ray_inside, ray_profile in zip(inside, profiles):
        idx = np.flatnonzero(ray_inside)
        if len(idx):
            outer.append(ray_profile[idx[-1]])
    if not outer:
        return fallback_radius_mm
    background = float(np.median(outer))

    contrast = center_value - background
    if abs(contrast) <= 1e-6 * max(1.0, abs(center_value), abs(background)):
        logger.debug(f"No contrast at {center.tolist()} (center={center_value:.3g}, "
                     f"background={background:.3g})")
        return fallback_radius_mm

    threshold = background + parameters.BOUNDARY_FRACTION * contrast

    distances = [
        _boundary_distance(radii, profile, ray_inside, center_value, threshold, max_radius_mm)
        for profile, ray_inside in zip(profiles, inside)
    ]
    # Median is robust to a few rays running into neighboring structures
    return float(np.median(distances))
