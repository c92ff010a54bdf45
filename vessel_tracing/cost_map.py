import logging
import numpy as np
from typing import Optional, Tuple

from . import parameters
from .errors import InvalidParametersError
from .volume import ScalarVolume, CostVolume

logger = logging.getLogger(__name__)


def normalize_intensity(intensities: np.ndarray,
                        intensity_range: Optional[Tuple[float, float]] = None) -> np.ndarray:
    """Scale intensities to [0, 1]

    Args:
        intensities: Intensity array
        intensity_range: Fixed (low, high) window; None uses the observed min/max

    Returns:
        Normalized array; a zero-width range maps everything to 0
    """
    if intensity_range is None:
        low, high = float(np.nanmin(intensities)), float(np.nanmax(intensities))
    else:
        low, high = float(intensity_range[0]), float(intensity_range[1])

    width = high - low
    if width <= 0:
        return np.zeros_like(intensities, dtype=np.float64)

    normalized = (intensities.astype(np.float64) - low) / width
    return np.clip(normalized, 0.0, 1.0)


def build_cost_map(volume: ScalarVolume, bright_vessels: bool = parameters.BRIGHT_VESSELS,
                   cost_exponent: float = parameters.COST_EXPONENT,
                   intensity_range: Optional[Tuple[float, float]] = None) -> CostVolume:
    """Convert an intensity volume into a traversal cost volume

    Vessel interior voxels (high affinity) are cheap, background voxels cost ~1.

    Args:
        volume: Input intensity volume
        bright_vessels: True for bright-blood, False for dark-blood images
        cost_exponent: Exponent applied to (1 - affinity), must be > 0
        intensity_range: Optional fixed normalization window

    Returns:
        CostVolume with values in [COST_FLOOR, 1]
    """
    if not np.isfinite(cost_exponent) or cost_exponent <= 0:
        raise InvalidParametersError(f"cost_exponent must be positive, got {cost_exponent}")

    normalized = normalize_intensity(volume.array, intensity_range)

    # Dark-blood convention inverts the affinity
    affinity = normalized if bright_vessels else 1.0 - normalized

    cost = np.power(1.0 - affinity, cost_exponent)
    cost = np.maximum(cost, parameters.COST_FLOOR)

    logger.debug(f"Cost map: min={np.nanmin(cost):.3g}, max={np.nanmax(cost):.3g}, "
                 f"exponent={cost_exponent}, bright={bright_vessels}")

    return CostVolume(cost, spacing=volume.spacing, origin=volume.origin)
