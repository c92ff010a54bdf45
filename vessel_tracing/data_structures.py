import numpy as np
import SimpleITK as sitk
from dataclasses import dataclass, field, fields
from typing import Optional, Tuple

from . import parameters
from .errors import InvalidParametersError
from .volume import VolumeGeometry, VoxelIndex


@dataclass
class TraceConfig:
    """Parameters for centerline tracing

    Parameters:
        initial_radius_mm: float = 5.0 (mm)
            Initial vessel radius estimate.
            - Sets the radial search range (initial_radius_mm * radius_search_factor)
            - Returned as radius where no wall can be measured

        bright_vessels: bool = True
            True for bright-blood images, False for dark-blood images.

        cost_exponent: float = 1.0
            Exponent of the cost map.
            - Smaller values (<1): Paths cut corners through dim tissue
            - Larger values (>1): Paths stick to the brightest lumen voxels

        intensity_range: Optional[Tuple[float, float]] = None
            Fixed (low, high) normalization range, e.g. a clinical window.
            None uses the observed min/max of the volume.

        subdivisions: int = 3
            Catmull-Rom points inserted between consecutive path voxels.

        radius_search_factor: float = 2.0
            Radial search range as a multiple of initial_radius_mm.

        radius_directions: int = 16
            Number of rays cast around each centerline point.

        max_iterations: Optional[int] = None
            Cap on voxels settled by the path search (None = searchable voxels).

        search_margin_mm: Optional[float] = None (mm)
            Restrict the search to the start/end bounding box grown by this
            margin. None searches the whole volume.

        show_progress: bool = False
            Show tqdm progress bars for the per-point stages.
    """
    initial_radius_mm: float = parameters.INITIAL_RADIUS_MM
    bright_vessels: bool = parameters.BRIGHT_VESSELS
    cost_exponent: float = parameters.COST_EXPONENT
    intensity_range: Optional[Tuple[float, float]] = None
    subdivisions: int = parameters.SUBDIVISIONS
    radius_search_factor: float = parameters.RADIUS_SEARCH_FACTOR
    radius_directions: int = parameters.RADIUS_DIRECTIONS
    max_iterations: Optional[int] = parameters.MAX_ITERATIONS
    search_margin_mm: Optional[float] = parameters.SEARCH_MARGIN_MM
    show_progress: bool = False

    @classmethod
    def get_parameter_sets(cls):
        """Get the predefined parameter sets"""
        return {
            'default': cls(),
            'bright_blood': cls(bright_vessels=True),
            'dark_blood': cls(bright_vessels=False),
            'sharp': cls(
                cost_exponent=2.0,        # Stronger pull toward the lumen center
                radius_directions=24      # More rays for noisy walls
            ),
            'fine': cls(
                subdivisions=6,           # Denser curve for small vessels
                initial_radius_mm=2.0,    # Small vessels
                radius_directions=32
            )
        }

    @classmethod
    def from_dict(cls, params_dict):
        """Create a configuration from a dictionary of overrides"""
        base_params = cls()
        known = {f.name for f in fields(cls)}
        for key, value in params_dict.items():
            if key not in known:
                raise InvalidParametersError(f"Unknown trace parameter: {key}")
            setattr(base_params, key, value)
        return base_params

    def validate(self):
        """Check parameter ranges

        Raises:
            InvalidParametersError: if any parameter is out of range
        """
        if not np.isfinite(self.initial_radius_mm) or self.initial_radius_mm <= 0:
            raise InvalidParametersError(
                f"initial_radius_mm must be positive, got {self.initial_radius_mm}")
        if not np.isfinite(self.cost_exponent) or self.cost_exponent <= 0:
            raise InvalidParametersError(
                f"cost_exponent must be positive, got {self.cost_exponent}")
        if self.intensity_range is not None:
            low, high = self.intensity_range
            if not (np.isfinite(low) and np.isfinite(high)) or high <= low:
                raise InvalidParametersError(
                    f"intensity_range must be an increasing (low, high) pair, got {self.intensity_range}")
        if int(self.subdivisions) != self.subdivisions or self.subdivisions < 0:
            raise InvalidParametersError(
                f"subdivisions must be a non-negative integer, got {self.subdivisions}")
        if not np.isfinite(self.radius_search_factor) or self.radius_search_factor <= 0:
            raise InvalidParametersError(
                f"radius_search_factor must be positive, got {self.radius_search_factor}")
        if int(self.radius_directions) != self.radius_directions or self.radius_directions < 1:
            raise InvalidParametersError(
                f"radius_directions must be a positive integer, got {self.radius_directions}")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise InvalidParametersError(
                f"max_iterations must be positive, got {self.max_iterations}")
        if self.search_margin_mm is not None and (
                not np.isfinite(self.search_margin_mm) or self.search_margin_mm < 0):
            raise InvalidParametersError(
                f"search_margin_mm must be non-negative, got {self.search_margin_mm}")

    @property
    def max_radius_mm(self) -> float:
        """Radial search range used by the radius estimator"""
        return min(self.initial_radius_mm * self.radius_search_factor, parameters.MAX_RADIUS_MM)


def _frozen_array(values, dtype, ndim) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    if ndim == 2:
        arr = arr.reshape(-1, 3)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class CenterlineResult:
    """Result of a successful trace

    Attributes:
        points: Smoothed centerline points (N, 3) in physical coordinates (mm)
        radii: Estimated vessel radius at each point (N,) in mm
        total_length_mm: Arc length of the smoothed centerline
        voxel_path: Raw 26-connected voxel chain found by the path search
    """
    points: np.ndarray
    radii: np.ndarray
    total_length_mm: float = 0.0
    voxel_path: Tuple[VoxelIndex, ...] = field(default_factory=tuple)

    def __post_init__(self):
        points = _frozen_array(self.points, np.float64, 2)
        radii = _frozen_array(self.radii, np.float64, 1)
        if len(radii) != len(points):
            raise InvalidParametersError(
                f"Radius profile length {len(radii)} does not match {len(points)} points")
        object.__setattr__(self, 'points', points)
        object.__setattr__(self, 'radii', radii)
        object.__setattr__(self, 'total_length_mm', float(self.total_length_mm))
        object.__setattr__(self, 'voxel_path',
                           tuple(tuple(int(v) for v in idx) for idx in self.voxel_path))

    def __len__(self):
        return len(self.points)

    @property
    def mean_radius_mm(self) -> float:
        return float(np.mean(self.radii)) if len(self.radii) else 0.0


@dataclass(frozen=True, eq=False)
class TubularMask:
    """Binary tube volume, array in (z, y, x) order"""
    array: np.ndarray
    geometry: VolumeGeometry

    @property
    def foreground_count(self) -> int:
        return int(np.count_nonzero(self.array))

    @property
    def foreground_volume_mm3(self) -> float:
        return self.foreground_count * float(np.prod(self.geometry.spacing))

    def to_sitk(self) -> sitk.Image:
        image = sitk.GetImageFromArray(self.array.astype(np.uint8))
        image.SetSpacing(self.geometry.spacing)
        image.SetOrigin(self.geometry.origin)
        return image
