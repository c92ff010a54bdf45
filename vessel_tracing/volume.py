import numpy as np
import SimpleITK as sitk
from scipy.ndimage import map_coordinates
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .errors import InvalidInputError

VoxelIndex = Tuple[int, int, int]


@dataclass(frozen=True)
class VolumeGeometry:
    """Voxel grid geometry shared by intensity volumes and masks

    Sizes and indices are in (i, j, k) = (x, y, z) order as in ITK,
    while arrays are stored in (z, y, x) order as returned by
    sitk.GetArrayFromImage.
    """
    size: Tuple[int, int, int]
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __post_init__(self):
        if len(self.size) != 3 or len(self.spacing) != 3 or len(self.origin) != 3:
            raise InvalidInputError("Volume geometry must be three dimensional")
        if any(int(n) <= 0 for n in self.size):
            raise InvalidInputError(f"Volume is empty (size {tuple(self.size)})")
        if any(not np.isfinite(s) or s <= 0 for s in self.spacing):
            raise InvalidInputError(f"Voxel spacing must be positive, got {tuple(self.spacing)}")
        object.__setattr__(self, 'size', tuple(int(n) for n in self.size))
        object.__setattr__(self, 'spacing', tuple(float(s) for s in self.spacing))
        object.__setattr__(self, 'origin', tuple(float(o) for o in self.origin))

    @classmethod
    def from_sitk(cls, image: sitk.Image) -> 'VolumeGeometry':
        """Read size, spacing and origin from a SimpleITK image"""
        if image.GetDimension() != 3:
            raise InvalidInputError(f"Expected a 3D image, got {image.GetDimension()}D")
        direction = np.asarray(image.GetDirection(), dtype=float).reshape(3, 3)
        if not np.allclose(direction, np.eye(3)):
            raise InvalidInputError("Only axis-aligned images (identity direction) are supported")
        return cls(size=image.GetSize(), spacing=image.GetSpacing(), origin=image.GetOrigin())

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Array shape in (z, y, x) order"""
        return self.size[::-1]

    @property
    def num_voxels(self) -> int:
        return int(np.prod(self.size))

    @property
    def voxel_diagonal(self) -> float:
        return float(np.linalg.norm(self.spacing))

    def contains_index(self, index: Sequence[int]) -> bool:
        return all(0 <= int(index[d]) < self.size[d] for d in range(3))

    def index_to_physical(self, index) -> np.ndarray:
        """Convert voxel indices (..., 3) to physical points in mm"""
        index = np.asarray(index, dtype=float)
        return np.asarray(self.origin) + index * np.asarray(self.spacing)

    def physical_to_continuous_index(self, points) -> np.ndarray:
        """Convert physical points (..., 3) to continuous voxel indices"""
        points = np.asarray(points, dtype=float)
        return (points - np.asarray(self.origin)) / np.asarray(self.spacing)

    def physical_to_index(self, point) -> Optional[VoxelIndex]:
        """Round a physical point to the nearest voxel

        Returns:
            The (i, j, k) index, or None if the point falls outside the volume
        """
        cidx = self.physical_to_continuous_index(point)
        if cidx.shape != (3,) or not np.all(np.isfinite(cidx)):
            return None
        index = tuple(int(v) for v in np.round(cidx))
        if not self.contains_index(index):
            return None
        return index


class ScalarVolume:
    """Read-only 3D intensity volume

    Args:
        array: Intensities in (z, y, x) order
        spacing: Voxel spacing (sx, sy, sz) in mm
        origin: Physical position of voxel (0, 0, 0) in mm
    """

    def __init__(self, array: np.ndarray,
                 spacing: Sequence[float] = (1.0, 1.0, 1.0),
                 origin: Sequence[float] = (0.0, 0.0, 0.0)):
        array = np.asarray(array)
        if array.ndim != 3:
            raise InvalidInputError(f"Expected a 3D array, got shape {array.shape}")
        if array.size == 0:
            raise InvalidInputError("Volume is empty")
        # Own a private read-only copy so callers cannot mutate it mid-trace
        self._array = np.array(array, dtype=np.float64)
        self._array.setflags(write=False)
        self.geometry = VolumeGeometry(size=array.shape[::-1], spacing=tuple(spacing),
                                       origin=tuple(origin))

    @classmethod
    def from_array(cls, array: np.ndarray, spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0)):
        return cls(array, spacing=spacing, origin=origin)

    @classmethod
    def from_sitk(cls, image: sitk.Image) -> 'ScalarVolume':
        """Wrap a SimpleITK image (scalar pixels, identity direction)"""
        if image.GetNumberOfComponentsPerPixel() != 1:
            raise InvalidInputError("Only scalar images are supported")
        geometry = VolumeGeometry.from_sitk(image)
        return cls(sitk.GetArrayFromImage(image), spacing=geometry.spacing, origin=geometry.origin)

    def to_sitk(self) -> sitk.Image:
        image = sitk.GetImageFromArray(np.asarray(self._array, dtype=np.float32))
        image.SetSpacing(self.spacing)
        image.SetOrigin(self.origin)
        return image

    @property
    def array(self) -> np.ndarray:
        return self._array

    @property
    def size(self) -> Tuple[int, int, int]:
        return self.geometry.size

    @property
    def spacing(self) -> Tuple[float, float, float]:
        return self.geometry.spacing

    @property
    def origin(self) -> Tuple[float, float, float]:
        return self.geometry.origin

    def value_at(self, index: VoxelIndex) -> float:
        i, j, k = index
        return float(self._array[k, j, i])

    def intensity_range(self) -> Tuple[float, float]:
        return float(np.nanmin(self._array)), float(np.nanmax(self._array))

    def contains_points(self, points) -> np.ndarray:
        """Check which physical points can be linearly interpolated

        A point is inside the buffer when its continuous index lies
        within [0, size - 1] along every axis.
        """
        cidx = self.geometry.physical_to_continuous_index(points)
        upper = np.asarray(self.size, dtype=float) - 1.0
        tol = 1e-9
        return np.all((cidx >= -tol) & (cidx <= upper + tol), axis=-1)

    def sample(self, points) -> np.ndarray:
        """Trilinear interpolation at physical points (..., 3)

        Points outside the buffer take the value of the nearest edge voxel;
        use contains_points to detect them.
        """
        points = np.asarray(points, dtype=float)
        cidx = self.geometry.physical_to_continuous_index(points.reshape(-1, 3))
        coords_zyx = np.stack([cidx[:, 2], cidx[:, 1], cidx[:, 0]], axis=0)
        values = map_coordinates(self._array, coords_zyx, order=1, mode='nearest')
        return values.reshape(points.shape[:-1])


class CostVolume(ScalarVolume):
    """Traversal cost per voxel, same geometry as the source volume

    Values are strictly positive; non-finite values mark impassable voxels.
    """

    def __init__(self, array: np.ndarray, spacing=(1.0, 1.0, 1.0), origin=(0.0, 0.0, 0.0)):
        super().__init__(array, spacing=spacing, origin=origin)
        if np.any(self._array <= 0):
            raise InvalidInputError("Cost volume values must be strictly positive")
