"""
Downsample a volume into an isosurface definition for the 3D view.

The volume is strided down to at most ``target_dim`` samples per axis
(nearest sample, no averaging) and two intensity thresholds are derived
from the maximum sampled value. Surface extraction itself is left to the
3D renderer that receives the definition.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

import numpy as np

from ..config import settings
from ..models.volume import Volume

logger = logging.getLogger(__name__)

ISO_MIN_FRACTION = 0.35
ISO_MAX_FRACTION = 0.85


@dataclass(frozen=True)
class IsosurfaceDefinition:
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    value: np.ndarray
    iso_min: int
    iso_max: int
    stride: Tuple[int, int, int]

    def to_dict(self) -> dict:
        return {
            "x": self.x.tolist(),
            "y": self.y.tolist(),
            "z": self.z.tolist(),
            "value": self.value.tolist(),
            "iso_min": self.iso_min,
            "iso_max": self.iso_max,
            "stride": list(self.stride),
        }


def strides_for(shape: Tuple[int, int, int], target_dim: int) -> Tuple[int, int, int]:
    """Smallest integer stride per axis giving at most ``target_dim`` samples."""
    return tuple(max(1, math.ceil(s / target_dim)) for s in shape)


def iso_thresholds(max_value: int) -> Tuple[int, int]:
    """``(iso_min, iso_max)`` with ``iso_min < iso_max`` even for empty volumes."""
    iso_min = max(1, math.floor(max_value * ISO_MIN_FRACTION))
    iso_max = max(iso_min + 1, math.floor(max_value * ISO_MAX_FRACTION))
    return iso_min, iso_max


def downsample(volume: Volume, target_dim: Optional[int] = None) -> IsosurfaceDefinition:
    """Build the point cloud and thresholds for ``volume``.

    Points are emitted with x varying fastest, then y, then z.
    """
    if target_dim is None:
        target_dim = settings.iso_target_dim
    sx, sy, sz = strides_for(volume.shape, target_dim)
    sampled = volume.array()[::sx, ::sy, ::sz]
    X, Y, Z = volume.shape
    zz, yy, xx = np.meshgrid(np.arange(0, Z, sz), np.arange(0, Y, sy), np.arange(0, X, sx),
                             indexing='ij')
    # sampled is (x, y, z); reorder so x is the innermost axis
    values = np.transpose(sampled, (2, 1, 0))
    max_value = int(values.max()) if values.size else 0
    iso_min, iso_max = iso_thresholds(max_value)
    logger.debug(f"Isosurface grid {values.shape[::-1]} from {volume.shape}, "
                 f"iso=({iso_min}, {iso_max})")
    return IsosurfaceDefinition(
        x=xx.ravel(), y=yy.ravel(), z=zz.ravel(),
        value=values.ravel().astype(np.uint8),
        iso_min=iso_min, iso_max=iso_max,
        stride=(sx, sy, sz),
    )
