"""
Nearest-neighbour mapping between two volume grids.

Used to project the MRSI/metabolite volume onto the IRM grid for overlay
display, and to find the spectroscopy voxel under an IRM cursor.
"""

from typing import Optional, Tuple

import numpy as np

from ..models.plane import Axis
from ..models.volume import Volume

Shape = Tuple[int, int, int]


def axis_ratios(source_shape: Shape, target_shape: Shape) -> Tuple[float, float, float]:
    """Per-axis ``target / source`` size ratios."""
    return tuple(t / s for s, t in zip(source_shape, target_shape))


def map_voxel(voxel: Tuple[int, int, int], source_shape: Shape, target_shape: Shape) -> Tuple[int, int, int]:
    """Map a voxel of ``source_shape`` to the nearest voxel of ``target_shape``.

    ``target_i = floor(voxel_i * target_i / source_i)`` clamped into range.
    """
    out = []
    for v, s, t in zip(voxel, source_shape, target_shape):
        mapped = int(np.floor(int(v) * (t / s)))
        out.append(min(max(mapped, 0), t - 1))
    return tuple(out)


def axis_indices(size: int, source_size: int) -> np.ndarray:
    """Index array mapping every position ``0..size-1`` of a grid onto a
    grid of ``source_size`` samples, with the same rule as ``map_voxel``."""
    idx = np.floor(np.arange(size) * (source_size / size)).astype(np.intp)
    return np.clip(idx, 0, source_size - 1)


def resample_slice(overlay: Optional[Volume], grid_shape: Shape, axis: Axis, index: int) -> Optional[np.ndarray]:
    """Slice of ``overlay`` along ``axis`` sampled on the grid of ``grid_shape``.

    The result has the same layout as ``slicer.slice_volume`` on a volume of
    ``grid_shape`` (rows and columns from the two free axes, ascending).
    Returns None if there is no overlay or ``index`` is outside the grid.
    """
    if overlay is None:
        return None
    axis = Axis(axis)
    if not 0 <= index < grid_shape[axis]:
        return None
    source = overlay.array()
    per_axis = [axis_indices(grid_shape[a], overlay.shape[a]) for a in Axis]
    fixed = int(per_axis[axis][index])
    rows_axis, cols_axis = (a for a in Axis if a != axis)
    rows = per_axis[rows_axis]
    cols = per_axis[cols_axis]
    if axis == Axis.X:
        plane = source[fixed, :, :]
    elif axis == Axis.Y:
        plane = source[:, fixed, :]
    else:
        plane = source[:, :, fixed]
    return plane[np.ix_(rows, cols)]
