"""
Extract 2D slices from a flat row-major volume.

Slice layout per axis (rows x columns):

    axis X (sagittal):  rows = y, columns = z   -> shape (Y, Z)
    axis Y (coronal):   rows = x, columns = z   -> shape (X, Z)
    axis Z (axial):     rows = x, columns = y   -> shape (X, Y)

The orientation transform later turns this raw layout into the on-screen
layout of each plane.
"""

from typing import Optional, Tuple
import logging

import numpy as np

from ..models.plane import Axis, Plane
from ..models.volume import Cursor3D, Volume

logger = logging.getLogger(__name__)


def slice_volume(volume: Optional[Volume], axis: Axis, index: int) -> Optional[np.ndarray]:
    """Return the 2D plane at ``index`` along ``axis``, or None when out of range.

    The result is a read-only view into the volume buffer.
    """
    if volume is None:
        return None
    axis = Axis(axis)
    size = volume.shape[axis]
    if not 0 <= index < size:
        logger.debug(f"Slice index {index} out of range for axis {axis.name} (size {size})")
        return None
    return _plane_view(volume.array(), axis, index)


def _plane_view(array: np.ndarray, axis: Axis, index: int) -> np.ndarray:
    # offset = x*Y*Z + y*Z + z, so basic indexing keeps the buffer shared
    if axis == Axis.X:
        return array[index, :, :]
    if axis == Axis.Y:
        return array[:, index, :]
    return array[:, :, index]


def clamp_index(volume: Volume, axis: Axis, index: int) -> int:
    """Clamp a slider-driven index into the valid range of ``axis``."""
    return min(max(int(index), 0), volume.shape[Axis(axis)] - 1)


def slice_size(shape: Tuple[int, int, int], plane: Plane) -> Tuple[int, int]:
    """Source ``(width, height)`` of a slice of ``plane`` (before orientation)."""
    rows_axis, cols_axis = Plane(plane).free_axes
    return shape[cols_axis], shape[rows_axis]


def cursor_to_local(cursor: Cursor3D, plane: Plane) -> Tuple[int, int]:
    """Cursor position as ``(column, row)`` in the plane's source slice."""
    rows_axis, cols_axis = Plane(plane).free_axes
    coords = cursor.as_tuple()
    return coords[cols_axis], coords[rows_axis]


def local_to_axes(plane: Plane, column: int, row: int) -> dict:
    """Volume axes updated by a selection at ``(column, row)`` of ``plane``."""
    rows_axis, cols_axis = Plane(plane).free_axes
    return {rows_axis: row, cols_axis: column}
