"""
2D orientation transforms applied to slices before display.

A transform is the composition ``transpose -> rotate -> flipX -> flipY``.
It is applied to slice matrices (``apply``) and to integer points
(``forward`` / ``inverse``). Points are ``(x, y)`` = (column, row); width and
height always refer to the *source* slice, before the transform.

Rotations are clockwise on screen: ``rotate=90`` turns the top row into the
right-most column.
"""

from dataclasses import dataclass
from typing import Dict, Tuple
import logging

import numpy as np

from ..models.plane import Plane

logger = logging.getLogger(__name__)

VALID_ROTATIONS = (0, 90, -90, 180)


@dataclass(frozen=True)
class Orientation:
    """Orientation descriptor for one anatomical plane."""
    rotate: int = 0
    flip_x: bool = False
    flip_y: bool = False
    transpose: bool = False

    def __post_init__(self):
        if self.rotate not in VALID_ROTATIONS:
            raise ValueError(f"rotate must be one of {VALID_ROTATIONS}, got {self.rotate}")

    @property
    def swaps_axes(self) -> bool:
        # transpose and a quarter turn each swap width/height
        return self.transpose != (self.rotate in (90, -90))

    def output_size(self, width: int, height: int) -> Tuple[int, int]:
        """Displayed ``(width, height)`` for a source slice of ``width x height``."""
        return (height, width) if self.swaps_axes else (width, height)

    def apply(self, matrix: np.ndarray) -> np.ndarray:
        """Return ``matrix`` (rows x columns) as displayed; a numpy view, not a copy."""
        out = np.asarray(matrix)
        if out.ndim < 2:
            raise ValueError("Orientation applies to 2D matrices")
        if self.transpose:
            out = np.swapaxes(out, 0, 1)
        if self.rotate == 90:
            out = np.rot90(out, k=-1, axes=(0, 1))
        elif self.rotate == -90:
            out = np.rot90(out, k=1, axes=(0, 1))
        elif self.rotate == 180:
            out = np.rot90(out, k=2, axes=(0, 1))
        if self.flip_x:
            out = out[:, ::-1]
        if self.flip_y:
            out = out[::-1, :]
        return out

    def forward(self, x: int, y: int, width: int, height: int) -> Tuple[int, int]:
        """Map a source slice point to displayed pixel coordinates."""
        w, h = width, height
        if self.transpose:
            x, y = y, x
            w, h = h, w
        if self.rotate == 90:
            x, y = h - 1 - y, x
            w, h = h, w
        elif self.rotate == -90:
            x, y = y, w - 1 - x
            w, h = h, w
        elif self.rotate == 180:
            x, y = w - 1 - x, h - 1 - y
        if self.flip_x:
            x = w - 1 - x
        if self.flip_y:
            y = h - 1 - y
        return x, y

    def inverse(self, x: int, y: int, width: int, height: int) -> Tuple[int, int]:
        """Map a displayed pixel back to source slice coordinates.

        Exact inverse of ``forward`` for the same source ``width``/``height``.
        """
        w, h = self.output_size(width, height)
        if self.flip_y:
            y = h - 1 - y
        if self.flip_x:
            x = w - 1 - x
        if self.rotate == 90:
            x, y = y, w - 1 - x
            w, h = h, w
        elif self.rotate == -90:
            x, y = h - 1 - y, x
            w, h = h, w
        elif self.rotate == 180:
            x, y = w - 1 - x, h - 1 - y
        if self.transpose:
            x, y = y, x
        return x, y


# Fixed per-plane layout; not user-configurable.
PLANE_ORIENTATIONS: Dict[Plane, Orientation] = {
    Plane.SAGITTAL: Orientation(rotate=-90),
    Plane.CORONAL: Orientation(rotate=-90, flip_x=True),
    Plane.AXIAL: Orientation(rotate=90),
}


def orientation_for(plane: Plane) -> Orientation:
    return PLANE_ORIENTATIONS[Plane(plane)]


def check_invertible(orientation: Orientation, width: int = 3, height: int = 2) -> bool:
    """True if ``inverse(forward(p)) == p`` and ``apply`` agrees with ``forward``
    for every point of a ``width x height`` probe matrix."""
    probe = np.arange(width * height).reshape(height, width)
    oriented = orientation.apply(probe)
    if oriented.shape[::-1] != orientation.output_size(width, height):
        return False
    for y in range(height):
        for x in range(width):
            fx, fy = orientation.forward(x, y, width, height)
            if oriented[fy, fx] != probe[y, x]:
                return False
            if orientation.inverse(fx, fy, width, height) != (x, y):
                return False
    return True


def validate_orientations(table: Dict[Plane, Orientation] = PLANE_ORIENTATIONS) -> None:
    """Raise ``ValueError`` if any plane descriptor is not a consistent bijection."""
    for plane, orientation in table.items():
        if not check_invertible(orientation):
            raise ValueError(f"Orientation for {plane.value} is not invertible: {orientation}")
    logger.debug(f"Validated {len(table)} plane orientations")


validate_orientations()
