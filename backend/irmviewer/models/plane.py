"""Anatomical planes and volume axes.

Each plane cuts the IRM volume perpendicular to one axis. The remaining two
axes, in ascending order, become the rows and columns of the extracted
slice (see ``services.slicer``).
"""

from enum import Enum, IntEnum


class Axis(IntEnum):
    """Volume axes, in buffer order (row-major ``x*Y*Z + y*Z + z``)."""
    X = 0
    Y = 1
    Z = 2


class Plane(str, Enum):
    """Anatomical slice planes shown by the viewer."""
    SAGITTAL = "sagittal"   # YZ plane (perpendicular to X-axis)
    CORONAL = "coronal"     # XZ plane (perpendicular to Y-axis)
    AXIAL = "axial"         # XY plane (perpendicular to Z-axis)

    @property
    def axis(self) -> Axis:
        return PLANE_AXIS[self]

    @property
    def free_axes(self):
        """Axes mapped to slice (rows, columns)."""
        return tuple(a for a in Axis if a != self.axis)


PLANE_AXIS = {
    Plane.SAGITTAL: Axis.X,
    Plane.CORONAL: Axis.Y,
    Plane.AXIAL: Axis.Z,
}

__all__ = ["Axis", "Plane", "PLANE_AXIS"]
