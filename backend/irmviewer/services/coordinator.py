"""
Shared 3D cursor and spectrum selection.

The coordinator is the only writer of the cursor. Slice clicks and sliders
update one or two axes; when a spectroscopy volume is attached, every update
maps the cursor onto the MRSI grid and fetches that voxel's spectrum.

Spectrum responses are sequenced: each fetch takes the next sequence number
and a result is applied only if no fetch issued after it has been applied
already. An older fetch that resolves first is still shown until a newer
one lands; a late stale response never overwrites a newer one.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from ..errors import BackendError
from ..models.plane import Axis, Plane
from ..models.volume import Cursor3D, Spectrum
from .resampler import map_voxel
from .slicer import local_to_axes

logger = logging.getLogger(__name__)

Shape = Tuple[int, int, int]
SpectrumFetcher = Callable[[Tuple[int, int, int]], Awaitable[dict]]


class CursorCoordinator:

    def __init__(self, fetch_spectrum: Optional[SpectrumFetcher] = None):
        self.shape: Optional[Shape] = None
        self.secondary_shape: Optional[Shape] = None
        self.cursor: Optional[Cursor3D] = None
        self.spectrum: Optional[Spectrum] = None
        self.error: Optional[str] = None
        self._fetch = fetch_spectrum
        self._issued = 0
        self._applied = 0
        self._in_flight = 0

    # -------------------- Volumes --------------------
    def set_volume(self, shape: Optional[Shape]) -> None:
        """Attach the IRM grid; the cursor is recentered (or cleared)."""
        self.shape = tuple(shape) if shape else None
        self.cursor = Cursor3D.center_of(self.shape) if self.shape else None
        logger.debug(f"Cursor grid {self.shape}, cursor {self.cursor}")

    def set_secondary(self, shape: Optional[Shape]) -> None:
        """Attach (or detach) the spectroscopy grid; clears the shown spectrum."""
        self.secondary_shape = tuple(shape) if shape else None
        self.spectrum = None
        self.error = None

    # -------------------- Cursor updates --------------------
    def move(self, x: Optional[int] = None, y: Optional[int] = None,
             z: Optional[int] = None) -> Cursor3D:
        """Update any subset of axes; values are clamped into the volume."""
        if self.shape is None or self.cursor is None:
            raise ValueError("No IRM volume loaded")
        cx, cy, cz = self.cursor.as_tuple()
        self.cursor = Cursor3D.clamped(cx if x is None else x,
                                       cy if y is None else y,
                                       cz if z is None else z, self.shape)
        return self.cursor

    def select(self, plane: Plane, column: int, row: int) -> Cursor3D:
        """Apply a click at ``(column, row)`` of a plane's source slice."""
        axes: Dict[Axis, int] = local_to_axes(plane, column, row)
        return self.move(**{axis.name.lower(): value for axis, value in axes.items()})

    def set_index(self, plane: Plane, index: int) -> Cursor3D:
        """Slider for ``plane``: move along the axis it cuts."""
        return self.move(**{Plane(plane).axis.name.lower(): index})

    def restore(self, cursor: Cursor3D) -> Cursor3D:
        return self.move(*cursor.as_tuple())

    # -------------------- Spectrum --------------------
    def spectrum_voxel(self) -> Optional[Tuple[int, int, int]]:
        if self.cursor is None or self.secondary_shape is None:
            return None
        return map_voxel(self.cursor.as_tuple(), self.shape, self.secondary_shape)

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    async def refresh_spectrum(self) -> Optional[Spectrum]:
        """Fetch the spectrum under the cursor if a spectroscopy grid is attached."""
        voxel = self.spectrum_voxel()
        if voxel is None or self._fetch is None:
            return None
        return await self.fetch_spectrum(voxel)

    async def fetch_spectrum(self, voxel: Tuple[int, int, int]) -> Optional[Spectrum]:
        self._issued += 1
        seq = self._issued
        self._in_flight += 1
        try:
            payload = await self._fetch(voxel)
            spectrum = Spectrum.from_payload(payload)
        except (BackendError, ValueError) as e:
            if seq > self._applied:
                self._applied = seq
                self.error = str(e)
            logger.warning(f"Spectrum fetch #{seq} for {voxel} failed: {e}")
            return None
        finally:
            self._in_flight -= 1

        if seq < self._applied:
            logger.info(f"Discarding stale spectrum #{seq} for {voxel} (#{self._applied} applied)")
            return None
        self._applied = seq
        self.spectrum = spectrum
        self.error = None
        return spectrum
