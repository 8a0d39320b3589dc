"""
Service for compositing slice images.

A displayed slice is built from a grayscale base slice, an optional
Jet-colormapped overlay blended at a given opacity, and a one pixel wide
crosshair. ``SliceCompositor`` also owns the zoom/pan state of one view and
maps pointer positions on screen back to slice pixels.
"""

import io
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
import logging

import numpy as np
from PIL import Image

from ..config import settings

logger = logging.getLogger(__name__)

CROSSHAIR_COLOR = (255, 0, 0)
PLACEHOLDER_COLOR = (24, 24, 24)


def _jet_lut() -> np.ndarray:
    """256-entry Jet lookup table, three linear bands over ``v / 255``."""
    x = np.arange(256, dtype=np.float64) / 255.0
    r = np.where(x < 0.35, 0.0, np.where(x < 0.66, (x - 0.35) / 0.31, 1.0))
    g = np.where(x < 0.35, x / 0.35, np.where(x < 0.66, 1.0, (1.0 - x) / 0.34))
    b = np.where(x < 0.35, 1.0, np.where(x < 0.66, (0.66 - x) / 0.31, 0.0))
    rgb = np.stack([r, g, b], axis=-1)
    return np.floor(np.clip(rgb, 0.0, 1.0) * 255).astype(np.uint8)


JET_LUT = _jet_lut()


def grayscale(base: np.ndarray) -> np.ndarray:
    """uint8 slice -> RGB image with the value repeated on every channel."""
    base = np.asarray(base, dtype=np.uint8)
    return np.repeat(base[:, :, np.newaxis], 3, axis=2)


def overlay_rgba(overlay: np.ndarray, threshold: Optional[int] = None) -> np.ndarray:
    """Colormap an overlay slice to RGBA.

    Values below ``threshold`` are fully transparent (alpha 0); all others
    are Jet-colored and fully opaque.
    """
    if threshold is None:
        threshold = settings.overlay_threshold
    overlay = np.asarray(overlay, dtype=np.uint8)
    rgba = np.zeros(overlay.shape + (4,), dtype=np.uint8)
    visible = overlay >= threshold
    rgba[..., :3] = JET_LUT[overlay]
    rgba[..., 3] = np.where(visible, 255, 0)
    rgba[~visible, :3] = 0
    return rgba


def blend(base_rgb: np.ndarray, overlay: Optional[np.ndarray], opacity: float,
          threshold: Optional[int] = None) -> np.ndarray:
    """Alpha-composite a colormapped overlay onto an RGB base image."""
    if overlay is None:
        return base_rgb
    if overlay.shape != base_rgb.shape[:2]:
        raise ValueError(f"Overlay shape {overlay.shape} does not match base {base_rgb.shape[:2]}")
    opacity = min(max(float(opacity), 0.0), 1.0)
    rgba = overlay_rgba(overlay, threshold)
    alpha = (rgba[..., 3:4].astype(np.float32) / 255.0) * opacity
    out = base_rgb.astype(np.float32) * (1.0 - alpha) + rgba[..., :3].astype(np.float32) * alpha
    return np.rint(out).astype(np.uint8)


def draw_crosshair(image: np.ndarray, x: Optional[int], y: Optional[int],
                   color: Tuple[int, int, int] = CROSSHAIR_COLOR) -> np.ndarray:
    """Return a copy of ``image`` with a full-width row and full-height column at (x, y)."""
    out = np.array(image, copy=True)
    if x is None or y is None:
        return out
    height, width = out.shape[:2]
    if 0 <= x < width:
        out[:, x] = color
    if 0 <= y < height:
        out[y, :] = color
    return out


def compose_slice(base: Optional[np.ndarray], overlay: Optional[np.ndarray] = None,
                  opacity: float = 0.5, crosshair: Optional[Tuple[int, int]] = None,
                  threshold: Optional[int] = None) -> Optional[np.ndarray]:
    """Base + overlay + crosshair, all in the same (displayed) pixel space."""
    if base is None:
        return None
    image = blend(grayscale(base), overlay, opacity, threshold)
    if crosshair is not None:
        image = draw_crosshair(image, *crosshair)
    return image


def image_to_bytes(image: Image.Image) -> bytes:
    """Encode a PIL image as PNG for an HTTP response."""
    buffer = io.BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()


@dataclass
class ViewState:
    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0


class SliceCompositor:
    """Zoom/pan state and pointer handling for one slice view.

    Screen position ``s`` and image pixel ``p`` are related by
    ``s = pan + p * fit * zoom`` where ``fit`` scales the image to the
    viewport at zoom 1.
    """

    def __init__(self, viewport: Optional[Tuple[int, int]] = None,
                 on_select: Optional[Callable[[int, int], None]] = None):
        size = settings.viewport_size
        self.viewport = viewport or (size, size)
        self.image_size: Optional[Tuple[int, int]] = None
        self.state = ViewState()
        self.on_select = on_select
        self.drag_threshold = settings.drag_threshold_px
        self._press: Optional[Tuple[float, float]] = None
        self._last: Optional[Tuple[float, float]] = None
        self._dragging = False

    # -------------------- View transform --------------------
    def set_viewport(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Viewport must be positive, got {width}x{height}")
        self.viewport = (int(width), int(height))

    def set_image_size(self, width: int, height: int) -> None:
        self.image_size = (int(width), int(height))

    @property
    def fit_scale(self) -> float:
        if not self.image_size:
            return 1.0
        vw, vh = self.viewport
        w, h = self.image_size
        return min(vw / w, vh / h)

    @property
    def scale(self) -> float:
        return self.fit_scale * self.state.zoom

    def zoom_at(self, sx: float, sy: float, factor: float) -> None:
        """Multiply zoom by ``factor`` keeping the image point under (sx, sy) fixed."""
        old = self.state.zoom
        new = min(max(old * factor, settings.zoom_min), settings.zoom_max)
        if new == old:
            return
        ratio = new / old
        self.state.pan_x = sx - (sx - self.state.pan_x) * ratio
        self.state.pan_y = sy - (sy - self.state.pan_y) * ratio
        self.state.zoom = new

    def wheel(self, sx: float, sy: float, steps: float) -> None:
        """Zoom in for positive ``steps``, out for negative ones."""
        self.zoom_at(sx, sy, settings.zoom_step ** steps)

    def pan_by(self, dx: float, dy: float) -> None:
        self.state.pan_x += dx
        self.state.pan_y += dy

    def reset(self) -> None:
        self.state = ViewState()
        self._press = None
        self._last = None
        self._dragging = False

    def screen_to_pixel(self, sx: float, sy: float) -> Optional[Tuple[int, int]]:
        """Integer image pixel under a screen position, or None outside the image."""
        if not self.image_size:
            return None
        s = self.scale
        px = math.floor((sx - self.state.pan_x) / s)
        py = math.floor((sy - self.state.pan_y) / s)
        w, h = self.image_size
        if 0 <= px < w and 0 <= py < h:
            return px, py
        return None

    def pixel_to_screen(self, px: float, py: float) -> Tuple[float, float]:
        s = self.scale
        return self.state.pan_x + px * s, self.state.pan_y + py * s

    # -------------------- Pointer gestures --------------------
    def press(self, sx: float, sy: float) -> None:
        self._press = (sx, sy)
        self._last = (sx, sy)
        self._dragging = False

    def move(self, sx: float, sy: float) -> None:
        if self._press is None:
            return
        px, py = self._press
        if not self._dragging and math.hypot(sx - px, sy - py) > self.drag_threshold:
            # the pan covers the whole displacement from the press point
            self._dragging = True
            self._last = self._press
        if self._dragging:
            lx, ly = self._last
            self.pan_by(sx - lx, sy - ly)
        self._last = (sx, sy)

    def release(self, sx: float, sy: float) -> Optional[str]:
        """End a press; returns ``"pan"``, ``"select"`` or None (click off-image)."""
        if self._press is None:
            return None
        self.move(sx, sy)
        press, dragging = self._press, self._dragging
        self._press = None
        self._last = None
        self._dragging = False
        if dragging:
            return "pan"
        pixel = self.screen_to_pixel(*press)
        if pixel is None:
            return None
        if self.on_select is not None:
            self.on_select(*pixel)
        return "select"

    # -------------------- Rendering --------------------
    def render(self, image: Optional[np.ndarray]) -> Image.Image:
        """Render an RGB slice image into the viewport with the current zoom/pan."""
        vw, vh = self.viewport
        if image is None:
            return Image.new('RGB', (vw, vh), PLACEHOLDER_COLOR)
        height, width = image.shape[:2]
        self.set_image_size(width, height)
        s = self.scale
        source = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
        # PIL affine maps output -> input pixel
        coeffs = (1.0 / s, 0.0, -self.state.pan_x / s,
                  0.0, 1.0 / s, -self.state.pan_y / s)
        return source.transform((vw, vh), Image.Transform.AFFINE, coeffs,
                                resample=Image.Resampling.NEAREST, fillcolor=(0, 0, 0))
