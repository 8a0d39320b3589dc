"""
Tests for slice compositing, zoom/pan and pointer gestures
"""

import sys
import os
import io
import pytest
import numpy as np
from PIL import Image

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from irmviewer.config import settings
from irmviewer.services.compositor import (
    CROSSHAIR_COLOR, JET_LUT, SliceCompositor, blend, compose_slice, draw_crosshair,
    grayscale, image_to_bytes, overlay_rgba,
)


class TestRasterize:

    def test_grayscale_repeats_value(self):
        rgb = grayscale(np.array([[0, 128], [200, 255]], dtype=np.uint8))
        assert rgb.shape == (2, 2, 3)
        assert tuple(rgb[1, 0]) == (200, 200, 200)

    def test_jet_endpoints(self):
        assert tuple(JET_LUT[0]) == (0, 0, 255)
        assert tuple(JET_LUT[255]) == (255, 0, 0)
        assert JET_LUT.shape == (256, 3)

    @pytest.mark.parametrize('value', range(0, 256, 5))
    def test_overlay_threshold(self, value):
        rgba = overlay_rgba(np.array([[value]], dtype=np.uint8), threshold=15)
        if value < 15:
            assert rgba[0, 0, 3] == 0
        else:
            assert rgba[0, 0, 3] == 255
            assert tuple(rgba[0, 0, :3]) == tuple(JET_LUT[value])

    def test_threshold_boundary(self):
        rgba = overlay_rgba(np.array([[14, 15]], dtype=np.uint8))
        assert settings.overlay_threshold == 15
        assert rgba[0, 0, 3] == 0
        assert rgba[0, 1, 3] == 255


class TestBlend:

    def test_full_opacity(self):
        base = grayscale(np.zeros((1, 2), dtype=np.uint8))
        out = blend(base, np.array([[255, 0]], dtype=np.uint8), opacity=1.0)
        assert tuple(out[0, 0]) == (255, 0, 0)
        # below threshold: base shows through
        assert tuple(out[0, 1]) == (0, 0, 0)

    def test_zero_opacity_keeps_base(self):
        base = grayscale(np.full((2, 2), 80, dtype=np.uint8))
        out = blend(base, np.full((2, 2), 200, dtype=np.uint8), opacity=0.0)
        np.testing.assert_array_equal(out, base)

    def test_half_opacity(self):
        base = grayscale(np.full((1, 1), 100, dtype=np.uint8))
        out = blend(base, np.array([[255]], dtype=np.uint8), opacity=0.5)
        assert tuple(out[0, 0]) == (178, 50, 50)

    def test_shape_mismatch(self):
        base = grayscale(np.zeros((2, 2), dtype=np.uint8))
        with pytest.raises(ValueError):
            blend(base, np.zeros((3, 2), dtype=np.uint8), opacity=0.5)

    def test_crosshair(self):
        image = grayscale(np.zeros((4, 5), dtype=np.uint8))
        out = draw_crosshair(image, 2, 1)
        assert all(tuple(out[r, 2]) == CROSSHAIR_COLOR for r in range(4))
        assert all(tuple(out[1, c]) == CROSSHAIR_COLOR for c in range(5))
        assert tuple(out[0, 0]) == (0, 0, 0)
        # input untouched
        assert tuple(image[1, 2]) == (0, 0, 0)

    def test_compose_without_base(self):
        assert compose_slice(None) is None

    def test_compose_deterministic(self):
        base = np.arange(12, dtype=np.uint8).reshape(3, 4) * 20
        overlay = np.full((3, 4), 120, dtype=np.uint8)
        a = compose_slice(base, overlay, opacity=0.4, crosshair=(1, 1))
        b = compose_slice(base, overlay, opacity=0.4, crosshair=(1, 1))
        np.testing.assert_array_equal(a, b)


class TestViewTransform:

    @pytest.fixture
    def compositor(self):
        c = SliceCompositor(viewport=(100, 100))
        c.set_image_size(10, 10)
        return c

    def test_fit_scale(self, compositor):
        assert compositor.fit_scale == 10.0
        compositor.set_image_size(20, 10)
        assert compositor.fit_scale == 5.0

    def test_screen_to_pixel(self, compositor):
        assert compositor.screen_to_pixel(25, 35) == (2, 3)
        assert compositor.screen_to_pixel(-1, 5) is None
        assert compositor.screen_to_pixel(100, 5) is None

    def test_zoom_keeps_pointer_fixed(self, compositor):
        before = ((50 - compositor.state.pan_x) / compositor.scale,
                  (37 - compositor.state.pan_y) / compositor.scale)
        compositor.wheel(50, 37, 5)
        after = ((50 - compositor.state.pan_x) / compositor.scale,
                 (37 - compositor.state.pan_y) / compositor.scale)
        assert compositor.state.zoom > 1.0
        assert after == pytest.approx(before)

    def test_zoom_bounds(self, compositor):
        compositor.wheel(10, 10, 1000)
        assert compositor.state.zoom == settings.zoom_max
        compositor.wheel(10, 10, -1000)
        assert compositor.state.zoom == settings.zoom_min

    def test_reset_restores_identity(self, compositor):
        compositor.wheel(30, 60, 7)
        compositor.pan_by(13, -4)
        compositor.press(10, 10)
        compositor.move(50, 50)
        compositor.reset()
        assert compositor.state.zoom == 1.0
        assert (compositor.state.pan_x, compositor.state.pan_y) == (0.0, 0.0)

    def test_pixel_to_screen(self, compositor):
        compositor.pan_by(5, 7)
        assert compositor.pixel_to_screen(2, 3) == (25.0, 37.0)

    def test_invalid_viewport(self, compositor):
        with pytest.raises(ValueError):
            compositor.set_viewport(0, 10)


class TestGestures:

    @pytest.fixture
    def selections(self):
        return []

    @pytest.fixture
    def compositor(self, selections):
        c = SliceCompositor(viewport=(100, 100), on_select=lambda x, y: selections.append((x, y)))
        c.set_image_size(10, 10)
        return c

    def test_click_selects_press_location(self, compositor, selections):
        compositor.press(25, 35)
        compositor.move(26, 36)
        assert compositor.release(27, 36) == "select"
        assert selections == [(2, 3)]

    def test_drag_pans_without_selection(self, compositor, selections):
        compositor.press(25, 35)
        compositor.move(40, 35)
        assert compositor.release(40, 35) == "pan"
        assert selections == []
        assert compositor.state.pan_x == 15.0
        assert compositor.state.pan_y == 0.0

    def test_threshold_is_exclusive(self, compositor, selections):
        compositor.press(20, 20)
        assert compositor.release(23, 20) == "select"
        assert selections == [(2, 2)]

    def test_release_without_press(self, compositor, selections):
        assert compositor.release(10, 10) is None
        assert selections == []

    def test_click_outside_image(self, compositor, selections):
        compositor.pan_by(50, 0)
        compositor.press(10, 10)
        assert compositor.release(10, 10) is None
        assert selections == []

    def test_drag_pans_from_press_point(self, compositor, selections):
        compositor.press(0, 0)
        compositor.move(2, 0)
        compositor.move(10, 0)
        assert compositor.release(10, 0) == "pan"
        assert compositor.state.pan_x == 10.0
        assert selections == []

    def test_single_large_move_pans_full_distance(self, compositor, selections):
        compositor.press(0, 0)
        compositor.move(2, 1)
        assert compositor.release(6, 5) == "pan"
        assert (compositor.state.pan_x, compositor.state.pan_y) == (6.0, 5.0)


class TestRender:

    def test_placeholder(self):
        c = SliceCompositor(viewport=(64, 48))
        image = c.render(None)
        assert image.size == (64, 48)

    def test_render_fills_viewport(self):
        c = SliceCompositor(viewport=(100, 100))
        frame = np.full((10, 10, 3), 200, dtype=np.uint8)
        image = c.render(frame)
        assert image.size == (100, 100)
        assert image.getpixel((50, 50)) == (200, 200, 200)
        assert c.image_size == (10, 10)

    def test_render_with_pan_leaves_border(self):
        c = SliceCompositor(viewport=(100, 100))
        c.pan_by(50, 0)
        image = c.render(np.full((10, 10, 3), 200, dtype=np.uint8))
        assert image.getpixel((10, 50)) == (0, 0, 0)
        assert image.getpixel((75, 50)) == (200, 200, 200)

    def test_image_to_bytes(self):
        data = image_to_bytes(Image.new('RGB', (8, 8), (10, 20, 30)))
        decoded = Image.open(io.BytesIO(data))
        assert decoded.format == 'PNG'
        assert decoded.getpixel((3, 3)) == (10, 20, 30)
