"""
Tests for cursor coordination and spectrum sequencing
"""

import sys
import os
import asyncio
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from irmviewer.errors import BackendError
from irmviewer.models.plane import Plane
from irmviewer.services.coordinator import CursorCoordinator


def _spectrum(voxel):
    x, y, z = voxel
    return {"voxel": {"x": x, "y": y, "z": z}, "spectrum": [float(x), float(y), float(z)]}


class GatedFetcher:
    """Spectrum fetcher whose responses are released by the test."""

    def __init__(self):
        self.calls = []
        self.gates = {}

    async def __call__(self, voxel):
        self.calls.append(voxel)
        gate = self.gates.setdefault(voxel, asyncio.Event())
        await gate.wait()
        if voxel == (0, 0, 0):
            raise BackendError("voxel outside mask")
        return _spectrum(voxel)

    def release(self, voxel):
        self.gates.setdefault(voxel, asyncio.Event()).set()


class TestCursor:

    @pytest.fixture
    def coordinator(self):
        c = CursorCoordinator()
        c.set_volume((10, 8, 6))
        return c

    def test_centered_on_load(self, coordinator):
        assert coordinator.cursor.as_tuple() == (5, 4, 3)

    def test_move_clamps(self, coordinator):
        assert coordinator.move(x=-4, z=99).as_tuple() == (0, 4, 5)

    def test_move_without_volume(self):
        with pytest.raises(ValueError):
            CursorCoordinator().move(1, 1, 1)

    @pytest.mark.parametrize('plane, column, row, expected', [
        (Plane.SAGITTAL, 2, 1, (5, 1, 2)),   # columns z, rows y
        (Plane.CORONAL, 2, 7, (7, 4, 2)),    # columns z, rows x
        (Plane.AXIAL, 6, 9, (9, 6, 3)),      # columns y, rows x
    ])
    def test_select(self, coordinator, plane, column, row, expected):
        assert coordinator.select(plane, column, row).as_tuple() == expected

    def test_select_out_of_range_is_clamped(self, coordinator):
        assert coordinator.select(Plane.AXIAL, 100, -3).as_tuple() == (0, 7, 3)

    @pytest.mark.parametrize('plane, expected', [
        (Plane.SAGITTAL, (1, 4, 3)),
        (Plane.CORONAL, (5, 1, 3)),
        (Plane.AXIAL, (5, 4, 1)),
    ])
    def test_set_index(self, coordinator, plane, expected):
        assert coordinator.set_index(plane, 1).as_tuple() == expected

    def test_spectrum_voxel(self, coordinator):
        assert coordinator.spectrum_voxel() is None
        coordinator.set_secondary((5, 4, 3))
        coordinator.move(9, 7, 5)
        assert coordinator.spectrum_voxel() == (4, 3, 2)


class TestSpectrumSequencing:

    def _coordinator(self, fetcher):
        c = CursorCoordinator(fetcher)
        c.set_volume((10, 10, 10))
        c.set_secondary((10, 10, 10))
        return c

    def test_no_secondary_volume(self):
        fetcher = GatedFetcher()
        c = CursorCoordinator(fetcher)
        c.set_volume((4, 4, 4))
        assert asyncio.run(c.refresh_spectrum()) is None
        assert fetcher.calls == []

    def test_refresh_applies_result(self):
        async def scenario():
            fetcher = GatedFetcher()
            c = self._coordinator(fetcher)
            c.move(1, 2, 3)
            fetcher.release((1, 2, 3))
            result = await c.refresh_spectrum()
            return c, result

        c, result = asyncio.run(scenario())
        assert result.voxel == (1, 2, 3)
        assert c.spectrum is result
        assert c.loading is False

    def test_stale_response_discarded(self):
        async def scenario():
            fetcher = GatedFetcher()
            c = self._coordinator(fetcher)
            older = asyncio.create_task(c.fetch_spectrum((1, 1, 1)))
            newer = asyncio.create_task(c.fetch_spectrum((2, 2, 2)))
            await asyncio.sleep(0)
            loading = c.loading
            fetcher.release((2, 2, 2))
            await newer
            fetcher.release((1, 1, 1))
            stale = await older
            return c, loading, stale

        c, loading, stale = asyncio.run(scenario())
        assert loading is True
        assert stale is None
        assert c.spectrum.voxel == (2, 2, 2)
        assert c.loading is False

    def test_older_response_shown_until_newer_lands(self):
        async def scenario():
            fetcher = GatedFetcher()
            c = self._coordinator(fetcher)
            older = asyncio.create_task(c.fetch_spectrum((1, 1, 1)))
            newer = asyncio.create_task(c.fetch_spectrum((2, 2, 2)))
            await asyncio.sleep(0)
            fetcher.release((1, 1, 1))
            await older
            shown_first = c.spectrum.voxel
            fetcher.release((2, 2, 2))
            await newer
            return c, shown_first

        c, shown_first = asyncio.run(scenario())
        assert shown_first == (1, 1, 1)
        assert c.spectrum.voxel == (2, 2, 2)

    def test_failure_sets_error(self):
        async def scenario():
            fetcher = GatedFetcher()
            c = self._coordinator(fetcher)
            fetcher.release((3, 3, 3))
            await c.fetch_spectrum((3, 3, 3))
            fetcher.release((0, 0, 0))
            result = await c.fetch_spectrum((0, 0, 0))
            return c, result

        c, result = asyncio.run(scenario())
        assert result is None
        assert c.error == "voxel outside mask"
        # last good spectrum stays displayed
        assert c.spectrum.voxel == (3, 3, 3)

    def test_stale_failure_ignored(self):
        async def scenario():
            fetcher = GatedFetcher()
            c = self._coordinator(fetcher)
            failing = asyncio.create_task(c.fetch_spectrum((0, 0, 0)))
            good = asyncio.create_task(c.fetch_spectrum((4, 4, 4)))
            await asyncio.sleep(0)
            fetcher.release((4, 4, 4))
            await good
            fetcher.release((0, 0, 0))
            await failing
            return c

        c = asyncio.run(scenario())
        assert c.error is None
        assert c.spectrum.voxel == (4, 4, 4)

    def test_malformed_spectrum_is_an_error(self):
        async def bad_fetch(voxel):
            return {"voxel": {"x": 1}}

        c = self._coordinator(bad_fetch)
        assert asyncio.run(c.fetch_spectrum((1, 1, 1))) is None
        assert "Malformed spectrum" in c.error

    @pytest.mark.parametrize('payload', [[1.0, 2.0], "nan", None])
    def test_non_object_spectrum_is_an_error(self, payload):
        async def list_fetch(voxel):
            return payload

        c = self._coordinator(list_fetch)
        assert asyncio.run(c.fetch_spectrum((1, 1, 1))) is None
        assert "Malformed spectrum" in c.error
        assert c.loading is False

    def test_new_secondary_clears_spectrum(self):
        async def scenario():
            fetcher = GatedFetcher()
            c = self._coordinator(fetcher)
            fetcher.release((5, 5, 5))
            await c.fetch_spectrum((5, 5, 5))
            return c

        c = asyncio.run(scenario())
        c.set_secondary((2, 2, 2))
        assert c.spectrum is None
        assert c.error is None
