"""
Viewer sessions.

A session is one live fusion view: an IRM volume, an optional MRSI volume
(and metabolite map) shown as overlay, three slice views sharing one 3D
cursor, the 3D isosurface, and the snapshot list. Decoded volumes live in
the session's arena and are released when replaced or when the session is
closed.

Slices are rendered in the threadpool while pointer events arrive on the
event loop; each ``SliceView`` serializes both behind its own lock.
"""

import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
from fastapi.concurrency import run_in_threadpool

from ..config import settings
from ..models.plane import Plane
from ..models.volume import Volume
from .arena import VolumeArena
from .backend_client import BackendClient
from .compositor import SliceCompositor, compose_slice, image_to_bytes
from .coordinator import CursorCoordinator
from .decoder import DecodeWorker
from .isosurface import IsosurfaceDefinition, downsample
from .orientation import orientation_for
from .payload import normalize_scan
from .resampler import resample_slice
from .slicer import cursor_to_local, slice_size, slice_volume
from .snapshots import SnapshotManager

logger = logging.getLogger(__name__)

# Volume roles held by a session
IRM = "irm"
MRSI = "mrsi"
OVERLAY = "overlay"


class SliceView:
    """One anatomical plane: slicing, orientation, compositing and pointer input."""

    def __init__(self, plane: Plane, on_select=None):
        self.plane = Plane(plane)
        self.orientation = orientation_for(self.plane)
        self.compositor = SliceCompositor(on_select=self._on_pixel)
        self.on_select = on_select
        self.lock = threading.Lock()
        self._source_size = None

    def frame(self, volume: Optional[Volume], overlay: Optional[Volume],
              cursor, opacity: float) -> Optional[np.ndarray]:
        """Composited RGB image of this plane as displayed, or None if nothing to show."""
        if volume is None or cursor is None:
            self._source_size = None
            return None
        axis = self.plane.axis
        index = cursor.as_tuple()[axis]
        base = slice_volume(volume, axis, index)
        if base is None:
            return None
        width, height = self.sync(volume.shape)

        over = resample_slice(overlay, volume.shape, axis, index)
        crosshair = self.orientation.forward(*cursor_to_local(cursor, self.plane), width, height)
        return compose_slice(
            self.orientation.apply(base),
            None if over is None else self.orientation.apply(over),
            opacity=opacity,
            crosshair=crosshair,
        )

    def sync(self, shape):
        """Record slice geometry for a volume of ``shape``; returns source (width, height)."""
        width, height = slice_size(shape, self.plane)
        self._source_size = (width, height)
        self.compositor.set_image_size(*self.orientation.output_size(width, height))
        return width, height

    def render(self, volume, overlay, cursor, opacity: float,
               viewport: Optional[Tuple[int, int]] = None) -> bytes:
        with self.lock:
            if viewport:
                self.compositor.set_viewport(*viewport)
            image = self.compositor.render(self.frame(volume, overlay, cursor, opacity))
        return image_to_bytes(image)

    def _on_pixel(self, px: int, py: int) -> None:
        if self._source_size is None or self.on_select is None:
            return
        column, row = self.orientation.inverse(px, py, *self._source_size)
        self.on_select(self.plane, column, row)

    def pointer(self, action: str, x: float = 0.0, y: float = 0.0, steps: float = 0.0,
                shape=None) -> Optional[str]:
        """Feed one pointer event; returns ``"select"``, ``"pan"`` or None.

        ``shape`` is the IRM shape, used to refresh the slice geometry first.
        """
        with self.lock:
            if shape is not None:
                self.sync(shape)
            c = self.compositor
            if action == "press":
                c.press(x, y)
            elif action == "move":
                c.move(x, y)
            elif action == "release":
                return c.release(x, y)
            elif action == "wheel":
                c.wheel(x, y, steps)
            elif action == "reset":
                c.reset()
            else:
                raise ValueError(f"Unknown pointer action: {action}")
        return None


class ViewerSession:

    def __init__(self, session_id: str, backend: Optional[BackendClient] = None):
        self.id = session_id
        self.backend = backend
        self.arena = VolumeArena()
        self.decoder = DecodeWorker()
        self.coordinator = CursorCoordinator(self._fetch_spectrum if backend else None)
        self.snapshots = SnapshotManager()
        self.opacity = settings.default_opacity
        self.views: Dict[Plane, SliceView] = {
            plane: SliceView(plane, on_select=self.coordinator.select) for plane in Plane
        }
        self._handles: Dict[str, str] = {}
        self._info: Dict[str, Dict[str, Any]] = {}
        self._isosurface: Optional[IsosurfaceDefinition] = None

    # -------------------- Volumes --------------------
    def volume(self, role: str) -> Optional[Volume]:
        handle = self._handles.get(role)
        return self.arena.get(handle) if handle else None

    @property
    def overlay_volume(self) -> Optional[Volume]:
        return self.volume(OVERLAY) or self.volume(MRSI)

    def _store(self, role: str, scan) -> None:
        self._handles[role] = self.arena.replace(self._handles.get(role), scan.volume, owner=self.id)
        self._info[role] = {"kind": scan.kind, "name": scan.name, "shape": list(scan.volume.shape)}

    async def _decode(self, payload: Any, kind: str, layout: str = "zyx"):
        decoded = await self.decoder.decode(payload)
        return normalize_scan(decoded, kind=kind, layout=layout)

    async def load_irm(self, payload: Any) -> Dict[str, Any]:
        scan = await self._decode(payload, "IRM")
        self._store(IRM, scan)
        self._isosurface = None
        self.coordinator.set_volume(scan.volume.shape)
        for view in self.views.values():
            view.pointer("reset")
        logger.info(f"Session {self.id}: IRM {scan.name!r} {scan.volume.shape}")
        return self._info[IRM]

    async def load_mrsi(self, payload: Any) -> Dict[str, Any]:
        scan = await self._decode(payload, "MRSI")
        self._store(MRSI, scan)
        # a metabolite map belongs to the MRSI it was extracted from
        self.clear_overlay()
        self.coordinator.set_secondary(scan.volume.shape)
        logger.info(f"Session {self.id}: MRSI {scan.name!r} {scan.volume.shape}")
        return self._info[MRSI]

    async def load_overlay(self, payload: Any, label: Optional[str] = None) -> Dict[str, Any]:
        """Metabolite map shown instead of the raw MRSI volume.

        The backend resamples maps to the IRM grid and nests them ``[z][x][y]``.
        """
        scan = await self._decode(payload, "MRSI", layout="zxy")
        self._store(OVERLAY, scan)
        if label:
            self._info[OVERLAY]["name"] = label
        logger.info(f"Session {self.id}: overlay {label or scan.name!r} {scan.volume.shape}")
        return self._info[OVERLAY]

    def clear_overlay(self) -> None:
        handle = self._handles.pop(OVERLAY, None)
        self._info.pop(OVERLAY, None)
        if handle:
            self.arena.release(handle)

    @property
    def mrsi_name(self) -> Optional[str]:
        return self._info.get(MRSI, {}).get("name")

    async def _fetch_spectrum(self, voxel):
        x, y, z = voxel
        return await run_in_threadpool(self.backend.fetch_spectrum, x, y, z, self.mrsi_name)

    # -------------------- Interaction --------------------
    def render(self, plane: Plane, width: Optional[int] = None, height: Optional[int] = None) -> bytes:
        viewport = (width, height) if width and height else None
        return self.views[Plane(plane)].render(self.volume(IRM), self.overlay_volume,
                                               self.coordinator.cursor, self.opacity, viewport)

    async def pointer(self, plane: Plane, action: str, x: float = 0.0, y: float = 0.0,
                      steps: float = 0.0) -> Optional[str]:
        volume = self.volume(IRM)
        result = self.views[Plane(plane)].pointer(action, x, y, steps,
                                                  shape=None if volume is None else volume.shape)
        if result == "select":
            await self.coordinator.refresh_spectrum()
        return result

    async def set_cursor(self, x: Optional[int] = None, y: Optional[int] = None,
                         z: Optional[int] = None):
        cursor = self.coordinator.move(x, y, z)
        await self.coordinator.refresh_spectrum()
        return cursor

    async def set_slice(self, plane: Plane, index: int):
        cursor = self.coordinator.set_index(plane, index)
        await self.coordinator.refresh_spectrum()
        return cursor

    def set_opacity(self, opacity: float) -> float:
        self.opacity = min(max(float(opacity), 0.0), 1.0)
        return self.opacity

    def isosurface(self) -> IsosurfaceDefinition:
        volume = self.volume(IRM)
        if volume is None:
            raise ValueError("No IRM volume loaded")
        if self._isosurface is None:
            self._isosurface = downsample(volume)
        return self._isosurface

    # -------------------- Snapshots --------------------
    def take_snapshot(self):
        if self.coordinator.cursor is None:
            raise ValueError("No IRM volume loaded")
        return self.snapshots.take_snapshot(self.coordinator.cursor, self.opacity,
                                            self.coordinator.spectrum)

    def render_snapshot(self, snapshot_id: int, plane: Plane,
                        width: Optional[int] = None, height: Optional[int] = None) -> bytes:
        """Read-only slice at the snapshot's cursor and opacity, unzoomed."""
        snap = self.snapshots.get(snapshot_id)
        view = SliceView(plane)
        viewport = (width, height) if width and height else None
        return view.render(self.volume(IRM), self.overlay_volume, snap.cursor, snap.opacity, viewport)

    async def restore_snapshot(self, snapshot_id: int):
        """Move the live cursor and opacity back to a snapshot."""
        snap = self.snapshots.get(snapshot_id)
        cursor = self.coordinator.restore(snap.cursor)
        self.set_opacity(snap.opacity)
        await self.coordinator.refresh_spectrum()
        logger.info(f"Session {self.id}: restored snapshot {snap.id} at {cursor.as_tuple()}")
        return cursor

    def state(self) -> Dict[str, Any]:
        c = self.coordinator
        return {
            "session_id": self.id,
            "cursor": None if c.cursor is None else dict(zip("xyz", c.cursor.as_tuple())),
            "spectrum_voxel": c.spectrum_voxel(),
            "opacity": self.opacity,
            "spectrum": None if c.spectrum is None else c.spectrum.to_dict(),
            "loading_spectrum": c.loading,
            "error": c.error,
            "volumes": dict(self._info),
            "views": {
                plane.value: {"zoom": v.compositor.state.zoom,
                              "pan": [v.compositor.state.pan_x, v.compositor.state.pan_y]}
                for plane, v in self.views.items()
            },
            "snapshots": len(self.snapshots),
        }

    def close(self) -> None:
        released = self.arena.release_owner(self.id)
        self._handles.clear()
        self._info.clear()
        self._isosurface = None
        self.decoder.close()
        logger.info(f"Session {self.id} closed, released {released} volumes")


class SessionRegistry:
    """Live sessions by id.

    Sessions idle for longer than ``idle_s`` are closed on the next lookup
    or creation; at ``max_sessions`` the least recently used one is closed
    to make room.
    """

    def __init__(self, backend: Optional[BackendClient] = None, max_sessions: Optional[int] = None,
                 idle_s: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.backend = backend
        self.max_sessions = max_sessions or settings.max_sessions
        self.idle_s = settings.session_idle_s if idle_s is None else idle_s
        self._clock = clock
        self._sessions: Dict[str, ViewerSession] = {}
        self._last_used: Dict[str, float] = {}

    def create(self) -> ViewerSession:
        self.expire_idle()
        while len(self._sessions) >= self.max_sessions:
            oldest = min(self._last_used, key=self._last_used.get)
            logger.info(f"Session cap {self.max_sessions} reached, closing {oldest}")
            self.close(oldest)
        session = ViewerSession(secrets.token_hex(6), backend=self.backend)
        self._sessions[session.id] = session
        self._last_used[session.id] = self._clock()
        logger.info(f"Created session {session.id}")
        return session

    def get(self, session_id: str) -> ViewerSession:
        self.expire_idle()
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session {session_id} not found")
        self._last_used[session_id] = self._clock()
        return session

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise KeyError(f"Session {session_id} not found")
        self._last_used.pop(session_id, None)
        session.close()

    def expire_idle(self) -> int:
        """Close sessions unused for more than ``idle_s``; returns how many."""
        now = self._clock()
        stale = [sid for sid, used in self._last_used.items() if now - used > self.idle_s]
        for sid in stale:
            logger.info(f"Session {sid} idle for more than {self.idle_s:.0f}s, closing")
            self.close(sid)
        return len(stale)

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._last_used.clear()

    def __len__(self) -> int:
        return len(self._sessions)
