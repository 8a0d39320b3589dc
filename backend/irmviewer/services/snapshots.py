"""Snapshots of the live view for side-by-side comparison."""

import itertools
import logging
from datetime import datetime
from typing import List, Optional

from ..models.volume import Cursor3D, Snapshot, Spectrum

logger = logging.getLogger(__name__)


class SnapshotManager:
    """Ordered list of snapshots, most recent first."""

    def __init__(self):
        self._snapshots: List[Snapshot] = []
        self._ids = itertools.count(1)

    def take_snapshot(self, cursor: Cursor3D, opacity: float,
                      spectrum: Optional[Spectrum] = None) -> Snapshot:
        # Cursor3D and Spectrum are frozen; rebuild them so the snapshot
        # never shares an object with the live state.
        snap = Snapshot(
            id=next(self._ids),
            timestamp=datetime.now(),
            cursor=Cursor3D(*cursor.as_tuple()),
            opacity=float(opacity),
            spectrum=None if spectrum is None else Spectrum(spectrum.voxel, tuple(spectrum.values)),
        )
        self._snapshots.insert(0, snap)
        logger.info(f"Snapshot {snap.id} at {snap.cursor.as_tuple()} (opacity {snap.opacity:.2f})")
        return snap

    def clear_all(self) -> None:
        logger.info(f"Cleared {len(self._snapshots)} snapshots")
        self._snapshots.clear()

    def get(self, snapshot_id: int) -> Snapshot:
        for snap in self._snapshots:
            if snap.id == snapshot_id:
                return snap
        raise KeyError(f"Snapshot {snapshot_id} not found")

    @property
    def snapshots(self) -> List[Snapshot]:
        return list(self._snapshots)

    def __len__(self) -> int:
        return len(self._snapshots)
