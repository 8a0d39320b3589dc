"""
Owned storage for decoded volumes.

Large buffers are kept out of the session state and referenced by opaque
handles. Every entry has an owner; releasing a handle, or every handle of an
owner, drops the buffer.
"""

import secrets
import logging
from typing import Dict, Hashable, Optional, Tuple

from ..models.volume import Volume

logger = logging.getLogger(__name__)


class VolumeArena:
    """Handle -> Volume store with explicit lifetimes."""

    def __init__(self):
        self._entries: Dict[str, Tuple[Hashable, Volume]] = {}

    def store(self, volume: Volume, owner: Hashable) -> str:
        handle = secrets.token_hex(8)
        self._entries[handle] = (owner, volume)
        logger.debug(f"Stored volume {volume.shape} ({volume.nbytes} bytes) as {handle} for {owner}")
        return handle

    def get(self, handle: str) -> Volume:
        try:
            return self._entries[handle][1]
        except KeyError:
            raise KeyError(f"Volume handle {handle} is not in the arena (released?)")

    def release(self, handle: str) -> None:
        entry = self._entries.pop(handle, None)
        if entry is not None:
            logger.debug(f"Released volume {handle} ({entry[1].nbytes} bytes)")

    def replace(self, old_handle: Optional[str], volume: Volume, owner: Hashable) -> str:
        """Store ``volume`` and release the handle it supersedes."""
        if old_handle is not None:
            self.release(old_handle)
        return self.store(volume, owner)

    def release_owner(self, owner: Hashable) -> int:
        handles = [h for h, (o, _) in self._entries.items() if o == owner]
        for handle in handles:
            self.release(handle)
        return len(handles)

    @property
    def nbytes(self) -> int:
        return sum(v.nbytes for _, v in self._entries.values())

    def __contains__(self, handle: str) -> bool:
        return handle in self._entries

    def __len__(self) -> int:
        return len(self._entries)
