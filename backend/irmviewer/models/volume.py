"""Core viewer data: volumes, cursor, spectra and snapshots.

These are plain dataclasses shared by the services. Pydantic models used
for HTTP responses live in ``models.schemas``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Volume:
    """Flat row-major uint8 buffer with a shape ``(X, Y, Z)``.

    The buffer is marked read-only on construction; every slice derived
    from it is a view or a copy, never a writable alias.
    """
    data: np.ndarray
    shape: Tuple[int, int, int]

    def __post_init__(self):
        shape = tuple(int(s) for s in self.shape)
        if len(shape) != 3 or any(s <= 0 for s in shape):
            raise ValueError(f"Volume shape must be three positive sizes, got {self.shape}")
        data = np.ascontiguousarray(self.data, dtype=np.uint8).reshape(-1)
        if data.size != shape[0] * shape[1] * shape[2]:
            raise ValueError(f"Buffer of {data.size} bytes does not match shape {shape}")
        if data.flags.writeable:
            # detach from a caller-owned array before freezing it
            data = data.copy()
            data.flags.writeable = False
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "shape", shape)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Volume":
        array = np.asarray(array)
        if array.ndim != 3:
            raise ValueError(f"Expected a 3D array, got {array.ndim}D")
        return cls(data=array.astype(np.uint8, copy=False).reshape(-1), shape=array.shape)

    @property
    def nbytes(self) -> int:
        return int(self.data.nbytes)

    def array(self) -> np.ndarray:
        """Read-only ``(X, Y, Z)`` view of the buffer."""
        return self.data.reshape(self.shape)

    def offset(self, x: int, y: int, z: int) -> int:
        _, Y, Z = self.shape
        return x * Y * Z + y * Z + z

    def value_at(self, x: int, y: int, z: int) -> int:
        return int(self.data[self.offset(x, y, z)])

    def max_value(self) -> int:
        return int(self.data.max()) if self.data.size else 0


@dataclass(frozen=True)
class Cursor3D:
    x: int
    y: int
    z: int

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.z)

    @classmethod
    def clamped(cls, x: int, y: int, z: int, shape: Tuple[int, int, int]) -> "Cursor3D":
        """Cursor clamped into ``[0, shape[i]-1]`` on every axis."""
        values = [min(max(int(v), 0), int(s) - 1) for v, s in zip((x, y, z), shape)]
        return cls(*values)

    @classmethod
    def center_of(cls, shape: Tuple[int, int, int]) -> "Cursor3D":
        return cls(*(int(s) // 2 for s in shape))


@dataclass(frozen=True)
class Spectrum:
    """Spectrum fetched for one spectroscopy voxel; never mutated."""
    voxel: Tuple[int, int, int]
    values: Tuple[float, ...]

    @classmethod
    def from_payload(cls, payload: dict) -> "Spectrum":
        if not isinstance(payload, dict):
            raise ValueError(f"Malformed spectrum payload: expected an object, got {type(payload).__name__}")
        voxel = payload.get("voxel") or {}
        try:
            key = (int(voxel["x"]), int(voxel["y"]), int(voxel["z"]))
            values = tuple(float(v) for v in payload["spectrum"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed spectrum payload: {e}") from e
        return cls(voxel=key, values=values)

    def to_dict(self) -> dict:
        x, y, z = self.voxel
        return {"voxel": {"x": x, "y": y, "z": z}, "spectrum": list(self.values)}


@dataclass(frozen=True)
class Snapshot:
    id: int
    timestamp: datetime
    cursor: Cursor3D
    opacity: float
    spectrum: Optional[Spectrum] = field(default=None)


__all__ = ["Volume", "Cursor3D", "Spectrum", "Snapshot"]
