"""
Normalize backend responses into one ``Scan`` representation.

The backend returns voxel data in several shapes depending on the endpoint:

  data_uint8       flat row-major buffer (bytes or list), with ``shape``
                   (``data_b64`` is turned into ``data_uint8`` by the decoder)
  data             nested list indexed ``[x][y][z]``
  volumes          pre-sliced stack; ``volumes["axial"][z]`` is an ``[x][y]`` matrix
  voxel_map_all    nested list, ``[z][y][x]`` for MRSI uploads and
                   ``[z][x][y]`` for metabolite maps (see ``VOXEL_MAP_LAYOUTS``)

Everything downstream only sees ``Scan.volume``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence
import logging

import numpy as np

from ..errors import DecodeError
from ..models.volume import Volume

logger = logging.getLogger(__name__)

SCAN_TYPES = ("IRM", "MRSI")

# nesting order of ``voxel_map_all`` -> transpose giving (x, y, z)
VOXEL_MAP_LAYOUTS = {
    "zyx": (2, 1, 0),   # MRSI upload, native spectroscopy grid
    "zxy": (1, 2, 0),   # metabolite map resampled to the IRM grid
}


@dataclass(frozen=True)
class Scan:
    kind: str
    name: Optional[str]
    volume: Volume


def to_uint8(array: np.ndarray) -> np.ndarray:
    """Convert to uint8, rescaling by the maximum when values exceed 0..255."""
    array = np.asarray(array)
    if array.dtype == np.uint8:
        return array
    if array.size == 0:
        return array.astype(np.uint8)
    array = np.nan_to_num(array.astype(np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    array = np.clip(array, 0, None)
    peak = array.max()
    if peak > 255:
        array = array / peak * 255.0
    return np.rint(array).astype(np.uint8)


def _shape_of(payload: Dict[str, Any]) -> Optional[tuple]:
    shape = payload.get("shape")
    if shape is None:
        return None
    try:
        shape = tuple(int(s) for s in shape)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid shape {shape!r}") from e
    if len(shape) != 3:
        raise DecodeError(f"Expected a 3D shape, got {shape}")
    return shape


def _nested(value: Sequence, what: str) -> np.ndarray:
    try:
        array = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"{what} is not a regular numeric array: {e}") from e
    if array.ndim != 3:
        raise DecodeError(f"{what} must be 3D, got {array.ndim}D")
    return array


def volume_from_payload(payload: Dict[str, Any], layout: str = "zyx") -> Volume:
    """Build a Volume from whichever voxel field the payload carries.

    ``layout`` is the nesting order of ``voxel_map_all``; other fields have
    a fixed layout.
    """
    if layout not in VOXEL_MAP_LAYOUTS:
        raise ValueError(f"Unknown voxel_map_all layout: {layout!r}")
    shape = _shape_of(payload)

    if payload.get("data_uint8") is not None:
        raw = payload["data_uint8"]
        if isinstance(raw, (bytes, bytearray, memoryview)):
            flat = np.frombuffer(raw, dtype=np.uint8)
        else:
            flat = to_uint8(np.asarray(raw).reshape(-1))
        if shape is None:
            raise DecodeError("Flat voxel buffer without a shape")
        if flat.size != shape[0] * shape[1] * shape[2]:
            raise DecodeError(f"Buffer of {flat.size} bytes does not match shape {list(shape)}")
        return Volume(data=flat, shape=shape)

    if payload.get("data_b64") is not None:
        raise DecodeError("Payload still carries data_b64; decode it first")

    if payload.get("data") is not None:
        array = _nested(payload["data"], "data")
    elif isinstance(payload.get("volumes"), dict) and payload["volumes"].get("axial") is not None:
        # stack of axial [x][y] slices along z
        try:
            array = np.stack([np.asarray(s, dtype=np.float64) for s in payload["volumes"]["axial"]], axis=2)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"volumes.axial is not a regular slice stack: {e}") from e
        if array.ndim != 3:
            raise DecodeError("volumes.axial must be a list of 2D slices")
    elif payload.get("voxel_map_all") is not None:
        array = np.transpose(_nested(payload["voxel_map_all"], "voxel_map_all"),
                             VOXEL_MAP_LAYOUTS[layout])
    else:
        raise DecodeError("Payload has no voxel data (data_uint8, data, volumes, voxel_map_all)")

    if shape is not None and tuple(array.shape) != shape:
        raise DecodeError(f"Voxel array shape {list(array.shape)} does not match declared {list(shape)}")
    return Volume.from_array(to_uint8(array))


def normalize_scan(payload: Dict[str, Any], kind: Optional[str] = None,
                   layout: str = "zyx") -> Scan:
    """Turn an (already Base64-decoded) upload or treatment response into a Scan."""
    if not isinstance(payload, dict):
        raise DecodeError(f"Expected a JSON object, got {type(payload).__name__}")
    declared = payload.get("type")
    if kind and declared and declared != kind:
        raise DecodeError(f"Expected a {kind} payload, got {declared}")
    kind = kind or declared
    if kind not in SCAN_TYPES:
        raise DecodeError(f"Unknown scan type: {kind!r}")
    volume = volume_from_payload(payload, layout=layout)
    name = payload.get("nom_fichier") or payload.get("nom")
    logger.info(f"Normalized {kind} scan {name!r}: shape {volume.shape}, {volume.nbytes} bytes")
    return Scan(kind=kind, name=name, volume=volume)
