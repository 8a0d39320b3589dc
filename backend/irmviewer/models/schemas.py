"""
Request and response models for the viewer API
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from .volume import Snapshot


class CursorModel(BaseModel):
    """3D cursor in IRM voxel indices"""
    x: int
    y: int
    z: int


class CursorUpdate(BaseModel):
    """Slider update; omitted axes keep their value"""
    x: Optional[int] = None
    y: Optional[int] = None
    z: Optional[int] = None


class OpacityUpdate(BaseModel):
    opacity: float = Field(..., ge=0.0, le=1.0)


class PointerEvent(BaseModel):
    """Pointer event in viewport (screen) pixels"""
    action: Literal["press", "move", "release", "wheel", "reset"]
    x: float = 0.0
    y: float = 0.0
    steps: float = 0.0  # wheel: positive zooms in


class SpectrumModel(BaseModel):
    voxel: Dict[str, int]
    spectrum: List[float]


class VolumeInfo(BaseModel):
    kind: str
    name: Optional[str] = None
    shape: List[int]


class ViewInfo(BaseModel):
    zoom: float
    pan: List[float]


class SessionState(BaseModel):
    """Live state of a viewer session"""
    session_id: str
    cursor: Optional[CursorModel] = None
    spectrum_voxel: Optional[List[int]] = None
    opacity: float
    spectrum: Optional[SpectrumModel] = None
    loading_spectrum: bool = False
    error: Optional[str] = None
    volumes: Dict[str, VolumeInfo] = Field(default_factory=dict)
    views: Dict[str, ViewInfo] = Field(default_factory=dict)
    snapshots: int = 0


class PointerResult(BaseModel):
    gesture: Optional[Literal["select", "pan"]] = None
    state: SessionState


class SnapshotModel(BaseModel):
    id: int
    timestamp: datetime
    cursor: CursorModel
    opacity: float
    spectrum: Optional[SpectrumModel] = None

    @classmethod
    def from_snapshot(cls, snap: Snapshot) -> "SnapshotModel":
        x, y, z = snap.cursor.as_tuple()
        return cls(
            id=snap.id,
            timestamp=snap.timestamp,
            cursor=CursorModel(x=x, y=y, z=z),
            opacity=snap.opacity,
            spectrum=None if snap.spectrum is None else SpectrumModel(**snap.spectrum.to_dict()),
        )


class IsosurfaceModel(BaseModel):
    """Point cloud and thresholds handed to the 3D renderer"""
    x: List[int]
    y: List[int]
    z: List[int]
    value: List[int]
    iso_min: int
    iso_max: int
    stride: List[int]


class QuantificationRequest(BaseModel):
    """Quantification job forwarded to the processing backend"""
    treatment_name: str
    exams: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    version: str
    backend_reachable: bool
    sessions: int


__all__ = [
    "CursorModel", "CursorUpdate", "OpacityUpdate", "PointerEvent", "SpectrumModel",
    "VolumeInfo", "ViewInfo", "SessionState", "PointerResult", "SnapshotModel",
    "IsosurfaceModel", "QuantificationRequest", "HealthResponse",
]
