"""Viewer session endpoints.

Endpoints:
  POST   /sessions
  GET    /sessions/{session_id}/state
  DELETE /sessions/{session_id}
  POST   /sessions/{session_id}/irm | /mrsi              (multipart field ``fichier``)
  POST   /sessions/{session_id}/metabolite/{metabolite}
  DELETE /sessions/{session_id}/overlay
  GET    /sessions/{session_id}/slices/{plane}.png
  POST   /sessions/{session_id}/slices/{plane}/pointer
  PUT    /sessions/{session_id}/cursor | /opacity
  GET    /sessions/{session_id}/isosurface
  GET|POST|DELETE /sessions/{session_id}/snapshots
  GET    /sessions/{session_id}/snapshots/{snapshot_id}/slices/{plane}.png
  POST   /sessions/{session_id}/snapshots/{snapshot_id}/restore
  POST   /datasets
  POST   /quantification/run | /quantification/upload-missing
"""

import json
import logging
import time
from typing import Any, List, Optional

from fastapi import APIRouter, Body, File, Form, HTTPException, Path, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from ..errors import BackendError, DecodeError
from ..models.plane import Plane
from ..models.schemas import (
    CursorUpdate, IsosurfaceModel, OpacityUpdate, PointerEvent, PointerResult,
    QuantificationRequest, SessionState, SnapshotModel, VolumeInfo,
)
from ..services.backend_client import BackendClient
from ..services.session import SessionRegistry, ViewerSession

router = APIRouter()
logger = logging.getLogger(__name__)

backend_client = BackendClient()
sessions = SessionRegistry(backend_client)


def _session(session_id: str) -> ViewerSession:
    try:
        return sessions.get(session_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0])


def _state(session: ViewerSession) -> SessionState:
    return SessionState(**session.state())


@router.post('/sessions', response_model=SessionState, status_code=201)
async def create_session():
    return _state(sessions.create())


@router.get('/sessions/{session_id}/state', response_model=SessionState)
async def get_state(session_id: str):
    return _state(_session(session_id))


@router.delete('/sessions/{session_id}', status_code=204)
async def close_session(session_id: str):
    try:
        sessions.close(session_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0])
    return Response(status_code=204)


# -------------------- Uploads --------------------
async def _upload(session: ViewerSession, kind: str, fichier: UploadFile) -> VolumeInfo:
    content = await fichier.read()
    try:
        if kind == "IRM":
            payload = await run_in_threadpool(backend_client.upload_irm, fichier.filename, content)
            info = await session.load_irm(payload)
        else:
            payload = await run_in_threadpool(backend_client.upload_mrsi, fichier.filename, content)
            info = await session.load_mrsi(payload)
        return VolumeInfo(**info)
    except BackendError as e:
        raise HTTPException(status_code=502, detail=e.message)
    except DecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception:
        logger.exception(f"Failed to load {kind} upload {fichier.filename}")
        raise HTTPException(status_code=500, detail=f"Internal error loading {kind}")


@router.post('/sessions/{session_id}/irm', response_model=VolumeInfo)
async def upload_irm(session_id: str, fichier: UploadFile = File(...)):
    return await _upload(_session(session_id), "IRM", fichier)


@router.post('/sessions/{session_id}/mrsi', response_model=VolumeInfo)
async def upload_mrsi(session_id: str, fichier: UploadFile = File(...)):
    return await _upload(_session(session_id), "MRSI", fichier)


@router.post('/sessions/{session_id}/metabolite/{metabolite}', response_model=VolumeInfo)
async def load_metabolite(session_id: str, metabolite: str):
    session = _session(session_id)
    if not session.mrsi_name:
        raise HTTPException(status_code=409, detail="Load an MRSI scan before selecting a metabolite")
    try:
        payload = await run_in_threadpool(backend_client.fetch_metabolite_map,
                                          session.mrsi_name, metabolite)
        info = await session.load_overlay(payload, label=metabolite)
        return VolumeInfo(**info)
    except BackendError as e:
        raise HTTPException(status_code=502, detail=e.message)
    except DecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception:
        logger.exception(f"Failed to load metabolite map {metabolite}")
        raise HTTPException(status_code=500, detail="Internal error loading metabolite map")


@router.delete('/sessions/{session_id}/overlay', response_model=SessionState)
async def clear_overlay(session_id: str):
    session = _session(session_id)
    session.clear_overlay()
    return _state(session)


# -------------------- Slices --------------------
@router.get('/sessions/{session_id}/slices/{plane}.png')
async def get_slice(
    session_id: str,
    plane: Plane = Path(..., description="Plane (sagittal, coronal, axial)"),
    width: Optional[int] = Query(None, ge=8, le=4096, description="Viewport width"),
    height: Optional[int] = Query(None, ge=8, le=4096, description="Viewport height"),
):
    """Rendered viewport of one plane: IRM slice, overlay, crosshair, zoom/pan applied."""
    session = _session(session_id)
    try:
        t0 = time.perf_counter()
        png = await run_in_threadpool(session.render, plane, width, height)
        dt_ms = (time.perf_counter() - t0) * 1000.0
        return Response(
            content=png,
            media_type="image/png",
            headers={
                "Cache-Control": "no-store",
                "X-Slice-Info": f"{session_id}/{plane.value}",
                "Server-Timing": f"render;dur={dt_ms:.3f}",
            },
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"Failed to render {plane.value} slice")
        raise HTTPException(status_code=500, detail="Failed to render slice")


@router.post('/sessions/{session_id}/slices/{plane}/pointer', response_model=PointerResult)
async def pointer_event(session_id: str, event: PointerEvent,
                        plane: Plane = Path(..., description="Plane (sagittal, coronal, axial)")):
    session = _session(session_id)
    try:
        gesture = await session.pointer(plane, event.action, event.x, event.y, event.steps)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PointerResult(gesture=gesture, state=_state(session))


@router.put('/sessions/{session_id}/cursor', response_model=SessionState)
async def set_cursor(session_id: str, update: CursorUpdate):
    session = _session(session_id)
    try:
        await session.set_cursor(update.x, update.y, update.z)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state(session)


@router.put('/sessions/{session_id}/opacity', response_model=SessionState)
async def set_opacity(session_id: str, update: OpacityUpdate):
    session = _session(session_id)
    session.set_opacity(update.opacity)
    return _state(session)


@router.get('/sessions/{session_id}/isosurface', response_model=IsosurfaceModel)
async def get_isosurface(session_id: str):
    session = _session(session_id)
    try:
        iso = await run_in_threadpool(session.isosurface)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return IsosurfaceModel(**iso.to_dict())


# -------------------- Snapshots --------------------
@router.get('/sessions/{session_id}/snapshots', response_model=List[SnapshotModel])
async def list_snapshots(session_id: str):
    session = _session(session_id)
    return [SnapshotModel.from_snapshot(s) for s in session.snapshots.snapshots]


@router.post('/sessions/{session_id}/snapshots', response_model=SnapshotModel, status_code=201)
async def take_snapshot(session_id: str):
    session = _session(session_id)
    try:
        snap = session.take_snapshot()
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return SnapshotModel.from_snapshot(snap)


@router.delete('/sessions/{session_id}/snapshots', status_code=204)
async def clear_snapshots(session_id: str):
    _session(session_id).snapshots.clear_all()
    return Response(status_code=204)


@router.get('/sessions/{session_id}/snapshots/{snapshot_id}/slices/{plane}.png')
async def get_snapshot_slice(
    session_id: str,
    snapshot_id: int,
    plane: Plane = Path(..., description="Plane (sagittal, coronal, axial)"),
    width: Optional[int] = Query(None, ge=8, le=4096, description="Viewport width"),
    height: Optional[int] = Query(None, ge=8, le=4096, description="Viewport height"),
):
    """Read-only slice at the snapshot's cursor and opacity, without zoom or pan."""
    session = _session(session_id)
    try:
        png = await run_in_threadpool(session.render_snapshot, snapshot_id, plane, width, height)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"Failed to render snapshot {snapshot_id} {plane.value} slice")
        raise HTTPException(status_code=500, detail="Failed to render snapshot slice")
    return Response(
        content=png,
        media_type="image/png",
        headers={"Cache-Control": "no-store",
                 "X-Slice-Info": f"{session_id}/snapshot/{snapshot_id}/{plane.value}"},
    )


@router.post('/sessions/{session_id}/snapshots/{snapshot_id}/restore', response_model=SessionState)
async def restore_snapshot(session_id: str, snapshot_id: int):
    session = _session(session_id)
    try:
        await session.restore_snapshot(snapshot_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0])
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state(session)


# -------------------- Backend pass-through --------------------
@router.post('/datasets')
async def upload_dataset(dataset: Any = Body(...)):
    """Forward a JSON patient dataset to the processing backend."""
    try:
        return await run_in_threadpool(backend_client.upload_json_dataset, dataset)
    except BackendError as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.post('/quantification/run')
async def run_quantification(request: QuantificationRequest):
    try:
        return await run_in_threadpool(backend_client.run_quantification,
                                       request.treatment_name, request.exams)
    except BackendError as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.post('/quantification/upload-missing')
async def upload_missing(files: List[UploadFile] = File(...), meta: str = Form(...)):
    """Upload files a quantification reported missing.

    ``meta`` is a JSON list of ``{name, kind, exam_id}``, one per file, matched by name.
    """
    try:
        entries = {m["name"]: m for m in json.loads(meta)}
    except (ValueError, TypeError, KeyError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid meta: {e}")
    missing = []
    for f in files:
        entry = entries.get(f.filename)
        if entry is None:
            raise HTTPException(status_code=400, detail=f"No meta entry for {f.filename}")
        missing.append((f.filename, await f.read(), entry.get("kind"), entry.get("exam_id")))
    try:
        return await run_in_threadpool(backend_client.upload_missing, missing)
    except BackendError as e:
        raise HTTPException(status_code=502, detail=e.message)
