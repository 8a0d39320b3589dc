"""
Client for the external processing backend.

The backend owns NIfTI parsing, spectroscopy and treatments; the viewer only
consumes its HTTP contract:

  GET  /                                   health probe
  POST /upload-irm/, /upload-mrsi/         multipart field ``fichier``
  GET  /spectrum/[{name}/]{x}/{y}/{z}      spectrum of one MRSI voxel
  POST /upload-json-dataset/               patients dataset (passed through)
  POST /traitements                        treatment catalog (metabolite maps...)
  POST /quantification/run                 quantification job
  POST /quantification/upload-missing      files missing for a quantification

All calls are blocking; async callers off-load them to the threadpool.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from ..config import settings
from ..errors import BackendError

logger = logging.getLogger(__name__)


def _safe_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


class BackendClient:
    """Thin wrapper around a ``requests.Session`` bound to the backend URL."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.backend_url).rstrip('/')
        self.token = token if token is not None else settings.backend_token
        self.timeout = timeout or settings.backend_timeout_s
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = self.session.request(method, url, headers=headers,
                                            timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise BackendError(f"Backend unreachable: {e}") from e

        data = _safe_json(response)
        if not response.ok:
            message = None
            if isinstance(data, dict):
                message = data.get("detail") or data.get("error")
            message = message if isinstance(message, str) else f"HTTP {response.status_code}"
            logger.error(f"{method} {url} -> {response.status_code}: {message}")
            raise BackendError(message, status_code=response.status_code)
        if isinstance(data, dict) and data.get("error"):
            logger.error(f"{method} {url} returned error payload: {data['error']}")
            raise BackendError(str(data["error"]), status_code=response.status_code)
        return data

    # -------------------- Endpoints --------------------
    def health(self) -> bool:
        """True if the backend answers ``GET /`` with a 2xx status."""
        try:
            response = self.session.get(f"{self.base_url}/", timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Backend health probe failed: {e}")
            return False
        return response.ok

    def upload_irm(self, filename: str, content: bytes) -> Dict[str, Any]:
        return self._upload("/upload-irm/", filename, content)

    def upload_mrsi(self, filename: str, content: bytes) -> Dict[str, Any]:
        return self._upload("/upload-mrsi/", filename, content)

    def _upload(self, path: str, filename: str, content: bytes) -> Dict[str, Any]:
        files = {"fichier": (filename, content, "application/octet-stream")}
        logger.info(f"Uploading {filename} ({len(content)} bytes) to {path}")
        return self._request("POST", path, files=files)

    def fetch_spectrum(self, x: int, y: int, z: int, name: Optional[str] = None) -> Dict[str, Any]:
        path = f"/spectrum/{x}/{y}/{z}" if not name else f"/spectrum/{name}/{x}/{y}/{z}"
        return self._request("GET", path)

    def upload_json_dataset(self, dataset: Any) -> Dict[str, Any]:
        return self._request("POST", "/upload-json-dataset/", json=dataset)

    def run_treatment(self, catalog: Dict[str, Any]) -> Dict[str, Any]:
        """Submit ``{scan_name: {type_traitement, params}}``; returns results per scan."""
        return self._request("POST", "/traitements", json=catalog)

    def fetch_metabolite_map(self, mrsi_name: str, metabolite: str) -> Dict[str, Any]:
        """Metabolite map payload for one MRSI scan (``voxel_map_all`` or ``data_b64``)."""
        catalog = {mrsi_name: {"type_traitement": "metabolite_extractor",
                               "params": {"metabolites": [metabolite]}}}
        result = self.run_treatment(catalog)
        entry = result.get(mrsi_name) if isinstance(result, dict) else None
        if isinstance(entry, dict) and entry.get("error"):
            raise BackendError(str(entry["error"]))
        if not isinstance(entry, dict) or not isinstance(entry.get(metabolite), dict):
            raise BackendError(f"No {metabolite} map returned for {mrsi_name}")
        return entry[metabolite]

    def run_quantification(self, treatment_name: str, exams: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._request("POST", "/quantification/run",
                             json={"treatment_name": treatment_name, "exams": exams})

    def upload_missing(self, missing: Iterable[Tuple[str, bytes, str, str]]) -> Dict[str, Any]:
        """Upload ``(name, content, kind, exam_id)`` files a quantification needs."""
        missing = list(missing)
        files = [("files", (name, content, "application/octet-stream"))
                 for name, content, _, _ in missing]
        meta = [{"name": name, "kind": kind, "exam_id": exam_id}
                for name, _, kind, exam_id in missing]
        return self._request("POST", "/quantification/upload-missing",
                             files=files, data={"meta": json.dumps(meta)})

    def close(self) -> None:
        self.session.close()
