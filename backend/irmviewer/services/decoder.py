"""
Off-thread decoding of backend payloads.

Upload and treatment responses carry voxel buffers as Base64 strings
(``data_b64``). Decoding them is moved to a small worker pool so request
handling is not blocked; each submitted payload gets a request id and a
future, tracked until it resolves.
"""

import asyncio
import base64
import binascii
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from ..config import settings
from ..errors import DecodeError

logger = logging.getLogger(__name__)


def decode_base64(text: str) -> bytes:
    """Strict Base64 decode; raises ``DecodeError`` on malformed input."""
    if not isinstance(text, (str, bytes)):
        raise DecodeError(f"Expected a Base64 string, got {type(text).__name__}")
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Malformed Base64 payload: {e}") from e


def decode_payload(data: Any, _path: str = "$") -> Any:
    """Return a copy of ``data`` where every ``data_b64`` string is replaced by
    ``data_uint8`` bytes, at any nesting depth."""
    if isinstance(data, dict):
        out = {}
        for key, value in data.items():
            if key == "data_b64":
                try:
                    out["data_uint8"] = decode_base64(value)
                except DecodeError as e:
                    raise DecodeError(f"{_path}.data_b64: {e}") from e
            else:
                out[key] = decode_payload(value, f"{_path}.{key}")
        return out
    if isinstance(data, list):
        return [decode_payload(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    return data


class DecodeWorker:
    """Thread pool worker with request id -> pending future bookkeeping."""

    def __init__(self, max_workers: Optional[int] = None):
        self._executor = ThreadPoolExecutor(max_workers=max_workers or settings.decode_workers,
                                            thread_name_prefix="decode")
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}

    def submit(self, payload: Any) -> Tuple[int, asyncio.Future]:
        """Schedule ``decode_payload(payload)``; must be called from a running loop."""
        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        future = loop.run_in_executor(self._executor, decode_payload, payload)
        self._pending[request_id] = future
        future.add_done_callback(lambda f, rid=request_id: self._done(rid, f))
        return request_id, future

    def _done(self, request_id: int, future: asyncio.Future) -> None:
        self._pending.pop(request_id, None)
        if not future.cancelled() and future.exception() is not None:
            logger.warning(f"Decode request {request_id} failed: {future.exception()}")

    async def decode(self, payload: Any) -> Any:
        _, future = self.submit(payload)
        return await future

    def cancel(self, request_id: int) -> bool:
        future = self._pending.get(request_id)
        if future is None:
            return False
        return future.cancel()

    def pending(self) -> List[int]:
        return sorted(self._pending)

    def close(self) -> None:
        for request_id in self.pending():
            self.cancel(request_id)
        self._pending.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)
