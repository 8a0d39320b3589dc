"""
Tests for Base64 payload decoding and the decode worker
"""

import sys
import os
import asyncio
import base64
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from irmviewer.errors import DecodeError
from irmviewer.services.decoder import DecodeWorker, decode_base64, decode_payload


def test_decode_base64():
    assert decode_base64(base64.b64encode(b"\x00\x01\xff").decode()) == b"\x00\x01\xff"


@pytest.mark.parametrize('text', ["not base64!", "abc", "YWJj$$"])
def test_malformed_base64(text):
    with pytest.raises(DecodeError):
        decode_base64(text)


def test_non_string_rejected():
    with pytest.raises(DecodeError):
        decode_base64(123)


def test_decode_payload_nested():
    payload = {
        "type": "IRM",
        "data_b64": base64.b64encode(b"\x01\x02").decode(),
        "maps": [{"data_b64": base64.b64encode(b"\x03").decode(), "shape": [1, 1, 1]}],
    }
    out = decode_payload(payload)
    assert out["data_uint8"] == b"\x01\x02"
    assert "data_b64" not in out
    assert out["maps"][0]["data_uint8"] == b"\x03"
    # input untouched
    assert "data_b64" in payload


def test_decode_payload_reports_path():
    with pytest.raises(DecodeError) as exc:
        decode_payload({"maps": [{"data_b64": "%%%"}]})
    assert "$.maps[0].data_b64" in str(exc.value)


class TestDecodeWorker:

    def test_decode(self):
        async def scenario():
            worker = DecodeWorker(max_workers=1)
            try:
                return await worker.decode({"data_b64": base64.b64encode(b"abc").decode()}), worker.pending()
            finally:
                worker.close()

        out, pending = asyncio.run(scenario())
        assert out == {"data_uint8": b"abc"}
        assert pending == []

    def test_failure_is_a_failed_future(self):
        async def scenario():
            worker = DecodeWorker(max_workers=1)
            try:
                await worker.decode({"data_b64": "!!!"})
            finally:
                worker.close()

        with pytest.raises(DecodeError):
            asyncio.run(scenario())

    def test_request_ids_and_pending(self):
        async def scenario():
            worker = DecodeWorker(max_workers=1)
            try:
                rid1, f1 = worker.submit({"a": 1})
                rid2, f2 = worker.submit({"b": 2})
                seen = worker.pending()
                results = await asyncio.gather(f1, f2)
                await asyncio.sleep(0)
                return rid1, rid2, seen, results, worker.pending()
            finally:
                worker.close()

        rid1, rid2, seen, results, after = asyncio.run(scenario())
        assert rid2 == rid1 + 1
        assert set(seen) <= {rid1, rid2}
        assert results == [{"a": 1}, {"b": 2}]
        assert after == []

    def test_cancel_unknown(self):
        async def scenario():
            worker = DecodeWorker(max_workers=1)
            try:
                return worker.cancel(42)
            finally:
                worker.close()

        assert asyncio.run(scenario()) is False

    def test_close_cancels_pending(self):
        async def scenario():
            worker = DecodeWorker(max_workers=1)
            _, f1 = worker.submit({"a": 1})
            _, f2 = worker.submit({"b": 2})
            worker.close()
            return f1.cancelled(), f2.cancelled(), worker.pending()

        c1, c2, after = asyncio.run(scenario())
        assert c1 and c2
        assert after == []
