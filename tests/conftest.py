from __future__ import annotations
import io, re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from PIL import Image

UPLOAD_URL = "https://upload.test/1.1/media/upload.json"
STATUS_URL = "https://api.test/1.1/statuses/update.json"
MEDIA_ID = "710511363345354753"


def jpeg_bytes(color=(255, 0, 0), size=(100, 100)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG", quality=95)
    return buf.getvalue()


def noise_jpeg(size=(100, 100)) -> bytes:
    buf = io.BytesIO()
    Image.effect_noise(size, 96).convert("RGB").save(buf, format="JPEG", quality=95)
    return buf.getvalue()


def form_fields(request: httpx.Request) -> Dict[str, str]:
    ctype = request.headers.get("content-type", "")
    if ctype.startswith("multipart/form-data"):
        pairs = re.findall(rb'name="(\w+)"\r\n\r\n([^\r]*)\r\n', request.content)
        return {k.decode(): v.decode() for k, v in pairs}
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class FakeTwitter:
    """Records media/upload + statuses/update calls in arrival order."""

    def __init__(self, fail_on: Optional[str] = None, init_body: Optional[Dict[str, Any]] = None,
                 finalize_body: Optional[Dict[str, Any]] = None):
        self.fail_on = fail_on
        self.init_body = init_body if init_body is not None else {
            "media_id": int(MEDIA_ID), "media_id_string": MEDIA_ID, "expires_after_secs": 86400,
        }
        self.finalize_body = finalize_body if finalize_body is not None else {
            "media_id": int(MEDIA_ID), "media_id_string": MEDIA_ID, "size": 1234,
        }
        self.calls: List[Dict[str, str]] = []
        self.headers: List[httpx.Headers] = []
        self.media_payloads: List[bytes] = []

    @property
    def commands(self) -> List[str]:
        return [c["command"] for c in self.calls]

    def handles(self, request: httpx.Request) -> bool:
        return str(request.url) in (UPLOAD_URL, STATUS_URL)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        fields = form_fields(request)
        if str(request.url) == STATUS_URL:
            fields["command"] = "STATUS"
        self.calls.append(fields)
        self.headers.append(request.headers)
        cmd = fields["command"]
        if cmd == self.fail_on:
            return httpx.Response(500, json={"errors": [{"code": 131, "message": "Internal error"}]})

        if cmd == "INIT":
            return httpx.Response(202, json=self.init_body)
        if cmd == "APPEND":
            self.media_payloads.append(request.content)
            return httpx.Response(204)
        if cmd == "FINALIZE":
            return httpx.Response(201, json=self.finalize_body)
        return httpx.Response(200, json={"id_str": "1050118621198921728", "text": fields.get("status")})


@pytest.fixture
def fake_twitter():
    return FakeTwitter()
