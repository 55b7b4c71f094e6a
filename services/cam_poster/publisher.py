# services/cam_poster/publisher.py
from __future__ import annotations
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import httpx
from authlib.integrations.httpx_client import OAuth1Auth
from pydantic import ValidationError

from common.errors import NetworkError, PreconditionError, PublishError, RequestTimeoutError
from common.logging import get_logger
from common.schemas import MediaUploadInit, MediaUploadStatus

log = get_logger("cam_publisher")

UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
STATUS_URL = "https://api.twitter.com/1.1/statuses/update.json"
MEDIA_TYPE = "image/gif"

_CREDENTIAL_KEYS = ("consumer_key", "consumer_secret", "access_token", "access_token_secret")


class PublishState(str, Enum):
    NEW = "new"
    INITIALIZED = "initialized"
    APPENDED = "appended"
    FINALIZED = "finalized"
    PUBLISHED = "published"
    FAILED = "failed"


def check_credentials(credentials: Dict[str, Any]) -> Dict[str, Any]:
    missing = [k for k in _CREDENTIAL_KEYS if not credentials.get(k)]
    if missing:
        raise PreconditionError(f"Missing publish credentials: {', '.join(missing)}")
    return credentials


class MultipartOAuth1Auth(OAuth1Auth):
    """
    OAuth1Auth that keeps multipart bodies.

    Multipart bodies are not part of the OAuth 1.0a signature base string, and
    the stock auth flow rebuilds such requests with an empty body. Here only the
    Authorization header is added and the original request goes out as-is.
    """

    def auth_flow(self, request: httpx.Request):
        if "multipart/form-data" not in request.headers.get("content-type", ""):
            yield from super().auth_flow(request)
            return
        _url, headers, _body = self.prepare(request.method, str(request.url), request.headers.copy(), b"")
        request.headers["Authorization"] = headers["Authorization"]
        yield request


def make_publish_client(credentials: Dict[str, Any], timeout_sec: float = 30,
                        transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """AsyncClient that signs every request with OAuth 1.0a user credentials."""
    check_credentials(credentials)
    auth = MultipartOAuth1Auth(
        client_id=credentials["consumer_key"],
        client_secret=credentials["consumer_secret"],
        token=credentials["access_token"],
        token_secret=credentials["access_token_secret"],
    )
    return httpx.AsyncClient(auth=auth, timeout=timeout_sec, transport=transport)


class ChunkedPublisher:
    """
    Three-phase media upload followed by a status post:

        INIT -> APPEND (single segment 0) -> FINALIZE -> statuses/update

    Each phase only runs from the state its predecessor leaves behind, and the
    media id captured at INIT is the one used by every later call. A failure
    anywhere moves the publisher to FAILED and nothing after it is attempted.
    """

    def __init__(self, client: httpx.AsyncClient, upload_url: str = UPLOAD_URL, status_url: str = STATUS_URL):
        self._client = client
        self._upload_url = upload_url
        self._status_url = status_url
        self.state = PublishState.NEW
        self.media_id: Optional[str] = None

    # ---------- helpers ----------
    def _require(self, expected: PublishState, phase: str):
        if self.state is not expected:
            raise PublishError(f"{phase} called in state={self.state.value}, expected {expected.value}")

    async def _post(self, url: str, data: Dict[str, str], files: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            resp = await self._client.post(url, data=data, files=files)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"POST {url} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"POST {url} failed: {e}") from e

        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as e:
            raise PublishError(f"Non-JSON response from {url}: {resp.text[:200]!r}") from e
        if not isinstance(body, dict):
            raise PublishError(f"Unexpected response from {url}: {body!r}")
        return body

    async def _step(self, coro):
        try:
            return await coro
        except Exception:
            self.state = PublishState.FAILED
            raise

    # ---------- phases ----------
    async def init_upload(self, total_bytes: int, media_type: str = MEDIA_TYPE) -> str:
        self._require(PublishState.NEW, "INIT")
        body = await self._step(self._post(self._upload_url, {
            "command": "INIT",
            "total_bytes": str(total_bytes),
            "media_type": media_type,
        }))
        try:
            init = MediaUploadInit.model_validate(body)
        except ValidationError as e:
            self.state = PublishState.FAILED
            raise PublishError(f"INIT response without media id: {body!r}") from e
        self.media_id = init.media_id_string
        self.state = PublishState.INITIALIZED
        log.info(f"[publish] INIT media_id={self.media_id} total_bytes={total_bytes}")
        return self.media_id

    async def append(self, data: bytes, filename: str = "camera.gif", media_type: str = MEDIA_TYPE):
        self._require(PublishState.INITIALIZED, "APPEND")
        await self._step(self._post(
            self._upload_url,
            {"command": "APPEND", "media_id": self.media_id, "segment_index": "0"},
            files={"media": (filename, data, media_type)},
        ))
        self.state = PublishState.APPENDED
        log.info(f"[publish] APPEND media_id={self.media_id} segment=0 bytes={len(data)}")

    async def finalize(self) -> MediaUploadStatus:
        self._require(PublishState.APPENDED, "FINALIZE")
        body = await self._step(self._post(self._upload_url, {"command": "FINALIZE", "media_id": self.media_id}))
        try:
            status = MediaUploadStatus.model_validate(body)
        except ValidationError as e:
            self.state = PublishState.FAILED
            raise PublishError(f"Malformed FINALIZE response: {body!r}") from e
        if status.processing_info and status.processing_info.state == "failed":
            self.state = PublishState.FAILED
            raise PublishError(f"Media processing failed for media_id={self.media_id}")
        self.state = PublishState.FINALIZED
        log.info(f"[publish] FINALIZE media_id={self.media_id}")
        return status

    async def post_status(self, caption: str) -> Dict[str, Any]:
        self._require(PublishState.FINALIZED, "STATUS")
        body = await self._step(self._post(self._status_url, {"status": caption, "media_ids": self.media_id}))
        self.state = PublishState.PUBLISHED
        log.info(f"[publish] posted id={body.get('id_str')} media_id={self.media_id} caption={caption!r}")
        return body

    async def publish(self, artifact_path: Path, caption: str) -> Dict[str, Any]:
        artifact_path = Path(artifact_path)
        async with aiofiles.open(artifact_path, "rb") as f:
            data = await f.read()

        log.info("[publish] Start upload")
        await self.init_upload(len(data))
        await self.append(data, filename=artifact_path.name)
        await self.finalize()
        return await self.post_status(caption)
