# services/cam_poster/fetcher.py
from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import aiofiles
import httpx
import imagehash
from PIL import Image

from common.errors import NetworkError, RequestTimeoutError
from common.logging import get_logger

log = get_logger("cam_fetcher")

NUM_IMAGES = 10
DEFAULT_DELAY_SEC = 6.0
CHUNK_SIZE = 64 * 1024

def frame_name(index: int) -> str:
    return f"frame-{index}.jpg"

def make_http_client(timeout_sec: float = 30, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Client for camera and OHGO requests; follows redirects."""
    return httpx.AsyncClient(timeout=timeout_sec, transport=transport, follow_redirects=True)

# ---------- single download ----------
async def download_image(client: httpx.AsyncClient, url: str, dest: Path) -> int:
    """Stream one image to `dest`; returns bytes written once the body is fully drained."""
    written = 0
    try:
        async with client.stream("GET", url) as resp:
            resp.raise_for_status()
            async with aiofiles.open(dest, "wb") as f:
                async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
    except httpx.TimeoutException as e:
        raise RequestTimeoutError(f"Image request timed out url={url}: {e}") from e
    except httpx.HTTPError as e:
        raise NetworkError(f"Image request failed url={url}: {e}") from e
    return written

# ---------- stale frame check ----------
def _phash(path: Path) -> imagehash.ImageHash:
    with Image.open(path) as img:
        return imagehash.phash(img.convert("L"))

def _warn_if_stale(prev: Path, cur: Path, index: int) -> None:
    try:
        dist = _phash(cur) - _phash(prev)
    except Exception as e:
        log.warning(f"[fetch] pHash failed frame={index}: {e}")
        return
    if dist == 0:
        log.warning(f"[fetch] frame={index} looks identical to frame={index - 1}; camera may not have refreshed")

# ---------- frame burst ----------
async def fetch_frames(
    client: httpx.AsyncClient,
    url: str,
    work_dir: Path,
    count: int = NUM_IMAGES,
    delay_seconds: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[Path]:
    """
    Download `count` stills from `url` into work_dir/frame-{i}.jpg, strictly one
    after another, waiting `delay_seconds` between fetches (not after the last).
    Any failed download aborts the whole burst.
    """
    if count < 1:
        raise ValueError("count must be >= 1")
    delay = DEFAULT_DELAY_SEC if delay_seconds is None else float(delay_seconds)

    frames: List[Path] = []
    for i in range(count):
        dest = work_dir / frame_name(i)
        size = await download_image(client, url, dest)
        log.info(f"[fetch] frame={i} bytes={size}")
        if frames:
            _warn_if_stale(frames[-1], dest, i)
        frames.append(dest)

        # cameras refresh every few seconds, wait before asking again
        if i < count - 1:
            await sleep(delay)
    return frames
