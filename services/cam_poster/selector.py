# services/cam_poster/selector.py
from __future__ import annotations
import random
from datetime import datetime, time as dtime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import yaml
from pydantic import ValidationError

from common.errors import NetworkError, PreconditionError, RequestTimeoutError
from common.logging import get_logger
from common.schemas import CameraDescriptor, CatalogCamera, OhgoCamera, OhgoResponse

log = get_logger("cam_selector")

OHGO_URL = "https://publicapi.ohgo.com/api/v1/cameras"
DEFAULT_RUSH_HOUR_WINDOWS = [("07:00", "09:00"), ("16:00", "18:00")]

# ---------- Local catalog ----------
def load_catalog(path: str | Path) -> List[CatalogCamera]:
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    entries = raw.get("cameras", []) if isinstance(raw, dict) else raw
    try:
        return [CatalogCamera.model_validate(e) for e in entries or []]
    except ValidationError as e:
        raise PreconditionError(f"Invalid camera catalog {path}: {e}") from e

# ---------- Rush hour ----------
def _parse_hhmm(s: str) -> dtime:
    hh, mm = str(s).split(":", 1)
    return dtime(int(hh), int(mm))

def is_rush_hour(now: datetime, windows: Sequence[Tuple[str, str]] | None = None,
                 weekdays_only: bool = True) -> bool:
    """
    True when `now` falls in one of the [start, end) windows.
    Windows are "HH:MM" pairs in local wall-clock time.
    """
    if weekdays_only and now.weekday() >= 5:
        return False
    t = now.time()
    for start, end in (windows or DEFAULT_RUSH_HOUR_WINDOWS):
        if _parse_hhmm(start) <= t < _parse_hhmm(end):
            return True
    return False

# ---------- OHGO API ----------
def _descriptor_from_ohgo(cam: OhgoCamera, rng) -> CameraDescriptor:
    # a camera can have several directional views, any one will do
    view = rng.choice(cam.cameraViews)
    return CameraDescriptor(id=cam.id, name=cam.location, url=view.largeUrl)

async def fetch_remote_camera(client: httpx.AsyncClient, ohgo: Dict[str, Any],
                              camera_id: Optional[str] = None, rng=random) -> CameraDescriptor:
    base = (ohgo.get("url") or OHGO_URL).rstrip("/")
    headers = {"Authorization": f"APIKEY {ohgo.get('api_key', '')}"}
    if camera_id is None:
        url, params = base, {"page-all": "true"}
    else:
        url, params = f"{base}/{camera_id}", None

    log.info(f"[select] OHGO lookup url={url}")
    try:
        resp = await client.get(url, headers=headers, params=params)
        resp.raise_for_status()
        body = OhgoResponse.model_validate(resp.json())
    except httpx.TimeoutException as e:
        raise RequestTimeoutError(f"OHGO request timed out: {e}") from e
    except httpx.HTTPError as e:
        raise NetworkError(f"OHGO request failed: {e}") from e
    except (ValueError, ValidationError) as e:
        raise NetworkError(f"Malformed OHGO response: {e}") from e

    if not body.results:
        raise PreconditionError(f"OHGO returned no camera for id={camera_id}")
    cam = rng.choice(body.results) if camera_id is None else body.results[0]
    return _descriptor_from_ohgo(cam, rng)

# ---------- Selection ----------
async def select_camera(
    catalog: Sequence[CatalogCamera],
    camera_id: Optional[str] = None,
    use_api: bool = False,
    ohgo: Optional[Dict[str, Any]] = None,
    client: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
    rush_hour: Optional[Dict[str, Any]] = None,
    rng=random,
) -> CameraDescriptor:
    """
    Precedence: remote API > explicit local id > rush hour priority > any camera.
    """
    if use_api:
        if client is None:
            raise PreconditionError("Remote camera lookup needs an HTTP client")
        log.info("[select] Choose camera from OHGO API")
        return await fetch_remote_camera(client, ohgo or {}, camera_id, rng=rng)

    if camera_id is not None:
        for cam in catalog:
            if cam.id == str(camera_id):
                return cam.descriptor()
        raise PreconditionError(f"No local camera with id={camera_id}")

    if not catalog:
        raise PreconditionError("Camera catalog is empty")

    rh = rush_hour or {}
    now = now or datetime.now()
    if is_rush_hour(now, rh.get("windows"), bool(rh.get("weekdays_only", True))):
        priority = [c for c in catalog if c.rush_hour_priority]
        if priority:
            log.info(f"[select] Rush hour priority ({len(priority)} cameras)")
            return rng.choice(priority).descriptor()
        log.info("[select] Rush hour but no priority cameras flagged")

    return rng.choice(list(catalog)).descriptor()
