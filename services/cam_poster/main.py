# services/cam_poster/main.py
from __future__ import annotations
import argparse, asyncio, os, random, shutil, sys, uuid
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import yaml

from common.errors import CompressionError, PreconditionError, TrafficCamError
from common.logging import get_logger, set_level
from common.schemas import CameraDescriptor

from services.cam_poster.encoder import encode_gif
from services.cam_poster.fetcher import NUM_IMAGES, fetch_frames, make_http_client
from services.cam_poster.publisher import STATUS_URL, UPLOAD_URL, ChunkedPublisher, check_credentials, make_publish_client
from services.cam_poster.selector import load_catalog, select_camera
from services.cam_poster.size_guard import GIF_MAX_BYTES, GIFSICLE, GIFSICLE_ARGS, compress_gif, enforce_limit

log = get_logger("cam_poster")

GIF_NAME = "camera.gif"
_STAGE_LOGGERS = ("cam_poster", "cam_selector", "cam_fetcher", "cam_encoder", "cam_size_guard", "cam_publisher")

# ---------- Run context ----------
@dataclass(frozen=True)
class RunContext:
    location: str
    camera: CameraDescriptor
    work_dir: Path
    persist: Any = None

    @property
    def gif_path(self) -> Path:
        return self.work_dir / GIF_NAME

def new_work_dir(root: str | Path = ".") -> Path:
    return Path(root) / f"assets-{uuid.uuid4()}"

def cleanup(work_dir: Path, persist: Any = None) -> bool:
    """Remove the run's work directory unless persist is exactly True; returns whether it is gone."""
    if persist is True:
        log.info(f"[cleanup] persist set, keeping {work_dir}")
        return False
    try:
        shutil.rmtree(work_dir)
    except FileNotFoundError:
        log.info(f"[cleanup] {work_dir} already gone")
        return True
    except OSError as e:
        log.warning(f"[cleanup] could not remove {work_dir}: {e}")
        return False
    log.info(f"[cleanup] {work_dir} removed")
    return True

# ---------- Config helpers ----------
def load_config(config_path: str | Path) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as e:
        raise PreconditionError(f"Cannot read config {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise PreconditionError(f"Invalid YAML in config {config_path}: {e}") from e
    if not isinstance(cfg, dict):
        raise PreconditionError(f"Config {config_path} must be a mapping, got {type(cfg).__name__}")
    return cfg

def account_credentials(cfg: Dict[str, Any], location: Optional[str]) -> Dict[str, Any]:
    if not location:
        raise PreconditionError("Location must be passed in")
    accounts = cfg.get("accounts", {}) or {}
    creds = accounts.get(location)
    if not creds:
        raise PreconditionError(f"No account configured for location={location}")
    return creds

def _ohgo_cfg(cfg: Dict[str, Any]) -> Dict[str, Any]:
    ohgo = dict(cfg.get("ohgo", {}) or {})
    ohgo["api_key"] = os.getenv("OHGO_API_KEY", ohgo.get("api_key", ""))
    return ohgo

def _catalog(cfg: Dict[str, Any]):
    cams_cfg = cfg.get("cameras", {}) or {}
    path = cams_cfg.get("catalog", "config/cameras.yaml")
    return load_catalog(path) if Path(path).exists() else []

# ---------- Pipeline ----------
async def run(
    cfg: Dict[str, Any],
    location: Optional[str],
    camera_id: Optional[str] = None,
    use_api: bool = False,
    persist: Any = None,
    now: Optional[datetime] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep=asyncio.sleep,
    rng=random,
) -> Dict[str, Any]:
    """
    One full run: select → fetch → encode → size guard → publish.
    The work directory is removed on every exit path once it exists.
    """
    runtime  = cfg.get("runtime", {}) or {}
    comp_cfg = cfg.get("compression", {}) or {}
    tw_cfg   = cfg.get("twitter", {}) or {}
    cams_cfg = cfg.get("cameras", {}) or {}

    creds = check_credentials(account_credentials(cfg, location))
    timeout   = float(runtime.get("http_timeout_sec", 30))
    count     = int(runtime.get("num_images", NUM_IMAGES))
    limit     = int(runtime.get("gif_max_bytes", GIF_MAX_BYTES))
    work_root = runtime.get("work_root", ".")

    async with make_http_client(timeout, transport=transport) as client:
        camera = await select_camera(
            _catalog(cfg) if not use_api else [],
            camera_id=camera_id,
            use_api=use_api,
            ohgo=_ohgo_cfg(cfg),
            client=client,
            now=now,
            rush_hour=cams_cfg.get("rush_hour"),
            rng=rng,
        )
        log.info(f"ID {camera.id}: {camera.name}")

        ctx = RunContext(location=location, camera=camera, work_dir=new_work_dir(work_root), persist=persist)
        ctx.work_dir.mkdir(parents=True, exist_ok=False)
        try:
            log.info("Downloading traffic camera images...")
            frames = await fetch_frames(client, camera.url, ctx.work_dir, count, camera.delay_seconds, sleep=sleep)
            log.info("Download complete")

            log.info("Generate GIF...")
            encode_gif(frames, ctx.gif_path)
            log.info("GIF generated")

            compressor = partial(compress_gif,
                                 binary=comp_cfg.get("binary", GIFSICLE),
                                 args=comp_cfg.get("args", GIFSICLE_ARGS))
            try:
                if await enforce_limit(ctx.gif_path, limit, compressor):
                    size = ctx.gif_path.stat().st_size
                    if size > limit:
                        log.warning(f"GIF still {size} bytes after compression, publishing anyway")
            except CompressionError as e:
                log.warning(f"Compression failed, publishing original GIF: {e}")

            async with make_publish_client(creds, timeout, transport=transport) as pub_client:
                publisher = ChunkedPublisher(
                    pub_client,
                    upload_url=tw_cfg.get("upload_url", UPLOAD_URL),
                    status_url=tw_cfg.get("status_url", STATUS_URL),
                )
                result = await publisher.publish(ctx.gif_path, camera.name)
            log.info(f"Published media_id={publisher.media_id}")
            return result
        finally:
            cleanup(ctx.work_dir, ctx.persist)

# ---------- CLI ----------
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Post a GIF from a traffic camera")
    p.add_argument("--location", help="account/location key in config accounts")
    p.add_argument("--id", dest="camera_id", help="camera id (local catalog, or OHGO with --api)")
    p.add_argument("--api", action="store_true", help="choose the camera from the OHGO API")
    p.add_argument("--persist", nargs="?", const=True, default=None,
                   help="keep downloaded images and GIF")
    p.add_argument("--config", default="config/config.yaml")
    return p

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(args.config)
        set_level((cfg.get("runtime", {}) or {}).get("log_level", "INFO"), *_STAGE_LOGGERS)
        log.info("cam_poster starting…")
        asyncio.run(run(cfg, args.location, camera_id=args.camera_id, use_api=args.api, persist=args.persist))
    except TrafficCamError as e:
        log.error(f"Run failed: {type(e).__name__}: {e}")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
