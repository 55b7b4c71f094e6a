# services/cam_poster/size_guard.py
from __future__ import annotations
import asyncio, os, shlex
from pathlib import Path
from typing import Awaitable, Callable

from common.errors import CompressionError
from common.logging import get_logger

log = get_logger("cam_size_guard")

# Twitter rejects GIFs above ~5MB
GIF_MAX_BYTES = 5_100_000
GIFSICLE = "gifsicle"
GIFSICLE_ARGS = "-O3 --lossy=80 --colors 128"

Compressor = Callable[[Path], Awaitable[None]]

async def compress_gif(path: Path, binary: str = GIFSICLE, args: str = GIFSICLE_ARGS) -> None:
    """
    Shrink a GIF in place:
      <binary> <args> "<path>" -o "<path>.min"  then rename over the original.
    """
    path = Path(path)
    tmp = path.with_name(path.name + ".min")
    parts = shlex.split(binary) + shlex.split(args or "") + [str(path), "-o", str(tmp)]
    log.debug(f"Compressor: {' '.join(parts)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *parts,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CompressionError(f"Cannot start {binary}: {e}") from e

    _out, err = await proc.communicate()
    if proc.returncode != 0 or not tmp.exists():
        tmp.unlink(missing_ok=True)
        raise CompressionError(f"{binary} exited {proc.returncode}: {err.decode(errors='ignore').strip()}")
    os.replace(tmp, path)

async def enforce_limit(path: Path, limit_bytes: int, compressor: Compressor) -> bool:
    """
    Compress once when the artifact is over `limit_bytes`. The result is not
    re-checked; returns True when the compressor ran.
    """
    size = Path(path).stat().st_size
    if size <= limit_bytes:
        log.info(f"[size] {size} bytes <= {limit_bytes}, no compression")
        return False

    log.info(f"[size] {size} bytes > {limit_bytes}, compressing...")
    await compressor(Path(path))
    log.info(f"[size] compressed to {Path(path).stat().st_size} bytes")
    return True
