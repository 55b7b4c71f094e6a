# services/cam_poster/encoder.py
from __future__ import annotations
import io, os
from pathlib import Path
from typing import List, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from common.errors import DecodeError, EncodeError
from common.logging import get_logger

log = get_logger("cam_encoder")

# Fixed GIF policy
LOOP_FOREVER = 0
FRAME_DELAY_MS = 150
QUALITY = 5             # NeuQuant-style: lower is finer, 10 is the usual default
_DEFAULT_QUALITY = 10
PALETTE_COLORS = 256

def _canvas_size(first: Path) -> Tuple[int, int]:
    try:
        with Image.open(first) as img:
            return img.size
    except (OSError, UnidentifiedImageError) as e:
        raise DecodeError(f"Cannot read first frame {first}: {e}") from e

def _render_frame(path: Path, size: Tuple[int, int], quality: int) -> Image.Image:
    """Draw one frame at (0,0) on a fresh canvas and reduce it to a GIF palette."""
    try:
        with Image.open(path) as img:
            canvas = Image.new("RGB", size)
            canvas.paste(img.convert("RGB"), (0, 0))
    except (OSError, UnidentifiedImageError) as e:
        raise DecodeError(f"Cannot read frame {path}: {e}") from e
    kmeans = max(0, _DEFAULT_QUALITY - quality)
    return canvas.quantize(colors=PALETTE_COLORS, method=Image.Quantize.MEDIANCUT, kmeans=kmeans)

def encode_gif(
    frames: Sequence[Path],
    out_path: Path,
    delay_ms: int = FRAME_DELAY_MS,
    quality: int = QUALITY,
    loop: int = LOOP_FOREVER,
) -> Path:
    """
    Assemble frames (in the given order) into an animated GIF at out_path.

    The canvas takes frame 0's dimensions; later frames are not resized, so a
    frame of another size ends up cropped or padded rather than rejected.
    The file is written in one go via a temp file + rename.

    Pillow folds a frame identical to its predecessor into it and adds the
    delays together, so a stale burst plays for the same total time with fewer
    stored frames.
    """
    if not frames:
        raise EncodeError("No frames to encode")

    size = _canvas_size(Path(frames[0]))
    log.info(f"[encode] frames={len(frames)} canvas={size[0]}x{size[1]} delay_ms={delay_ms} quality={quality}")

    rendered: List[Image.Image] = [_render_frame(Path(p), size, quality) for p in frames]

    buf = io.BytesIO()
    try:
        rendered[0].save(
            buf,
            format="GIF",
            save_all=True,
            append_images=rendered[1:],
            duration=delay_ms,
            loop=loop,
            disposal=1,
        )
    except (OSError, ValueError) as e:
        raise EncodeError(f"GIF assembly failed: {e}") from e

    out_path = Path(out_path)
    tmp = out_path.with_name(out_path.name + ".part")
    tmp.write_bytes(buf.getvalue())
    os.replace(tmp, out_path)
    log.info(f"[encode] wrote {out_path} bytes={out_path.stat().st_size}")
    return out_path
