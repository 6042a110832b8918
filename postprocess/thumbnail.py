from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional, Union

from PIL import Image

from image_providers.config import DEFAULT_THUMBNAIL_SIZE

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".avif", ".tiff", ".heic"}

QUICK_LOOK_TIMEOUT_SECONDS = 10


class ThumbnailError(RuntimeError):
    pass


def generate_thumbnail(
    input_path: PathLike,
    size: int = DEFAULT_THUMBNAIL_SIZE,
    output_path: Optional[PathLike] = None,
) -> Path:
    """Write `<name>_thumb.png` next to the input (or at `output_path`).

    Images are shrunk with Pillow to fit a size x size box. Other files fall
    back to Quick Look, which only exists on macOS.
    """
    input_path = Path(input_path)
    ext = input_path.suffix.lower()
    out = Path(output_path) if output_path else input_path.with_name(f"{input_path.stem}_thumb.png")

    if ext in IMAGE_EXTENSIONS:
        _thumbnail_with_pillow(input_path, out, size)
    elif sys.platform == "darwin":
        _thumbnail_with_quick_look(input_path, out, size)
    else:
        raise ThumbnailError(f"Thumbnail generation not supported for {ext} files on this platform")

    logger.info(f"✓ Thumbnail written: {out}")
    return out


def _thumbnail_with_pillow(input_path: Path, output_path: Path, size: int) -> None:
    with Image.open(input_path) as img:
        img.load()
        thumb = img.copy()
    thumb.thumbnail((size, size))
    output_path.parent.mkdir(parents=True, exist_ok=True)
    thumb.save(output_path, format="PNG")


def _thumbnail_with_quick_look(input_path: Path, output_path: Path, size: int) -> None:
    out_dir = output_path.parent
    out_dir.mkdir(parents=True, exist_ok=True)
    try:
        subprocess.run(
            ["qlmanage", "-t", "-s", str(size), "-o", str(out_dir), str(input_path)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=QUICK_LOOK_TIMEOUT_SECONDS,
            check=True,
        )
    except (subprocess.TimeoutExpired, subprocess.CalledProcessError, OSError) as e:
        raise ThumbnailError(f"Quick Look thumbnail generation failed: {e}") from e

    # qlmanage names its output <original name>.png
    produced = out_dir / f"{input_path.name}.png"
    if produced.exists() and produced != output_path:
        produced.replace(output_path)
