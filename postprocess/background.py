"""File-to-file background transforms applied after generation.

`remove_background` calls the remove.bg API; everything else is local
Pillow work. Every function writes `output_path` (which may equal the
input) and returns it.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Tuple, Union

import requests
from dotenv import load_dotenv
from PIL import Image

from image_providers.config import require_env

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

REMOVE_BG_URL = "https://api.remove.bg/v1.0/removebg"

HEX_COLOR_RE = re.compile(r"#?([0-9a-fA-F]{6})")

SAVE_FORMATS = {
    ".png": "PNG",
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".webp": "WEBP",
    ".gif": "GIF",
}


def parse_hex_color(hex_color: str) -> Tuple[int, int, int]:
    match = HEX_COLOR_RE.fullmatch(hex_color.strip())
    if not match:
        raise ValueError(f"Invalid hex color: {hex_color!r} (expected e.g. '#EAE9DF')")
    value = match.group(1)
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def _save(
    img: Image.Image,
    output_path: PathLike,
    fmt: Optional[str] = None,
    quality: Optional[int] = None,
) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fmt = fmt or SAVE_FORMATS.get(output_path.suffix.lower(), "PNG")
    if fmt == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    params = {"quality": quality} if quality is not None else {}
    img.save(output_path, format=fmt, **params)
    return output_path


def remove_background(input_path: PathLike, output_path: PathLike) -> Path:
    load_dotenv()
    api_key = require_env("REMOVE_BG_API_KEY")

    data = Path(input_path).read_bytes()
    response = requests.post(
        REMOVE_BG_URL,
        headers={"X-Api-Key": api_key},
        files={"image_file": ("image.png", data)},
        data={"size": "auto"},
    )
    if not response.ok:
        raise RuntimeError(f"remove.bg API error: {response.text}")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(response.content)
    logger.info(f"✓ Background removed: {output_path}")
    return output_path


def add_background_color(input_path: PathLike, output_path: PathLike, hex_color: str) -> Path:
    """Flatten any transparency onto a solid colour."""
    rgb = parse_hex_color(hex_color)
    with Image.open(input_path) as img:
        rgba = img.convert("RGBA")

    flattened = Image.new("RGB", rgba.size, rgb)
    flattened.paste(rgba, mask=rgba.getchannel("A"))
    return _save(flattened, output_path)


def make_transparent(input_path: PathLike, output_path: PathLike) -> Path:
    """Ensure the image carries an alpha channel."""
    with Image.open(input_path) as img:
        rgba = img.convert("RGBA")
    return _save(rgba, output_path)


def composite_on_background(
    foreground_path: PathLike,
    background_path: PathLike,
    output_path: PathLike,
) -> Path:
    """Centre the foreground over the background image."""
    with Image.open(background_path) as bg, Image.open(foreground_path) as fg:
        canvas = bg.convert("RGBA")
        overlay = fg.convert("RGBA")

    left = (canvas.width - overlay.width) // 2
    top = (canvas.height - overlay.height) // 2
    canvas.paste(overlay, (left, top), overlay)
    return _save(canvas, output_path)


def resize_image(
    input_path: PathLike,
    output_path: PathLike,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Path:
    """Fit inside width x height keeping the aspect ratio; never enlarges."""
    with Image.open(input_path) as img:
        img.load()
        resized = img.copy()
    resized.thumbnail((width or resized.width, height or resized.height))
    return _save(resized, output_path)


CONVERT_FORMATS = {"png": "PNG", "jpg": "JPEG", "webp": "WEBP"}


def convert_format(input_path: PathLike, output_path: PathLike, fmt: str) -> Path:
    """Re-encode as png, jpg or webp; lossy formats at quality 90."""
    if fmt not in CONVERT_FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")

    with Image.open(input_path) as img:
        img.load()
        converted = img.copy()
    return _save(
        converted,
        output_path,
        fmt=CONVERT_FORMATS[fmt],
        quality=None if fmt == "png" else 90,
    )
