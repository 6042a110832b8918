"""Reading reference images and persisting whatever a backend returned."""
from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Dict, Union

import requests

from .base import Declined, ImagePayload, InlineImage, RemoteUrl

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MIME_TYPES: Dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


def get_mime_type(path: PathLike) -> str:
    ext = Path(path).suffix.lower().lstrip(".")
    return MIME_TYPES.get(ext, "image/png")


def read_image_bytes(path: PathLike) -> bytes:
    return Path(path).read_bytes()


def read_image_as_base64(path: PathLike) -> str:
    return base64.b64encode(read_image_bytes(path)).decode("ascii")


def to_data_uri(path: PathLike) -> str:
    return f"data:{get_mime_type(path)};base64,{read_image_as_base64(path)}"


def save_bytes(data: bytes, out_path: PathLike) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(data)
    logger.debug(f"Saved {len(data)} bytes to {out_path}")
    return out_path


def save_base64(b64: str, out_path: PathLike) -> Path:
    return save_bytes(base64.b64decode(b64), out_path)


def download_image(url: str, out_path: PathLike) -> Path:
    response = requests.get(url)
    if not response.ok:
        raise RuntimeError(f"Failed to download image: {response.reason}")
    return save_bytes(response.content, out_path)


def write_payload(payload: ImagePayload, out_path: PathLike) -> Path:
    if isinstance(payload, InlineImage):
        return save_bytes(payload.data, out_path)
    if isinstance(payload, RemoteUrl):
        return download_image(payload.url, out_path)
    if isinstance(payload, Declined):
        raise ValueError(f"Nothing to write, backend declined: {payload.reason}")
    raise TypeError(f"Unsupported payload: {payload!r}")
