"""Static routing table, enumerations and defaults shared by every provider."""
from __future__ import annotations

import os
import tempfile
from typing import Dict, Optional, Tuple

from .base import ConfigurationError

PROVIDER_NAMES: Tuple[str, ...] = ("replicate", "openai", "google")

# Sole source of truth for routing. Insertion order is the listing order.
MODEL_TO_PROVIDER: Dict[str, str] = {
    "flux": "replicate",
    "flux-schnell": "replicate",
    "flux-pro": "replicate",
    "gpt-image-1": "openai",
    "gpt-image-1.5": "openai",
    "imagen-3": "google",
    "imagen-3-fast": "google",
    "imagen-4": "google",
    "nano-banana": "google",
    "nano-banana-pro": "google",
}

ASPECT_RATIOS: Tuple[str, ...] = (
    "1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3", "4:5", "5:4", "21:9",
)

ASPECT_RATIO_TO_DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "1:1": (1024, 1024),
    "16:9": (1344, 768),
    "9:16": (768, 1344),
    "4:3": (1152, 896),
    "3:4": (896, 1152),
    "3:2": (1216, 832),
    "2:3": (832, 1216),
    "4:5": (896, 1088),
    "5:4": (1088, 896),
    "21:9": (1536, 640),
}

GOOGLE_RESOLUTIONS: Tuple[str, ...] = ("1K", "2K", "4K")

SIZES: Tuple[str, ...] = GOOGLE_RESOLUTIONS + (
    "1024x1024", "1024x1792", "1792x1024", "1536x1536", "1024x1536", "1536x1024",
)

QUALITIES: Tuple[str, ...] = ("standard", "hd")
STYLES: Tuple[str, ...] = ("vivid", "natural")

DEFAULT_MODEL = "nano-banana-pro"
DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_OUTPUT = os.path.join(tempfile.gettempdir(), "generated-image.png")
DEFAULT_QUALITY = "standard"
DEFAULT_STYLE = "vivid"
DEFAULT_NUM_IMAGES = 1
DEFAULT_STEPS = 28
DEFAULT_GUIDANCE = 3.5
DEFAULT_THUMBNAIL_SIZE = 256
MAX_VARIATIONS = 10


def get_env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty environment variable among `names`."""
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return default


def require_env(*names: str) -> str:
    value = get_env(*names)
    if value is None:
        joined = " or ".join(names)
        raise ConfigurationError(f"{joined} environment variable is required")
    return value
