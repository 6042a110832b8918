from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from openai import APIStatusError, OpenAI

from . import config
from .base import (
    Declined,
    GenerateOptions,
    GenerationResult,
    ImagePayload,
    InlineImage,
    RemoteUrl,
    compose_prompt,
    error_message,
)
from .image_io import get_mime_type, read_image_bytes, write_payload

logger = logging.getLogger(__name__)

# gpt-image sizes; "auto" is accepted too
OPENAI_SIZES: Tuple[str, ...] = ("1024x1024", "1536x1024", "1024x1536", "auto")

# closest supported size per aspect ratio
ASPECT_TO_OPENAI_SIZE: Dict[str, str] = {
    "1:1": "1024x1024",
    "16:9": "1536x1024",
    "9:16": "1024x1536",
    "4:3": "1536x1024",
    "3:4": "1024x1536",
    "3:2": "1536x1024",
    "2:3": "1024x1536",
    "4:5": "1024x1024",
    "5:4": "1024x1024",
    "21:9": "1536x1024",
}

BACKEND_MODELS: Dict[str, str] = {
    "gpt-image-1": "gpt-image-1",
    "gpt-image-1.5": "gpt-image-1",
}

EDIT_MODEL = "gpt-image-1.5"


def resolve_size(options: GenerateOptions) -> str:
    if options.size in OPENAI_SIZES:
        return options.size
    aspect = options.aspect_ratio or config.DEFAULT_ASPECT_RATIO
    size = ASPECT_TO_OPENAI_SIZE.get(aspect, "1024x1024")
    if options.size:
        logger.warning(f"OpenAI doesn't support size {options.size}, using {size}")
    return size


def decode_response(response: Any) -> ImagePayload:
    data = getattr(response, "data", None) or []
    if not data:
        return Declined("No image data in response")

    image = data[0]
    if getattr(image, "b64_json", None):
        return InlineImage(base64.b64decode(image.b64_json))
    if getattr(image, "url", None):
        return RemoteUrl(image.url)
    return Declined("No image data in response")


@dataclass
class OpenAIProvider:
    name: str = "OpenAI"
    api_key: Optional[str] = None
    client: Optional[OpenAI] = None

    models: ClassVar[Tuple[str, ...]] = ("gpt-image-1", "gpt-image-1.5")

    def __post_init__(self):
        load_dotenv()
        if self.client is None:
            self.api_key = self.api_key or config.require_env("OPENAI_API_KEY")
            self.client = OpenAI(api_key=self.api_key)

    def is_edit(self, options: GenerateOptions) -> bool:
        return bool(options.reference_images) and options.model == EDIT_MODEL

    def _edit(self, options: GenerateOptions, model: str, size: str, prompt: str) -> Any:
        files: List[Tuple[str, bytes, str]] = [
            (Path(ref).name, read_image_bytes(ref), get_mime_type(ref))
            for ref in options.reference_images
        ]
        return self.client.images.edit(
            model=model,
            image=files[0] if len(files) == 1 else files,
            prompt=prompt,
            n=options.num_images or 1,
            size=size,
        )

    def _generate(self, options: GenerateOptions, model: str, size: str, prompt: str) -> Any:
        return self.client.images.generate(
            model=model,
            prompt=prompt,
            n=options.num_images or 1,
            size=size,
            quality="high" if options.quality == "hd" else "medium",
            background="transparent" if options.transparent else "opaque",
            output_format="png",
        )

    def generate(self, options: GenerateOptions) -> GenerationResult:
        start = time.monotonic()
        out_path = options.output or config.DEFAULT_OUTPUT
        model = BACKEND_MODELS.get(options.model, "gpt-image-1")
        size = resolve_size(options)
        prompt = compose_prompt(options.prompt, options.negative_prompt)
        edit = self.is_edit(options)

        try:
            logger.debug(f"OpenAI request: model={model}, size={size}, edit={edit}")
            call = self._edit if edit else self._generate
            payload = decode_response(call(options, model, size, prompt))
            if isinstance(payload, Declined):
                return GenerationResult.failed(payload.reason)

            saved = write_payload(payload, out_path)
        except APIStatusError as e:
            return GenerationResult.failed(f"OpenAI API Error ({e.status_code}): {e.message}")
        except Exception as e:
            return GenerationResult.failed(error_message(e))

        logger.info(f"✓ OpenAI generated {saved}")
        return GenerationResult.ok(saved, {
            "model": options.model,
            "backend_model": model,
            "prompt": options.prompt,
            "seed": options.seed,
            "size": size,
            "mode": "edit" if edit else "generate",
            "duration_ms": int((time.monotonic() - start) * 1000),
        })
