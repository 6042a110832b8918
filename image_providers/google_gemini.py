from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from google import genai
from google.genai import types

from . import config
from .base import (
    ConfigurationError,
    Declined,
    GenerateOptions,
    GenerationResult,
    ImagePayload,
    InlineImage,
    compose_prompt,
    error_message,
)
from .image_io import get_mime_type, read_image_bytes, write_payload

logger = logging.getLogger(__name__)

# request model id -> Gemini API model id
BACKEND_MODELS: Dict[str, str] = {
    "imagen-3": "imagen-3.0-generate-002",
    "imagen-3-fast": "imagen-3.0-fast-generate-001",
    "imagen-4": "gemini-3-pro-image-preview",
    "nano-banana": "gemini-2.5-flash-image",
    "nano-banana-pro": "gemini-3-pro-image-preview",
}
FALLBACK_BACKEND_MODEL = "gemini-2.5-flash-image"

CLI_MODELS = ("nano-banana", "nano-banana-pro")

IMAGE_PATH_RE = re.compile(r"/[^\s`'\"*?]+\.(?:png|jpg|jpeg|webp)")

SAFETY_MESSAGE = "Content blocked by safety filters. Try rephrasing your prompt."
QUOTA_MESSAGE = "API quota exceeded. Please try again later."


def extract_image_path(output: str) -> Optional[str]:
    """Last absolute image path mentioned in Gemini CLI output."""
    matches = IMAGE_PATH_RE.findall(output)
    return matches[-1] if matches else None


def classify_error(message: str) -> str:
    if "SAFETY" in message or "blocked" in message:
        return SAFETY_MESSAGE
    if "quota" in message or "RESOURCE_EXHAUSTED" in message:
        return QUOTA_MESSAGE
    return message


def decode_response(response: Any) -> ImagePayload:
    candidates = getattr(response, "candidates", None) or []
    content = candidates[0].content if candidates else None
    parts = (content.parts if content is not None else None) or []
    if not parts:
        return Declined("No content generated - check if the prompt was blocked")

    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            return InlineImage(inline.data)

    # no image: a text part is the model explaining why it declined
    text = next((part.text for part in parts if getattr(part, "text", None)), None)
    return Declined(text or "No image in response - model may have declined")


@dataclass
class GoogleProvider:
    name: str = "Google"
    api_key: Optional[str] = None
    client: Optional[genai.Client] = None
    gemini_cli: Optional[str] = None

    models: ClassVar[Tuple[str, ...]] = (
        "imagen-3", "imagen-3-fast", "imagen-4", "nano-banana", "nano-banana-pro",
    )

    def __post_init__(self):
        load_dotenv()
        self.api_key = self.api_key or config.get_env("GOOGLE_API_KEY", "GEMINI_API_KEY")
        if self.client is None and self.api_key:
            self.client = genai.Client(api_key=self.api_key)

        cli_name = self.gemini_cli or config.get_env("GEMINI_CLI", default="gemini")
        resolved_cli = shutil.which(cli_name)
        self.gemini_cli = resolved_cli or cli_name

        if self.client is None and resolved_cli is None:
            raise ConfigurationError(
                "GOOGLE_API_KEY or GEMINI_API_KEY environment variable is required "
                f"(or install the Gemini CLI as '{cli_name}')"
            )

    def uses_cli(self, options: GenerateOptions) -> bool:
        return options.model in CLI_MODELS and not options.use_api

    def generate(self, options: GenerateOptions) -> GenerationResult:
        if self.uses_cli(options):
            return self.generate_via_cli(options)
        return self.generate_via_api(options)

    # ---------------------------------------------------------------- API path

    def build_contents(self, options: GenerateOptions) -> Union[str, List[types.Part]]:
        prompt = compose_prompt(options.prompt, options.negative_prompt)
        if not options.reference_images:
            return prompt

        parts = [types.Part.from_text(text=prompt)]
        for ref in options.reference_images:
            parts.append(
                types.Part.from_bytes(data=read_image_bytes(ref), mime_type=get_mime_type(ref))
            )
        return parts

    def build_config(self, options: GenerateOptions) -> types.GenerateContentConfig:
        image_config: Dict[str, str] = {
            "aspect_ratio": options.aspect_ratio or config.DEFAULT_ASPECT_RATIO,
        }
        if options.size and options.size.upper() in config.GOOGLE_RESOLUTIONS:
            image_config["image_size"] = options.size.upper()

        return types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            image_config=types.ImageConfig(**image_config),
        )

    def generate_via_api(self, options: GenerateOptions) -> GenerationResult:
        if self.client is None:
            return GenerationResult.failed(
                "GOOGLE_API_KEY or GEMINI_API_KEY environment variable is required. "
                "For nano-banana models, omit --api to use the Gemini CLI instead."
            )

        start = time.monotonic()
        out_path = options.output or config.DEFAULT_OUTPUT
        backend_model = BACKEND_MODELS.get(options.model, FALLBACK_BACKEND_MODEL)

        try:
            logger.debug(f"Gemini request: model={backend_model}, refs={len(options.reference_images)}")
            response = self.client.models.generate_content(
                model=backend_model,
                contents=self.build_contents(options),
                config=self.build_config(options),
            )
            payload = decode_response(response)
            if isinstance(payload, Declined):
                return GenerationResult.failed(payload.reason)

            saved = write_payload(payload, out_path)
        except Exception as e:
            return GenerationResult.failed(classify_error(error_message(e)))

        logger.info(f"✓ Gemini generated {saved}")
        return GenerationResult.ok(saved, {
            "model": options.model,
            "backend_model": backend_model,
            "prompt": options.prompt,
            "seed": options.seed,
            "duration_ms": int((time.monotonic() - start) * 1000),
        })

    # ---------------------------------------------------------------- CLI path

    def build_cli_prompt(self, options: GenerateOptions, out_dir: Path) -> str:
        aspect = (options.aspect_ratio or config.DEFAULT_ASPECT_RATIO).replace(":", "x")

        directives = [f"aspect_ratio: {aspect}"]
        for ref in options.reference_images:
            directives.append(f"Reference image path: {ref}")
        if options.size:
            directives.append(f"Resolution: {options.size}")
        if options.transparent:
            directives.append("Use transparent background")
        if options.seed:
            directives.append(f"Random seed: {options.seed}")
        if options.style and options.style != config.DEFAULT_STYLE:
            directives.append(f"Style: {options.style}")
        if options.quality and options.quality != config.DEFAULT_QUALITY:
            directives.append(f"Quality: {options.quality}")
        if options.num_images and options.num_images > 1:
            directives.append(f"Generate {options.num_images} images")
        if options.steps and options.steps != config.DEFAULT_STEPS:
            directives.append(f"Inference steps: {options.steps}")
        if options.guidance and options.guidance != config.DEFAULT_GUIDANCE:
            directives.append(f"Guidance scale: {options.guidance}")
        directives.append(f"Output destination: {out_dir}")

        prompt = compose_prompt(options.prompt, options.negative_prompt)
        return prompt + "".join(f" - {d}" for d in directives)

    def run_cli(self, prompt: str) -> Tuple[str, int]:
        proc = subprocess.run(
            [self.gemini_cli, "--extensions", "nanobanana", "--yolo", "--prompt", prompt],
            capture_output=True,
            text=True,
        )
        return proc.stdout + proc.stderr, proc.returncode

    def generate_via_cli(self, options: GenerateOptions) -> GenerationResult:
        start = time.monotonic()
        out_path = Path(options.output or config.DEFAULT_OUTPUT)

        try:
            output, exit_code = self.run_cli(self.build_cli_prompt(options, out_path.parent))
            if exit_code != 0:
                return GenerationResult.failed(f"Gemini CLI exited with code {exit_code}:\n{output}")

            produced = extract_image_path(output)
            if not produced:
                return GenerationResult.failed(
                    f"Could not extract output path from Gemini CLI output:\n{output}"
                )

            out_path.parent.mkdir(parents=True, exist_ok=True)
            if Path(produced).resolve() != out_path.resolve():
                shutil.copyfile(produced, out_path)
        except FileNotFoundError as e:
            if e.filename == self.gemini_cli:
                return GenerationResult.failed(
                    f"Gemini CLI not found at {self.gemini_cli}. Install it or use --api flag."
                )
            return GenerationResult.failed(error_message(e))
        except Exception as e:
            return GenerationResult.failed(error_message(e))

        logger.info(f"✓ Gemini CLI generated {produced}")
        return GenerationResult.ok(out_path, {
            "model": options.model,
            "prompt": options.prompt,
            "seed": options.seed,
            "cli_output_path": produced,
            "duration_ms": int((time.monotonic() - start) * 1000),
        })
