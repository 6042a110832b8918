"""Flux models on Replicate.

Runs one prediction per call through the HTTP predictions API: submit with
`Prefer: wait` so fast models answer in the same request, then poll the
prediction's `get` URL until it reaches a terminal status.

Environment variables:
    REPLICATE_API_TOKEN: API token (required)
    REPLICATE_POLL_INTERVAL: seconds between status polls (default: 1.0)
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple

import requests
from dotenv import load_dotenv

from . import config
from .base import (
    Declined,
    GenerateOptions,
    GenerationResult,
    ImagePayload,
    RemoteUrl,
    compose_prompt,
    error_message,
)
from .image_io import to_data_uri, write_payload

logger = logging.getLogger(__name__)

REPLICATE_API_URL = "https://api.replicate.com/v1"

FLUX_MODELS: Dict[str, str] = {
    "flux": "black-forest-labs/flux-1.1-pro",
    "flux-schnell": "black-forest-labs/flux-schnell",
    "flux-pro": "black-forest-labs/flux-pro",
}

# image-to-image denoising strength
PROMPT_STRENGTH = 0.8

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


def decode_output(output: Any) -> ImagePayload:
    """Flux returns either a URL or a list of URLs."""
    url = output[0] if isinstance(output, list) and output else output
    if not isinstance(url, str):
        return Declined("Unexpected response format from Replicate")
    return RemoteUrl(url)


@dataclass
class ReplicateProvider:
    name: str = "Replicate"
    api_token: Optional[str] = None
    session: Optional[requests.Session] = None
    poll_interval: Optional[float] = None

    models: ClassVar[Tuple[str, ...]] = ("flux", "flux-schnell", "flux-pro")

    def __post_init__(self):
        load_dotenv()
        self.api_token = self.api_token or config.require_env("REPLICATE_API_TOKEN")
        if self.poll_interval is None:
            self.poll_interval = float(config.get_env("REPLICATE_POLL_INTERVAL", default="1.0"))
        if self.session is None:
            self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        })

    def build_input(self, options: GenerateOptions) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": compose_prompt(options.prompt, options.negative_prompt),
            "aspect_ratio": options.aspect_ratio or config.DEFAULT_ASPECT_RATIO,
            "output_format": "png",
            "output_quality": 100,
        }
        if options.seed is not None:
            payload["seed"] = options.seed
        if options.steps:
            payload["num_inference_steps"] = options.steps
        if options.guidance:
            payload["guidance_scale"] = options.guidance

        # Flux takes a single init image
        if options.reference_images:
            payload["image"] = to_data_uri(options.reference_images[0])
            payload["prompt_strength"] = PROMPT_STRENGTH
        return payload

    def _check(self, response: requests.Response) -> Dict[str, Any]:
        if not response.ok:
            try:
                detail = response.json().get("detail") or response.text
            except ValueError:
                detail = response.text
            raise RuntimeError(f"Replicate API error ({response.status_code}): {detail}")
        return response.json()

    def run(self, slug: str, model_input: Dict[str, Any]) -> Any:
        """Run a prediction to completion and return its `output` field."""
        prediction = self._check(self.session.post(
            f"{REPLICATE_API_URL}/models/{slug}/predictions",
            json={"input": model_input},
            headers={"Prefer": "wait"},
        ))

        while prediction.get("status") not in TERMINAL_STATUSES:
            get_url = (prediction.get("urls") or {}).get("get")
            if not get_url:
                raise RuntimeError("Replicate did not return a prediction status URL.")
            time.sleep(self.poll_interval)
            prediction = self._check(self.session.get(get_url))

        if prediction["status"] != "succeeded":
            reason = prediction.get("error") or "no error message"
            raise RuntimeError(f"Replicate prediction {prediction['status']}: {reason}")
        return prediction.get("output")

    def generate(self, options: GenerateOptions) -> GenerationResult:
        start = time.monotonic()
        slug = FLUX_MODELS.get(options.model)
        if slug is None:
            return GenerationResult.failed(f"Unknown Replicate model: {options.model}")

        aspect = options.aspect_ratio or config.DEFAULT_ASPECT_RATIO
        width, height = config.ASPECT_RATIO_TO_DIMENSIONS.get(aspect, (1024, 1024))
        out_path = options.output or config.DEFAULT_OUTPUT

        try:
            logger.debug(f"Replicate request: model={slug}, aspect_ratio={aspect}")
            payload = decode_output(self.run(slug, self.build_input(options)))
            if isinstance(payload, Declined):
                return GenerationResult.failed(payload.reason)

            saved = write_payload(payload, out_path)
        except Exception as e:
            return GenerationResult.failed(error_message(e))

        logger.info(f"✓ Replicate generated {saved}")
        return GenerationResult.ok(saved, {
            "model": options.model,
            "backend_model": slug,
            "prompt": options.prompt,
            "seed": options.seed,
            "width": width,
            "height": height,
            "duration_ms": int((time.monotonic() - start) * 1000),
        })
