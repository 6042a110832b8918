from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Protocol, Tuple, Union


class ConfigurationError(RuntimeError):
    """Missing credential or unknown model. Never retried."""


@dataclass(frozen=True)
class GenerateOptions:
    """One generation intent, shared unchanged by every variation but `output`."""

    model: str
    prompt: str
    negative_prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None
    size: Optional[str] = None
    output: Optional[str] = None
    reference_images: Tuple[str, ...] = ()
    transparent: bool = False
    remove_bg: bool = False
    add_bg: Optional[str] = None
    thumbnail: Union[bool, int, None] = None
    variations: int = 1
    seed: Optional[int] = None
    steps: Optional[int] = None
    guidance: Optional[float] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    num_images: Optional[int] = None
    use_api: bool = False


@dataclass
class GenerationResult:
    image_path: Optional[Path] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.image_path is not None

    @classmethod
    def ok(cls, image_path: Union[str, Path], meta: Dict[str, Any]) -> "GenerationResult":
        return cls(image_path=Path(image_path), meta=meta)

    @classmethod
    def failed(cls, error: str) -> "GenerationResult":
        return cls(error=error or "Unknown error occurred")


# What a backend handed back, decoded once at the adapter boundary.
@dataclass(frozen=True)
class InlineImage:
    data: bytes


@dataclass(frozen=True)
class RemoteUrl:
    url: str


@dataclass(frozen=True)
class Declined:
    reason: str


ImagePayload = Union[InlineImage, RemoteUrl, Declined]


class ImageProvider(Protocol):
    name: str
    models: ClassVar[Tuple[str, ...]]

    def generate(self, options: GenerateOptions) -> GenerationResult:
        """Generate exactly one image for `options`.

        Expected failures (safety block, quota, missing image data) come back
        as a failed result, never as an exception.
        """
        ...


def compose_prompt(prompt: str, negative_prompt: Optional[str] = None) -> str:
    if negative_prompt:
        return f"{prompt} Avoid: {negative_prompt}"
    return prompt


def error_message(exc: BaseException) -> str:
    return str(exc) or "Unknown error occurred"
